from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from .. import schemas
from ..auth import Principal, get_current_principal
from ..container import Container
from ..errors import NotFound
from ..models import OrderStatus
from .deps import get_container

router = APIRouter(prefix="/erp/orders", tags=["orders"], dependencies=[Depends(get_current_principal)])


@router.get("", response_model=schemas.OrderPage)
def list_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    status: Optional[OrderStatus] = None,
    customer_id: Optional[UUID] = Query(None, alias="customerId"),
    container: Container = Depends(get_container),
):
    return container.orders.find_all(page=page, page_size=page_size, status=status, customer_id=customer_id)


@router.get("/{order_id}", response_model=schemas.SalesOrderDetail)
def get_order(order_id: UUID, container: Container = Depends(get_container)):
    return container.orders.find_by_id(order_id)


@router.post("", status_code=201, response_model=schemas.SalesOrderOut)
def create_order(
    body: schemas.OrderCreate,
    principal: Principal = Depends(get_current_principal),
    container: Container = Depends(get_container),
):
    try:
        return container.orders.create(principal.user_id, body)
    except NotFound as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.post("/{order_id}/confirm", response_model=schemas.ConfirmOrderOut)
def confirm_order(
    order_id: UUID,
    principal: Principal = Depends(get_current_principal),
    container: Container = Depends(get_container),
):
    return container.orders.confirm_order(order_id, principal.user_id)


@router.get("/{order_id}/processing-status", response_model=schemas.ProcessingStatusOut)
def get_processing_status(order_id: UUID, container: Container = Depends(get_container)):
    return container.orders.get_processing_status(order_id)


@router.patch("/{order_id}/status", response_model=schemas.SalesOrderOut)
def update_order_status(
    order_id: UUID,
    body: schemas.OrderStatusUpdate,
    container: Container = Depends(get_container),
):
    return container.orders.update_status(order_id, body.status)


@router.delete("/{order_id}", response_model=schemas.MessageOut)
def delete_order(order_id: UUID, container: Container = Depends(get_container)):
    return container.orders.delete(order_id)
