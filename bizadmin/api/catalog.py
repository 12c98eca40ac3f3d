"""Products and customers: plain CRUD the order pipeline depends on."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from .. import schemas
from ..auth import ADMIN, SUPER_ADMIN, get_current_principal, require_roles
from ..container import Container
from .deps import get_container

product_router = APIRouter(prefix="/erp/products", tags=["products"], dependencies=[Depends(get_current_principal)])
customer_router = APIRouter(prefix="/erp/customers", tags=["customers"], dependencies=[Depends(get_current_principal)])

require_admin = require_roles(ADMIN, SUPER_ADMIN)


@product_router.get("", response_model=schemas.ProductPage)
def list_products(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    search: Optional[str] = None,
    low_stock: bool = Query(False, alias="lowStock"),
    container: Container = Depends(get_container),
):
    return container.products.find_all(page=page, page_size=page_size, search=search, low_stock=low_stock)


@product_router.post("", status_code=201, response_model=schemas.ProductOut, dependencies=[Depends(require_admin)])
def create_product(body: schemas.ProductCreate, container: Container = Depends(get_container)):
    return container.products.create(body)


@product_router.get("/{product_id}", response_model=schemas.ProductOut)
def get_product(product_id: UUID, container: Container = Depends(get_container)):
    return container.products.find_by_id(product_id)


@product_router.patch("/{product_id}", response_model=schemas.ProductOut, dependencies=[Depends(require_admin)])
def update_product(product_id: UUID, body: schemas.ProductUpdate, container: Container = Depends(get_container)):
    return container.products.update(product_id, body)


@product_router.patch("/{product_id}/stock", response_model=schemas.ProductOut, dependencies=[Depends(require_admin)])
def update_stock(product_id: UUID, body: schemas.StockUpdate, container: Container = Depends(get_container)):
    return container.products.update_stock(product_id, body.quantity, body.operation)


@product_router.delete("/{product_id}", response_model=schemas.MessageOut, dependencies=[Depends(require_admin)])
def delete_product(product_id: UUID, container: Container = Depends(get_container)):
    return container.products.delete(product_id)


@customer_router.get("", response_model=schemas.CustomerPage)
def list_customers(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    container: Container = Depends(get_container),
):
    return container.customers.find_all(page=page, page_size=page_size)


@customer_router.post("", status_code=201, response_model=schemas.CustomerOut)
def create_customer(body: schemas.CustomerCreate, container: Container = Depends(get_container)):
    return container.customers.create(body)


@customer_router.get("/{customer_id}", response_model=schemas.CustomerOut)
def get_customer(customer_id: UUID, container: Container = Depends(get_container)):
    return container.customers.find_by_id(customer_id)


@customer_router.patch("/{customer_id}", response_model=schemas.CustomerOut)
def update_customer(customer_id: UUID, body: schemas.CustomerUpdate, container: Container = Depends(get_container)):
    return container.customers.update(customer_id, body)


@customer_router.delete("/{customer_id}", response_model=schemas.MessageOut)
def delete_customer(customer_id: UUID, container: Container = Depends(get_container)):
    return container.customers.delete(customer_id)
