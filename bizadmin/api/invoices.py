from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from .. import schemas
from ..auth import get_current_principal
from ..container import Container
from ..models import InvoiceStatus
from .deps import get_container

router = APIRouter(prefix="/erp/invoices", tags=["invoices"], dependencies=[Depends(get_current_principal)])


@router.get("", response_model=schemas.InvoicePage)
def list_invoices(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
    status: Optional[InvoiceStatus] = None,
    customer_id: Optional[UUID] = Query(None, alias="customerId"),
    container: Container = Depends(get_container),
):
    return container.invoices.find_all(page=page, page_size=page_size, status=status, customer_id=customer_id)


@router.get("/stats", response_model=schemas.InvoiceStats)
def get_invoice_stats(container: Container = Depends(get_container)):
    return container.invoices.get_stats()


@router.get("/{invoice_id}", response_model=schemas.InvoiceOut)
def get_invoice(invoice_id: UUID, container: Container = Depends(get_container)):
    return container.invoices.find_by_id(invoice_id)


@router.patch("/{invoice_id}/status", response_model=schemas.InvoiceOut)
def update_invoice_status(
    invoice_id: UUID,
    body: schemas.InvoiceStatusUpdate,
    container: Container = Depends(get_container),
):
    return container.invoices.update_status(invoice_id, body.status)


@router.post("/{invoice_id}/send", response_model=schemas.SendResult)
def send_invoice(invoice_id: UUID, container: Container = Depends(get_container)):
    return container.invoices.send_invoice(invoice_id)
