from datetime import datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from .models import InvoiceStatus, OrderStatus


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------
class OrderItemCreate(ApiModel):
    product_id: UUID
    quantity: int = Field(ge=1)
    discount: Decimal = Field(default=Decimal("0"), ge=0)


class OrderCreate(ApiModel):
    customer_id: UUID
    items: List[OrderItemCreate] = Field(min_length=1)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = None


class OrderStatusUpdate(ApiModel):
    status: OrderStatus


class InvoiceStatusUpdate(ApiModel):
    status: InvoiceStatus


class ProductCreate(ApiModel):
    sku: str
    name: str
    description: Optional[str] = None
    price: Decimal = Field(ge=0)
    cost: Optional[Decimal] = Field(default=None, ge=0)
    stock_quantity: int = Field(default=0, ge=0)
    low_stock_threshold: int = Field(default=10, ge=0)


class ProductUpdate(ApiModel):
    """Catalogue fields only; stock changes go through the stock endpoint."""

    sku: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    cost: Optional[Decimal] = Field(default=None, ge=0)
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class StockUpdate(ApiModel):
    quantity: int = Field(ge=0)
    operation: Literal["add", "subtract", "set"]


class CustomerCreate(ApiModel):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    company: Optional[str] = None
    address: Optional[str] = None


class CustomerUpdate(ApiModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    address: Optional[str] = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class CustomerOut(ApiModel):
    id: UUID
    name: str
    email: str
    phone: Optional[str] = None
    company: Optional[str] = None
    address: Optional[str] = None


class ProductOut(ApiModel):
    id: UUID
    sku: str
    name: str
    description: Optional[str] = None
    price: Decimal
    cost: Optional[Decimal] = None
    stock_quantity: int
    low_stock_threshold: int
    is_active: bool


class OrderItemOut(ApiModel):
    id: int
    product_id: UUID
    quantity: int
    unit_price: Decimal
    discount: Decimal
    total: Decimal
    product: Optional[ProductOut] = None


class InvoiceSummary(ApiModel):
    id: UUID
    invoice_number: str
    status: InvoiceStatus
    total: Decimal
    due_date: datetime


class SalesOrderOut(ApiModel):
    id: UUID
    order_number: str
    customer_id: UUID
    user_id: Optional[str] = None
    status: OrderStatus
    order_date: datetime
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    discount: Decimal
    total: Decimal
    notes: Optional[str] = None
    customer: Optional[CustomerOut] = None
    items: List[OrderItemOut] = []


class SalesOrderDetail(SalesOrderOut):
    invoice: Optional[InvoiceSummary] = None


class ConfirmOrderOut(SalesOrderOut):
    job_id: str
    message: str


class ProcessingStatusOut(ApiModel):
    order_id: UUID
    order_status: OrderStatus
    processing_status: str
    progress: int


class OrderRef(ApiModel):
    id: UUID
    order_number: str


class InvoiceOut(ApiModel):
    id: UUID
    invoice_number: str
    customer_id: UUID
    order_id: Optional[UUID] = None
    status: InvoiceStatus
    subtotal: Decimal
    tax_amount: Decimal
    discount: Decimal
    total: Decimal
    issue_date: datetime
    due_date: datetime
    paid_date: Optional[datetime] = None
    customer: Optional[CustomerOut] = None
    order: Optional[OrderRef] = None


class InvoiceStats(ApiModel):
    total: int
    draft: int
    sent: int
    paid: int
    overdue: int
    cancelled: int
    total_revenue: Decimal


class SendResult(ApiModel):
    success: bool
    message: str


class MessageOut(ApiModel):
    message: str


class NotificationOut(ApiModel):
    id: int
    type: str
    title: str
    message: str
    user_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("details", "metadata"))
    created_at: datetime


class PageMeta(ApiModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class OrderPage(ApiModel):
    data: List[SalesOrderOut]
    meta: PageMeta


class InvoicePage(ApiModel):
    data: List[InvoiceOut]
    meta: PageMeta


class ProductPage(ApiModel):
    data: List[ProductOut]
    meta: PageMeta


class CustomerPage(ApiModel):
    data: List[CustomerOut]
    meta: PageMeta


def page_meta(total: int, page: int, page_size: int) -> PageMeta:
    return PageMeta(
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )
