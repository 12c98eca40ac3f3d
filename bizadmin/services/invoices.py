from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from .. import mail, models, schemas
from ..database import session_scope
from ..errors import InvalidState, NotFound
from ..models import InvoiceStatus, utcnow
from ..utils.logging import get_logger

logger = get_logger(__name__)


class InvoiceService:
    def __init__(self, session_factory, mailer):
        self.session_factory = session_factory
        self.mailer = mailer

    def _get(self, db: Session, invoice_id) -> models.Invoice:
        invoice = (
            db.query(models.Invoice)
            .options(selectinload(models.Invoice.customer), selectinload(models.Invoice.order))
            .filter(models.Invoice.id == invoice_id)
            .one_or_none()
        )
        if invoice is None:
            raise NotFound(f"Invoice with ID {invoice_id} not found")
        return invoice

    def find_all(
        self,
        page: int = 1,
        page_size: int = 10,
        status: Optional[InvoiceStatus] = None,
        customer_id: Optional[UUID] = None,
    ) -> schemas.InvoicePage:
        with session_scope(self.session_factory) as db:
            query = db.query(models.Invoice)
            if status:
                query = query.filter(models.Invoice.status == status.value)
            if customer_id:
                query = query.filter(models.Invoice.customer_id == customer_id)
            total = query.count()
            invoices = (
                query.options(selectinload(models.Invoice.customer), selectinload(models.Invoice.order))
                .order_by(models.Invoice.issue_date.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )
            return schemas.InvoicePage(
                data=[schemas.InvoiceOut.model_validate(i) for i in invoices],
                meta=schemas.page_meta(total, page, page_size),
            )

    def find_by_id(self, invoice_id) -> schemas.InvoiceOut:
        with session_scope(self.session_factory) as db:
            return schemas.InvoiceOut.model_validate(self._get(db, invoice_id))

    def update_status(self, invoice_id, status: InvoiceStatus) -> schemas.InvoiceOut:
        """Set any status; PAID also stamps the paid date."""
        with session_scope(self.session_factory) as db:
            invoice = self._get(db, invoice_id)
            invoice.status = status.value
            if status == InvoiceStatus.PAID:
                invoice.paid_date = utcnow()
            db.flush()
            logger.info("Invoice status updated", invoice_number=invoice.invoice_number, status=status.value)
            return schemas.InvoiceOut.model_validate(invoice)

    def send_invoice(self, invoice_id) -> schemas.SendResult:
        with session_scope(self.session_factory) as db:
            invoice = self._get(db, invoice_id)
            if invoice.status == InvoiceStatus.PAID:
                raise InvalidState("Cannot send a paid invoice")

            outcome = self.mailer.send(mail.invoice_email(
                invoice_number=invoice.invoice_number,
                customer_name=invoice.customer.name,
                customer_email=invoice.customer.email,
                total=invoice.total,
                due_date=invoice.due_date,
            ))
            if not outcome.success:
                return schemas.SendResult(
                    success=False,
                    message=f"Failed to send invoice {invoice.invoice_number}: {outcome.error}",
                )

            if invoice.status == InvoiceStatus.DRAFT:
                invoice.status = InvoiceStatus.SENT.value
            return schemas.SendResult(
                success=True,
                message=f"Invoice {invoice.invoice_number} sent to {invoice.customer.email}",
            )

    def mark_overdue_invoices(self) -> int:
        """Flip every SENT invoice past its due date to OVERDUE; returns how many changed."""
        now = utcnow()
        with session_scope(self.session_factory) as db:
            marked = (
                db.query(models.Invoice)
                .filter(
                    models.Invoice.status == InvoiceStatus.SENT.value,
                    models.Invoice.due_date < now,
                )
                .update({"status": InvoiceStatus.OVERDUE.value}, synchronize_session=False)
            )
        logger.info("Overdue invoices marked", marked=marked)
        return marked

    def get_stats(self) -> schemas.InvoiceStats:
        with session_scope(self.session_factory) as db:
            counts = dict(
                db.query(models.Invoice.status, func.count(models.Invoice.id))
                .group_by(models.Invoice.status)
                .all()
            )
            revenue = (
                db.query(func.coalesce(func.sum(models.Invoice.total), 0))
                .filter(models.Invoice.status == InvoiceStatus.PAID.value)
                .scalar()
            )
        return schemas.InvoiceStats(
            total=sum(counts.values()),
            draft=counts.get(InvoiceStatus.DRAFT.value, 0),
            sent=counts.get(InvoiceStatus.SENT.value, 0),
            paid=counts.get(InvoiceStatus.PAID.value, 0),
            overdue=counts.get(InvoiceStatus.OVERDUE.value, 0),
            cancelled=counts.get(InvoiceStatus.CANCELLED.value, 0),
            total_revenue=Decimal(str(revenue)).quantize(Decimal("0.01")),
        )
