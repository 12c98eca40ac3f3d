"""Order fulfilment: the handler the worker runs for ``process-order`` jobs."""

from datetime import timedelta
from uuid import UUID

from . import mail, models
from .database import session_scope
from .errors import InsufficientStock, NotFound
from .models import InvoiceStatus, OrderStatus, utcnow
from .sequences import INVOICE_SEQUENCE, next_number
from .services.orders import load_order
from .utils.logging import get_logger

logger = get_logger(__name__)

INVOICE_DUE_DAYS = 30


class OrderProcessor:
    def __init__(self, session_factory, queue, mailer, notifications):
        self.session_factory = session_factory
        self.queue = queue
        self.mailer = mailer
        self.notifications = notifications

    def process(self, job) -> dict:
        order_id = UUID(job.payload["orderId"])
        user_id = job.payload.get("userId")
        logger.info("Processing order", order_id=str(order_id), job_id=job.id, attempt=job.attempts_made)
        try:
            return self._process(job, order_id, user_id)
        except Exception as e:
            logger.error("Failed to process order", order_id=str(order_id), job_id=job.id, error=str(e))
            raise

    def _process(self, job, order_id: UUID, user_id) -> dict:
        with session_scope(self.session_factory) as db:
            order = load_order(db, order_id)
            if order is None:
                raise NotFound(f"Order {order_id} not found")
            invoice = db.query(models.Invoice).filter(models.Invoice.order_id == order_id).one_or_none()

        if order.status == OrderStatus.PROCESSING and invoice is not None:
            return self.resume(job, order, invoice)

        if order.status != OrderStatus.CONFIRMED:
            logger.warning("Order is not in CONFIRMED status, skipping", order_id=str(order_id), status=order.status)
            return {"success": False}

        self.queue.update_progress(job.id, 10)
        self.validate_stock(order)

        self.queue.update_progress(job.id, 30)
        fulfilled = self.fulfil(order)
        if fulfilled is None:
            return {"success": False}
        invoice, low_stock = fulfilled
        logger.info("Invoice created", invoice_number=invoice.invoice_number, order_number=order.order_number)

        self.queue.update_progress(job.id, 60)
        for product_id, name, stock, threshold in low_stock:
            self.notifications.low_stock(product_id, name, stock, threshold)

        self.queue.update_progress(job.id, 80)
        self.send_confirmation(order)

        self.queue.update_progress(job.id, 90)
        self.notifications.order_confirmed(order.id, order.order_number, user_id)
        self.notifications.invoice_generated(invoice.id, invoice.invoice_number, user_id)

        self.mark_shipped(order)
        self.queue.update_progress(job.id, 100)
        logger.info("Order processed successfully", order_number=order.order_number, invoice_id=str(invoice.id))
        return {"success": True, "invoiceId": str(invoice.id)}

    def resume(self, job, order: models.SalesOrder, invoice: models.Invoice) -> dict:
        """Finish an order whose fulfilment committed but which never reached SHIPPED.

        Stock and invoice are already in place, so only the final transition
        is retried; email and notifications are not retried.
        """
        logger.warning("Resuming fulfilled order", order_number=order.order_number, invoice_number=invoice.invoice_number)
        self.queue.update_progress(job.id, 90)
        self.mark_shipped(order)
        self.queue.update_progress(job.id, 100)
        return {"success": True, "invoiceId": str(invoice.id), "resumed": True}

    @staticmethod
    def validate_stock(order: models.SalesOrder):
        for item in order.items:
            if item.product.stock_quantity < item.quantity:
                raise InsufficientStock(item.product.name, item.quantity, item.product.stock_quantity)

    def fulfil(self, order: models.SalesOrder):
        """Deduct stock, log it, move to PROCESSING and raise the invoice in one transaction.

        Rows are re-read under lock, so a concurrent order that took the
        stock since validation makes this raise ``InsufficientStock`` and
        roll everything back. Returns ``None`` when the order left
        CONFIRMED in the meantime.
        """
        with session_scope(self.session_factory) as db:
            locked = (
                db.query(models.SalesOrder)
                .filter(models.SalesOrder.id == order.id)
                .with_for_update()
                .one_or_none()
            )
            if locked is None:
                raise NotFound(f"Order {order.id} not found")
            if locked.status != OrderStatus.CONFIRMED:
                logger.warning("Order left CONFIRMED before fulfilment", order_id=str(order.id), status=locked.status)
                return None

            product_ids = sorted({item.product_id for item in order.items})
            products = {
                p.id: p
                for p in db.query(models.Product)
                .filter(models.Product.id.in_(product_ids))
                .order_by(models.Product.id)
                .with_for_update()
                .all()
            }

            low_stock = []
            for item in order.items:
                product = products[item.product_id]
                if product.stock_quantity < item.quantity:
                    raise InsufficientStock(product.name, item.quantity, product.stock_quantity)
                product.stock_quantity -= item.quantity
                db.add(models.InventoryLog(
                    product_id=product.id,
                    quantity_change=-item.quantity,
                    reason="Sale",
                    reference=order.order_number,
                ))
                if product.stock_quantity <= product.low_stock_threshold:
                    low_stock.append((product.id, product.name, product.stock_quantity, product.low_stock_threshold))

            locked.status = OrderStatus.PROCESSING.value

            issue_date = utcnow()
            invoice = models.Invoice(
                invoice_number=next_number(db, INVOICE_SEQUENCE),
                customer_id=order.customer_id,
                order_id=order.id,
                subtotal=order.subtotal,
                tax_amount=order.tax_amount,
                discount=order.discount,
                total=order.total,
                status=InvoiceStatus.SENT.value,
                issue_date=issue_date,
                due_date=issue_date + timedelta(days=INVOICE_DUE_DAYS),
            )
            db.add(invoice)
            db.flush()
            return invoice, low_stock

    def send_confirmation(self, order: models.SalesOrder):
        """Email the customer; a failed send is logged and does not fail the job."""
        message = mail.order_confirmation(
            order_number=order.order_number,
            customer_name=order.customer.name,
            customer_email=order.customer.email,
            total=order.total,
            items=[
                mail.LineItem(name=item.product.name, quantity=item.quantity, price=item.unit_price)
                for item in order.items
            ],
        )
        outcome = self.mailer.send(message)
        if not outcome.success:
            logger.warning("Order confirmation email not delivered", order_number=order.order_number, error=outcome.error)

    def mark_shipped(self, order: models.SalesOrder):
        with session_scope(self.session_factory) as db:
            updated = (
                db.query(models.SalesOrder)
                .filter(
                    models.SalesOrder.id == order.id,
                    models.SalesOrder.status == OrderStatus.PROCESSING.value,
                )
                .update({"status": OrderStatus.SHIPPED.value}, synchronize_session=False)
            )
        if updated != 1:
            logger.warning("Order status changed during processing, not marking shipped", order_id=str(order.id))
