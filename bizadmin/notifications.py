from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from . import models
from .database import session_scope
from .utils.logging import get_logger

logger = get_logger(__name__)


class NotificationSink:
    """Append-only notification store.

    Each notification is written together with an outbox row so the
    outbox publisher can relay it to the message broker. Writes are
    best-effort: a failure is logged and ``None`` returned.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def create(self, type: str, title: str, message: str, user_id=None, metadata=None):
        try:
            with session_scope(self.session_factory) as db:
                notification = models.Notification(
                    type=type,
                    title=title,
                    message=message,
                    user_id=user_id,
                    details=metadata,
                )
                db.add(notification)
                db.flush()
                db.add(models.EventOutbox(
                    event_type=f"notification.{type}",
                    payload={
                        "notification_id": notification.id,
                        "type": type,
                        "title": title,
                        "message": message,
                        "user_id": user_id,
                        "metadata": metadata,
                    },
                ))
        except SQLAlchemyError as e:
            logger.error("Failed to record notification", type=type, title=title, error=str(e))
            return None

        logger.info("Notification recorded", type=type, title=title, message=message)
        return notification

    def for_user(self, user_id: str, limit: int = 20):
        """Latest notifications addressed to the user or broadcast to everyone."""
        with session_scope(self.session_factory) as db:
            return (
                db.query(models.Notification)
                .filter(or_(models.Notification.user_id == user_id, models.Notification.user_id.is_(None)))
                .order_by(models.Notification.id.desc())
                .limit(limit)
                .all()
            )

    def all(self, limit: int = 50):
        with session_scope(self.session_factory) as db:
            return db.query(models.Notification).order_by(models.Notification.id.desc()).limit(limit).all()

    def order_confirmed(self, order_id, order_number: str, user_id=None):
        return self.create(
            type="order_confirmed",
            title="Order Confirmed",
            message=f"Order {order_number} has been confirmed and is being processed.",
            user_id=user_id,
            metadata={"orderId": str(order_id), "orderNumber": order_number},
        )

    def invoice_generated(self, invoice_id, invoice_number: str, user_id=None):
        return self.create(
            type="invoice_generated",
            title="Invoice Generated",
            message=f"Invoice {invoice_number} has been generated.",
            user_id=user_id,
            metadata={"invoiceId": str(invoice_id), "invoiceNumber": invoice_number},
        )

    def low_stock(self, product_id, product_name: str, current_stock: int, threshold: int):
        return self.create(
            type="low_stock",
            title="Low Stock Alert",
            message=f"{product_name} is running low ({current_stock} remaining, threshold: {threshold}).",
            metadata={
                "productId": str(product_id),
                "productName": product_name,
                "currentStock": current_stock,
                "threshold": threshold,
            },
        )

    def system(self, title: str, message: str):
        return self.create(type="system", title=title, message=message)
