from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from .. import models, schemas
from ..database import session_scope
from ..errors import InvalidState, NotFound
from ..models import OrderStatus
from ..sequences import ORDER_SEQUENCE, next_number
from ..utils.logging import get_logger

logger = get_logger(__name__)

CENT = Decimal("0.01")

PROCESS_ORDER = "process-order"


def money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def order_job_id(order_id) -> str:
    return f"order-{order_id}"


def load_order(db: Session, order_id, lock: bool = False):
    query = db.query(models.SalesOrder).options(
        selectinload(models.SalesOrder.items).selectinload(models.OrderItem.product),
        selectinload(models.SalesOrder.customer),
    )
    if lock:
        query = query.with_for_update()
    return query.filter(models.SalesOrder.id == order_id).one_or_none()


class OrderService:
    def __init__(self, session_factory, queue):
        self.session_factory = session_factory
        self.queue = queue

    def _get(self, db: Session, order_id, lock: bool = False) -> models.SalesOrder:
        order = load_order(db, order_id, lock=lock)
        if order is None:
            raise NotFound(f"Order with ID {order_id} not found")
        return order

    def create(self, user_id: str, data: schemas.OrderCreate) -> schemas.SalesOrderOut:
        """Create a DRAFT order, pricing every line from the current catalogue.

        Unit prices are snapshotted onto the items and the totals are frozen;
        stock is not checked until the order is processed.
        """
        with session_scope(self.session_factory) as db:
            customer = db.get(models.Customer, data.customer_id)
            if customer is None:
                raise NotFound(f"Customer with ID {data.customer_id} not found")

            product_ids = {item.product_id for item in data.items}
            products = db.query(models.Product).filter(models.Product.id.in_(product_ids)).all()
            if len(products) != len(product_ids):
                raise NotFound("One or more products not found")
            product_map = {p.id: p for p in products}

            subtotal = Decimal("0")
            items = []
            for position, item in enumerate(data.items):
                product = product_map[item.product_id]
                item_total = money(product.price * item.quantity - item.discount)
                subtotal += item_total
                items.append(models.OrderItem(
                    product=product,
                    position=position,
                    quantity=item.quantity,
                    unit_price=product.price,
                    discount=money(item.discount),
                    total=item_total,
                ))

            # stored as Numeric(5, 2); tax is computed from the rate as persisted
            tax_rate = money(data.tax_rate)
            tax_amount = money(subtotal * tax_rate / 100)
            discount = money(data.discount)

            order = models.SalesOrder(
                order_number=next_number(db, ORDER_SEQUENCE),
                customer=customer,
                user_id=user_id,
                status=OrderStatus.DRAFT.value,
                subtotal=money(subtotal),
                tax_rate=tax_rate,
                tax_amount=tax_amount,
                discount=discount,
                total=money(subtotal + tax_amount - discount),
                notes=data.notes,
                items=items,
            )
            db.add(order)
            db.flush()
            logger.info("Order created", order_id=str(order.id), order_number=order.order_number, total=str(order.total))
            return schemas.SalesOrderOut.model_validate(order)

    def find_all(
        self,
        page: int = 1,
        page_size: int = 10,
        status: Optional[OrderStatus] = None,
        customer_id: Optional[UUID] = None,
    ) -> schemas.OrderPage:
        with session_scope(self.session_factory) as db:
            query = db.query(models.SalesOrder)
            if status:
                query = query.filter(models.SalesOrder.status == status.value)
            if customer_id:
                query = query.filter(models.SalesOrder.customer_id == customer_id)
            total = query.count()
            orders = (
                query.options(
                    selectinload(models.SalesOrder.customer),
                    selectinload(models.SalesOrder.items).selectinload(models.OrderItem.product),
                )
                .order_by(models.SalesOrder.order_date.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )
            return schemas.OrderPage(
                data=[schemas.SalesOrderOut.model_validate(o) for o in orders],
                meta=schemas.page_meta(total, page, page_size),
            )

    def find_by_id(self, order_id) -> schemas.SalesOrderDetail:
        with session_scope(self.session_factory) as db:
            return schemas.SalesOrderDetail.model_validate(self._get(db, order_id))

    def update_status(self, order_id, status: OrderStatus) -> schemas.SalesOrderOut:
        """Manual override; no transition rules apply."""
        with session_scope(self.session_factory) as db:
            order = self._get(db, order_id, lock=True)
            previous = order.status
            order.status = status.value
            db.flush()
            logger.info("Order status overridden", order_id=str(order_id), previous=previous, status=status.value)
            return schemas.SalesOrderOut.model_validate(order)

    def confirm_order(self, order_id, user_id: str) -> schemas.ConfirmOrderOut:
        """Confirm a DRAFT order and queue it for processing.

        The status change and the job are committed together, so a confirmed
        order always has exactly one job keyed ``order-<id>``.
        """
        with session_scope(self.session_factory) as db:
            order = self._get(db, order_id, lock=True)
            if order.status != OrderStatus.DRAFT:
                raise InvalidState("Can only confirm draft orders")

            order.status = OrderStatus.CONFIRMED.value
            job = self.queue.add(
                db,
                PROCESS_ORDER,
                {"orderId": str(order.id), "userId": user_id},
                job_id=order_job_id(order.id),
                priority=1,
            )
            db.flush()
            logger.info("Order confirmed", order_id=str(order.id), order_number=order.order_number, job_id=job.id)
            return schemas.ConfirmOrderOut(
                **schemas.SalesOrderOut.model_validate(order).model_dump(),
                job_id=job.id,
                message="Order confirmed and queued for processing",
            )

    def get_processing_status(self, order_id) -> schemas.ProcessingStatusOut:
        with session_scope(self.session_factory) as db:
            order = db.get(models.SalesOrder, order_id)
            if order is None:
                raise NotFound(f"Order with ID {order_id} not found")
            order_status = order.status

        job = self.queue.get_job(order_job_id(order_id))
        return schemas.ProcessingStatusOut(
            order_id=order_id,
            order_status=order_status,
            processing_status=job.state if job else "not_started",
            progress=job.progress if job else 0,
        )

    def delete(self, order_id) -> schemas.MessageOut:
        with session_scope(self.session_factory) as db:
            order = self._get(db, order_id, lock=True)
            if order.status != OrderStatus.DRAFT:
                raise InvalidState("Can only delete draft orders")
            db.delete(order)
            logger.info("Order deleted", order_id=str(order_id), order_number=order.order_number)
        return schemas.MessageOut(message="Order deleted successfully")
