from .. import models, schemas
from ..database import session_scope
from ..errors import Conflict, NotFound
from ..utils.logging import get_logger

logger = get_logger(__name__)


class CustomerService:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _get(self, db, customer_id) -> models.Customer:
        customer = db.get(models.Customer, customer_id)
        if customer is None:
            raise NotFound(f"Customer with ID {customer_id} not found")
        return customer

    def _check_email_free(self, db, email):
        if db.query(models.Customer).filter(models.Customer.email == email).first():
            raise Conflict(f"Customer with email {email} already exists")

    def create(self, data: schemas.CustomerCreate) -> schemas.CustomerOut:
        with session_scope(self.session_factory) as db:
            self._check_email_free(db, data.email)
            customer = models.Customer(**data.model_dump())
            db.add(customer)
            db.flush()
            return schemas.CustomerOut.model_validate(customer)

    def find_all(self, page: int = 1, page_size: int = 10) -> schemas.CustomerPage:
        with session_scope(self.session_factory) as db:
            query = db.query(models.Customer)
            total = query.count()
            customers = query.order_by(models.Customer.name).offset((page - 1) * page_size).limit(page_size).all()
            return schemas.CustomerPage(
                data=[schemas.CustomerOut.model_validate(c) for c in customers],
                meta=schemas.page_meta(total, page, page_size),
            )

    def find_by_id(self, customer_id) -> schemas.CustomerOut:
        with session_scope(self.session_factory) as db:
            return schemas.CustomerOut.model_validate(self._get(db, customer_id))

    def update(self, customer_id, data: schemas.CustomerUpdate) -> schemas.CustomerOut:
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        with session_scope(self.session_factory) as db:
            customer = self._get(db, customer_id)
            if "email" in changes and changes["email"] != customer.email:
                self._check_email_free(db, changes["email"])
            for field, value in changes.items():
                setattr(customer, field, value)
            db.flush()
            return schemas.CustomerOut.model_validate(customer)

    def delete(self, customer_id) -> schemas.MessageOut:
        """Remove a customer that has no orders or invoices on record."""
        with session_scope(self.session_factory) as db:
            customer = self._get(db, customer_id)
            has_orders = db.query(models.SalesOrder.id).filter(models.SalesOrder.customer_id == customer.id).first()
            has_invoices = db.query(models.Invoice.id).filter(models.Invoice.customer_id == customer.id).first()
            if has_orders or has_invoices:
                raise Conflict("Customer has orders or invoices and cannot be deleted")
            db.delete(customer)
            logger.info("Customer deleted", customer_id=str(customer_id))
        return schemas.MessageOut(message="Customer deleted successfully")
