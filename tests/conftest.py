from datetime import timedelta
from decimal import Decimal
from itertools import count

import pytest
from fastapi.testclient import TestClient

from bizadmin import models, schemas
from bizadmin.auth import issue_token
from bizadmin.config import Settings
from bizadmin.container import build_container
from bizadmin.database import drop_db, init_db, make_engine, session_scope
from bizadmin.mail import MailDispatcher
from bizadmin.main import create_app
from bizadmin.models import utcnow


class RecordingTransport:
    """Mail transport that keeps messages in memory for assertions."""

    def __init__(self):
        self.sent = []
        self.should_fail = False

    def send(self, message):
        if self.should_fail:
            raise ConnectionRefusedError("SMTP server unavailable")
        self.sent.append(message)
        return f"<test-{len(self.sent)}@bizadmin.example.com>"


@pytest.fixture
def settings(tmp_path):
    return Settings(database_url=f"sqlite:///{tmp_path / 'test.db'}", auth_secret="test-secret-with-enough-bytes-for-hs256")


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def container(settings, transport):
    engine = make_engine(settings.database_url)
    container = build_container(settings, engine=engine, mailer=MailDispatcher(transport, settings.mail_from))
    init_db(engine, container.session_factory)
    yield container
    drop_db(engine)
    engine.dispose()


@pytest.fixture
def make_customer(container):
    seq = count(1)

    def _make(name="Acme Corp"):
        n = next(seq)
        return container.customers.create(schemas.CustomerCreate(name=name, email=f"buyer{n}@example.com"))

    return _make


@pytest.fixture
def make_product(container):
    seq = count(1)

    def _make(name="Widget", price="100.00", stock=10, threshold=0):
        n = next(seq)
        return container.products.create(schemas.ProductCreate(
            sku=f"SKU-{n:04d}",
            name=name,
            price=Decimal(price),
            stock_quantity=stock,
            low_stock_threshold=threshold,
        ))

    return _make


@pytest.fixture
def make_order(container, make_customer):
    def _make(lines, tax_rate="0", discount="0", customer=None, user_id="user-1"):
        customer = customer or make_customer()
        return container.orders.create(user_id, schemas.OrderCreate(
            customer_id=customer.id,
            items=[
                schemas.OrderItemCreate(product_id=product.id, quantity=quantity)
                for product, quantity in lines
            ],
            tax_rate=Decimal(tax_rate),
            discount=Decimal(discount),
        ))

    return _make


@pytest.fixture
def make_invoice(container, make_customer):
    seq = count(1)

    def _make(status=models.InvoiceStatus.SENT, due_in_days=30, total="50.00", customer=None):
        customer = customer or make_customer()
        issue_date = utcnow()
        with session_scope(container.session_factory) as db:
            invoice = models.Invoice(
                invoice_number=f"INV-T{next(seq):05d}",
                customer_id=customer.id,
                status=status.value,
                subtotal=Decimal(total),
                total=Decimal(total),
                issue_date=issue_date,
                due_date=issue_date + timedelta(days=due_in_days),
            )
            db.add(invoice)
        return invoice

    return _make


@pytest.fixture
def process_next(container):
    """Claim the next queued job and run the order processor on it, like the worker does."""

    def _process():
        job = container.queue.claim_next()
        assert job is not None, "no runnable job"
        return job, container.processor.process(job)

    return _process


@pytest.fixture
def client(settings, container):
    return TestClient(create_app(settings, container))


@pytest.fixture
def auth_headers(settings):
    return {"Authorization": f"Bearer {issue_token('user-1', 'ADMIN', settings.auth_secret)}"}
