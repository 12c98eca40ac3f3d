"""Explicit wiring of the services shared by the API, the worker and the scheduler."""

import time
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from .database import make_engine, make_session_factory
from .mail import MailDispatcher, build_dispatcher
from .notifications import NotificationSink
from .processor import OrderProcessor
from .queue import ORDER_PROCESSING, JobQueue
from .services.customers import CustomerService
from .services.invoices import InvoiceService
from .services.orders import OrderService
from .services.products import ProductService
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Container:
    engine: object
    session_factory: object
    queue: JobQueue
    mailer: MailDispatcher
    notifications: NotificationSink
    orders: OrderService
    invoices: InvoiceService
    products: ProductService
    customers: CustomerService
    processor: OrderProcessor


def build_container(settings, engine=None, mailer=None) -> Container:
    engine = engine or make_engine(settings.database_url)
    session_factory = make_session_factory(engine)
    mailer = mailer or build_dispatcher(settings)
    queue = JobQueue(
        session_factory,
        ORDER_PROCESSING,
        attempts=3,
        backoff_delay_ms=2000,
        stall_timeout_sec=settings.job_stall_sec,
    )
    notifications = NotificationSink(session_factory)
    return Container(
        engine=engine,
        session_factory=session_factory,
        queue=queue,
        mailer=mailer,
        notifications=notifications,
        orders=OrderService(session_factory, queue),
        invoices=InvoiceService(session_factory, mailer),
        products=ProductService(session_factory, notifications),
        customers=CustomerService(session_factory),
        processor=OrderProcessor(session_factory, queue, mailer, notifications),
    )


def wait_for_db(engine, max_wait_sec: int = 60):
    attempt = 0
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            return
        except OperationalError as e:
            attempt += 1
            sleep = min(2 ** attempt, max_wait_sec)
            logger.warning("DB connect failed, retrying", error=str(e), retry_in=sleep)
            time.sleep(sleep)
