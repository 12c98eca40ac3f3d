"""Relays outbox rows to RabbitMQ.

Run with ``python -m bizadmin.outbox_publisher``. Each NEW row is published
as a persistent JSON message on the events exchange, routed by its event
type, and then marked PUBLISHED.
"""

import json
import time

import pika
from pika.exceptions import AMQPError
from sqlalchemy.exc import SQLAlchemyError

from . import models
from .database import session_scope
from .models import utcnow
from .utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def connect_rabbitmq_with_retry(url: str, exchange: str, max_wait_sec: int = 60):
    attempt = 0
    while True:
        try:
            params = pika.URLParameters(url)
            params.heartbeat = 30
            params.blocked_connection_timeout = 300
            params.connection_attempts = 5
            params.retry_delay = 2

            conn = pika.BlockingConnection(params)
            ch = conn.channel()
            ch.exchange_declare(exchange=exchange, exchange_type="direct", durable=True)
            return conn, ch
        except AMQPError as e:
            attempt += 1
            sleep = min(2 ** attempt, max_wait_sec)
            logger.warning("RabbitMQ connect failed", error=str(e), retry_in=sleep)
            time.sleep(sleep)


def publish_batch(channel, exchange: str, rows, db) -> int:
    """Publish rows in order and mark them PUBLISHED.

    A broker error propagates, rolling the batch back to NEW so the whole
    batch is retried after reconnecting (delivery is at-least-once).
    """
    published = 0
    for row in rows:
        body = {
            "event_id": str(row.event_id),
            "event_type": row.event_type,
            "occurred_at": row.occurred_at.isoformat(),
            "version": row.version,
            "payload": row.payload,
        }
        channel.basic_publish(
            exchange=exchange,
            routing_key=row.event_type,
            body=json.dumps(body).encode("utf-8"),
            properties=pika.BasicProperties(
                content_type="application/json",
                delivery_mode=2,  # persistent
            ),
        )
        row.status = "PUBLISHED"
        row.published_at = utcnow()
        published += 1
    db.flush()
    return published


def relay_once(session_factory, channel, exchange: str, batch_size: int) -> int:
    with session_scope(session_factory) as db:
        rows = (
            db.query(models.EventOutbox)
            .filter(models.EventOutbox.status == "NEW")
            .order_by(models.EventOutbox.id)
            .with_for_update(skip_locked=True)
            .limit(batch_size)
            .all()
        )
        if not rows:
            return 0
        return publish_batch(channel, exchange, rows, db)


def loop(session_factory, settings):
    conn, channel = connect_rabbitmq_with_retry(settings.rabbitmq_url, settings.events_exchange)
    logger.info("Connected to RabbitMQ", exchange=settings.events_exchange)

    while True:
        try:
            published = relay_once(session_factory, channel, settings.events_exchange, settings.outbox_batch_size)
            if published:
                logger.debug("Outbox batch published", published=published)
        except SQLAlchemyError as e:
            logger.error("Outbox loop error", error=str(e))
        except AMQPError as e:
            logger.error("Broker connection lost, reconnecting", error=str(e))
            if conn.is_open:
                try:
                    conn.close()
                except AMQPError as close_error:
                    logger.debug("Closing broken connection failed", error=str(close_error))
            conn, channel = connect_rabbitmq_with_retry(settings.rabbitmq_url, settings.events_exchange)
        time.sleep(settings.outbox_poll_sec)


def main():
    from .config import Settings
    from .container import wait_for_db
    from .database import make_engine, make_session_factory

    configure_logging()
    settings = Settings.from_env()
    engine = make_engine(settings.database_url)
    wait_for_db(engine)
    logger.info("Connected to DB")
    loop(make_session_factory(engine), settings)


if __name__ == "__main__":
    main()
