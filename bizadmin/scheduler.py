"""Cron-style scheduler for the daily ERP sweeps.

Jobs are registered explicitly at startup by ``build_scheduler``; run with
``python -m bizadmin.scheduler``.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .models import utcnow
from .utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

EVERY_DAY_AT_MIDNIGHT = "0 0 * * *"
EVERY_DAY_AT_9AM = "0 9 * * *"


def _parse_field(spec: str, low: int, high: int) -> frozenset:
    values = set()
    for part in spec.split(","):
        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            step = int(step_text)
            if step < 1:
                raise ValueError(f"Invalid cron step: {step_text}")
        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_text, end_text = part.split("-", 1)
            start, end = int(start_text), int(end_text)
        else:
            start = end = int(part)
        if start < low or end > high or start > end:
            raise ValueError(f"Cron field {spec!r} out of range {low}-{high}")
        values.update(range(start, end + 1, step))
    return frozenset(values)


class CronExpression:
    """Five-field cron expression: minute hour day-of-month month day-of-week (0 = Sunday)."""

    def __init__(self, expression: str):
        fields = expression.split()
        if len(fields) != 5:
            raise ValueError(f"Cron expression needs 5 fields: {expression!r}")
        self.expression = expression
        self.minutes = _parse_field(fields[0], 0, 59)
        self.hours = _parse_field(fields[1], 0, 23)
        self.days = _parse_field(fields[2], 1, 31)
        self.months = _parse_field(fields[3], 1, 12)
        self.weekdays = _parse_field(fields[4], 0, 6)

    def matches(self, moment: datetime) -> bool:
        return (
            moment.minute in self.minutes
            and moment.hour in self.hours
            and moment.day in self.days
            and moment.month in self.months
            and (moment.weekday() + 1) % 7 in self.weekdays
        )


@dataclass
class ScheduledJob:
    name: str
    cron: CronExpression
    handler: Callable[[], object]
    last_run: Optional[datetime] = field(default=None)


class Scheduler:
    def __init__(self):
        self.jobs: List[ScheduledJob] = []

    def register(self, expression: str, name: str, handler: Callable[[], object]) -> ScheduledJob:
        job = ScheduledJob(name=name, cron=CronExpression(expression), handler=handler)
        self.jobs.append(job)
        logger.info("Scheduled job registered", name=name, cron=expression)
        return job

    def run_pending(self, now: Optional[datetime] = None) -> List[str]:
        """Run every job whose expression matches ``now``, at most once per minute.

        Returns the names of the jobs that finished; a failing job is logged
        and does not stop the others.
        """
        now = (now or utcnow()).replace(second=0, microsecond=0)
        ran = []
        for job in self.jobs:
            if job.last_run == now or not job.cron.matches(now):
                continue
            job.last_run = now
            logger.info("Running scheduled job", name=job.name)
            try:
                job.handler()
            except Exception:
                logger.exception("Scheduled job failed", name=job.name)
                continue
            ran.append(job.name)
        return ran

    def run_forever(self, poll_sec: float = 30.0):
        while True:
            self.run_pending()
            time.sleep(poll_sec)


def handle_overdue_invoices(invoices, notifications) -> int:
    try:
        marked = invoices.mark_overdue_invoices()
    except SQLAlchemyError as e:
        logger.error("Failed to check overdue invoices", error=str(e))
        return 0
    if marked > 0:
        logger.info("Marked invoices as overdue", marked=marked)
        notifications.system("Overdue Invoices", f"{marked} invoice(s) have been marked as overdue.")
    return marked


def handle_low_stock(products) -> int:
    try:
        return products.check_low_stock()
    except SQLAlchemyError as e:
        logger.error("Failed to check low stock", error=str(e))
        return 0


def build_scheduler(container) -> Scheduler:
    scheduler = Scheduler()
    scheduler.register(
        EVERY_DAY_AT_MIDNIGHT,
        "overdue-invoices",
        lambda: handle_overdue_invoices(container.invoices, container.notifications),
    )
    scheduler.register(
        EVERY_DAY_AT_9AM,
        "low-stock-check",
        lambda: handle_low_stock(container.products),
    )
    return scheduler


def main():
    from .config import Settings
    from .container import build_container, wait_for_db

    configure_logging()
    settings = Settings.from_env()
    container = build_container(settings)
    wait_for_db(container.engine)
    logger.info("Scheduler starting")
    build_scheduler(container).run_forever(settings.scheduler_poll_sec)


if __name__ == "__main__":
    main()
