"""Durable job queue backed by the ``jobs`` table.

A job id is chosen by the producer (``order-<orderId>``); while a job with
that id is live, adding it again returns the existing job, so one order can
never be processed twice concurrently.

A claimed job holds a lease (``locked_until``) that progress updates renew.
An active job whose lease has run out belongs to a worker that died; the
next claim puts it back in line, counting the lost run as an attempt.
"""

from datetime import timedelta

from sqlalchemy.orm import Session

from . import models
from .database import session_scope
from .models import JobState, utcnow
from .utils.logging import get_logger

logger = get_logger(__name__)

ORDER_PROCESSING = "order-processing"

LIVE_STATES = (JobState.WAITING.value, JobState.DELAYED.value, JobState.ACTIVE.value)
RUNNABLE_STATES = (JobState.WAITING.value, JobState.DELAYED.value)

STALLED_REASON = "Job stalled: worker lease expired"


class JobQueue:
    def __init__(
        self,
        session_factory,
        name: str,
        attempts: int = 3,
        backoff_delay_ms: int = 2000,
        stall_timeout_sec: float = 300.0,
    ):
        self.session_factory = session_factory
        self.name = name
        self.attempts = attempts
        self.backoff_delay_ms = backoff_delay_ms
        self.stall_timeout = timedelta(seconds=stall_timeout_sec)

    def _is_live(self, job: models.Job, now) -> bool:
        if job.state not in LIVE_STATES:
            return False
        if job.state == JobState.ACTIVE.value and job.locked_until is not None and job.locked_until < now:
            return False
        return True

    def add(self, db: Session, name: str, payload: dict, job_id: str, priority: int = 0) -> models.Job:
        """Enqueue inside the caller's transaction."""
        now = utcnow()
        job = db.query(models.Job).filter(models.Job.id == job_id).with_for_update().one_or_none()
        if job is not None and self._is_live(job, now):
            logger.warning("Job already queued", job_id=job_id, state=job.state)
            return job

        if job is None:
            job = models.Job(id=job_id, queue=self.name)
            db.add(job)
        elif job.state == JobState.ACTIVE.value:
            logger.warning("Re-arming stalled job", job_id=job_id, locked_until=job.locked_until)
        job.name = name
        job.payload = payload
        job.priority = priority
        job.state = JobState.WAITING.value
        job.progress = 0
        job.attempts_made = 0
        job.max_attempts = self.attempts
        job.backoff_delay_ms = self.backoff_delay_ms
        job.run_at = now
        job.result = None
        job.failed_reason = None
        job.created_at = now
        job.started_at = None
        job.locked_until = None
        job.finished_at = None
        db.flush()
        logger.info("Job queued", queue=self.name, job_id=job_id, priority=priority)
        return job

    def get_job(self, job_id: str):
        with session_scope(self.session_factory) as db:
            return db.get(models.Job, job_id)

    def update_progress(self, job_id: str, progress: int):
        """Record progress and renew the lease of an active job."""
        with session_scope(self.session_factory) as db:
            db.query(models.Job).filter(models.Job.id == job_id).update(
                {"progress": progress, "locked_until": utcnow() + self.stall_timeout},
                synchronize_session=False,
            )

    def recover_stalled(self, db: Session, now) -> int:
        """Requeue active jobs whose lease expired, or fail them once attempts are spent."""
        stalled = (
            db.query(models.Job)
            .filter(
                models.Job.queue == self.name,
                models.Job.state == JobState.ACTIVE.value,
                models.Job.locked_until < now,
            )
            .with_for_update(skip_locked=True)
            .all()
        )
        for job in stalled:
            job.failed_reason = STALLED_REASON
            job.locked_until = None
            if job.attempts_made < job.max_attempts:
                job.state = JobState.DELAYED.value
                job.run_at = now
                logger.warning("Stalled job requeued", job_id=job.id, attempt=job.attempts_made)
            else:
                job.state = JobState.FAILED.value
                job.finished_at = now
                logger.error("Stalled job failed permanently", job_id=job.id, attempts=job.attempts_made)
        db.flush()
        return len(stalled)

    def claim_next(self):
        """Move the next runnable job to ``active`` and return it, or ``None``."""
        now = utcnow()
        with session_scope(self.session_factory) as db:
            self.recover_stalled(db, now)
            job = (
                db.query(models.Job)
                .filter(
                    models.Job.queue == self.name,
                    models.Job.state.in_(RUNNABLE_STATES),
                    models.Job.run_at <= now,
                )
                .order_by(models.Job.priority, models.Job.run_at, models.Job.created_at)
                .with_for_update(skip_locked=True)
                .first()
            )
            if job is None:
                return None

            # compare-and-set; a concurrent worker may have claimed it first
            claimed = (
                db.query(models.Job)
                .filter(models.Job.id == job.id, models.Job.state.in_(RUNNABLE_STATES))
                .update(
                    {
                        "state": JobState.ACTIVE.value,
                        "attempts_made": models.Job.attempts_made + 1,
                        "progress": 0,
                        "started_at": now,
                        "locked_until": now + self.stall_timeout,
                    },
                    synchronize_session=False,
                )
            )
            if claimed != 1:
                return None
            db.refresh(job)
            return job

    def complete(self, job_id: str, result: dict):
        with session_scope(self.session_factory) as db:
            job = db.get(models.Job, job_id)
            job.state = JobState.COMPLETED.value
            job.result = result
            job.locked_until = None
            job.finished_at = utcnow()
            return job

    def fail(self, job_id: str, error: str):
        """Schedule a retry with exponential backoff, or mark the job failed."""
        with session_scope(self.session_factory) as db:
            job = db.get(models.Job, job_id)
            job.failed_reason = error
            job.locked_until = None
            if job.attempts_made < job.max_attempts:
                delay = self.backoff_for(job.attempts_made, job.backoff_delay_ms)
                job.state = JobState.DELAYED.value
                job.run_at = utcnow() + delay
                logger.warning(
                    "Job attempt failed, retrying",
                    job_id=job_id,
                    attempt=job.attempts_made,
                    retry_in=delay.total_seconds(),
                    error=error,
                )
            else:
                job.state = JobState.FAILED.value
                job.finished_at = utcnow()
                logger.error("Job failed permanently", job_id=job_id, attempts=job.attempts_made, error=error)
            return job

    @staticmethod
    def backoff_for(attempts_made: int, base_delay_ms: int) -> timedelta:
        return timedelta(milliseconds=base_delay_ms * 2 ** (attempts_made - 1))
