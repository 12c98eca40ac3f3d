"""Job worker: claims queued jobs and runs their registered handlers.

Run with ``python -m bizadmin.worker``; WORKER_CONCURRENCY threads each
process one job at a time.
"""

import threading
from typing import Callable, Dict

from sqlalchemy.exc import SQLAlchemyError

from .services.orders import PROCESS_ORDER
from .utils.logging import add_context, clear_context, configure_logging, get_logger

logger = get_logger(__name__)


class Worker:
    def __init__(self, queue, poll_sec: float = 1.0, concurrency: int = 1):
        self.queue = queue
        self.poll_sec = poll_sec
        self.concurrency = concurrency
        self.handlers: Dict[str, Callable] = {}
        self._stop = threading.Event()

    def register(self, name: str, handler: Callable):
        self.handlers[name] = handler
        logger.info("Job handler registered", queue=self.queue.name, name=name)

    def run_once(self) -> bool:
        """Process at most one job; returns False when the queue had nothing runnable."""
        job = self.queue.claim_next()
        if job is None:
            return False

        add_context(job_id=job.id)
        try:
            handler = self.handlers.get(job.name)
            if handler is None:
                self.queue.fail(job.id, f"No handler registered for {job.name}")
                return True
            try:
                result = handler(job)
            except Exception as e:
                self.queue.fail(job.id, str(e) or e.__class__.__name__)
                return True
            self.queue.complete(job.id, result)
            logger.info("Job completed", name=job.name, result=result)
            return True
        finally:
            clear_context()

    def _loop(self):
        while not self._stop.is_set():
            try:
                busy = self.run_once()
            except SQLAlchemyError as e:
                logger.error("Worker loop error", error=str(e))
                busy = False
            if not busy:
                self._stop.wait(self.poll_sec)

    def run_forever(self):
        threads = [
            threading.Thread(target=self._loop, name=f"worker-{n}", daemon=True)
            for n in range(self.concurrency)
        ]
        for thread in threads:
            thread.start()
        logger.info("Worker listening", queue=self.queue.name, concurrency=self.concurrency)
        try:
            while any(thread.is_alive() for thread in threads):
                for thread in threads:
                    thread.join(timeout=1.0)
        except KeyboardInterrupt:
            logger.info("Worker stopping")
            self.stop()
            for thread in threads:
                thread.join()

    def stop(self):
        self._stop.set()


def build_worker(container, settings) -> Worker:
    worker = Worker(container.queue, poll_sec=settings.worker_poll_sec, concurrency=settings.worker_concurrency)
    worker.register(PROCESS_ORDER, container.processor.process)
    return worker


def main():
    from .config import Settings
    from .container import build_container, wait_for_db

    configure_logging()
    settings = Settings.from_env()
    container = build_container(settings)
    wait_for_db(container.engine)
    logger.info("DB ready")
    build_worker(container, settings).run_forever()


if __name__ == "__main__":
    main()
