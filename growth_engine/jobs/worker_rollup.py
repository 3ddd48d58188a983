"""Background worker and scheduler for KPI rollups."""
from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from growth_engine import database
from growth_engine.config import KPI_SETTINGS, QUEUE_SETTINGS
from growth_engine.jobs.queue import PriorityDelayQueue
from growth_engine.jobs.rollup_job import KPIRollupJob
from growth_engine.models.db import Brand
from growth_engine.models.db.enums import KPIPeriod
from growth_engine.services.kpi_aggregator import bucket_start
from growth_engine.services.kpi_rollup import run_kpi_rollup
from growth_engine.utils import get_logger
from growth_engine.utils.time import utc_now

logger = get_logger(__name__)

# Debug instrumentation store (test visibility)
LAST_EXCEPTIONS: list[dict] = []


class RollupWorker:
    def __init__(self, queue: PriorityDelayQueue, *, poll_timeout: float = 5.0):
        self.queue = queue
        self.poll_timeout = poll_timeout
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():  # pragma: no cover
            return
        self._thread = threading.Thread(target=self._loop, name="kpi-rollup-worker", daemon=True)
        self._thread.start()
        logger.info("KPI rollup worker started")

    def stop(self) -> None:
        self._stop_event.set()
        logger.info("KPI rollup worker stop requested")

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                job = self.queue.dequeue(timeout=self.poll_timeout)
                if job is None:
                    continue
                if not isinstance(job, KPIRollupJob):
                    logger.warning("Skipping unknown job type", job_type=type(job).__name__)
                    continue
                self.process(job)
            except Exception as e:  # pragma: no cover
                logger.error("Worker loop error", error=str(e), exc_info=True)
                time.sleep(1)

    def process(self, job: KPIRollupJob) -> Optional[dict]:
        logger.info(
            "Processing KPI rollup job",
            brand_id=job.brand_id,
            period=job.period.value,
            bucket_start=job.bucket_start.isoformat(),
            correlation_id=job.correlation_id,
        )
        session: Session = database.SessionLocal()
        try:
            result = run_kpi_rollup(session, job.brand_id, job.period, job.bucket_start)
            logger.info("KPI rollup completed", brand_id=job.brand_id, snapshot_id=result.get("snapshot_id"))
            return result
        except Exception as e:
            logger.error("KPI rollup job failed", brand_id=job.brand_id, period=job.period.value, error=str(e))
            LAST_EXCEPTIONS.append({
                "brand_id": job.brand_id,
                "period": job.period.value,
                "error": str(e),
                "type": type(e).__name__,
            })
            return None
        finally:
            session.close()


def due_rollup_jobs(
    brand_ids: Iterable[str],
    now: datetime,
    last_run: dict[KPIPeriod, datetime],
) -> list[KPIRollupJob]:
    """Jobs owed at ``now`` given when each period last ran.

    A period is due once its rollup interval has elapsed. The current bucket
    is recomputed; when a bucket boundary passed since the last run, the
    bucket that just closed is recomputed as well so its final numbers land.
    """
    intervals = KPI_SETTINGS["rollup_intervals"]
    brand_list = list(brand_ids)
    jobs: list[KPIRollupJob] = []
    for period in KPIPeriod:
        previous = last_run.get(period)
        interval = timedelta(seconds=int(intervals[period.value]))  # type: ignore[index]
        if previous is not None and now - previous < interval:
            continue
        buckets = [bucket_start(period, now)]
        if previous is not None and bucket_start(period, previous) != buckets[0]:
            buckets.insert(0, bucket_start(period, previous))
        for brand_id in brand_list:
            for start in buckets:
                jobs.append(KPIRollupJob(brand_id=brand_id, period=period, bucket_start=start, priority="low"))
    return jobs


class RollupScheduler:
    """Periodically enqueues due rollups for every active brand."""

    def __init__(self, queue: PriorityDelayQueue, *, tick_seconds: Optional[float] = None):
        self.queue = queue
        self.tick_seconds = float(tick_seconds if tick_seconds is not None else QUEUE_SETTINGS["scheduler_tick_seconds"])  # type: ignore[arg-type]
        self.last_run: dict[KPIPeriod, datetime] = {}
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():  # pragma: no cover
            return
        self._thread = threading.Thread(target=self._loop, name="kpi-rollup-scheduler", daemon=True)
        self._thread.start()
        logger.info("KPI rollup scheduler started", tick_seconds=self.tick_seconds)

    def stop(self) -> None:
        self._stop_event.set()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:  # pragma: no cover
                logger.error("Scheduler tick failed", error=str(e), exc_info=True)
            self._stop_event.wait(self.tick_seconds)

    def tick(self, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        session: Session = database.SessionLocal()
        try:
            brand_ids = list(session.scalars(select(Brand.id).where(Brand.is_active.is_(True))))
        finally:
            session.close()

        jobs = due_rollup_jobs(brand_ids, now, self.last_run)
        enqueued = 0
        for job in jobs:
            if self.queue.enqueue(job, priority=job.priority) is not None:
                enqueued += 1
        for period in {job.period for job in jobs}:
            self.last_run[period] = now
        if enqueued:
            logger.info("Scheduled KPI rollups", jobs=enqueued, brands=len(brand_ids))
        return enqueued


def create_queue() -> PriorityDelayQueue:
    return PriorityDelayQueue()


__all__ = ["RollupWorker", "RollupScheduler", "due_rollup_jobs", "create_queue", "LAST_EXCEPTIONS"]
