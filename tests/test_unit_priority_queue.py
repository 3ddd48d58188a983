from datetime import datetime, timedelta, timezone

from growth_engine.jobs.queue import PriorityDelayQueue
from growth_engine.jobs.rollup_job import KPIRollupJob
from growth_engine.jobs.worker_rollup import due_rollup_jobs
from growth_engine.models.db.enums import KPIPeriod

DAY = datetime(2025, 3, 5, tzinfo=timezone.utc)


def test_priority_queue_ordering():
    q = PriorityDelayQueue()
    job_low = KPIRollupJob(brand_id="b1", period=KPIPeriod.DAILY, bucket_start=DAY, priority="low")
    job_high = KPIRollupJob(brand_id="b2", period=KPIPeriod.DAILY, bucket_start=DAY, priority="high")
    job_normal = KPIRollupJob(brand_id="b3", period=KPIPeriod.DAILY, bucket_start=DAY, priority="normal")
    q.enqueue(job_low, priority="low")
    q.enqueue(job_high, priority="high")
    q.enqueue(job_normal, priority="normal")
    snap = q.snapshot()
    assert snap.get("ready") == 3
    assert snap.get("depth") == 3
    assert [q.dequeue(block=False).brand_id for _ in range(3)] == ["b2", "b3", "b1"]


def test_pending_duplicate_jobs_are_dropped():
    q = PriorityDelayQueue()
    job = KPIRollupJob(brand_id="b1", period=KPIPeriod.HOURLY, bucket_start=DAY)
    assert q.enqueue(job) is not None
    assert q.enqueue(KPIRollupJob(brand_id="b1", period=KPIPeriod.HOURLY, bucket_start=DAY)) is None
    assert q.depth() == 1

    assert q.dequeue(block=False) is job
    # once taken, the same rollup may be queued again
    assert q.enqueue(KPIRollupJob(brand_id="b1", period=KPIPeriod.HOURLY, bucket_start=DAY)) is not None


def test_delayed_job_not_ready_immediately():
    q = PriorityDelayQueue()
    q.enqueue(KPIRollupJob(brand_id="b1", period=KPIPeriod.DAILY, bucket_start=DAY), delay_seconds=60)
    assert q.dequeue(block=False) is None
    assert q.snapshot()["scheduled"] == 1


def test_first_scheduler_run_owes_every_period():
    now = DAY + timedelta(hours=10, minutes=5)
    jobs = due_rollup_jobs(["b1", "b2"], now, {})
    assert len(jobs) == 2 * len(KPIPeriod)
    assert all(job.priority == "low" for job in jobs)


def test_due_jobs_respect_cadence_and_close_previous_bucket():
    last = DAY + timedelta(hours=10, minutes=5)
    last_run = {period: last for period in KPIPeriod}

    assert due_rollup_jobs(["b1"], last + timedelta(minutes=10), last_run) == []

    after_hour = due_rollup_jobs(["b1"], last + timedelta(hours=1), last_run)
    periods = sorted(job.period.value for job in after_hour)
    assert periods == ["hourly", "hourly", "realtime", "realtime"]
    hourly_starts = sorted(job.bucket_start for job in after_hour if job.period == KPIPeriod.HOURLY)
    assert hourly_starts == [DAY + timedelta(hours=10), DAY + timedelta(hours=11)]
