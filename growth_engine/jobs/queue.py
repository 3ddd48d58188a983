"""In-memory priority + delay queue for background KPI rollups.

Features:
- Priority ordering (lower numeric priority value = higher priority).
- Optional delay (scheduled execution time) per job.
- Pending-job dedupe: a job whose ``key()`` is already queued is dropped.
- Capacity limits / backpressure via QUEUE_SETTINGS.
- Thread-safe with condition variable.

Two-heaps strategy:
 1. ready_heap: (priority, seq, job)
 2. scheduled_heap: (ready_at_ts, priority, seq, job)

On enqueue:
  - If ready_at <= now -> push to ready_heap else scheduled_heap.
On dequeue:
  - Promote any scheduled items whose ready_at <= now.
  - Pop highest priority from ready_heap (ties resolved by seq FIFO).
  - If nothing ready: wait until next scheduled item's ready_at or until notified.

This avoids starvation of currently-ready lower-priority items caused by a far-future
higher-priority entry which would happen with a single composite heap keyed by (ready_at, priority).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
import threading
import time
import heapq

from growth_engine.config import QUEUE_SETTINGS
from growth_engine.utils import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class QueueItem:
    job: Any
    priority_label: str
    priority_value: int
    enqueued_at: float
    ready_at: float
    seq: int
    key: Optional[str] = None


def _job_key(job: Any) -> Optional[str]:
    key_fn = getattr(job, "key", None)
    return key_fn() if callable(key_fn) else None


class PriorityDelayQueue:
    def __init__(self) -> None:
        priorities_cfg = QUEUE_SETTINGS.get("priorities", {})
        self._priority_map: dict[str, int] = priorities_cfg if isinstance(priorities_cfg, dict) else {"normal": 5}
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 1000))  # type: ignore[arg-type]
        self._max_in_memory = int(QUEUE_SETTINGS.get("max_in_memory", 5000))  # type: ignore[arg-type]
        self._lock = threading.RLock()
        self._cv = threading.Condition(self._lock)
        self._ready_heap: list[tuple[int, int, QueueItem]] = []  # (priority_value, seq, item)
        self._scheduled_heap: list[tuple[float, int, int, QueueItem]] = []  # (ready_at_ts, priority_value, seq, item)
        self._pending_keys: set[str] = set()
        self._seq_counter = 0
        self._shutdown = False

    # ----------------------------- internal helpers ----------------------------- #
    def _next_seq(self) -> int:
        self._seq_counter += 1
        return self._seq_counter

    def _promote_scheduled(self) -> None:
        now_ts = time.time()
        while self._scheduled_heap and self._scheduled_heap[0][0] <= now_ts:
            _, priority_value, seq, item = heapq.heappop(self._scheduled_heap)
            heapq.heappush(self._ready_heap, (priority_value, seq, item))

    def _await_next_ready(self, timeout: Optional[float]) -> None:
        """Wait until something may have become ready or ``timeout`` expires."""
        if self._ready_heap:
            return
        if not self._scheduled_heap:
            self._cv.wait(timeout=timeout)
            return
        wait_time = max(0.0, self._scheduled_heap[0][0] - time.time())
        if timeout is not None:
            wait_time = min(wait_time, timeout)
        if wait_time > 0:
            self._cv.wait(timeout=wait_time)

    # ----------------------------- public API ----------------------------- #
    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> Optional[QueueItem]:
        """Queue ``job``; returns None when an identical job is already pending."""
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Queue shutdown")
            if priority not in self._priority_map:
                raise ValueError(f"Unknown priority '{priority}'")
            key = _job_key(job)
            if key is not None and key in self._pending_keys:
                logger.debug("Duplicate job skipped", key=key)
                return None
            if self.depth() >= self._max_in_memory:
                raise OverflowError("Queue capacity exceeded")
            now_ts = time.time()
            ready_at_ts = now_ts + max(0.0, delay_seconds)
            item = QueueItem(
                job=job,
                priority_label=priority,
                priority_value=self._priority_map[priority],
                enqueued_at=now_ts,
                ready_at=ready_at_ts,
                seq=self._next_seq(),
                key=key,
            )
            if ready_at_ts <= now_ts:
                heapq.heappush(self._ready_heap, (item.priority_value, item.seq, item))
            else:
                heapq.heappush(self._scheduled_heap, (ready_at_ts, item.priority_value, item.seq, item))
            if key is not None:
                self._pending_keys.add(key)
            if self.depth() >= self._warn_depth:
                logger.warning("Queue depth warning", depth=self.depth())
            self._cv.notify()
            return item

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any:
        """Pop next ready job. Returns None if non-blocking and empty or timeout occurs."""
        end_time = None if timeout is None else time.time() + timeout
        with self._lock:
            while True:
                if self._shutdown and not self._ready_heap and not self._scheduled_heap:
                    return None
                self._promote_scheduled()
                if self._ready_heap:
                    _, _, item = heapq.heappop(self._ready_heap)
                    if item.key is not None:
                        self._pending_keys.discard(item.key)
                    return item.job
                if not block:
                    return None
                remaining = None if end_time is None else max(0.0, end_time - time.time())
                if end_time is not None and remaining == 0:
                    return None
                self._await_next_ready(remaining)

    def shutdown(self) -> None:
        with self._lock:
            self._shutdown = True
            self._cv.notify_all()

    # ----------------------------- test utilities ----------------------------- #
    def purge(self) -> None:
        """Remove all queued (ready + scheduled) jobs. Intended for test isolation."""
        with self._lock:
            self._ready_heap.clear()
            self._scheduled_heap.clear()
            self._pending_keys.clear()
            self._cv.notify_all()

    # ----------------------------- inspection ----------------------------- #
    def depth(self) -> int:
        return len(self._ready_heap) + len(self._scheduled_heap)

    def __len__(self) -> int:  # pragma: no cover
        return self.depth()

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "depth": self.depth(),
                "ready": len(self._ready_heap),
                "scheduled": len(self._scheduled_heap),
                "shutdown": self._shutdown,
            }


__all__ = ["PriorityDelayQueue", "QueueItem"]
