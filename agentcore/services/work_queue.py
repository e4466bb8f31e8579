"""In-process delayed priority queue with a single background consumer.

Jobs become eligible once ``not_before`` has passed; eligible jobs are taken
by priority (higher first), then by ``not_before``. A failing job is retried
after ``2 ** attempts`` seconds until ``max_attempts`` runs, then dropped.

The queue lives in process memory: a multi-instance deployment needs an
external broker with lease/ack semantics instead.
"""

import asyncio
import heapq
import inspect
import itertools
import threading
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from agentcore.logging_config import get_logger

logger = get_logger("work_queue")

Handler = Callable[["Job"], Union[Any, Awaitable[Any]]]


@dataclass
class Job:
    id: str
    kind: str
    payload: dict
    priority: int
    not_before: float
    max_attempts: int
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: float = 0.0

    @property
    def not_before_at(self) -> datetime:
        return datetime.fromtimestamp(self.not_before, tz=timezone.utc)


@dataclass
class QueueCounters:
    enqueued: int = 0
    succeeded: int = 0
    retried: int = 0
    dropped: int = 0
    by_kind: Counter = field(default_factory=Counter)


def retry_delay(attempts: int) -> float:
    """Seconds to wait after the ``attempts``-th failed run."""
    return float(2**attempts)


class DelayedWorkQueue:
    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        concurrency: int = 4,
        poll_interval: float = 1.0,
        journal=None,
    ):
        self._clock = clock
        self._lock = threading.Lock()
        self._seq = itertools.count()
        self._delayed: list[tuple[float, int, Job]] = []
        self._ready: list[tuple[int, float, int, Job]] = []
        self._handlers: dict[str, Handler] = {}
        self._counters = QueueCounters()
        self._journal = journal
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._running_jobs = 0

    def register(self, kind: str, handler: Handler) -> None:
        self._handlers[kind] = handler

    def enqueue(
        self,
        kind: str,
        payload: Optional[dict] = None,
        priority: int = 5,
        not_before: Optional[Union[datetime, float]] = None,
        max_attempts: int = 3,
        delay_seconds: float = 0.0,
    ) -> str:
        """Schedule a job and return its id. Safe to call from any thread."""
        now = self._clock()
        if isinstance(not_before, datetime):
            due = not_before.timestamp()
        elif not_before is not None:
            due = float(not_before)
        else:
            due = now + delay_seconds

        job = Job(
            id=str(uuid.uuid4()),
            kind=kind,
            payload=dict(payload or {}),
            priority=priority,
            not_before=due,
            max_attempts=max(1, max_attempts),
            created_at=now,
        )
        with self._lock:
            self._push(job)
            self._counters.enqueued += 1
            self._counters.by_kind[kind] += 1

        self._journal_record(job, "pending")
        logger.debug(
            f"Job enqueued: {kind}",
            extra={"context": {"job_id": job.id, "priority": priority, "delay_seconds": round(due - now, 3)}},
        )
        self._notify()
        return job.id

    def _push(self, job: Job) -> None:
        heapq.heappush(self._delayed, (job.not_before, next(self._seq), job))

    def _promote(self, now: float) -> None:
        while self._delayed and self._delayed[0][0] <= now:
            due, seq, job = heapq.heappop(self._delayed)
            heapq.heappush(self._ready, (-job.priority, due, seq, job))

    def dequeue(self, now: Optional[float] = None) -> Optional[Job]:
        """Take the best eligible job, or None if nothing is due."""
        now = self._clock() if now is None else now
        with self._lock:
            self._promote(now)
            if not self._ready:
                return None
            _, _, _, job = heapq.heappop(self._ready)
            self._counters.by_kind[job.kind] -= 1
            return job

    def next_due_in(self, now: Optional[float] = None) -> Optional[float]:
        now = self._clock() if now is None else now
        with self._lock:
            if self._ready:
                return 0.0
            if not self._delayed:
                return None
            return max(0.0, self._delayed[0][0] - now)

    def __len__(self) -> int:
        with self._lock:
            return len(self._delayed) + len(self._ready)

    def stats(self) -> dict:
        now = self._clock()
        with self._lock:
            self._promote(now)
            return {
                "ready": len(self._ready),
                "delayed": len(self._delayed),
                "running": self._running_jobs,
                "by_kind": {kind: count for kind, count in self._counters.by_kind.items() if count > 0},
                "enqueued": self._counters.enqueued,
                "succeeded": self._counters.succeeded,
                "retried": self._counters.retried,
                "dropped": self._counters.dropped,
            }

    async def process_job(self, job: Job) -> bool:
        """Run one job through its handler. Returns True on success."""
        handler = self._handlers.get(job.kind)
        if handler is None:
            logger.error(f"No handler for job kind '{job.kind}', dropping", extra={"context": {"job_id": job.id}})
            job.last_error = "no handler"
            with self._lock:
                self._counters.dropped += 1
            self._journal_record(job, "dropped")
            return False

        job.attempts += 1
        self._journal_record(job, "running")
        started = time.monotonic()
        try:
            if inspect.iscoroutinefunction(handler):
                await handler(job)
            else:
                await asyncio.to_thread(handler, job)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            job.last_error = f"{exc.__class__.__name__}: {exc}"
            self._handle_failure(job)
            return False

        with self._lock:
            self._counters.succeeded += 1
        self._journal_record(job, "done")
        logger.info(
            f"Job done: {job.kind}",
            extra={
                "context": {
                    "job_id": job.id,
                    "attempts": job.attempts,
                    "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
                }
            },
        )
        return True

    def _handle_failure(self, job: Job) -> None:
        if job.attempts >= job.max_attempts:
            with self._lock:
                self._counters.dropped += 1
            self._journal_record(job, "dropped")
            logger.error(
                f"Job dropped after {job.attempts} attempts: {job.kind}",
                extra={"context": {"job_id": job.id, "error": job.last_error}},
            )
            return

        delay = retry_delay(job.attempts)
        job.not_before = self._clock() + delay
        with self._lock:
            self._push(job)
            self._counters.retried += 1
            self._counters.by_kind[job.kind] += 1
        self._journal_record(job, "retrying")
        logger.warning(
            f"Job failed, retrying in {delay:g}s: {job.kind}",
            extra={"context": {"job_id": job.id, "attempt": job.attempts, "error": job.last_error}},
        )
        self._notify()

    async def run_pending(self) -> int:
        """Process every job that is due right now, one at a time. Returns the count."""
        processed = 0
        while True:
            job = self.dequeue()
            if job is None:
                return processed
            await self.process_job(job)
            processed += 1

    async def run(self) -> None:
        """Worker loop: the single consumer of this queue. Runs until cancelled."""
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        slots = asyncio.Semaphore(self.concurrency)
        tasks: set[asyncio.Task] = set()
        logger.info("Work queue worker started", extra={"context": {"concurrency": self.concurrency}})

        try:
            while True:
                await slots.acquire()
                job = self.dequeue()
                if job is None:
                    slots.release()
                    await self._wait_for_work()
                    continue

                task = asyncio.create_task(self._run_in_slot(job, slots))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
        except asyncio.CancelledError:
            for task in list(tasks):
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Work queue worker stopped")
            raise
        finally:
            self._loop = None
            self._wakeup = None

    async def _run_in_slot(self, job: Job, slots: asyncio.Semaphore) -> None:
        self._running_jobs += 1
        try:
            await self.process_job(job)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"Worker failed processing job {job.id}: {exc}")
        finally:
            self._running_jobs -= 1
            slots.release()

    async def _wait_for_work(self) -> None:
        self._wakeup.clear()
        wait = self.next_due_in()
        timeout = self.poll_interval if wait is None else min(wait, self.poll_interval)
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=max(timeout, 0.01))
        except asyncio.TimeoutError:
            pass

    def _notify(self) -> None:
        loop, wakeup = self._loop, self._wakeup
        if loop is None or wakeup is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(wakeup.set)

    def _journal_record(self, job: Job, status: str) -> None:
        if self._journal is None:
            return
        try:
            self._journal.record(job, status)
        except Exception as exc:
            logger.warning(f"Job journal write failed: {exc}", extra={"context": {"job_id": job.id}})
