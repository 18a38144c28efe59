"""Record and model-call queues that pace enrichment work."""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from app.config.settings import settings
from app.services.log_sanitizer import sanitize_log_extra

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[Any]]


class CallBudgetQueue:
    """Concurrency cap plus a rolling-window admission budget.

    Every admitted call is timestamped; a call is admitted only while fewer
    than `max_calls` timestamps fall inside the trailing `window_seconds`.
    """

    def __init__(
        self,
        *,
        name: str,
        concurrency: int,
        max_calls: int,
        window_seconds: float,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.name = name
        self.concurrency = max(1, int(concurrency))
        self.max_calls = max(1, int(max_calls))
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._sleep = sleep
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._lock = asyncio.Lock()
        self._admitted: deque[float] = deque()
        self.total_admitted = 0

    def _bind_loop(self) -> None:
        # The queue outlives a single asyncio.run; the window survives a loop change.
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            self._loop = loop
            self._semaphore = asyncio.Semaphore(self.concurrency)
            self._lock = asyncio.Lock()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        self._bind_loop()
        async with self._semaphore:
            await self._admit()
            yield

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        async with self.slot():
            return await factory()

    def admitted_in_window(self) -> int:
        self._evict(self._clock())
        return len(self._admitted)

    async def _admit(self) -> None:
        while True:
            async with self._lock:
                now = self._clock()
                self._evict(now)
                if len(self._admitted) < self.max_calls:
                    self._admitted.append(now)
                    self.total_admitted += 1
                    return
                wait_seconds = self.window_seconds - (now - self._admitted[0])

            logger.info(
                "Call budget exhausted, waiting for window",
                extra=sanitize_log_extra(queue=self.name, wait_seconds=round(wait_seconds, 2), cap=self.max_calls),
            )
            await self._sleep(max(wait_seconds, 0.01))

    def _evict(self, now: float) -> None:
        while self._admitted and now - self._admitted[0] >= self.window_seconds:
            self._admitted.popleft()


class ModelCallQueue(CallBudgetQueue):
    """Shared budget for every generative-model call in the process."""

    def __init__(
        self,
        *,
        key_count: int,
        rpm_per_key: Optional[int] = None,
        window_seconds: Optional[float] = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        keys = max(1, int(key_count))
        rpm = rpm_per_key if rpm_per_key is not None else settings.AI_SAFE_RPM_PER_KEY
        super().__init__(
            name="model-calls",
            concurrency=max(2, keys * 2),
            max_calls=rpm * keys,
            window_seconds=window_seconds if window_seconds is not None else settings.AI_WINDOW_SECONDS,
            clock=clock,
            sleep=sleep,
        )
        self.key_count = keys


def build_github_queue(*, clock: Clock = time.monotonic, sleep: Sleeper = asyncio.sleep) -> CallBudgetQueue:
    return CallBudgetQueue(
        name="github-rest",
        concurrency=settings.GITHUB_REST_CONCURRENCY,
        max_calls=settings.GITHUB_REST_REQUESTS_PER_WINDOW,
        window_seconds=settings.GITHUB_REST_WINDOW_SECONDS,
        clock=clock,
        sleep=sleep,
    )


class RecordQueue:
    """Paces enrichment job starts.

    At most `concurrency` jobs run at once, consecutive starts are at least
    `spacing_seconds` apart, and every `batch_size` starts are followed by a
    `batch_cooldown_seconds` pause.
    """

    def __init__(
        self,
        *,
        concurrency: Optional[int] = None,
        spacing_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
        batch_cooldown_seconds: Optional[float] = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.concurrency = max(1, concurrency or settings.RECORD_QUEUE_CONCURRENCY)
        self.spacing_seconds = (
            spacing_seconds if spacing_seconds is not None else settings.RECORD_QUEUE_SPACING_SECONDS
        )
        self.batch_size = max(1, batch_size or settings.RECORD_QUEUE_BATCH_SIZE)
        self.batch_cooldown_seconds = (
            batch_cooldown_seconds
            if batch_cooldown_seconds is not None
            else settings.RECORD_QUEUE_BATCH_COOLDOWN_SECONDS
        )
        self._clock = clock
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._start_lock = asyncio.Lock()
        self._last_start: Optional[float] = None
        self.started = 0
        self.pending: set[asyncio.Task] = set()

    def submit(self, job_factory: Callable[[], Awaitable[T]]) -> "asyncio.Task[T]":
        """Schedule a job and return its handle; await it for the outcome."""
        task = asyncio.create_task(self._run(job_factory))
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)
        return task

    async def _run(self, job_factory: Callable[[], Awaitable[T]]) -> T:
        async with self._semaphore:
            await self._wait_for_start()
            return await job_factory()

    async def _wait_for_start(self) -> None:
        async with self._start_lock:
            if self._last_start is not None:
                elapsed = self._clock() - self._last_start
                wait_seconds = self.spacing_seconds - elapsed
                if self.started % self.batch_size == 0:
                    wait_seconds = max(wait_seconds, self.batch_cooldown_seconds - elapsed)
                    logger.info(
                        "Record queue batch cooldown",
                        extra=sanitize_log_extra(started=self.started, cooldown_seconds=self.batch_cooldown_seconds),
                    )
                if wait_seconds > 0:
                    await self._sleep(wait_seconds)
            self._last_start = self._clock()
            self.started += 1


def retry_delay_seconds(attempts: int, base_delay_seconds: Optional[float] = None) -> float:
    """Delay before a record with `attempts` failures may be retried."""
    if attempts <= 0:
        return 0.0
    base = base_delay_seconds if base_delay_seconds is not None else settings.ENRICH_RETRY_BASE_DELAY_SECONDS
    return float(base) * (2 ** attempts)


def is_retry_due(
    attempts: int,
    last_attempt_at: Optional[datetime],
    *,
    now: Optional[datetime] = None,
    base_delay_seconds: Optional[float] = None,
) -> bool:
    if attempts <= 0 or last_attempt_at is None:
        return True
    current = now or datetime.utcnow()
    delay = retry_delay_seconds(attempts, base_delay_seconds)
    return current >= last_attempt_at + timedelta(seconds=delay)
