"""Concurrency-limited, retrying execution of many independent async operations."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field

from repo2txt.exceptions import ProviderError
from repo2txt.logging import logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable

T = TypeVar("T")
ItemT = TypeVar("ItemT")


class FetchConfig(BaseModel):
    """Limits applied by a `BoundedFetcher`.

    Attributes:
        max_concurrent: operations allowed in flight at the same time.
        retries: extra attempts after a transient failure.
        retry_delay: seconds to wait between attempts.
        min_delay_between_starts: minimum spacing, in seconds, between two starts.
    """

    model_config = ConfigDict(frozen=True)

    max_concurrent: int = Field(default=10, gt=0)
    retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    min_delay_between_starts: float = Field(default=0.0, ge=0)


@dataclass(frozen=True)
class FetchOutcome(Generic[ItemT, T]):
    """Per-item result of a streamed batch: exactly one of `result`/`error` is set."""

    item: ItemT
    result: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def is_transient_error(exc: BaseException) -> bool:
    """Decide whether an error is worth retrying (network failure, 5xx, timeout)."""
    if isinstance(exc, ProviderError):
        return exc.transient
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500  # noqa: PLR2004
    return isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError))


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int,
    delay: float,
    should_retry: Callable[[BaseException], bool] = is_transient_error,
) -> T:
    """Await `operation`, retrying transient failures with a fixed delay.

    Args:
        operation: zero-argument coroutine factory; called once per attempt.
        retries: number of extra attempts.
        delay: seconds between attempts.
        should_retry: predicate deciding whether a failure is transient.

    Returns:
        The operation's result.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= retries or not should_retry(exc):
                raise
            attempt += 1
            logger.info("retrying_operation", attempt=attempt, retries=retries, delay=delay, error=str(exc))
            await asyncio.sleep(delay)


class BoundedFetcher:
    """Run async operations with at most `max_concurrent` in flight.

    Waiting callers are released in FIFO order as soon as any slot frees up.
    """

    def __init__(self, config: FetchConfig | None = None) -> None:
        self.config = config or FetchConfig()
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._next_start = 0.0
        self._background: set[asyncio.Task[object]] = set()

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def queue_length(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def _acquire(self) -> None:
        if self._active >= self.config.max_concurrent or self.queue_length:
            waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            try:
                await waiter
            except asyncio.CancelledError:
                if waiter.done() and not waiter.cancelled():
                    # the slot was handed over already: pass it on
                    self._release()
                raise
        else:
            self._active += 1
        try:
            await self._space_start()
        except BaseException:
            self._release()
            raise

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # slot ownership moves to the waiter, `_active` is unchanged
                waiter.set_result(None)
                return
        self._active -= 1

    async def _space_start(self) -> None:
        gap = self.config.min_delay_between_starts
        if gap <= 0:
            return
        loop = asyncio.get_running_loop()
        now = loop.time()
        start_at = max(now, self._next_start)
        self._next_start = start_at + gap
        if start_at > now:
            await asyncio.sleep(start_at - now)

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Execute one operation under the concurrency ceiling, with retry."""
        await self._acquire()
        try:
            return await retry_async(
                operation,
                retries=self.config.retries,
                delay=self.config.retry_delay,
            )
        finally:
            self._release()

    async def stream(
        self,
        items: Iterable[ItemT],
        operation: Callable[[ItemT], Awaitable[T]],
    ) -> AsyncIterator[FetchOutcome[ItemT, T]]:
        """Yield one `FetchOutcome` per item, in completion order.

        A failing item is reported through `FetchOutcome.error` and never stops
        its siblings. Closing the iterator early stops dequeuing new items;
        operations already started finish in the background and are dropped.
        """
        pending: deque[ItemT] = deque(items)
        in_flight: dict[asyncio.Task[T], ItemT] = {}

        def start_next() -> None:
            while pending and len(in_flight) < self.config.max_concurrent:
                item = pending.popleft()
                task = asyncio.ensure_future(self.run(lambda item=item: operation(item)))
                in_flight[task] = item

        try:
            start_next()
            while in_flight:
                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                outcomes = [_outcome(in_flight.pop(task), task) for task in done]
                start_next()
                for outcome in outcomes:
                    yield outcome
        finally:
            pending.clear()
            for task in in_flight:
                self._background.add(task)
                task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task[object]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.info("abandoned_operation_failed", error=str(task.exception()))


def _outcome(item: ItemT, task: asyncio.Task[T]) -> FetchOutcome[ItemT, T]:
    if task.cancelled():
        return FetchOutcome(item=item, error=asyncio.CancelledError())
    if task.exception() is not None:
        return FetchOutcome(item=item, error=task.exception())
    return FetchOutcome(item=item, result=task.result())
