from __future__ import annotations

import asyncio

import httpx
import pytest

from repo2txt.exceptions import ErrorKind, ProviderError
from repo2txt.fetcher import BoundedFetcher, FetchConfig, is_transient_error, retry_async


@pytest.mark.unit
def test_fetch_config_rejects_zero_concurrency() -> None:
    with pytest.raises(ValueError, match="max_concurrent"):
        FetchConfig(max_concurrent=0)


@pytest.mark.unit
def test_transient_error_classification() -> None:
    request = httpx.Request("GET", "https://example.com")
    server_error = httpx.HTTPStatusError("boom", request=request, response=httpx.Response(502, request=request))
    not_found = httpx.HTTPStatusError("nope", request=request, response=httpx.Response(404, request=request))

    assert is_transient_error(server_error)
    assert not is_transient_error(not_found)
    assert is_transient_error(httpx.ConnectError("down", request=request))
    assert is_transient_error(ProviderError(kind=ErrorKind.NETWORK_ERROR, message="x"))
    assert is_transient_error(ProviderError(kind=ErrorKind.UNKNOWN, message="x", status_code=503))
    assert not is_transient_error(ProviderError(kind=ErrorKind.NOT_FOUND, message="x", status_code=404))
    assert not is_transient_error(ValueError("bad"))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retry_async_retries_transient_errors_then_succeeds() -> None:
    calls = 0

    async def flaky() -> str:
        nonlocal calls
        calls += 1
        if calls < 3:  # noqa: PLR2004
            raise ProviderError(kind=ErrorKind.NETWORK_ERROR, message="reset")
        return "ok"

    assert await retry_async(flaky, retries=3, delay=0) == "ok"
    assert calls == 3  # noqa: PLR2004


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retry_async_gives_up_after_retries() -> None:
    calls = 0

    async def always_down() -> None:
        nonlocal calls
        calls += 1
        raise ProviderError(kind=ErrorKind.NETWORK_ERROR, message="down")

    with pytest.raises(ProviderError):
        await retry_async(always_down, retries=2, delay=0)
    assert calls == 3  # noqa: PLR2004


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retry_async_does_not_retry_permanent_errors() -> None:
    calls = 0

    async def missing() -> None:
        nonlocal calls
        calls += 1
        raise ProviderError(kind=ErrorKind.NOT_FOUND, message="404", status_code=404)

    with pytest.raises(ProviderError):
        await retry_async(missing, retries=5, delay=0)
    assert calls == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stream_never_exceeds_max_concurrent() -> None:
    fetcher = BoundedFetcher(FetchConfig(max_concurrent=2, retries=0, retry_delay=0))
    in_flight = 0
    peak = 0
    samples: list[int] = []

    async def operation(item: int) -> int:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        samples.append(fetcher.active_count)
        await asyncio.sleep(0.001 * (item % 3))
        in_flight -= 1
        return item * 2

    outcomes = [o async for o in fetcher.stream(range(10), operation)]

    assert peak <= 2  # noqa: PLR2004
    assert max(samples) <= 2  # noqa: PLR2004
    assert sorted(o.result for o in outcomes) == [i * 2 for i in range(10)]
    assert all(o.ok for o in outcomes)
    assert fetcher.active_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stream_yields_in_completion_order() -> None:
    fetcher = BoundedFetcher(FetchConfig(max_concurrent=3, retries=0, retry_delay=0))
    delays = {"slow": 0.05, "medium": 0.02, "fast": 0.0}

    async def operation(name: str) -> str:
        await asyncio.sleep(delays[name])
        return name

    order = [o.result async for o in fetcher.stream(["slow", "medium", "fast"], operation)]

    assert order == ["fast", "medium", "slow"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stream_reports_failures_per_item() -> None:
    fetcher = BoundedFetcher(FetchConfig(max_concurrent=2, retries=1, retry_delay=0))

    async def operation(item: int) -> int:
        if item == 3:  # noqa: PLR2004
            raise ProviderError(kind=ErrorKind.NOT_FOUND, message="gone", status_code=404)
        return item

    outcomes = {o.item: o async for o in fetcher.stream(range(6), operation)}

    assert len(outcomes) == 6  # noqa: PLR2004
    assert isinstance(outcomes[3].error, ProviderError)
    assert outcomes[3].result is None
    assert sorted(i for i, o in outcomes.items() if o.ok) == [0, 1, 2, 4, 5]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_run_releases_waiters_in_fifo_order() -> None:
    fetcher = BoundedFetcher(FetchConfig(max_concurrent=1, retries=0, retry_delay=0))
    gate = asyncio.Event()
    started: list[str] = []

    async def blocker() -> None:
        started.append("blocker")
        await gate.wait()

    async def record(name: str) -> None:
        started.append(name)

    first = asyncio.create_task(fetcher.run(blocker))
    await asyncio.sleep(0)
    waiters = [asyncio.create_task(fetcher.run(lambda n=n: record(n))) for n in ("a", "b", "c")]
    await asyncio.sleep(0)

    assert fetcher.queue_length == 3  # noqa: PLR2004

    gate.set()
    await asyncio.gather(first, *waiters)

    assert started == ["blocker", "a", "b", "c"]
    assert fetcher.queue_length == 0
    assert fetcher.active_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_block_the_queue() -> None:
    fetcher = BoundedFetcher(FetchConfig(max_concurrent=1, retries=0, retry_delay=0))
    gate = asyncio.Event()

    async def blocker() -> str:
        await gate.wait()
        return "blocker"

    async def quick() -> str:
        return "quick"

    first = asyncio.create_task(fetcher.run(blocker))
    await asyncio.sleep(0)
    cancelled = asyncio.create_task(fetcher.run(quick))
    survivor = asyncio.create_task(fetcher.run(quick))
    await asyncio.sleep(0)
    cancelled.cancel()
    gate.set()

    assert await first == "blocker"
    assert await survivor == "quick"
    with pytest.raises(asyncio.CancelledError):
        await cancelled
    assert fetcher.active_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_caller_cancelled_during_start_spacing_frees_its_slot() -> None:
    fetcher = BoundedFetcher(FetchConfig(max_concurrent=1, retries=0, retry_delay=0, min_delay_between_starts=0.5))

    async def quick() -> str:
        return "quick"

    assert await fetcher.run(quick) == "quick"
    with pytest.raises(TimeoutError):
        await asyncio.wait_for(fetcher.run(quick), 0.05)

    assert fetcher.active_count == 0
    assert await asyncio.wait_for(fetcher.run(quick), 2) == "quick"

@pytest.mark.unit
@pytest.mark.asyncio
async def test_abandoned_stream_stops_dequeuing() -> None:
    fetcher = BoundedFetcher(FetchConfig(max_concurrent=2, retries=0, retry_delay=0))
    started: list[int] = []

    async def operation(item: int) -> int:
        started.append(item)
        await asyncio.sleep(0.01)
        return item

    stream = fetcher.stream(range(10), operation)
    async for _ in stream:
        break
    await stream.aclose()
    await asyncio.sleep(0.05)

    # two initial starts plus at most one refill before the first yield
    assert len(started) <= 4  # noqa: PLR2004
    assert fetcher.active_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_min_delay_spaces_out_starts() -> None:
    fetcher = BoundedFetcher(FetchConfig(max_concurrent=5, retries=0, retry_delay=0, min_delay_between_starts=0.02))
    loop = asyncio.get_running_loop()
    starts: list[float] = []

    async def operation(_: int) -> None:
        starts.append(loop.time())

    _ = [o async for o in fetcher.stream(range(3), operation)]

    gaps = [b - a for a, b in zip(starts, starts[1:], strict=False)]
    assert all(gap >= 0.015 for gap in gaps)  # noqa: PLR2004
