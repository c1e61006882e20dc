import asyncio
import pytest
from backend.rate_limiting.attempt_limiter import AttemptLimiter


class FakeClock:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


@pytest.fixture
def clock():
    return FakeClock()


async def test_allows_up_to_max_then_blocks(clock):
    limiter = AttemptLimiter(max_attempts=3, window_seconds=60, clock=clock)

    results = [await limiter.allow("ref_1") for _ in range(4)]

    assert results == [True, True, True, False]
    assert await limiter.retry_after("ref_1") == 60


async def test_references_are_counted_independently(clock):
    limiter = AttemptLimiter(max_attempts=1, window_seconds=60, clock=clock)

    assert await limiter.allow("ref_a")
    assert await limiter.allow("ref_b")
    assert not await limiter.allow("ref_a")


async def test_window_expiry_resets_the_count(clock):
    limiter = AttemptLimiter(max_attempts=2, window_seconds=60, clock=clock)
    await limiter.allow("ref_1")
    await limiter.allow("ref_1")
    assert not await limiter.allow("ref_1")

    clock.t += 59
    assert await limiter.retry_after("ref_1") == 1
    assert not await limiter.allow("ref_1")

    clock.t += 1
    assert await limiter.allow("ref_1")


async def test_status_and_reset(clock):
    limiter = AttemptLimiter(max_attempts=5, window_seconds=60, clock=clock)
    for _ in range(2):
        await limiter.allow("ref_1")

    status = await limiter.status("ref_1")
    assert status["count"] == 2
    assert status["remaining"] == 3

    assert await limiter.reset("ref_1") is True
    assert await limiter.reset("ref_1") is False
    assert (await limiter.status("ref_1"))["count"] == 0


async def test_concurrent_attempts_never_exceed_the_cap(clock):
    limiter = AttemptLimiter(max_attempts=5, window_seconds=60, clock=clock)

    results = await asyncio.gather(*[limiter.allow("ref_hot") for _ in range(20)])

    assert results.count(True) == 5
