import pytest

from fscrape.utils.rate_limiter import RateLimiter


class FakeTime:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.mark.asyncio
async def test_burst_passes_without_waiting(fake_time):
    limiter = RateLimiter(
        requests_per_minute=60, burst_size=3, clock=fake_time.clock, sleep=fake_time.sleep
    )

    waits = [await limiter.acquire("reddit") for _ in range(3)]

    assert waits == [0.0, 0.0, 0.0]
    assert fake_time.sleeps == []


@pytest.mark.asyncio
async def test_waits_when_bucket_empty(fake_time):
    limiter = RateLimiter(
        requests_per_minute=60, burst_size=1, clock=fake_time.clock, sleep=fake_time.sleep
    )

    await limiter.acquire()
    waited = await limiter.acquire()

    assert waited == pytest.approx(1.0)
    assert fake_time.sleeps == [pytest.approx(1.0)]


@pytest.mark.asyncio
async def test_tokens_refill_over_time(fake_time):
    limiter = RateLimiter(
        requests_per_minute=120, burst_size=1, clock=fake_time.clock, sleep=fake_time.sleep
    )

    await limiter.acquire()
    fake_time.now += 0.5

    assert await limiter.acquire() == 0.0
    assert fake_time.sleeps == []
