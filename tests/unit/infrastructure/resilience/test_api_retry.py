import pytest

from ghstats.domain.errors import ClientError, NetworkError, ParseError, RateLimited, ServerError
from ghstats.domain.events.api_events import ApiCallDeferred, ApiCallFailed, RetryScheduled
from ghstats.infrastructure.resilience.api_retry import ApiRetryService
from ghstats.infrastructure.resilience.rate_limiter import RateLimiter

from tests.conftest import START_TIME, rate_headers


class FlakyCall:
    """Raises the queued errors in turn, then returns ``result``."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def limiter(clock):
    return RateLimiter(max_wait=60.0, clock=clock, sleep=clock.sleep)


@pytest.fixture
def events():
    return []


@pytest.fixture
def retry(limiter, clock, events):
    return ApiRetryService(limiter, max_retries=3, event_listener=events.append, sleep=clock.sleep, rng=lambda: 0.5)


def test_backoff_grows_exponentially_and_is_capped(limiter):
    service = ApiRetryService(limiter, initial_delay=1.0, factor=2.0, max_delay=5.0, jitter=0.0)
    assert [service.backoff_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


def test_jitter_stays_within_bounds(limiter):
    low = ApiRetryService(limiter, initial_delay=4.0, jitter=0.25, rng=lambda: 0.0)
    high = ApiRetryService(limiter, initial_delay=4.0, jitter=0.25, rng=lambda: 0.999999)
    assert low.backoff_delay(1) == pytest.approx(3.0)
    assert high.backoff_delay(1) == pytest.approx(5.0, rel=1e-3)


@pytest.mark.asyncio
async def test_server_error_is_retried_until_exhausted(retry, clock, events):
    call = FlakyCall(*[ServerError("unavailable", status_code=503) for _ in range(10)])

    with pytest.raises(ServerError) as excinfo:
        await retry.execute(call, endpoint_name="/users/octocat")

    assert call.calls == 4
    assert len(excinfo.value.attempts) == 4
    assert clock.sleeps == [1.0, 2.0, 4.0]
    assert sum(isinstance(e, RetryScheduled) for e in events) == 3
    assert isinstance(events[-1], ApiCallFailed)


@pytest.mark.asyncio
async def test_client_error_is_attempted_once(retry, clock):
    call = FlakyCall(ClientError("Not Found", status_code=404))

    with pytest.raises(ClientError) as excinfo:
        await retry.execute(call)

    assert call.calls == 1
    assert len(excinfo.value.attempts) == 1
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_parse_error_is_terminal(retry):
    call = FlakyCall(ParseError("bad body"))
    with pytest.raises(ParseError):
        await retry.execute(call)
    assert call.calls == 1


@pytest.mark.asyncio
async def test_transient_failures_then_success(retry, clock):
    call = FlakyCall(NetworkError("timed out", timeout=True), ServerError("bad gateway", status_code=502))
    assert await retry.execute(call) == "ok"
    assert call.calls == 3
    assert clock.sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_rate_limited_waits_for_retry_after(retry, clock):
    call = FlakyCall(RateLimited("slow down", retry_after=12.0))
    assert await retry.execute(call) == "ok"
    assert clock.sleeps == [12.0]


@pytest.mark.asyncio
async def test_rate_limited_beyond_max_wait_gives_up(retry, limiter, clock):
    await limiter.record_response(rate_headers(remaining=0, reset=START_TIME + 3600))
    clock.advance(0)
    call = FlakyCall(RateLimited("quota", status_code=403, retry_after=0.0))

    with pytest.raises(RateLimited):
        await retry.execute(call)

    # The gate refused before anything was sent.
    assert call.calls == 0
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_gate_defers_short_waits_then_proceeds(retry, limiter, clock, events):
    await limiter.record_response(rate_headers(remaining=0, reset=START_TIME + 5))
    call = FlakyCall()

    assert await retry.execute(call, endpoint_name="/users/octocat") == "ok"

    assert clock.sleeps == [pytest.approx(5)]
    deferred = [e for e in events if isinstance(e, ApiCallDeferred)]
    assert deferred and deferred[0].endpoint == "/users/octocat"


@pytest.mark.asyncio
async def test_unexpected_exceptions_propagate_unchanged(retry):
    async def broken():
        raise KeyError("bug")

    with pytest.raises(KeyError):
        await retry.execute(broken)


@pytest.mark.asyncio
async def test_rate_limited_waits_for_tracker_reset(retry, limiter, clock):
    calls = 0

    async def quota_exhausted_once():
        nonlocal calls
        calls += 1
        if calls == 1:
            # The 429 carries no Retry-After; only its rate-limit headers say when the window resets.
            await limiter.record_response(rate_headers(remaining=0, reset=START_TIME + 20))
            raise RateLimited("slow down", retry_after=0.0)
        return "ok"

    assert await retry.execute(quota_exhausted_once) == "ok"

    assert calls == 2
    assert clock.sleeps == [pytest.approx(20)]


@pytest.mark.asyncio
async def test_rate_limited_uses_backoff_when_it_is_longer(limiter, clock):
    service = ApiRetryService(limiter, initial_delay=10.0, jitter=0.0, sleep=clock.sleep)
    call = FlakyCall(RateLimited("slow down", retry_after=3.0))

    assert await service.execute(call) == "ok"

    assert clock.sleeps == [10.0]
