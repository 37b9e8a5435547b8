import pytest

from ghstats.domain.errors import RateLimited
from ghstats.infrastructure.resilience.rate_limiter import RateLimiter

from tests.conftest import START_TIME, rate_headers


@pytest.fixture
def limiter(clock):
    return RateLimiter(max_wait=60.0, clock=clock, sleep=clock.sleep)


def test_unknown_state_allows_requests(limiter):
    assert limiter.state is None
    assert limiter.can_proceed().allow


@pytest.mark.asyncio
async def test_record_response_reads_headers(limiter):
    await limiter.record_response(rate_headers(remaining=42, limit=60, reset=START_TIME + 100))
    state = limiter.state
    assert (state.limit, state.remaining, state.reset_at, state.used) == (60, 42, START_TIME + 100, 18)


@pytest.mark.asyncio
async def test_missing_headers_leave_state_unchanged(limiter):
    await limiter.record_response(rate_headers(remaining=10))
    before = limiter.state
    await limiter.record_response({"Content-Type": "application/json"})
    assert limiter.state == before


@pytest.mark.asyncio
async def test_exhausted_quota_denies_until_reset(limiter, clock):
    await limiter.record_response(rate_headers(remaining=0, reset=START_TIME + 30))

    decision = limiter.can_proceed()
    assert not decision.allow
    assert decision.retry_after == pytest.approx(30)

    clock.advance(30)
    assert limiter.can_proceed().allow


@pytest.mark.asyncio
async def test_wait_for_permission_sleeps_through_short_waits(limiter, clock):
    await limiter.record_response(rate_headers(remaining=0, reset=START_TIME + 20))
    await limiter.wait_for_permission()
    assert clock.sleeps == [pytest.approx(20)]


@pytest.mark.asyncio
async def test_wait_for_permission_fails_fast_on_long_waits(limiter, clock):
    await limiter.record_response(rate_headers(remaining=0, reset=START_TIME + 3600))
    with pytest.raises(RateLimited) as excinfo:
        await limiter.wait_for_permission()
    assert excinfo.value.retry_after == pytest.approx(3600)
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_reset_time_never_moves_backwards_within_a_window(limiter):
    await limiter.record_response(rate_headers(remaining=5, reset=START_TIME + 600))
    await limiter.record_response(rate_headers(remaining=4, reset=START_TIME + 300))
    assert limiter.state.reset_at == START_TIME + 600
    assert limiter.state.remaining == 4


@pytest.mark.asyncio
async def test_remaining_is_clamped_to_limit(limiter):
    await limiter.record_response({"X-RateLimit-Limit": "60", "X-RateLimit-Remaining": "99", "X-RateLimit-Reset": "0"})
    assert limiter.state.remaining == 60


@pytest.mark.asyncio
async def test_update_from_rate_limit_payload(limiter):
    payload = {"resources": {"core": {"limit": 5000, "remaining": 4321, "reset": int(START_TIME) + 900, "used": 679}}}
    state = await limiter.update_from_payload(payload)
    assert state.remaining == 4321
    assert state.used == 679


@pytest.mark.asyncio
async def test_reset_without_remaining_does_not_invent_an_empty_quota(limiter):
    await limiter.record_response({"X-RateLimit-Reset": str(int(START_TIME + 600))})

    assert limiter.state is None
    assert limiter.can_proceed().allow

    await limiter.record_response(rate_headers(remaining=5, limit=60, reset=START_TIME + 600))
    await limiter.record_response({"X-RateLimit-Reset": str(int(START_TIME + 600))})
    assert limiter.state.remaining == 5
