import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from admission.config import SecurityConfig, ThrottlePolicy
from admission.errors import ConfigurationError
from admission.identity import client_identifier
from admission.rate_limiter import RateLimiter
from admission.schemas import DenyReason
from admission.store import MemoryStore


CLIENT = client_identifier("10.0.0.1", "Mozilla/5.0")


def _config(limit: int = 5, window: float = 60.0, **kw) -> SecurityConfig:
    return SecurityConfig(throttles={"login": ThrottlePolicy(window, limit), "short": ThrottlePolicy(60, 30)}, **kw)


# ---------------------------------------------------------------------------
# Window behaviour
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_limit_calls_allowed_then_denied(store):
    limiter = RateLimiter(_config(limit=5), store)
    for _ in range(5):
        assert (await limiter.check_and_consume("login", CLIENT)).allowed

    denied = await limiter.check_and_consume("login", CLIENT)
    assert not denied.allowed
    assert denied.reason is DenyReason.RATE_LIMITED
    assert denied.retry_after == 60


@pytest.mark.asyncio
async def test_window_reset_gives_fresh_count(store, clock):
    limiter = RateLimiter(_config(limit=2, window=60), store)
    for _ in range(3):
        await limiter.check_and_consume("login", CLIENT)

    clock.advance(61)
    assert (await limiter.check_and_consume("login", CLIENT)).allowed
    assert await limiter.usage("login", CLIENT) == 1


@pytest.mark.asyncio
async def test_denied_requests_do_not_consume(store):
    limiter = RateLimiter(_config(limit=3), store)
    for _ in range(10):
        await limiter.check_and_consume("login", CLIENT)
    assert await limiter.usage("login", CLIENT) == 3


@pytest.mark.asyncio
async def test_fixed_window_boundary_burst_admits_up_to_twice_limit(store, clock):
    limiter = RateLimiter(_config(limit=3, window=60), store)
    for _ in range(3):
        assert (await limiter.check_and_consume("login", CLIENT)).allowed
    clock.advance(60)
    for _ in range(3):
        assert (await limiter.check_and_consume("login", CLIENT)).allowed


@pytest.mark.asyncio
async def test_purposes_and_clients_are_independent(store):
    limiter = RateLimiter(_config(limit=1), store)
    other_ua = client_identifier("10.0.0.1", "curl/8.0")
    other_ip = client_identifier("10.0.0.2", "Mozilla/5.0")

    assert (await limiter.check_and_consume("login", CLIENT)).allowed
    assert not (await limiter.check_and_consume("login", CLIENT)).allowed
    assert (await limiter.check_and_consume("short", CLIENT)).allowed
    assert (await limiter.check_and_consume("login", other_ua)).allowed
    assert (await limiter.check_and_consume("login", other_ip)).allowed


@pytest.mark.asyncio
async def test_unknown_purpose_is_configuration_error(store):
    limiter = RateLimiter(_config(), store)
    with pytest.raises(ConfigurationError):
        await limiter.check_and_consume("bulk-export", CLIENT)


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_simultaneous_calls_never_exceed_limit(store):
    limiter = RateLimiter(_config(limit=5), store)
    decisions = await asyncio.gather(*(limiter.check_and_consume("login", CLIENT) for _ in range(6)))
    assert sum(d.allowed for d in decisions) == 5


def test_threaded_calls_never_exceed_limit():
    limiter = RateLimiter(_config(limit=5), MemoryStore())

    def call(_):
        return asyncio.run(limiter.check_and_consume("login", CLIENT)).allowed

    with ThreadPoolExecutor(max_workers=12) as pool:
        results = list(pool.map(call, range(40)))
    assert sum(results) == 5


# ---------------------------------------------------------------------------
# Store faults
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_store_failure_fails_closed_by_default(failing_store):
    decision = await RateLimiter(_config(), failing_store).check_and_consume("login", CLIENT)
    assert not decision.allowed
    assert decision.reason is DenyReason.STORE_UNAVAILABLE


@pytest.mark.asyncio
async def test_store_failure_fails_open_when_configured(failing_store):
    limiter = RateLimiter(_config(rate_limit_fail_open=True), failing_store)
    assert (await limiter.check_and_consume("login", CLIENT)).allowed
