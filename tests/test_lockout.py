"""
tests/test_lockout.py — Account lockout state machine and IP escalation
========================================================================
"""
import asyncio

import pytest

from admission.config import SecurityConfig
from admission.errors import InvalidIdentifier
from admission.facade import AdmissionFacade
from admission.store import MemoryStore

IP = "203.0.113.10"
UA = "Mozilla/5.0"


def _facade(store, clock, **kw) -> AdmissionFacade:
    return AdmissionFacade(SecurityConfig(**kw), store, clock)


async def _fail(facade, account, ip=IP, times=1):
    status = None
    for _ in range(times):
        status = await facade.lockout.record_attempt(ip, account, False, UA)
    return status


async def _events(store, event_type=None):
    events = [await store.get(k) for k in store.keys("security_event:")]
    return [e for e in events if event_type is None or e["type"] == event_type]


# ---------------------------------------------------------------------------
# Lockout transitions
# ---------------------------------------------------------------------------

class TestLockoutTransitions:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_attempts", [1, 3, 5])
    async def test_locks_exactly_at_max_attempts(self, store, clock, max_attempts):
        facade = _facade(store, clock, max_login_attempts=max_attempts)
        for n in range(1, max_attempts):
            status = await _fail(facade, "user@example.com")
            assert status.failure_count == n
            assert not status.locked
            assert not await facade.lockout.is_locked_out("user@example.com")

        status = await _fail(facade, "user@example.com")
        assert status.locked
        assert status.failure_count == max_attempts
        assert await facade.lockout.is_locked_out("user@example.com")

    @pytest.mark.asyncio
    async def test_stays_locked_until_locked_until(self, store, clock):
        facade = _facade(store, clock, max_login_attempts=3, lockout_minutes=15)
        status = await _fail(facade, "user@example.com", times=3)
        assert status.locked_until.timestamp() == pytest.approx(clock() + 15 * 60)

        clock.advance(15 * 60 - 1)
        assert await facade.lockout.is_locked_out("user@example.com")

        clock.advance(2)
        assert not await facade.lockout.is_locked_out("user@example.com")

    @pytest.mark.asyncio
    async def test_failure_count_restarts_after_expiry(self, store, clock):
        facade = _facade(store, clock, max_login_attempts=3, lockout_minutes=15)
        await _fail(facade, "user@example.com", times=3)
        clock.advance(15 * 60 + 1)
        assert not await facade.lockout.is_locked_out("user@example.com")

        status = await _fail(facade, "user@example.com")
        assert status.failure_count == 1
        assert not status.locked

    @pytest.mark.asyncio
    async def test_failures_outside_window_do_not_accumulate(self, store, clock):
        facade = _facade(store, clock, max_login_attempts=3, lockout_minutes=15)
        await _fail(facade, "user@example.com", times=2)
        clock.advance(15 * 60 + 1)
        status = await _fail(facade, "user@example.com")
        assert status.failure_count == 1

    @pytest.mark.asyncio
    async def test_success_does_not_reset_failure_streak(self, store, clock):
        facade = _facade(store, clock, max_login_attempts=3)
        await _fail(facade, "user@example.com", times=2)
        status = await facade.lockout.record_attempt(IP, "user@example.com", True, UA)
        assert not status.locked

        status = await _fail(facade, "user@example.com")
        assert status.locked
        assert status.failure_count == 3

    @pytest.mark.asyncio
    async def test_account_keys_are_case_folded(self, store, clock):
        facade = _facade(store, clock, max_login_attempts=2)
        await _fail(facade, "User@Example.com")
        await _fail(facade, " user@example.COM ")
        assert await facade.lockout.is_locked_out("user@example.com")

    @pytest.mark.asyncio
    async def test_status_reports_counts(self, store, clock):
        facade = _facade(store, clock, max_login_attempts=3)
        await _fail(facade, "user@example.com")
        status = await facade.lockout.status("user@example.com")
        assert status.failure_count == 1 and not status.locked

        await _fail(facade, "user@example.com", times=2)
        status = await facade.lockout.status("user@example.com")
        assert status.locked and status.failure_count == 3
        assert status.locked_until is not None

    @pytest.mark.asyncio
    async def test_invalid_account_key_rejected(self, store, clock):
        facade = _facade(store, clock)
        with pytest.raises(InvalidIdentifier):
            await facade.lockout.record_attempt(IP, "   ", False, UA)
        with pytest.raises(InvalidIdentifier):
            await facade.lockout.is_locked_out("has space@example.com")


# ---------------------------------------------------------------------------
# Audit side effects
# ---------------------------------------------------------------------------

class TestAttemptAudit:
    @pytest.mark.asyncio
    async def test_attempts_and_events_recorded(self, store, clock):
        facade = _facade(store, clock)
        await facade.lockout.record_attempt(IP, "a@example.com", True, UA)
        await facade.lockout.record_attempt(IP, "a@example.com", False, UA)

        types = sorted(e["type"] for e in await _events(store))
        assert types == ["LOGIN_FAILED", "LOGIN_SUCCESS"]
        assert len(store.keys("login_attempt:")) == 2

        event = (await _events(store, "LOGIN_FAILED"))[0]
        assert event["account_key"] == "a@example.com"
        assert event["user_agent_hash"] and UA not in str(event)

    @pytest.mark.asyncio
    async def test_attempt_records_kept_for_a_day(self, store, clock):
        facade = _facade(store, clock)
        await facade.lockout.record_attempt(IP, "a@example.com", False, UA)
        clock.advance(24 * 3600 - 1)
        assert len(store.keys("login_attempt:")) == 1
        clock.advance(2)
        assert store.keys("login_attempt:") == []


# ---------------------------------------------------------------------------
# Cross-account escalation
# ---------------------------------------------------------------------------

class TestEscalation:
    @pytest.mark.asyncio
    async def test_twenty_one_accounts_block_the_ip(self, store, clock):
        facade = _facade(store, clock, max_login_attempts=1)
        for i in range(20):
            await _fail(facade, f"victim{i}@example.com")
        assert await facade.is_ip_allowed(IP)

        await _fail(facade, "victim20@example.com")
        assert not await facade.is_ip_allowed(IP)
        assert len((await _events(store, "IP_BLOCKED"))) == 1

    @pytest.mark.asyncio
    async def test_escalation_counts_lockouts_with_default_policy(self, store, clock):
        facade = _facade(store, clock)
        for i in range(21):
            await _fail(facade, f"victim{i}@example.com", times=5)
        assert not await facade.is_ip_allowed(IP)
        record = await facade.ip_access.block_record(IP)
        assert "across accounts" in record["reason"]

    @pytest.mark.asyncio
    async def test_escalation_window_is_fifteen_minutes(self, store, clock):
        facade = _facade(store, clock, max_login_attempts=1)
        for i in range(20):
            await _fail(facade, f"victim{i}@example.com")
        clock.advance(15 * 60 + 1)
        await _fail(facade, "late@example.com")
        assert await facade.is_ip_allowed(IP)

    @pytest.mark.asyncio
    async def test_other_ips_unaffected(self, store, clock):
        facade = _facade(store, clock, max_login_attempts=1)
        for i in range(21):
            await _fail(facade, f"victim{i}@example.com")
        assert await facade.is_ip_allowed("203.0.113.11")


class InterleavingStore(MemoryStore):
    """Hands control back to the event loop after every increment."""

    async def increment(self, key, ttl, limit=None):
        value = await super().increment(key, ttl, limit)
        await asyncio.sleep(0)
        return value


class TestConcurrentFailures:
    @pytest.mark.asyncio
    async def test_threshold_crossed_once_escalates_once(self, clock):
        store = InterleavingStore(clock=clock)
        facade = _facade(store, clock, max_login_attempts=3)
        await _fail(facade, "user@example.com", times=2)

        first, second = await asyncio.gather(
            _fail(facade, "user@example.com"),
            _fail(facade, "user@example.com"),
        )

        assert first.locked and second.locked
        assert sorted([first.failure_count, second.failure_count]) == [3, 4]
        assert await store.get("ip_attempts:" + IP) == 1
        assert await facade.lockout.is_locked_out("user@example.com")
