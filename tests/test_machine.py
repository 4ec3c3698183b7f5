"""Tests for the verification state machine."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from hostclaim.domains import (
    AttemptOutcome,
    ChallengeExpiredError,
    ConcurrentUpdateError,
    DomainStatus,
    LifecycleState,
    NoChallengeInProgressError,
    SSLStatus,
    StoreError,
    ThrottledError,
    ValidatedHostname,
)

HOST = "booking.example.com"
CLAIM = ValidatedHostname(hostname=HOST, apex_domain="example.com", subdomain="booking")


@pytest.fixture
def machine(manager):
    return manager.machine


class TestInitiate:
    """Tests for challenge creation."""

    @pytest.mark.asyncio
    async def test_creates_pending_record(self, machine, clock):
        record = await machine.initiate("t1", CLAIM)

        assert record.hostname == HOST
        assert record.domain_status == DomainStatus.PENDING
        assert record.ssl_status == SSLStatus.PENDING
        assert record.attempts == 0
        assert record.token_expires_at == clock.now + timedelta(hours=24)
        assert record.state(clock.now) == LifecycleState.PENDING
        assert record.version == 1

    @pytest.mark.asyncio
    async def test_reinitiate_replaces_token_and_resets(self, machine, dns):
        first = await machine.initiate("t1", CLAIM)
        await machine.probe("t1", include_propagation=False)

        second = await machine.initiate("t1", CLAIM)

        assert second.verification_token != first.verification_token
        assert second.attempts == 0
        assert second.last_check_at is None
        assert second.created_at == first.created_at

    @pytest.mark.asyncio
    async def test_old_token_no_longer_verifies(self, machine, dns):
        first = await machine.initiate("t1", CLAIM)
        await machine.initiate("t1", CLAIM)
        dns.set(HOST, "CNAME", [first.verification_target])

        outcome = await machine.probe("t1", include_propagation=False)

        assert outcome.verified is False
        assert outcome.record.domain_status == DomainStatus.PENDING


class TestProbe:
    """Tests for probe outcomes."""

    @pytest.mark.asyncio
    async def test_cname_match_verifies(self, machine, dns, clock):
        """Scenario: the exact verification CNAME verifies the record."""
        record = await machine.initiate("t1", CLAIM)
        dns.set(HOST, "CNAME", [record.verification_target])

        outcome = await machine.probe("t1")

        assert outcome.verified is True
        assert outcome.state == LifecycleState.VERIFIED
        assert outcome.record.domain_status == DomainStatus.VERIFIED
        assert outcome.record.ssl_status == SSLStatus.PROVISIONED
        assert outcome.record.verified_at == clock.now
        assert outcome.attempt.outcome == AttemptOutcome.VERIFIED
        assert outcome.audit.ok is True

    @pytest.mark.asyncio
    async def test_verified_at_set_once(self, machine, dns, clock):
        record = await machine.initiate("t1", CLAIM)
        dns.set(HOST, "CNAME", [record.verification_target])
        first = await machine.probe("t1")
        clock.advance(minutes=10)

        again = await machine.probe("t1")

        assert again.already_verified is True
        assert again.record.verified_at == first.record.verified_at
        assert again.record.attempts == first.record.attempts

    @pytest.mark.asyncio
    async def test_wrong_cname_stays_pending(self, machine, dns, store):
        """Scenario: a CNAME to another host counts an attempt and is audited."""
        await machine.initiate("t1", CLAIM)
        dns.set(HOST, "CNAME", ["other-host.com"])

        outcome = await machine.probe("t1")

        assert outcome.report.cname.found is False
        assert outcome.report.cname.conflicts == ["other-host.com"]
        assert outcome.record.attempts == 1
        assert outcome.record.domain_status == DomainStatus.PENDING
        attempts = await store.list_attempts("t1")
        assert [a.outcome for a in attempts] == [AttemptOutcome.FAILED]
        assert attempts[0].diagnostic["cname"]["actual_targets"] == ["other-host.com"]

    @pytest.mark.asyncio
    async def test_legacy_records_conflict(self, machine, dns, store):
        await machine.initiate("t1", CLAIM)
        dns.set(HOST, "A", ["192.0.2.10"])

        outcome = await machine.probe("t1", include_propagation=False)

        assert outcome.state == LifecycleState.CONFLICTED
        assert outcome.record.attempts == 1
        assert outcome.conflict_logged is True
        conflicts = await store.list_conflicts(HOST)
        assert len(conflicts) == 1
        assert conflicts[0].conflicting_records[0].values == ("192.0.2.10",)

    @pytest.mark.asyncio
    async def test_conflicted_record_can_still_verify(self, machine, dns):
        record = await machine.initiate("t1", CLAIM)
        dns.set(HOST, "A", ["192.0.2.10"])
        await machine.probe("t1", include_propagation=False)

        dns.set(HOST, "A", [])
        dns.set(HOST, "CNAME", [record.verification_target])
        outcome = await machine.probe("t1", include_propagation=False)

        assert outcome.state == LifecycleState.VERIFIED

    @pytest.mark.asyncio
    async def test_dns_error_is_an_ordinary_failure(self, machine, dns):
        await machine.initiate("t1", CLAIM)
        dns.fail(HOST, "CNAME", code=12, message="Timeout while contacting DNS servers")

        outcome = await machine.probe("t1", include_propagation=False)

        assert outcome.verified is False
        assert outcome.record.attempts == 1
        assert "Timeout while contacting" in outcome.report.cname.error

    @pytest.mark.asyncio
    async def test_verification_uses_configured_resolvers(self, manager, machine, dns):
        await machine.initiate("t1", CLAIM)

        outcome = await machine.probe("t1")

        assert machine.dns is manager.probe
        assert outcome.report.propagation is not None
        assert {ns for ns, _, _ in dns.queries} >= {("1.1.1.1",), ("8.8.8.8",)}

    @pytest.mark.asyncio
    async def test_record_without_target_has_no_challenge(self, machine, store):
        record = await machine.initiate("t1", CLAIM)
        record.verification_target = None
        await store.save(record, record.version)

        with pytest.raises(NoChallengeInProgressError):
            await machine.probe("t1", include_propagation=False)

    @pytest.mark.asyncio
    async def test_no_challenge(self, machine):
        with pytest.raises(NoChallengeInProgressError):
            await machine.probe("missing")

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_abort_verification(self, machine, dns, store):
        record = await machine.initiate("t1", CLAIM)
        dns.set(HOST, "CNAME", [record.verification_target])
        store.append_attempt = AsyncMock(side_effect=StoreError("disk full"))

        outcome = await machine.probe("t1", include_propagation=False)

        assert outcome.verified is True
        assert outcome.audit.ok is False
        assert "disk full" in outcome.audit.error
        assert machine.audit.backlog == 1

    @pytest.mark.asyncio
    async def test_store_driver_error_does_not_abort_verification(self, machine, dns, store):
        record = await machine.initiate("t1", CLAIM)
        dns.set(HOST, "A", ["192.0.2.10"])
        store.append_conflict = AsyncMock(side_effect=RuntimeError("connection reset"))

        outcome = await machine.probe("t1", include_propagation=False)

        assert outcome.state == LifecycleState.CONFLICTED
        assert outcome.conflict_logged is False
        assert outcome.audit.ok is True
        assert (await store.get("t1")).domain_status == DomainStatus.CONFLICTED
        assert record.version < outcome.record.version


class TestRateLimit:
    """Tests for the attempt cap and its window."""

    @pytest.mark.asyncio
    async def test_sixth_attempt_is_throttled(self, machine, dns, clock):
        await machine.initiate("t1", CLAIM)
        for _ in range(5):
            await machine.probe("t1", include_propagation=False)
            clock.advance(minutes=1)
        queries_before = len(dns.queries)

        with pytest.raises(ThrottledError) as exc_info:
            await machine.probe("t1", include_propagation=False)

        error = exc_info.value
        assert error.attempts_remaining == 0
        assert error.status == 429
        assert error.next_retry_after == clock.now - timedelta(minutes=1) + timedelta(hours=1)
        assert len(dns.queries) == queries_before

    @pytest.mark.asyncio
    async def test_counter_resets_after_window(self, machine, clock):
        await machine.initiate("t1", CLAIM)
        for _ in range(5):
            await machine.probe("t1", include_propagation=False)

        clock.advance(hours=1, seconds=1)
        outcome = await machine.probe("t1", include_propagation=False)

        assert outcome.record.attempts == 1
        assert machine.attempts_remaining(outcome.record) == 4

    @pytest.mark.asyncio
    async def test_concurrent_probes_never_exceed_cap(self, machine):
        await machine.initiate("t1", CLAIM)

        results = await asyncio.gather(
            *(machine.probe("t1", include_propagation=False) for _ in range(8)),
            return_exceptions=True,
        )

        throttled = [r for r in results if isinstance(r, ThrottledError)]
        completed = [r for r in results if not isinstance(r, BaseException)]
        assert len(completed) == 5
        assert len(throttled) == 3

    def test_next_check_at(self, machine, clock):
        assert machine.next_check_at(None) == clock.now


class TestExpiry:
    """Tests for challenge expiry."""

    @pytest.mark.asyncio
    async def test_expired_regardless_of_dns(self, machine, dns, clock, store):
        """Scenario: a probe 26 hours after initiation reports expiry."""
        record = await machine.initiate("t1", CLAIM)
        dns.set(HOST, "CNAME", [record.verification_target])
        clock.advance(hours=26)

        with pytest.raises(ChallengeExpiredError) as exc_info:
            await machine.probe("t1")

        assert exc_info.value.to_dict()["status"] == "expired"
        assert dns.queries == []
        stored = await store.get("t1")
        assert stored.domain_status == DomainStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_expiry_checked_before_rate_limit(self, machine, clock):
        await machine.initiate("t1", CLAIM)
        for _ in range(5):
            await machine.probe("t1", include_propagation=False)

        clock.advance(hours=25)
        with pytest.raises(ChallengeExpiredError):
            await machine.probe("t1")

    @pytest.mark.asyncio
    async def test_state_is_expired_before_persisted(self, machine, clock):
        record = await machine.initiate("t1", CLAIM)
        clock.advance(hours=24, seconds=1)

        assert record.state(clock.now) == LifecycleState.EXPIRED
        assert record.domain_status == DomainStatus.PENDING

    @pytest.mark.asyncio
    async def test_reinitiate_recovers(self, machine, clock):
        await machine.initiate("t1", CLAIM)
        clock.advance(hours=30)
        await machine.expire_if_due("t1")

        record = await machine.initiate("t1", CLAIM)

        assert record.state(clock.now) == LifecycleState.PENDING


class TestTransition:
    """Tests for compare-and-swap writes."""

    @pytest.mark.asyncio
    async def test_retries_lost_race(self, machine, store):
        await machine.initiate("t1", CLAIM)
        real_save = store.save
        calls = 0

        async def flaky_save(record, expected_version):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConcurrentUpdateError(record.tenant_id, expected_version, 99)
            return await real_save(record, expected_version)

        store.save = flaky_save

        def bump(record):
            record.attempts += 1
            return record

        updated = await machine.transition("t1", bump)

        assert updated.attempts == 1
        assert calls == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, machine, store):
        await machine.initiate("t1", CLAIM)
        store.save = AsyncMock(side_effect=ConcurrentUpdateError("t1", 1, 2))

        with pytest.raises(ConcurrentUpdateError):
            await machine.transition("t1", lambda r: r)

        assert store.save.await_count == machine.max_write_retries
