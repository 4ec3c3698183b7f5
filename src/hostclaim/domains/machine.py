"""Verification state machine for tenant domain records.

Lifecycle (``LifecycleState``):

    not_started --initiate--> pending
    pending/conflicted --probe: CNAME match--> verified (ssl_status=provisioned)
    pending/conflicted --probe: no match, no conflicts--> pending (attempts+1)
    pending/conflicted --probe: no match, A/AAAA/TXT present--> conflicted (attempts+1)
    pending/conflicted --probe after token horizon--> expired
    any --re-initiate--> pending (new token, attempts reset)
    verified --SSL ready + activation check--> active

Rate limiting: once ``attempts`` reaches ``max_attempts`` further probes are
rejected until ``rate_limit_window`` has passed since ``last_check_at``, at
which point the counter starts over.

Every write goes through the store's versioned compare-and-swap. A probe
reserves its attempt (attempts+1, last_check_at=now) before any DNS traffic,
so two concurrent probes for one tenant can never both slip under the limit.
Writers that lose the race reload the record and evaluate the guards again.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

import structlog

from hostclaim.domains.audit import AuditTrail, AuditWrite
from hostclaim.domains.challenge import ChallengeIssuer
from hostclaim.domains.errors import (
    ChallengeExpiredError,
    ConcurrentUpdateError,
    NoChallengeInProgressError,
    ThrottledError,
)
from hostclaim.domains.models import (
    AttemptOutcome,
    DomainConflict,
    DomainRecord,
    DomainStatus,
    LifecycleState,
    SSLStatus,
    VerificationAttempt,
    utc_now,
)
from hostclaim.domains.probe import DNSProbe, ProbeReport
from hostclaim.domains.storage import DomainStore
from hostclaim.domains.validation import ValidatedHostname
from hostclaim.observability.metrics import (
    DOMAIN_TRANSITIONS,
    PROBE_DURATION,
    VERIFICATION_ATTEMPTS,
    VERIFICATION_REJECTIONS,
)

logger = structlog.get_logger()

Mutation = Callable[[DomainRecord], DomainRecord | None]


@dataclass
class ProbeOutcome:
    """What a verification probe did to a record."""

    record: DomainRecord
    state: LifecycleState
    report: ProbeReport | None = None
    attempt: VerificationAttempt | None = None
    audit: AuditWrite | None = None
    conflict_logged: bool = False
    already_verified: bool = False
    superseded: bool = False

    @property
    def verified(self) -> bool:
        return self.record.is_verified


class VerificationStateMachine:
    """Owns every transition of a ``DomainRecord``."""

    def __init__(
        self,
        store: DomainStore,
        issuer: ChallengeIssuer,
        dns: DNSProbe,
        audit: AuditTrail,
        max_attempts: int = 5,
        rate_limit_window: timedelta = timedelta(hours=1),
        check_cooldown: timedelta = timedelta(minutes=5),
        max_write_retries: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self.dns = dns
        self.audit = audit
        self.max_attempts = max_attempts
        self.rate_limit_window = rate_limit_window
        self.check_cooldown = check_cooldown
        self.max_write_retries = max(1, max_write_retries)
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def now(self) -> datetime:
        return self._clock()

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tenant_id] = lock
        return lock

    def next_check_at(self, record: DomainRecord | None) -> datetime:
        """Advisory time of the next DNS check (cooldown after the last one)."""
        if record is None or record.last_check_at is None:
            return self.now()
        return record.last_check_at + self.check_cooldown

    def attempts_remaining(self, record: DomainRecord) -> int:
        return max(0, self.max_attempts - record.attempts)

    def rate_limit(self, record: DomainRecord, now: datetime) -> bool:
        """Apply the attempt cap.

        Returns:
            True when the window elapsed and the counter must be reset.

        Raises:
            ThrottledError: The cap is reached and the window is still open.
        """
        if record.attempts < self.max_attempts:
            return False
        if record.last_check_at is not None and now - record.last_check_at < self.rate_limit_window:
            raise ThrottledError(
                record.tenant_id,
                next_retry_after=record.last_check_at + self.rate_limit_window,
            )
        return True

    async def transition(self, tenant_id: str, mutate: Mutation) -> DomainRecord:
        """Apply ``mutate`` to the stored record with compare-and-swap retries.

        ``mutate`` receives a fresh copy and returns the new record, or None to
        leave the stored record untouched. It may raise to abort.
        """
        retries = self.max_write_retries
        for attempt in range(1, retries + 1):
            current = await self.store.get(tenant_id)
            if current is None:
                raise NoChallengeInProgressError(tenant_id)
            updated = mutate(replace(current))
            if updated is None:
                return current
            try:
                return await self.store.save(updated, current.version)
            except ConcurrentUpdateError:
                if attempt == retries:
                    raise
                logger.debug("Record changed during transition, retrying", tenant_id=tenant_id)
        raise ConcurrentUpdateError(tenant_id, None, None)

    async def initiate(self, tenant_id: str, validated: ValidatedHostname) -> DomainRecord:
        """Create or replace the tenant's record with a fresh challenge.

        Any previous challenge is invalidated immediately, even one that is
        still propagating.
        """
        async with self._lock_for(tenant_id):
            retries = self.max_write_retries
            for attempt in range(1, retries + 1):
                existing = await self.store.get(tenant_id)
                challenge = self.issuer.issue(validated.hostname)
                record = DomainRecord(
                    tenant_id=tenant_id,
                    hostname=validated.hostname,
                    apex_domain=validated.apex_domain,
                    subdomain=validated.subdomain,
                    verification_token=challenge.token,
                    verification_target=challenge.target,
                    token_issued_at=challenge.issued_at,
                    token_expires_at=challenge.expires_at,
                    created_at=existing.created_at if existing else challenge.issued_at,
                )
                try:
                    saved = await self.store.save(
                        record, existing.version if existing else None
                    )
                except ConcurrentUpdateError:
                    if attempt == retries:
                        raise
                    continue

                if existing is not None and existing.verification_token:
                    logger.info(
                        "Verification challenge reissued",
                        tenant_id=tenant_id,
                        hostname=saved.hostname,
                        previous_hostname=existing.hostname,
                        previous_state=existing.state(challenge.issued_at).value,
                    )
                else:
                    logger.info(
                        "Domain verification initiated",
                        tenant_id=tenant_id,
                        hostname=saved.hostname,
                    )
                DOMAIN_TRANSITIONS.labels(to_state=LifecycleState.PENDING.value).inc()
                return saved

            raise ConcurrentUpdateError(tenant_id, None, None)

    async def expire_if_due(self, tenant_id: str) -> DomainRecord | None:
        """Persist ``expired`` for a record whose token horizon has passed."""
        now = self.now()

        def mark_expired(record: DomainRecord) -> DomainRecord | None:
            if record.domain_status not in (DomainStatus.PENDING, DomainStatus.CONFLICTED):
                return None
            if not record.is_expired(now):
                return None
            record.domain_status = DomainStatus.EXPIRED
            return record

        record = await self.store.get(tenant_id)
        if record is None or record.state(now) != LifecycleState.EXPIRED:
            return record
        if record.domain_status == DomainStatus.EXPIRED:
            return record

        updated = await self.transition(tenant_id, mark_expired)
        if updated.domain_status == DomainStatus.EXPIRED:
            DOMAIN_TRANSITIONS.labels(to_state=LifecycleState.EXPIRED.value).inc()
            logger.info("Verification challenge expired", tenant_id=tenant_id, hostname=updated.hostname)
        return updated

    async def _reserve_attempt(self, tenant_id: str) -> tuple[DomainRecord, bool]:
        """Check guards and claim one attempt.

        Returns:
            The reserved record and whether it was already verified.
        """
        retries = self.max_write_retries
        for attempt in range(1, retries + 1):
            record = await self.store.get(tenant_id)
            if record is None or not (record.verification_token and record.verification_target):
                VERIFICATION_REJECTIONS.labels(reason="no_challenge").inc()
                raise NoChallengeInProgressError(tenant_id)
            if record.is_verified:
                return record, True
            if record.domain_status == DomainStatus.FAILED:
                VERIFICATION_REJECTIONS.labels(reason="no_challenge").inc()
                raise NoChallengeInProgressError(tenant_id)

            now = self.now()
            if record.is_expired(now):
                await self.expire_if_due(tenant_id)
                VERIFICATION_REJECTIONS.labels(reason="expired").inc()
                raise ChallengeExpiredError(tenant_id, record.token_expires_at or now)

            try:
                reset = self.rate_limit(record, now)
            except ThrottledError:
                VERIFICATION_REJECTIONS.labels(reason="throttled").inc()
                logger.info(
                    "Verification throttled",
                    tenant_id=tenant_id,
                    attempts=record.attempts,
                    last_check_at=record.last_check_at.isoformat() if record.last_check_at else None,
                )
                raise
            if reset:
                logger.debug("Verification attempt counter reset", tenant_id=tenant_id)

            reserved = replace(
                record,
                attempts=(0 if reset else record.attempts) + 1,
                last_check_at=now,
            )
            try:
                return await self.store.save(reserved, record.version), False
            except ConcurrentUpdateError:
                if attempt == retries:
                    raise
        raise ConcurrentUpdateError(tenant_id, None, None)

    def _outcome_for(self, report: ProbeReport) -> AttemptOutcome:
        if report.cname.found:
            return AttemptOutcome.VERIFIED
        if report.conflicts.has_conflicts:
            return AttemptOutcome.CONFLICTED
        return AttemptOutcome.FAILED

    def _apply_outcome(
        self,
        record: DomainRecord,
        outcome: AttemptOutcome,
        now: datetime,
    ) -> DomainRecord:
        if outcome == AttemptOutcome.VERIFIED:
            record.domain_status = DomainStatus.VERIFIED
            record.verified_at = record.verified_at or now
            record.ssl_status = SSLStatus.PROVISIONED
        elif outcome == AttemptOutcome.CONFLICTED:
            record.domain_status = DomainStatus.CONFLICTED
        else:
            record.domain_status = DomainStatus.PENDING
        return record

    async def probe(self, tenant_id: str, include_propagation: bool = True) -> ProbeOutcome:
        """Run one verification probe for the tenant and advance its state.

        Raises:
            NoChallengeInProgressError: Nothing to verify.
            ChallengeExpiredError: Token horizon passed; DNS is not consulted.
            ThrottledError: Attempt cap reached inside the window.
        """
        async with self._lock_for(tenant_id):
            reserved, already_verified = await self._reserve_attempt(tenant_id)
            if already_verified:
                return ProbeOutcome(
                    record=reserved,
                    state=reserved.state(self.now()),
                    already_verified=True,
                )
            with PROBE_DURATION.time():
                report = await self.dns.inspect(
                    reserved.hostname,
                    reserved.verification_target,
                    include_propagation=include_propagation,
                )
            now = self.now()
            outcome = self._outcome_for(report)

            superseded = False

            def apply(record: DomainRecord) -> DomainRecord | None:
                nonlocal superseded
                if record.verification_token != reserved.verification_token:
                    superseded = True
                    return None
                if record.is_verified:
                    return None
                return self._apply_outcome(record, outcome, now)

            try:
                updated = await self.transition(tenant_id, apply)
            except NoChallengeInProgressError:
                # Record removed while the probe was in flight.
                updated = None
                superseded = True
            final = updated or reserved

            attempt = VerificationAttempt(
                tenant_id=tenant_id,
                hostname=reserved.hostname,
                verification_target=reserved.verification_target,
                outcome=outcome,
                diagnostic=report.to_diagnostic(),
                timestamp=now,
            )
            audit_result = await self.audit.record(attempt)
            VERIFICATION_ATTEMPTS.labels(outcome=outcome.value).inc()

            conflict_logged = False
            if outcome == AttemptOutcome.CONFLICTED:
                conflict = DomainConflict(
                    hostname=reserved.hostname,
                    tenant_id=tenant_id,
                    conflicting_records=list(report.conflicts.records),
                    timestamp=now,
                )
                conflict_logged = bool(await self.audit.record_conflict(conflict))

            state = final.state(now)
            if superseded:
                logger.info(
                    "Challenge replaced while probing, outcome discarded",
                    tenant_id=tenant_id,
                    hostname=reserved.hostname,
                    outcome=outcome.value,
                )
            else:
                if final.domain_status != reserved.domain_status:
                    DOMAIN_TRANSITIONS.labels(to_state=state.value).inc()
                logger.info(
                    "Verification probe completed",
                    tenant_id=tenant_id,
                    hostname=reserved.hostname,
                    outcome=outcome.value,
                    state=state.value,
                    attempts=final.attempts,
                    cname_targets=report.cname.actual_targets,
                    dns_error=report.cname.error,
                )

            return ProbeOutcome(
                record=final,
                state=state,
                report=report,
                attempt=attempt,
                audit=audit_result,
                conflict_logged=conflict_logged,
                superseded=superseded,
            )
