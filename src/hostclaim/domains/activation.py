"""Activation of verified custom domains.

After the CNAME challenge succeeds the external SSL provisioner issues a
certificate and reports back. The tenant then switches the CNAME from the
``verify-<token>`` target to the platform's serving target:

    Verification:  booking.example.com  CNAME  verify-<token>.platform.example
    Activation:    booking.example.com  CNAME  platform.example

The orchestrator turns the record into human-actionable status, accepts the
provisioner's signals and flips ``ssl_status`` to ``active`` exactly once.
It also answers on-demand TLS "may I issue a certificate for this name?"
queries so certificates are only requested for verified hostnames.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from hostclaim.domains.errors import NoChallengeInProgressError, NotVerifiedError
from hostclaim.domains.machine import VerificationStateMachine
from hostclaim.domains.models import DomainRecord, DomainStatus, LifecycleState, SSLStatus
from hostclaim.domains.probe import DNSProbe
from hostclaim.domains.storage import DomainStore
from hostclaim.domains.validation import normalize_hostname
from hostclaim.observability.metrics import DOMAIN_TRANSITIONS

logger = structlog.get_logger()

_SSL_READY = frozenset({SSLStatus.PROVISIONED, SSLStatus.ACTIVE})


class ActivationPhase(Enum):
    """Caller-facing activation progress."""

    NOT_STARTED = "not_started"
    PENDING_VERIFICATION = "pending_verification"
    PENDING_SSL = "pending_ssl"
    READY_FOR_ACTIVATION = "ready_for_activation"
    NOT_READY = "not_ready"
    ACTIVE = "active"
    FAILED = "failed"


@dataclass
class ActivationStatus:
    """Human-actionable view of where a domain stands."""

    status: ActivationPhase
    message: str
    next_step: str
    custom_domain: str | None = None
    domain_status: str | None = None
    ssl_status: str | None = None
    instructions: dict[str, Any] | None = None
    final_cname_target: str | None = None
    test_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status.value,
            "message": self.message,
            "next_step": self.next_step,
            "custom_domain": self.custom_domain,
            "domain_status": self.domain_status,
            "ssl_status": self.ssl_status,
        }
        if self.instructions is not None:
            data["instructions"] = self.instructions
        if self.final_cname_target is not None:
            data["final_cname_target"] = self.final_cname_target
        if self.test_url is not None:
            data["test_url"] = self.test_url
            data["ready_for_traffic"] = True
        return data


@dataclass
class ActivationCheck:
    """Result of an explicit activation check."""

    activated: bool
    status: ActivationPhase
    custom_domain: str
    ssl_status: str
    message: str
    test_url: str | None = None
    expected_cname: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "activated": self.activated,
            "status": self.status.value,
            "custom_domain": self.custom_domain,
            "ssl_status": self.ssl_status,
            "message": self.message,
        }
        if self.test_url is not None:
            data["test_url"] = self.test_url
        if self.expected_cname is not None:
            data["expected_cname"] = self.expected_cname
        return data


@dataclass
class TLSAuthorization:
    """Answer to an on-demand TLS issuance query."""

    authorized: bool
    hostname: str
    tenant_id: str | None = None
    tenant_name: str | None = None
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.authorized

    def to_dict(self) -> dict[str, Any]:
        if self.authorized:
            return {
                "authorized": True,
                "tenant_id": self.tenant_id,
                "tenant_name": self.tenant_name,
                "domain": self.hostname,
            }
        return {"authorized": False, "domain": self.hostname, "error": self.reason}


@dataclass
class ActivationOrchestrator:
    """Drives verified records through SSL readiness to activation."""

    store: DomainStore
    machine: VerificationStateMachine
    probe: DNSProbe
    activation_target: str
    require_cutover_dns: bool = False
    ttl_recommendation: int = 300
    tls_allowed_plans: Iterable[str] = ("professional", "enterprise")
    blocked_subscription_statuses: Iterable[str] = ("cancelled", "suspended")

    def _test_url(self, record: DomainRecord) -> str:
        return f"https://{record.hostname}"

    def _ssl_ready(self, record: DomainRecord) -> bool:
        return record.is_verified and record.ssl_status in _SSL_READY

    async def record_ssl_status(self, tenant_id: str, ssl_status: SSLStatus) -> DomainRecord:
        """Apply a signal from the external SSL provisioner.

        Raises:
            NotVerifiedError: The domain never passed verification.
            ValueError: ``pending`` is not a provisioner signal.
        """
        if ssl_status == SSLStatus.PENDING:
            raise ValueError("pending is not a valid provisioner signal")

        now = self.machine.now()

        def apply(record: DomainRecord) -> DomainRecord | None:
            if record.verified_at is None:
                raise NotVerifiedError(tenant_id)

            if ssl_status == SSLStatus.FAILED:
                record.ssl_status = SSLStatus.FAILED
                record.domain_status = DomainStatus.FAILED
                return record

            # Provisioner retried after a failure.
            if record.domain_status == DomainStatus.FAILED:
                record.domain_status = DomainStatus.VERIFIED
            if not record.is_verified:
                raise NotVerifiedError(tenant_id)

            if ssl_status == SSLStatus.PROVISIONING:
                if record.ssl_status == SSLStatus.ACTIVE:
                    return None
                record.ssl_status = SSLStatus.PROVISIONING
            elif ssl_status == SSLStatus.PROVISIONED:
                record.ssl_ready_at = record.ssl_ready_at or now
                if record.ssl_status != SSLStatus.ACTIVE:
                    record.ssl_status = SSLStatus.PROVISIONED
            else:
                record.ssl_ready_at = record.ssl_ready_at or now
                record.ssl_status = SSLStatus.ACTIVE
                record.activated_at = record.activated_at or now
            return record

        record = await self.machine.transition(tenant_id, apply)
        logger.info(
            "SSL provisioner signal applied",
            tenant_id=tenant_id,
            hostname=record.hostname,
            signal=ssl_status.value,
            ssl_status=record.ssl_status.value,
            domain_status=record.domain_status.value,
        )
        if record.domain_status == DomainStatus.FAILED:
            DOMAIN_TRANSITIONS.labels(to_state=LifecycleState.FAILED.value).inc()
        return record

    def _status_for(self, record: DomainRecord) -> ActivationStatus:
        now = self.machine.now()
        common = {
            "custom_domain": record.hostname,
            "domain_status": record.domain_status.value,
            "ssl_status": record.ssl_status.value,
        }
        state = record.state(now)

        if state == LifecycleState.FAILED:
            return ActivationStatus(
                status=ActivationPhase.FAILED,
                message="SSL certificate provisioning failed",
                next_step="Initiate domain verification again",
                **common,
            )
        if state == LifecycleState.ACTIVE:
            return ActivationStatus(
                status=ActivationPhase.ACTIVE,
                message="Custom domain is live and ready!",
                next_step="Domain is ready - customers can visit your custom domain",
                final_cname_target=self.activation_target,
                test_url=self._test_url(record),
                **common,
            )
        if state != LifecycleState.VERIFIED:
            return ActivationStatus(
                status=ActivationPhase.PENDING_VERIFICATION,
                message="Domain must be verified before activation",
                next_step="Complete domain verification first",
                instructions={
                    "step": "Create the verification CNAME record",
                    "record": {
                        "type": "CNAME",
                        "name": record.hostname,
                        "value": record.verification_target,
                    },
                    "ttl_recommendation": self.ttl_recommendation,
                },
                **common,
            )
        if not self._ssl_ready(record):
            return ActivationStatus(
                status=ActivationPhase.PENDING_SSL,
                message="SSL certificate is still being provisioned",
                next_step="Wait for SSL certificate to be provisioned",
                **common,
            )
        return ActivationStatus(
            status=ActivationPhase.READY_FOR_ACTIVATION,
            message="Domain verified and SSL ready - update CNAME to activate",
            next_step="Update CNAME record at your DNS provider",
            final_cname_target=self.activation_target,
            instructions={
                "step": "Update your DNS CNAME record",
                "current_record": f"{record.hostname} CNAME {record.verification_target}",
                "new_record": f"{record.hostname} CNAME {self.activation_target}",
                "ttl_recommendation": self.ttl_recommendation,
            },
            **common,
        )

    async def get_status(self, tenant_id: str) -> ActivationStatus:
        """Derive the activation status for a tenant."""
        record = await self.machine.expire_if_due(tenant_id)
        if record is None:
            return ActivationStatus(
                status=ActivationPhase.NOT_STARTED,
                message="No custom domain configured",
                next_step="Initiate domain verification",
            )
        return self._status_for(record)

    async def check_activation(self, tenant_id: str) -> ActivationCheck:
        """Flip a ready domain to active; otherwise just report where it is.

        Safe to call repeatedly: nothing is written while the certificate is
        still being issued, and the flip to ``active`` happens once.

        Raises:
            NoChallengeInProgressError: No domain configured.
            NotVerifiedError: The domain is not verified.
        """
        record = await self.store.get(tenant_id)
        if record is None:
            raise NoChallengeInProgressError(tenant_id)
        if not record.is_verified:
            raise NotVerifiedError(tenant_id)

        if record.is_active:
            return ActivationCheck(
                activated=True,
                status=ActivationPhase.ACTIVE,
                custom_domain=record.hostname,
                ssl_status=record.ssl_status.value,
                message="Domain is now live!",
                test_url=self._test_url(record),
            )

        if not self._ssl_ready(record):
            return ActivationCheck(
                activated=False,
                status=ActivationPhase.PENDING_SSL,
                custom_domain=record.hostname,
                ssl_status=record.ssl_status.value,
                message="SSL certificate is still being provisioned",
            )

        if self.require_cutover_dns and not await self.probe.check_live(
            record.hostname, self.activation_target
        ):
            return ActivationCheck(
                activated=False,
                status=ActivationPhase.NOT_READY,
                custom_domain=record.hostname,
                ssl_status=record.ssl_status.value,
                message="Domain not yet pointing to platform",
                expected_cname=self.activation_target,
            )

        now = self.machine.now()
        flipped = False

        def activate(current: DomainRecord) -> DomainRecord | None:
            nonlocal flipped
            if current.is_active or not self._ssl_ready(current):
                return None
            current.ssl_status = SSLStatus.ACTIVE
            current.ssl_ready_at = current.ssl_ready_at or now
            current.activated_at = current.activated_at or now
            flipped = True
            return current

        updated = await self.machine.transition(tenant_id, activate)
        if flipped:
            DOMAIN_TRANSITIONS.labels(to_state=LifecycleState.ACTIVE.value).inc()
            logger.info("Custom domain activated", tenant_id=tenant_id, hostname=updated.hostname)

        if updated.is_active:
            return ActivationCheck(
                activated=True,
                status=ActivationPhase.ACTIVE,
                custom_domain=updated.hostname,
                ssl_status=updated.ssl_status.value,
                message="Domain is now live!",
                test_url=self._test_url(updated),
            )
        status = self._status_for(updated)
        return ActivationCheck(
            activated=False,
            status=status.status,
            custom_domain=updated.hostname,
            ssl_status=updated.ssl_status.value,
            message=status.message,
        )

    async def authorize_certificate(self, hostname: str) -> TLSAuthorization:
        """Decide whether a certificate may be issued for ``hostname``.

        An authorized query is stamped on the record as ``tls_authorized_at``
        so the provisioner's progress is visible to the tenant.
        """
        hostname = normalize_hostname(hostname)
        verified = [r for r in await self.store.find_by_hostname(hostname) if r.is_verified]
        if not verified:
            logger.info("TLS issuance refused", hostname=hostname, reason="not_verified")
            return TLSAuthorization(False, hostname, reason="Domain not authorized")

        record = verified[0]
        tenant = await self.store.get_tenant(record.tenant_id)
        if tenant is None:
            return TLSAuthorization(False, hostname, reason="Domain not authorized")

        if tenant.subscription_status in tuple(self.blocked_subscription_statuses):
            logger.info("TLS issuance refused", hostname=hostname, reason="subscription_inactive")
            return TLSAuthorization(False, hostname, tenant.tenant_id, reason="Subscription inactive")

        allowed = tuple(self.tls_allowed_plans)
        if allowed and tenant.subscription_plan not in allowed:
            logger.info(
                "TLS issuance refused",
                hostname=hostname,
                reason="plan",
                plan=tenant.subscription_plan,
            )
            return TLSAuthorization(
                False,
                hostname,
                tenant.tenant_id,
                reason="Plan does not support custom domains",
            )

        await self._record_authorization(record, self.machine.now())
        logger.info("TLS issuance authorized", hostname=hostname, tenant_id=tenant.tenant_id)
        return TLSAuthorization(True, hostname, tenant.tenant_id, tenant.name)

    async def _record_authorization(self, record: DomainRecord, now: datetime) -> None:
        token = record.verification_token

        def stamp(current: DomainRecord) -> DomainRecord | None:
            if current.verification_token != token or not current.is_verified:
                return None
            current.tls_authorized_at = now
            if current.ssl_status == SSLStatus.PENDING:
                current.ssl_status = SSLStatus.PROVISIONED
            return current

        try:
            await self.machine.transition(record.tenant_id, stamp)
        except NoChallengeInProgressError:
            logger.debug(
                "Record removed before TLS authorization was stored", hostname=record.hostname
            )
