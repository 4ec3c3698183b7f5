"""Domain manager: the boundary API for custom hostname claims.

This module wires the validator, challenge issuer, DNS probe, state machine,
activation orchestrator and audit trail together and shapes their results
into the JSON-ready dictionaries served by the HTTP API and the CLI.

Usage:
    manager = DomainManager.from_config(get_config())
    await manager.add_tenant("t1", "Acme Tours", subscription_plan="professional")

    # Claim booking.example.com and get the CNAME to create
    started = await manager.initiate("t1", "example.com", "booking")

    # Probe DNS (rate limited)
    result = await manager.retry("t1")

    # Once the SSL provisioner reports readiness
    await manager.activation_check("t1")
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from hostclaim.core.config import HostclaimConfig, get_config
from hostclaim.domains.activation import ActivationOrchestrator, TLSAuthorization
from hostclaim.domains.audit import AuditTrail
from hostclaim.domains.challenge import ChallengeIssuer
from hostclaim.domains.errors import (
    NoChallengeInProgressError,
    NotVerifiedError,
    TenantNotFoundError,
)
from hostclaim.domains.guides import CUTOVER_ISSUES, provider_guides, testing_methods
from hostclaim.domains.machine import ProbeOutcome, VerificationStateMachine
from hostclaim.domains.models import DomainRecord, LifecycleState, SSLStatus, Tenant, utc_now
from hostclaim.domains.probe import DNSProbe, ResolverFactory
from hostclaim.domains.storage import DomainStore, JSONDomainStore
from hostclaim.domains.validation import HostnameValidator

logger = structlog.get_logger()

COMMON_ISSUES = [
    "CNAME record not created or incorrect target",
    "DNS propagation still in progress (can take 5-60 minutes)",
    "Conflicting DNS records (A, AAAA, other CNAME)",
    "TTL too high causing slow propagation",
]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class DomainManager:
    """Coordinates the verification engine behind one interface."""

    def __init__(
        self,
        store: DomainStore,
        validator: HostnameValidator,
        machine: VerificationStateMachine,
        orchestrator: ActivationOrchestrator,
        ttl_recommendation: int = 300,
    ) -> None:
        self.store = store
        self.validator = validator
        self.machine = machine
        self.orchestrator = orchestrator
        self.ttl_recommendation = ttl_recommendation

    @classmethod
    def from_config(
        cls,
        config: HostclaimConfig | None = None,
        store: DomainStore | None = None,
        resolver_factory: ResolverFactory | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> DomainManager:
        """Build a manager from configuration.

        Args:
            config: Settings to use (the cached global config if None).
            store: Store override; defaults to a JSON file at ``server.storage_path``.
            resolver_factory: DNS resolver factory override, mainly for tests.
            clock: Source of the current time.
        """
        config = config or get_config()
        verification = config.verification
        store = store or JSONDomainStore(config.server.storage_path)

        issuer = ChallengeIssuer(
            verification.platform_domain,
            token_ttl=verification.token_ttl_delta,
            clock=clock,
        )
        probe = DNSProbe(
            nameservers=config.dns.nameservers or None,
            consistency_resolvers=config.dns.consistency_resolvers,
            timeout=config.dns.dns_timeout,
            tries=config.dns.dns_tries,
            resolver_factory=resolver_factory,
        )
        audit = AuditTrail(store)
        machine = VerificationStateMachine(
            store,
            issuer,
            probe,
            audit,
            max_attempts=verification.max_attempts,
            rate_limit_window=verification.rate_limit_window_delta,
            check_cooldown=verification.check_cooldown_delta,
            clock=clock,
        )
        validator = HostnameValidator(store, verification.default_subdomain, clock=clock)
        orchestrator = ActivationOrchestrator(
            store,
            machine,
            probe,
            activation_target=config.activation_target,
            require_cutover_dns=config.activation.require_cutover_dns,
            ttl_recommendation=verification.ttl_recommendation,
            tls_allowed_plans=tuple(config.activation.tls_allowed_plans),
        )
        return cls(
            store,
            validator,
            machine,
            orchestrator,
            ttl_recommendation=verification.ttl_recommendation,
        )

    @property
    def audit(self) -> AuditTrail:
        return self.machine.audit

    @property
    def probe(self) -> DNSProbe:
        return self.machine.dns

    async def add_tenant(
        self,
        tenant_id: str,
        name: str,
        slug: str | None = None,
        subscription_plan: str | None = None,
        subscription_status: str | None = None,
    ) -> Tenant:
        """Register or update the engine's view of a tenant."""
        tenant = Tenant(
            tenant_id=tenant_id,
            name=name,
            slug=slug,
            subscription_plan=subscription_plan,
            subscription_status=subscription_status,
        )
        await self.store.put_tenant(tenant)
        return tenant

    async def _require_tenant(self, tenant_id: str) -> Tenant:
        tenant = await self.store.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        return tenant

    async def initiate(
        self,
        tenant_id: str,
        apex_domain: str,
        subdomain: str | None = "booking",
    ) -> dict[str, Any]:
        """Start (or restart) verification of ``<subdomain>.<apex_domain>``.

        Raises:
            TenantNotFoundError: Unknown tenant.
            InvalidHostnameError: Malformed domain.
            ApexDomainRejectedError: Bare apex requested.
            HostnameCollisionError: Hostname held by another tenant.
        """
        await self._require_tenant(tenant_id)
        validated = await self.validator.validate(tenant_id, apex_domain, subdomain)
        record = await self.machine.initiate(tenant_id, validated)

        hostname = record.hostname
        target = record.verification_target
        ttl = self.ttl_recommendation
        return {
            "success": True,
            "verification_target": target,
            "cname_source": hostname,
            "cname_target": target,
            "expires_at": _iso(record.token_expires_at),
            "ttl_recommendation": ttl,
            "instructions": (
                f"Create CNAME record: {hostname} -> {target}\n\n"
                "This single step will verify domain ownership and set up traffic routing.\n\n"
                f"Recommended TTL: {ttl} seconds during setup, then increase to "
                "3600 seconds (1 hour) after verification."
            ),
            "next_steps": [
                f"Add CNAME record: {hostname} CNAME {target}",
                "Wait for DNS propagation (usually 5-15 minutes)",
                "We will automatically detect the CNAME and provision SSL certificate",
                "Your custom domain will be active once SSL is ready",
            ],
        }

    async def status(self, tenant_id: str, check_propagation: bool = True) -> dict[str, Any]:
        """Report verification progress for a tenant.

        While the challenge is pending, independent resolvers are queried so
        the tenant can see whether their CNAME has propagated. This does not
        count as a verification attempt.
        """
        await self._require_tenant(tenant_id)
        record = await self.machine.expire_if_due(tenant_id)
        now = self.machine.now()

        if record is None:
            return {
                "success": True,
                "domain": None,
                "subdomain": None,
                "status": LifecycleState.NOT_STARTED.value,
                "domain_status": None,
                "ssl_status": None,
                "dns_propagation": None,
                "verified_at": None,
                "verification_expires": None,
                "verification_attempts": 0,
                "next_check_at": _iso(self.machine.next_check_at(None)),
                "last_check_at": None,
                "verification_target": None,
            }

        state = record.state(now)
        propagation = None
        if check_propagation and state == LifecycleState.PENDING and record.verification_target:
            report = await self.probe.check_propagation(record.hostname, record.verification_target)
            propagation = report.to_dict()

        return {
            "success": True,
            "domain": record.hostname,
            "subdomain": record.subdomain,
            "status": state.value,
            "domain_status": record.domain_status.value,
            "ssl_status": record.ssl_status.value,
            "dns_propagation": propagation,
            "verified_at": _iso(record.verified_at),
            "verification_expires": _iso(record.token_expires_at),
            "verification_attempts": record.attempts,
            "next_check_at": _iso(self.machine.next_check_at(record)),
            "last_check_at": _iso(record.last_check_at),
            "verification_target": record.verification_target,
        }

    async def retry(self, tenant_id: str) -> dict[str, Any]:
        """Run one verification probe now.

        Raises:
            TenantNotFoundError: Unknown tenant.
            NoChallengeInProgressError: Nothing to verify.
            ChallengeExpiredError: The challenge must be re-initiated.
            ThrottledError: Too many attempts inside the window.
        """
        await self._require_tenant(tenant_id)
        if self.audit.backlog:
            await self.audit.flush_backlog()

        outcome = await self.machine.probe(tenant_id)
        return self._retry_response(outcome)

    def _retry_response(self, outcome: ProbeOutcome) -> dict[str, Any]:
        record = outcome.record
        report = outcome.report
        if outcome.already_verified or report is None:
            return {
                "success": True,
                "status": "already_verified",
                "message": "Domain is already verified",
                "domain_status": record.domain_status.value,
                "ssl_status": record.ssl_status.value,
            }

        audit_logged = bool(outcome.audit) if outcome.audit is not None else True
        if outcome.verified and not outcome.superseded:
            return {
                "success": True,
                "status": "verified",
                "message": (
                    "Domain verification successful! "
                    "SSL certificate provisioning will begin shortly."
                ),
                "verified_at": _iso(record.verified_at),
                "domain_status": record.domain_status.value,
                "ssl_status": record.ssl_status.value,
                "audit_logged": audit_logged,
                "next_steps": [
                    "DNS verification complete",
                    "SSL certificate provisioning in progress...",
                    "Domain will be fully active once SSL is ready (typically 2-5 minutes)",
                ],
            }

        now = self.machine.now()
        hostname = record.hostname
        target = report.expected_target
        return {
            "success": False,
            "status": "verification_failed",
            "message": "Domain verification failed. Please check your CNAME record.",
            "expected_record": {"type": "CNAME", "name": hostname, "target": target},
            "actual_target": report.cname.actual_target,
            "conflicts": report.cname.conflicts,
            "dns_conflicts": [r.to_dict() for r in report.conflicts.records],
            "error": report.cname.error,
            "dns_propagation": report.propagation.to_dict() if report.propagation else None,
            "attempts_remaining": self.machine.attempts_remaining(record),
            "next_retry_after": _iso(now + self.machine.check_cooldown),
            "audit_logged": audit_logged,
            "troubleshooting": {
                "common_issues": list(COMMON_ISSUES),
                "suggested_actions": [
                    f"Verify CNAME record: {hostname} -> {target}",
                    "Check DNS propagation status with online tools",
                    "Ensure no conflicting A or AAAA records exist",
                    f"Consider lowering TTL to {self.ttl_recommendation} seconds during setup",
                ],
            },
        }

    async def activation_status(self, tenant_id: str) -> dict[str, Any]:
        await self._require_tenant(tenant_id)
        status = await self.orchestrator.get_status(tenant_id)
        return {"success": True, **status.to_dict()}

    async def activation_check(self, tenant_id: str) -> dict[str, Any]:
        await self._require_tenant(tenant_id)
        check = await self.orchestrator.check_activation(tenant_id)
        return {"success": True, **check.to_dict()}

    async def cname_instructions(self, tenant_id: str) -> dict[str, Any]:
        """Explain how to point the verified hostname at the platform.

        Raises:
            TenantNotFoundError: Unknown tenant.
            NoChallengeInProgressError: No domain configured.
            NotVerifiedError: Verification has not succeeded yet.
        """
        tenant = await self._require_tenant(tenant_id)
        record = await self.store.get(tenant_id)
        if record is None:
            raise NoChallengeInProgressError(tenant_id)
        if not record.is_verified:
            raise NotVerifiedError(tenant_id)

        hostname = record.hostname
        target = self.orchestrator.activation_target
        name = record.subdomain
        return {
            "success": True,
            "tenant": {
                "name": tenant.name,
                "slug": tenant.slug,
                "verified_at": _iso(record.verified_at),
            },
            "domain_info": {
                "base_domain": record.apex_domain,
                "subdomain": name,
                "full_custom_domain": hostname,
                "platform_target": target,
            },
            "cname_record": {
                "type": "CNAME",
                "name": name,
                "value": target,
                "description": f"Point {hostname} to {target}",
            },
            "instructions": [
                {
                    "title": "Create CNAME Record",
                    "description": "Replace the verification CNAME in your domain's DNS settings",
                    "record": {
                        "type": "CNAME",
                        "name": name,
                        "value": target,
                        "ttl": self.ttl_recommendation,
                    },
                },
                {
                    "title": "Wait for DNS Propagation",
                    "description": "DNS changes can take 5-60 minutes to propagate globally",
                },
                {
                    "title": "SSL Certificate",
                    "description": (
                        "An SSL certificate is provisioned automatically for your custom domain"
                    ),
                },
            ],
            "provider_guides": provider_guides(name, target),
            "testing": {"description": "Test your setup", "methods": testing_methods(hostname)},
            "troubleshooting": {"common_issues": [dict(i) for i in CUTOVER_ISSUES]},
        }

    async def report_ssl(self, tenant_id: str, ssl_status: str) -> dict[str, Any]:
        """Apply an SSL provisioner callback.

        Raises:
            ValueError: Unknown or non-signal status value.
        """
        await self._require_tenant(tenant_id)
        record = await self.orchestrator.record_ssl_status(tenant_id, SSLStatus(ssl_status))
        return {
            "success": True,
            "custom_domain": record.hostname,
            "domain_status": record.domain_status.value,
            "ssl_status": record.ssl_status.value,
            "ssl_ready_at": _iso(record.ssl_ready_at),
        }

    async def authorize_tls(self, hostname: str) -> TLSAuthorization:
        return await self.orchestrator.authorize_certificate(hostname)

    async def remove(self, tenant_id: str) -> bool:
        """Drop the tenant's domain record. Audit history is kept."""
        removed = await self.store.delete(tenant_id)
        if removed:
            logger.info("Domain record removed", tenant_id=tenant_id)
        return removed

    async def list_records(self) -> list[DomainRecord]:
        return await self.store.list_all()

    async def history(self, tenant_id: str) -> list[dict[str, Any]]:
        """Verification attempts recorded for a tenant, oldest first."""
        return [a.to_dict() for a in await self.audit.attempts(tenant_id)]
