"""Hostclaim custom domain verification.

Tenants prove control of a hostname such as booking.example.com by pointing a
CNAME at a platform-issued target. Once verified, an external SSL provisioner
issues a certificate and the tenant cuts the CNAME over to the platform.

Features:
- Hostname validation with apex rejection and collision checks
- Random 128-bit CNAME challenges that expire after 24 hours
- DNS probing with conflict detection and cross-resolver consistency
- Rate limited, compare-and-swap protected verification state machine
- Activation gated on SSL readiness, plus on-demand TLS authorization
- Append-only audit trail of attempts and conflicts

Usage:
    from hostclaim.domains import DomainManager, MemoryDomainStore

    manager = DomainManager.from_config(store=MemoryDomainStore())
    await manager.add_tenant("t1", "Acme Tours")
    started = await manager.initiate("t1", "example.com")
    result = await manager.retry("t1")
"""

from hostclaim.domains.activation import (
    ActivationCheck,
    ActivationOrchestrator,
    ActivationPhase,
    ActivationStatus,
    TLSAuthorization,
)
from hostclaim.domains.audit import AuditTrail, AuditWrite
from hostclaim.domains.challenge import ChallengeIssuer, verification_target
from hostclaim.domains.errors import (
    ApexDomainRejectedError,
    ChallengeExpiredError,
    ConcurrentUpdateError,
    HostclaimError,
    HostnameCollisionError,
    InvalidHostnameError,
    NoChallengeInProgressError,
    NotVerifiedError,
    StoreError,
    TenantNotFoundError,
    ThrottledError,
)
from hostclaim.domains.machine import ProbeOutcome, VerificationStateMachine
from hostclaim.domains.manager import DomainManager
from hostclaim.domains.models import (
    AttemptOutcome,
    DomainConflict,
    DomainRecord,
    DomainStatus,
    LifecycleState,
    SSLStatus,
    Tenant,
    VerificationAttempt,
)
from hostclaim.domains.probe import (
    CNAMEResult,
    ConflictCheck,
    DNSProbe,
    PropagationReport,
    PropagationState,
    ProbeReport,
    ResolverState,
)
from hostclaim.domains.storage import DomainStore, JSONDomainStore, MemoryDomainStore
from hostclaim.domains.validation import (
    HostnameValidator,
    ValidatedHostname,
    is_apex_attempt,
    normalize_hostname,
    validate_format,
)

__all__ = [
    # Facade
    "DomainManager",
    # Components
    "HostnameValidator",
    "ValidatedHostname",
    "ChallengeIssuer",
    "DNSProbe",
    "VerificationStateMachine",
    "ProbeOutcome",
    "ActivationOrchestrator",
    "AuditTrail",
    "AuditWrite",
    # Storage
    "DomainStore",
    "MemoryDomainStore",
    "JSONDomainStore",
    # Models
    "Tenant",
    "DomainRecord",
    "DomainStatus",
    "SSLStatus",
    "LifecycleState",
    "AttemptOutcome",
    "VerificationAttempt",
    "DomainConflict",
    # Probe results
    "CNAMEResult",
    "ConflictCheck",
    "PropagationReport",
    "PropagationState",
    "ProbeReport",
    "ResolverState",
    # Activation results
    "ActivationPhase",
    "ActivationStatus",
    "ActivationCheck",
    "TLSAuthorization",
    # Errors
    "HostclaimError",
    "InvalidHostnameError",
    "ApexDomainRejectedError",
    "HostnameCollisionError",
    "TenantNotFoundError",
    "NoChallengeInProgressError",
    "ChallengeExpiredError",
    "ThrottledError",
    "NotVerifiedError",
    "StoreError",
    "ConcurrentUpdateError",
    # Utilities
    "normalize_hostname",
    "validate_format",
    "is_apex_attempt",
    "verification_target",
]
