"""Data model for tenant hostname bindings and their audit records.

A ``DomainRecord`` is the single durable row per tenant. It is serialised to
plain dictionaries so any store (JSON file, SQL, key/value) can persist it:

    {
        "tenant_id": "t1",
        "hostname": "booking.example.com",
        "apex_domain": "example.com",
        "subdomain": "booking",
        "verification_token": "3f0c...",
        "verification_target": "verify-3f0c....platform.example",
        "token_issued_at": "2024-01-15T10:00:00+00:00",
        "token_expires_at": "2024-01-16T10:00:00+00:00",
        "attempts": 0,
        "domain_status": "pending",
        "ssl_status": "pending",
        "version": 1
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class DomainStatus(Enum):
    """Persisted verification status of a domain record."""

    PENDING = "pending"
    VERIFIED = "verified"
    CONFLICTED = "conflicted"
    EXPIRED = "expired"
    FAILED = "failed"


class SSLStatus(Enum):
    """Certificate status as reported by the external SSL provisioner."""

    PENDING = "pending"
    PROVISIONING = "provisioning"
    PROVISIONED = "provisioned"
    ACTIVE = "active"
    FAILED = "failed"


class LifecycleState(Enum):
    """Derived lifecycle state shown to callers."""

    NOT_STARTED = "not_started"
    PENDING = "pending"
    VERIFIED = "verified"
    CONFLICTED = "conflicted"
    EXPIRED = "expired"
    FAILED = "failed"
    ACTIVE = "active"


class AttemptOutcome(Enum):
    VERIFIED = "verified"
    FAILED = "failed"
    CONFLICTED = "conflicted"


@dataclass
class Tenant:
    """Minimal view of an externally owned tenant."""

    tenant_id: str
    name: str
    slug: str | None = None
    subscription_plan: str | None = None
    subscription_status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "name": self.name,
            "slug": self.slug,
            "subscription_plan": self.subscription_plan,
            "subscription_status": self.subscription_status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tenant:
        return cls(
            tenant_id=data["tenant_id"],
            name=data["name"],
            slug=data.get("slug"),
            subscription_plan=data.get("subscription_plan"),
            subscription_status=data.get("subscription_status"),
        )


@dataclass(frozen=True)
class Challenge:
    """A freshly issued CNAME challenge."""

    token: str
    target: str
    issued_at: datetime
    expires_at: datetime


@dataclass
class DomainRecord:
    """One tenant-hostname binding and its verification progress."""

    tenant_id: str
    hostname: str
    apex_domain: str
    subdomain: str
    verification_token: str | None
    verification_target: str | None
    token_issued_at: datetime | None
    token_expires_at: datetime | None
    attempts: int = 0
    last_check_at: datetime | None = None
    domain_status: DomainStatus = DomainStatus.PENDING
    ssl_status: SSLStatus = SSLStatus.PENDING
    verified_at: datetime | None = None
    ssl_ready_at: datetime | None = None
    tls_authorized_at: datetime | None = None
    activated_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    version: int = 0

    @property
    def is_verified(self) -> bool:
        return self.domain_status == DomainStatus.VERIFIED

    @property
    def is_active(self) -> bool:
        return self.is_verified and self.ssl_status == SSLStatus.ACTIVE

    def is_expired(self, now: datetime) -> bool:
        """True when the challenge horizon has passed without verification."""
        if self.domain_status == DomainStatus.EXPIRED:
            return True
        if self.is_verified or self.token_expires_at is None:
            return False
        return now > self.token_expires_at

    def state(self, now: datetime) -> LifecycleState:
        """Derive the caller-facing lifecycle state."""
        if self.is_active:
            return LifecycleState.ACTIVE
        if self.is_verified:
            return LifecycleState.VERIFIED
        if self.domain_status == DomainStatus.FAILED:
            return LifecycleState.FAILED
        if self.verification_token is None:
            return LifecycleState.NOT_STARTED
        if self.is_expired(now):
            return LifecycleState.EXPIRED
        if self.domain_status == DomainStatus.CONFLICTED:
            return LifecycleState.CONFLICTED
        return LifecycleState.PENDING

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "tenant_id": self.tenant_id,
            "hostname": self.hostname,
            "apex_domain": self.apex_domain,
            "subdomain": self.subdomain,
            "verification_token": self.verification_token,
            "verification_target": self.verification_target,
            "token_issued_at": _format_dt(self.token_issued_at),
            "token_expires_at": _format_dt(self.token_expires_at),
            "attempts": self.attempts,
            "last_check_at": _format_dt(self.last_check_at),
            "domain_status": self.domain_status.value,
            "ssl_status": self.ssl_status.value,
            "verified_at": _format_dt(self.verified_at),
            "ssl_ready_at": _format_dt(self.ssl_ready_at),
            "tls_authorized_at": _format_dt(self.tls_authorized_at),
            "activated_at": _format_dt(self.activated_at),
            "created_at": self.created_at.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DomainRecord:
        """Create from dictionary (JSON deserialization)."""
        return cls(
            tenant_id=data["tenant_id"],
            hostname=data["hostname"],
            apex_domain=data["apex_domain"],
            subdomain=data["subdomain"],
            verification_token=data.get("verification_token"),
            verification_target=data.get("verification_target"),
            token_issued_at=_parse_dt(data.get("token_issued_at")),
            token_expires_at=_parse_dt(data.get("token_expires_at")),
            attempts=data.get("attempts", 0),
            last_check_at=_parse_dt(data.get("last_check_at")),
            domain_status=DomainStatus(data.get("domain_status", "pending")),
            ssl_status=SSLStatus(data.get("ssl_status", "pending")),
            verified_at=_parse_dt(data.get("verified_at")),
            ssl_ready_at=_parse_dt(data.get("ssl_ready_at")),
            tls_authorized_at=_parse_dt(data.get("tls_authorized_at")),
            activated_at=_parse_dt(data.get("activated_at")),
            created_at=_parse_dt(data.get("created_at")) or utc_now(),
            version=data.get("version", 0),
        )


@dataclass(frozen=True)
class ConflictingRecord:
    """A non-CNAME record found at the hostname."""

    type: str
    values: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "values": list(self.values)}


@dataclass
class VerificationAttempt:
    """Append-only log entry written for every DNS probe."""

    tenant_id: str
    hostname: str
    verification_target: str
    outcome: AttemptOutcome
    diagnostic: dict[str, Any] = field(default_factory=dict)
    method: str = "cname"
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "hostname": self.hostname,
            "verification_target": self.verification_target,
            "method": self.method,
            "outcome": self.outcome.value,
            "diagnostic": self.diagnostic,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VerificationAttempt:
        return cls(
            tenant_id=data["tenant_id"],
            hostname=data["hostname"],
            verification_target=data["verification_target"],
            outcome=AttemptOutcome(data["outcome"]),
            diagnostic=data.get("diagnostic", {}),
            method=data.get("method", "cname"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class DomainConflict:
    """Legacy DNS records that block a tenant's CNAME."""

    hostname: str
    tenant_id: str
    conflicting_records: list[ConflictingRecord]
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostname": self.hostname,
            "tenant_id": self.tenant_id,
            "conflicting_records": [r.to_dict() for r in self.conflicting_records],
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DomainConflict:
        return cls(
            hostname=data["hostname"],
            tenant_id=data["tenant_id"],
            conflicting_records=[
                ConflictingRecord(type=r["type"], values=tuple(r["values"]))
                for r in data.get("conflicting_records", [])
            ],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )
