"""Exceptions raised by the domain verification engine.

Every error carries a stable ``code`` and an HTTP-ish ``status`` so the API
layer and the CLI can render it without knowing each subclass. DNS outcomes
(record not found, conflicting records, resolver disagreement) are never
raised; they travel as result objects from ``hostclaim.domains.probe``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class HostclaimError(Exception):
    """Base class for all engine errors."""

    code = "hostclaim_error"
    status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON responses."""
        return {"error": self.message, "code": self.code}


class InvalidHostnameError(HostclaimError):
    """Hostname failed syntactic validation."""

    code = "invalid_hostname"
    status = 400

    def __init__(self, hostname: str, reason: str = "Invalid domain format") -> None:
        super().__init__(reason)
        self.hostname = hostname


class ApexDomainRejectedError(HostclaimError):
    """The tenant tried to claim a bare apex domain."""

    code = "apex_domain_rejected"
    status = 400

    def __init__(self, apex_domain: str, suggestion: str) -> None:
        super().__init__(
            f'Apex domains are not supported. Please use a subdomain like "{suggestion}"'
        )
        self.apex_domain = apex_domain
        self.suggestion = suggestion

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["suggestion"] = self.suggestion
        return data


class HostnameCollisionError(HostclaimError):
    """Hostname already bound to a different tenant.

    Only the conflicting tenant's id and display name are exposed.
    """

    code = "hostname_collision"
    status = 409

    def __init__(
        self,
        hostname: str,
        conflicting_tenant_id: str,
        conflicting_tenant_name: str | None = None,
    ) -> None:
        super().__init__("Hostname is already claimed by another tenant")
        self.hostname = hostname
        self.conflicting_tenant_id = conflicting_tenant_id
        self.conflicting_tenant_name = conflicting_tenant_name

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["conflicting_tenant_name"] = self.conflicting_tenant_name
        return data


class TenantNotFoundError(HostclaimError):
    code = "tenant_not_found"
    status = 404

    def __init__(self, tenant_id: str) -> None:
        super().__init__("Tenant not found")
        self.tenant_id = tenant_id


class NoChallengeInProgressError(HostclaimError):
    code = "no_challenge_in_progress"
    status = 400

    def __init__(self, tenant_id: str) -> None:
        super().__init__(
            "No verification in progress. Please initiate domain verification first."
        )
        self.tenant_id = tenant_id


class ChallengeExpiredError(HostclaimError):
    """Token horizon passed; only re-initiation recovers."""

    code = "challenge_expired"
    status = 400

    def __init__(self, tenant_id: str, expired_at: datetime) -> None:
        super().__init__("Verification has expired. Please initiate a new verification.")
        self.tenant_id = tenant_id
        self.expired_at = expired_at

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status"] = "expired"
        data["expired_at"] = self.expired_at.isoformat()
        return data


class ThrottledError(HostclaimError):
    """Too many verification attempts inside the rate-limit window."""

    code = "throttled"
    status = 429

    def __init__(self, tenant_id: str, next_retry_after: datetime) -> None:
        super().__init__("Too many verification attempts. Please wait before trying again.")
        self.tenant_id = tenant_id
        self.attempts_remaining = 0
        self.next_retry_after = next_retry_after

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["attempts_remaining"] = self.attempts_remaining
        data["next_retry_after"] = self.next_retry_after.isoformat()
        return data


class NotVerifiedError(HostclaimError):
    code = "not_verified"
    status = 400

    def __init__(self, tenant_id: str) -> None:
        super().__init__("Domain must be verified first")
        self.tenant_id = tenant_id


class StoreError(HostclaimError):
    """The backing store could not be read or written."""

    code = "store_unavailable"
    status = 503


class ConcurrentUpdateError(StoreError):
    """A versioned write lost a compare-and-swap race."""

    code = "concurrent_update"
    status = 409

    def __init__(self, tenant_id: str, expected: int | None, actual: int | None) -> None:
        super().__init__(
            f"Record for tenant {tenant_id} changed concurrently "
            f"(expected version {expected}, found {actual})"
        )
        self.tenant_id = tenant_id
        self.expected = expected
        self.actual = actual
