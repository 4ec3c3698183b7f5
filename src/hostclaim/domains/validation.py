"""Hostname validation for custom domain claims.

Checks run locally and never touch DNS:

    - format: label(.label)+, labels of [a-z0-9-] without edge hyphens
    - length: 253 characters overall, 63 per label
    - apex attempts: "", "@" or a subdomain that collapses onto the apex
    - collisions: the hostname is already bound to another tenant

Hostnames are normalised to lowercase before any comparison, so
``Booking.Example.com`` and ``booking.example.com`` collide.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from hostclaim.domains.errors import (
    ApexDomainRejectedError,
    HostnameCollisionError,
    InvalidHostnameError,
)
from hostclaim.domains.models import utc_now
from hostclaim.domains.storage import DomainStore

MAX_HOSTNAME_LENGTH = 253

_LABEL = r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
_HOSTNAME_RE = re.compile(rf"^{_LABEL}(?:\.{_LABEL})*\.[a-z]{{2,63}}$")


def normalize_hostname(hostname: str) -> str:
    """Lowercase, strip whitespace and a single trailing root dot.

    Examples:
        >>> normalize_hostname(" Booking.Example.COM. ")
        'booking.example.com'
    """
    hostname = hostname.strip().lower()
    if hostname.endswith("."):
        hostname = hostname[:-1]
    return hostname


def validate_format(hostname: str) -> bool:
    """Check that a hostname is a syntactically valid multi-label FQDN.

    Examples:
        >>> validate_format("booking.example.com")
        True
        >>> validate_format("-bad.example.com")
        False
        >>> validate_format("localhost")
        False
    """
    if not hostname or len(hostname) > MAX_HOSTNAME_LENGTH:
        return False
    return _HOSTNAME_RE.match(hostname) is not None


def is_apex_attempt(subdomain: str | None, apex_domain: str) -> bool:
    """Return True when the claim would bind the bare apex domain.

    Examples:
        >>> is_apex_attempt("", "example.com")
        True
        >>> is_apex_attempt("@", "example.com")
        True
        >>> is_apex_attempt("booking", "example.com")
        False
    """
    if subdomain is None:
        return True
    subdomain = subdomain.strip()
    return subdomain in ("", "@") or f"{subdomain}.{apex_domain}" == apex_domain


@dataclass(frozen=True)
class ValidatedHostname:
    """A hostname that passed every check and may be claimed."""

    hostname: str
    apex_domain: str
    subdomain: str


class HostnameValidator:
    """Validates candidate hostnames against format rules and existing claims."""

    def __init__(
        self,
        store: DomainStore,
        default_subdomain: str = "booking",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.default_subdomain = default_subdomain
        self._clock = clock

    def suggestion_for(self, apex_domain: str) -> str:
        return f"{self.default_subdomain}.{apex_domain}"

    async def check_collision(self, hostname: str, excluding_tenant: str) -> str | None:
        """Find another tenant already bound to ``hostname``.

        Unverified records whose challenge expired no longer hold the name.

        Returns:
            The conflicting tenant id, or None.
        """
        now = self._clock()
        for record in await self.store.find_by_hostname(hostname):
            if record.tenant_id == excluding_tenant:
                continue
            if record.is_expired(now):
                continue
            return record.tenant_id
        return None

    async def validate(
        self,
        tenant_id: str,
        apex_domain: str,
        subdomain: str | None,
    ) -> ValidatedHostname:
        """Run all checks for a claim of ``<subdomain>.<apex_domain>``.

        Raises:
            InvalidHostnameError: Malformed apex or resulting hostname.
            ApexDomainRejectedError: The claim targets the apex itself.
            HostnameCollisionError: Another tenant holds the hostname.
        """
        if not isinstance(apex_domain, str) or not isinstance(subdomain, (str, type(None))):
            raise InvalidHostnameError(
                repr((apex_domain, subdomain)), "Domain and subdomain must be strings"
            )

        apex = normalize_hostname(apex_domain)
        if not validate_format(apex):
            raise InvalidHostnameError(apex_domain or "")

        if is_apex_attempt(subdomain, apex):
            raise ApexDomainRejectedError(apex, self.suggestion_for(apex))

        sub = normalize_hostname(subdomain or "")
        hostname = f"{sub}.{apex}"
        if not validate_format(hostname):
            raise InvalidHostnameError(hostname)

        conflicting = await self.check_collision(hostname, tenant_id)
        if conflicting is not None:
            tenant = await self.store.get_tenant(conflicting)
            raise HostnameCollisionError(
                hostname,
                conflicting_tenant_id=conflicting,
                conflicting_tenant_name=tenant.name if tenant else None,
            )

        return ValidatedHostname(hostname=hostname, apex_domain=apex, subdomain=sub)
