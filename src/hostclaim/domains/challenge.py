"""CNAME challenge issuance.

The tenant proves control of ``booking.example.com`` by pointing it at a
platform hostname that embeds a random token:

    booking.example.com  CNAME  verify-<32 hex chars>.<platform domain>
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from hostclaim.domains.models import Challenge, utc_now

logger = structlog.get_logger()

TOKEN_BYTES = 16
DEFAULT_TOKEN_TTL = timedelta(hours=24)


def verification_target(token: str, platform_domain: str) -> str:
    """Derive the hostname a tenant must CNAME to."""
    return f"verify-{token}.{platform_domain}"


class ChallengeIssuer:
    """Issues single-use verification tokens with a fixed expiry horizon."""

    def __init__(
        self,
        platform_domain: str,
        token_ttl: timedelta = DEFAULT_TOKEN_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the issuer.

        Args:
            platform_domain: Platform-controlled zone the targets live under.
            token_ttl: How long a challenge stays valid.
            clock: Source of the current time.
        """
        self.platform_domain = platform_domain.lower().rstrip(".")
        self.token_ttl = token_ttl
        self._clock = clock

    def generate_token(self) -> str:
        """Return 128 bits of randomness as lowercase hex."""
        return secrets.token_hex(TOKEN_BYTES)

    def issue(self, hostname: str) -> Challenge:
        """Issue a fresh challenge for ``hostname``.

        A previously issued challenge for the same hostname is not consulted;
        persisting the new one replaces it.
        """
        token = self.generate_token()
        issued_at = self._clock()
        challenge = Challenge(
            token=token,
            target=verification_target(token, self.platform_domain),
            issued_at=issued_at,
            expires_at=issued_at + self.token_ttl,
        )
        logger.debug(
            "Issued verification challenge",
            hostname=hostname,
            target=challenge.target,
            expires_at=challenge.expires_at.isoformat(),
        )
        return challenge
