"""Signature verification for SSL provisioner callbacks.

The provisioner signs each callback body with HMAC-SHA256 over a shared
secret and sends it as:

    X-Hostclaim-Signature: sha256=<hex digest>
    X-Hostclaim-Timestamp: <unix seconds>      (optional)

When a timestamp is sent it is part of the signed payload
(``"<timestamp>." + body``) and must fall within the tolerance window, which
stops a captured callback from being replayed later.

Usage:
    verifier = CallbackVerifier(secret="provisioner-secret")
    result = verifier.verify(body, request.headers)
    if not result:
        return 401
"""

from __future__ import annotations

import hashlib
import hmac
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum

SIGNATURE_HEADER = "X-Hostclaim-Signature"
TIMESTAMP_HEADER = "X-Hostclaim-Timestamp"
SIGNATURE_PREFIX = "sha256="


class SignatureStatus(Enum):
    """Outcome of a callback signature check."""

    VALID = "valid"
    INVALID_SIGNATURE = "invalid_signature"
    MISSING_SIGNATURE = "missing_signature"
    EXPIRED_TIMESTAMP = "expired_timestamp"
    INVALID_TIMESTAMP = "invalid_timestamp"


@dataclass
class SignatureCheck:
    """Result of verifying one callback."""

    valid: bool
    status: SignatureStatus
    error: str | None = None
    timestamp: int | None = None

    def __bool__(self) -> bool:
        return self.valid


def parse_signature_header(header_value: str | None) -> str | None:
    """Strip the ``sha256=`` prefix from a signature header.

    Examples:
        >>> parse_signature_header("sha256=abc123")
        'abc123'
        >>> parse_signature_header("abc123")
        'abc123'
        >>> parse_signature_header("") is None
        True
    """
    if not header_value:
        return None
    header_value = header_value.strip()
    if header_value.startswith(SIGNATURE_PREFIX):
        return header_value[len(SIGNATURE_PREFIX) :]
    return header_value


class CallbackVerifier:
    """HMAC-SHA256 verifier for provisioner callbacks.

    Digests are compared in constant time.
    """

    def __init__(
        self,
        secret: str,
        timestamp_tolerance: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the verifier.

        Args:
            secret: Secret shared with the provisioner.
            timestamp_tolerance: Maximum age of a timestamped callback in seconds.
            clock: Source of the current unix time.
        """
        self.secret = secret
        self.timestamp_tolerance = timestamp_tolerance
        self._clock = clock

    def compute_signature(self, payload: bytes, timestamp: int | None = None) -> str:
        """Compute the hex digest the provisioner is expected to send."""
        if timestamp is not None:
            payload = f"{timestamp}.".encode() + payload
        return hmac.new(self.secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    def sign_headers(self, payload: bytes, timestamp: int | None = None) -> dict[str, str]:
        """Build the headers for a signed callback."""
        headers = {SIGNATURE_HEADER: SIGNATURE_PREFIX + self.compute_signature(payload, timestamp)}
        if timestamp is not None:
            headers[TIMESTAMP_HEADER] = str(timestamp)
        return headers

    def verify(self, payload: bytes, headers: Mapping[str, str]) -> SignatureCheck:
        """Verify a callback body against its signature headers."""
        signature = parse_signature_header(headers.get(SIGNATURE_HEADER))
        if not signature:
            return SignatureCheck(
                valid=False,
                status=SignatureStatus.MISSING_SIGNATURE,
                error="No signature provided",
            )

        timestamp: int | None = None
        raw_timestamp = headers.get(TIMESTAMP_HEADER)
        if raw_timestamp:
            try:
                timestamp = int(raw_timestamp)
            except ValueError:
                return SignatureCheck(
                    valid=False,
                    status=SignatureStatus.INVALID_TIMESTAMP,
                    error=f"Invalid timestamp: {raw_timestamp!r}",
                )
            if abs(int(self._clock()) - timestamp) > self.timestamp_tolerance:
                return SignatureCheck(
                    valid=False,
                    status=SignatureStatus.EXPIRED_TIMESTAMP,
                    error=f"Timestamp {timestamp} is outside tolerance window",
                    timestamp=timestamp,
                )

        expected = self.compute_signature(payload, timestamp)
        if hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
            return SignatureCheck(valid=True, status=SignatureStatus.VALID, timestamp=timestamp)

        return SignatureCheck(
            valid=False,
            status=SignatureStatus.INVALID_SIGNATURE,
            error="Signature mismatch",
            timestamp=timestamp,
        )
