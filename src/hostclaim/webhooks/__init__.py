"""Signed SSL provisioner callbacks."""

from hostclaim.webhooks.verifier import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    CallbackVerifier,
    SignatureCheck,
    SignatureStatus,
    parse_signature_header,
)

__all__ = [
    "CallbackVerifier",
    "SignatureCheck",
    "SignatureStatus",
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "parse_signature_header",
]
