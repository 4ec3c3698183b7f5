"""Tests for SSL provisioner callback signatures."""

from __future__ import annotations

import hashlib
import hmac

from hostclaim.webhooks import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    CallbackVerifier,
    SignatureStatus,
    parse_signature_header,
)

SECRET = "provisioner-secret"
BODY = b'{"ssl_status": "provisioned"}'
NOW = 1_705_312_800


def _verifier(**kwargs):
    return CallbackVerifier(SECRET, clock=lambda: NOW, **kwargs)


class TestParseSignatureHeader:
    """Tests for header parsing."""

    def test_prefixed(self):
        assert parse_signature_header("sha256=abc") == "abc"

    def test_whitespace(self):
        assert parse_signature_header("  sha256=abc ") == "abc"

    def test_missing(self):
        assert parse_signature_header(None) is None


class TestCallbackVerifier:
    """Tests for HMAC verification."""

    def test_signature_matches_hmac(self):
        expected = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
        assert _verifier().compute_signature(BODY) == expected

    def test_valid_without_timestamp(self):
        verifier = _verifier()

        result = verifier.verify(BODY, verifier.sign_headers(BODY))

        assert result
        assert result.status == SignatureStatus.VALID
        assert result.timestamp is None

    def test_valid_with_timestamp(self):
        verifier = _verifier()
        headers = verifier.sign_headers(BODY, timestamp=NOW - 10)

        result = verifier.verify(BODY, headers)

        assert result.valid is True
        assert result.timestamp == NOW - 10

    def test_tampered_body(self):
        verifier = _verifier()
        headers = verifier.sign_headers(BODY)

        result = verifier.verify(b'{"ssl_status": "active"}', headers)

        assert not result
        assert result.status == SignatureStatus.INVALID_SIGNATURE

    def test_wrong_secret(self):
        headers = CallbackVerifier("other").sign_headers(BODY)

        result = _verifier().verify(BODY, headers)

        assert result.status == SignatureStatus.INVALID_SIGNATURE

    def test_missing_signature(self):
        result = _verifier().verify(BODY, {})

        assert result.status == SignatureStatus.MISSING_SIGNATURE
        assert result.error == "No signature provided"

    def test_replayed_callback(self):
        verifier = _verifier(timestamp_tolerance=300)
        headers = verifier.sign_headers(BODY, timestamp=NOW - 301)

        result = verifier.verify(BODY, headers)

        assert result.status == SignatureStatus.EXPIRED_TIMESTAMP

    def test_timestamp_is_signed(self):
        verifier = _verifier()
        headers = verifier.sign_headers(BODY, timestamp=NOW)
        headers[TIMESTAMP_HEADER] = str(NOW - 1)

        result = verifier.verify(BODY, headers)

        assert result.status == SignatureStatus.INVALID_SIGNATURE

    def test_garbage_timestamp(self):
        verifier = _verifier()
        headers = {SIGNATURE_HEADER: "sha256=abc", TIMESTAMP_HEADER: "yesterday"}

        result = verifier.verify(BODY, headers)

        assert result.status == SignatureStatus.INVALID_TIMESTAMP
