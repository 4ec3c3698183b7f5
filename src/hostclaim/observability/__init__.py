from hostclaim.observability.metrics import (
    AUDIT_WRITE_FAILURES,
    DNS_LOOKUPS,
    DOMAIN_TRANSITIONS,
    PROBE_DURATION,
    VERIFICATION_ATTEMPTS,
    VERIFICATION_REJECTIONS,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "VERIFICATION_ATTEMPTS",
    "VERIFICATION_REJECTIONS",
    "DNS_LOOKUPS",
    "AUDIT_WRITE_FAILURES",
    "DOMAIN_TRANSITIONS",
    "PROBE_DURATION",
    "generate_metrics",
    "get_content_type",
]
