from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

VERIFICATION_ATTEMPTS = Counter(
    "hostclaim_verification_attempts_total",
    "Total CNAME verification probes",
    ["outcome"],  # outcome: verified/failed/conflicted
)

VERIFICATION_REJECTIONS = Counter(
    "hostclaim_verification_rejections_total",
    "Verification requests rejected before probing DNS",
    ["reason"],  # reason: throttled/expired/no_challenge
)

DNS_LOOKUPS = Counter(
    "hostclaim_dns_lookups_total",
    "DNS lookups issued by the probe",
    ["qtype", "result"],  # result: ok/nodata/timeout/error
)

AUDIT_WRITE_FAILURES = Counter(
    "hostclaim_audit_write_failures_total",
    "Audit trail writes that failed",
    ["kind"],  # kind: attempt/conflict
)

DOMAIN_TRANSITIONS = Counter(
    "hostclaim_domain_transitions_total",
    "Domain lifecycle transitions",
    ["to_state"],
)

PROBE_DURATION = Histogram(
    "hostclaim_probe_duration_seconds",
    "Wall time of a full verification probe",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
