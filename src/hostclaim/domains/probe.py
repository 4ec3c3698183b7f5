"""DNS probing for CNAME challenges.

The probe answers three questions about a tenant hostname:

1. Does it CNAME to the expected ``verify-<token>`` target?
2. Are there A/AAAA/TXT records at the name that would block a CNAME?
3. Do independent public resolvers agree, or is the change still propagating?

Example DNS setup required by the tenant:
    booking.example.com  CNAME  verify-3f0c9a...e1.platform.example

Every lookup is bounded by a timeout. Resolver failures and "no such record"
answers are captured in the result objects and never raised, so callers can
always record an audit entry for the attempt.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import aiodns
import structlog

from hostclaim.domains.models import ConflictingRecord
from hostclaim.observability.metrics import DNS_LOOKUPS

logger = structlog.get_logger()

DEFAULT_CONSISTENCY_RESOLVERS: dict[str, list[str]] = {
    "cloudflare": ["1.1.1.1"],
    "google": ["8.8.8.8"],
}

# ARES_ENODATA, ARES_ENOTFOUND: the name or the record type does not exist.
_NO_RECORD_CODES = frozenset({1, 4})

_VALUE_FIELDS: dict[str, tuple[str, ...]] = {
    "CNAME": ("cname",),
    "A": ("addr", "host"),
    "AAAA": ("addr", "host"),
    "TXT": ("text", "data"),
}

ResolverFactory = Callable[[list[str] | None], Any]


def _normalize_target(name: str) -> str:
    return name.strip().rstrip(".").lower()


def _record_values(result: Any, qtype: str) -> list[str]:
    """Extract record values from an aiodns answer.

    Handles both the structured ``DNSResult`` (records under ``answer`` with
    typed ``data``) and the flat per-type results of ``query``. Records of
    other types in the answer section, such as the CNAME chain of an A query,
    are skipped.
    """
    if result is None:
        return []

    answers = getattr(result, "answer", None)
    if answers is not None:
        items = [getattr(record, "data", record) for record in answers]
    elif isinstance(result, (list, tuple)):
        items = list(result)
    else:
        items = [result]

    values: list[str] = []
    for item in items:
        for attr in _VALUE_FIELDS[qtype]:
            value = getattr(item, attr, None)
            if value is not None:
                break
        else:
            continue
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        value = str(value)
        values.append(value.strip('"') if qtype == "TXT" else _normalize_target(value))
    return values


@dataclass
class LookupResult:
    """Outcome of a single record lookup."""

    qtype: str
    values: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def answered(self) -> bool:
        """The resolver responded authoritatively (with or without data)."""
        return self.error is None


@dataclass
class CNAMEResult:
    """CNAME check against the expected verification target."""

    found: bool
    actual_targets: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def actual_target(self) -> str | None:
        return self.actual_targets[0] if self.actual_targets else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "actual_targets": self.actual_targets,
            "conflicts": self.conflicts,
            "error": self.error,
        }


@dataclass
class ConflictCheck:
    """A/AAAA/TXT records that would block the CNAME."""

    has_conflicts: bool
    records: list[ConflictingRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_conflicts": self.has_conflicts,
            "records": [r.to_dict() for r in self.records],
        }


class ResolverState(Enum):
    """What one resolver sees for the challenge CNAME."""

    RESOLVED = "resolved"
    PENDING = "pending"
    FAILED = "failed"


class PropagationState(Enum):
    """Aggregate view across independent resolvers."""

    PROPAGATED = "propagated"
    PROPAGATING = "propagating"
    NOT_CONFIGURED = "not_configured"
    UNKNOWN = "unknown"


@dataclass
class PropagationReport:
    """Per-resolver CNAME visibility."""

    resolvers: dict[str, ResolverState]
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def state(self) -> PropagationState:
        states = list(self.resolvers.values())
        if states and all(s == ResolverState.RESOLVED for s in states):
            return PropagationState.PROPAGATED
        if ResolverState.RESOLVED in states:
            return PropagationState.PROPAGATING
        if ResolverState.PENDING in states:
            return PropagationState.NOT_CONFIGURED
        return PropagationState.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {name: s.value for name, s in self.resolvers.items()}
        data["state"] = self.state.value
        if self.errors:
            data["errors"] = dict(self.errors)
        return data


@dataclass
class ProbeReport:
    """Everything one verification probe learned."""

    hostname: str
    expected_target: str
    cname: CNAMEResult
    conflicts: ConflictCheck
    propagation: PropagationReport | None = None

    def to_diagnostic(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "expected_target": self.expected_target,
            "cname": self.cname.to_dict(),
            "conflicts": self.conflicts.to_dict(),
        }
        if self.propagation is not None:
            data["propagation"] = self.propagation.to_dict()
        return data


class DNSProbe:
    """Side-effect-free DNS reads used by the verification state machine.

    Resolvers are created through ``resolver_factory`` so tests and callers
    can inject their own; nothing is shared at module level.
    """

    def __init__(
        self,
        nameservers: list[str] | None = None,
        consistency_resolvers: dict[str, list[str]] | None = None,
        timeout: float = 3.0,
        tries: int = 1,
        resolver_factory: ResolverFactory | None = None,
    ) -> None:
        """Initialize the probe.

        Args:
            nameservers: Nameservers for the primary lookups (system default if None).
            consistency_resolvers: Named nameserver sets for the propagation check.
            timeout: Per-lookup timeout in seconds.
            tries: Resolver attempts per lookup before giving up.
            resolver_factory: Builds a resolver for a nameserver list.
        """
        self.nameservers = nameservers or None
        self.consistency_resolvers = consistency_resolvers or dict(
            DEFAULT_CONSISTENCY_RESOLVERS
        )
        if len(self.consistency_resolvers) < 2:
            raise ValueError("At least two independent resolvers are required")
        self.timeout = timeout
        self.tries = tries
        self._resolver_factory = resolver_factory or self._default_resolver_factory
        self._resolvers: dict[tuple[str, ...], Any] = {}

    def _default_resolver_factory(self, nameservers: list[str] | None) -> aiodns.DNSResolver:
        """Create an aiodns resolver with proper event loop handling."""
        kwargs: dict[str, Any] = {"timeout": self.timeout, "tries": self.tries}
        if nameservers:
            kwargs["nameservers"] = nameservers
        if sys.platform == "win32":
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = asyncio.new_event_loop()
            kwargs["loop"] = loop
        return aiodns.DNSResolver(**kwargs)

    def _get_resolver(self, nameservers: list[str] | None = None) -> Any:
        key = tuple(nameservers or ())
        if key not in self._resolvers:
            self._resolvers[key] = self._resolver_factory(list(nameservers) if nameservers else None)
        return self._resolvers[key]

    async def lookup(
        self,
        hostname: str,
        qtype: str,
        nameservers: list[str] | None = None,
    ) -> LookupResult:
        """Look up one record type, folding every failure into the result."""
        resolver = self._get_resolver(nameservers if nameservers is not None else self.nameservers)
        try:
            result = await asyncio.wait_for(resolver.query_dns(hostname, qtype), self.timeout)
        except TimeoutError:
            DNS_LOOKUPS.labels(qtype=qtype, result="timeout").inc()
            return LookupResult(qtype, error=f"{qtype} lookup timed out after {self.timeout}s")
        except aiodns.error.DNSError as e:
            code = e.args[0] if e.args else None
            if code in _NO_RECORD_CODES:
                DNS_LOOKUPS.labels(qtype=qtype, result="nodata").inc()
                return LookupResult(qtype)
            DNS_LOOKUPS.labels(qtype=qtype, result="error").inc()
            message = e.args[1] if len(e.args) > 1 else str(e)
            return LookupResult(qtype, error=f"{qtype} lookup failed: {message}")

        values = _record_values(result, qtype)
        DNS_LOOKUPS.labels(qtype=qtype, result="ok" if values else "nodata").inc()
        return LookupResult(qtype, values=values)

    async def resolve_cname(self, hostname: str, expected_target: str) -> CNAMEResult:
        """Check the CNAME at ``hostname`` for an exact match.

        No suffix or wildcard matching: only the literal target proves the
        tenant saw this particular token.
        """
        expected = _normalize_target(expected_target)
        lookup = await self.lookup(hostname, "CNAME")
        if lookup.error:
            return CNAMEResult(found=False, error=lookup.error)

        found = expected in lookup.values
        return CNAMEResult(
            found=found,
            actual_targets=lookup.values,
            conflicts=[] if found else [v for v in lookup.values if v != expected],
        )

    async def check_conflicts(self, hostname: str, aliased: bool = False) -> ConflictCheck:
        """Look for records that would prevent a CNAME at ``hostname``.

        A, AAAA and TXT are queried independently; a failed lookup counts as
        "no record". When the name is already a CNAME alias, resolvers answer
        with the alias target's records, so those are not reported.
        """
        if aliased:
            return ConflictCheck(has_conflicts=False)

        lookups = await asyncio.gather(
            self.lookup(hostname, "A"),
            self.lookup(hostname, "AAAA"),
            self.lookup(hostname, "TXT"),
        )
        records = [
            ConflictingRecord(type=lookup.qtype, values=tuple(lookup.values))
            for lookup in lookups
            if lookup.values
        ]
        return ConflictCheck(has_conflicts=bool(records), records=records)

    async def _resolver_state(
        self,
        name: str,
        nameservers: list[str],
        hostname: str,
        expected: str,
    ) -> tuple[str, ResolverState, str | None]:
        lookup = await self.lookup(hostname, "CNAME", nameservers=nameservers)
        if lookup.error:
            return name, ResolverState.FAILED, lookup.error
        if expected in lookup.values:
            return name, ResolverState.RESOLVED, None
        return name, ResolverState.PENDING, None

    async def check_propagation(self, hostname: str, expected_target: str) -> PropagationReport:
        """Repeat the CNAME lookup against each independent resolver."""
        expected = _normalize_target(expected_target)
        results = await asyncio.gather(
            *(
                self._resolver_state(name, servers, hostname, expected)
                for name, servers in self.consistency_resolvers.items()
            )
        )
        report = PropagationReport(
            resolvers={name: state for name, state, _ in results},
            errors={name: error for name, _, error in results if error},
        )
        logger.debug(
            "DNS propagation checked",
            hostname=hostname,
            state=report.state.value,
            resolvers={k: v.value for k, v in report.resolvers.items()},
        )
        return report

    async def check_live(self, hostname: str, final_target: str) -> bool:
        """Check whether the cutover CNAME to the platform is visible."""
        result = await self.resolve_cname(hostname, final_target)
        return result.found

    async def inspect(
        self,
        hostname: str,
        expected_target: str,
        include_propagation: bool = True,
    ) -> ProbeReport:
        """Run the full verification probe for one hostname."""
        if include_propagation:
            cname, propagation = await asyncio.gather(
                self.resolve_cname(hostname, expected_target),
                self.check_propagation(hostname, expected_target),
            )
        else:
            cname = await self.resolve_cname(hostname, expected_target)
            propagation = None

        if cname.found:
            conflicts = ConflictCheck(has_conflicts=False)
        else:
            conflicts = await self.check_conflicts(hostname, aliased=bool(cname.actual_targets))

        return ProbeReport(
            hostname=hostname,
            expected_target=expected_target,
            cname=cname,
            conflicts=conflicts,
            propagation=propagation,
        )
