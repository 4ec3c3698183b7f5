"""Append-only audit trail of verification attempts and DNS conflicts.

Writes are best-effort. A store failure of any type never aborts the
verification that produced the entry: it is logged, counted, returned to
the caller as an ``AuditWrite`` with ``ok=False`` and kept in a bounded
backlog that ``flush_backlog()`` retries later.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

import structlog

from hostclaim.domains.models import DomainConflict, VerificationAttempt
from hostclaim.domains.storage import DomainStore
from hostclaim.observability.metrics import AUDIT_WRITE_FAILURES

logger = structlog.get_logger()


@dataclass(frozen=True)
class AuditWrite:
    """Result of one audit append."""

    ok: bool
    error: str | None = None

    def __bool__(self) -> bool:
        return self.ok


class AuditTrail:
    """Records every probe and every detected conflict."""

    def __init__(self, store: DomainStore, backlog_size: int = 1000) -> None:
        self.store = store
        self._backlog: deque[VerificationAttempt | DomainConflict] = deque(maxlen=backlog_size)

    @property
    def backlog(self) -> int:
        """Number of entries waiting to be re-written."""
        return len(self._backlog)

    async def _append(self, entry: VerificationAttempt | DomainConflict) -> AuditWrite:
        kind = "attempt" if isinstance(entry, VerificationAttempt) else "conflict"
        try:
            if isinstance(entry, VerificationAttempt):
                await self.store.append_attempt(entry)
            else:
                await self.store.append_conflict(entry)
        except Exception as e:
            AUDIT_WRITE_FAILURES.labels(kind=kind).inc()
            logger.warning(
                "Audit write failed",
                kind=kind,
                hostname=entry.hostname,
                tenant_id=entry.tenant_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return AuditWrite(ok=False, error=str(e))
        return AuditWrite(ok=True)

    async def record(self, attempt: VerificationAttempt) -> AuditWrite:
        """Append a verification attempt."""
        result = await self._append(attempt)
        if not result:
            self._backlog.append(attempt)
        return result

    async def record_conflict(self, conflict: DomainConflict) -> AuditWrite:
        """Append a detected DNS conflict."""
        result = await self._append(conflict)
        if not result:
            self._backlog.append(conflict)
        return result

    async def flush_backlog(self) -> int:
        """Retry entries whose first write failed.

        Stops at the first entry that fails again so ordering is preserved.

        Returns:
            Number of entries written.
        """
        written = 0
        while self._backlog:
            entry = self._backlog[0]
            if not await self._append(entry):
                break
            self._backlog.popleft()
            written += 1
        if written:
            logger.info("Audit backlog flushed", written=written, remaining=len(self._backlog))
        return written

    async def attempts(self, tenant_id: str | None = None) -> list[VerificationAttempt]:
        return await self.store.list_attempts(tenant_id)

    async def conflicts(self, hostname: str | None = None) -> list[DomainConflict]:
        return await self.store.list_conflicts(hostname)
