"""Storage for domain records, tenants and the audit tables.

``DomainStore`` is the capability the engine is constructed with. Two
implementations ship with the package:

- ``MemoryDomainStore`` for tests and single-process embedding.
- ``JSONDomainStore`` for small self-hosted deployments.

Storage file format (domains.json):
    {
        "tenants": {"t1": {"tenant_id": "t1", "name": "Park Bus", ...}},
        "records": {"t1": {"tenant_id": "t1", "hostname": "booking.example.com", ...}},
        "attempts": [{"tenant_id": "t1", "outcome": "failed", ...}],
        "conflicts": [{"hostname": "booking.example.com", ...}]
    }

Record writes are versioned. ``save(record, expected_version)`` only succeeds
when the stored version still equals ``expected_version`` (``None`` meaning
"no record yet"), which lets concurrent verifications of the same tenant
detect each other without a global lock.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Any

from hostclaim.domains.errors import ConcurrentUpdateError, StoreError
from hostclaim.domains.models import (
    DomainConflict,
    DomainRecord,
    Tenant,
    VerificationAttempt,
)


class DomainStore(ABC):
    """Abstract async store for tenants, domain records and audit rows."""

    @abstractmethod
    async def get_tenant(self, tenant_id: str) -> Tenant | None: ...

    @abstractmethod
    async def put_tenant(self, tenant: Tenant) -> None: ...

    @abstractmethod
    async def get(self, tenant_id: str) -> DomainRecord | None:
        """Return a copy of the tenant's record, if any."""

    @abstractmethod
    async def find_by_hostname(self, hostname: str) -> list[DomainRecord]:
        """Return every record bound to ``hostname``."""

    @abstractmethod
    async def save(self, record: DomainRecord, expected_version: int | None) -> DomainRecord:
        """Persist ``record`` if the stored version matches.

        Returns:
            A copy of the stored record carrying its new version.

        Raises:
            ConcurrentUpdateError: If another writer got there first.
        """

    @abstractmethod
    async def delete(self, tenant_id: str) -> bool: ...

    @abstractmethod
    async def list_all(self) -> list[DomainRecord]: ...

    @abstractmethod
    async def append_attempt(self, attempt: VerificationAttempt) -> None:
        """Append an audit row.

        Raises:
            StoreError: The row could not be written. Callers treat any
                exception from here as a failed, retryable write.
        """

    @abstractmethod
    async def append_conflict(self, conflict: DomainConflict) -> None: ...

    @abstractmethod
    async def list_attempts(self, tenant_id: str | None = None) -> list[VerificationAttempt]: ...

    @abstractmethod
    async def list_conflicts(self, hostname: str | None = None) -> list[DomainConflict]: ...


class _State:
    """In-memory tables shared by both store implementations."""

    def __init__(self) -> None:
        self.tenants: dict[str, Tenant] = {}
        self.records: dict[str, DomainRecord] = {}
        self.attempts: list[VerificationAttempt] = []
        self.conflicts: list[DomainConflict] = []


class MemoryDomainStore(DomainStore):
    """Process-local store guarded by an asyncio lock.

    Subclasses override ``_load``/``_persist`` to add durability.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._state: _State | None = None

    async def _load(self) -> _State:
        if self._state is None:
            self._state = _State()
        return self._state

    async def _persist(self, state: _State) -> None:
        """Write ``state`` to durable storage. No-op in memory."""

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        async with self._lock:
            state = await self._load()
            tenant = state.tenants.get(tenant_id)
            return replace(tenant) if tenant else None

    async def put_tenant(self, tenant: Tenant) -> None:
        async with self._lock:
            state = await self._load()
            state.tenants[tenant.tenant_id] = replace(tenant)
            await self._persist(state)

    async def get(self, tenant_id: str) -> DomainRecord | None:
        async with self._lock:
            state = await self._load()
            record = state.records.get(tenant_id)
            return replace(record) if record else None

    async def find_by_hostname(self, hostname: str) -> list[DomainRecord]:
        async with self._lock:
            state = await self._load()
            return [replace(r) for r in state.records.values() if r.hostname == hostname]

    async def save(self, record: DomainRecord, expected_version: int | None) -> DomainRecord:
        async with self._lock:
            state = await self._load()
            current = state.records.get(record.tenant_id)
            actual = current.version if current else None
            if actual != expected_version:
                raise ConcurrentUpdateError(record.tenant_id, expected_version, actual)

            stored = replace(record, version=(actual or 0) + 1)
            state.records[record.tenant_id] = stored
            await self._persist(state)
            return replace(stored)

    async def delete(self, tenant_id: str) -> bool:
        async with self._lock:
            state = await self._load()
            if tenant_id in state.records:
                del state.records[tenant_id]
                await self._persist(state)
                return True
            return False

    async def list_all(self) -> list[DomainRecord]:
        async with self._lock:
            state = await self._load()
            return [replace(r) for r in state.records.values()]

    async def append_attempt(self, attempt: VerificationAttempt) -> None:
        async with self._lock:
            state = await self._load()
            state.attempts.append(attempt)
            await self._persist(state)

    async def append_conflict(self, conflict: DomainConflict) -> None:
        async with self._lock:
            state = await self._load()
            state.conflicts.append(conflict)
            await self._persist(state)

    async def list_attempts(self, tenant_id: str | None = None) -> list[VerificationAttempt]:
        async with self._lock:
            state = await self._load()
            return [a for a in state.attempts if tenant_id is None or a.tenant_id == tenant_id]

    async def list_conflicts(self, hostname: str | None = None) -> list[DomainConflict]:
        async with self._lock:
            state = await self._load()
            return [c for c in state.conflicts if hostname is None or c.hostname == hostname]


class JSONDomainStore(MemoryDomainStore):
    """JSON file-based store.

    Suitable for self-hosted deployments with moderate domain counts. The file
    is read once and cached; call ``invalidate_cache()`` after external edits.
    """

    def __init__(self, storage_path: str | Path = "domains.json") -> None:
        """Initialize domain store.

        Args:
            storage_path: Path to the JSON storage file.
        """
        super().__init__()
        self.storage_path = Path(storage_path)

    async def _load(self) -> _State:
        if self._state is not None:
            return self._state

        state = _State()
        if self.storage_path.exists():
            try:
                content = await asyncio.to_thread(self.storage_path.read_text)
                data = json.loads(content) if content.strip() else {}
                state.tenants = {
                    key: Tenant.from_dict(value) for key, value in data.get("tenants", {}).items()
                }
                state.records = {
                    key: DomainRecord.from_dict(value)
                    for key, value in data.get("records", {}).items()
                }
                state.attempts = [
                    VerificationAttempt.from_dict(a) for a in data.get("attempts", [])
                ]
                state.conflicts = [DomainConflict.from_dict(c) for c in data.get("conflicts", [])]
            except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
                raise StoreError(f"Cannot read domain store {self.storage_path}: {e}") from e

        self._state = state
        return state

    async def _persist(self, state: _State) -> None:
        data: dict[str, Any] = {
            "tenants": {key: t.to_dict() for key, t in state.tenants.items()},
            "records": {key: r.to_dict() for key, r in state.records.items()},
            "attempts": [a.to_dict() for a in state.attempts],
            "conflicts": [c.to_dict() for c in state.conflicts],
        }
        content = json.dumps(data, indent=2)
        try:
            await asyncio.to_thread(self.storage_path.write_text, content)
        except OSError as e:
            # Drop the cache so the next read reflects what is really on disk.
            self._state = None
            raise StoreError(f"Cannot write domain store {self.storage_path}: {e}") from e

    def invalidate_cache(self) -> None:
        """Invalidate the in-memory cache.

        Call this after external modifications to the storage file.
        """
        self._state = None
