"""Shared fixtures: a scripted DNS resolver and a controllable clock."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any

import aiodns
import pytest

from hostclaim.core.config import DNSConfig, HostclaimConfig, VerificationConfig
from hostclaim.domains import DomainManager, MemoryDomainStore

HANG = object()

_FIELD = {"CNAME": "cname", "A": "addr", "AAAA": "addr", "TXT": "text"}


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 15, 10, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeDNS:
    """Scripted answers for the DNS probe.

    Answers are keyed by (hostname, qtype) and may be overridden for one
    nameserver set. Unknown names answer "not found".
    """

    def __init__(self) -> None:
        self.answers: dict[tuple[tuple[str, ...] | None, str, str], Any] = {}
        self.queries: list[tuple[tuple[str, ...], str, str]] = []

    def set(
        self,
        hostname: str,
        qtype: str,
        values: list[str] | Any,
        nameservers: list[str] | None = None,
    ) -> None:
        key = tuple(nameservers) if nameservers else None
        self.answers[(key, hostname, qtype)] = values

    def fail(self, hostname: str, qtype: str, code: int = 11, message: str = "Connection refused",
             nameservers: list[str] | None = None) -> None:
        self.set(hostname, qtype, aiodns.error.DNSError(code, message), nameservers)

    def factory(self, nameservers: list[str] | None) -> _FakeResolver:
        return _FakeResolver(self, tuple(nameservers or ()))

    def answer_for(self, nameservers: tuple[str, ...], hostname: str, qtype: str) -> Any:
        if (nameservers, hostname, qtype) in self.answers:
            return self.answers[(nameservers, hostname, qtype)]
        return self.answers.get((None, hostname, qtype))

    def count(self, qtype: str | None = None) -> int:
        return sum(1 for _, _, q in self.queries if qtype is None or q == qtype)


class _FakeResolver:
    def __init__(self, dns: FakeDNS, nameservers: tuple[str, ...]) -> None:
        self.dns = dns
        self.nameservers = nameservers

    async def query_dns(self, hostname: str, qtype: str) -> SimpleNamespace:
        self.dns.queries.append((self.nameservers, hostname, qtype))
        entry = self.dns.answer_for(self.nameservers, hostname, qtype)
        if entry is HANG:
            await asyncio.sleep(10)
        if isinstance(entry, BaseException):
            raise entry
        if not entry:
            raise aiodns.error.DNSError(4, "Domain name not found")
        field = _FIELD[qtype]
        return SimpleNamespace(
            answer=[
                SimpleNamespace(type=qtype, data=SimpleNamespace(**{field: value}))
                for value in entry
            ]
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dns():
    return FakeDNS()


@pytest.fixture
def store():
    return MemoryDomainStore()


@pytest.fixture
def config():
    return HostclaimConfig(
        verification=VerificationConfig(platform_domain="platform.example"),
        dns=DNSConfig(dns_timeout=0.2),
    )


@pytest.fixture
def manager(config, store, dns, clock):
    return DomainManager.from_config(config, store=store, resolver_factory=dns.factory, clock=clock)
