"""Tests for the DNS probe."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from conftest import HANG
from hostclaim.domains import DNSProbe, PropagationState, ResolverState
from hostclaim.domains.probe import _record_values

HOST = "booking.example.com"
TARGET = "verify-3f0c9a1e5b7d4c2a8e6f0b1d3c5a7e9f.platform.example"


@pytest.fixture
def probe(dns):
    return DNSProbe(timeout=0.2, resolver_factory=dns.factory)


class TestRecordValues:
    """Tests for extracting values from resolver answers."""

    def test_structured_answer(self):
        result = SimpleNamespace(
            answer=[
                SimpleNamespace(type="CNAME", data=SimpleNamespace(cname="Target.Example.")),
            ]
        )
        assert _record_values(result, "CNAME") == ["target.example"]

    def test_flat_answer(self):
        result = [SimpleNamespace(host="192.0.2.1"), SimpleNamespace(host="192.0.2.2")]
        assert _record_values(result, "A") == ["192.0.2.1", "192.0.2.2"]

    def test_skips_records_of_other_types(self):
        result = SimpleNamespace(
            answer=[
                SimpleNamespace(type="CNAME", data=SimpleNamespace(cname="alias.example")),
                SimpleNamespace(type="A", data=SimpleNamespace(addr="192.0.2.1")),
            ]
        )
        assert _record_values(result, "A") == ["192.0.2.1"]

    def test_txt_bytes(self):
        result = [SimpleNamespace(text=b"v=spf1 -all")]
        assert _record_values(result, "TXT") == ["v=spf1 -all"]


class TestResolveCNAME:
    """Tests for the exact-match CNAME check."""

    @pytest.mark.asyncio
    async def test_match_ignores_case_and_trailing_dot(self, probe, dns):
        dns.set(HOST, "CNAME", [TARGET.upper() + "."])

        result = await probe.resolve_cname(HOST, TARGET)

        assert result.found is True
        assert result.conflicts == []
        assert result.error is None

    @pytest.mark.asyncio
    async def test_other_target_is_reported(self, probe, dns):
        dns.set(HOST, "CNAME", ["other.example.net"])

        result = await probe.resolve_cname(HOST, TARGET)

        assert result.found is False
        assert result.actual_target == "other.example.net"
        assert result.conflicts == ["other.example.net"]

    @pytest.mark.asyncio
    async def test_no_suffix_matching(self, probe, dns):
        dns.set(HOST, "CNAME", ["evil-" + TARGET])

        result = await probe.resolve_cname(HOST, TARGET)

        assert result.found is False

    @pytest.mark.asyncio
    async def test_missing_record_is_not_an_error(self, probe):
        result = await probe.resolve_cname(HOST, TARGET)

        assert result.found is False
        assert result.actual_targets == []
        assert result.error is None

    @pytest.mark.asyncio
    async def test_resolver_failure_is_captured(self, probe, dns):
        dns.fail(HOST, "CNAME", code=11, message="Could not contact DNS servers")

        result = await probe.resolve_cname(HOST, TARGET)

        assert result.found is False
        assert "Could not contact DNS servers" in result.error

    @pytest.mark.asyncio
    async def test_timeout_is_captured(self, probe, dns):
        dns.set(HOST, "CNAME", HANG)

        result = await probe.resolve_cname(HOST, TARGET)

        assert result.found is False
        assert "timed out" in result.error


class TestCheckConflicts:
    """Tests for A/AAAA/TXT conflict detection."""

    @pytest.mark.asyncio
    async def test_address_records_conflict(self, probe, dns):
        dns.set(HOST, "A", ["192.0.2.10"])
        dns.set(HOST, "TXT", ["google-site-verification=x"])

        check = await probe.check_conflicts(HOST)

        assert check.has_conflicts is True
        assert {r.type for r in check.records} == {"A", "TXT"}
        assert check.to_dict()["records"][0]["values"] == ["192.0.2.10"]

    @pytest.mark.asyncio
    async def test_clean_name(self, probe):
        check = await probe.check_conflicts(HOST)

        assert check.has_conflicts is False
        assert check.records == []

    @pytest.mark.asyncio
    async def test_failed_lookups_count_as_no_record(self, probe, dns):
        dns.fail(HOST, "A")
        dns.set(HOST, "AAAA", HANG)

        check = await probe.check_conflicts(HOST)

        assert check.has_conflicts is False

    @pytest.mark.asyncio
    async def test_aliased_name_skips_lookups(self, probe, dns):
        dns.set(HOST, "A", ["192.0.2.10"])

        check = await probe.check_conflicts(HOST, aliased=True)

        assert check.has_conflicts is False
        assert dns.count("A") == 0


class TestPropagation:
    """Tests for the cross-resolver consistency check."""

    @pytest.mark.asyncio
    async def test_propagated(self, probe, dns):
        dns.set(HOST, "CNAME", [TARGET])

        report = await probe.check_propagation(HOST, TARGET)

        assert report.resolvers == {
            "cloudflare": ResolverState.RESOLVED,
            "google": ResolverState.RESOLVED,
        }
        assert report.state == PropagationState.PROPAGATED

    @pytest.mark.asyncio
    async def test_disagreement_is_propagating(self, probe, dns):
        dns.set(HOST, "CNAME", [TARGET], nameservers=["1.1.1.1"])

        report = await probe.check_propagation(HOST, TARGET)

        assert report.resolvers["cloudflare"] == ResolverState.RESOLVED
        assert report.resolvers["google"] == ResolverState.PENDING
        assert report.state == PropagationState.PROPAGATING
        assert report.to_dict()["state"] == "propagating"

    @pytest.mark.asyncio
    async def test_not_configured(self, probe):
        report = await probe.check_propagation(HOST, TARGET)

        assert report.state == PropagationState.NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_all_resolvers_failing_is_unknown(self, probe, dns):
        dns.fail(HOST, "CNAME", nameservers=["1.1.1.1"])
        dns.fail(HOST, "CNAME", nameservers=["8.8.8.8"])

        report = await probe.check_propagation(HOST, TARGET)

        assert report.state == PropagationState.UNKNOWN
        assert set(report.errors) == {"cloudflare", "google"}

    @pytest.mark.asyncio
    async def test_queries_each_resolver(self, probe, dns):
        await probe.check_propagation(HOST, TARGET)

        nameservers = {ns for ns, _, _ in dns.queries}
        assert nameservers == {("1.1.1.1",), ("8.8.8.8",)}

    def test_requires_two_resolvers(self, dns):
        with pytest.raises(ValueError):
            DNSProbe(consistency_resolvers={"only": ["9.9.9.9"]}, resolver_factory=dns.factory)


class TestInspect:
    """Tests for the combined probe."""

    @pytest.mark.asyncio
    async def test_verified_skips_conflict_lookups(self, probe, dns):
        dns.set(HOST, "CNAME", [TARGET])

        report = await probe.inspect(HOST, TARGET)

        assert report.cname.found is True
        assert report.conflicts.has_conflicts is False
        assert dns.count("A") == 0
        diagnostic = report.to_diagnostic()
        assert diagnostic["expected_target"] == TARGET
        assert diagnostic["propagation"]["state"] == "propagated"

    @pytest.mark.asyncio
    async def test_wrong_cname_does_not_report_alias_addresses(self, probe, dns):
        dns.set(HOST, "CNAME", ["other.example.net"])
        dns.set(HOST, "A", ["192.0.2.10"])

        report = await probe.inspect(HOST, TARGET, include_propagation=False)

        assert report.cname.found is False
        assert report.conflicts.has_conflicts is False
        assert report.propagation is None

    @pytest.mark.asyncio
    async def test_legacy_records_without_cname(self, probe, dns):
        dns.set(HOST, "A", ["192.0.2.10"])

        report = await probe.inspect(HOST, TARGET, include_propagation=False)

        assert report.conflicts.has_conflicts is True

    @pytest.mark.asyncio
    async def test_check_live(self, probe, dns):
        dns.set(HOST, "CNAME", ["platform.example"])

        assert await probe.check_live(HOST, "platform.example") is True
        assert await probe.check_live(HOST, TARGET) is False
