"""Tests for the HTTP API."""

from __future__ import annotations

import json

import pytest
from aiohttp.test_utils import TestClient, TestServer

from hostclaim.server import create_app
from hostclaim.webhooks import CallbackVerifier

HOST = "booking.example.com"
SECRET = "provisioner-secret"


async def _client(manager, provisioner_secret=None) -> TestClient:
    client = TestClient(TestServer(create_app(manager, provisioner_secret)))
    await client.start_server()
    return client


async def _verified(manager, dns):
    await manager.add_tenant(
        "t1", "Park Bus", subscription_plan="professional", subscription_status="active"
    )
    started = await manager.initiate("t1", "example.com")
    dns.set(HOST, "CNAME", [started["verification_target"]])
    await manager.retry("t1")


class TestVerificationRoutes:
    """Tests for initiate, status and retry."""

    @pytest.mark.asyncio
    async def test_initiate_and_status(self, manager):
        await manager.add_tenant("t1", "Park Bus")
        client = await _client(manager)
        try:
            resp = await client.post(
                "/domains/verify", json={"domain": "example.com", "tenant_id": "t1"}
            )
            assert resp.status == 200
            data = await resp.json()
            assert data["cname_source"] == HOST

            resp = await client.get("/domains/verify", params={"tenant_id": "t1"})
            status = await resp.json()
            assert status["status"] == "pending"
            assert status["verification_target"] == data["verification_target"]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_missing_fields(self, manager):
        client = await _client(manager)
        try:
            resp = await client.post("/domains/verify", json={"domain": "example.com"})
            assert resp.status == 400
            assert (await resp.json())["error"] == "Domain and tenant_id are required"

            resp = await client.post("/domains/verify", data=b"not json")
            assert resp.status == 400

            resp = await client.get("/domains/verify")
            assert resp.status == 400
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_apex_rejected(self, manager):
        await manager.add_tenant("t1", "Park Bus")
        client = await _client(manager)
        try:
            resp = await client.post(
                "/domains/verify",
                json={"domain": "example.com", "tenant_id": "t1", "subdomain": ""},
            )
            assert resp.status == 400
            data = await resp.json()
            assert data["success"] is False
            assert data["code"] == "apex_domain_rejected"
            assert data["suggestion"] == HOST
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_non_string_parts_are_400(self, manager):
        await manager.add_tenant("t1", "Park Bus")
        client = await _client(manager)
        try:
            resp = await client.post(
                "/domains/verify",
                json={"tenant_id": "t1", "domain": "example.com", "subdomain": 5},
            )
            assert resp.status == 400
            assert (await resp.json())["success"] is False

            resp = await client.post(
                "/domains/verify", json={"tenant_id": "t1", "domain": ["example.com"]}
            )
            assert resp.status == 400
            assert await manager.store.get("t1") is None
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_collision_is_409(self, manager):
        await manager.add_tenant("t1", "Park Bus")
        await manager.add_tenant("t2", "City Tours")
        await manager.initiate("t1", "example.com")
        client = await _client(manager)
        try:
            resp = await client.post(
                "/domains/verify", json={"domain": "example.com", "tenant_id": "t2"}
            )
            assert resp.status == 409
            assert (await resp.json())["conflicting_tenant_name"] == "Park Bus"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_unknown_tenant_is_404(self, manager):
        client = await _client(manager)
        try:
            resp = await client.post("/domains/verify/ghost/retry")
            assert resp.status == 404
            assert (await resp.json())["code"] == "tenant_not_found"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_retry_throttled_is_429(self, manager):
        await manager.add_tenant("t1", "Park Bus")
        await manager.initiate("t1", "example.com")
        client = await _client(manager)
        try:
            for _ in range(5):
                resp = await client.post("/domains/verify/t1/retry")
                assert resp.status == 200
                assert (await resp.json())["status"] == "verification_failed"

            resp = await client.post("/domains/verify/t1/retry")
            assert resp.status == 429
            data = await resp.json()
            assert data["attempts_remaining"] == 0
            assert "next_retry_after" in data
        finally:
            await client.close()


class TestSSLCallback:
    """Tests for the provisioner callback route."""

    @pytest.mark.asyncio
    async def test_signed_callback(self, manager, dns):
        await _verified(manager, dns)
        client = await _client(manager, SECRET)
        body = json.dumps({"ssl_status": "provisioned"}).encode()
        headers = CallbackVerifier(SECRET).sign_headers(body)
        headers["Content-Type"] = "application/json"
        try:
            resp = await client.post("/domains/ssl/t1", data=body, headers=headers)
            assert resp.status == 200
            assert (await resp.json())["ssl_ready_at"] is not None
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_unsigned_callback_rejected(self, manager, dns):
        await _verified(manager, dns)
        client = await _client(manager, SECRET)
        try:
            resp = await client.post("/domains/ssl/t1", json={"ssl_status": "provisioned"})
            assert resp.status == 401
            record = await manager.store.get("t1")
            assert record.ssl_ready_at is None
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_invalid_status(self, manager, dns):
        await _verified(manager, dns)
        client = await _client(manager)
        try:
            resp = await client.post("/domains/ssl/t1", json={"ssl_status": "exploded"})
            assert resp.status == 400
            assert (await resp.json())["error"] == "Invalid ssl_status: exploded"
        finally:
            await client.close()


class TestActivationRoutes:
    """Tests for activation and TLS authorization."""

    @pytest.mark.asyncio
    async def test_activation(self, manager, dns):
        await _verified(manager, dns)
        client = await _client(manager)
        try:
            resp = await client.get("/domains/activate/t1")
            assert (await resp.json())["status"] == "ready_for_activation"

            resp = await client.post("/domains/activate/t1")
            data = await resp.json()
            assert data["activated"] is True
            assert data["test_url"] == f"https://{HOST}"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_cname_instructions(self, manager, dns):
        await _verified(manager, dns)
        client = await _client(manager)
        try:
            resp = await client.get("/domains/cname/t1")
            assert resp.status == 200
            data = await resp.json()
            assert data["cname_record"]["value"] == "platform.example"
            assert "route53" in data["provider_guides"]

            resp = await client.get("/domains/cname/ghost")
            assert resp.status == 404
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_cname_instructions_need_verification(self, manager):
        await manager.add_tenant("t1", "Park Bus")
        await manager.initiate("t1", "example.com")
        client = await _client(manager)
        try:
            resp = await client.get("/domains/cname/t1")
            assert resp.status == 400
            assert (await resp.json())["code"] == "not_verified"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_tls_ask(self, manager, dns):
        await _verified(manager, dns)
        client = await _client(manager)
        try:
            resp = await client.get("/domains/tls/ask", params={"domain": HOST})
            assert resp.status == 200

            resp = await client.get("/domains/tls/ask", params={"domain": "evil.example.org"})
            assert resp.status == 403

            resp = await client.get("/domains/tls/ask")
            assert resp.status == 400
        finally:
            await client.close()


class TestOperationalRoutes:
    """Tests for health and metrics."""

    @pytest.mark.asyncio
    async def test_health(self, manager):
        client = await _client(manager)
        try:
            resp = await client.get("/health")
            assert resp.status == 200
            assert await resp.json() == {"status": "healthy"}
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_metrics(self, manager):
        client = await _client(manager)
        try:
            resp = await client.get("/metrics")
            assert resp.status == 200
            assert "hostclaim_" in await resp.text()
        finally:
            await client.close()
