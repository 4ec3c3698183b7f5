"""HTTP API for custom domain verification and activation.

Routes:
    POST /domains/verify                      start verification
    GET  /domains/verify?tenant_id=           verification status
    POST /domains/verify/{tenant_id}/retry    probe DNS now
    GET  /domains/activate/{tenant_id}        activation status
    POST /domains/activate/{tenant_id}        activation check
    GET  /domains/cname/{tenant_id}           cutover CNAME instructions
    POST /domains/ssl/{tenant_id}             SSL provisioner callback (signed)
    GET  /domains/tls/ask?domain=             on-demand TLS authorization
    GET  /health
    GET  /metrics
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog
from aiohttp import web

from hostclaim.domains.errors import HostclaimError
from hostclaim.domains.manager import DomainManager
from hostclaim.observability.metrics import generate_metrics, get_content_type
from hostclaim.webhooks.verifier import CallbackVerifier

logger = structlog.get_logger()


def _error(message: str, status: int, **extra: Any) -> web.Response:
    return web.json_response({"success": False, "error": message, **extra}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Render engine errors as JSON with their HTTP status."""
    try:
        return await handler(request)
    except HostclaimError as e:
        if e.status >= 500:
            logger.error("Request failed", path=request.path, code=e.code, error=e.message)
        else:
            logger.debug("Request rejected", path=request.path, code=e.code, status=e.status)
        return web.json_response({"success": False, **e.to_dict()}, status=e.status)


class DomainAPI:
    """Request handlers bound to one ``DomainManager``."""

    def __init__(self, manager: DomainManager, provisioner_secret: str | None = None) -> None:
        self.manager = manager
        self.verifier = CallbackVerifier(provisioner_secret) if provisioner_secret else None

    def register_routes(self, app: web.Application) -> None:
        app.router.add_post("/domains/verify", self.handle_initiate)
        app.router.add_get("/domains/verify", self.handle_status)
        app.router.add_post("/domains/verify/{tenant_id}/retry", self.handle_retry)
        app.router.add_get("/domains/activate/{tenant_id}", self.handle_activation_status)
        app.router.add_post("/domains/activate/{tenant_id}", self.handle_activation_check)
        app.router.add_get("/domains/cname/{tenant_id}", self.handle_cname_instructions)
        app.router.add_post("/domains/ssl/{tenant_id}", self.handle_ssl_callback)
        app.router.add_get("/domains/tls/ask", self.handle_tls_ask)
        app.router.add_get("/health", self.handle_health)
        app.router.add_get("/metrics", self.handle_metrics)

    async def _json_body(self, request: web.Request) -> dict[str, Any] | None:
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return None
        return body if isinstance(body, dict) else None

    async def handle_initiate(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        if body is None:
            return _error("Request body must be a JSON object", 400)

        domain = body.get("domain")
        tenant_id = body.get("tenant_id")
        if not domain or not tenant_id:
            return _error("Domain and tenant_id are required", 400)
        subdomain = body.get("subdomain", "booking")
        if not isinstance(domain, str) or not isinstance(subdomain, (str, type(None))):
            return _error("domain and subdomain must be strings", 400)

        result = await self.manager.initiate(str(tenant_id), domain, subdomain)
        return web.json_response(result)

    async def handle_status(self, request: web.Request) -> web.Response:
        tenant_id = request.query.get("tenant_id")
        if not tenant_id:
            return _error("tenant_id is required", 400)
        return web.json_response(await self.manager.status(tenant_id))

    async def handle_retry(self, request: web.Request) -> web.Response:
        tenant_id = request.match_info["tenant_id"]
        return web.json_response(await self.manager.retry(tenant_id))

    async def handle_activation_status(self, request: web.Request) -> web.Response:
        tenant_id = request.match_info["tenant_id"]
        return web.json_response(await self.manager.activation_status(tenant_id))

    async def handle_activation_check(self, request: web.Request) -> web.Response:
        tenant_id = request.match_info["tenant_id"]
        return web.json_response(await self.manager.activation_check(tenant_id))

    async def handle_cname_instructions(self, request: web.Request) -> web.Response:
        tenant_id = request.match_info["tenant_id"]
        return web.json_response(await self.manager.cname_instructions(tenant_id))

    async def handle_ssl_callback(self, request: web.Request) -> web.Response:
        """Accept a certificate status report from the SSL provisioner."""
        tenant_id = request.match_info["tenant_id"]
        payload = await request.read()

        if self.verifier is not None:
            check = self.verifier.verify(payload, request.headers)
            if not check:
                logger.warning(
                    "Rejected provisioner callback",
                    tenant_id=tenant_id,
                    reason=check.status.value,
                )
                return _error(check.error or "Invalid signature", 401)

        try:
            body = json.loads(payload or b"{}")
        except json.JSONDecodeError:
            return _error("Request body must be a JSON object", 400)
        ssl_status = body.get("ssl_status") if isinstance(body, dict) else None
        if not ssl_status:
            return _error("ssl_status is required", 400)

        try:
            result = await self.manager.report_ssl(tenant_id, str(ssl_status))
        except ValueError:
            return _error(f"Invalid ssl_status: {ssl_status}", 400)
        return web.json_response(result)

    async def handle_tls_ask(self, request: web.Request) -> web.Response:
        domain = request.query.get("domain")
        if not domain:
            return _error("domain is required", 400)
        authorization = await self.manager.authorize_tls(domain)
        return web.json_response(authorization.to_dict(), status=200 if authorization else 403)

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy"})

    async def handle_metrics(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint."""
        return web.Response(body=generate_metrics(), headers={"Content-Type": get_content_type()})


def create_app(manager: DomainManager, provisioner_secret: str | None = None) -> web.Application:
    """Build the aiohttp application serving the domain API."""
    app = web.Application(middlewares=[error_middleware])
    DomainAPI(manager, provisioner_secret).register_routes(app)
    return app


async def serve(
    manager: DomainManager,
    host: str = "127.0.0.1",
    port: int = 8080,
    provisioner_secret: str | None = None,
    shutdown_event: asyncio.Event | None = None,
) -> None:
    """Run the API until ``shutdown_event`` is set (or forever)."""
    if provisioner_secret is None:
        logger.warning("No provisioner secret configured, SSL callbacks are unauthenticated")

    runner = web.AppRunner(create_app(manager, provisioner_secret))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Domain API started", host=host, port=port)

    shutdown_event = shutdown_event or asyncio.Event()
    try:
        await shutdown_event.wait()
    finally:
        logger.info("Stopping domain API...")
        await runner.cleanup()
