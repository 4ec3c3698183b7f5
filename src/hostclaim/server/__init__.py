"""Hostclaim HTTP server."""

from hostclaim.server.api import DomainAPI, create_app, serve

__all__ = ["DomainAPI", "create_app", "serve"]
