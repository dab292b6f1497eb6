"""Authoritative store HTTP server."""

from fleetsync.server.app import create_app, main
from fleetsync.server.store import AuthoritativeStore, CascadeResult

__all__ = ["AuthoritativeStore", "CascadeResult", "create_app", "main"]
