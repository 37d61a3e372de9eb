"""
API layer for the Patron indexer.

This module provides:
- PatronServicer: read and sync-trigger operations over the store
- create_http_app / run_http_server: aiohttp REST surface
"""

from .http_server import create_http_app, run_http_server
from .service import PatronServicer

__all__ = ["PatronServicer", "create_http_app", "run_http_server"]
