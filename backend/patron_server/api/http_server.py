"""
HTTP server implementation for the Patron indexer.

REST surface over PatronServicer:
    GET /creators?limit&cursor      paginated creator listing
    GET /creator/{id}               creator plus content
    GET /creator/{id}/supporters    access purchases, newest first
    GET /registry/{handle}          handle resolution
    GET /events                     run one synchronization pass
    GET /health                     cursors, row counts, recent skips

Invariants:
    - JSON request/response format with camelCase keys
    - Errors are {"error": message, "errorCode": code}
    - /events requires "Authorization: Bearer <secret>" when a secret is set

How to change safely:
    - Keep status mapping in error_middleware aligned with errors.py
    - Version the API if breaking changes are needed
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from collections.abc import Callable
from typing import Optional

import pydantic
from aiohttp import web
from pydantic import BaseModel, Field

from ..config import HttpConfig
from ..errors import NotFoundError, PatronError, ValidationError
from .service import PatronServicer

logger = logging.getLogger(__name__)


class CreatorsQuery(BaseModel):
    """Query parameters of GET /creators."""

    limit: int = Field(default=20, ge=1, le=100)
    cursor: Optional[str] = Field(default=None, min_length=1)


def _error(message: str, code: str, status: int) -> web.Response:
    return web.json_response({"error": message, "errorCode": code}, status=status)


def create_http_app(
    servicer: PatronServicer,
    config: HttpConfig | None = None,
    sync_secret: str | None = None,
) -> web.Application:
    """Create the aiohttp application.

    Args:
        servicer: PatronServicer instance
        config: HTTP server configuration
        sync_secret: Bearer token required by /events (None = open)

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application()

    app.router.add_get("/creators", lambda r: handle_list_creators(r, servicer))
    app.router.add_get("/creator/{profile_id}", lambda r: handle_get_creator(r, servicer))
    app.router.add_get(
        "/creator/{profile_id}/supporters", lambda r: handle_get_supporters(r, servicer)
    )
    app.router.add_get("/registry/{handle}", lambda r: handle_get_handle(r, servicer))
    app.router.add_get("/events", lambda r: handle_run_sync(r, servicer, sync_secret))
    app.router.add_get("/health", lambda r: handle_health(r, servicer))

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                response = e

        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"

        return response

    app.middlewares.append(cors_middleware)

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except NotFoundError as e:
            return _error(e.message, e.code, 404)
        except ValidationError as e:
            return _error(e.message, e.code, 400)
        except PatronError as e:
            logger.error(f"HTTP handler error: {e.message}", exc_info=True)
            return _error(e.message, e.code, 500)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return _error(str(e), "INTERNAL", 500)

    app.middlewares.insert(0, error_middleware)

    return app


async def handle_list_creators(request: web.Request, servicer: PatronServicer) -> web.Response:
    """Handle GET /creators - Paginated creator listing."""
    try:
        query = CreatorsQuery(
            limit=request.query.get("limit", 20),
            cursor=request.query.get("cursor") or None,
        )
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"Invalid {field_name}: {first['msg']}") from e

    result = await servicer.list_creators(limit=query.limit, cursor=query.cursor)
    return web.json_response(result)


async def handle_get_creator(request: web.Request, servicer: PatronServicer) -> web.Response:
    """Handle GET /creator/{profile_id} - Creator detail with content."""
    result = await servicer.get_creator_detail(request.match_info["profile_id"])
    return web.json_response(result)


async def handle_get_supporters(request: web.Request, servicer: PatronServicer) -> web.Response:
    """Handle GET /creator/{profile_id}/supporters."""
    result = await servicer.get_supporters(request.match_info["profile_id"])
    return web.json_response(result)


async def handle_get_handle(request: web.Request, servicer: PatronServicer) -> web.Response:
    """Handle GET /registry/{handle} - Resolve a registered handle."""
    result = await servicer.get_handle(request.match_info["handle"])
    return web.json_response(result)


async def handle_run_sync(
    request: web.Request, servicer: PatronServicer, sync_secret: str | None
) -> web.Response:
    """Handle GET /events - Run one synchronization pass."""
    if sync_secret:
        expected = f"Bearer {sync_secret}"
        provided = request.headers.get("Authorization", "")
        if not hmac.compare_digest(provided.encode(), expected.encode()):
            return _error("Unauthorized", "UNAUTHORIZED", 401)

    result = await servicer.run_sync()
    return web.json_response(result)


async def handle_health(request: web.Request, servicer: PatronServicer) -> web.Response:
    """Handle GET /health - Health check."""
    result = await servicer.health()
    status = 200 if result.get("healthy") else 503
    return web.json_response(result, status=status)


async def run_http_server(
    servicer: PatronServicer,
    config: HttpConfig,
    sync_secret: str | None = None,
) -> None:
    """Run the HTTP server until cancelled.

    Args:
        servicer: PatronServicer instance
        config: HTTP server configuration
        sync_secret: Bearer token required by /events
    """
    app = create_http_app(servicer, config, sync_secret)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.host, config.port)
    await site.start()

    logger.info(f"HTTP server running on http://{config.host}:{config.port}")

    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await runner.cleanup()
