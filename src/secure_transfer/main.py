"""FastAPI application entry point for SecureTransfer.

Startup wires logging, the escrow service (ledger client, escrow cache and
automation scheduler) and, when reachable, Redis for create idempotency.
Shutdown stops the scheduler before the ledger client and Redis close, so no
tick is left holding a half-finished submission.

REST endpoints live under /api/v1/*; the same operations are exposed to AI
agents as MCP tools under /mcp.

Run with:
    uv run uvicorn secure_transfer.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from secure_transfer import __version__
from secure_transfer.config import Settings, get_settings
from secure_transfer.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


async def _start_dependencies(settings: Settings) -> None:
    from secure_transfer.bootstrap import init_service
    from secure_transfer.infrastructure.redis_client import init_redis

    await init_service(settings)

    try:
        await init_redis()
    except Exception as exc:
        # Escrows still work; duplicate-create protection is off until restart.
        logger.warning("app.redis_unavailable", error=str(exc))


async def _stop_dependencies() -> None:
    from secure_transfer.bootstrap import close_service
    from secure_transfer.infrastructure.redis_client import close_redis

    await close_service()
    await close_redis()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    setup_logging(log_level=settings.app_log_level, json_logs=not settings.is_development)
    logger.info(
        "app.starting",
        env=settings.app_env,
        ledger_mode=settings.ledger_mode,
        scheduler_enabled=settings.scheduler_enabled,
    )

    await _start_dependencies(settings)
    logger.info("app.started", host=settings.app_host, port=settings.app_port)
    try:
        yield
    finally:
        logger.info("app.shutting_down")
        await _stop_dependencies()
        logger.info("app.stopped")


def create_app() -> FastAPI:
    """Build the FastAPI app with middleware, REST routers and the MCP mount."""
    from secure_transfer.api.middleware import setup_middleware
    from secure_transfer.api.routes import automation, escrow, health
    from secure_transfer.mcp_server.tools import mcp

    settings = get_settings()
    docs_enabled = settings.is_development

    app = FastAPI(
        title="SecureTransfer",
        description=(
            "Time-locked escrow payments on the ledger. "
            "Receivers claim before expiry; senders get refunds after."
        ),
        version=__version__,
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
    )
    setup_middleware(app)

    for module in (health, escrow, automation):
        app.include_router(module.router)

    app.mount("/mcp", mcp.sse_app())
    return app


app = create_app()
