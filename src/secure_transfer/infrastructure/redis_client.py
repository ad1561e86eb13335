"""Redis client for create-request idempotency keys.

A create is only safe to resubmit when the earlier attempt provably never
reached the ledger. Clients that cannot tell (a dropped HTTP response, a
double-clicked button) send an idempotency key. The key is reserved with
SET NX before the create is submitted, so two concurrent requests cannot both
reach the ledger; once the create seals the key maps to the resulting escrow
id for the TTL. A create that provably failed releases the key; one left in
doubt keeps it reserved until the TTL runs out.

Redis is optional: without it the API still works, it just cannot
deduplicate creates.

Usage:
    from secure_transfer.infrastructure.redis_client import init_redis, reserve_create, remember_create

    await init_redis()
    if await reserve_create("client-key-1") is None:
        ...  # submit the create
        await remember_create("client-key-1", escrow_id="42")
"""

from __future__ import annotations

import redis.asyncio as aioredis

from secure_transfer.config import get_settings
from secure_transfer.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

_KEY_PREFIX = "idempotency:create:"

# Placeholder value while the reserving request is still in flight.
PENDING = "pending"


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    await client.ping()
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def redis_available() -> bool:
    return _redis_client is not None


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


async def reserve_create(key: str) -> str | None:
    """Claim ``key`` for a new create.

    Returns None when this caller now owns the key, otherwise the value already
    stored under it: an escrow id, or PENDING while another create is in flight.
    """
    settings = get_settings()
    name = f"{_KEY_PREFIX}{key}"
    client = get_redis()
    if await client.set(name, PENDING, nx=True, ex=settings.redis_idempotency_ttl_seconds):
        return None
    # A key that expired between SET and GET reads as in flight; the caller can retry.
    return await client.get(name) or PENDING


async def release_create(key: str) -> None:
    """Free ``key`` after a create that never reached the ledger."""
    await get_redis().delete(f"{_KEY_PREFIX}{key}")


async def remember_create(key: str, escrow_id: str) -> None:
    """Overwrite the reservation on ``key`` with the sealed ``escrow_id``."""
    settings = get_settings()
    await get_redis().set(
        f"{_KEY_PREFIX}{key}",
        escrow_id,
        ex=settings.redis_idempotency_ttl_seconds,
    )
