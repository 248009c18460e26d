"""Per-session request quotas for counter traffic (Redis-backed, local fallback)."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple

from fastapi import Depends, HTTPException, Request
import redis.asyncio as redis
from redis.exceptions import RedisError

from config import settings
from routers.auth_scope import AuthContext, get_auth_context
from services.session_token import ROLE_STORE

logger = logging.getLogger(__name__)

KEY_PREFIX = "card_ledger:rate"

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def _client_address(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return "unknown"


def quota_subject(request: Request, auth: Optional[AuthContext]) -> str:
    """Who a request is charged to.

    Store sessions share one quota per store, however many counters or
    addresses they debit from. Other sessions are charged per subject, and
    anonymous callers per client address.
    """
    if auth is not None and auth.role == ROLE_STORE and auth.store_id:
        return f"store:{auth.store_id}"
    if auth is not None and auth.subject:
        return f"user:{auth.subject}"
    return f"ip:{_client_address(request)}"


async def _consume_local_quota(key: str, limit: int, window_seconds: int) -> Tuple[bool, float]:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count = 0
            reset_at = now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
        return count <= limit, max(reset_at - now, 0.0)


async def _consume_redis_quota(key: str, limit: int, window_seconds: int) -> Tuple[bool, float]:
    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        current = await redis_client.incr(key)
        if current == 1:
            await redis_client.expire(key, window_seconds)
        ttl = await redis_client.ttl(key)
    finally:
        await redis_client.aclose()
    return current <= limit, float(ttl if ttl and ttl > 0 else window_seconds)


def rate_limit(action: str, limit: int, window_seconds: int) -> Callable:
    """Return a FastAPI dependency enforcing ``limit`` calls of ``action`` per window."""

    async def _dependency(request: Request, auth: AuthContext = Depends(get_auth_context)):
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        subject = quota_subject(request, auth)
        key = f"{KEY_PREFIX}:{action}:{subject}"

        try:
            allowed, retry_after = await _consume_redis_quota(key, limit, window_seconds)
        except (RedisError, OSError) as exc:
            logger.warning("Rate limiter falling back to in-process counters: %s", exc)
            allowed, retry_after = await _consume_local_quota(key, limit, window_seconds)

        if not allowed:
            logger.warning("Quota exhausted for %s on %s", subject, action)
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded for {action}. Try again later.",
                headers={"Retry-After": str(int(retry_after) or 1)},
            )

    return _dependency
