"""Lightweight in-memory rate limiting dependencies."""

from __future__ import annotations

import time
from collections import defaultdict, deque
from threading import Lock
from typing import Callable

from fastapi import HTTPException, Request

_BUCKETS: dict[str, deque[float]] = defaultdict(deque)
_LOCK = Lock()


def _client_key(request: Request) -> str:
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return f"key:{api_key[:16]}"
    return (request.client.host if request.client else "unknown").strip()


def rate_limit(limit: int, window_seconds: int, scope: str) -> Callable[[Request], None]:
    """Create a dependency enforcing N requests per time window per caller
    (API key when present, else client IP)."""

    def _dep(request: Request) -> None:
        key = f"{scope}:{_client_key(request)}"
        now = time.time()
        cutoff = now - window_seconds

        with _LOCK:
            q = _BUCKETS[key]
            while q and q[0] < cutoff:
                q.popleft()
            if len(q) >= limit:
                raise HTTPException(
                    status_code=429,
                    detail=f"Rate limit exceeded for {scope}. Try again later.",
                )
            q.append(now)

    return _dep


def reset_buckets() -> None:
    with _LOCK:
        _BUCKETS.clear()
