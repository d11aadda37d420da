"""Per-client token bucket rate limiting."""

import os
import time
from typing import Dict, Tuple

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_LIMIT = {"max_tokens": 100, "refill_rate": 100 / 60}
# Submissions cost vendor money; keep them on a shorter leash.
SPECIAL_LIMITS: Dict[Tuple[str, str], Dict[str, float]] = {
    ("POST", "/transcribe-url"): {"max_tokens": 10, "refill_rate": 10 / 60},
    ("POST", "/transcribe"): {"max_tokens": 10, "refill_rate": 10 / 60},
    ("POST", "/webhook/test-event"): {"max_tokens": 5, "refill_rate": 5 / 60},
    ("POST", "/webhook/test-secret"): {"max_tokens": 5, "refill_rate": 5 / 60},
}


class RateLimiter:
    def __init__(self):
        self._buckets: Dict[str, Dict[str, float]] = {}

    def is_allowed(self, key: str, *, max_tokens: int, refill_rate: float) -> bool:
        now = time.time()
        bucket = self._buckets.get(key, {"tokens": float(max_tokens), "last_refill": now})

        elapsed = now - bucket["last_refill"]
        bucket["tokens"] = min(float(max_tokens), bucket["tokens"] + elapsed * refill_rate)
        bucket["last_refill"] = now

        allowed = bucket["tokens"] >= 1.0
        if allowed:
            bucket["tokens"] -= 1.0

        self._buckets[key] = bucket
        return allowed

    def reset(self) -> None:
        self._buckets.clear()


rate_limiter = RateLimiter()


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, exclude_paths=None, limiter: RateLimiter = rate_limiter):
        super().__init__(app)
        self.exclude_paths = set(exclude_paths or [])
        self.limiter = limiter

    def _get_client_key(self, request: Request) -> str:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return f"ip:{forwarded.split(',')[0].strip()}"
        client_ip = request.client[0] if request.client else "unknown"
        return f"ip:{client_ip}"

    def _get_limit_config(self, path: str, method: str) -> Dict[str, float]:
        return SPECIAL_LIMITS.get((method.upper(), path.rstrip("/") or "/"), DEFAULT_LIMIT)

    async def dispatch(self, request: Request, call_next) -> Response:
        if os.getenv("DISABLE_RATE_LIMIT") == "1" or request.url.path in self.exclude_paths:
            return await call_next(request)

        config = self._get_limit_config(request.url.path, request.method)
        client_key = self._get_client_key(request)
        key = f"{client_key}:{request.url.path}:{request.method.upper()}"

        if not self.limiter.is_allowed(
            key, max_tokens=int(config["max_tokens"]), refill_rate=float(config["refill_rate"])
        ):
            logger.warning("Rate limit exceeded for %s on %s", client_key, request.url.path)
            return JSONResponse(
                status_code=429, content={"detail": "Rate limit exceeded. Please try again later."}
            )

        return await call_next(request)
