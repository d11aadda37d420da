"""Middleware package."""

from app.middleware.api_prefix import ApiPrefixMiddleware
from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "ApiPrefixMiddleware",
    "RateLimitMiddleware",
    "SecurityHeadersMiddleware",
]
