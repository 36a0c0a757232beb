"""Middleware package for chatguard."""

from chatguard.app.middleware.rate_limit import (
    RateLimitMiddleware,
    build_rate_limit_headers,
    set_guest_cookie,
)
from chatguard.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "build_rate_limit_headers",
    "get_request_id",
    "set_guest_cookie",
]
