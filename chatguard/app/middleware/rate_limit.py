"""Rate limiting middleware.

Applies the rate limit engine to the protected routes, answers 429 when a
caller is over quota, attaches X-RateLimit-* headers to every checked
response and persists newly minted guest cookies.
"""

import time
from typing import Optional, Sequence

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from chatguard.app.core.config import Settings, settings as default_settings
from chatguard.app.core.logging import get_log_context, get_logger
from chatguard.app.exceptions import RateLimitExceededError
from chatguard.app.middleware.request_id import get_request_id
from chatguard.app.rate_limit.limiter import RateLimitEngine, get_rate_limit_engine
from chatguard.app.rate_limit.models import (
    GuestIdentity,
    RateLimitConfig,
    RateLimitResult,
    RequestMeta,
)

logger = get_logger(__name__)


def build_rate_limit_headers(
    result: RateLimitResult,
    config: RateLimitConfig,
    now: Optional[float] = None,
) -> dict[str, str]:
    """Rate limit response headers for a check result.

    Retry-After is the number of seconds until reset, floored at 0, and 0
    when no reset time is known.
    """
    now = time.time() if now is None else now
    if result.reset_epoch_seconds > 0:
        retry_after = max(0, int(result.reset_epoch_seconds - now))
    else:
        retry_after = 0
    return {
        "X-RateLimit-Limit": str(config.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_epoch_seconds),
        "Retry-After": str(retry_after),
    }


def set_guest_cookie(
    response: Response,
    guest: Optional[GuestIdentity],
    config: Optional[Settings] = None,
) -> bool:
    """Persist a newly created guest id on the response.

    Failures are logged and swallowed; the id was already used for this
    request's identifier.

    Returns:
        True if a cookie was set
    """
    if guest is None or not guest.is_new:
        return False
    config = config or default_settings
    try:
        response.set_cookie(
            key=config.guest_cookie_name,
            value=guest.guest_id,
            max_age=config.guest_cookie_max_age,
            path="/",
            httponly=True,
            samesite="lax",
            secure=config.is_production,
        )
    except Exception as e:
        logger.warning(f"Failed to set guest cookie: {e}")
        return False
    return True


def _parse_rules(rules: Sequence[str]) -> list[tuple[Optional[str], str]]:
    parsed: list[tuple[Optional[str], str]] = []
    for rule in rules:
        parts = rule.split(None, 1)
        if len(parts) == 2:
            parsed.append((parts[0].upper(), parts[1]))
        elif parts:
            parsed.append((None, parts[0]))
    return parsed


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce role-aware rate limits on requests.

    Only requests matching one of the protected rules consume quota. Rules
    are "METHOD /path-prefix" strings; a rule without a method matches any
    method.
    """

    def __init__(
        self,
        app,
        protected_paths: Optional[Sequence[str]] = None,
        engine: Optional[RateLimitEngine] = None,
        config: Optional[Settings] = None,
    ):
        super().__init__(app)
        self.settings = config or default_settings
        rules = self.settings.rate_limit_protected_paths if protected_paths is None else protected_paths
        self._rules = _parse_rules(rules)
        self._engine = engine

    def _get_engine(self) -> RateLimitEngine:
        if self._engine is not None:
            return self._engine
        return get_rate_limit_engine()

    def is_protected(self, request: Request) -> bool:
        path = request.url.path
        method = request.method.upper()
        return any(
            (rule_method is None or rule_method == method) and path.startswith(prefix)
            for rule_method, prefix in self._rules
        )

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if not self.is_protected(request):
            return await call_next(request)

        engine = self._get_engine()
        result, guest = await engine.check_rate_limit(RequestMeta.from_request(request))
        config = engine.registry.get_config(result.role)
        headers = build_rate_limit_headers(result, config)
        request.state.rate_limit = result

        if not result.success:
            logger.info(
                "Request rejected by rate limit",
                extra=get_log_context(
                    request_id=get_request_id(request),
                    role=str(result.role),
                    identifier=result.identifier,
                    path=request.url.path,
                    method=request.method,
                    status_code=429,
                ),
            )
            error = RateLimitExceededError(result, headers)
            response = JSONResponse(
                status_code=error.status_code,
                content=error.to_response(),
                headers=error.headers(),
            )
            set_guest_cookie(response, guest, self.settings)
            return response

        response = await call_next(request)
        response.headers.update(headers)
        set_guest_cookie(response, guest, self.settings)
        return response
