"""FastAPI dependencies for rate limited routes."""

from typing import Annotated

from fastapi import Depends, Request, Response

from chatguard.app.exceptions import RateLimitExceededError
from chatguard.app.middleware.rate_limit import build_rate_limit_headers, set_guest_cookie
from chatguard.app.rate_limit.limiter import RateLimitEngine, get_rate_limit_engine
from chatguard.app.rate_limit.models import RateLimitResult, RequestMeta


def get_engine() -> RateLimitEngine:
    return get_rate_limit_engine()


EngineDep = Annotated[RateLimitEngine, Depends(get_engine)]


async def enforce_rate_limit(
    request: Request,
    response: Response,
    engine: EngineDep,
) -> RateLimitResult:
    """Consume one request of quota for the caller of a route.

    Use on routes not covered by RateLimitMiddleware. Sets the rate limit
    headers and guest cookie on the route's response.

    Raises:
        RateLimitExceededError: If the caller is over quota.
    """
    result, guest = await engine.check_rate_limit(RequestMeta.from_request(request))
    headers = build_rate_limit_headers(result, engine.registry.get_config(result.role))
    if not result.success:
        raise RateLimitExceededError(result, headers)

    response.headers.update(headers)
    set_guest_cookie(response, guest, engine.settings)
    return result


RateLimitDep = Annotated[RateLimitResult, Depends(enforce_rate_limit)]
