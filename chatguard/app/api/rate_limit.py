"""Rate limit inspection endpoints."""

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from chatguard.app.api.dependencies import EngineDep
from chatguard.app.middleware.rate_limit import set_guest_cookie
from chatguard.app.rate_limit.models import RequestMeta

router = APIRouter(prefix="/api", tags=["rate-limit"])

# Headers proxies and CDNs use to report the client address
IP_DEBUG_HEADERS = {
    "xForwardedFor": "x-forwarded-for",
    "xRealIp": "x-real-ip",
    "cfConnectingIp": "cf-connecting-ip",
    "flyClientIp": "fly-client-ip",
    "trueClientIp": "true-client-ip",
}


@router.get("/rate-limit-debug")
async def rate_limit_debug(request: Request, engine: EngineDep) -> JSONResponse:
    """Show how the current request is identified, without consuming quota.

    Disabled unless RATE_LIMIT_DEBUG_ENABLED is set.
    """
    if not engine.settings.rate_limit_debug_enabled:
        raise HTTPException(status_code=404, detail="Not Found")

    info, guest = await engine.get_debug_info(RequestMeta.from_request(request))
    content: dict[str, Any] = info.to_dict()
    content["ip_headers"] = {
        key: request.headers.get(header) or None
        for key, header in IP_DEBUG_HEADERS.items()
    }
    content["note"] = (
        "Use this endpoint to verify the raw IP headers and identifier construction."
    )

    response = JSONResponse(content=content)
    set_guest_cookie(response, guest, engine.settings)
    return response


@router.get("/rate-limit/config")
async def rate_limit_config(engine: EngineDep) -> dict[str, Any]:
    """List the configured roles and their quotas."""
    return {
        "enforced": engine.configured,
        "roles": engine.registry.as_dict(),
    }
