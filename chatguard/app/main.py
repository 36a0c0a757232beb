from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatguard.app.api.dependencies import get_engine
from chatguard.app.api.rate_limit import router as rate_limit_router
from chatguard.app.core.config import Settings, settings as default_settings
from chatguard.app.core.http_client import init_http_client
from chatguard.app.core.logging import get_logger, setup_logging
from chatguard.app.exceptions import (
    AuthProviderError,
    ChatGuardException,
    RateLimitExceededError,
)
from chatguard.app.middleware.rate_limit import RateLimitMiddleware
from chatguard.app.middleware.request_id import RequestIdMiddleware
from chatguard.app.rate_limit.limiter import (
    RateLimitEngine,
    get_rate_limit_engine,
    init_rate_limit_engine,
    shutdown_rate_limit_engine,
)


def create_app(
    config: Optional[Settings] = None,
    engine: Optional[RateLimitEngine] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Settings to use instead of the environment-loaded ones
        engine: Pre-built engine; when omitted one is built at startup

    Returns:
        Configured FastAPI application instance
    """
    config = config or default_settings
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        Opens the shared HTTP client used by the auth provider and builds
        the rate limit engine; both are closed on shutdown.
        """
        async with init_http_client(config):
            if engine is None:
                init_rate_limit_engine(config)
            active = engine or get_rate_limit_engine()
            logger.info(
                "Application startup complete",
                extra={
                    "rate_limit_enforced": active.configured,
                    "roles": active.registry.roles(),
                },
            )
            yield

            if engine is None:
                await shutdown_rate_limit_engine()
            else:
                await engine.close()

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="ChatGuard",
        description="Role-aware rate limiting for chat endpoints",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        RateLimitMiddleware,
        engine=engine,
        config=config,
    )

    app.add_middleware(RequestIdMiddleware)

    # CORS middleware (outermost - handles preflight requests first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
        max_age=600,
    )

    if engine is not None:
        app.dependency_overrides[get_engine] = lambda: engine

    app.include_router(rate_limit_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with counting store status."""
        health_status: dict[str, Any] = {"status": "ok", "components": {}}
        active = engine or get_rate_limit_engine()

        if not active.configured:
            health_status["components"]["rate_limit_store"] = {"status": "not_configured"}
            return health_status

        try:
            await active.ping()
            health_status["components"]["rate_limit_store"] = {
                "status": "ok",
                "type": active.backend.name,
            }
        except Exception as e:
            # Checks fail open while the store is down
            health_status["status"] = "degraded"
            health_status["components"]["rate_limit_store"] = {
                "status": "error",
                "error": str(e)[:100],
            }
        return health_status

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_exceeded_handler(
        request: Request, exc: RateLimitExceededError
    ) -> JSONResponse:
        """Handle RateLimitExceededError and return HTTP 429 response."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=exc.headers(),
        )

    @app.exception_handler(AuthProviderError)
    async def auth_provider_error_handler(
        request: Request, exc: AuthProviderError
    ) -> JSONResponse:
        """Handle AuthProviderError and return HTTP 502 response."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "auth_provider_error", "message": exc.detail},
        )

    @app.exception_handler(ChatGuardException)
    async def chatguard_error_handler(
        request: Request, exc: ChatGuardException
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            f"Request failed [request_id={request_id}]: {exc.message}",
            extra={"request_id": request_id, "exception_type": type(exc).__name__},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "internal_error", "message": exc.message if config.debug else "Internal server error"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; the full details are
        logged server-side.
        """
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )
        message = str(exc) if config.debug else "An internal error occurred"
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": message},
        )

    return app


# Create the application instance
app = create_app()
