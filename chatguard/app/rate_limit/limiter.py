"""Rate limit decision engine.

Ties together role resolution, identifier derivation and the counting
store. The engine never surfaces dependency failures to its callers: an
unconfigured store bypasses checks, and a failing store fails open unless
RATE_LIMIT_FAIL_CLOSED is set.
"""

import asyncio
import time
from typing import Optional

from chatguard.app.auth.provider import AuthProvider, NullAuthProvider, create_auth_provider
from chatguard.app.core.config import Settings, settings as default_settings
from chatguard.app.core.logging import get_log_context, get_logger
from chatguard.app.rate_limit.backends import CountingBackend, create_counting_backend
from chatguard.app.rate_limit.config import RoleConfigRegistry
from chatguard.app.rate_limit.identity import (
    derive_identifier,
    generate_browser_fingerprint,
    get_client_ip,
    get_rate_limit_key,
    is_shared_network_ip,
)
from chatguard.app.rate_limit.models import (
    CounterDecision,
    GuestIdentity,
    RateLimitConfig,
    RateLimitDebugInfo,
    RateLimitResult,
    RequestMeta,
)
from chatguard.app.rate_limit.roles import RoleResolver

logger = get_logger(__name__)

# Reported as remaining budget while checks are bypassed
BYPASS_REMAINING = 999


class RoleLimiter:
    """Sliding window limiter bound to one role's limit and window."""

    def __init__(self, role: str, config: RateLimitConfig, backend: CountingBackend) -> None:
        self.role = role
        self.limit = config.limit
        self.window_seconds = config.window_seconds
        self.prefix = f"ratelimit:{role}"
        self._backend = backend

    async def limit_key(self, key: str) -> CounterDecision:
        """Consume one request for key in this role's namespace."""
        return await self._backend.consume(
            f"{self.prefix}:{key}", self.limit, self.window_seconds
        )


def format_limit_error(config: RateLimitConfig) -> str:
    return (
        f"Rate limit exceeded. {config.display_name} users are limited to "
        f"{config.limit} requests per day."
    )


class RateLimitEngine:
    """Decides whether a request is within its caller's quota.

    Components are injected so tests and alternative deployments can swap
    the auth provider, counting store and role table.
    """

    def __init__(
        self,
        registry: Optional[RoleConfigRegistry] = None,
        backend: Optional[CountingBackend] = None,
        resolver: Optional[RoleResolver] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.registry = registry or RoleConfigRegistry()
        self.backend = backend
        self.resolver = resolver or RoleResolver(NullAuthProvider())
        self.settings = config or default_settings
        self._limiters: dict[str, RoleLimiter] = {}
        self._bypass_warned = False

    @property
    def configured(self) -> bool:
        return self.backend is not None

    def get_limiter(self, role: str) -> RoleLimiter:
        """Get or create the limiter for a role.

        Limiters are cached per role. Two concurrent first calls may both
        build one; the last stored wins, which is harmless.
        """
        role = str(role)
        limiter = self._limiters.get(role)
        if limiter is None:
            limiter = RoleLimiter(role, self.registry.get_config(role), self.backend)
            self._limiters[role] = limiter
        return limiter

    def _warn_bypass_once(self) -> None:
        if self._bypass_warned:
            return
        self._bypass_warned = True
        logger.warning(
            "Rate limit store not configured. Rate limiting will be bypassed. "
            "Set RATE_LIMIT_REDIS_URL or RATE_LIMIT_BACKEND=memory to enforce limits."
        )

    def _handle_store_failure(
        self, role: str, identifier: str, config: RateLimitConfig, error_type: str
    ) -> RateLimitResult:
        """Map a counting store failure to a result per the fail-open/closed policy."""
        context = get_log_context(role=role, identifier=identifier, error_type=error_type)
        if self.settings.rate_limit_fail_closed:
            logger.warning(
                f"Rate limiting fail-closed triggered due to {error_type}. Request denied.",
                extra=context,
            )
            return RateLimitResult(
                success=False,
                remaining=0,
                reset_epoch_seconds=int(time.time()) + config.window_seconds,
                role=role,
                identifier=identifier,
                error="Rate limiting is temporarily unavailable. Please try again later.",
            )

        logger.warning(
            f"Rate limiting fail-open triggered due to {error_type}. "
            "Request allowed without rate limit check.",
            extra=context,
        )
        return RateLimitResult(
            success=True,
            remaining=0,
            reset_epoch_seconds=0,
            role=role,
            identifier=identifier,
        )

    async def check_quota(self, role: str, identifier: str) -> RateLimitResult:
        """Consume one request of quota for (role, identifier).

        Raises:
            UnknownRoleError: If role has no registered config.
        """
        role = str(role)
        config = self.registry.get_config(role)

        if self.backend is None:
            self._warn_bypass_once()
            return RateLimitResult(
                success=True,
                remaining=BYPASS_REMAINING,
                reset_epoch_seconds=0,
                role=role,
                identifier=identifier,
            )

        key = get_rate_limit_key(role, identifier)
        limiter = self.get_limiter(role)

        try:
            decision = await asyncio.wait_for(
                limiter.limit_key(key),
                timeout=self.settings.rate_limit_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return self._handle_store_failure(role, identifier, config, "timeout")
        except Exception as e:
            logger.error(f"Rate limit store error: {e}")
            return self._handle_store_failure(role, identifier, config, type(e).__name__)

        result = RateLimitResult(
            success=decision.allowed,
            remaining=max(0, decision.remaining),
            reset_epoch_seconds=decision.reset_epoch_seconds,
            role=role,
            identifier=identifier,
            error=None if decision.allowed else format_limit_error(config),
        )
        if not result.success:
            logger.info(
                "Rate limit exceeded",
                extra=get_log_context(role=role, identifier=identifier),
            )
        return result

    async def check_rate_limit(
        self, meta: RequestMeta
    ) -> tuple[RateLimitResult, Optional[GuestIdentity]]:
        """Resolve the caller of a request and consume one request of quota.

        Returns:
            Tuple of (result, guest identity). The guest identity is set for
            anonymous callers with guest cookies enabled; when its is_new flag
            is set the caller must persist the cookie.
        """
        session = await self.resolver.get_session(meta)
        role = await self.resolver.determine_role(session, meta)
        try:
            identity = derive_identifier(
                role,
                session,
                meta,
                self.registry,
                cookie_name=self.settings.guest_cookie_name,
            )
            result = await self.check_quota(role, identity.identifier)
        except Exception:
            logger.exception(
                "Rate limit check failed, allowing request",
                extra=get_log_context(role=role),
            )
            return RateLimitResult(
                success=True,
                remaining=0,
                reset_epoch_seconds=0,
                role=role,
                identifier="unknown",
            ), None
        return result, identity.guest

    async def get_debug_info(
        self, meta: RequestMeta
    ) -> tuple[RateLimitDebugInfo, Optional[GuestIdentity]]:
        """Describe how a request would be limited without consuming quota."""
        session = await self.resolver.get_session(meta)
        role = await self.resolver.determine_role(session, meta)
        identity = derive_identifier(
            role,
            session,
            meta,
            self.registry,
            cookie_name=self.settings.guest_cookie_name,
        )
        ip = get_client_ip(meta)
        info = RateLimitDebugInfo(
            ip=ip,
            fingerprint=generate_browser_fingerprint(meta),
            identifier=identity.identifier,
            role=role,
            is_shared_network=is_shared_network_ip(ip),
            config=self.registry.get_config(role),
        )
        return info, identity.guest

    async def ping(self) -> bool:
        if self.backend is None:
            return False
        return await self.backend.ping()

    async def close(self) -> None:
        if self.backend is not None:
            await self.backend.close()
        self._limiters.clear()


# Process-wide engine, managed by the application lifespan
_engine: Optional[RateLimitEngine] = None


def init_rate_limit_engine(
    config: Optional[Settings] = None,
    auth_provider: Optional[AuthProvider] = None,
    backend: Optional[CountingBackend] = None,
    registry: Optional[RoleConfigRegistry] = None,
) -> RateLimitEngine:
    """Build the process-wide engine from settings."""
    global _engine
    config = config or default_settings
    if backend is None:
        backend = create_counting_backend(config)
    if auth_provider is None:
        auth_provider = create_auth_provider(config.auth_base_url)
    _engine = RateLimitEngine(
        registry=registry,
        backend=backend,
        resolver=RoleResolver(auth_provider),
        config=config,
    )
    if backend is None:
        _engine._warn_bypass_once()
    return _engine


def get_rate_limit_engine() -> RateLimitEngine:
    """Get the process-wide engine.

    Raises:
        RuntimeError: If the engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError(
            "Rate limit engine not initialized. Ensure lifespan context is active."
        )
    return _engine


async def shutdown_rate_limit_engine() -> None:
    """Close the process-wide engine."""
    global _engine
    if _engine is not None:
        await _engine.close()
        _engine = None
