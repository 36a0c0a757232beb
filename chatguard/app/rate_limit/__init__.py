"""Role-aware rate limiting.

Usage:

    engine = init_rate_limit_engine()
    result, guest = await engine.check_rate_limit(RequestMeta.from_request(request))
    if not result.success:
        ...  # respond with 429
"""

from chatguard.app.rate_limit.backends import (
    CountingBackend,
    InMemorySlidingWindowBackend,
    RedisSlidingWindowBackend,
    create_counting_backend,
)
from chatguard.app.rate_limit.config import DEFAULT_ROLE_CONFIGS, RoleConfigRegistry
from chatguard.app.rate_limit.identity import (
    derive_identifier,
    generate_browser_fingerprint,
    get_client_ip,
    get_rate_limit_key,
    is_shared_network_ip,
    resolve_guest_identity,
)
from chatguard.app.rate_limit.limiter import (
    RateLimitEngine,
    RoleLimiter,
    get_rate_limit_engine,
    init_rate_limit_engine,
    shutdown_rate_limit_engine,
)
from chatguard.app.rate_limit.models import (
    CounterDecision,
    GuestIdentity,
    IdentityResult,
    RateLimitConfig,
    RateLimitDebugInfo,
    RateLimitResult,
    RequestMeta,
    Role,
    Session,
    SessionUser,
)
from chatguard.app.rate_limit.roles import RoleResolver

__all__ = [
    # Models
    "CounterDecision",
    "GuestIdentity",
    "IdentityResult",
    "RateLimitConfig",
    "RateLimitDebugInfo",
    "RateLimitResult",
    "RequestMeta",
    "Role",
    "Session",
    "SessionUser",
    # Config
    "DEFAULT_ROLE_CONFIGS",
    "RoleConfigRegistry",
    # Identity
    "derive_identifier",
    "generate_browser_fingerprint",
    "get_client_ip",
    "get_rate_limit_key",
    "is_shared_network_ip",
    "resolve_guest_identity",
    # Roles
    "RoleResolver",
    # Backends
    "CountingBackend",
    "InMemorySlidingWindowBackend",
    "RedisSlidingWindowBackend",
    "create_counting_backend",
    # Engine
    "RateLimitEngine",
    "RoleLimiter",
    "get_rate_limit_engine",
    "init_rate_limit_engine",
    "shutdown_rate_limit_engine",
]
