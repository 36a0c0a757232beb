"""Per-role rate limit configuration."""

from types import MappingProxyType
from typing import Mapping

from chatguard.app.core.logging import get_logger
from chatguard.app.exceptions import UnknownRoleError
from chatguard.app.rate_limit.models import RateLimitConfig, Role

logger = get_logger(__name__)

DAY_SECONDS = 86400

# NOTE: paid (100/day) is below registered (9000/day). Kept as deployed until
# product confirms the intended ordering.
DEFAULT_ROLE_CONFIGS: Mapping[str, RateLimitConfig] = MappingProxyType({
    Role.ANONYMOUS.value: RateLimitConfig(
        limit=5,
        window_seconds=DAY_SECONDS,
        display_name="Anonymous",
        use_browser_fingerprint=True,
        handle_shared_networks=True,
        use_guest_cookie=True,
    ),
    Role.REGISTERED.value: RateLimitConfig(
        limit=9000,
        window_seconds=DAY_SECONDS,
        display_name="Registered",
    ),
    Role.PAID.value: RateLimitConfig(
        limit=100,
        window_seconds=DAY_SECONDS,
        display_name="Paid",
    ),
})


class RoleConfigRegistry:
    """Mutable role -> config table.

    Starts with the built-in roles. New roles can be registered at runtime;
    registering an existing role replaces its config.
    """

    def __init__(self, configs: Mapping[str, RateLimitConfig] | None = None) -> None:
        self._configs: dict[str, RateLimitConfig] = dict(DEFAULT_ROLE_CONFIGS)
        if configs:
            for role, config in configs.items():
                self._configs[str(role)] = config

    def get_config(self, role: str) -> RateLimitConfig:
        """Get the config for a role.

        Raises:
            UnknownRoleError: If the role was never registered.
        """
        try:
            return self._configs[str(role)]
        except KeyError:
            raise UnknownRoleError(str(role)) from None

    def register_role(self, role: str, config: RateLimitConfig) -> None:
        """Add or replace the config for a role.

        Only affects limiters created afterwards; a limiter already cached
        for the role keeps its original limit and window.
        """
        role = str(role)
        if role in self._configs:
            logger.info(f"Replacing rate limit config for role '{role}'")
        self._configs[role] = config

    def has_role(self, role: str) -> bool:
        return str(role) in self._configs

    def roles(self) -> list[str]:
        return list(self._configs)

    def as_dict(self) -> dict[str, dict]:
        return {role: config.to_dict() for role, config in self._configs.items()}
