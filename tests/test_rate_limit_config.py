"""Tests for the role config registry."""

import pytest

from chatguard.app.exceptions import UnknownRoleError
from chatguard.app.rate_limit import (
    DEFAULT_ROLE_CONFIGS,
    RateLimitConfig,
    Role,
    RoleConfigRegistry,
)


class TestDefaultConfigs:
    """Built-in role quotas."""

    def test_anonymous_defaults(self):
        config = RoleConfigRegistry().get_config("anonymous")
        assert config.limit == 5
        assert config.window_seconds == 86400
        assert config.display_name == "Anonymous"
        assert config.use_browser_fingerprint is True
        assert config.handle_shared_networks is True
        assert config.use_guest_cookie is True

    def test_registered_defaults(self):
        config = RoleConfigRegistry().get_config("registered")
        assert config.limit == 9000
        assert config.window_seconds == 86400
        assert config.display_name == "Registered"
        assert config.use_guest_cookie is False

    def test_paid_keeps_deployed_limit(self):
        config = RoleConfigRegistry().get_config("paid")
        assert config.limit == 100
        assert config.window_seconds == 86400
        assert config.display_name == "Paid"

    def test_role_enum_lookup(self):
        registry = RoleConfigRegistry()
        assert registry.get_config(Role.PAID) is registry.get_config("paid")

    def test_defaults_are_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_ROLE_CONFIGS["anonymous"] = DEFAULT_ROLE_CONFIGS["paid"]


class TestRegisterRole:
    """Runtime role registration."""

    def test_register_new_role(self):
        registry = RoleConfigRegistry()
        premium = RateLimitConfig(limit=500, window_seconds=86400, display_name="Premium")
        registry.register_role("premium", premium)

        assert registry.has_role("premium")
        assert registry.get_config("premium") == premium
        assert "premium" in registry.roles()

    def test_last_write_wins(self):
        registry = RoleConfigRegistry()
        registry.register_role("premium", RateLimitConfig(500, 86400, "Premium"))
        registry.register_role("premium", RateLimitConfig(700, 3600, "Premium+"))

        config = registry.get_config("premium")
        assert config.limit == 700
        assert config.window_seconds == 3600

    def test_registries_are_independent(self):
        first = RoleConfigRegistry()
        second = RoleConfigRegistry()
        first.register_role("premium", RateLimitConfig(500, 86400, "Premium"))

        assert not second.has_role("premium")

    def test_unknown_role_raises(self):
        with pytest.raises(UnknownRoleError) as exc_info:
            RoleConfigRegistry().get_config("enterprise")
        assert exc_info.value.role == "enterprise"

    def test_constructor_overrides(self):
        registry = RoleConfigRegistry({"paid": RateLimitConfig(20000, 86400, "Paid")})
        assert registry.get_config("paid").limit == 20000
        assert registry.get_config("registered").limit == 9000


class TestRateLimitConfigValidation:

    @pytest.mark.parametrize(("limit", "window"), [(0, 60), (-1, 60), (10, 0)])
    def test_rejects_non_positive_values(self, limit, window):
        with pytest.raises(ValueError):
            RateLimitConfig(limit=limit, window_seconds=window, display_name="Bad")

    def test_to_dict(self):
        data = RateLimitConfig(10, 60, "Tiny").to_dict()
        assert data == {
            "limit": 10,
            "window_seconds": 60,
            "display_name": "Tiny",
            "use_browser_fingerprint": False,
            "handle_shared_networks": False,
            "use_guest_cookie": False,
        }
