"""Shared fixtures for chatguard tests."""

from typing import Any, Mapping, Optional

import pytest

from chatguard.app.auth.provider import AuthProvider
from chatguard.app.core.config import Settings
from chatguard.app.rate_limit import (
    InMemorySlidingWindowBackend,
    RateLimitEngine,
    RequestMeta,
    RoleConfigRegistry,
    RoleResolver,
    Session,
    SessionUser,
)


class FakeClock:
    """Manually advanced clock for sliding window tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAuthProvider(AuthProvider):
    """Auth provider returning canned sessions and subscriptions."""

    def __init__(
        self,
        session: Optional[Session] = None,
        subscriptions: Optional[list[dict[str, Any]]] = None,
        session_error: Optional[Exception] = None,
        subscription_error: Optional[Exception] = None,
    ):
        self.session = session
        self.subscriptions = subscriptions or []
        self.session_error = session_error
        self.subscription_error = subscription_error
        self.subscription_calls = 0

    async def get_session(self, headers: Mapping[str, str]) -> Optional[Session]:
        if self.session_error is not None:
            raise self.session_error
        return self.session

    async def list_active_subscriptions(
        self, headers: Mapping[str, str]
    ) -> list[dict[str, Any]]:
        self.subscription_calls += 1
        if self.subscription_error is not None:
            raise self.subscription_error
        return self.subscriptions


def make_session(user_id: str = "user-123", is_anonymous: bool = False) -> Session:
    return Session(user=SessionUser(id=user_id, is_anonymous=is_anonymous))


def make_meta(
    ip: Optional[str] = "203.0.113.9",
    user_agent: str = "TestAgent/1.0",
    cookies: Optional[dict[str, str]] = None,
    **headers: str,
) -> RequestMeta:
    all_headers = {"user-agent": user_agent}
    if ip is not None:
        all_headers["x-forwarded-for"] = ip
    for name, value in headers.items():
        all_headers[name.replace("_", "-")] = value
    return RequestMeta(headers=all_headers, cookies=dict(cookies or {}))


@pytest.fixture
def test_settings() -> Settings:
    return Settings(_env_file=None, rate_limit_backend="memory")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_backend(clock) -> InMemorySlidingWindowBackend:
    return InMemorySlidingWindowBackend(clock=clock)


@pytest.fixture
def auth_provider() -> FakeAuthProvider:
    return FakeAuthProvider()


@pytest.fixture
def engine(memory_backend, auth_provider, test_settings) -> RateLimitEngine:
    return RateLimitEngine(
        registry=RoleConfigRegistry(),
        backend=memory_backend,
        resolver=RoleResolver(auth_provider),
        config=test_settings,
    )
