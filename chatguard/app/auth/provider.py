"""Clients for the external auth provider.

The rate limiter needs two things from the auth service: the session of the
current request and the subscriptions of its user. Both are looked up by
forwarding the caller's credentials (cookie / authorization headers).
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

import httpx

from chatguard.app.auth.session import Session
from chatguard.app.core.config import settings
from chatguard.app.core.http_client import get_http_client
from chatguard.app.core.logging import get_logger
from chatguard.app.exceptions import AuthProviderError

logger = get_logger(__name__)

FORWARDED_HEADERS = ("cookie", "authorization")


class AuthProvider(ABC):
    """Abstract base class for auth providers."""

    @abstractmethod
    async def get_session(self, headers: Mapping[str, str]) -> Optional[Session]:
        """Look up the session for the request headers.

        Returns:
            The session, or None when the request is not authenticated.
        """
        pass

    @abstractmethod
    async def list_active_subscriptions(
        self, headers: Mapping[str, str]
    ) -> list[dict[str, Any]]:
        """List the subscriptions of the authenticated user.

        Only the "status" key of each entry is relied upon.
        """
        pass


class NullAuthProvider(AuthProvider):
    """Auth provider used when no auth service is configured.

    Every caller is unauthenticated, hence anonymous.
    """

    async def get_session(self, headers: Mapping[str, str]) -> Optional[Session]:
        return None

    async def list_active_subscriptions(
        self, headers: Mapping[str, str]
    ) -> list[dict[str, Any]]:
        return []


class HttpAuthProvider(AuthProvider):
    """Auth provider backed by an HTTP auth service.

    Endpoints (relative to base_url):
        GET /get-session        -> {"session": {...}, "user": {...}} or null
        GET /subscription/list  -> [{"status": "active", ...}, ...]
    """

    SESSION_PATH = "/get-session"
    SUBSCRIPTIONS_PATH = "/subscription/list"

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._base_url = (base_url or settings.auth_base_url).rstrip("/")
        self._client = client
        self._timeout = timeout or settings.auth_timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return get_http_client()

    @staticmethod
    def _forward_headers(headers: Mapping[str, str]) -> dict[str, str]:
        lowered = {k.lower(): v for k, v in headers.items()}
        return {name: lowered[name] for name in FORWARDED_HEADERS if lowered.get(name)}

    async def _get_json(self, path: str, headers: Mapping[str, str]) -> Any:
        response = await self._get_client().get(
            f"{self._base_url}{path}",
            headers=self._forward_headers(headers),
            timeout=self._timeout,
        )
        if response.status_code >= 400:
            raise AuthProviderError(
                f"Auth provider returned {response.status_code} for {path}"
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise AuthProviderError(f"Auth provider returned invalid JSON for {path}") from e

    async def get_session(self, headers: Mapping[str, str]) -> Optional[Session]:
        if not self._forward_headers(headers):
            # Nothing to authenticate with
            return None
        payload = await self._get_json(self.SESSION_PATH, headers)
        return Session.from_payload(payload)

    async def list_active_subscriptions(
        self, headers: Mapping[str, str]
    ) -> list[dict[str, Any]]:
        payload = await self._get_json(self.SUBSCRIPTIONS_PATH, headers)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise AuthProviderError("Auth provider returned a non-list subscription payload")
        return [sub for sub in payload if isinstance(sub, dict)]


def create_auth_provider(base_url: Optional[str] = None) -> AuthProvider:
    """Select the auth provider from settings."""
    base_url = settings.auth_base_url if base_url is None else base_url
    if base_url.strip():
        logger.info(f"Using HTTP auth provider at {base_url}")
        return HttpAuthProvider(base_url=base_url)
    logger.info("No auth provider configured, all callers are anonymous")
    return NullAuthProvider()
