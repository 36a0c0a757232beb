"""Role resolution for rate limiting.

Priority: paid > registered > anonymous. Every lookup against the auth
provider fails toward the less privileged role.
"""

from typing import Optional

from chatguard.app.auth.provider import AuthProvider
from chatguard.app.core.logging import get_logger
from chatguard.app.rate_limit.models import RequestMeta, Role, Session

logger = get_logger(__name__)

PAID_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing"})


class RoleResolver:
    """Determines the rate limit role of a caller."""

    def __init__(self, auth_provider: AuthProvider) -> None:
        self._auth = auth_provider

    async def get_session(self, meta: RequestMeta) -> Optional[Session]:
        """Look up the session, treating any failure as no session."""
        try:
            return await self._auth.get_session(meta.headers)
        except Exception as e:
            logger.warning(f"Session lookup failed, treating caller as unauthenticated: {e}")
            return None

    async def has_active_subscription(self, meta: RequestMeta) -> bool:
        """Whether the caller holds an active or trialing subscription.

        Lookup failures count as no subscription.
        """
        try:
            subscriptions = await self._auth.list_active_subscriptions(meta.headers)
        except Exception as e:
            logger.warning(f"Subscription lookup failed, treating as unpaid: {e}")
            return False
        return any(
            sub.get("status") in PAID_SUBSCRIPTION_STATUSES for sub in subscriptions
        )

    async def determine_role(self, session: Optional[Session], meta: RequestMeta) -> str:
        """Resolve the role for a session.

        Never raises; unexpected errors resolve to anonymous.
        """
        try:
            if session is None or session.user is None:
                return Role.ANONYMOUS.value
            if session.user.is_anonymous:
                return Role.ANONYMOUS.value
            if await self.has_active_subscription(meta):
                return Role.PAID.value
            return Role.REGISTERED.value
        except Exception:
            logger.exception("Role resolution failed, using anonymous role")
            return Role.ANONYMOUS.value
