"""Session types returned by the auth provider."""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class SessionUser:
    id: str
    is_anonymous: bool = False


@dataclass
class Session:
    """Authenticated session as reported by the auth provider."""
    user: Optional[SessionUser] = None

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["Session"]:
        """Build a session from the auth provider's JSON body.

        Returns None for an empty body; a body without a user yields a
        session with user=None.
        """
        if not payload or not isinstance(payload, dict):
            return None
        user_data = payload.get("user")
        if not isinstance(user_data, dict) or not user_data.get("id"):
            return cls(user=None)
        return cls(
            user=SessionUser(
                id=str(user_data["id"]),
                is_anonymous=bool(user_data.get("isAnonymous", False)),
            )
        )
