"""Rate limiting data models.

This module contains the enums and dataclasses shared by the role
resolver, the identifier deriver and the quota checker.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from starlette.requests import Request

from chatguard.app.auth.session import Session, SessionUser  # noqa: F401  re-exported


class Role(str, Enum):
    """Built-in rate limit roles.

    Roles are looked up by their string value, so custom roles registered
    at runtime are plain strings.
    """
    ANONYMOUS = "anonymous"
    REGISTERED = "registered"
    PAID = "paid"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RateLimitConfig:
    """Quota and identification policy for one role."""
    limit: int
    window_seconds: int
    display_name: str
    use_browser_fingerprint: bool = False
    handle_shared_networks: bool = False
    use_guest_cookie: bool = False

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be at least 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    success: bool
    remaining: int
    reset_epoch_seconds: int
    role: str
    identifier: str
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["role"] = str(self.role)
        return data


@dataclass
class CounterDecision:
    """Answer of the counting store to a consume call."""
    allowed: bool
    remaining: int
    reset_epoch_seconds: int


@dataclass
class RequestMeta:
    """The parts of an inbound request the rate limiter looks at.

    Header names are stored lower-cased.
    """
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    @classmethod
    def from_request(cls, request: Request) -> "RequestMeta":
        return cls(headers=dict(request.headers), cookies=dict(request.cookies))


@dataclass
class GuestIdentity:
    """Guest cookie id for an anonymous caller.

    is_new tells the HTTP layer that the cookie still has to be set.
    """
    guest_id: str
    is_new: bool = False


@dataclass
class IdentityResult:
    identifier: str
    guest: Optional[GuestIdentity] = None


@dataclass
class RateLimitDebugInfo:
    """Snapshot of how the current request would be rate limited."""
    ip: str
    fingerprint: str
    identifier: str
    role: str
    is_shared_network: bool
    config: RateLimitConfig

    def to_dict(self) -> dict[str, Any]:
        return {
            "ip": self.ip,
            "fingerprint": self.fingerprint,
            "identifier": self.identifier,
            "role": str(self.role),
            "is_shared_network": self.is_shared_network,
            "config": self.config.to_dict(),
        }
