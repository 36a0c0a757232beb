"""Custom exceptions for the chatguard application."""

from typing import Any


class ChatGuardException(Exception):
    """Base class for chatguard exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limit service error"):
        self.message = message
        super().__init__(message)


class RateLimitExceededError(ChatGuardException):
    """Raised when a caller has used up the quota of their role.

    Carries the check result and the rate limit headers so handlers can
    answer with a complete 429 response.
    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, result, headers: dict[str, str] | None = None):
        self.result = result
        self._headers = headers or {}
        super().__init__(result.error or "Rate limit exceeded")

    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def to_response(self) -> dict[str, Any]:
        """Convert to API response format."""
        return {
            "error": self.message,
            "remaining": self.result.remaining,
            "reset": self.result.reset_epoch_seconds,
            "role": str(self.result.role),
        }


class UnknownRoleError(ChatGuardException):
    """Raised when a rate limit config is requested for an unregistered role.

    This is a programmer error: the built-in roles are always registered and
    callers only ask for custom roles they registered themselves.
    """
    status_code = 500

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"No rate limit configuration registered for role '{role}'")


class AuthProviderError(ChatGuardException):
    """Raised when the auth provider answers with an unusable response.

    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502

    def __init__(self, detail: str = "Auth provider request failed"):
        self.detail = detail
        super().__init__(detail)
