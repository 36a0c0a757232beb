"""Auth provider clients used for role resolution."""

from chatguard.app.auth.provider import (
    AuthProvider,
    HttpAuthProvider,
    NullAuthProvider,
    create_auth_provider,
)
from chatguard.app.auth.session import Session, SessionUser

__all__ = [
    "AuthProvider",
    "HttpAuthProvider",
    "NullAuthProvider",
    "Session",
    "SessionUser",
    "create_auth_provider",
]
