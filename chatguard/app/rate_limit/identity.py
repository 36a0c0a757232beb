"""Caller identification for rate limiting.

Registered and paid callers are identified by their user id. Anonymous
callers are identified by a combination of client IP, a weak browser
fingerprint and a guest cookie id, depending on the anonymous role's config.

Everything here is a pure function of the request metadata. Creating a guest
cookie is reported back through GuestIdentity.is_new instead of being
written here; the HTTP layer persists it.
"""

import base64
import ipaddress
import random
import string
import uuid
from typing import Optional

from chatguard.app.core.logging import get_logger
from chatguard.app.rate_limit.config import RoleConfigRegistry
from chatguard.app.rate_limit.models import (
    GuestIdentity,
    IdentityResult,
    RateLimitConfig,
    RequestMeta,
    Role,
    Session,
)

logger = get_logger(__name__)

UNKNOWN_IP = "unknown"
FINGERPRINT_LENGTH = 16
GUEST_ID_PREFIX = "g"
SHARED_PREFIX = "shared"

# Checked in order, first non-empty wins
IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")

FINGERPRINT_HEADERS = (
    "user-agent",
    "accept-language",
    "accept-encoding",
    "connection",
    "dnt",
)

SHARED_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)


def get_client_ip(meta: RequestMeta) -> str:
    """Extract the client IP from proxy headers.

    X-Forwarded-For may carry a chain of addresses; the first one is the
    original client.
    """
    forwarded_for = meta.header("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip() or UNKNOWN_IP

    for name in IP_HEADERS[1:]:
        value = meta.header(name).strip()
        if value:
            return value

    return UNKNOWN_IP


def generate_browser_fingerprint(meta: RequestMeta) -> str:
    """Weak fingerprint from browser headers.

    Same browser with the same settings reproduces it. It is a grouping
    heuristic, not a unique or secure id.
    """
    raw = "-".join(meta.header(name) for name in FINGERPRINT_HEADERS)
    encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")
    return encoded[:FINGERPRINT_LENGTH]


def is_shared_network_ip(ip: str) -> bool:
    """Whether the IP is in a private range likely shared behind NAT."""
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    if address.version != 4:
        return False
    return any(address in network for network in SHARED_NETWORKS)


def _ip_prefix(ip: str) -> str:
    return ".".join(ip.split(".")[:2])


def generate_guest_id() -> str:
    try:
        return str(uuid.uuid4())
    except NotImplementedError:
        # os.urandom has no entropy source on this platform
        logger.warning("No secure random source available, using pseudo-random guest id")
        alphabet = string.ascii_lowercase + string.digits
        return "".join(random.choices(alphabet, k=32))


def resolve_guest_identity(meta: RequestMeta, cookie_name: str = "guest_id") -> GuestIdentity:
    """Read the guest id cookie, or mint a new id when it is missing."""
    guest_id = meta.cookies.get(cookie_name, "").strip()
    if guest_id:
        return GuestIdentity(guest_id=guest_id, is_new=False)
    return GuestIdentity(guest_id=generate_guest_id(), is_new=True)


def build_anonymous_identifier(
    meta: RequestMeta,
    config: RateLimitConfig,
    guest: Optional[GuestIdentity] = None,
) -> str:
    """Compose the anonymous identifier from IP, fingerprint and guest id.

    Formats:
        {ip}                          fingerprint disabled
        {ip}:{fingerprint}            public network
        shared:{fingerprint}:{a.b}    private network with shared handling
    prefixed with g:{guest_id}: when a guest identity is given.
    """
    ip = get_client_ip(meta)

    if not config.use_browser_fingerprint:
        identifier = ip
    else:
        fingerprint = generate_browser_fingerprint(meta)
        if config.handle_shared_networks and is_shared_network_ip(ip):
            # Devices behind one NAT differ mostly by fingerprint
            identifier = f"{SHARED_PREFIX}:{fingerprint}:{_ip_prefix(ip)}"
        else:
            identifier = f"{ip}:{fingerprint}"

    if guest is not None:
        identifier = f"{GUEST_ID_PREFIX}:{guest.guest_id}:{identifier}"
    return identifier


def derive_identifier(
    role: str,
    session: Optional[Session],
    meta: RequestMeta,
    registry: RoleConfigRegistry,
    cookie_name: str = "guest_id",
) -> IdentityResult:
    """Derive the identifier that scopes quota counting for this caller.

    Non-anonymous roles use the session user id. Anonymous callers, and
    callers of any role without a user id, fall back to the anonymous
    derivation driven by the anonymous role's config.

    Args:
        role: Resolved role of the caller
        session: Session from the auth provider, may be None
        meta: Request headers and cookies
        registry: Role config table
        cookie_name: Name of the guest id cookie

    Returns:
        IdentityResult with the identifier and, for anonymous callers with
        guest cookies enabled, the guest identity to persist
    """
    if str(role) != Role.ANONYMOUS.value:
        user = session.user if session is not None else None
        if user is not None and user.id:
            return IdentityResult(identifier=user.id)
        logger.warning(
            f"No user id for role '{role}', falling back to anonymous identifier"
        )

    config = registry.get_config(Role.ANONYMOUS.value)
    guest = resolve_guest_identity(meta, cookie_name) if config.use_guest_cookie else None
    return IdentityResult(
        identifier=build_anonymous_identifier(meta, config, guest),
        guest=guest,
    )


def get_rate_limit_key(role: str, identifier: str) -> str:
    """Counting store key for a caller.

    Examples:
        anon:203.0.113.9:VGVzdEFnZW50LzEu
        user:abc123def456
    """
    prefix = "anon" if str(role) == Role.ANONYMOUS.value else "user"
    return f"{prefix}:{identifier}"
