"""Tests for caller identification."""

import base64
from unittest.mock import patch

import pytest

from chatguard.app.rate_limit import (
    RateLimitConfig,
    RequestMeta,
    RoleConfigRegistry,
    Session,
    derive_identifier,
    generate_browser_fingerprint,
    get_client_ip,
    get_rate_limit_key,
    is_shared_network_ip,
    resolve_guest_identity,
)
from chatguard.app.rate_limit.identity import build_anonymous_identifier, generate_guest_id

from conftest import make_meta, make_session


class TestClientIP:
    """Client IP extraction from proxy headers."""

    def test_forwarded_for_first_entry(self):
        meta = RequestMeta(headers={"X-Forwarded-For": " 198.51.100.7 , 10.0.0.1"})
        assert get_client_ip(meta) == "198.51.100.7"

    def test_forwarded_for_wins_over_real_ip(self):
        meta = RequestMeta(headers={
            "x-forwarded-for": "198.51.100.7",
            "x-real-ip": "198.51.100.8",
            "cf-connecting-ip": "198.51.100.9",
        })
        assert get_client_ip(meta) == "198.51.100.7"

    def test_real_ip_before_cloudflare(self):
        meta = RequestMeta(headers={
            "x-real-ip": " 198.51.100.8 ",
            "cf-connecting-ip": "198.51.100.9",
        })
        assert get_client_ip(meta) == "198.51.100.8"

    def test_cloudflare_header(self):
        meta = RequestMeta(headers={"CF-Connecting-IP": "198.51.100.9"})
        assert get_client_ip(meta) == "198.51.100.9"

    def test_unknown_without_headers(self):
        assert get_client_ip(RequestMeta()) == "unknown"


class TestBrowserFingerprint:

    def test_matches_header_digest(self):
        meta = RequestMeta(headers={
            "user-agent": "TestAgent/1.0",
            "accept-language": "en-US",
            "accept-encoding": "gzip",
            "connection": "keep-alive",
            "dnt": "1",
        })
        expected = base64.b64encode(b"TestAgent/1.0-en-US-gzip-keep-alive-1").decode()[:16]
        assert generate_browser_fingerprint(meta) == expected

    def test_missing_headers_are_empty(self):
        meta = RequestMeta(headers={"user-agent": "TestAgent/1.0"})
        assert generate_browser_fingerprint(meta) == "VGVzdEFnZW50LzEu"

    def test_length_is_truncated(self):
        meta = RequestMeta(headers={"user-agent": "x" * 200})
        assert len(generate_browser_fingerprint(meta)) == 16

    def test_differs_by_user_agent(self):
        first = generate_browser_fingerprint(make_meta(user_agent="TestAgent/1.0"))
        second = generate_browser_fingerprint(make_meta(user_agent="TestAgent/2.0"))
        assert first != second


class TestSharedNetwork:

    @pytest.mark.parametrize("ip", [
        "10.0.0.1",
        "10.255.255.255",
        "172.16.0.1",
        "172.31.255.254",
        "192.168.1.50",
    ])
    def test_private_ranges_are_shared(self, ip):
        assert is_shared_network_ip(ip) is True

    @pytest.mark.parametrize("ip", [
        "203.0.113.9",
        "172.15.0.1",
        "172.32.0.1",
        "192.169.0.1",
        "8.8.8.8",
        "fd00::1",
        "unknown",
        "",
    ])
    def test_other_addresses_are_not_shared(self, ip):
        assert is_shared_network_ip(ip) is False


class TestGuestIdentity:

    def test_reuses_existing_cookie(self):
        guest = resolve_guest_identity(make_meta(cookies={"guest_id": "abc"}))
        assert guest.guest_id == "abc"
        assert guest.is_new is False

    def test_creates_id_when_missing(self):
        guest = resolve_guest_identity(make_meta())
        assert guest.is_new is True
        assert len(guest.guest_id) == 36

    def test_custom_cookie_name(self):
        meta = make_meta(cookies={"visitor": "v-1"})
        assert resolve_guest_identity(meta, cookie_name="visitor").guest_id == "v-1"

    def test_falls_back_without_secure_random(self):
        with patch("chatguard.app.rate_limit.identity.uuid.uuid4", side_effect=NotImplementedError):
            guest_id = generate_guest_id()
        assert len(guest_id) == 32
        assert guest_id.isalnum()


class TestBuildAnonymousIdentifier:

    def test_public_ip_with_fingerprint(self):
        config = RateLimitConfig(5, 86400, "Anonymous", use_browser_fingerprint=True,
                                 handle_shared_networks=True)
        assert build_anonymous_identifier(make_meta(), config) == "203.0.113.9:VGVzdEFnZW50LzEu"

    def test_shared_ip_keeps_prefix(self):
        config = RateLimitConfig(5, 86400, "Anonymous", use_browser_fingerprint=True,
                                 handle_shared_networks=True)
        identifier = build_anonymous_identifier(make_meta(ip="192.168.1.50"), config)
        assert identifier == "shared:VGVzdEFnZW50LzEu:192.168"

    def test_shared_handling_disabled(self):
        config = RateLimitConfig(5, 86400, "Anonymous", use_browser_fingerprint=True,
                                 handle_shared_networks=False)
        identifier = build_anonymous_identifier(make_meta(ip="192.168.1.50"), config)
        assert identifier == "192.168.1.50:VGVzdEFnZW50LzEu"

    def test_fingerprint_disabled(self):
        config = RateLimitConfig(5, 86400, "Anonymous", handle_shared_networks=True)
        assert build_anonymous_identifier(make_meta(ip="192.168.1.50"), config) == "192.168.1.50"

    def test_guest_prefix(self):
        config = RateLimitConfig(5, 86400, "Anonymous")
        guest = resolve_guest_identity(make_meta(cookies={"guest_id": "abc"}))
        assert build_anonymous_identifier(make_meta(), config, guest) == "g:abc:203.0.113.9"


class TestDeriveIdentifier:

    @pytest.fixture
    def registry(self):
        return RoleConfigRegistry()

    def test_registered_uses_user_id(self, registry):
        result = derive_identifier("registered", make_session("u-1"), make_meta(), registry)
        assert result.identifier == "u-1"
        assert result.guest is None

    def test_paid_uses_user_id(self, registry):
        result = derive_identifier("paid", make_session("u-2"), make_meta(), registry)
        assert result.identifier == "u-2"

    def test_missing_user_id_falls_back_to_anonymous(self, registry):
        meta = make_meta(cookies={"guest_id": "abc"})
        result = derive_identifier("registered", Session(user=None), meta, registry)
        assert result.identifier == "g:abc:203.0.113.9:VGVzdEFnZW50LzEu"

    def test_anonymous_full_identifier(self, registry):
        meta = make_meta(cookies={"guest_id": "abc"})
        result = derive_identifier("anonymous", None, meta, registry)
        assert result.identifier == "g:abc:203.0.113.9:VGVzdEFnZW50LzEu"
        assert result.guest.is_new is False

    def test_anonymous_new_guest(self, registry):
        result = derive_identifier("anonymous", None, make_meta(), registry)
        assert result.guest.is_new is True
        assert result.identifier.startswith(f"g:{result.guest.guest_id}:")

    def test_guest_cookie_disabled(self, registry):
        registry.register_role(
            "anonymous",
            RateLimitConfig(5, 86400, "Anonymous", use_browser_fingerprint=True,
                            handle_shared_networks=True),
        )
        result = derive_identifier("anonymous", None, make_meta(), registry)
        assert result.identifier == "203.0.113.9:VGVzdEFnZW50LzEu"
        assert result.guest is None

    def test_deterministic_for_identical_requests(self, registry):
        meta = make_meta(cookies={"guest_id": "abc"}, accept_language="en-US")
        first = derive_identifier("anonymous", None, meta, registry)
        second = derive_identifier("anonymous", None, meta, registry)
        assert first.identifier == second.identifier

    def test_different_user_agents_differ(self, registry):
        cookies = {"guest_id": "abc"}
        first = derive_identifier(
            "anonymous", None, make_meta(user_agent="TestAgent/1.0", cookies=cookies), registry
        )
        second = derive_identifier(
            "anonymous", None, make_meta(user_agent="TestAgent/2.0", cookies=cookies), registry
        )
        assert first.identifier != second.identifier

    def test_shared_network_same_fingerprint_collapses(self, registry):
        cookies = {"guest_id": "abc"}
        first = derive_identifier(
            "anonymous", None, make_meta(ip="192.168.1.50", cookies=cookies), registry
        )
        second = derive_identifier(
            "anonymous", None, make_meta(ip="192.168.1.77", cookies=cookies), registry
        )
        assert first.identifier == second.identifier
        assert first.identifier.endswith(":192.168")

    def test_shared_network_different_fingerprints_differ(self, registry):
        cookies = {"guest_id": "abc"}
        first = derive_identifier(
            "anonymous", None,
            make_meta(ip="192.168.1.50", user_agent="TestAgent/1.0", cookies=cookies),
            registry,
        )
        second = derive_identifier(
            "anonymous", None,
            make_meta(ip="192.168.1.77", user_agent="TestAgent/2.0", cookies=cookies),
            registry,
        )
        assert first.identifier != second.identifier


class TestRateLimitKey:

    def test_anonymous_prefix(self):
        assert get_rate_limit_key("anonymous", "1.2.3.4") == "anon:1.2.3.4"

    @pytest.mark.parametrize("role", ["registered", "paid", "premium"])
    def test_user_prefix(self, role):
        assert get_rate_limit_key(role, "u-1") == "user:u-1"
