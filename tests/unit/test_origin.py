"""Unit tests for the origin allow-list and client identity."""

import pytest

from crisper.gateway.origin import OriginPolicy, client_identity, request_origin


@pytest.fixture
def policy():
    return OriginPolicy(
        allowed_origins=["https://crisper.example.com/"],
        allowed_host_patterns=["crisper*.vercel.app"],
    )


class TestOriginPolicy:
    """Test allow-list decisions."""

    @pytest.mark.parametrize(
        "origin",
        [
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://[::1]:8080",
            "https://crisper.example.com",
            "https://CRISPER.example.com",
            "https://crisper-git-main.vercel.app",
            "https://crisper.vercel.app/recipes",
        ],
    )
    def test_allowed_origins(self, policy, origin):
        assert policy.is_allowed(origin) is True

    @pytest.mark.parametrize(
        "origin",
        [
            None,
            "",
            "https://evil.example.com",
            "https://localhost.evil.com",
            "https://crisper.example.com.evil.com",
            "https://evil.vercel.app",
            "ftp://localhost",
            "not a url",
        ],
    )
    def test_rejected_origins(self, policy, origin):
        assert policy.is_allowed(origin) is False

    def test_exact_origin_includes_port(self):
        policy = OriginPolicy(allowed_origins=["https://app.example.com:8443"])

        assert policy.is_allowed("https://app.example.com:8443") is True
        assert policy.is_allowed("https://app.example.com") is False


class TestRequestOrigin:
    def test_origin_header_preferred(self):
        headers = {"origin": "http://localhost:5173", "referer": "https://evil.example.com/page"}
        assert request_origin(headers) == "http://localhost:5173"

    def test_falls_back_to_referer(self):
        assert request_origin({"referer": "https://crisper.vercel.app/"}) == "https://crisper.vercel.app/"

    def test_missing(self):
        assert request_origin({}) is None


class TestClientIdentity:
    """Test quota identity derivation."""

    def test_first_forwarded_hop(self):
        headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.1", "x-real-ip": "10.0.0.2"}
        assert client_identity(headers) == "203.0.113.7"

    def test_real_ip_fallback(self):
        assert client_identity({"x-real-ip": "198.51.100.4"}) == "198.51.100.4"

    def test_unknown_bucket_when_no_headers(self):
        assert client_identity({}, peer="192.0.2.1") == "unknown"

    def test_untrusted_mode_uses_peer(self):
        headers = {"x-forwarded-for": "203.0.113.7"}

        assert client_identity(headers, peer="192.0.2.1", trust_forwarded=False) == "192.0.2.1"
        assert client_identity(headers, trust_forwarded=False) == "unknown"
