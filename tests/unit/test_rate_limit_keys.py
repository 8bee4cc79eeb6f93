"""
Unit tests for client IP extraction and rate-limit keys
Feature: rate-limiting
"""
from storefront_core.ratelimit.keys import (
    UNKNOWN_IP,
    anonymize_ip,
    derive_key,
    extract_real_ip,
    hash_identifier,
)
from storefront_core.ratelimit.models import RequestDescriptor


class TestExtractRealIp:
    """Proxy header precedence"""

    def test_cloudflare_header_wins(self):
        request = RequestDescriptor(path="/", headers={
            "CF-Connecting-IP": "198.51.100.1",
            "X-Forwarded-For": "203.0.113.1, 10.0.0.1",
        })

        assert extract_real_ip(request) == "198.51.100.1"

    def test_vercel_before_forwarded_for(self):
        request = RequestDescriptor(path="/", headers={
            "x-vercel-forwarded-for": "198.51.100.2, 10.0.0.1",
            "x-forwarded-for": "203.0.113.1",
        })

        assert extract_real_ip(request) == "198.51.100.2"

    def test_first_forwarded_hop(self):
        request = RequestDescriptor(path="/", headers={"x-forwarded-for": " 203.0.113.1 , 10.0.0.1"})

        assert extract_real_ip(request) == "203.0.113.1"

    def test_real_ip_then_socket(self):
        assert extract_real_ip(RequestDescriptor(path="/", headers={"x-real-ip": "203.0.113.5"})) == "203.0.113.5"
        assert extract_real_ip(RequestDescriptor(path="/", client_host="192.0.2.1")) == "192.0.2.1"

    def test_unknown_when_nothing_available(self):
        assert extract_real_ip(RequestDescriptor(path="/")) == UNKNOWN_IP

    def test_ipv4_mapped_prefix_stripped(self):
        request = RequestDescriptor(path="/", headers={"x-real-ip": "::ffff:203.0.113.8"})

        assert extract_real_ip(request) == "203.0.113.8"

    def test_untrusted_peer_ignores_forwarded_headers(self):
        request = RequestDescriptor(
            path="/",
            headers={"x-forwarded-for": "127.0.0.1", "cf-connecting-ip": "127.0.0.1"},
            client_host="198.51.100.4",
        )

        assert extract_real_ip(request) == "198.51.100.4"

    def test_trusted_peer_uses_last_untrusted_hop(self):
        request = RequestDescriptor(
            path="/",
            headers={"x-forwarded-for": "127.0.0.1, 198.51.100.4, 10.0.0.1"},
            client_host="10.0.0.2",
        )

        assert extract_real_ip(request, {"10.0.0.1", "10.0.0.2"}) == "198.51.100.4"

    def test_trusted_peer_without_headers_is_the_client(self):
        request = RequestDescriptor(path="/", client_host="10.0.0.2")

        assert extract_real_ip(request, {"10.0.0.2"}) == "10.0.0.2"


class TestAnonymizeIp:
    """Masking for logs and reports"""

    def test_ipv4(self):
        assert anonymize_ip("203.0.113.42") == "203.0.xx.xx"

    def test_ipv6(self):
        assert anonymize_ip("2001:db8:85a3:0:0:8a2e:370:7334") == "2001:db8:85a3::xxx"

    def test_other_values(self):
        assert anonymize_ip(None) == UNKNOWN_IP
        assert anonymize_ip("") == UNKNOWN_IP
        assert anonymize_ip("testclient").endswith("xxx")
        assert "testclient" not in anonymize_ip("testclient")


class TestDeriveKey:
    """Key formats per action and path"""

    def test_order_key_uses_email_hash(self):
        request = RequestDescriptor(path="/checkout", body={"email": "Client@Example.com"})
        key = derive_key(request, "order", "203.0.113.1")

        assert key == f"order:email:{hash_identifier('client@example.com', 10)}:ip:203.0.113.1"

    def test_order_key_accepts_json_text_body(self):
        request = RequestDescriptor(path="/checkout", body=b'{"email": "client@example.com"}')

        assert derive_key(request, "order", "203.0.113.1").startswith("order:email:")

    def test_contact_key_uses_shorter_hash(self):
        request = RequestDescriptor(path="/contact", body={"email": "me@example.com"})
        key = derive_key(request, "contact", "203.0.113.1")

        assert key == f"contact:contact:{hash_identifier('me@example.com', 8)}:ip:203.0.113.1"

    def test_order_without_email_falls_back_to_path(self):
        request = RequestDescriptor(path="/api/orders", body="not json")

        assert derive_key(request, "order", "203.0.113.1") == "order:ip:203.0.113.1:path:_api_orders"

    def test_resource_pages_keyed_by_id(self):
        request = RequestDescriptor(path="/templates/boutique-mode")

        assert derive_key(request, "public_pages", "203.0.113.1") == (
            "public_pages:resource:boutique-mode:ip:203.0.113.1"
        )

    def test_default_key_sanitizes_path(self):
        request = RequestDescriptor(path="/blog/2024?page=2")

        assert derive_key(request, "blog", "203.0.113.1") == "blog:ip:203.0.113.1:path:_blog_2024_page_2"

    def test_ip_resolved_when_not_given(self):
        request = RequestDescriptor(path="/", headers={"x-forwarded-for": "203.0.113.3"})

        assert derive_key(request, "public_pages") == "public_pages:ip:203.0.113.3:path:_"
