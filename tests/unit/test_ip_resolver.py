"""
Unit tests for client IP resolution.
"""

from traffic_monitor.services.ip_resolver import (
    UNKNOWN_IP,
    IpResolutionPolicy,
    resolve_client_ip,
)


class TestResolveClientIp:
    """Header precedence: edge > real-ip > forwarded-for > unknown."""

    def test_edge_header_beats_forwarded_chain(self):
        headers = {"cf-connecting-ip": "198.51.100.1", "x-forwarded-for": "10.0.0.1, 10.0.0.2"}
        assert resolve_client_ip(headers) == "198.51.100.1"

    def test_edge_header_beats_real_ip(self):
        headers = {"cf-connecting-ip": "198.51.100.1", "x-real-ip": "192.0.2.9"}
        assert resolve_client_ip(headers) == "198.51.100.1"

    def test_real_ip_beats_forwarded_chain(self):
        headers = {"x-real-ip": "192.0.2.9", "x-forwarded-for": "10.0.0.1"}
        assert resolve_client_ip(headers) == "192.0.2.9"

    def test_first_forwarded_entry_by_default(self):
        headers = {"x-forwarded-for": " 10.0.0.1 , 10.0.0.2,10.0.0.3"}
        assert resolve_client_ip(headers) == "10.0.0.1"

    def test_configured_forwarded_index(self):
        policy = IpResolutionPolicy(forwarded_for_index=1)
        headers = {"x-forwarded-for": "10.0.0.1, 10.0.0.2"}
        assert resolve_client_ip(headers, policy) == "10.0.0.2"

    def test_forwarded_index_falls_back_to_first(self):
        policy = IpResolutionPolicy(forwarded_for_index=1)
        assert resolve_client_ip({"x-forwarded-for": "10.0.0.1"}, policy) == "10.0.0.1"

    def test_blank_headers_are_ignored(self):
        headers = {"cf-connecting-ip": "  ", "x-real-ip": "", "x-forwarded-for": "10.0.0.4"}
        assert resolve_client_ip(headers) == "10.0.0.4"

    def test_no_headers_is_unknown(self):
        assert resolve_client_ip({}) == UNKNOWN_IP

    def test_empty_forwarded_chain_is_unknown(self):
        assert resolve_client_ip({"x-forwarded-for": " , "}) == UNKNOWN_IP

    def test_addresses_are_not_validated(self):
        assert resolve_client_ip({"x-real-ip": "not-an-ip"}) == "not-an-ip"

    def test_disabled_edge_header(self):
        policy = IpResolutionPolicy(edge_header=None)
        headers = {"cf-connecting-ip": "198.51.100.1", "x-real-ip": "192.0.2.9"}
        assert resolve_client_ip(headers, policy) == "192.0.2.9"

    def test_header_names_are_case_insensitive(self):
        headers = {"CF-Connecting-IP": "198.51.100.1", "X-Real-IP": "192.0.2.9"}
        assert resolve_client_ip(headers) == "198.51.100.1"

    def test_policy_header_names_are_case_insensitive(self):
        policy = IpResolutionPolicy(edge_header="True-Client-IP")
        assert resolve_client_ip({"true-client-ip": "203.0.113.5"}, policy) == "203.0.113.5"
