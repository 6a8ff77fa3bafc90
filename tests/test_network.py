"""
Unit tests for local-network classification.

Tests cover:
- Direct socket peers (IPv4, IPv6, IPv4-mapped IPv6)
- X-Forwarded-For from trusted and untrusted peers
- Multi-hop proxy chains
- Malformed input
"""

from app.hearth.network import TrustClassifier, parse_ip, parse_networks


class TestParseIp:
    def test_plain_addresses(self):
        assert str(parse_ip("192.168.1.5")) == "192.168.1.5"
        assert str(parse_ip(" ::1 ")) == "::1"

    def test_ipv4_mapped_is_unwrapped(self):
        assert str(parse_ip("::ffff:10.0.0.7")) == "10.0.0.7"

    def test_brackets_and_zone_id(self):
        assert str(parse_ip("[fe80::1]")) == "fe80::1"
        assert str(parse_ip("fe80::1%eth0")) == "fe80::1"

    def test_garbage(self):
        assert parse_ip("") is None
        assert parse_ip(None) is None
        assert parse_ip("not-an-ip") is None
        assert parse_ip("300.1.1.1") is None


class TestParseNetworks:
    def test_invalid_entries_skipped(self):
        nets = parse_networks(["10.0.0.0/8", "bogus", "192.168.1.1/24"])
        assert [str(n) for n in nets] == ["10.0.0.0/8", "192.168.1.0/24"]


class TestClassifyDirect:
    def test_private_ipv4_is_local(self):
        c = TrustClassifier().classify("192.168.1.20")
        assert c.is_local is True
        assert c.client_ip == "192.168.1.20"
        assert c.source == "socket"

    def test_loopback_is_local(self):
        tc = TrustClassifier()
        assert tc.classify("127.0.0.1").is_local is True
        assert tc.classify("::1").is_local is True

    def test_public_is_not_local(self):
        tc = TrustClassifier()
        assert tc.classify("8.8.8.8").is_local is False
        assert tc.classify("2001:4860:4860::8888").is_local is False

    def test_mapped_private_is_local(self):
        assert TrustClassifier().classify("::ffff:192.168.0.9").is_local is True

    def test_unknown_peer(self):
        c = TrustClassifier().classify(None)
        assert c.is_local is False
        assert c.client_ip is None
        assert c.source == "unknown"

    def test_custom_local_cidrs(self):
        tc = TrustClassifier(local_cidrs=["100.64.0.0/10"])
        assert tc.classify("100.64.1.1").is_local is True
        assert tc.classify("192.168.1.1").is_local is False


class TestForwardedFor:
    def test_header_ignored_without_trusted_proxy(self):
        """A remote client cannot claim locality with its own header"""
        c = TrustClassifier().classify("203.0.113.9", "192.168.1.20")
        assert c.is_local is False
        assert c.client_ip == "203.0.113.9"
        assert c.source == "socket"

    def test_header_ignored_from_untrusted_local_peer(self):
        tc = TrustClassifier(trusted_proxies=["10.0.0.2/32"])
        c = tc.classify("192.168.1.50", "203.0.113.9")
        assert c.client_ip == "192.168.1.50"
        assert c.is_local is True

    def test_trusted_proxy_forwards_remote_client(self):
        tc = TrustClassifier(trusted_proxies=["10.0.0.2/32"])
        c = tc.classify("10.0.0.2", "203.0.113.9")
        assert c.client_ip == "203.0.113.9"
        assert c.source == "x-forwarded-for"
        assert c.is_local is False

    def test_trusted_proxy_forwards_local_client(self):
        tc = TrustClassifier(trusted_proxies=["10.0.0.2"])
        c = tc.classify("10.0.0.2", "192.168.1.20")
        assert c.client_ip == "192.168.1.20"
        assert c.is_local is True

    def test_spoofed_leftmost_entry_not_believed(self):
        """Only entries appended by trusted hops count"""
        tc = TrustClassifier(trusted_proxies=["10.0.0.2/32"])
        c = tc.classify("10.0.0.2", "192.168.1.20, 203.0.113.9")
        assert c.client_ip == "203.0.113.9"
        assert c.is_local is False

    def test_multi_hop_chain(self):
        tc = TrustClassifier(trusted_proxies=["10.0.0.0/24"])
        c = tc.classify("10.0.0.2", "198.51.100.4, 10.0.0.3")
        assert c.client_ip == "198.51.100.4"
        assert c.is_local is False

    def test_chain_of_only_trusted_proxies(self):
        tc = TrustClassifier(trusted_proxies=["10.0.0.0/24"])
        c = tc.classify("10.0.0.2", "10.0.0.3")
        assert c.client_ip == "10.0.0.3"
        assert c.is_local is True

    def test_garbage_forwarded_entry(self):
        tc = TrustClassifier(trusted_proxies=["10.0.0.2/32"])
        c = tc.classify("10.0.0.2", "unknown")
        assert c.client_ip is None
        assert c.is_local is False

    def test_empty_header_uses_peer(self):
        tc = TrustClassifier(trusted_proxies=["10.0.0.2/32"])
        c = tc.classify("10.0.0.2", " , ")
        assert c.client_ip == "10.0.0.2"
        assert c.source == "socket"

    def test_is_local_ip(self):
        tc = TrustClassifier()
        assert tc.is_local_ip("10.1.2.3") is True
        assert tc.is_local_ip("fe80::1%eth0") is True
        assert tc.is_local_ip("198.51.100.1") is False
        assert tc.is_local_ip("garbage") is False
