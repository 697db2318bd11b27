import pytest

from dashcache.infrastructure.resilience.identity import client_ip, derive_identity, hash_address


def test_authenticated_user_keyed_by_id():
    assert derive_identity({"user_id": 42, "remote_addr": "10.0.0.1"}) == "user_42"


@pytest.mark.parametrize("user_id", [None, "", 0, "0"])
def test_anonymous_user_keyed_by_address_hash(user_id):
    identity = derive_identity({"user_id": user_id, "remote_addr": "203.0.113.9"})
    assert identity == f"ip_{hash_address('203.0.113.9')}"
    assert len(identity) == len("ip_") + 16


def test_proxy_headers_take_precedence():
    headers = {"X-Forwarded-For": "198.51.100.1", "CF-Connecting-IP": "198.51.100.2"}
    assert client_ip(headers, "10.0.0.1") == "198.51.100.2"


def test_forwarded_chain_uses_first_entry():
    assert client_ip({"x-forwarded-for": "198.51.100.7, 10.0.0.1"}, None) == "198.51.100.7"


def test_invalid_address_falls_back():
    assert client_ip({"X-Real-IP": "not-an-ip"}, "10.0.0.1") == "0.0.0.0"
    assert client_ip(None, None) == "0.0.0.0"


def test_ipv6_address():
    assert client_ip(None, "2001:db8::1") == "2001:db8::1"


@pytest.mark.parametrize("address", [
    "10.1.2.3", "172.16.0.9", "192.168.1.20", "127.0.0.1", "169.254.10.1", "0.0.0.5", "::1", "fe80::1", "fd00::7",
])
def test_private_and_reserved_addresses_fall_back(address):
    assert client_ip(None, address) == "0.0.0.0"
    assert client_ip({"X-Forwarded-For": f"{address}, 203.0.113.9"}, "198.51.100.1") == "0.0.0.0"


def test_anonymous_callers_on_private_networks_share_a_bucket():
    first = derive_identity({"remote_addr": "192.168.1.20"})
    second = derive_identity({"remote_addr": "10.0.0.1"})
    assert first == second == f"ip_{hash_address('0.0.0.0')}"
