"""Derives the identity a request is rate limited under.

Authenticated callers are keyed by user id; anonymous callers by a hash
of their network address. The address is taken from proxy headers when
present, without checking that the proxy is trusted, so an anonymous
caller can choose its own bucket by sending a forged header. Which
proxies to trust is a deployment decision.

Private and reserved addresses (LAN, loopback, link-local) never identify a
caller; they resolve to 0.0.0.0 and share one anonymous bucket.
"""

import hashlib
import ipaddress
import logging
from typing import Mapping, Optional

from dashcache.domain.models.common import RequestContext

logger = logging.getLogger(__name__)

FALLBACK_IP = "0.0.0.0"

# Checked in order; the first non-empty header wins over the peer address
CLIENT_IP_HEADERS = (
    "CF-Connecting-IP",  # Cloudflare
    "X-Real-IP",         # Nginx proxy
    "Client-IP",
    "X-Forwarded-For",
)

NON_PUBLIC_NETWORKS = tuple(ipaddress.ip_network(n) for n in (
    # private
    "10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7",
    # reserved
    "0.0.0.0/8", "127.0.0.0/8", "169.254.0.0/16", "240.0.0.0/4",
    "::/128", "::1/128", "::ffff:0:0/96", "fe80::/10",
))


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def client_ip(headers: Optional[Mapping[str, str]], remote_addr: Optional[str]) -> str:
    """Best-effort client address.

    Returns the first proxy header found (first entry of a comma-separated
    chain), else the peer address; anything that is not a valid public
    IPv4/IPv6 address becomes 0.0.0.0.
    """
    candidate = ""
    for name in CLIENT_IP_HEADERS:
        value = _header(headers or {}, name)
        if value:
            candidate = value
            break
    else:
        candidate = remote_addr or ""

    if "," in candidate:
        candidate = candidate.split(",")[0]
    candidate = candidate.strip()

    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        logger.debug(f"Invalid client address '{candidate}', using {FALLBACK_IP}")
        return FALLBACK_IP
    if any(address in network for network in NON_PUBLIC_NETWORKS):
        logger.debug(f"Non-public client address '{candidate}', using {FALLBACK_IP}")
        return FALLBACK_IP
    return str(address)


def hash_address(address: str) -> str:
    return hashlib.sha256(address.encode("utf-8")).hexdigest()[:16]


def derive_identity(context: RequestContext) -> str:
    """Maps a request context to a rate-limit identity.

    Returns:
        'user_<id>' for authenticated callers, otherwise 'ip_<hash>'.
    """
    user_id = context.get("user_id")
    if user_id not in (None, "", 0, "0"):
        return f"user_{user_id}"
    address = client_ip(context.get("headers"), context.get("remote_addr"))
    return f"ip_{hash_address(address)}"
