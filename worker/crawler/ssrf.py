"""Network safety guard for audit targets.

Every URL the audit engine requests, including each redirect hop, goes
through ``assert_safe_http_url`` first. A hostname is accepted only if it
is not on the block list and every address it resolves to is public.
"""

import asyncio
import ipaddress
import socket
from urllib.parse import SplitResult, urlsplit

import structlog

from api.exceptions import InvalidTargetError

logger = structlog.get_logger(__name__)

BLOCKED_HOSTNAMES = frozenset(
    [
        "localhost",
        "metadata.google.internal",
        "metadata",
        "169.254.169.254",
        "169.254.170.2",
        "100.100.100.200",
    ]
)

BLOCKED_SUFFIXES = (".local", ".internal", ".home", ".lan")

BLOCKED_IPV4_NETWORKS = [
    ipaddress.ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "224.0.0.0/3",  # multicast and reserved
    )
]

BLOCKED_IPV6_NETWORKS = [
    ipaddress.ip_network(cidr)
    for cidr in (
        "::1/128",
        "::/128",
        "fe80::/10",
        "fc00::/7",
        "ff00::/8",
    )
]


def is_blocked_hostname(hostname: str) -> bool:
    """Check a hostname against the static block list."""
    normalized = hostname.strip().lower().rstrip(".")
    if not normalized:
        return True
    if normalized in BLOCKED_HOSTNAMES:
        return True
    return normalized.endswith(BLOCKED_SUFFIXES)


def is_blocked_ip_address(ip: str) -> bool:
    """Check if an address falls in a loopback, private or reserved range.

    Anything that does not parse as an IP address is treated as blocked.
    """
    try:
        addr = ipaddress.ip_address(ip.split("%", 1)[0])
    except ValueError:
        return True

    if isinstance(addr, ipaddress.IPv6Address):
        if addr.ipv4_mapped is not None:
            return is_blocked_ip_address(str(addr.ipv4_mapped))
        return any(addr in network for network in BLOCKED_IPV6_NETWORKS)

    return any(addr in network for network in BLOCKED_IPV4_NETWORKS)


async def resolve_host(hostname: str) -> list[str]:
    """Resolve every A/AAAA record for a hostname."""
    loop = asyncio.get_running_loop()
    try:
        results = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    except socket.gaierror:
        return []
    addresses: list[str] = []
    for _family, _type, _proto, _canonname, sockaddr in results:
        address = str(sockaddr[0])
        if address not in addresses:
            addresses.append(address)
    return addresses


def _reject(hostname: str, message: str, reason: str) -> InvalidTargetError:
    logger.warning("ssrf_target_rejected", host=hostname, reason=reason)
    return InvalidTargetError(message, reason=reason)


async def assert_public_hostname(hostname: str) -> None:
    """Raise InvalidTargetError unless the hostname is public."""
    if is_blocked_hostname(hostname):
        raise _reject(hostname, "Hostname is not allowed for audit.", "blocked_hostname")

    addresses = await resolve_host(hostname)
    if not addresses:
        raise InvalidTargetError("Hostname cannot be resolved.", reason="unresolvable_hostname")

    for address in addresses:
        if is_blocked_ip_address(address):
            raise _reject(hostname, "Target resolves to a blocked IP range.", "blocked_ip_range")


async def assert_safe_http_url(target: str | SplitResult) -> None:
    """Validate scheme, credentials and host of an outgoing request URL."""
    parsed = urlsplit(target) if isinstance(target, str) else target

    if parsed.scheme not in ("http", "https"):
        raise InvalidTargetError("Only HTTP(S) URLs are allowed.", reason="scheme_not_allowed")
    if parsed.username or parsed.password:
        raise InvalidTargetError("URL credentials are not allowed.", reason="credentials_in_url")

    await assert_public_hostname(parsed.hostname or "")
