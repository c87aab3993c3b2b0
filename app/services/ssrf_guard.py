"""Server-side request forgery protection for outbound fetches.

Every destination is resolved and checked before any connection is made,
and again after each redirect hop. Rejections are logged and raised as
SecurityRejectedError, which is never retried or cached.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from typing import Awaitable, Callable, NoReturn
from urllib.parse import urlsplit

from app.exceptions import FetchError, SecurityRejectedError

logger = logging.getLogger(__name__)

Resolver = Callable[[str, int], Awaitable[list[str]]]

ALLOWED_SCHEMES = frozenset({"http", "https"})

# Networks that must never be reachable from the fetcher
BLOCKED_NETWORKS: tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...] = (
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("100.64.0.0/10"),  # carrier-grade NAT
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),  # link-local, cloud metadata
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.0.0.0/24"),
    ipaddress.ip_network("192.0.2.0/24"),  # TEST-NET-1
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("198.18.0.0/15"),
    ipaddress.ip_network("198.51.100.0/24"),  # TEST-NET-2
    ipaddress.ip_network("203.0.113.0/24"),  # TEST-NET-3
    ipaddress.ip_network("224.0.0.0/4"),  # multicast
    ipaddress.ip_network("240.0.0.0/4"),  # reserved
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),  # unique local
    ipaddress.ip_network("fe80::/10"),  # link-local
    ipaddress.ip_network("ff00::/8"),  # multicast
)

BLOCKED_HOSTNAMES: frozenset[str] = frozenset({
    "localhost",
    "localhost.localdomain",
    "ip6-localhost",
    "ip6-loopback",
    "metadata",
    "metadata.google.internal",
    "metadata.azure.com",
    "instance-data",
})

BLOCKED_HOST_SUFFIXES = (".localhost", ".local", ".internal")


def is_forbidden_address(address: str) -> bool:
    """Return True if an IP address falls into a blocked range."""
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return True

    # IPv4-mapped IPv6 (::ffff:127.0.0.1) is checked as IPv4
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    if (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    ):
        return True
    return any(ip in network for network in BLOCKED_NETWORKS)


async def _system_resolver(host: str, port: int) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


class SSRFGuard:
    """Validates outbound destinations against private and reserved networks.

    Args:
        resolver: Async callable returning the addresses for ``(host, port)``.
            Defaults to the event loop's ``getaddrinfo``.
    """

    def __init__(self, resolver: Resolver | None = None) -> None:
        self._resolver = resolver or _system_resolver

    async def check(self, url: str) -> list[str]:
        """Validate a destination URL.

        Args:
            url: Absolute URL about to be fetched (initial URL or redirect hop).

        Returns:
            The resolved addresses, all of which passed validation.

        Raises:
            SecurityRejectedError: If the scheme, host or any resolved address
                is forbidden.
            FetchError: If the host cannot be resolved.
        """
        parts = urlsplit(url)
        scheme = parts.scheme.lower()
        if scheme not in ALLOWED_SCHEMES:
            self._reject(url, f"scheme '{scheme}' not allowed")

        host = (parts.hostname or "").rstrip(".").lower()
        if not host:
            self._reject(url, "missing host")
        if host in BLOCKED_HOSTNAMES or host.endswith(BLOCKED_HOST_SUFFIXES):
            self._reject(url, f"hostname '{host}' is blocked")

        try:
            port = parts.port or (443 if scheme == "https" else 80)
        except ValueError:
            self._reject(url, "invalid port")

        # Literal IPs are checked without touching DNS
        try:
            ipaddress.ip_address(host)
        except ValueError:
            pass
        else:
            if is_forbidden_address(host):
                self._reject(url, f"address {host} is not public")
            return [host]

        try:
            addresses = await self._resolver(host, port)
        except (OSError, UnicodeError) as e:
            raise FetchError(f"DNS resolution failed for {host}: {e}", url, e) from e

        if not addresses:
            raise FetchError(f"DNS resolution returned no addresses for {host}", url)

        for address in addresses:
            if is_forbidden_address(address):
                self._reject(url, f"{host} resolves to non-public address {address}")
        return addresses

    @staticmethod
    def _reject(url: str, reason: str) -> NoReturn:
        parts = urlsplit(url)
        logger.warning(
            "SSRF_BLOCKED: %s://%s%s (%s)",
            parts.scheme,
            parts.netloc,
            parts.path,
            reason,
        )
        raise SecurityRejectedError(url, reason)
