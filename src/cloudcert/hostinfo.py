"""Discover the local host IP placed in the certificate's SAN."""

import ipaddress
import logging
import socket
from collections.abc import Callable

from cloudcert.errors import HostResolutionError

logger = logging.getLogger(__name__)

DEFAULT_HOSTNAME = "default-edge-node"

# Only used to pick the interface holding the default route; nothing is sent.
_ROUTE_TARGETS = (
    (socket.AF_INET, "8.8.8.8"),
    (socket.AF_INET6, "2001:4860:4860::8888"),
)


def get_hostname() -> str:
    """Return the lower-cased local hostname, or a fixed default."""
    try:
        hostname = socket.gethostname()
    except OSError as e:
        logger.debug("Failed to get hostname, using %s: %s", DEFAULT_HOSTNAME, e)
        return DEFAULT_HOSTNAME

    hostname = hostname.strip().lower()
    return hostname or DEFAULT_HOSTNAME


def is_usable_ip(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    """Whether an address can identify this host to remote peers."""
    return not (ip.is_loopback or ip.is_link_local or ip.is_multicast or ip.is_unspecified)


def _lookup_ips(hostname: str) -> list[ipaddress.IPv4Address | ipaddress.IPv6Address]:
    try:
        infos = socket.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP)
    except (OSError, UnicodeError) as e:
        logger.debug("Failed to resolve %s: %s", hostname, e)
        return []

    ips = []
    for _family, _type, _proto, _canonname, sockaddr in infos:
        # IPv6 sockaddrs may carry a "%zone" suffix
        address = str(sockaddr[0]).split("%", 1)[0]
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            continue
        if ip not in ips:
            ips.append(ip)
    return ips


def _default_route_ip() -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    for family, target in _ROUTE_TARGETS:
        try:
            with socket.socket(family, socket.SOCK_DGRAM) as sock:
                sock.connect((target, 53))
                address = sock.getsockname()[0]
        except OSError as e:
            logger.debug("No default route for %s: %s", target, e)
            continue
        ip = ipaddress.ip_address(str(address).split("%", 1)[0])
        if is_usable_ip(ip):
            return ip
    return None


def get_local_ip(hostname: str) -> str:
    """Find the IP address other hosts reach this host on.

    Addresses ``hostname`` resolves to are tried first, preferring IPv4.
    When none of them is usable the address of the interface carrying the
    default route is used.

    Args:
        hostname: Name to resolve, normally from get_hostname()

    Returns:
        The IP address as text

    Raises:
        HostResolutionError: If no usable address is found
    """
    usable = [ip for ip in _lookup_ips(hostname) if is_usable_ip(ip)]
    for ip in usable:
        if ip.version == 4:
            return str(ip)
    if usable:
        return str(usable[0])

    logger.debug("No usable address for %s, falling back to default route", hostname)
    ip = _default_route_ip()
    if ip is None:
        raise HostResolutionError(f"failed to get local IP address for host {hostname!r}")
    return str(ip)


def host_ip_resolver(hostname: str | None = None, override: str | None = None) -> Callable[[], str]:
    """Build a zero-argument local IP lookup for the issuer.

    Args:
        hostname: Name to resolve; defaults to get_hostname() at call time
        override: Fixed IP address that skips discovery entirely

    Returns:
        Callable returning the local IP address as text
    """
    if override:
        return lambda: override
    return lambda: get_local_ip(hostname or get_hostname())
