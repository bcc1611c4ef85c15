"""
Domain Matcher
==============
Decides whether a request origin is allowed by a widget's domain allow-list.
"""

import ipaddress
import re
from collections.abc import Iterable
from functools import lru_cache
from urllib.parse import urlsplit

import structlog

from voicegate.config import settings

logger = structlog.get_logger()

# Separator between patterns in a stored allow-list string
DOMAIN_DELIMITER = "|||"

PRIVATE_NETWORKS = (
    ipaddress.IPv4Network("127.0.0.0/8"),
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
)

_HOSTNAME_RE = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


def parse_allowed_domains(allow_list: str | None) -> list[str]:
    """Split a stored allow-list into trimmed, non-empty patterns."""
    if not allow_list:
        return []
    return [p.strip() for p in allow_list.split(DOMAIN_DELIMITER) if p.strip()]


def join_allowed_domains(patterns: Iterable[str]) -> str:
    return DOMAIN_DELIMITER.join(p.strip() for p in patterns if p.strip())


def origin_hostname(origin: str | None) -> str | None:
    """
    Extract the lowercase hostname from an origin URL.

    Returns None when the origin is missing or cannot be parsed.
    """
    if not origin:
        return None
    try:
        parts = urlsplit(origin.strip())
        # Accessing port validates it
        parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None
    return parts.hostname


def is_private_ipv4(hostname: str) -> bool:
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    if address.version != 4:
        return False
    return any(address in network for network in PRIVATE_NETWORKS)


def _pattern_host(pattern: str) -> str:
    """Use the hostname of a full-URL pattern, otherwise the pattern itself."""
    if "://" in pattern:
        host = origin_hostname(pattern)
        if host:
            return host
    return pattern.lower()


def _match_wildcard(host: str, pattern: str) -> bool:
    if pattern.startswith("*.") and pattern.endswith(".*") and len(pattern) > 4:
        # *.domain.* -> domain with any single-label TLD, at most one subdomain
        domain = pattern[2:-2]
        if "*" in domain:
            return False
        regex = rf"^([^.]+\.)?{re.escape(domain)}\.[^.]+$"
        return re.match(regex, host) is not None

    if pattern.startswith("*.") and "*" not in pattern[2:]:
        base = pattern[2:]
        return host == base or host.endswith("." + base)

    return False


class DomainMatcher:
    """
    Origin authorization against widget allow-lists.

    Matching rules per pattern, in priority order:
    - ``localhost`` matches a localhost origin, and in non-production
      deployments also private/loopback IPv4 origins
    - any configured development domain matches
    - wildcard patterns (``*.domain.com``, ``*.domain.*``)
    - exact hostname match
    - subdomain match
    """

    def __init__(
        self,
        dev_domains: Iterable[str] | None = None,
        allow_private_networks: bool | None = None,
    ):
        self.dev_domains = [
            d.strip().lower()
            for d in (settings.allowed_dev_domains if dev_domains is None else dev_domains)
            if d.strip()
        ]
        if allow_private_networks is None:
            allow_private_networks = not settings.is_production
        self.allow_private_networks = allow_private_networks

    def is_dev_host(self, host: str) -> bool:
        for domain in self.dev_domains:
            if domain.startswith("*."):
                base = domain[2:]
                if host == base or host.endswith("." + base):
                    return True
            elif domain in host:
                return True
        return False

    def matches(self, host: str, pattern: str) -> bool:
        """Match a single hostname against a single pattern."""
        if pattern == "localhost":
            if host == "localhost":
                return True
            if self.allow_private_networks and is_private_ipv4(host):
                return True

        if self.is_dev_host(host):
            return True

        target = _pattern_host(pattern)

        if "*" in target:
            return _match_wildcard(host, target)

        if host == target:
            return True

        return host.endswith("." + target)

    def is_authorized(self, origin: str | None, allow_list: str | None) -> bool:
        """
        Check an origin against a delimited allow-list string.

        Never raises; malformed origins and empty allow-lists are denied.
        """
        host = origin_hostname(origin)
        if host is None:
            logger.debug("Unparseable origin", origin=origin)
            return False

        return any(self.matches(host, p) for p in parse_allowed_domains(allow_list))


def validate_domain_pattern(pattern: str) -> bool:
    """Check that an allow-list entry is a hostname, URL, or supported wildcard."""
    if not pattern or not pattern.strip():
        return False

    hostname = pattern.strip()
    if hostname.startswith(("http://", "https://")):
        hostname = origin_hostname(hostname) or ""
        if not hostname:
            return False

    if hostname in ("localhost", "127.0.0.1"):
        return True

    if "*" in hostname:
        if not hostname.startswith("*."):
            return False
        rest = hostname[2:]
        if "*" in rest:
            if not rest.endswith(".*"):
                return False
            rest = rest[:-2]
        return _is_valid_hostname(rest)

    return _is_valid_hostname(hostname)


def _is_valid_hostname(hostname: str) -> bool:
    if not hostname or not _HOSTNAME_RE.match(hostname):
        return False
    if "." not in hostname:
        return len(hostname) >= 2
    return True


@lru_cache
def get_domain_matcher() -> DomainMatcher:
    """Get cached domain matcher configured from settings."""
    return DomainMatcher()
