"""
Host and origin validation that cannot be fooled by substring tricks.

A check like ``"vercel.bhenning.com" in host`` accepts both
``evil-vercel.bhenning.com`` and ``vercel.bhenning.com.attacker.com``. The
helpers here only ever compare whole, normalized hostnames: either exact
equality or a suffix anchored on a leading dot.

Unicode lookalikes (e.g. Cyrillic homographs) are deliberately not
normalized. They are foreign strings and simply fail to match the ASCII
allow-list entries.
"""

from typing import Optional
from urllib.parse import urlsplit

from edge_proxy.config import DEFAULT_ALLOWED_DOMAIN

LOCALHOST_NAMES = frozenset({"localhost", "127.0.0.1", "0.0.0.0", "::1"})


def _normalize_host(host: str) -> str:
    """Lower-case ``host`` and strip a port and any IPv6 brackets."""
    hostname = host.strip().lower()
    if hostname.startswith("["):
        end = hostname.find("]")
        if end != -1:
            return hostname[1:end]
        return hostname
    # A bare IPv6 literal has several colons and no port to strip.
    if hostname.count(":") == 1:
        return hostname.split(":", 1)[0]
    return hostname


def is_localhost(host: Optional[str]) -> bool:
    """True iff ``host`` is exactly one of the canonical localhost forms."""
    if not host:
        return False
    return _normalize_host(host) in LOCALHOST_NAMES


def is_host_or_subdomain(host: Optional[str], domain: Optional[str]) -> bool:
    """True iff ``host`` equals ``domain`` or is a dot-anchored subdomain of it."""
    if not host or not domain:
        return False
    hostname = _normalize_host(host)
    target = domain.strip().lower()
    if not hostname or not target:
        return False
    if hostname == target:
        return True
    return hostname.endswith("." + target)


def _origin_hostname(origin: str) -> Optional[str]:
    try:
        return urlsplit(origin).hostname
    except ValueError:
        return None


def is_localhost_origin(origin: Optional[str]) -> bool:
    if not origin:
        return False
    hostname = _origin_hostname(origin)
    # Not a URL: treat the raw value as a hostname.
    return is_localhost(hostname if hostname else origin)


def is_origin_for_domain(origin: Optional[str], domain: Optional[str]) -> bool:
    if not origin:
        return False
    hostname = _origin_hostname(origin)
    return is_host_or_subdomain(hostname if hostname else origin, domain)


def is_vercel_host(host: Optional[str], domain: str = DEFAULT_ALLOWED_DOMAIN) -> bool:
    """True iff ``host`` is the allow-listed deployment domain or a subdomain."""
    return is_host_or_subdomain(host, domain)


def is_approved_host(
    host: Optional[str], domain: str = DEFAULT_ALLOWED_DOMAIN
) -> bool:
    return is_localhost(host) or is_vercel_host(host, domain)
