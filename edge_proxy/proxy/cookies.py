"""
Set-Cookie rewriting for local development against a remote backend.

A browser on ``http://localhost`` refuses cookies that are ``Secure``, scoped
to the production domain, or ``SameSite=None``. In development only, and only
for the authentication and CSRF cookies, those attributes are relaxed so the
local client can log in. Every other cookie, and every cookie in production,
is relayed byte-for-byte.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple

from edge_proxy.config import ProxyConfig
from edge_proxy.security.host_validation import is_localhost, is_vercel_host
from edge_proxy.utils import token_fingerprint

logger = logging.getLogger("uvicorn.error")

AUTH_COOKIE = re.compile(r"^(token|session|auth)=", re.IGNORECASE)
CSRF_COOKIE = re.compile(r"^XSRF-TOKEN=", re.IGNORECASE)


class CookieClass(str, Enum):
    AUTH = "auth"
    CSRF = "csrf"
    OTHER = "other"


@dataclass(frozen=True)
class CookieDirective:
    """A parsed ``Set-Cookie`` value with its attributes in original order.

    Attribute values are ``None`` for flags such as ``Secure`` and ``HttpOnly``.
    """

    name: str
    value: str
    attributes: Tuple[Tuple[str, Optional[str]], ...] = field(default_factory=tuple)

    def get(self, attribute: str) -> Optional[str]:
        attribute = attribute.lower()
        for key, value in self.attributes:
            if key.lower() == attribute:
                return value
        return None

    def has(self, attribute: str) -> bool:
        attribute = attribute.lower()
        return any(key.lower() == attribute for key, _ in self.attributes)

    @property
    def domain(self) -> Optional[str]:
        return self.get("domain")

    @property
    def secure(self) -> bool:
        return self.has("secure")

    @property
    def same_site(self) -> Optional[str]:
        return self.get("samesite")

    @property
    def path(self) -> Optional[str]:
        return self.get("path")

    def serialize(self) -> str:
        parts = [f"{self.name}={self.value}"]
        for key, value in self.attributes:
            parts.append(key if value is None else f"{key}={value}")
        return "; ".join(parts)


def parse_set_cookie(raw: str) -> Optional[CookieDirective]:
    """Parse a ``Set-Cookie`` header value; ``None`` when there is no name=value pair."""
    pieces = [piece.strip() for piece in raw.split(";")]
    name, sep, value = pieces[0].partition("=")
    name = name.strip()
    if not sep or not name:
        return None
    attributes: List[Tuple[str, Optional[str]]] = []
    for piece in pieces[1:]:
        if not piece:
            continue
        key, sep, attr_value = piece.partition("=")
        attributes.append((key.strip(), attr_value.strip() if sep else None))
    return CookieDirective(name=name, value=value.strip(), attributes=tuple(attributes))


def classify_cookie(raw: str) -> CookieClass:
    if AUTH_COOKIE.match(raw):
        return CookieClass.AUTH
    if CSRF_COOKIE.match(raw):
        return CookieClass.CSRF
    return CookieClass.OTHER


def is_rewrite_eligible(
    cookie_class: CookieClass, config: ProxyConfig, request_host: Optional[str]
) -> bool:
    return (
        cookie_class in (CookieClass.AUTH, CookieClass.CSRF)
        and config.is_development
        and is_localhost(request_host)
        and not is_vercel_host(request_host, config.allowed_domain)
    )


def relax_for_localhost(cookie: CookieDirective, cookie_domain: str) -> CookieDirective:
    """Drop the production Domain and Secure flag and downgrade SameSite to Lax."""
    attributes: List[Tuple[str, Optional[str]]] = []
    for key, value in cookie.attributes:
        lowered = key.lower()
        if lowered == "domain" and cookie_domain in (value or "").lower():
            continue
        if lowered == "secure":
            continue
        if lowered == "samesite" and (value or "").lower() in ("none", "strict"):
            attributes.append((key, "Lax"))
            continue
        attributes.append((key, value))
    return replace(cookie, attributes=tuple(attributes))


def rewrite_set_cookie(raw: str, config: ProxyConfig, request_host: Optional[str]) -> str:
    """Return the ``Set-Cookie`` value to relay to the browser."""
    cookie_class = classify_cookie(raw)
    if not is_rewrite_eligible(cookie_class, config, request_host):
        return raw

    cookie = parse_set_cookie(raw)
    if cookie is None:
        return raw

    rewritten = relax_for_localhost(cookie, config.cookie_domain).serialize()
    if cookie_class is CookieClass.CSRF:
        logger.debug(
            f"[Proxy] CSRF cookie rewritten for localhost "
            f"({token_fingerprint(cookie.value)})"
        )
    return rewritten


def rewrite_response_cookies(
    headers: List[Tuple[str, str]], config: ProxyConfig, request_host: Optional[str]
) -> List[Tuple[str, str]]:
    """Apply ``rewrite_set_cookie`` to every ``Set-Cookie`` header, keeping order."""
    return [
        (key, rewrite_set_cookie(value, config, request_host))
        if key.lower() == "set-cookie"
        else (key, value)
        for key, value in headers
    ]
