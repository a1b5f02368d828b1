"""
Request path routing table.

Decides once per request whether the proxy looks at a path at all and, if it
does, which of the four classifications applies. Rules are compiled at import
time and evaluated in order; the first match wins.
"""

import re
from enum import Enum
from typing import Pattern, Sequence, Tuple


class PathClassification(str, Enum):
    BYPASS = "bypass"
    PROXIED = "proxied"
    STATIC_ASSET = "static_asset"
    DYNAMIC_PAGE = "dynamic_page"


# Endpoints served by this application itself
BYPASS_PATHS = (
    "/api/nhl",
    "/api/nba",
    "/api/mlb",
    "/api/nfl",
    "/api/celsius",
    "/api/fahrenheit",
    "/api/lead",
    "/api/player-ads",
    "/api/player-analytics",
    "/api/player-heartbeat",
    "/api/player-metadata",
    "/api/weather",
    "/api/uuid",
    "/api/human",
    "/api/health",
)
# Bypass endpoints that also own their sub-paths
BYPASS_PREFIXES = ("/api/uuid/",)

STATIC_EXTENSIONS = (
    "js",
    "css",
    "svg",
    "png",
    "jpg",
    "jpeg",
    "gif",
    "webp",
    "ico",
    "ttf",
    "otf",
    "woff",
    "woff2",
)
INTERNAL_ASSET_PREFIX = "/_next/"

# Framework assets that are never intercepted
_NOT_INTERCEPTED = re.compile(r"^/(?:_next/static|_next/image|favicon\.ico)")
_API = re.compile(r"^/api/|^/graphql$")


def _compile_rules() -> Sequence[Tuple[Pattern[str], PathClassification]]:
    bypass_exact = "|".join(re.escape(p) for p in BYPASS_PATHS)
    bypass_prefix = "|".join(re.escape(p) for p in BYPASS_PREFIXES)
    static_ext = "|".join(STATIC_EXTENSIONS)
    return (
        (
            re.compile(rf"^(?:{bypass_exact})$|^(?:{bypass_prefix})"),
            PathClassification.BYPASS,
        ),
        (_API, PathClassification.PROXIED),
        (
            re.compile(
                rf"\.(?:{static_ext})$|^{re.escape(INTERNAL_ASSET_PREFIX)}",
                re.IGNORECASE,
            ),
            PathClassification.STATIC_ASSET,
        ),
    )


ROUTING_TABLE = _compile_rules()


def normalize_path(path: str) -> str:
    """Strip trailing slashes; the root path stays ``/``."""
    return path.rstrip("/") or "/"


def intercepts(path: str) -> bool:
    """Whether the proxy middleware handles ``path`` at all."""
    if _API.search(path):
        return True
    return not _NOT_INTERCEPTED.search(path)


def classify_path(path: str) -> PathClassification:
    normalized = normalize_path(path)
    for pattern, classification in ROUTING_TABLE:
        if pattern.search(normalized):
            return classification
    return PathClassification.DYNAMIC_PAGE
