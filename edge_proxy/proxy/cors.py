from typing import List, Optional, Tuple

from edge_proxy.config import ProxyConfig

ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
ALLOW_HEADERS = (
    "Content-Type, Authorization, X-Requested-With, Accept, Origin, X-CSRF-TOKEN"
)

_CORS_HEADERS = frozenset(
    {
        "access-control-allow-origin",
        "access-control-allow-credentials",
        "access-control-allow-methods",
        "access-control-allow-headers",
    }
)


def annotate_cors(
    headers: List[Tuple[str, str]], config: ProxyConfig, origin: Optional[str]
) -> List[Tuple[str, str]]:
    """Add development CORS headers, replacing any the upstream sent.

    Production responses are returned unchanged; there the browser talks to
    the proxy same-origin.
    """
    if not config.is_development:
        return headers

    annotated = [(k, v) for k, v in headers if k.lower() not in _CORS_HEADERS]
    annotated.extend(
        [
            ("Access-Control-Allow-Origin", origin or config.dev_cors_origin),
            ("Access-Control-Allow-Credentials", "true"),
            ("Access-Control-Allow-Methods", ALLOW_METHODS),
            ("Access-Control-Allow-Headers", ALLOW_HEADERS),
        ]
    )
    return annotated
