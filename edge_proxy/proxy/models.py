from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union
from urllib.parse import urlsplit

import httpx
from starlette.requests import Request
from starlette.responses import Response

BODYLESS_METHODS = frozenset({"GET", "HEAD"})


@dataclass(frozen=True)
class InboundRequest:
    """What the forwarder needs to know about a request arriving at the edge."""

    method: str
    path: str
    query: str = ""
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: Optional[bytes] = None
    # Path as sent on the wire, percent-escapes intact; ``path`` is decoded.
    raw_path: Optional[str] = None

    @property
    def wire_path(self) -> str:
        return self.raw_path or self.path

    @property
    def host(self) -> Optional[str]:
        return self.headers.get("host")

    @property
    def origin(self) -> Optional[str]:
        return self.headers.get("origin")

    @property
    def effective_host(self) -> Optional[str]:
        """Host used for access control; a fronting proxy's value wins."""
        return self.headers.get("x-forwarded-host") or self.host

    @classmethod
    async def from_request(cls, request: Request) -> "InboundRequest":
        method = request.method.upper()
        body = None if method in BODYLESS_METHODS else await request.body()
        # Read from the scope: request.url is rebuilt from the decoded path, so
        # an encoded "?" or "#" would split it in the wrong place.
        raw_path = request.scope.get("raw_path")
        return cls(
            method=method,
            path=request.scope["path"],
            query=request.scope.get("query_string", b"").decode("latin-1"),
            headers=httpx.Headers(request.headers.raw),
            body=body,
            # Some servers leave the query string on raw_path
            raw_path=raw_path.split(b"?", 1)[0].decode("latin-1") if raw_path else None,
        )


@dataclass(frozen=True)
class UpstreamTarget:
    origin: str
    path_and_query: str

    @property
    def url(self) -> str:
        return self.origin.rstrip("/") + self.path_and_query

    @property
    def host(self) -> str:
        return urlsplit(self.origin).netloc


# Proxy outcomes. Exactly one of these is produced for every request the
# middleware intercepts.


@dataclass(frozen=True)
class Passthrough:
    response: Response


@dataclass(frozen=True)
class Forbidden:
    host: Optional[str] = None


@dataclass(frozen=True)
class Timeout:
    message: str = "The upstream service did not respond in time"


@dataclass(frozen=True)
class UpstreamError:
    message: str


@dataclass(frozen=True)
class UpstreamResponse:
    status_code: int
    headers: List[Tuple[str, str]]
    body: bytes = b""

    def header_values(self, name: str) -> List[str]:
        name = name.lower()
        return [value for key, value in self.headers if key.lower() == name]


ProxyOutcome = Union[Passthrough, Forbidden, Timeout, UpstreamError, UpstreamResponse]
