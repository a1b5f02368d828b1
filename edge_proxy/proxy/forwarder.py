import asyncio
import logging
import time
from typing import List, Optional, Tuple

import httpx
from opentelemetry import trace

from edge_proxy.config import ProxyConfig
from edge_proxy.metrics import upstream_latency
from edge_proxy.proxy.errors import classify_failure
from edge_proxy.proxy.models import (
    InboundRequest,
    ProxyOutcome,
    Timeout,
    UpstreamResponse,
    UpstreamTarget,
)
from edge_proxy.proxy.path_classifier import normalize_path
from edge_proxy.utils import cookie_value, token_fingerprint

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

GRAPHQL_ALIASES = frozenset({"/api/graphql", "/graphql"})
GRAPHQL_UPSTREAM_PATH = "/graphql"
MUTATING_METHODS = frozenset({"POST", "PUT", "DELETE", "PATCH"})

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Recomputed by the transport on each leg
REQUEST_DROP_HEADERS = HOP_BY_HOP_HEADERS | {"content-length"}
# httpx has already decoded the body, so encoding and length no longer apply
RESPONSE_DROP_HEADERS = HOP_BY_HOP_HEADERS | {"content-encoding", "content-length"}


def resolve_upstream_target(request: InboundRequest, config: ProxyConfig) -> UpstreamTarget:
    """
    Pick the upstream origin and map the request path onto it.

    Aliases are matched on the decoded path; everything else is forwarded
    with the path exactly as received so percent-escapes survive.
    """
    if normalize_path(request.path) in GRAPHQL_ALIASES:
        path = GRAPHQL_UPSTREAM_PATH
    else:
        path = request.wire_path
    if request.query:
        path = f"{path}?{request.query}"
    return UpstreamTarget(origin=config.upstream_origin, path_and_query=path)


def prepare_headers(request: InboundRequest, target: UpstreamTarget) -> httpx.Headers:
    """
    Prepare headers for forwarding to the upstream origin.
    Copies inbound headers, minus hop-by-hop ones, and adds proxy headers.
    """
    headers = httpx.Headers(
        [
            (name, value)
            for name, value in request.headers.multi_items()
            if name.lower() not in REQUEST_DROP_HEADERS
        ]
    )
    headers["host"] = target.host
    # The original Host header, not any x-forwarded-host from a fronting proxy
    headers["x-forwarded-host"] = request.host or ""
    headers["x-forwarded-proto"] = "https"
    return headers


def filter_response_headers(headers: httpx.Headers) -> List[Tuple[str, str]]:
    return [
        (name, value)
        for name, value in headers.multi_items()
        if name.lower() not in RESPONSE_DROP_HEADERS
    ]


def log_csrf_state(request: InboundRequest) -> None:
    """Log whether a mutation carries a CSRF header and cookie, never their values."""
    header_token = request.headers.get("x-csrf-token")
    cookie_token = cookie_value(request.headers.get("cookie"), "XSRF-TOKEN")
    logger.info(
        f"[Proxy] CSRF token header: {'present' if header_token else 'missing'}, "
        f"XSRF-TOKEN cookie: {'present' if cookie_token else 'MISSING'}"
    )
    if header_token and cookie_token:
        logger.debug(
            f"[Proxy] CSRF header {token_fingerprint(header_token)} matches cookie: "
            f"{header_token == cookie_token}"
        )


class ProxyForwarder:
    """
    Forwards a proxied request to the single upstream origin.

    One upstream call per request, bounded by ``config.proxy_timeout``. When
    no shared ``client`` is given a short-lived ``httpx.AsyncClient`` is opened
    for each request.
    """

    def __init__(self, config: ProxyConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.client = client

    async def forward(self, request: InboundRequest) -> ProxyOutcome:
        target = resolve_upstream_target(request, self.config)
        headers = prepare_headers(request, target)
        prefix = "[Proxy PROD]" if self.config.is_production else "[Proxy]"

        with tracer.start_as_current_span("proxy_request") as span:
            span.set_attribute("proxy.target_url", target.url)
            span.set_attribute("proxy.method", request.method)
            logger.info(f"{prefix} {request.method} {request.path} -> {target.url}")

            if self.config.is_development and request.method in MUTATING_METHODS:
                log_csrf_state(request)

            started = time.monotonic()
            try:
                outcome = await asyncio.wait_for(
                    self._send(request.method, target.url, headers, request.body),
                    timeout=self.config.proxy_timeout,
                )
            except Exception as e:
                outcome = classify_failure(e)
                if isinstance(outcome, Timeout):
                    logger.error(f"{prefix} request timeout for {request.path}")
                    span.set_attribute("proxy.error", "timeout")
                else:
                    logger.error(
                        f"{prefix} proxy error for {target.url}: {outcome.message}",
                        exc_info=self.config.is_development,
                    )
                    span.set_attribute("proxy.error", outcome.message)
                return outcome
            finally:
                upstream_latency.labels(method=request.method).observe(
                    time.monotonic() - started
                )

            span.set_attribute("proxy.status_code", outcome.status_code)
            logger.info(f"{prefix} upstream status={outcome.status_code} for {request.path}")
            return outcome

    async def _send(
        self,
        method: str,
        url: str,
        headers: httpx.Headers,
        body: Optional[bytes],
    ) -> UpstreamResponse:
        if self.client is not None:
            return await self._exchange(self.client, method, url, headers, body)
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.proxy_timeout),
            follow_redirects=False,
        ) as client:
            return await self._exchange(client, method, url, headers, body)

    @staticmethod
    async def _exchange(
        client: httpx.AsyncClient,
        method: str,
        url: str,
        headers: httpx.Headers,
        body: Optional[bytes],
    ) -> UpstreamResponse:
        response = await client.request(
            method=method,
            url=url,
            headers=headers,
            content=body,
            follow_redirects=False,
        )
        return UpstreamResponse(
            status_code=response.status_code,
            headers=filter_response_headers(response.headers),
            body=response.content,
        )
