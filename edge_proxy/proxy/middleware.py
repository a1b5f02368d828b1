import logging
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from edge_proxy.config import ProxyConfig
from edge_proxy.metrics import proxy_outcomes
from edge_proxy.proxy.cookies import rewrite_response_cookies
from edge_proxy.proxy.cors import annotate_cors
from edge_proxy.proxy.errors import outcome_label, outcome_to_response
from edge_proxy.proxy.forwarder import ProxyForwarder
from edge_proxy.proxy.models import (
    Forbidden,
    InboundRequest,
    Passthrough,
    ProxyOutcome,
    UpstreamResponse,
)
from edge_proxy.proxy.path_classifier import (
    PathClassification,
    classify_path,
    intercepts,
)
from edge_proxy.security.host_validation import is_localhost, is_vercel_host

logger = logging.getLogger("uvicorn.error")


class ProxyMiddleware(BaseHTTPMiddleware):
    """
    Edge request intermediary.

    Per request: classify the path, short-circuit local endpoints, reject
    unapproved hosts outside production, forward API traffic upstream and
    post-process the upstream response (cookies, CORS). Every intercepted
    request ends in exactly one ``ProxyOutcome``.
    """

    def __init__(
        self,
        app: ASGIApp,
        config: ProxyConfig,
        forwarder: Optional[ProxyForwarder] = None,
    ):
        super().__init__(app)
        self.config = config
        self.forwarder = forwarder or ProxyForwarder(config)

    @property
    def log_prefix(self) -> str:
        return "[Proxy PROD]" if self.config.is_production else "[Proxy]"

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.scope["path"]
        if not intercepts(path):
            return await call_next(request)

        classification = classify_path(path)
        outcome = await self.handle(request, classification, call_next)
        proxy_outcomes.labels(
            classification=classification.value, outcome=outcome_label(outcome)
        ).inc()
        return outcome_to_response(outcome)

    async def handle(
        self,
        request: Request,
        classification: PathClassification,
        call_next: RequestResponseEndpoint,
    ) -> ProxyOutcome:
        path = request.scope["path"]

        if classification is PathClassification.BYPASS:
            logger.info(f"{self.log_prefix} local API bypass: {path}")
            return Passthrough(await call_next(request))

        if self.config.is_development:
            logger.debug(f"{self.log_prefix} path={path} method={request.method}")

        host = request.headers.get("x-forwarded-host") or request.headers.get("host")
        if not self.config.is_production and not self.is_approved(host):
            logger.warning(f"{self.log_prefix} blocked unauthorized host: {host}")
            return Forbidden(host=host)

        if classification is PathClassification.PROXIED:
            return await self.proxy(request)

        response = await call_next(request)
        if classification is PathClassification.DYNAMIC_PAGE:
            response.headers["Cache-Control"] = "no-store"
        return Passthrough(response)

    def is_approved(self, host: Optional[str]) -> bool:
        localhost = is_localhost(host)
        vercel = is_vercel_host(host, self.config.allowed_domain)
        logger.debug(
            f"{self.log_prefix} Host: {host}, isLocalhost: {localhost}, "
            f"isVercelProxy: {vercel}"
        )
        return localhost or vercel

    async def proxy(self, request: Request) -> ProxyOutcome:
        inbound = await InboundRequest.from_request(request)
        outcome = await self.forwarder.forward(inbound)
        if not isinstance(outcome, UpstreamResponse):
            return outcome

        headers = rewrite_response_cookies(outcome.headers, self.config, inbound.host)
        headers = annotate_cors(headers, self.config, inbound.origin)
        return UpstreamResponse(
            status_code=outcome.status_code, headers=headers, body=outcome.body
        )
