"""
Mapping of proxy failures and outcomes onto HTTP responses.

Failure taxonomy:
- unauthorized host: rejected before any network call -> 403
- timeout: the upstream missed the deadline -> 504
- upstream network error (DNS, connect, TLS, protocol) -> 502
- upstream HTTP error (non-2xx): not a failure here, relayed verbatim
"""

import asyncio

import httpx
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from edge_proxy.proxy.models import (
    Forbidden,
    Passthrough,
    ProxyOutcome,
    Timeout,
    UpstreamError,
    UpstreamResponse,
)


def classify_failure(exc: BaseException) -> ProxyOutcome:
    """Turn an exception raised by the upstream call into an outcome."""
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return Timeout()
    message = str(exc) or type(exc).__name__
    return UpstreamError(message=message)


def outcome_label(outcome: ProxyOutcome) -> str:
    if isinstance(outcome, Passthrough):
        return "passthrough"
    if isinstance(outcome, Forbidden):
        return "forbidden"
    if isinstance(outcome, Timeout):
        return "timeout"
    if isinstance(outcome, UpstreamError):
        return "upstream_error"
    return "upstream_response"


def outcome_to_response(outcome: ProxyOutcome) -> Response:
    if isinstance(outcome, Passthrough):
        return outcome.response

    if isinstance(outcome, Forbidden):
        return PlainTextResponse("Forbidden", status_code=403)

    if isinstance(outcome, Timeout):
        return JSONResponse(
            {"error": "Request timeout", "message": outcome.message},
            status_code=504,
        )

    if isinstance(outcome, UpstreamError):
        return JSONResponse(
            {"error": "Proxy error", "message": outcome.message},
            status_code=502,
        )

    if isinstance(outcome, UpstreamResponse):
        response = Response(content=outcome.body, status_code=outcome.status_code)
        for key, value in outcome.headers:
            response.headers.append(key, value)
        return response

    raise TypeError(f"Unknown proxy outcome: {outcome!r}")
