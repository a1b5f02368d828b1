"""
Tests for the upstream forwarder.

Tests cover:
- Upstream origin resolution and GraphQL path mapping
- Header forwarding (host, X-Forwarded-*, hop-by-hop removal)
- Body handling per method
- Response header filtering and multiple Set-Cookie values
- Timeout, cancellation and network error outcomes
- Exactly one upstream call per request
"""

import asyncio
import json
import logging

import httpx
import pytest
from starlette.requests import Request

from edge_proxy.config import Environment, ProxyConfig
from edge_proxy.proxy.forwarder import (
    ProxyForwarder,
    filter_response_headers,
    prepare_headers,
    resolve_upstream_target,
)
from edge_proxy.proxy.models import (
    InboundRequest,
    Timeout,
    UpstreamError,
    UpstreamResponse,
    UpstreamTarget,
)


def make_request(
    method="GET", path="/api/me", query="", headers=None, body=None, raw_path=None
):
    return InboundRequest(
        method=method,
        path=path,
        query=query,
        headers=httpx.Headers(headers or {"host": "localhost:3000"}),
        body=body,
        raw_path=raw_path,
    )


@pytest.mark.asyncio
async def test_inbound_request_keeps_encoded_path_and_query():
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/files/a?b#c",
        "raw_path": b"/api/files/a%3Fb%23c",
        "query_string": b"x=1",
        "headers": [(b"host", b"localhost:3000")],
    }

    inbound = await InboundRequest.from_request(Request(scope))

    assert inbound.path == "/api/files/a?b#c"
    assert inbound.wire_path == "/api/files/a%3Fb%23c"
    assert inbound.query == "x=1"
    assert inbound.body is None


class TestResolveUpstreamTarget:
    def test_production_default_origin(self, prod_config):
        target = resolve_upstream_target(make_request(path="/api/me"), prod_config)

        assert target.url == "https://finance.bhenning.com/api/me"
        assert target.host == "finance.bhenning.com"

    def test_override_origin(self):
        config = ProxyConfig(
            environment=Environment.PRODUCTION,
            upstream_override="http://backend:8443",
        )

        target = resolve_upstream_target(make_request(path="/api/users"), config)

        assert target.url == "http://backend:8443/api/users"
        assert target.host == "backend:8443"

    def test_development_origin(self):
        config = ProxyConfig(development_origin="http://localhost:8443")

        target = resolve_upstream_target(make_request(), config)

        assert target.url == "http://localhost:8443/api/me"

    @pytest.mark.parametrize("path", ["/api/graphql", "/graphql", "/api/graphql/"])
    def test_graphql_aliases(self, prod_config, path):
        target = resolve_upstream_target(
            make_request(path=path, query="query=test"), prod_config
        )

        assert target.url == "https://finance.bhenning.com/graphql?query=test"

    def test_query_preserved(self, prod_config):
        target = resolve_upstream_target(
            make_request(path="/api/search", query="q=hello%20world&tag=foo%2Fbar"),
            prod_config,
        )

        assert target.path_and_query == "/api/search?q=hello%20world&tag=foo%2Fbar"

    def test_encoded_path_forwarded_as_received(self, prod_config):
        request = make_request(
            path="/api/files/a?b#c/d",
            raw_path="/api/files/a%3Fb%23c%2Fd",
            query="x=1",
        )

        target = resolve_upstream_target(request, prod_config)

        assert target.path_and_query == "/api/files/a%3Fb%23c%2Fd?x=1"

    def test_graphql_alias_matched_on_decoded_path(self, prod_config):
        request = make_request(path="/api/graphql", raw_path="/api/%67raphql")

        target = resolve_upstream_target(request, prod_config)

        assert target.path_and_query == "/graphql"


class TestPrepareHeaders:
    target = UpstreamTarget(origin="https://finance.bhenning.com", path_and_query="/")

    def test_inbound_headers_copied(self):
        request = make_request(
            headers={
                "host": "localhost:3000",
                "cookie": "token=abc123",
                "content-type": "application/json",
                "authorization": "Bearer t",
            }
        )

        headers = prepare_headers(request, self.target)

        assert headers["cookie"] == "token=abc123"
        assert headers["content-type"] == "application/json"
        assert headers["authorization"] == "Bearer t"

    def test_host_and_forwarded_headers(self):
        headers = prepare_headers(make_request(), self.target)

        assert headers["host"] == "finance.bhenning.com"
        assert headers["x-forwarded-host"] == "localhost:3000"
        assert headers["x-forwarded-proto"] == "https"

    def test_forwarded_host_is_the_original_host_header(self):
        request = make_request(
            headers={"host": "localhost:3000", "x-forwarded-host": "spoofed.example"}
        )

        headers = prepare_headers(request, self.target)

        assert headers.get_list("x-forwarded-host") == ["localhost:3000"]

    def test_hop_by_hop_headers_removed(self):
        request = make_request(
            headers={
                "host": "localhost:3000",
                "connection": "keep-alive",
                "transfer-encoding": "chunked",
                "upgrade": "websocket",
                "content-length": "12",
                "user-agent": "test-agent",
            }
        )

        headers = prepare_headers(request, self.target)

        for name in ("connection", "transfer-encoding", "upgrade", "content-length"):
            assert name not in headers
        assert headers["user-agent"] == "test-agent"


def test_filter_response_headers_keeps_multiple_cookies():
    headers = httpx.Headers(
        [
            ("content-type", "application/json"),
            ("content-encoding", "gzip"),
            ("content-length", "10"),
            ("connection", "keep-alive"),
            ("set-cookie", "a=1"),
            ("set-cookie", "b=2"),
        ]
    )

    assert filter_response_headers(headers) == [
        ("content-type", "application/json"),
        ("set-cookie", "a=1"),
        ("set-cookie", "b=2"),
    ]


class TestForward:
    @pytest.mark.asyncio
    async def test_successful_get(self, prod_config, upstream):
        recorder = upstream()
        async with recorder.client() as client:
            forwarder = ProxyForwarder(prod_config, client=client)

            outcome = await forwarder.forward(make_request(path="/api/me"))

        assert isinstance(outcome, UpstreamResponse)
        assert outcome.status_code == 200
        assert json.loads(outcome.body) == {"path": "/api/me"}
        assert recorder.call_count == 1
        sent = recorder.requests[0]
        assert sent.method == "GET"
        assert str(sent.url) == "https://finance.bhenning.com/api/me"
        assert sent.headers["host"] == "finance.bhenning.com"
        assert sent.content == b""

    @pytest.mark.asyncio
    async def test_post_forwards_body(self, prod_config, upstream):
        recorder = upstream(lambda request: httpx.Response(201, content=b'{"id": 123}'))
        payload = b'{"name": "test"}'
        async with recorder.client() as client:
            forwarder = ProxyForwarder(prod_config, client=client)

            outcome = await forwarder.forward(
                make_request(method="POST", path="/api/account/insert", body=payload)
            )

        assert outcome.status_code == 201
        assert outcome.body == b'{"id": 123}'
        assert recorder.requests[0].content == payload

    @pytest.mark.asyncio
    async def test_upstream_error_status_relayed(self, prod_config, upstream):
        recorder = upstream(
            lambda request: httpx.Response(
                500, json={"error": "boom"}, headers={"x-trace": "t1"}
            )
        )
        async with recorder.client() as client:
            outcome = await ProxyForwarder(prod_config, client=client).forward(
                make_request()
            )

        assert isinstance(outcome, UpstreamResponse)
        assert outcome.status_code == 500
        assert outcome.header_values("x-trace") == ["t1"]
        assert recorder.call_count == 1

    @pytest.mark.asyncio
    async def test_redirects_not_followed(self, prod_config, upstream):
        recorder = upstream(
            lambda request: httpx.Response(302, headers={"location": "/login"})
        )
        async with recorder.client() as client:
            outcome = await ProxyForwarder(prod_config, client=client).forward(
                make_request()
            )

        assert outcome.status_code == 302
        assert outcome.header_values("location") == ["/login"]
        assert recorder.call_count == 1

    @pytest.mark.asyncio
    async def test_multiple_set_cookie_headers(self, prod_config, upstream):
        recorder = upstream(
            lambda request: httpx.Response(
                200, headers=[("set-cookie", "token=a"), ("set-cookie", "XSRF-TOKEN=b")]
            )
        )
        async with recorder.client() as client:
            outcome = await ProxyForwarder(prod_config, client=client).forward(
                make_request()
            )

        assert outcome.header_values("set-cookie") == ["token=a", "XSRF-TOKEN=b"]

    @pytest.mark.asyncio
    async def test_connect_error(self, prod_config, upstream):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        recorder = upstream(refuse)
        async with recorder.client() as client:
            outcome = await ProxyForwarder(prod_config, client=client).forward(
                make_request()
            )

        assert outcome == UpstreamError(message="Connection refused")
        assert recorder.call_count == 1

    @pytest.mark.asyncio
    async def test_httpx_timeout(self, prod_config, upstream):
        def slow(request):
            raise httpx.ReadTimeout("Request timed out", request=request)

        recorder = upstream(slow)
        async with recorder.client() as client:
            outcome = await ProxyForwarder(prod_config, client=client).forward(
                make_request()
            )

        assert isinstance(outcome, Timeout)
        assert recorder.call_count == 1

    @pytest.mark.asyncio
    async def test_deadline_cancels_hanging_upstream(self):
        """An upstream that never answers is cancelled at the deadline."""
        config = ProxyConfig(environment=Environment.PRODUCTION, proxy_timeout=0.05)
        calls = []
        cancelled = asyncio.Event()

        async def never_answers(request):
            calls.append(request)
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(never_answers)) as client:
            outcome = await ProxyForwarder(config, client=client).forward(make_request())

        assert isinstance(outcome, Timeout)
        assert len(calls) == 1
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_csrf_state_logged_without_values(self, dev_config, upstream, caplog):
        recorder = upstream()
        request = make_request(
            method="POST",
            headers={
                "host": "localhost:3000",
                "x-csrf-token": "secret-token-value",
                "cookie": "XSRF-TOKEN=secret-token-value; token=abc",
            },
            body=b"{}",
        )

        with caplog.at_level(logging.DEBUG, logger="uvicorn.error"):
            async with recorder.client() as client:
                await ProxyForwarder(dev_config, client=client).forward(request)

        assert "CSRF token header: present" in caplog.text
        assert "XSRF-TOKEN cookie: present" in caplog.text
        assert "matches cookie: True" in caplog.text
        assert "secret-token-value" not in caplog.text

    @pytest.mark.asyncio
    async def test_short_lived_client_when_none_injected(self, prod_config, monkeypatch):
        recorder_calls = []

        def handler(request):
            recorder_calls.append(request)
            return httpx.Response(204)

        real_client = httpx.AsyncClient

        def client_factory(**kwargs):
            assert kwargs["follow_redirects"] is False
            return real_client(transport=httpx.MockTransport(handler), **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", client_factory)

        outcome = await ProxyForwarder(prod_config).forward(make_request())

        assert outcome.status_code == 204
        assert len(recorder_calls) == 1
