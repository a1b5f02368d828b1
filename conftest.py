from typing import Callable, List

import httpx
import pytest

from edge_proxy.config import Environment, ProxyConfig

TEST_UPSTREAM_ORIGIN = "https://finance.bhenning.com"


@pytest.fixture
def dev_config() -> ProxyConfig:
    return ProxyConfig(environment=Environment.DEVELOPMENT)


@pytest.fixture
def prod_config() -> ProxyConfig:
    return ProxyConfig(environment=Environment.PRODUCTION)


class RecordingUpstream:
    """httpx transport handler that records every upstream request it receives."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def upstream():
    """Factory for a recording upstream; defaults to a 200 JSON echo of the path."""

    def _create(handler=None) -> RecordingUpstream:
        if handler is None:

            def handler(request: httpx.Request) -> httpx.Response:
                return httpx.Response(200, json={"path": request.url.path})

        return RecordingUpstream(handler)

    return _create
