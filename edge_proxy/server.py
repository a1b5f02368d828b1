import logging
from typing import Optional, Sequence

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from edge_proxy.config import ProxyConfig, load_config
from edge_proxy.proxy.forwarder import ProxyForwarder
from edge_proxy.proxy.middleware import ProxyMiddleware
from edge_proxy.routes import router
from edge_proxy.vars import HOST, OTLP_ENDPOINT, OTLP_HEADERS, PORT, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that drops ASGI body spans.
    Proxied responses would otherwise add one span per body chunk.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


_tracing_configured = False


def configure_tracing() -> None:
    global _tracing_configured
    if _tracing_configured:
        return
    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    )
    if OTLP_ENDPOINT:
        logger.info(f"[Tracing] exporting spans to {OTLP_ENDPOINT}")
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=((OTLP_HEADERS).split(",") if OTLP_HEADERS else None),
        )
        trace.get_tracer_provider().add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )
    _tracing_configured = True


app_info = Info("edge_proxy_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})


def create_app(
    config: Optional[ProxyConfig] = None,
    forwarder: Optional[ProxyForwarder] = None,
    instrument: bool = True,
) -> FastAPI:
    """Build the edge application; ``config`` defaults to the process environment."""
    config = config or load_config()

    app = FastAPI(title=SERVICE_NAME)
    app.state.config = config
    app.include_router(router)
    app.add_middleware(ProxyMiddleware, config=config, forwarder=forwarder)

    if instrument:
        Instrumentator().instrument(app).expose(app)
        configure_tracing()
        FastAPIInstrumentor.instrument_app(app)

    return app


def main() -> None:
    import uvicorn

    uvicorn.run("edge_proxy.server:create_app", factory=True, host=HOST, port=PORT)


if __name__ == "__main__":
    main()
