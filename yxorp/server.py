import logging
from contextlib import asynccontextmanager
from typing import Sequence

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

from yxorp.addressing import ProxyOrigin
from yxorp.history import client_history
from yxorp.proxy import ProxyDispatcher, router
from yxorp.vars import (
    DEFAULT_TARGET_SCHEME,
    LANDING_PAGE,
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    PROXY_TIMEOUT,
    PUBLIC_URL,
    SERVICE_NAME,
)

logger = logging.getLogger("uvicorn.error")


def load_landing_page(path: str = LANDING_PAGE) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def build_dispatcher() -> ProxyDispatcher:
    origin = ProxyOrigin.from_url(PUBLIC_URL)
    logger.info(f"{SERVICE_NAME} proxying at {origin.base_url}")
    return ProxyDispatcher(
        origin=origin,
        landing_page=load_landing_page(),
        history=client_history(),
        default_scheme=DEFAULT_TARGET_SCHEME,
        timeout=PROXY_TIMEOUT,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    dispatcher = build_dispatcher()
    app.state.dispatcher = dispatcher
    try:
        yield
    finally:
        await dispatcher.aclose()


app = FastAPI(lifespan=lifespan)
instrumentator = Instrumentator()

instrumentator.instrument(app).expose(app)


class ResponseBodySpanFilter(SpanExporter):
    """
    Drops the per-chunk ASGI body spans that pass-through streaming produces,
    keeping one span per relayed response.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    @staticmethod
    def _is_body_chunk(span: ReadableSpan) -> bool:
        attributes = span.attributes or {}
        return attributes.get("asgi.event.type") == "http.response.body"

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        kept = [span for span in spans if not self._is_body_chunk(span)]
        return self.exporter.export(kept) if kept else SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=(
            dict(h.split("=", 1) for h in OTLP_HEADERS.split(",") if "=" in h)
            or None
        ),
    )
    trace.get_tracer_provider().add_span_processor(
        BatchSpanProcessor(ResponseBodySpanFilter(otlp_exporter))
    )

FastAPIInstrumentor.instrument_app(app, excluded_urls="metrics")

# Add app_name to the metrics
app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})

app.include_router(router)
