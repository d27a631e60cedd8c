import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from opentelemetry import trace
from prometheus_client import Gauge, Info
from prometheus_fastapi_instrumentator import Instrumentator

from pathproxy.routes import router
from pathproxy.routing import load_routing_table, routing_tables
from pathproxy.routing.reload import ConfigWatcher
from pathproxy.vars import (
    CONFIG_RELOAD_INTERVAL,
    CONFIG_RELOAD_MODE,
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    PROXY_CONFIG_FILE,
    PUBLIC_HOST,
    PUBLIC_PORT,
    SERVICE_NAME,
)

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ConfigLoadError propagates: uvicorn aborts startup and the process exits
    table = routing_tables.replace(load_routing_table(PROXY_CONFIG_FILE))
    logger.info(f"[Config] Routing table generation {table.generation} active")

    watcher = ConfigWatcher(
        PROXY_CONFIG_FILE,
        routing_tables,
        mode=CONFIG_RELOAD_MODE,
        interval=CONFIG_RELOAD_INTERVAL,
    )
    watcher.start()

    logger.info(f"Proxy server listening on http://{PUBLIC_HOST}:{PUBLIC_PORT}")
    logger.info(f"Usage: http://{PUBLIC_HOST}:{PUBLIC_PORT}/https://www.example.com")
    try:
        yield
    finally:
        await watcher.stop()


def configure_tracing(app: FastAPI) -> bool:
    """
    Install the OpenTelemetry SDK provider and instrument the app.

    Without the SDK (the ``otel`` extra) spans stay on the API's no-op
    provider. Spans are exported over OTLP only when OTLP_ENDPOINT is set.
    """
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.info("[Tracing] OpenTelemetry SDK not installed, tracing disabled")
        return False

    provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    if OTLP_ENDPOINT:
        provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(endpoint=OTLP_ENDPOINT, headers=OTLP_HEADERS or None)
            )
        )
    trace.set_tracer_provider(provider)

    # Per-chunk receive/send spans would outnumber the proxied requests
    FastAPIInstrumentor.instrument_app(
        app,
        excluded_urls=r"^https?://[^/]+/metrics$",
        exclude_spans=["receive", "send"],
    )
    return True


# Every other path is a proxy target
app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

Instrumentator().instrument(app).expose(app)
configure_tracing(app)

app_info = Info("pathproxy_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})

routing_generation = Gauge(
    "pathproxy_routing_generation", "Generation of the active routing table"
)
routing_generation.set_function(lambda: routing_tables.get().generation)

# The catch-all proxy route goes last so /metrics stays reachable
app.include_router(router)
