import logging
from typing import Optional, Dict
from contextlib import contextmanager

from opentelemetry.trace import Tracer

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    request_id: int,
    start_message: str,
    extra_attrs: Optional[Dict] = None,
):
    """Context manager to create a span, tag it with the request id, and log a start message."""
    with tracer.start_as_current_span(operation) as span:
        span.set_attribute("proxy.request_id", request_id)
        if extra_attrs:
            for k, v in extra_attrs.items():
                span.set_attribute(k, v)
        logger.info(start_message)
        yield span
