import itertools
import logging
import threading
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse
from opentelemetry import trace

from pathproxy.errors import DispatchError, ResponseStreamError
from pathproxy.proxy.headers import inject_custom_headers, prepare_headers
from pathproxy.proxy.redirects import rewrite_location_header
from pathproxy.proxy.target_url import build_candidate, normalize_target_url
from pathproxy.routing.resolver import resolve_proxy
from pathproxy.routing.table import ProxyRule, RoutingTable
from pathproxy.utils import mask_proxy_url
from pathproxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from pathproxy.utils.traced_requests import traced_request
from pathproxy.vars import (
    PROXY_TIMEOUT,
    PUBLIC_HOST,
    PUBLIC_PORT,
    UPSTREAM_ALLOW_UNSAFE_CERT,
)

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Connection-scoped response headers, the ASGI server does its own framing
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-connection",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

_request_ids = itertools.count(1)
_request_id_lock = threading.Lock()


def next_request_id() -> int:
    with _request_id_lock:
        return next(_request_ids)


@dataclass
class TargetRequest:
    raw_path: str
    raw_query: str
    url: httpx.URL
    proxy_rule: Optional[ProxyRule]
    request_id: int

    @property
    def host(self) -> str:
        # Includes a non-default port, rules and bindings match against it
        return self.url.netloc.decode("ascii")

    @property
    def via_proxy(self) -> bool:
        return self.proxy_rule is not None and not self.proxy_rule.is_direct


def _raw_path(request: Request) -> str:
    raw = request.scope.get("raw_path")
    if raw:
        return raw.split(b"?", 1)[0].decode("latin-1")
    return request.url.path


def resolve_target(
    request: Request, table: RoutingTable, request_id: int
) -> TargetRequest:
    """Extract the path-embedded target URL and pick its route. Raises MalformedTargetURL."""
    raw_path = _raw_path(request)
    raw_query = request.url.query
    url = normalize_target_url(build_candidate(raw_path, raw_query))
    host = url.netloc.decode("ascii")
    return TargetRequest(
        raw_path=raw_path,
        raw_query=raw_query,
        url=url,
        proxy_rule=resolve_proxy(host, table),
        request_id=request_id,
    )


def client_options(rule: Optional[ProxyRule]) -> dict:
    """Keyword arguments for the per-request httpx client. Raises ProxyConfigError."""
    options = {"follow_redirects": False, "trust_env": False}
    if PROXY_TIMEOUT is not None:
        options["timeout"] = httpx.Timeout(PROXY_TIMEOUT)
    if rule is not None and not rule.is_direct:
        options["proxy"] = rule.to_httpx_proxy()
        if UPSTREAM_ALLOW_UNSAFE_CERT:
            options["verify"] = False
    return options


def build_client(rule: Optional[ProxyRule]) -> httpx.AsyncClient:
    return httpx.AsyncClient(**client_options(rule))


def build_response_headers(
    upstream: httpx.Response, span=None
) -> list[tuple[bytes, bytes]]:
    """Upstream headers as raw pairs, minus hop-by-hop ones, with Location re-embedded."""
    raw_headers = []
    for raw_name, raw_value in upstream.headers.raw:
        name = raw_name.lower()
        if name.decode("latin-1") in HOP_BY_HOP_HEADERS:
            continue
        if name == b"location":
            location = raw_value.decode("latin-1")
            rewritten = rewrite_location_header(
                location, upstream.status_code, PUBLIC_HOST, PUBLIC_PORT
            )
            if rewritten != location and span is not None:
                span.set_attribute("proxy.rewritten_location", rewritten)
            raw_value = rewritten.encode("latin-1")
        raw_headers.append((name, raw_value))
    return raw_headers


async def stream_upstream(
    upstream: httpx.Response, client: httpx.AsyncClient, request_id: int
) -> AsyncIterator[bytes]:
    """
    Relay the upstream body byte-for-byte.

    The status line is already on the wire when this runs, so a failure can
    only be logged. Cancellation (caller went away) closes the upstream side.
    """
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        log_exception_with_details(
            logger,
            "[Dispatch]",
            ResponseStreamError(
                f"id:{request_id} response stream failed: {format_exception_message(e)}"
            ),
            level=logging.WARNING,
        )
    finally:
        await upstream.aclose()
        await client.aclose()


async def forward_request(request: Request, table: RoutingTable) -> StreamingResponse:
    """
    Forward one inbound request to its path-embedded target.

    Every routing decision uses the given table snapshot. Redirects are not
    followed; the first upstream response is returned with Location rewritten.
    No retries are attempted.
    """
    request_id = next_request_id()
    target = resolve_target(request, table, request_id)

    if target.via_proxy:
        start_message = (
            f"[Dispatch] id:{request_id} use+proxy "
            f"{mask_proxy_url(target.proxy_rule.proxy_url)} access {target.url}"
        )
    else:
        start_message = f"[Dispatch] id:{request_id} no-proxy {target.url}"

    with traced_request(
        tracer,
        operation="proxy_request",
        request_id=request_id,
        start_message=start_message,
        extra_attrs={
            "proxy.target_url": str(target.url),
            "proxy.method": request.method,
            "proxy.route": "proxy" if target.via_proxy else "direct",
            "proxy.routing_generation": table.generation,
        },
    ) as span:
        headers = prepare_headers(request)
        inject_custom_headers(headers, target.host, target.url.path, table, request_id)
        headers.append((b"Host", target.url.netloc))
        body = await request.body()

        client = build_client(target.proxy_rule)

        upstream = None
        try:
            upstream_request = client.build_request(
                request.method, target.url, headers=headers, content=body or None
            )
            upstream = await client.send(upstream_request, stream=True)
        except httpx.TimeoutException as e:
            span.set_attribute("proxy.error", "timeout")
            raise DispatchError(
                f"Upstream timeout for {target.url}: {format_exception_message(e)}",
                status_code=504,
            ) from e
        except httpx.HTTPError as e:
            span.set_attribute("proxy.error", type(e).__name__)
            raise DispatchError(
                f"Failed to reach {target.url}: {format_exception_message(e)}"
            ) from e
        except (httpx.InvalidURL, UnicodeEncodeError, ValueError) as e:
            span.set_attribute("proxy.error", "request_construction")
            raise DispatchError(
                f"Cannot build upstream request for {target.url}: {e}",
                status_code=500,
            ) from e
        finally:
            if upstream is None:
                await client.aclose()

        span.set_attribute("proxy.status_code", upstream.status_code)
        logger.info(f"[Dispatch] id:{request_id} response code {upstream.status_code}")

        response = StreamingResponse(
            stream_upstream(upstream, client, request_id),
            status_code=upstream.status_code,
        )
        response.raw_headers.extend(build_response_headers(upstream, span))
        return response
