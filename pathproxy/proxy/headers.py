import logging
from typing import List, Optional, Tuple

from fastapi import Request

from pathproxy.errors import HeaderResourceReadError
from pathproxy.routing.table import CustomHeaderBinding, RoutingTable

logger = logging.getLogger("uvicorn.error")

# Raw (name, value) pairs, forwarded byte-for-byte
HeaderList = List[Tuple[bytes, bytes]]

# Hop-by-hop request headers plus the ones recomputed for the upstream request
NOT_FORWARDED_HEADERS = {
    b"host",
    b"connection",
    b"content-length",
    b"keep-alive",
    b"proxy-authenticate",
    b"proxy-authorization",
    b"proxy-connection",
    b"te",
    b"trailers",
    b"transfer-encoding",
    b"upgrade",
    b"x-forwarded-for",
}

# Never injected from a header-list file, they would corrupt request framing
EXCLUDED_CUSTOM_HEADERS = {
    b"content-length",
    b"transfer-encoding",
}

_TRIM_CHARS = b" \r\n"


def _connection_tokens(raw_headers) -> set:
    """Header names listed in Connection, which are hop-by-hop for this request only."""
    tokens = set()
    for name, value in raw_headers:
        if name.lower() == b"connection":
            tokens.update(
                token.strip().lower() for token in value.split(b",") if token.strip()
            )
    return tokens


def prepare_headers(request: Request) -> HeaderList:
    """
    Copy inbound headers for the upstream request.

    Host, Content-Length and hop-by-hop headers (including any named in
    Connection) are dropped. X-Forwarded-For is set to the caller's address,
    replacing whatever the caller sent. Values are kept as raw bytes and
    repeated headers keep their order.
    """
    raw_headers = request.headers.raw
    dropped = NOT_FORWARDED_HEADERS | _connection_tokens(raw_headers)
    headers: HeaderList = [
        (name, value) for name, value in raw_headers if name.lower() not in dropped
    ]

    client_ip = request.client.host if request.client else "unknown"
    headers.append((b"X-Forwarded-For", client_ip.encode("latin-1")))
    return headers


def find_header_binding(
    host: str, path: str, table: RoutingTable
) -> Optional[CustomHeaderBinding]:
    """First binding whose domain equals the host and whose prefix starts the path."""
    for binding in table.custom_headers:
        if binding.matches(host, path):
            return binding
    return None


def parse_header_lines(data: bytes) -> HeaderList:
    """
    Parse a header-list file body.

    The first line is reserved and never applied. Every other line is split
    on its first colon; lines without a colon are ignored. Values are not
    decoded, whatever bytes the file holds are sent.
    """
    headers: HeaderList = []
    for row in data.split(b"\n")[1:]:
        name, sep, value = row.partition(b":")
        if not sep:
            continue
        name = name.strip(_TRIM_CHARS)
        if not name or name.lower() in EXCLUDED_CUSTOM_HEADERS:
            continue
        headers.append((name, value.strip(_TRIM_CHARS)))
    return headers


def load_header_lines(headers_path: str) -> HeaderList:
    # Read on every matching request, edits to the file apply immediately
    try:
        with open(headers_path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise HeaderResourceReadError(headers_path, str(e)) from e
    return parse_header_lines(data)


def inject_custom_headers(
    headers: HeaderList,
    host: str,
    path: str,
    table: RoutingTable,
    request_id: Optional[int] = None,
) -> HeaderList:
    """
    Append the headers of the first matching binding to ``headers``.

    An unreadable header file is logged and the request goes on without the
    custom headers. Returns the injected pairs.
    """
    binding = find_header_binding(host, path, table)
    if binding is None:
        return []
    try:
        injected = load_header_lines(binding.headers_path)
    except HeaderResourceReadError as e:
        logger.warning(f"[Headers] id:{request_id} {e.message}")
        return []
    headers.extend(injected)
    logger.debug(
        f"[Headers] id:{request_id} injected {len(injected)} headers from {binding.headers_path}"
    )
    return injected
