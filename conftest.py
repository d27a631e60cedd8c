# Ensure tests import the package from this checkout even when it is not installed.
import os
import sys
from types import SimpleNamespace

import httpx
import pytest

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from pathproxy.routing import routing_tables  # noqa: E402
from pathproxy.routing.table import RoutingTable  # noqa: E402


def upstream_response(status_code: int, body: bytes = b"", headers=None) -> httpx.Response:
    """A not-yet-read response, the way the network transport hands them back."""
    return httpx.Response(status_code, headers=headers, stream=httpx.ByteStream(body))


@pytest.fixture
def active_table():
    """Publish a routing table for the duration of a test, then reset to an empty one."""

    def _publish(table: RoutingTable) -> RoutingTable:
        return routing_tables.replace(table)

    yield _publish
    routing_tables.replace(RoutingTable())


@pytest.fixture
def upstream(monkeypatch):
    """
    Replace the per-request httpx client with one backed by an in-memory upstream.

    ``upstream.handler`` decides the response, ``upstream.requests`` records what
    the upstream received and ``upstream.rules`` the proxy rule each client was
    built for. ``upstream.response(status, body, headers)`` builds handler results.
    """
    from pathproxy.proxy import dispatcher

    state = SimpleNamespace(
        requests=[],
        rules=[],
        options=[],
        response=upstream_response,
        handler=lambda request: upstream_response(200, b"upstream ok"),
    )

    def fake_build_client(rule):
        # Still validates the rule the way the real client factory does
        state.options.append(dispatcher.client_options(rule))
        state.rules.append(rule)

        def handle(request: httpx.Request) -> httpx.Response:
            state.requests.append(request)
            return state.handler(request)

        return httpx.AsyncClient(
            transport=httpx.MockTransport(handle), follow_redirects=False
        )

    monkeypatch.setattr(dispatcher, "build_client", fake_build_client)
    return state
