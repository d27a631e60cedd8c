import logging
import threading

import httpx
import pytest
from fastapi import Request

from pathproxy.errors import MalformedTargetURL, ProxyConfigError
from pathproxy.proxy import dispatcher
from pathproxy.proxy.dispatcher import (
    build_response_headers,
    client_options,
    next_request_id,
    resolve_target,
    stream_upstream,
)
from pathproxy.routing.table import ProxyRule, RoutingTable


def make_request(path: str, query: str = "", client=("1.2.3.4", 5555)) -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "scheme": "http",
            "server": ("localhost", 3000),
            "root_path": "",
            "path": path,
            "raw_path": path.encode("latin-1"),
            "query_string": query.encode("latin-1"),
            "headers": [],
            "client": client,
        }
    )


class FailingStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        yield b"partial"
        raise httpx.ReadError("connection reset")


class TestRequestIds:
    def test_ids_increase(self):
        first = next_request_id()
        second = next_request_id()
        assert second > first

    def test_ids_are_unique_across_threads(self):
        seen = []
        lock = threading.Lock()

        def allocate():
            ids = [next_request_id() for _ in range(500)]
            with lock:
                seen.extend(ids)

        threads = [threading.Thread(target=allocate) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(seen) == 4000
        assert len(set(seen)) == 4000


class TestResolveTarget:
    def test_direct_target(self):
        target = resolve_target(
            make_request("/https://example.com/search", "q=x"), RoutingTable(), 1
        )

        assert str(target.url) == "https://example.com/search?q=x"
        assert target.host == "example.com"
        assert target.proxy_rule is None
        assert not target.via_proxy
        assert target.raw_query == "q=x"

    def test_proxied_target(self):
        rule = ProxyRule(domain="example.com", proxy_url="http://proxy:8080")
        table = RoutingTable.build(rules=[rule])

        target = resolve_target(make_request("/https:/www.example.com/"), table, 2)

        assert target.proxy_rule is rule
        assert target.via_proxy
        assert target.url.host == "www.example.com"

    def test_rule_without_url_is_direct(self):
        rule = ProxyRule(domain="example.com", proxy_url="")
        table = RoutingTable.build(rules=[rule])

        target = resolve_target(make_request("/example.com/"), table, 3)

        assert target.proxy_rule is rule
        assert not target.via_proxy

    def test_host_keeps_port(self):
        target = resolve_target(make_request("/http://localhost:8080/api"), RoutingTable(), 4)
        assert target.host == "localhost:8080"

    def test_empty_path_is_malformed(self):
        with pytest.raises(MalformedTargetURL):
            resolve_target(make_request("/"), RoutingTable(), 5)


class TestClientOptions:
    def test_direct(self):
        options = client_options(None)

        assert options["follow_redirects"] is False
        assert "proxy" not in options

    def test_proxy_with_credentials(self):
        rule = ProxyRule(
            domain="a.com",
            proxy_url="http://proxy.local:8080",
            username="user",
            password="s3cret",
        )

        proxy = client_options(rule)["proxy"]

        assert proxy.url == httpx.URL("http://proxy.local:8080")
        assert proxy.auth == ("user", "s3cret")

    def test_proxy_with_username_only_has_no_auth(self):
        rule = ProxyRule(domain="a.com", proxy_url="http://proxy.local:8080", username="user")

        proxy = client_options(rule)["proxy"]

        assert proxy.auth is None

    def test_malformed_proxy_url(self):
        rule = ProxyRule(domain="a.com", proxy_url="not a proxy")

        with pytest.raises(ProxyConfigError) as exc_info:
            client_options(rule)
        assert exc_info.value.status_code == 500

    def test_unsafe_cert_only_for_proxied_clients(self, monkeypatch):
        monkeypatch.setattr(dispatcher, "UPSTREAM_ALLOW_UNSAFE_CERT", True)
        rule = ProxyRule(domain="a.com", proxy_url="http://proxy.local:8080")

        assert client_options(rule)["verify"] is False
        assert "verify" not in client_options(None)

    def test_timeout_only_when_configured(self, monkeypatch):
        assert "timeout" not in client_options(None)

        monkeypatch.setattr(dispatcher, "PROXY_TIMEOUT", 12.5)
        assert client_options(None)["timeout"] == httpx.Timeout(12.5)


class TestBuildResponseHeaders:
    def test_location_rewritten_and_hop_headers_dropped(self, monkeypatch):
        monkeypatch.setattr(dispatcher, "PUBLIC_HOST", "localhost")
        monkeypatch.setattr(dispatcher, "PUBLIC_PORT", 3000)
        upstream = httpx.Response(
            302,
            headers=[
                ("Location", "https://example.com/page"),
                ("Set-Cookie", "a=1"),
                ("Set-Cookie", "b=2"),
                ("Connection", "keep-alive"),
                ("Transfer-Encoding", "chunked"),
            ],
        )

        headers = build_response_headers(upstream)

        assert (b"location", b"http://localhost:3000/https://example.com/page") in headers
        assert [v for k, v in headers if k == b"set-cookie"] == [b"a=1", b"b=2"]
        assert all(k not in (b"connection", b"transfer-encoding") for k, _ in headers)

    def test_location_untouched_for_success(self):
        upstream = httpx.Response(200, headers={"Location": "https://example.com/"})

        headers = build_response_headers(upstream)

        assert (b"location", b"https://example.com/") in headers


class TestStreamUpstream:
    @pytest.mark.asyncio
    async def test_relays_chunks(self):
        upstream = httpx.Response(200, stream=httpx.ByteStream(b"hello world"))
        client = httpx.AsyncClient()

        chunks = [chunk async for chunk in stream_upstream(upstream, client, 1)]

        assert b"".join(chunks) == b"hello world"
        assert client.is_closed

    @pytest.mark.asyncio
    async def test_stream_failure_is_logged(self, caplog):
        upstream = httpx.Response(200, stream=FailingStream())
        client = httpx.AsyncClient()

        with caplog.at_level(logging.WARNING, logger="uvicorn.error"):
            chunks = [chunk async for chunk in stream_upstream(upstream, client, 42)]

        assert chunks == [b"partial"]
        assert "id:42 response stream failed" in caplog.text
        assert client.is_closed
