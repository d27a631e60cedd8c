from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass, field
from typing import Optional

import httpx

from pathproxy.errors import ProxyConfigError


@dataclass(frozen=True)
class ProxyRule:
    """An upstream proxy plus the host substring it applies to."""

    domain: str = ""
    proxy_url: str = ""
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def is_direct(self) -> bool:
        return not self.proxy_url

    @property
    def has_credentials(self) -> bool:
        # Both halves are required, a lone username is ignored
        return bool(self.username) and bool(self.password)

    def to_httpx_proxy(self) -> httpx.Proxy:
        """Build the httpx proxy for this rule, attaching credentials when complete."""
        try:
            url = httpx.URL(self.proxy_url)
            if not url.scheme or not url.host:
                raise ValueError("proxy URL needs a scheme and a host")
            auth = (self.username, self.password) if self.has_credentials else None
            return httpx.Proxy(url=url, auth=auth)
        except (httpx.InvalidURL, ValueError) as e:
            raise ProxyConfigError(
                f"Invalid proxy URL configured for '{self.domain or 'default'}': {e}"
            ) from e


@dataclass(frozen=True)
class CustomHeaderBinding:
    domain: str
    path_prefix: str
    headers_path: str

    def matches(self, host: str, path: str) -> bool:
        return self.domain == host and path.startswith(self.path_prefix)


@dataclass(frozen=True)
class RoutingTable:
    """
    One generation of routing configuration.

    The table is never mutated; a reload builds a new one and publishes it
    through RoutingTableHolder.replace().
    """

    default_proxy: Optional[ProxyRule] = None
    rules: tuple[ProxyRule, ...] = ()
    direct_domains: tuple[str, ...] = ()
    custom_headers: tuple[CustomHeaderBinding, ...] = ()
    generation: int = field(default=0, compare=False)

    @classmethod
    def build(
        cls,
        default_proxy: Optional[ProxyRule] = None,
        rules=(),
        direct_domains=(),
        custom_headers=(),
    ) -> "RoutingTable":
        return cls(
            default_proxy=default_proxy,
            rules=tuple(rules),
            direct_domains=tuple(direct_domains),
            custom_headers=tuple(custom_headers),
        )


class RoutingTableHolder:
    """
    Process-wide reference to the active RoutingTable.

    Readers call get() once per request and use that snapshot for every
    decision. Writers are serialized; publishing is a single reference swap.
    """

    def __init__(self, table: Optional[RoutingTable] = None):
        self._table = table or RoutingTable()
        self._write_lock = threading.Lock()

    def get(self) -> RoutingTable:
        return self._table

    def replace(self, table: RoutingTable) -> RoutingTable:
        with self._write_lock:
            published = dataclasses.replace(
                table, generation=self._table.generation + 1
            )
            self._table = published
        return published
