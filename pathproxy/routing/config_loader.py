"""
Load the XML routing config into a RoutingTable.

Expected layout::

    <config>
      <defaultProxy proxyUrl="http://proxy:8080" username="u" password="p"/>
      <proxy domain="google.com" proxyUrl="socks5://127.0.0.1:1080"/>
      <directDomains>
        <domain>example.com</domain>
      </directDomains>
      <customHeaders>
        <header domain="api.example.com" pathPrefix="/v1" headersPath="headers.txt"/>
      </customHeaders>
    </config>
"""

import logging
from typing import Optional

from lxml import etree

from pathproxy.errors import ConfigLoadError
from pathproxy.routing.table import CustomHeaderBinding, ProxyRule, RoutingTable
from pathproxy.utils import mask_proxy_url

logger = logging.getLogger("uvicorn.error")

ROOT_ELEMENT = "config"


def _attr(element, name: str) -> Optional[str]:
    value = element.get(name)
    return value.strip() if value is not None else None


def _parse_rule(element) -> ProxyRule:
    return ProxyRule(
        domain=_attr(element, "domain") or "",
        proxy_url=_attr(element, "proxyUrl") or "",
        username=_attr(element, "username") or None,
        password=element.get("password") or None,
    )


def parse_routing_table(data: bytes, source: str = "<memory>") -> RoutingTable:
    parser = etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        recover=False,
    )
    try:
        root = etree.fromstring(data, parser)
    except etree.XMLSyntaxError as e:
        raise ConfigLoadError(f"Failed to parse XML config {source}: {e}") from e

    if root.tag != ROOT_ELEMENT:
        raise ConfigLoadError(
            f"Unexpected root element <{root.tag}> in {source}, expected <{ROOT_ELEMENT}>"
        )

    default_element = root.find("defaultProxy")
    default_proxy = _parse_rule(default_element) if default_element is not None else None

    rules = [_parse_rule(el) for el in root.findall("proxy")]
    # An empty entry is kept, it matches every host
    direct_domains = [
        (el.text or "").strip() for el in root.findall("directDomains/domain")
    ]
    custom_headers = [
        CustomHeaderBinding(
            domain=_attr(el, "domain") or "",
            path_prefix=el.get("pathPrefix") or "",
            headers_path=_attr(el, "headersPath") or "",
        )
        for el in root.findall("customHeaders/header")
    ]

    return RoutingTable.build(
        default_proxy=default_proxy,
        rules=rules,
        direct_domains=direct_domains,
        custom_headers=custom_headers,
    )


def load_routing_table(path: str) -> RoutingTable:
    """Read and parse the config file. Raises ConfigLoadError on any failure."""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise ConfigLoadError(f"Failed to read config file {path}: {e}") from e

    table = parse_routing_table(data, source=path)

    logger.info(f"[Config] Loaded {len(table.rules)} proxy rules from {path}")
    logger.info(f"[Config] Direct domains: {len(table.direct_domains)}")
    if "" in table.direct_domains:
        logger.warning(f"[Config] Empty direct domain in {path}, every host goes direct")
    if table.default_proxy is not None and table.default_proxy.proxy_url:
        logger.info(
            f"[Config] Default proxy: {mask_proxy_url(table.default_proxy.proxy_url)}"
        )
    else:
        logger.info("[Config] Default proxy: none")
    if table.custom_headers:
        logger.info(f"[Config] Custom header bindings: {len(table.custom_headers)}")
    return table
