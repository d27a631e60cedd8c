from typing import Optional

from pathproxy.routing.table import ProxyRule, RoutingTable


def is_direct(host: str, table: RoutingTable) -> bool:
    return any(domain in host for domain in table.direct_domains)


def resolve_proxy(host: str, table: RoutingTable) -> Optional[ProxyRule]:
    """
    Pick the upstream proxy for a target host, or None for a direct connection.

    Matching is plain substring containment: a rule for "baidu.com" also
    matches "notbaidu.com.evil.com". Direct domains win over every rule, rules
    are scanned in order, and the default proxy only applies when it has a URL.
    """
    if is_direct(host, table):
        return None

    for rule in table.rules:
        if rule.domain in host:
            return rule

    if table.default_proxy is not None and table.default_proxy.proxy_url:
        return table.default_proxy

    return None
