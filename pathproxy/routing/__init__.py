from .table import CustomHeaderBinding, ProxyRule, RoutingTable, RoutingTableHolder
from .resolver import resolve_proxy
from .config_loader import load_routing_table, parse_routing_table

# Active routing configuration shared by all request handlers
routing_tables = RoutingTableHolder()

__all__ = [
    "CustomHeaderBinding",
    "ProxyRule",
    "RoutingTable",
    "RoutingTableHolder",
    "resolve_proxy",
    "load_routing_table",
    "parse_routing_table",
    "routing_tables",
]
