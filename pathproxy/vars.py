import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "pathproxy")

PROXY_HOST = os.environ.get("PROXY_HOST", "0.0.0.0")
PROXY_PORT = int(os.environ.get("PROXY_PORT", "3000"))
PROXY_CONFIG_FILE = os.environ.get("PROXY_CONFIG_FILE", "proxy_config.xml")

# Host and port advertised in rewritten redirect locations
PUBLIC_HOST = os.environ.get(
    "PUBLIC_HOST", "localhost" if PROXY_HOST in ("", "0.0.0.0", "::") else PROXY_HOST
)
PUBLIC_PORT = int(os.environ.get("PUBLIC_PORT", str(PROXY_PORT)))

# Unset means the transport default applies
_proxy_timeout = os.environ.get("PROXY_TIMEOUT", "")
PROXY_TIMEOUT = float(_proxy_timeout) if _proxy_timeout else None

UPSTREAM_ALLOW_UNSAFE_CERT = (
    os.getenv("UPSTREAM_ALLOW_UNSAFE_CERT", "false").lower() == "true"
)

CONFIG_RELOAD_MODE = os.getenv("CONFIG_RELOAD_MODE", "swap").lower()
CONFIG_RELOAD_INTERVAL = float(os.getenv("CONFIG_RELOAD_INTERVAL", "2"))

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
