from typing import Optional

import httpx


def mask_secret(text: str, secret: Optional[str]) -> str:
    return text.replace(secret, f"{secret[:2]}****") if secret else text


def mask_proxy_url(proxy_url: str) -> str:
    """Hide the password part of a proxy URL so it can be logged."""
    if not proxy_url or "@" not in proxy_url:
        return proxy_url
    try:
        url = httpx.URL(proxy_url)
    except httpx.InvalidURL:
        return "<invalid proxy url>"
    if not url.password:
        return proxy_url
    return str(url.copy_with(password="****"))
