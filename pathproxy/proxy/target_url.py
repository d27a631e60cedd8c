import re

import httpx

from pathproxy.errors import MalformedTargetURL

# "https:/example.com" -> scheme followed by one slash and a non-slash
_COLLAPSED_SCHEME = re.compile(r"^(https?:/)([^/])")


def build_candidate(path: str, query: str) -> str:
    """Join the request path (minus its leading slash) and raw query into a target string."""
    candidate = path[1:] if path.startswith("/") else path
    if query:
        candidate = f"{candidate}?{query}"
    return candidate


def repair_target(candidate: str) -> str:
    # Intermediaries often collapse "//" in a path to "/"
    candidate = _COLLAPSED_SCHEME.sub(r"\1/\2", candidate, count=1)
    if not candidate.startswith("http://") and not candidate.startswith("https://"):
        candidate = "http://" + candidate
    return candidate


def normalize_target_url(candidate: str) -> httpx.URL:
    """
    Turn the path-embedded target into an absolute URL.

    Raises MalformedTargetURL when the result has no host or cannot be parsed.
    """
    repaired = repair_target(candidate)
    try:
        url = httpx.URL(repaired)
    except httpx.InvalidURL as e:
        raise MalformedTargetURL(f"Cannot parse target URL '{candidate}': {e}") from e
    if not url.host:
        raise MalformedTargetURL(f"Target URL '{candidate}' has no host")
    return url
