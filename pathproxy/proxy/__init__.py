from .target_url import build_candidate, normalize_target_url
from .redirects import rewrite_location_header
from .headers import inject_custom_headers, prepare_headers
from .dispatcher import forward_request, next_request_id

__all__ = [
    "build_candidate",
    "normalize_target_url",
    "rewrite_location_header",
    "inject_custom_headers",
    "prepare_headers",
    "forward_request",
    "next_request_id",
]
