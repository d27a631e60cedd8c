def is_redirect(status_code: int) -> bool:
    return 300 <= status_code < 400


def rewrite_location_header(
    location: str, status_code: int, server_host: str, server_port: int
) -> str:
    """
    Re-embed an absolute redirect target so the client's next hop comes back here.

    Only 3xx responses are touched. Relative locations already resolve against
    the proxied base the client holds, so they are returned unchanged.
    """
    if not location or not is_redirect(status_code):
        return location
    if not location.startswith("http://") and not location.startswith("https://"):
        return location
    return f"http://{server_host}:{server_port}/{location}"
