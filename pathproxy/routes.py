import logging

from fastapi import APIRouter, HTTPException, Request

from pathproxy.errors import MalformedTargetURL, PathProxyError
from pathproxy.proxy.dispatcher import forward_request
from pathproxy.routing import routing_tables

router = APIRouter()

logger = logging.getLogger("uvicorn.error")

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


@router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_all(request: Request, path: str):
    """Catch-all route: the request path and query are the target URL."""
    table = routing_tables.get()
    try:
        return await forward_request(request, table)
    except MalformedTargetURL as e:
        logger.warning(f"[Routing] {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except PathProxyError as e:
        logger.error(f"[Routing] {type(e).__name__}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
