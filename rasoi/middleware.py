import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("rasoi.request")

class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id (client-supplied or fresh) and log how it went."""

    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = req_id
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = req_id
        response.headers["X-Response-Time"] = f"{elapsed_ms:.1f}ms"
        log = logger.warning if response.status_code >= 500 else logger.info
        log("%s %s -> %d in %.1fms [%s]", request.method, request.url.path, response.status_code, elapsed_ms, req_id)
        return response
