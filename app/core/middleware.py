import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.logging import request_id_var

logger = logging.getLogger("app.request")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Accepts or mints a request id, exposes it on request.state and to the log
    filter, echoes it in the response header and logs one line per request.

    Share and sign tokens travel in the path, so only the route template is
    logged, never the concrete URL.
    """

    def __init__(self, app, header_name: str = "X-Request-Id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = rid
        reset = request_id_var.set(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(reset)

        route = request.scope.get("route")
        logger.info(
            "request_completed",
            extra={
                "request_id": rid,
                "method": request.method,
                "route": getattr(route, "path", None),
                "status_code": response.status_code,
                "elapsed_ms": int((time.perf_counter() - started) * 1000),
            },
        )
        response.headers[self.header_name] = rid
        return response
