import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from subsync.core.logging import bind_request_id, latency_bucket_ms


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id (incoming x-request-id or a new uuid) and log completion."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid

        start = time.perf_counter()
        with bind_request_id(rid):
            response = await call_next(request)
        latency = latency_bucket_ms((time.perf_counter() - start) * 1000)

        response.headers[self.header_name] = rid
        logging.getLogger("subsync").info(
            "request.complete",
            extra={
                "request_id": rid,
                "path": request.url.path,
                "method": request.method,
                "status": response.status_code,
                "latency_bucket": latency,
            },
        )
        return response
