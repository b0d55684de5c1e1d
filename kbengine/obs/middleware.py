import logging
import time
import uuid
from collections.abc import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .metrics import HTTP_LATENCY, HTTP_REQUESTS

_log = logging.getLogger("kbengine.http")


def _route_label(request: Request) -> str:
    # "/docs-kb/{doc_id}/search" rather than one series per document id
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.scope.get("path", "")


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """
    Request logging + Prometheus HTTP metrics, labelled by route template.

    The request id is taken from the incoming header (or generated), stored in
    the ASGI scope and echoed on the response.
    """

    def __init__(self, app, exclude_paths=("/metrics", "/healthz"), header_name: str = "x-request-id"):
        super().__init__(app)
        self.exclude_paths = set(exclude_paths)
        self.header_name = header_name

    def _record(self, request: Request, status: int, started: float) -> float:
        duration = time.perf_counter() - started
        label = _route_label(request)
        HTTP_LATENCY.labels(path=label, method=request.method).observe(duration)
        HTTP_REQUESTS.labels(path=label, method=request.method, status=str(status)).inc()
        return duration

    async def dispatch(self, request: Request, call_next: Callable):
        req_id = request.headers.get(self.header_name) or uuid.uuid4().hex
        request.scope[self.header_name] = req_id
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        started = time.perf_counter()
        _log.info(f"[{req_id}] -> {request.method} {request.url.path}")
        try:
            response: Response = await call_next(request)
        except Exception:
            duration = self._record(request, 500, started)
            _log.exception(f"[{req_id}] !! {request.method} {request.url.path} failed in {duration:.3f}s")
            raise

        duration = self._record(request, response.status_code, started)
        _log.info(f"[{req_id}] <- {request.method} {request.url.path} {response.status_code} in {duration:.3f}s")
        response.headers[self.header_name] = req_id
        return response
