"""Request context middleware.

Binds an operation context to each request, so every line logged while
handling it carries the request id, and writes one access line per
request.
"""

import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from recruitflow_core.observability.logging import OperationContext, get_logger, operation_scope

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Paths not worth a log line
QUIET_PATHS = {"/healthz", "/api/health"}


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        context = OperationContext(
            operation_id=request_id,
            operation=f"{request.method} {request.url.path}",
        )
        request.state.operation = context

        started = time.monotonic()
        with operation_scope(context):
            try:
                response = await call_next(request)
            except Exception:
                logger.error("Request failed", exc_info=True)
                raise

            response.headers[REQUEST_ID_HEADER] = request_id
            if request.url.path not in QUIET_PATHS:
                logger.info(
                    "Request handled",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - started) * 1000, 2),
                )
        return response
