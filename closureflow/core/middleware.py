"""Request tracing, error mapping and timing for the REST layer."""

import time
import uuid
from datetime import datetime
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import WorkflowEngineError, create_error_response, get_status_code_for_error
from .logging import clear_logging_context, get_logger, set_logging_context

logger = get_logger(__name__)

REQUEST_CONTEXT_KEYS = ("request_id", "method", "path")


async def workflow_error_handler(request: Request, exc: WorkflowEngineError) -> JSONResponse:
    """Render an engine error with the status code its kind maps to."""
    status_code = get_status_code_for_error(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(
        f"{request.method} {request.url.path} failed with {exc.error_code}: {exc.message}",
        extra={"extra_fields": {"error_details": exc.to_dict()}}
    )
    return JSONResponse(status_code=status_code, content=create_error_response(exc))


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id and turns unexpected exceptions into 500s."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_logging_context(request_id=request_id, method=request.method, path=request.url.path)
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"Unexpected error on {request.method} {request.url.path}: {str(e)}", exc_info=True)
            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "message": "An unexpected error occurred",
                    "details": {
                        "error_type": type(e).__name__,
                        "timestamp": datetime.utcnow().isoformat()
                    },
                    "request_id": request_id
                },
                headers={"X-Request-ID": request_id}
            )
        finally:
            clear_logging_context(*REQUEST_CONTEXT_KEYS)

        response.headers["X-Request-ID"] = request_id
        return response


class PerformanceMonitoringMiddleware(BaseHTTPMiddleware):
    """Adds ``X-Response-Time`` and warns about slow requests."""

    def __init__(self, app, slow_request_threshold: float = 5.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        if duration > self.slow_request_threshold:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} took {duration:.3f}s "
                f"(threshold: {self.slow_request_threshold}s)"
            )
        else:
            logger.debug(f"{request.method} {request.url.path} -> {response.status_code} in {duration:.3f}s")

        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response
