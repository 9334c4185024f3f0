import time
import traceback
from datetime import datetime
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from src.core.logger.logger import logger


def _flow_state(request: Request):
    runtime = getattr(request.app.state, "auth", None)
    return runtime.controller.state.value if runtime is not None else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with its correlation ID and the auth flow state around it"""

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.time()

        # Get or generate correlation ID
        correlation_id = request.headers.get("X-Request-ID", str(uuid4()))

        log_context = {
            "request_id": correlation_id,
            "http_method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None,
            "state_before": _flow_state(request),
            "started_at": datetime.utcnow().isoformat() + "Z"
        }

        try:
            response = await call_next(request)
        except Exception as e:
            log_context.update({
                "error": str(e),
                "error_type": e.__class__.__name__,
                "stack_trace": traceback.format_exc(),
                "duration_ms": round((time.time() - start_time) * 1000, 2)
            })
            logger.error("Request failed", extra=log_context)
            raise

        log_context.update({
            "status_code": response.status_code,
            "state_after": _flow_state(request),
            "duration_ms": round((time.time() - start_time) * 1000, 2)
        })
        response.headers["X-Request-ID"] = correlation_id

        logger.info("Request completed", extra=log_context)
        return response
