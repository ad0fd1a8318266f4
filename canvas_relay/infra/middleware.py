"""Request context, access logging and CORS."""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from canvas_relay.infra.config import config
from canvas_relay.infra.logging import request_id_var

logger = logging.getLogger("canvas_relay.request")

# Not access-logged
QUIET_PATHS = frozenset({"/health", "/health/live", "/health/ready", "/metrics"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the duration of the request and log its outcome."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        quiet = request.url.path in QUIET_PATHS
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "duration_ms": int((time.time() - start_time) * 1000),
                },
                exc_info=True,
            )
            raise
        finally:
            request_id_var.reset(token)

        duration_ms = int((time.time() - start_time) * 1000)
        if not quiet:
            logger.info(
                "Request completed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = str(duration_ms)
        return response


def cors_origins() -> list:
    """Allowed origins from CORS_ORIGINS; wildcards only in development."""
    raw = config.CORS_ORIGINS
    if not raw:
        return ["*"] if config.APP_ENV == "development" else []
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if config.APP_ENV != "development":
        origins = [origin for origin in origins if origin != "*"]
    return origins


def setup_cors(app):
    """Canvas frontends call the relay directly from the browser."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID", "X-Response-Time-Ms"],
    )
