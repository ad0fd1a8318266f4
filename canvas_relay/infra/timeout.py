"""Outer request timeout and the timeout values shared by the HTTP clients."""

import asyncio
import logging
import time
from datetime import datetime, timezone

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from canvas_relay.infra.config import config

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = config.REQUEST_TIMEOUT
PROVIDER_CALL_TIMEOUT = config.PROVIDER_CALL_TIMEOUT
TOOL_HTTP_TIMEOUT = config.TOOL_HTTP_TIMEOUT


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Abort a request that outlives the whole tool loop allowance.

    The reply uses the ask/answer failure shape so canvas clients can
    handle it like any other failed query.
    """

    def __init__(self, app, timeout: int = REQUEST_TIMEOUT):
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("Request timed out", extra={"path": request.url.path, "timeout": self.timeout})
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content={
                    "success": False,
                    "queryId": "",
                    "error": f"Request timeout after {self.timeout} seconds",
                    "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                    "duration_ms": int((time.time() - start_time) * 1000),
                },
            )
