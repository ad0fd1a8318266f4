"""FastAPI application for the canvas ask/answer relay."""

import signal
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from canvas_relay.api.routers import ask_answer, health
from canvas_relay.infra.logging import app_logger
from canvas_relay.infra.config import config
from canvas_relay.infra.middleware import RequestContextMiddleware, setup_cors
from canvas_relay.infra.timeout import TimeoutMiddleware, REQUEST_TIMEOUT


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log startup and release pooled database connections on shutdown."""
    app_logger.info("Application starting up")

    yield

    app_logger.info("Application shutting down")

    from canvas_relay.infra.database import engine
    engine.dispose()


app = FastAPI(
    title="Canvas Relay API",
    description="""
    Canvas Relay answers node-to-node queries on a canvas. The answering node's
    model (OpenAI, Claude or Grok) can call Gmail, Google Sheets, Google Docs,
    Slack and Google Calendar tools; tool calls run server-side in a bounded loop
    and only the final answer is returned.
    """,
    version="1.0.0",
    lifespan=lifespan,
    tags_metadata=[
        {
            "name": "Ask/Answer",
            "description": "Node-to-node queries with server-side tool execution",
        },
        {
            "name": "Health",
            "description": "Health check and monitoring endpoints",
        },
    ],
)

app.add_middleware(TimeoutMiddleware, timeout=REQUEST_TIMEOUT)
app.add_middleware(RequestContextMiddleware)
setup_cors(app)

app.include_router(ask_answer.router)
app.include_router(health.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Last resort for errors raised outside the ask/answer envelope."""
    error_id = str(uuid.uuid4())
    app_logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id})
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error. Error ID: {error_id}"},
    )


if __name__ == "__main__":
    import uvicorn

    def signal_handler(sig, frame):
        app_logger.info("Shutting down gracefully")

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    uvicorn.run(
        app,
        host=config.HOST,
        port=config.PORT,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
