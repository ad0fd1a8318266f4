"""Ask/answer API router."""

import logging
import time
from datetime import datetime, timezone

import pydantic
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from canvas_relay.api.models import AskAnswerFailure, AskAnswerRequest, AskAnswerSuccess
from canvas_relay.infra.error_handler import ValidationError, http_status_for
from canvas_relay.infra.logging import query_id_var
from canvas_relay.infra.metrics import ask_answer_requests_total
from canvas_relay.services.orchestrator import AskAnswerOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

_orchestrator = None


def get_orchestrator() -> AskAnswerOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = AskAnswerOrchestrator()
    return _orchestrator


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _failure(query_id: str, error: str, status_code: int, start_time: float) -> JSONResponse:
    body = AskAnswerFailure(
        queryId=query_id,
        error=error,
        timestamp=_timestamp(),
        duration_ms=int((time.time() - start_time) * 1000),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _read_request(request: Request) -> AskAnswerRequest:
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("Invalid JSON body") from e
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    try:
        return AskAnswerRequest.model_validate(body)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid request: {e.errors()[0].get('msg', 'validation failed')}") from e


@router.post(
    "/api/canvas/ask-answer/query",
    tags=["Ask/Answer"],
    response_model=AskAnswerSuccess,
    responses={400: {"model": AskAnswerFailure}, 500: {"model": AskAnswerFailure}},
)
async def ask_answer_query(
    request: Request,
    orchestrator: AskAnswerOrchestrator = Depends(get_orchestrator),
):
    """
    Answer a query from one canvas node with another node's model.

    The target node's model may call Gmail, Sheets, Docs, Slack and
    Calendar tools; the loop runs server-side and only the final answer
    is returned.

    **Example Request:**
    ```json
    {
        "query": "What's on my calendar?",
        "queryId": "q-1",
        "userId": "user-123",
        "fromNodeConfig": {"name": "Planner"},
        "toNodeConfig": {
            "model_provider": "claude",
            "model_name": "claude-sonnet",
            "calendar": {"enabled": true, "connectionId": "c1", "permissions": {"canRead": true}}
        }
    }
    ```
    """
    start_time = time.time()
    query_id = ""
    provider = "unknown"

    try:
        body = await _read_request(request)
        query_id = body.query_id or ""
        query_id_var.set(query_id or "-")
        if body.missing_required():
            raise ValidationError("Missing required fields")

        provider = body.to_node_config.model_provider or "unknown"
        outcome = await orchestrator.run(
            query=body.query,
            user_id=body.user_id,
            from_node=body.from_node_config,
            to_node=body.to_node_config,
            conversation_history=body.conversation_history,
            uploaded_attachments=body.uploaded_attachments,
            query_id=query_id,
            to_node_id=body.to_node_id,
            authorization=request.headers.get("authorization"),
        )
    except Exception as e:
        status_code = http_status_for(e)
        ask_answer_requests_total.labels(provider=provider, status="error").inc()
        log = logger.warning if status_code < 500 else logger.error
        log(
            "Ask/answer query failed",
            extra={"query_id": query_id, "provider": provider, "status_code": status_code, "error": str(e)},
            exc_info=status_code >= 500,
        )
        return _failure(query_id, str(e) or "Internal server error", status_code, start_time)

    ask_answer_requests_total.labels(provider=provider, status="success").inc()
    return AskAnswerSuccess(
        queryId=query_id,
        answer=outcome.answer,
        timestamp=_timestamp(),
        duration_ms=int((time.time() - start_time) * 1000),
    )
