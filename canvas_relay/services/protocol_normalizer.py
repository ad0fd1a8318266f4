"""Normalization of provider replies into ProviderTurn variants."""

from typing import Any, Dict, List, Optional

from canvas_relay.infra.error_handler import ProviderCallError
from canvas_relay.models.tool import ToolCallRequest, ToolCallResult
from canvas_relay.models.turn import ContentBlockTurn, FlatCallTurn, ProviderTurn


def final_text(data: Dict[str, Any]) -> str:
    """Answer text of a reply: ``content``, else ``message``, else ""."""
    for key in ("content", "message"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def parse_provider_turn(data: Any) -> ProviderTurn:
    """
    Parse a provider reply body.

    Replies carrying a ``contentBlocks`` list are content-block turns;
    everything else is a flat-call turn (with no calls for plain text).
    """
    if not isinstance(data, dict):
        raise ProviderCallError("Malformed provider response")

    text = final_text(data)
    content_blocks = data.get("contentBlocks")
    if isinstance(content_blocks, list):
        return ContentBlockTurn(
            text=text,
            content_blocks=content_blocks,
            stop_reason=str(data.get("stop_reason") or ""),
        )

    tool_calls = data.get("toolCalls")
    return FlatCallTurn(text=text, tool_calls=tool_calls if isinstance(tool_calls, list) else [])


def to_tool_call_requests(turn: ProviderTurn) -> List[ToolCallRequest]:
    if not turn.wants_tools:
        return []
    return turn.tool_call_requests()


def reserialize(
    turn: ProviderTurn,
    results: List[ToolCallResult],
    requests: Optional[List[ToolCallRequest]] = None,
) -> List[Dict[str, Any]]:
    """Messages to append after dispatching the turn's tool calls."""
    return turn.reserialize(results, requests)
