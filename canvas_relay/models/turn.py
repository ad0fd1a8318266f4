"""Provider turn shapes.

A provider reply comes back in one of two wire shapes:

- content-block turns (``contentBlocks`` plus ``stop_reason``), where tool
  calls are ``{"type": "tool_use", "id", "name", "input"}`` blocks;
- flat-call turns, where tool calls arrive as a ``toolCalls`` list of
  ``{"id", "name", "input"}``.

Each variant knows how to extract its tool calls and how to append tool
results back onto the conversation in the form its provider expects. The
appended assistant message carries the inputs that were actually executed
(after attachment injection) when those requests are passed in.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .tool import ToolCallRequest, ToolCallResult


def _coerce_input(raw: Any) -> Dict[str, Any]:
    """Tool input as a dict; JSON-string arguments are decoded."""
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


@dataclass
class ContentBlockTurn:
    """Reply in content-block form."""
    text: str
    content_blocks: List[Dict[str, Any]] = field(default_factory=list)
    stop_reason: str = ""

    supports_success_shortcut = False

    @property
    def wants_tools(self) -> bool:
        return self.stop_reason == "tool_use" and bool(self.content_blocks)

    def tool_call_requests(self) -> List[ToolCallRequest]:
        return [
            ToolCallRequest(
                id=str(block.get("id", "")),
                name=str(block.get("name", "")),
                input=_coerce_input(block.get("input")),
            )
            for block in self.content_blocks
            if isinstance(block, dict) and block.get("type") == "tool_use"
        ]

    def reserialize(
        self,
        results: List[ToolCallResult],
        requests: Optional[List[ToolCallRequest]] = None,
    ) -> List[Dict[str, Any]]:
        executed = {request.id: request.input for request in requests or []}
        blocks = [
            {**block, "input": executed[block.get("id")]}
            if isinstance(block, dict) and block.get("type") == "tool_use" and block.get("id") in executed
            else block
            for block in self.content_blocks
        ]
        return [
            {"role": "assistant", "content": blocks},
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": r.tool_call_id,
                        "content": r.result,
                        "is_error": r.is_error,
                    }
                    for r in results
                ],
            },
        ]


@dataclass
class FlatCallTurn:
    """Reply in flat tool-call form (also used for plain text replies)."""
    text: str
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)

    supports_success_shortcut = True

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)

    def tool_call_requests(self) -> List[ToolCallRequest]:
        return [
            ToolCallRequest(
                id=str(call.get("id", "")),
                name=str(call.get("name", "")),
                input=_coerce_input(call.get("input")),
            )
            for call in self.tool_calls
            if isinstance(call, dict)
        ]

    def reserialize(
        self,
        results: List[ToolCallResult],
        requests: Optional[List[ToolCallRequest]] = None,
    ) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": request.id,
                        "type": "function",
                        "function": {
                            "name": request.name,
                            "arguments": json.dumps(request.input),
                        },
                    }
                    for request in (requests if requests is not None else self.tool_call_requests())
                ],
            }
        ]
        for r in results:
            messages.append({"role": "tool", "tool_call_id": r.tool_call_id, "content": r.result})
        return messages


ProviderTurn = Union[ContentBlockTurn, FlatCallTurn]
