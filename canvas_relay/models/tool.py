"""Tool definitions and normalized tool-call records."""

from dataclasses import dataclass, field
from typing import Dict, Any

from pydantic import BaseModel, Field


class ToolDefinition(BaseModel):
    """A tool one integration family offers to the model."""
    name: str = Field(..., description="Wire name, prefixed by family (e.g. 'gmail_send')")
    description: str = Field(..., description="Tool description shown to the model")
    input_schema: Dict[str, Any] = Field(..., description="JSON Schema for the tool input")
    required_capability: str = Field(
        ...,
        description="Permission key that must be granted for the tool to be offered (e.g. 'canSend')"
    )

    def to_wire(self) -> Dict[str, Any]:
        """Provider wire schema: {name, description, input_schema}."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass
class ToolCallRequest:
    """A tool call extracted from a provider turn, independent of wire shape."""
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCallResult:
    """Outcome of one executed tool call. `result` is JSON text."""
    tool_call_id: str
    result: str
    is_error: bool = False
