"""API request/response models."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from canvas_relay.models.node import ConversationHistoryEntry, NodeConfig, UploadedAttachment


# ============================================================================
# Ask/Answer Models
# ============================================================================

class AskAnswerRequest(BaseModel):
    """Query sent from one canvas node to another."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    canvas_id: Optional[str] = Field(default=None, alias="canvasId")
    from_node_id: Optional[str] = Field(default=None, alias="fromNodeId")
    to_node_id: Optional[str] = Field(default=None, alias="toNodeId")
    edge_id: Optional[str] = Field(default=None, alias="edgeId")
    query: Optional[str] = None
    query_id: Optional[str] = Field(default=None, alias="queryId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    from_node_config: Optional[NodeConfig] = Field(default=None, alias="fromNodeConfig")
    to_node_config: Optional[NodeConfig] = Field(default=None, alias="toNodeConfig")
    conversation_history: List[ConversationHistoryEntry] = Field(default_factory=list, alias="conversationHistory")
    uploaded_attachments: List[UploadedAttachment] = Field(default_factory=list, alias="uploadedAttachments")

    def missing_required(self) -> bool:
        return not self.query or self.from_node_config is None or self.to_node_config is None or not self.user_id


class AskAnswerSuccess(BaseModel):
    """Successful answer envelope."""
    success: bool = Field(default=True, example=True)
    queryId: str = Field(..., description="Echo of the request's queryId")
    answer: str = Field(..., description="Final answer text")
    timestamp: str = Field(..., description="ISO 8601 completion time")
    duration_ms: int = Field(..., description="Total processing time in milliseconds")


class AskAnswerFailure(BaseModel):
    """Failure envelope (HTTP 400 or 500)."""
    success: bool = Field(default=False, example=False)
    queryId: str = Field(..., description="Echo of the request's queryId, or empty when unreadable")
    error: str = Field(..., description="Human-readable error message")
    timestamp: str
    duration_ms: int
