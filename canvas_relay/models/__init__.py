from .tool import ToolDefinition, ToolCallRequest, ToolCallResult
from .integration import IntegrationConfig, EffectiveCapability, GMAIL_FULL_PERMISSIONS
from .node import NodeConfig, ConversationHistoryEntry, UploadedAttachment
from .turn import ContentBlockTurn, FlatCallTurn, ProviderTurn

__all__ = [
    "ToolDefinition",
    "ToolCallRequest",
    "ToolCallResult",
    "IntegrationConfig",
    "EffectiveCapability",
    "GMAIL_FULL_PERMISSIONS",
    "NodeConfig",
    "ConversationHistoryEntry",
    "UploadedAttachment",
    "ContentBlockTurn",
    "FlatCallTurn",
    "ProviderTurn",
]
