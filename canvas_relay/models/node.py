"""Canvas node configuration and request-scoped inputs."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .integration import IntegrationConfig


class NodeConfig(BaseModel):
    """Configuration of a canvas node (the asking or the answering agent)."""
    model_config = ConfigDict(populate_by_name=True, extra="allow", protected_namespaces=())

    name: Optional[str] = None
    model_provider: Optional[str] = None
    model_name: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    web_search_enabled: Optional[bool] = None

    gmail: Optional[IntegrationConfig] = None
    sheets: Optional[IntegrationConfig] = None
    docs: Optional[IntegrationConfig] = None
    slack: Optional[IntegrationConfig] = None
    calendar: Optional[IntegrationConfig] = None


class ConversationHistoryEntry(BaseModel):
    """One earlier question/answer exchange between the two nodes."""
    id: Optional[str] = None
    query: str = ""
    answer: str = ""
    timestamp: Optional[str] = None


class UploadedAttachment(BaseModel):
    """A file the user uploaded with the query. `content` is base64."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: str = "application/octet-stream"
    size: int = 0
    content: str = ""
    is_image: bool = Field(default=False, alias="isImage")
