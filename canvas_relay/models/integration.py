"""Per-family integration configuration and the derived per-request capability."""

from dataclasses import dataclass
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


# Permission set Gmail is widened to when only a Google connection is known
GMAIL_FULL_PERMISSIONS: Dict[str, bool] = {
    "canRead": True,
    "canSend": True,
    "canSearch": True,
    "canManageLabels": True,
    "canManageDrafts": True,
}


class IntegrationConfig(BaseModel):
    """Integration settings attached to a target node. Never mutated."""
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    enabled: bool = False
    connection_id: Optional[str] = Field(default=None, alias="connectionId")
    permissions: Dict[str, bool] = Field(default_factory=dict)
    require_confirmation: bool = Field(default=False, alias="requireConfirmation")
    max_emails_per_hour: Optional[int] = Field(default=None, alias="maxEmailsPerHour")
    workspace_name: Optional[str] = Field(default=None, alias="workspaceName")

    def grants(self, capability: str) -> bool:
        return bool(self.permissions.get(capability))


@dataclass(frozen=True)
class EffectiveCapability:
    """What one family may do for this request."""
    family: str
    config: IntegrationConfig
    connection_id: Optional[str] = None
    widened: bool = False

    @property
    def usable(self) -> bool:
        return self.config.enabled and bool(self.connection_id)

    @property
    def permissions(self) -> Dict[str, bool]:
        return dict(self.config.permissions)
