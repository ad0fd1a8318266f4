"""Registered integration families and routing of tool names to them."""

from typing import List, Optional

from canvas_relay.integrations.base import IntegrationFamily
from canvas_relay.integrations.calendar import CalendarFamily
from canvas_relay.integrations.docs import DocsFamily
from canvas_relay.integrations.gmail import GmailFamily
from canvas_relay.integrations.sheets import SheetsFamily
from canvas_relay.integrations.slack import SlackFamily

# Catalog and dispatch order
FAMILIES: List[IntegrationFamily] = [
    GmailFamily(),
    SheetsFamily(),
    DocsFamily(),
    SlackFamily(),
    CalendarFamily(),
]

FAMILY_NAMES: List[str] = [family.name for family in FAMILIES]


def family_for_tool(
    tool_name: str,
    families: Optional[List[IntegrationFamily]] = None,
) -> Optional[IntegrationFamily]:
    """Family owning a tool name, or None when no prefix matches.

    Looks in the registered families unless another list is given.
    """
    if families is None:
        families = FAMILIES
    for family in families:
        if family.owns(tool_name):
            return family
    return None
