"""Tool catalog for a request: wire tools plus capability blurbs."""

from typing import Any, Dict, List, Tuple

from canvas_relay.integrations.registry import FAMILIES
from canvas_relay.models.integration import EffectiveCapability


def build_tool_catalog(
    capabilities: Dict[str, EffectiveCapability],
) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Wire tools and capability blurbs for every usable family.

    Tools are concatenated in family order (Gmail, Sheets, Docs, Slack,
    Calendar) and filtered by the granted capabilities; blank blurbs are
    omitted.

    Returns:
        Tuple of (all_tools, addendum)
    """
    all_tools: List[Dict[str, Any]] = []
    addendum: List[str] = []

    for family in FAMILIES:
        capability = capabilities.get(family.name)
        if capability is None or not capability.usable:
            continue

        all_tools.extend(definition.to_wire() for definition in family.list_tools(capability.permissions))

        blurb = family.describe_capabilities(capability.config)
        if blurb:
            addendum.append(blurb)

    return all_tools, addendum


def count_tools_by_family(all_tools: List[Dict[str, Any]]) -> Dict[str, int]:
    counts = {family.name: 0 for family in FAMILIES}
    for wire_tool in all_tools:
        for family in FAMILIES:
            if family.owns(wire_tool["name"]):
                counts[family.name] += 1
                break
    return counts
