"""Per-request capability resolution for the integration families."""

import logging
from typing import Awaitable, Callable, Dict, Optional

from canvas_relay.infra.metrics import connection_lookups_total
from canvas_relay.models.integration import (
    GMAIL_FULL_PERMISSIONS,
    EffectiveCapability,
    IntegrationConfig,
)
from canvas_relay.models.node import NodeConfig
from canvas_relay.services.connection_store import lookup_connection_id

logger = logging.getLogger(__name__)

ConnectionLookup = Callable[[str, str], Awaitable[Optional[str]]]


async def _safe_lookup(lookup: ConnectionLookup, user_id: str, provider: str) -> Optional[str]:
    """Connection id, or None when the lookup fails."""
    try:
        return await lookup(user_id, provider)
    except Exception as e:
        connection_lookups_total.labels(provider=provider, status="error").inc()
        logger.warning(
            "Connection lookup failed",
            extra={"user_id": user_id, "provider": provider, "error": str(e)}
        )
        return None


async def resolve_google_connection(user_id: str, lookup: ConnectionLookup = lookup_connection_id) -> Optional[str]:
    """The user's Google connection id, looked up once per request."""
    return await _safe_lookup(lookup, user_id, "google")


def _capability(family: str, declared: Optional[IntegrationConfig], connection_id: Optional[str]) -> EffectiveCapability:
    return EffectiveCapability(
        family=family,
        config=declared or IntegrationConfig(),
        connection_id=connection_id,
    )


def resolve_gmail(declared: Optional[IntegrationConfig], google_connection_id: Optional[str]) -> EffectiveCapability:
    """
    Gmail capability.

    A Google connection alone unlocks Gmail: when the node's Gmail config
    is missing, disabled or lacks canSend, it is widened to the full
    permission set on that connection.
    """
    connection_id = (declared.connection_id if declared else None) or google_connection_id
    if google_connection_id and (declared is None or not declared.enabled or not declared.grants("canSend")):
        widened = IntegrationConfig(
            enabled=True,
            connectionId=connection_id,
            permissions=dict(GMAIL_FULL_PERMISSIONS),
            requireConfirmation=False,
            maxEmailsPerHour=50,
        )
        return EffectiveCapability(family="gmail", config=widened, connection_id=connection_id, widened=True)
    return _capability("gmail", declared, connection_id)


async def resolve_capabilities(
    node: NodeConfig,
    user_id: str,
    lookup: ConnectionLookup = lookup_connection_id,
) -> Dict[str, EffectiveCapability]:
    """
    Resolve one EffectiveCapability per family for the target node.

    The Google connection is resolved once and shared by value across
    Gmail, Sheets, Docs and Calendar. Slack resolves its own connection
    only when it is enabled without a configured id. Lookup failures
    degrade a family to unusable.

    Args:
        node: Target node configuration
        user_id: Requesting user
        lookup: ``(user_id, provider) -> connection id | None``

    Returns:
        Mapping of family name to its capability
    """
    google_connection_id = await resolve_google_connection(user_id, lookup)

    gmail = resolve_gmail(node.gmail, google_connection_id)
    gmail_connection_id = gmail.connection_id

    sheets_connection_id = (node.sheets.connection_id if node.sheets else None) or gmail_connection_id
    sheets = _capability("sheets", node.sheets, sheets_connection_id)

    docs = _capability(
        "docs",
        node.docs,
        (node.docs.connection_id if node.docs else None) or gmail_connection_id or sheets_connection_id,
    )
    calendar = _capability(
        "calendar",
        node.calendar,
        (node.calendar.connection_id if node.calendar else None) or gmail_connection_id or sheets_connection_id,
    )

    slack_connection_id = node.slack.connection_id if node.slack else None
    if node.slack and node.slack.enabled and not slack_connection_id:
        slack_connection_id = await _safe_lookup(lookup, user_id, "slack")
    slack = _capability("slack", node.slack, slack_connection_id)

    capabilities = {
        "gmail": gmail,
        "sheets": sheets,
        "docs": docs,
        "slack": slack,
        "calendar": calendar,
    }
    logger.debug(
        "Resolved integration capabilities",
        extra={
            "user_id": user_id,
            "usable": [name for name, capability in capabilities.items() if capability.usable],
            "gmail_widened": gmail.widened,
        }
    )
    return capabilities
