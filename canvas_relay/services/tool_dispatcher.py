"""Routing of normalized tool calls to integration family executors."""

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from canvas_relay.infra.config import config
from canvas_relay.integrations.base import ExecutionContext, IntegrationFamily, error_result
from canvas_relay.integrations.registry import FAMILIES, family_for_tool
from canvas_relay.models.integration import EffectiveCapability
from canvas_relay.models.node import UploadedAttachment
from canvas_relay.models.tool import ToolCallRequest, ToolCallResult

logger = logging.getLogger(__name__)

ATTACHMENT_TOOLS = ("gmail_send", "gmail_draft")

RESPECT_EXPLICIT = "respect_explicit"
OVERRIDE_FALSY = "override_falsy"
INJECTION_POLICIES = (RESPECT_EXPLICIT, OVERRIDE_FALSY)


def _should_inject(call_input: Dict[str, Any], policy: str) -> bool:
    if policy == OVERRIDE_FALSY:
        return not call_input.get("includeUploadedAttachments")
    return call_input.get("includeUploadedAttachments") is None


def inject_uploaded_attachments(
    calls: List[ToolCallRequest],
    attachments: List[UploadedAttachment],
    policy: str = RESPECT_EXPLICIT,
) -> List[ToolCallRequest]:
    """
    Set includeUploadedAttachments on gmail_send/gmail_draft calls.

    Applies only when files were uploaded. Under ``respect_explicit`` an
    explicit false is kept; under ``override_falsy`` any falsy value is
    replaced. The given calls are never modified; copies are returned.
    """
    if policy not in INJECTION_POLICIES:
        raise ValueError(f"Unknown attachment injection policy: {policy}")
    if not attachments:
        return list(calls)

    injected = []
    for call in calls:
        if call.name in ATTACHMENT_TOOLS and _should_inject(call.input, policy):
            logger.info(
                "Auto-injecting uploaded attachments",
                extra={"tool_name": call.name, "tool_call_id": call.id, "attachments": len(attachments)}
            )
            call = replace(call, input={**call.input, "includeUploadedAttachments": True})
        injected.append(call)
    return injected


@dataclass
class DispatchPlan:
    """Routable calls grouped by family, keeping their position in the turn."""
    partitions: Dict[str, List[Tuple[int, ToolCallRequest]]] = field(default_factory=dict)
    dropped: List[ToolCallRequest] = field(default_factory=list)

    @property
    def routable_count(self) -> int:
        return sum(len(calls) for calls in self.partitions.values())


def _email_confirmation(payload: Dict[str, Any]) -> str:
    text = f"✅ Email sent successfully!\n\nMessage ID: {payload['messageId']}"
    if payload.get("attachmentCount"):
        text += f"\nAttachments: {payload['attachmentCount']}"
    return text


def _calendar_confirmation(payload: Dict[str, Any]) -> str:
    event = payload.get("event") or {}
    start = event.get("start") or {}
    text = (
        f"✅ Calendar event created!\n\n**{event.get('summary')}**\n"
        f"When: {start.get('dateTime') or start.get('date') or 'TBD'}"
    )
    if event.get("location"):
        text += f"\nWhere: {event['location']}"
    if event.get("htmlLink"):
        text += f"\n\n[View in Google Calendar]({event['htmlLink']})"
    return text


def find_success_shortcut(results: List[ToolCallResult]) -> Optional[str]:
    """
    Confirmation text for self-describing successful results, or None.

    Every non-error result is checked in order; one confirmation is
    produced per sent email or created calendar event.
    """
    confirmations = []
    for result in results:
        if result.is_error:
            continue
        try:
            payload = json.loads(result.result)
        except (TypeError, ValueError):
            continue
        if not isinstance(payload, dict):
            continue
        if payload.get("sent") is True and payload.get("messageId"):
            confirmations.append(_email_confirmation(payload))
        elif payload.get("created") is True and isinstance(payload.get("event"), dict):
            confirmations.append(_calendar_confirmation(payload))

    if not confirmations:
        return None
    return "\n\n".join(confirmations)


class ToolDispatcher:
    """Routes tool calls by name prefix and runs families concurrently."""

    def __init__(
        self,
        families: Optional[List[IntegrationFamily]] = None,
        injection_policy: Optional[str] = None,
    ):
        self.families = families if families is not None else FAMILIES
        self.injection_policy = injection_policy or config.ATTACHMENT_INJECTION_POLICY

    def prepare(
        self,
        calls: List[ToolCallRequest],
        attachments: Optional[List[UploadedAttachment]] = None,
    ) -> List[ToolCallRequest]:
        """The calls as they will be executed, with attachment injection applied."""
        return inject_uploaded_attachments(calls, attachments or [], self.injection_policy)

    def partition(
        self,
        calls: List[ToolCallRequest],
        capabilities: Dict[str, EffectiveCapability],
    ) -> DispatchPlan:
        """Group routable calls by family; unroutable calls are dropped."""
        plan = DispatchPlan()
        for position, call in enumerate(calls):
            family = family_for_tool(call.name, self.families)
            capability = capabilities.get(family.name) if family else None
            if family is None or capability is None or not capability.usable:
                logger.warning(
                    "Dropping unroutable tool call",
                    extra={
                        "tool_name": call.name,
                        "tool_call_id": call.id,
                        "family": family.name if family else None,
                    }
                )
                plan.dropped.append(call)
                continue
            plan.partitions.setdefault(family.name, []).append((position, call))
        return plan

    async def dispatch(
        self,
        calls: List[ToolCallRequest],
        capabilities: Dict[str, EffectiveCapability],
        user_id: str,
        node_id: Optional[str] = None,
        attachments: Optional[List[UploadedAttachment]] = None,
    ) -> List[ToolCallResult]:
        """
        Execute one turn's tool calls.

        Families run concurrently; a family that raises does not cancel
        its siblings and turns into error results for its own calls.

        Returns:
            Results for the routable calls, in request order
        """
        attachments = attachments or []
        calls = self.prepare(calls, attachments)
        plan = self.partition(calls, capabilities)
        if not plan.partitions:
            return []

        families = {family.name: family for family in self.families}
        names = list(plan.partitions.keys())

        async def run(name: str) -> List[ToolCallResult]:
            capability = capabilities[name]
            ctx = ExecutionContext(
                user_id=user_id,
                node_id=node_id,
                permissions=capability.permissions,
                attachments=attachments,
                config=capability.config,
            )
            return await families[name].execute([call for _, call in plan.partitions[name]], ctx)

        outcomes = await asyncio.gather(*(run(name) for name in names), return_exceptions=True)

        ordered: List[Tuple[int, ToolCallResult]] = []
        for name, outcome in zip(names, outcomes):
            positioned = plan.partitions[name]
            if isinstance(outcome, BaseException):
                logger.error(
                    "Integration executor failed",
                    extra={"family": name, "error": str(outcome)},
                    exc_info=outcome,
                )
                outcome = [
                    error_result(call.id, {"error": str(outcome) or f"Failed to execute {name} tools"})
                    for _, call in positioned
                ]
            # Executors return results in call order
            for (position, _), result in zip(positioned, outcome):
                ordered.append((position, result))

        ordered.sort(key=lambda item: item[0])
        return [result for _, result in ordered]
