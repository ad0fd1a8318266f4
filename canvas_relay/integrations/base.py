"""Common shape of an integration family (Gmail, Sheets, Docs, Slack, Calendar)."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from canvas_relay.infra.config import config
from canvas_relay.infra.error_handler import classify_error
from canvas_relay.infra.metrics import tool_calls_total, tool_call_duration
from canvas_relay.models.integration import IntegrationConfig
from canvas_relay.models.node import UploadedAttachment
from canvas_relay.models.tool import ToolCallRequest, ToolCallResult, ToolDefinition
from canvas_relay.services.connection_store import is_pro_user

logger = logging.getLogger(__name__)


@dataclass
class ExecutionContext:
    """Everything an executor needs besides the calls themselves."""
    user_id: str
    node_id: Optional[str]
    permissions: Dict[str, bool]
    attachments: List[UploadedAttachment] = field(default_factory=list)
    config: Optional[IntegrationConfig] = None


def tool(
    name: str,
    description: str,
    properties: Dict[str, Any],
    required: List[str],
    capability: str,
) -> ToolDefinition:
    """Shorthand for declaring a family tool with an object input schema."""
    return ToolDefinition(
        name=name,
        description=description,
        input_schema={"type": "object", "properties": properties, "required": required},
        required_capability=capability,
    )


def error_result(tool_call_id: str, payload: Dict[str, Any]) -> ToolCallResult:
    return ToolCallResult(tool_call_id=tool_call_id, result=json.dumps(payload), is_error=True)


class IntegrationFamily:
    """
    One integration domain.

    Subclasses declare their static tool list, the label used for each
    capability in "permission not granted" errors, how to build an API
    client for a user, and one ``op_<suffix>`` coroutine per tool, where
    ``<suffix>`` is the tool name without the family prefix. Operation
    coroutines take ``(client, args, ctx)`` and return a JSON-serialisable
    value.
    """

    name: str = ""
    display_name: str = ""  # used in "requires Pro tier"
    connection_label: str = ""  # used in "not connected or token expired"
    oauth_provider: str = "google"
    tools: List[ToolDefinition] = []
    capability_labels: Dict[str, str] = {}
    sequential: bool = False

    @property
    def prefix(self) -> str:
        return f"{self.name}_"

    def owns(self, tool_name: str) -> bool:
        return tool_name.startswith(self.prefix)

    def list_tools(self, permissions: Optional[Dict[str, bool]]) -> List[ToolDefinition]:
        """Tools whose required capability is granted."""
        if not permissions:
            return []
        return [t for t in self.tools if permissions.get(t.required_capability)]

    def describe_capabilities(self, integration_config: IntegrationConfig) -> str:
        """System prompt blurb for the granted capabilities, or ""."""
        raise NotImplementedError

    async def acquire_client(self, ctx: ExecutionContext) -> Any:
        raise NotImplementedError

    def _definition(self, tool_name: str) -> Optional[ToolDefinition]:
        for definition in self.tools:
            if definition.name == tool_name:
                return definition
        return None

    def _operation(self, tool_name: str) -> Callable[..., Awaitable[Any]]:
        return getattr(self, f"op_{tool_name[len(self.prefix):]}")

    async def _is_pro(self, user_id: str) -> bool:
        return await asyncio.to_thread(is_pro_user, user_id)

    async def execute(self, calls: List[ToolCallRequest], ctx: ExecutionContext) -> List[ToolCallResult]:
        """Execute calls for one family; results come back in call order."""
        if not calls:
            return []

        if config.REQUIRE_PRO_TIER and not await self._is_pro(ctx.user_id):
            logger.info(
                "Integration requires Pro tier",
                extra={"family": self.name, "user_id": ctx.user_id}
            )
            return [
                error_result(call.id, {"error": f"{self.display_name} integration requires Pro tier"})
                for call in calls
            ]

        try:
            client = await self.acquire_client(ctx)
        except Exception as e:
            logger.error(
                "Failed to acquire integration client",
                extra={"family": self.name, "user_id": ctx.user_id, "error": str(e)},
                exc_info=True,
            )
            payload = {
                "error": f"{self.connection_label} not connected or token expired. Please reconnect.",
                "details": str(e),
            }
            return [error_result(call.id, payload) for call in calls]

        if self.sequential:
            return [await self._execute_one(client, call, ctx) for call in calls]
        return list(await asyncio.gather(*(self._execute_one(client, call, ctx) for call in calls)))

    async def _execute_one(self, client: Any, call: ToolCallRequest, ctx: ExecutionContext) -> ToolCallResult:
        start_time = time.time()
        status = "success"
        try:
            definition = self._definition(call.name)
            if definition is None:
                status = "unknown_tool"
                return error_result(call.id, {"error": f"Unknown tool: {call.name}"})

            if not ctx.permissions.get(definition.required_capability):
                status = "denied"
                label = self.capability_labels.get(definition.required_capability, definition.required_capability)
                return error_result(call.id, {"error": f"{label} permission not granted"})

            logger.debug(
                "Executing tool",
                extra={"tool_name": call.name, "node_id": ctx.node_id, "user_id": ctx.user_id}
            )
            result = await self._operation(call.name)(client, call.input, ctx)
            return ToolCallResult(tool_call_id=call.id, result=json.dumps(result, default=str), is_error=False)

        except Exception as e:
            category, retryable, _ = classify_error(e)
            status = category.value
            logger.error(
                "Tool execution failed",
                extra={
                    "tool_name": call.name,
                    "family": self.name,
                    "category": category.value,
                    "retryable": retryable,
                    "error": str(e),
                },
                exc_info=True,
            )
            return error_result(call.id, {"error": str(e) or f"Failed to execute {self.display_name} tool"})

        finally:
            tool_calls_total.labels(tool_name=call.name, family=self.name, status=status).inc()
            tool_call_duration.labels(tool_name=call.name, family=self.name).observe(time.time() - start_time)
