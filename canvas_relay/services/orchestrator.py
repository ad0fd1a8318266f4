"""Ask/answer orchestration loop.

One query from a source node is answered by the target node's provider.
The loop calls the provider, executes any tool calls it asks for, feeds
the results back and repeats until the provider answers in plain text,
a success shortcut fires or the iteration cap is reached.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from canvas_relay.adapters.provider_client import ProviderClient, provider_route
from canvas_relay.infra.config import config
from canvas_relay.infra.metrics import tool_iterations
from canvas_relay.models.integration import EffectiveCapability
from canvas_relay.models.node import ConversationHistoryEntry, NodeConfig, UploadedAttachment
from canvas_relay.models.turn import ProviderTurn
from canvas_relay.services.capability_resolver import ConnectionLookup, resolve_capabilities
from canvas_relay.services.connection_store import lookup_connection_id
from canvas_relay.services.prompt_builder import build_messages, build_system_prompt
from canvas_relay.services.protocol_normalizer import reserialize, to_tool_call_requests
from canvas_relay.services.tool_catalog import build_tool_catalog, count_tools_by_family
from canvas_relay.services.tool_dispatcher import ToolDispatcher, find_success_shortcut

logger = logging.getLogger(__name__)


@dataclass
class OrchestrationState:
    """Per-request loop state; discarded when the loop ends."""
    messages: List[Dict[str, Any]]
    all_tools: List[Dict[str, Any]]
    system_prompt: str
    capabilities: Dict[str, EffectiveCapability]
    iteration: int = 0
    max_iterations: int = 5


@dataclass
class OrchestrationOutcome:
    answer: str
    iterations: int
    shortcut: bool = False
    provider_calls: int = 0
    dropped_calls: List[str] = field(default_factory=list)


class AskAnswerOrchestrator:
    """
    Drives the provider/tool loop for one ask/answer query.

    Collaborators are injectable so the loop can run against stub
    providers, executors and connection lookups.
    """

    def __init__(
        self,
        provider_client: Optional[ProviderClient] = None,
        dispatcher: Optional[ToolDispatcher] = None,
        connection_lookup: ConnectionLookup = lookup_connection_id,
        max_iterations: Optional[int] = None,
    ):
        self.provider_client = provider_client or ProviderClient()
        self.dispatcher = dispatcher or ToolDispatcher()
        self.connection_lookup = connection_lookup
        self.max_iterations = config.MAX_TOOL_ITERATIONS if max_iterations is None else max_iterations

    def _payload(self, user_id: str, to_node: NodeConfig, state: OrchestrationState) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "userId": user_id,
            "messages": state.messages,
            "model": to_node.model_name,
            "systemPrompt": state.system_prompt,
            "temperature": to_node.temperature,
            "maxTokens": to_node.max_tokens,
            "enableWebSearch": to_node.web_search_enabled is not False,
        }
        if state.all_tools:
            payload["tools"] = state.all_tools
        return payload

    async def run(
        self,
        query: str,
        user_id: str,
        from_node: NodeConfig,
        to_node: NodeConfig,
        conversation_history: Optional[List[ConversationHistoryEntry]] = None,
        uploaded_attachments: Optional[List[UploadedAttachment]] = None,
        query_id: Optional[str] = None,
        to_node_id: Optional[str] = None,
        authorization: Optional[str] = None,
    ) -> OrchestrationOutcome:
        """
        Answer one query.

        Raises:
            ValidationError: Unsupported provider (before any provider call)
            ProviderCallError: Any failed provider turn
        """
        start_time = time.time()
        provider = to_node.model_provider or ""
        provider_route(provider)
        attachments = uploaded_attachments or []

        capabilities = await resolve_capabilities(to_node, user_id, self.connection_lookup)
        all_tools, addendum = build_tool_catalog(capabilities)
        state = OrchestrationState(
            messages=build_messages(conversation_history or [], query),
            all_tools=all_tools,
            system_prompt=build_system_prompt(to_node, from_node, addendum, attachments),
            capabilities=capabilities,
            max_iterations=self.max_iterations,
        )

        logger.info(
            "Ask/answer query started",
            extra={
                "query_id": query_id,
                "provider": provider,
                "model": to_node.model_name,
                "tools": count_tools_by_family(all_tools),
                "history_messages": len(state.messages) - 1,
                "attachments": len(attachments),
            }
        )

        outcome = OrchestrationOutcome(answer="", iterations=0)
        turn = await self._call(provider, user_id, to_node, state, authorization, outcome, first_turn=True)

        while turn.wants_tools and state.iteration < state.max_iterations:
            requests = self.dispatcher.prepare(to_tool_call_requests(turn), attachments)
            results = await self.dispatcher.dispatch(
                requests,
                capabilities,
                user_id=user_id,
                node_id=to_node_id,
                attachments=attachments,
            )
            if not results:
                outcome.dropped_calls.extend(r.name for r in requests)
                logger.info(
                    "No routable tool calls in turn, using text content",
                    extra={"query_id": query_id, "requested": [r.name for r in requests]}
                )
                break

            if turn.supports_success_shortcut:
                shortcut = find_success_shortcut(results)
                if shortcut:
                    state.iteration += 1
                    logger.info(
                        "Success shortcut fired",
                        extra={"query_id": query_id, "iteration": state.iteration}
                    )
                    outcome.answer = shortcut
                    outcome.shortcut = True
                    return self._finish(outcome, state, query_id, start_time)

            state.messages.extend(reserialize(turn, results, requests))
            state.iteration += 1
            logger.info(
                "Tool iteration complete",
                extra={
                    "query_id": query_id,
                    "iteration": state.iteration,
                    "tools": [r.name for r in requests],
                    "errors": sum(1 for r in results if r.is_error),
                }
            )
            turn = await self._call(provider, user_id, to_node, state, authorization, outcome, first_turn=False)

        if turn.wants_tools and state.iteration >= state.max_iterations:
            logger.warning(
                "Tool iteration cap reached",
                extra={"query_id": query_id, "max_iterations": state.max_iterations}
            )

        outcome.answer = turn.text
        return self._finish(outcome, state, query_id, start_time)

    async def _call(
        self,
        provider: str,
        user_id: str,
        to_node: NodeConfig,
        state: OrchestrationState,
        authorization: Optional[str],
        outcome: OrchestrationOutcome,
        first_turn: bool,
    ) -> ProviderTurn:
        outcome.provider_calls += 1
        return await self.provider_client.complete_turn(
            provider,
            self._payload(user_id, to_node, state),
            authorization=authorization,
            first_turn=first_turn,
        )

    def _finish(
        self,
        outcome: OrchestrationOutcome,
        state: OrchestrationState,
        query_id: Optional[str],
        start_time: float,
    ) -> OrchestrationOutcome:
        outcome.iterations = state.iteration
        tool_iterations.observe(state.iteration)
        logger.info(
            "Ask/answer query completed",
            extra={
                "query_id": query_id,
                "iterations": state.iteration,
                "provider_calls": outcome.provider_calls,
                "shortcut": outcome.shortcut,
                "duration_ms": int((time.time() - start_time) * 1000),
            }
        )
        return outcome
