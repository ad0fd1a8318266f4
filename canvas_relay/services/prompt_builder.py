"""System prompt and message assembly for ask/answer queries."""

import logging
from typing import Dict, List, Optional

import tiktoken

from canvas_relay.infra.config import config
from canvas_relay.models.node import ConversationHistoryEntry, NodeConfig, UploadedAttachment

logger = logging.getLogger(__name__)


CROSS_AGENT_CONTEXT = """CONTEXT: You are receiving questions from another AI agent ({agent_name}).
You are having an ongoing conversation with this agent. Use the conversation history to provide contextually relevant responses.
Remember previous exchanges and build upon them when answering follow-up questions.

IMPORTANT: When asked to perform an action (send a message, read emails, etc.), you MUST actually call the appropriate tool. Do NOT claim you have performed an action based on conversation history - always execute the tool for the current request. Each request is a new action that requires a fresh tool call."""

UPLOADED_FILES_NOTE = """IMPORTANT - UPLOADED FILES: The user has uploaded the following files with their message:
{file_list}

CRITICAL: When sending emails (gmail_send) or creating drafts (gmail_draft) and the user wants to attach these files, you MUST set "includeUploadedAttachments": true in your tool call. Without this parameter, the attachments will NOT be included in the email."""


def describe_attachments(attachments: List[UploadedAttachment]) -> str:
    return "\n".join(
        f'  {i}. "{a.name}" ({a.type}, {round(a.size / 1024)}KB)'
        for i, a in enumerate(attachments, start=1)
    )


def build_system_prompt(
    to_node: NodeConfig,
    from_node: NodeConfig,
    addendum: List[str],
    attachments: Optional[List[UploadedAttachment]] = None,
) -> str:
    """
    Build the system prompt for the answering node.

    Order:
    1. Target node's own system prompt
    2. Cross-agent context note
    3. Capability blurbs of the usable families, in family order
    4. Uploaded files note (only when files were uploaded)
    """
    prompt = f"{to_node.system_prompt or ''}\n\n"
    prompt += CROSS_AGENT_CONTEXT.format(agent_name=from_node.name or "Unknown Agent")

    for blurb in addendum:
        if blurb and blurb.strip():
            prompt += "\n\n" + blurb.strip()

    if attachments:
        prompt += "\n\n" + UPLOADED_FILES_NOTE.format(file_list=describe_attachments(attachments))

    return prompt


def _get_encoding():
    return tiktoken.get_encoding("cl100k_base")


def _fit_history(history: List[ConversationHistoryEntry], budget: int) -> List[ConversationHistoryEntry]:
    """Newest history pairs that fit within the token budget."""
    encoding = _get_encoding()
    selected: List[ConversationHistoryEntry] = []
    total_tokens = 0

    # Start from most recent and work backwards
    for entry in reversed(history):
        pair_tokens = len(encoding.encode(entry.query)) + len(encoding.encode(entry.answer))
        if total_tokens + pair_tokens > budget:
            break
        selected.insert(0, entry)
        total_tokens += pair_tokens

    if len(selected) < len(history):
        logger.debug(
            "Dropped oldest history pairs to fit token budget",
            extra={"dropped": len(history) - len(selected), "budget": budget, "tokens": total_tokens}
        )
    return selected


def build_messages(
    history: List[ConversationHistoryEntry],
    query: str,
    token_budget: Optional[int] = None,
) -> List[Dict[str, str]]:
    """
    Conversation history as user/assistant pairs, then the current query.

    Args:
        history: Earlier exchanges, oldest first
        query: Current question
        token_budget: History token budget; defaults to HISTORY_TOKEN_BUDGET, 0 means unlimited

    Returns:
        List of {"role", "content"} messages
    """
    budget = config.HISTORY_TOKEN_BUDGET if token_budget is None else token_budget
    selected = _fit_history(history, budget) if budget > 0 else history

    messages: List[Dict[str, str]] = []
    for entry in selected:
        messages.append({"role": "user", "content": entry.query})
        messages.append({"role": "assistant", "content": entry.answer})

    messages.append({"role": "user", "content": query})
    return messages
