"""Slack integration family."""

import re
from typing import Any, Dict

from slack_sdk.web.async_client import AsyncWebClient

from canvas_relay.infra.error_handler import AuthError
from canvas_relay.infra.timeout import TOOL_HTTP_TIMEOUT
from canvas_relay.integrations.base import ExecutionContext, IntegrationFamily, tool
from canvas_relay.models.integration import IntegrationConfig
from canvas_relay.services.connection_store import get_slack_bot_token


SLACK_TOOLS = [
    tool(
        "slack_list_channels",
        "List all channels in the Slack workspace that the bot has access to",
        {
            "types": {
                "type": "string",
                "description": "Comma-separated list of channel types: public_channel, private_channel "
                               "(default: public_channel)",
            },
            "limit": {"type": "number", "description": "Maximum number of channels to return (default: 100, max: 1000)"},
        },
        [],
        "canReadChannels",
    ),
    tool(
        "slack_get_channel_history",
        "Get message history from a Slack channel",
        {
            "channel": {"type": "string", "description": "The channel ID to get history from"},
            "limit": {"type": "number", "description": "Number of messages to return (default: 20, max: 100)"},
        },
        ["channel"],
        "canReadChannels",
    ),
    tool(
        "slack_post_message",
        "Post a message to a Slack channel",
        {
            "channel": {"type": "string", "description": "The channel ID or name (e.g., #general) to post to"},
            "text": {"type": "string", "description": "The message text to post"},
        },
        ["channel", "text"],
        "canPostMessages",
    ),
    tool(
        "slack_reply_to_thread",
        "Reply to a specific message in a thread",
        {
            "channel": {"type": "string", "description": "The channel ID where the thread is"},
            "thread_ts": {"type": "string", "description": "The timestamp of the parent message to reply to"},
            "text": {"type": "string", "description": "The reply text"},
        },
        ["channel", "thread_ts", "text"],
        "canPostMessages",
    ),
    tool(
        "slack_add_reaction",
        "Add an emoji reaction to a message",
        {
            "channel": {"type": "string", "description": "The channel ID where the message is"},
            "timestamp": {"type": "string", "description": "The timestamp of the message to react to"},
            "name": {"type": "string", "description": "The emoji name without colons (e.g., thumbsup, heart)"},
        },
        ["channel", "timestamp", "name"],
        "canReact",
    ),
    tool(
        "slack_remove_reaction",
        "Remove an emoji reaction from a message",
        {
            "channel": {"type": "string", "description": "The channel ID where the message is"},
            "timestamp": {"type": "string", "description": "The timestamp of the message"},
            "name": {"type": "string", "description": "The emoji name to remove (without colons)"},
        },
        ["channel", "timestamp", "name"],
        "canReact",
    ),
    tool(
        "slack_get_user_info",
        "Get information about a Slack user",
        {"user": {"type": "string", "description": "The user ID to get info for"}},
        ["user"],
        "canReadUsers",
    ),
    tool(
        "slack_list_users",
        "List all users in the Slack workspace",
        {"limit": {"type": "number", "description": "Maximum number of users to return (default: 100)"}},
        [],
        "canReadUsers",
    ),
    tool(
        "slack_upload_file",
        "Upload a file or text snippet to a Slack channel",
        {
            "channels": {"type": "string", "description": "Comma-separated channel IDs to share the file to"},
            "content": {"type": "string", "description": "The text content to upload as a file"},
            "filename": {"type": "string", "description": "The filename (e.g., snippet.txt)"},
            "title": {"type": "string", "description": "Title of the file"},
            "initial_comment": {"type": "string", "description": "Message to post along with the file"},
        },
        ["channels", "content"],
        "canUploadFiles",
    ),
    tool(
        "slack_create_channel",
        "Create a new Slack channel",
        {
            "name": {"type": "string", "description": "Name of the channel (lowercase, no spaces, max 80 chars)"},
            "is_private": {"type": "boolean", "description": "Whether to create a private channel (default: false)"},
        },
        ["name"],
        "canManageChannels",
    ),
]


def normalize_channel_name(name: str) -> str:
    """Slack channel names are lowercase with no whitespace."""
    return re.sub(r"\s+", "-", name.lower())


class SlackFamily(IntegrationFamily):
    name = "slack"
    display_name = "Slack"
    connection_label = "Slack"
    oauth_provider = "slack"
    tools = SLACK_TOOLS
    capability_labels = {
        "canReadChannels": "Channel read",
        "canPostMessages": "Post message",
        "canReact": "Reaction",
        "canReadUsers": "User read",
        "canUploadFiles": "File upload",
        "canManageChannels": "Channel management",
    }
    sequential = True

    def describe_capabilities(self, integration_config: IntegrationConfig) -> str:
        if not self.list_tools(integration_config.permissions):
            return ""

        capabilities = []
        if integration_config.grants("canReadChannels"):
            capabilities.append("- List and read messages from Slack channels")
        if integration_config.grants("canPostMessages"):
            capabilities.append("- Post messages and reply to threads in Slack")
        if integration_config.grants("canReact"):
            capabilities.append("- Add and remove emoji reactions to messages")
        if integration_config.grants("canReadUsers"):
            capabilities.append("- Look up Slack user information")
        if integration_config.grants("canUploadFiles"):
            capabilities.append("- Upload files and snippets to channels")
        if integration_config.grants("canManageChannels"):
            capabilities.append("- Create new Slack channels")

        workspace = f" ({integration_config.workspace_name})" if integration_config.workspace_name else ""
        return (
            f"SLACK CAPABILITIES{workspace}:\n"
            "You have access to Slack integration. You can:\n"
            + "\n".join(capabilities)
            + "\n\nWhen working with Slack:\n"
            "- Channel IDs typically start with C (public) or G (private)\n"
            "- User IDs start with U\n"
            "- Message timestamps (ts) are unique identifiers for messages\n"
            "- Use channel names with # prefix when posting (e.g., #general)\n"
            "- Always confirm successful operations with the user\n\n"
            "CRITICAL: You MUST call the slack_post_message tool to send ANY Slack message. NEVER claim you sent a "
            "message without actually calling the tool. If asked to send a message, ALWAYS use the tool - do not rely "
            "on conversation history. Each message request requires a NEW tool call."
        )

    async def acquire_client(self, ctx: ExecutionContext) -> AsyncWebClient:
        token = await get_slack_bot_token(ctx.user_id)
        if not token:
            raise AuthError("No Slack connection found")
        return AsyncWebClient(token=token, timeout=int(TOOL_HTTP_TIMEOUT))

    async def op_list_channels(self, slack: AsyncWebClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        response = await slack.conversations_list(
            types=args.get("types") or "public_channel",
            limit=args.get("limit") or 100,
            exclude_archived=True,
        )
        channels = response.get("channels") or []
        return {
            "channels": [
                {
                    "id": ch.get("id"),
                    "name": ch.get("name"),
                    "is_private": ch.get("is_private"),
                    "is_member": ch.get("is_member"),
                    "num_members": ch.get("num_members"),
                    "topic": (ch.get("topic") or {}).get("value"),
                    "purpose": (ch.get("purpose") or {}).get("value"),
                }
                for ch in channels
            ],
            "count": len(channels),
        }

    async def op_get_channel_history(self, slack: AsyncWebClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        response = await slack.conversations_history(channel=args["channel"], limit=args.get("limit") or 20)
        return {
            "messages": [
                {
                    "type": msg.get("type"),
                    "user": msg.get("user"),
                    "text": msg.get("text"),
                    "ts": msg.get("ts"),
                    "thread_ts": msg.get("thread_ts"),
                    "reply_count": msg.get("reply_count"),
                    "reactions": msg.get("reactions"),
                }
                for msg in response.get("messages") or []
            ],
            "has_more": response.get("has_more"),
        }

    async def op_post_message(self, slack: AsyncWebClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        response = await slack.chat_postMessage(channel=args["channel"], text=args.get("text", ""))
        return {
            "success": response.get("ok"),
            "channel": response.get("channel"),
            "ts": response.get("ts"),
            "message": response.get("message"),
        }

    async def op_reply_to_thread(self, slack: AsyncWebClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        response = await slack.chat_postMessage(
            channel=args["channel"],
            thread_ts=args["thread_ts"],
            text=args.get("text", ""),
        )
        return {
            "success": response.get("ok"),
            "channel": response.get("channel"),
            "ts": response.get("ts"),
            "thread_ts": args["thread_ts"],
        }

    async def op_add_reaction(self, slack: AsyncWebClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        response = await slack.reactions_add(channel=args["channel"], timestamp=args["timestamp"], name=args["name"])
        return {"success": response.get("ok")}

    async def op_remove_reaction(self, slack: AsyncWebClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        response = await slack.reactions_remove(channel=args["channel"], timestamp=args["timestamp"], name=args["name"])
        return {"success": response.get("ok")}

    async def op_get_user_info(self, slack: AsyncWebClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        response = await slack.users_info(user=args["user"])
        user = response.get("user") or {}
        profile = user.get("profile") or {}
        return {
            "id": user.get("id"),
            "name": user.get("name"),
            "real_name": user.get("real_name"),
            "display_name": profile.get("display_name"),
            "email": profile.get("email"),
            "image": profile.get("image_72"),
            "is_bot": user.get("is_bot"),
            "is_admin": user.get("is_admin"),
            "timezone": user.get("tz"),
        }

    async def op_list_users(self, slack: AsyncWebClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        response = await slack.users_list(limit=args.get("limit") or 100)
        active = [u for u in response.get("members") or [] if not u.get("deleted")]
        return {
            "users": [
                {
                    "id": u.get("id"),
                    "name": u.get("name"),
                    "real_name": u.get("real_name"),
                    "display_name": (u.get("profile") or {}).get("display_name"),
                    "is_bot": u.get("is_bot"),
                }
                for u in active
            ],
            "count": len(active),
        }

    async def op_upload_file(self, slack: AsyncWebClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        response = await slack.files_upload_v2(
            channels=args["channels"],
            content=args.get("content", ""),
            filename=args.get("filename") or "snippet.txt",
            title=args.get("title"),
            initial_comment=args.get("initial_comment"),
        )
        uploaded = response.get("file") or next(iter(response.get("files") or []), None)
        return {
            "success": response.get("ok"),
            "file": {
                "id": uploaded.get("id"),
                "name": uploaded.get("name"),
                "url": uploaded.get("url_private"),
            } if uploaded else None,
        }

    async def op_create_channel(self, slack: AsyncWebClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        response = await slack.conversations_create(
            name=normalize_channel_name(args["name"]),
            is_private=bool(args.get("is_private")),
        )
        channel = response.get("channel")
        return {
            "success": response.get("ok"),
            "channel": {
                "id": channel.get("id"),
                "name": channel.get("name"),
                "is_private": channel.get("is_private"),
            } if channel else None,
        }
