"""Gmail integration family."""

import asyncio
import base64
from email.message import EmailMessage
from typing import Any, Dict, List, Optional, Union

from canvas_relay.adapters.google_api import GMAIL_API, GoogleApiClient, google_client_for
from canvas_relay.integrations.base import ExecutionContext, IntegrationFamily, tool
from canvas_relay.models.integration import IntegrationConfig
from canvas_relay.models.node import UploadedAttachment


_ATTACHMENTS_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "filename": {"type": "string", "description": "Name of the file"},
            "mimeType": {
                "type": "string",
                "description": 'MIME type of the file (e.g., "image/png", "application/pdf")',
            },
            "content": {"type": "string", "description": "Base64-encoded file content"},
        },
        "required": ["filename", "mimeType", "content"],
    },
    "description": "Optional array of file attachments to include (for programmatically generated content)",
}

_ADDRESS_LIST = {"type": "array", "items": {"type": "string"}}

GMAIL_TOOLS = [
    tool(
        "gmail_search",
        'Search for emails in the connected Gmail account. Use Gmail search syntax (e.g., "from:user@example.com", '
        '"subject:meeting", "is:unread", "after:2024/01/01").',
        {
            "query": {
                "type": "string",
                "description": 'Gmail search query. Examples: "from:boss@company.com", "subject:urgent is:unread", '
                               '"has:attachment after:2024/01/01"',
            },
            "maxResults": {
                "type": "number",
                "description": "Maximum number of emails to return (default: 10, max: 50)",
                "default": 10,
            },
        },
        ["query"],
        "canSearch",
    ),
    tool(
        "gmail_read",
        "Read the full content of a specific email by its ID. Use gmail_search first to find email IDs.",
        {"emailId": {"type": "string", "description": "The ID of the email to read (obtained from gmail_search results)"}},
        ["emailId"],
        "canRead",
    ),
    tool(
        "gmail_read_thread",
        "Read all emails in a conversation thread. Useful for understanding full email conversations.",
        {"threadId": {"type": "string", "description": "The thread ID to read (obtained from gmail_search results)"}},
        ["threadId"],
        "canRead",
    ),
    tool(
        "gmail_send",
        "Send an email from the connected Gmail account. IMPORTANT: If the user has uploaded any files or images "
        "with their message and wants to send them as attachments, you MUST set includeUploadedAttachments to true. "
        "Use with caution - this will actually send an email.",
        {
            "to": dict(_ADDRESS_LIST, description="Array of recipient email addresses"),
            "subject": {"type": "string", "description": "Email subject line"},
            "body": {"type": "string", "description": "Email body content (plain text)"},
            "cc": dict(_ADDRESS_LIST, description="Optional array of CC recipients"),
            "bcc": dict(_ADDRESS_LIST, description="Optional array of BCC recipients"),
            "replyToMessageId": {"type": "string", "description": "Optional message ID to reply to (for threading)"},
            "attachments": _ATTACHMENTS_SCHEMA,
            "includeUploadedAttachments": {
                "type": "boolean",
                "description": "IMPORTANT: Set this to true when the user has uploaded files/images with their message "
                               "and wants to send them as email attachments. This will automatically attach all "
                               "user-uploaded files to the email.",
            },
        },
        ["to", "subject", "body"],
        "canSend",
    ),
    tool(
        "gmail_draft",
        "Create an email draft without sending. IMPORTANT: If the user has uploaded any files or images with their "
        "message and wants to include them as attachments, you MUST set includeUploadedAttachments to true. "
        "The user can review and send manually.",
        {
            "to": dict(_ADDRESS_LIST, description="Array of recipient email addresses"),
            "subject": {"type": "string", "description": "Email subject line"},
            "body": {"type": "string", "description": "Email body content (plain text)"},
            "cc": dict(_ADDRESS_LIST, description="Optional array of CC recipients"),
            "attachments": _ATTACHMENTS_SCHEMA,
            "includeUploadedAttachments": {
                "type": "boolean",
                "description": "IMPORTANT: Set this to true when the user has uploaded files/images with their message "
                               "and wants to include them as draft attachments. This will automatically attach all "
                               "user-uploaded files to the draft.",
            },
        },
        ["to", "subject", "body"],
        "canManageDrafts",
    ),
    tool("gmail_get_labels", "Get all labels/folders in the Gmail account.", {}, [], "canRead"),
    tool(
        "gmail_modify_labels",
        "Add or remove labels from an email (e.g., mark as read, archive, star).",
        {
            "emailId": {"type": "string", "description": "The ID of the email to modify"},
            "addLabels": dict(_ADDRESS_LIST, description='Labels to add (e.g., "STARRED", "IMPORTANT", custom label IDs)'),
            "removeLabels": dict(_ADDRESS_LIST, description='Labels to remove (e.g., "UNREAD", "INBOX" for archiving)'),
        },
        ["emailId"],
        "canManageLabels",
    ),
    tool(
        "gmail_get_unread_count",
        "Get the count of unread emails, optionally filtered by label.",
        {
            "labelId": {
                "type": "string",
                "description": "Optional label ID to filter by (default: INBOX)",
                "default": "INBOX",
            },
        },
        [],
        "canRead",
    ),
]


def _addresses(value: Union[str, List[str], None]) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(v) for v in value]


def _strip_data_url(content: str) -> str:
    if content.startswith("data:") and "base64," in content:
        return content.split("base64,", 1)[1]
    return content


def _decode_body(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def _header(headers: List[Dict[str, str]], name: str) -> str:
    for h in headers:
        if h.get("name", "").lower() == name.lower():
            return h.get("value", "")
    return ""


def _plain_body(payload: Dict[str, Any]) -> str:
    body_data = (payload.get("body") or {}).get("data")
    if body_data:
        return _decode_body(body_data)
    for part in payload.get("parts") or []:
        if part.get("mimeType") == "text/plain" and (part.get("body") or {}).get("data"):
            return _decode_body(part["body"]["data"])
    return ""


def collect_attachments(args: Dict[str, Any], uploaded: List[UploadedAttachment]) -> List[Dict[str, str]]:
    """Explicit attachments plus the user's uploads when includeUploadedAttachments is set."""
    attachments = [dict(a) for a in args.get("attachments") or []]
    if args.get("includeUploadedAttachments"):
        for upload in uploaded:
            attachments.append({
                "filename": upload.name,
                "mimeType": upload.type,
                "content": upload.content,
            })
    return attachments


def build_raw_message(
    to: Union[str, List[str]],
    subject: str,
    body: str,
    cc: Optional[List[str]] = None,
    bcc: Optional[List[str]] = None,
    attachments: Optional[List[Dict[str, str]]] = None,
) -> str:
    """RFC 822 message as unpadded urlsafe base64, the form Gmail's `raw` field takes."""
    message = EmailMessage()
    message["To"] = ", ".join(_addresses(to))
    if cc:
        message["Cc"] = ", ".join(_addresses(cc))
    if bcc:
        message["Bcc"] = ", ".join(_addresses(bcc))
    message["Subject"] = subject or ""
    message.set_content(body or "")

    for attachment in attachments or []:
        maintype, _, subtype = (attachment.get("mimeType") or "application/octet-stream").partition("/")
        message.add_attachment(
            base64.b64decode(_strip_data_url(attachment.get("content", ""))),
            maintype=maintype,
            subtype=subtype or "octet-stream",
            filename=attachment.get("filename") or "attachment",
        )

    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii").rstrip("=")


class GmailFamily(IntegrationFamily):
    name = "gmail"
    display_name = "Gmail"
    connection_label = "Gmail"
    tools = GMAIL_TOOLS
    capability_labels = {
        "canSearch": "Search",
        "canRead": "Read",
        "canSend": "Send",
        "canManageDrafts": "Draft",
        "canManageLabels": "Label management",
    }

    def describe_capabilities(self, integration_config: IntegrationConfig) -> str:
        if not integration_config.enabled:
            return ""

        capabilities = []
        if integration_config.grants("canSearch"):
            capabilities.append("- Search emails using Gmail search syntax (gmail_search)")
        if integration_config.grants("canRead"):
            capabilities.append("- Read email content (gmail_read, gmail_read_thread)")
            capabilities.append("- Get unread count (gmail_get_unread_count)")
            capabilities.append("- List labels/folders (gmail_get_labels)")
        if integration_config.grants("canSend"):
            capabilities.append("- Send emails (gmail_send) - USE WITH CAUTION")
        if integration_config.grants("canManageDrafts"):
            capabilities.append("- Create email drafts (gmail_draft)")
        if integration_config.grants("canManageLabels"):
            capabilities.append("- Add/remove labels (gmail_modify_labels)")
        if not capabilities:
            return ""

        prompt = (
            "📧 GMAIL INTEGRATION: You have access to the user's Gmail account with the following capabilities:\n\n"
            + "\n".join(capabilities)
            + "\n\nWhen asked about emails, use these tools proactively. For search, use Gmail search syntax like:\n"
            '- "from:user@example.com" - emails from a specific sender\n'
            '- "subject:meeting" - emails with subject containing "meeting"\n'
            '- "is:unread" - unread emails\n'
            '- "after:2024/01/01" - emails after a date\n'
            '- "has:attachment" - emails with attachments\n\n'
            "Always be careful with email operations. When reading emails, summarize them helpfully."
        )
        if integration_config.grants("canSend") and integration_config.require_confirmation:
            prompt += "\n\nIMPORTANT: Before sending any email, clearly show the user the draft and ask for confirmation."
        if integration_config.max_emails_per_hour:
            prompt += f"\n\nNote: This bot is limited to {integration_config.max_emails_per_hour} emails per hour."
        return prompt

    async def acquire_client(self, ctx: ExecutionContext) -> GoogleApiClient:
        return await google_client_for(ctx.user_id, GMAIL_API, "Gmail")

    async def op_search(self, gmail: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        max_results = min(args.get("maxResults") or 10, 50)
        listing = await gmail.get("/messages", params={
            "q": args.get("query"),
            "maxResults": max_results,
            "labelIds": args.get("labelIds"),
        })

        async def fetch(msg: Dict[str, Any]) -> Dict[str, Any]:
            detail = await gmail.get(f"/messages/{msg['id']}", params={
                "format": "metadata",
                "metadataHeaders": ["From", "To", "Subject", "Date"],
            })
            headers = (detail.get("payload") or {}).get("headers") or []
            labels = detail.get("labelIds") or []
            return {
                "id": msg["id"],
                "threadId": msg.get("threadId"),
                "from": _header(headers, "From"),
                "to": _addresses(_header(headers, "To")),
                "subject": _header(headers, "Subject"),
                "date": _header(headers, "Date"),
                "snippet": detail.get("snippet", ""),
                "labels": labels,
                "isRead": "UNREAD" not in labels,
            }

        emails = await asyncio.gather(*(fetch(m) for m in listing.get("messages") or []))
        return {"resultCount": len(emails), "emails": list(emails)}

    async def op_read(self, gmail: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        message = await gmail.get(f"/messages/{args.get('emailId')}", params={"format": "full"})
        payload = message.get("payload") or {}
        headers = payload.get("headers") or []
        labels = message.get("labelIds") or []
        return {
            "id": message.get("id"),
            "threadId": message.get("threadId"),
            "from": _header(headers, "From"),
            "to": _addresses(_header(headers, "To")),
            "cc": _addresses(_header(headers, "Cc")),
            "subject": _header(headers, "Subject"),
            "date": _header(headers, "Date"),
            "body": _plain_body(payload),
            "labels": labels,
            "isRead": "UNREAD" not in labels,
            "hasAttachments": any(p.get("filename") for p in payload.get("parts") or []),
        }

    async def op_read_thread(self, gmail: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        thread_id = args.get("threadId")
        thread = await gmail.get(f"/threads/{thread_id}", params={"format": "full"})
        messages = thread.get("messages") or []

        def summarize(msg: Dict[str, Any]) -> Dict[str, Any]:
            payload = msg.get("payload") or {}
            headers = payload.get("headers") or []
            return {
                "id": msg.get("id"),
                "from": _header(headers, "From"),
                "to": _header(headers, "To"),
                "subject": _header(headers, "Subject"),
                "date": _header(headers, "Date"),
                "body": _plain_body(payload),
                "snippet": msg.get("snippet"),
            }

        return {
            "threadId": thread_id,
            "messageCount": len(messages),
            "messages": [summarize(msg) for msg in messages],
        }

    async def op_send(self, gmail: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        attachments = collect_attachments(args, ctx.attachments)
        request_body: Dict[str, Any] = {
            "raw": build_raw_message(
                args.get("to"), args.get("subject", ""), args.get("body", ""),
                cc=args.get("cc"), bcc=args.get("bcc"), attachments=attachments,
            )
        }
        if args.get("replyToMessageId"):
            request_body["threadId"] = args["replyToMessageId"]

        response = await gmail.post("/messages/send", request_body)
        result = {"messageId": response.get("id"), "threadId": response.get("threadId"), "sent": True}
        if attachments:
            result["attachmentCount"] = len(attachments)
        return result

    async def op_draft(self, gmail: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        attachments = collect_attachments(args, ctx.attachments)
        raw = build_raw_message(
            args.get("to"), args.get("subject", ""), args.get("body", ""),
            cc=args.get("cc"), attachments=attachments,
        )
        response = await gmail.post("/drafts", {"message": {"raw": raw}})
        result = {"draftId": response.get("id"), "created": True}
        if attachments:
            result["attachmentCount"] = len(attachments)
        return result

    async def op_get_labels(self, gmail: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        response = await gmail.get("/labels")
        return {
            "labels": [
                {
                    "id": label.get("id"),
                    "name": label.get("name"),
                    "type": label.get("type"),
                    "messagesTotal": label.get("messagesTotal"),
                    "messagesUnread": label.get("messagesUnread"),
                }
                for label in response.get("labels") or []
            ]
        }

    async def op_modify_labels(self, gmail: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        add_labels = args.get("addLabels") or []
        remove_labels = args.get("removeLabels") or []
        await gmail.post(f"/messages/{args.get('emailId')}/modify", {
            "addLabelIds": add_labels,
            "removeLabelIds": remove_labels,
        })
        return {
            "modified": True,
            "emailId": args.get("emailId"),
            "labelsAdded": add_labels,
            "labelsRemoved": remove_labels,
        }

    async def op_get_unread_count(self, gmail: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        label = await gmail.get(f"/labels/{args.get('labelId') or 'INBOX'}")
        return {
            "label": label.get("name"),
            "unreadCount": label.get("messagesUnread") or 0,
            "totalCount": label.get("messagesTotal") or 0,
        }
