"""Google Docs integration family (document bodies via Docs v1, comments via Drive v3)."""

import re
from dataclasses import dataclass
from typing import Any, Dict

from canvas_relay.adapters.google_api import DOCS_API, DRIVE_API, GoogleApiClient, google_client_for
from canvas_relay.integrations.base import ExecutionContext, IntegrationFamily, tool
from canvas_relay.models.integration import IntegrationConfig


def _document_id_field(description: str = "The ID of the Google Doc") -> Dict[str, str]:
    return {"type": "string", "description": description}


DOCS_TOOLS = [
    tool(
        "docs_read",
        "Read the full content of a Google Doc including structure and formatting information",
        {"documentId": _document_id_field("The ID of the Google Doc to read")},
        ["documentId"],
        "canRead",
    ),
    tool(
        "docs_get_text",
        "Get the plain text content of a Google Doc (without formatting)",
        {"documentId": _document_id_field()},
        ["documentId"],
        "canRead",
    ),
    tool(
        "docs_get_metadata",
        "Get metadata about a Google Doc (title, revision ID, etc.)",
        {"documentId": _document_id_field()},
        ["documentId"],
        "canRead",
    ),
    tool(
        "docs_insert_text",
        "Insert text at a specific position in a Google Doc",
        {
            "documentId": _document_id_field(),
            "text": {"type": "string", "description": "The text to insert"},
            "index": {
                "type": "number",
                "description": "The index position to insert at (1 = after title, omit for end of document)",
            },
        },
        ["documentId", "text"],
        "canWrite",
    ),
    tool(
        "docs_append_text",
        "Append text to the end of a Google Doc",
        {
            "documentId": _document_id_field(),
            "text": {"type": "string", "description": "The text to append"},
        },
        ["documentId", "text"],
        "canWrite",
    ),
    tool(
        "docs_replace_text",
        "Find and replace text in a Google Doc",
        {
            "documentId": _document_id_field(),
            "searchText": {"type": "string", "description": "The text to search for"},
            "replaceText": {"type": "string", "description": "The text to replace with"},
            "matchCase": {"type": "boolean", "description": "Whether to match case (default: false)"},
        },
        ["documentId", "searchText", "replaceText"],
        "canWrite",
    ),
    tool(
        "docs_delete_content",
        "Delete content from a Google Doc between specified indices",
        {
            "documentId": _document_id_field(),
            "startIndex": {"type": "number", "description": "The start index of content to delete"},
            "endIndex": {"type": "number", "description": "The end index of content to delete"},
        },
        ["documentId", "startIndex", "endIndex"],
        "canWrite",
    ),
    tool(
        "docs_create",
        "Create a new Google Doc with optional initial content",
        {
            "title": {"type": "string", "description": "The title of the new document"},
            "content": {"type": "string", "description": "Optional initial content for the document"},
        },
        ["title"],
        "canCreate",
    ),
    tool(
        "docs_add_comment",
        "Add a comment to a Google Doc",
        {
            "documentId": _document_id_field(),
            "content": {"type": "string", "description": "The comment text"},
            "quotedText": {"type": "string", "description": "Optional text in the document to anchor the comment to"},
        },
        ["documentId", "content"],
        "canComment",
    ),
    tool(
        "docs_list_comments",
        "List all comments on a Google Doc",
        {
            "documentId": _document_id_field(),
            "includeDeleted": {"type": "boolean", "description": "Whether to include deleted comments (default: false)"},
        },
        ["documentId"],
        "canComment",
    ),
]

_DOCUMENT_URL_PATTERNS = [
    re.compile(r"docs\.google\.com/document/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"drive\.google\.com/open\?id=([a-zA-Z0-9_-]+)"),
    re.compile(r"drive\.google\.com/file/d/([a-zA-Z0-9_-]+)"),
]


def extract_document_id(value: str) -> str:
    """Document id from a bare id or any of the usual Docs/Drive URLs."""
    for pattern in _DOCUMENT_URL_PATTERNS:
        match = pattern.search(value or "")
        if match:
            return match.group(1)
    return value


def build_docs_url(document_id: str) -> str:
    return f"https://docs.google.com/document/d/{document_id}/edit"


def extract_plain_text(document: Dict[str, Any]) -> str:
    """Concatenate every paragraph text run of a Docs v1 document."""
    parts = []
    for element in ((document or {}).get("body") or {}).get("content") or []:
        for text_element in (element.get("paragraph") or {}).get("elements") or []:
            content = (text_element.get("textRun") or {}).get("content")
            if content:
                parts.append(content)
    return "".join(parts)


def get_document_end_index(document: Dict[str, Any]) -> int:
    body_content = ((document or {}).get("body") or {}).get("content") or []
    if not body_content:
        return 1
    return body_content[-1].get("endIndex") or 1


@dataclass
class DocsClients:
    docs: GoogleApiClient
    drive: GoogleApiClient


class DocsFamily(IntegrationFamily):
    name = "docs"
    display_name = "Google Docs"
    connection_label = "Google Docs"
    tools = DOCS_TOOLS
    capability_labels = {
        "canRead": "Read",
        "canWrite": "Write",
        "canCreate": "Create",
        "canComment": "Comment",
    }
    sequential = True

    def describe_capabilities(self, integration_config: IntegrationConfig) -> str:
        if not self.list_tools(integration_config.permissions):
            return ""

        capabilities = []
        if integration_config.grants("canRead"):
            capabilities.append("- Read Google Docs content and metadata")
            capabilities.append("- Extract plain text from documents")
        if integration_config.grants("canWrite"):
            capabilities.append("- Insert, append, and replace text in documents")
            capabilities.append("- Delete content from documents")
        if integration_config.grants("canCreate"):
            capabilities.append("- Create new Google Docs")
        if integration_config.grants("canComment"):
            capabilities.append("- Add and list comments on documents")

        return (
            "GOOGLE DOCS CAPABILITIES:\n"
            "You have access to Google Docs integration. You can:\n"
            + "\n".join(capabilities)
            + "\n\nWhen working with Google Docs:\n"
            "- Document IDs can be found in the URL: docs.google.com/document/d/{DOCUMENT_ID}/edit\n"
            "- Use docs_get_text to get plain text content for analysis\n"
            "- Use docs_read for full document structure including formatting\n"
            "- Always confirm successful operations with the user"
        )

    async def acquire_client(self, ctx: ExecutionContext) -> DocsClients:
        docs = await google_client_for(ctx.user_id, DOCS_API, "Google Docs")
        drive = GoogleApiClient(docs.access_token, DRIVE_API, "Google Drive")
        return DocsClients(docs=docs, drive=drive)

    async def _batch_update(self, clients: DocsClients, document_id: str, *requests: Dict[str, Any]) -> Dict[str, Any]:
        return await clients.docs.post(f"/{document_id}:batchUpdate", {"requests": list(requests)})

    async def op_read(self, clients: DocsClients, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        return await clients.docs.get(f"/{extract_document_id(args['documentId'])}")

    async def op_get_text(self, clients: DocsClients, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        document_id = extract_document_id(args["documentId"])
        document = await clients.docs.get(f"/{document_id}")
        return {"documentId": document_id, "title": document.get("title"), "text": extract_plain_text(document)}

    async def op_get_metadata(self, clients: DocsClients, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        document = await clients.docs.get(f"/{extract_document_id(args['documentId'])}")
        return {
            "documentId": document.get("documentId"),
            "title": document.get("title"),
            "revisionId": document.get("revisionId"),
        }

    async def op_insert_text(self, clients: DocsClients, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        document_id = extract_document_id(args["documentId"])
        index = args.get("index") or 1
        await self._batch_update(clients, document_id, {
            "insertText": {"location": {"index": index}, "text": args.get("text", "")},
        })
        return {"success": True, "message": f"Text inserted at index {index}", "documentId": document_id}

    async def op_append_text(self, clients: DocsClients, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        document_id = extract_document_id(args["documentId"])
        document = await clients.docs.get(f"/{document_id}")
        end_index = get_document_end_index(document)
        await self._batch_update(clients, document_id, {
            "insertText": {"location": {"index": max(end_index - 1, 1)}, "text": args.get("text", "")},
        })
        return {"success": True, "message": "Text appended to document", "documentId": document_id}

    async def op_replace_text(self, clients: DocsClients, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        document_id = extract_document_id(args["documentId"])
        await self._batch_update(clients, document_id, {
            "replaceAllText": {
                "containsText": {"text": args.get("searchText", ""), "matchCase": bool(args.get("matchCase"))},
                "replaceText": args.get("replaceText", ""),
            },
        })
        return {
            "success": True,
            "message": f'Replaced "{args.get("searchText")}" with "{args.get("replaceText")}"',
            "documentId": document_id,
        }

    async def op_delete_content(self, clients: DocsClients, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        document_id = extract_document_id(args["documentId"])
        start_index, end_index = args.get("startIndex"), args.get("endIndex")
        await self._batch_update(clients, document_id, {
            "deleteContentRange": {"range": {"startIndex": start_index, "endIndex": end_index}},
        })
        return {
            "success": True,
            "message": f"Deleted content from index {start_index} to {end_index}",
            "documentId": document_id,
        }

    async def op_create(self, clients: DocsClients, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        created = await clients.docs.post("", {"title": args.get("title")})
        document_id = created["documentId"]
        if args.get("content"):
            await self._batch_update(clients, document_id, {
                "insertText": {"location": {"index": 1}, "text": args["content"]},
            })
        return {
            "success": True,
            "documentId": document_id,
            "title": args.get("title"),
            "url": build_docs_url(document_id),
        }

    async def op_add_comment(self, clients: DocsClients, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        comment: Dict[str, Any] = {"content": args.get("content", "")}
        if args.get("quotedText"):
            comment["quotedFileContent"] = {"value": args["quotedText"]}
        response = await clients.drive.post(
            f"/files/{extract_document_id(args['documentId'])}/comments",
            comment,
            params={"fields": "id,content,author,createdTime"},
        )
        return {"success": True, "commentId": response.get("id"), "content": response.get("content")}

    async def op_list_comments(self, clients: DocsClients, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        response = await clients.drive.get(
            f"/files/{extract_document_id(args['documentId'])}/comments",
            params={
                "fields": "comments(id,content,author,createdTime,modifiedTime,resolved,quotedFileContent)",
                "includeDeleted": bool(args.get("includeDeleted")),
            },
        )
        comments = response.get("comments") or []
        return {"comments": comments, "count": len(comments)}
