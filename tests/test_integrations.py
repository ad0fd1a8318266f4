"""Unit tests for the integration families."""

import base64
import email
import json
from email import policy
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from canvas_relay.infra.config import config
from canvas_relay.infra.error_handler import AuthError
from canvas_relay.integrations.base import ExecutionContext
from canvas_relay.integrations.calendar import CalendarFamily, compute_free_slots, ensure_utc_suffix, format_event
from canvas_relay.integrations.docs import DocsFamily, extract_document_id, extract_plain_text, get_document_end_index
from canvas_relay.integrations.gmail import GmailFamily, build_raw_message, collect_attachments
from canvas_relay.integrations.registry import FAMILIES, family_for_tool
from canvas_relay.integrations.sheets import extract_spreadsheet_id
from canvas_relay.integrations.slack import SlackFamily, normalize_channel_name
from canvas_relay.models.node import UploadedAttachment
from canvas_relay.models.tool import ToolCallRequest


def decode_raw(raw):
    padded = raw + "=" * (-len(raw) % 4)
    return email.message_from_bytes(base64.urlsafe_b64decode(padded), policy=policy.default)


def context(permissions, attachments=None):
    return ExecutionContext(user_id="user-1", node_id="node-1", permissions=permissions, attachments=attachments or [])


class TestRegistry:
    """Test the prefix lookup table."""

    def test_prefixes(self):
        assert [family.prefix for family in FAMILIES] == ["gmail_", "sheets_", "docs_", "slack_", "calendar_"]

    def test_family_for_tool(self):
        assert family_for_tool("sheets_read").name == "sheets"
        assert family_for_tool("foo_bar") is None
        assert family_for_tool("sheetsread") is None

    def test_family_for_tool_in_given_families(self):
        calendar_only = [family for family in FAMILIES if family.name == "calendar"]
        assert family_for_tool("calendar_list_events", calendar_only).name == "calendar"
        assert family_for_tool("gmail_send", calendar_only) is None

    def test_every_tool_has_an_operation(self):
        """Test each declared tool maps to an op_<suffix> coroutine."""
        for family in FAMILIES:
            for definition in family.tools:
                assert family.owns(definition.name)
                assert callable(family._operation(definition.name))


class TestFamilyExecute:
    """Test the shared executor behaviour."""

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        """Test an unknown tool name yields an error result."""
        with patch.object(GmailFamily, "acquire_client", AsyncMock(return_value=MagicMock())):
            results = await GmailFamily().execute(
                [ToolCallRequest(id="c1", name="gmail_teleport")], context({"canSend": True}),
            )
        assert results[0].is_error
        assert json.loads(results[0].result) == {"error": "Unknown tool: gmail_teleport"}

    @pytest.mark.asyncio
    async def test_permission_not_granted(self):
        """Test a missing capability is reported with its label."""
        with patch.object(GmailFamily, "acquire_client", AsyncMock(return_value=MagicMock())):
            results = await GmailFamily().execute(
                [ToolCallRequest(id="c1", name="gmail_send", input={"to": "a@example.com"})],
                context({"canRead": True}),
            )
        assert json.loads(results[0].result) == {"error": "Send permission not granted"}

    @pytest.mark.asyncio
    async def test_client_failure_reports_reconnect(self):
        """Test a failing client yields a reconnect error for every call."""
        failing = AsyncMock(side_effect=AuthError("No active Google connection for user"))
        with patch.object(CalendarFamily, "acquire_client", failing):
            results = await CalendarFamily().execute(
                [
                    ToolCallRequest(id="c1", name="calendar_list_events"),
                    ToolCallRequest(id="c2", name="calendar_list_calendars"),
                ],
                context({"canRead": True}),
            )
        assert [r.tool_call_id for r in results] == ["c1", "c2"]
        payload = json.loads(results[0].result)
        assert payload["error"] == "Google Calendar not connected or token expired. Please reconnect."
        assert payload["details"] == "No active Google connection for user"

    @pytest.mark.asyncio
    async def test_pro_tier_required(self):
        """Test non-Pro users are refused when the tier check is on."""
        with patch.object(config, "REQUIRE_PRO_TIER", True), \
                patch.object(SlackFamily, "_is_pro", AsyncMock(return_value=False)):
            results = await SlackFamily().execute(
                [ToolCallRequest(id="c1", name="slack_list_channels")], context({"canReadChannels": True}),
            )
        assert json.loads(results[0].result) == {"error": "Slack integration requires Pro tier"}

    @pytest.mark.asyncio
    async def test_operation_error_becomes_error_result(self):
        """Test an exception inside an operation is folded into the result."""
        client = MagicMock()
        client.get = AsyncMock(side_effect=RuntimeError("Calendar API error (404): Not Found"))
        with patch.object(CalendarFamily, "acquire_client", AsyncMock(return_value=client)):
            results = await CalendarFamily().execute(
                [ToolCallRequest(id="c1", name="calendar_get_event", input={"eventId": "missing"})],
                context({"canRead": True}),
            )
        assert results[0].is_error
        assert json.loads(results[0].result) == {"error": "Calendar API error (404): Not Found"}


class TestGmail:
    """Test Gmail message building and sending."""

    def test_plain_message(self):
        """Test a message without attachments."""
        message = decode_raw(build_raw_message(["a@example.com", "b@example.com"], "Hello", "Body text", cc=["c@example.com"]))
        assert message["To"] == "a@example.com, b@example.com"
        assert message["Cc"] == "c@example.com"
        assert message["Subject"] == "Hello"
        assert not message.is_multipart()
        assert message.get_content().strip() == "Body text"

    def test_message_with_attachment(self):
        """Test attachments produce a multipart message with decoded content."""
        raw = build_raw_message(
            "a@example.com", "Report", "See attached",
            attachments=[{"filename": "hello.txt", "mimeType": "text/plain", "content": "data:text/plain;base64,aGVsbG8="}],
        )
        message = decode_raw(raw)
        assert message.is_multipart()
        parts = list(message.iter_attachments())
        assert len(parts) == 1
        assert parts[0].get_filename() == "hello.txt"
        assert parts[0].get_payload(decode=True) == b"hello"
        assert "=" not in raw

    def test_uploaded_files_only_when_requested(self):
        """Test uploads are attached only with includeUploadedAttachments."""
        uploads = [UploadedAttachment(name="a.pdf", type="application/pdf", size=3, content="aGk=")]
        assert collect_attachments({}, uploads) == []
        assert collect_attachments({"includeUploadedAttachments": True}, uploads) == [
            {"filename": "a.pdf", "mimeType": "application/pdf", "content": "aGk="},
        ]

    @pytest.mark.asyncio
    async def test_send_result(self):
        """Test gmail_send posts raw and reports sent with attachment count."""
        client = MagicMock()
        client.post = AsyncMock(return_value={"id": "m1", "threadId": "t1"})
        uploads = [UploadedAttachment(name="a.txt", type="text/plain", size=2, content="aGk=")]

        with patch.object(GmailFamily, "acquire_client", AsyncMock(return_value=client)):
            results = await GmailFamily().execute(
                [ToolCallRequest(id="c1", name="gmail_send", input={
                    "to": "a@example.com", "subject": "Hi", "body": "Hello", "includeUploadedAttachments": True,
                    "replyToMessageId": "thread-9",
                })],
                context({"canSend": True}, uploads),
            )

        assert json.loads(results[0].result) == {"messageId": "m1", "threadId": "t1", "sent": True, "attachmentCount": 1}
        path, body = client.post.await_args.args
        assert path == "/messages/send"
        assert body["threadId"] == "thread-9"
        assert decode_raw(body["raw"])["Subject"] == "Hi"


class TestCalendar:
    """Test Calendar helpers and operations."""

    def test_free_slots(self):
        """Test busy slots across calendars are merged into free gaps."""
        busy, free = compute_free_slots(
            "2024-01-15T09:00:00Z",
            "2024-01-15T17:00:00Z",
            {
                "primary": {"busy": [
                    {"start": "2024-01-15T13:00:00Z", "end": "2024-01-15T14:00:00Z"},
                    {"start": "2024-01-15T10:00:00Z", "end": "2024-01-15T11:00:00Z"},
                ]},
                "team@example.com": {"busy": [{"start": "2024-01-15T10:30:00Z", "end": "2024-01-15T12:00:00Z"}]},
            },
        )

        assert [b["start"] for b in busy] == [
            "2024-01-15T10:00:00Z", "2024-01-15T10:30:00Z", "2024-01-15T13:00:00Z",
        ]
        assert free == [
            {"start": "2024-01-15T09:00:00.000Z", "end": "2024-01-15T10:00:00.000Z", "durationMinutes": 60},
            {"start": "2024-01-15T12:00:00.000Z", "end": "2024-01-15T13:00:00.000Z", "durationMinutes": 60},
            {"start": "2024-01-15T14:00:00.000Z", "end": "2024-01-15T17:00:00.000Z", "durationMinutes": 180},
        ]

    def test_free_slots_when_nothing_busy(self):
        busy, free = compute_free_slots("2024-01-15T09:00:00Z", "2024-01-15T10:30:00Z", {"primary": {"busy": []}})
        assert busy == []
        assert free[0]["durationMinutes"] == 90

    def test_utc_suffix(self):
        """Test naive bounds get a Z and offset bounds are kept."""
        assert ensure_utc_suffix("2024-01-15T09:00:00") == "2024-01-15T09:00:00Z"
        assert ensure_utc_suffix("2024-01-15T09:00:00Z") == "2024-01-15T09:00:00Z"
        assert ensure_utc_suffix("2024-01-15T09:00:00+02:00") == "2024-01-15T09:00:00+02:00"
        assert ensure_utc_suffix("2024-01-15T09:00:00-05:00") == "2024-01-15T09:00:00-05:00"

    def test_format_event_defaults(self):
        formatted = format_event({"id": "e1"})
        assert formatted["summary"] == "(No title)"
        assert formatted["calendarId"] == "primary"
        assert formatted["attendees"] is None

    @pytest.mark.asyncio
    async def test_create_timed_event(self):
        """Test a timed event with attendees, reminders and no notifications."""
        client = MagicMock()
        client.post = AsyncMock(return_value={"id": "e1", "summary": "Sync", "start": {"dateTime": "2024-01-15T10:00:00"}})

        with patch.object(CalendarFamily, "acquire_client", AsyncMock(return_value=client)):
            results = await CalendarFamily().execute(
                [ToolCallRequest(id="c1", name="calendar_create_event", input={
                    "summary": "Sync",
                    "startDateTime": "2024-01-15T10:00:00",
                    "endDateTime": "2024-01-15T10:30:00",
                    "timeZone": "Europe/London",
                    "attendees": ["a@example.com"],
                    "reminders": [{"method": "popup", "minutes": 10}],
                    "sendNotifications": False,
                })],
                context({"canCreate": True}),
            )

        payload = json.loads(results[0].result)
        assert payload["created"] is True
        assert payload["event"]["summary"] == "Sync"

        path, event = client.post.await_args.args
        assert path == "/calendars/primary/events"
        assert event["start"] == {"dateTime": "2024-01-15T10:00:00", "timeZone": "Europe/London"}
        assert event["attendees"] == [{"email": "a@example.com"}]
        assert event["reminders"] == {"useDefault": False, "overrides": [{"method": "popup", "minutes": 10}]}
        assert client.post.await_args.kwargs["params"] == {"sendUpdates": "none"}

    @pytest.mark.asyncio
    async def test_find_free_time_queries_freebusy(self):
        client = MagicMock()
        client.post = AsyncMock(return_value={"calendars": {"primary": {"busy": []}}})

        with patch.object(CalendarFamily, "acquire_client", AsyncMock(return_value=client)):
            results = await CalendarFamily().execute(
                [ToolCallRequest(id="c1", name="calendar_find_free_time", input={
                    "timeMin": "2024-01-15T09:00:00", "timeMax": "2024-01-15T10:00:00",
                })],
                context({"canRead": True}),
            )

        path, body = client.post.await_args.args
        assert path == "/freeBusy"
        assert body["timeMin"] == "2024-01-15T09:00:00Z"
        assert body["items"] == [{"id": "primary"}]
        assert json.loads(results[0].result)["freeSlots"][0]["durationMinutes"] == 60


class TestDocs:
    """Test Docs helpers."""

    DOCUMENT = {
        "title": "Plan",
        "body": {"content": [
            {"endIndex": 1, "sectionBreak": {}},
            {"endIndex": 7, "paragraph": {"elements": [{"textRun": {"content": "Hello "}}]}},
            {"endIndex": 14, "paragraph": {"elements": [{"textRun": {"content": "world\n"}}, {"inlineObjectElement": {}}]}},
        ]},
    }

    def test_plain_text(self):
        assert extract_plain_text(self.DOCUMENT) == "Hello world\n"

    def test_end_index(self):
        assert get_document_end_index(self.DOCUMENT) == 14
        assert get_document_end_index({}) == 1

    def test_document_id_from_url(self):
        assert extract_document_id("https://docs.google.com/document/d/abc_123-X/edit") == "abc_123-X"
        assert extract_document_id("abc") == "abc"

    @pytest.mark.asyncio
    async def test_append_inserts_before_end(self):
        """Test append_text inserts at endIndex - 1."""
        clients = MagicMock()
        clients.docs.get = AsyncMock(return_value=self.DOCUMENT)
        clients.docs.post = AsyncMock(return_value={})

        with patch.object(DocsFamily, "acquire_client", AsyncMock(return_value=clients)):
            await DocsFamily().execute(
                [ToolCallRequest(id="c1", name="docs_append_text", input={"documentId": "doc-1", "text": "More"})],
                context({"canWrite": True}),
            )

        path, body = clients.docs.post.await_args.args
        assert path == "/doc-1:batchUpdate"
        assert body["requests"][0]["insertText"]["location"] == {"index": 13}


class TestSheets:
    def test_spreadsheet_id_from_url(self):
        assert extract_spreadsheet_id("https://docs.google.com/spreadsheets/d/sheet-1/edit#gid=0") == "sheet-1"


class TestSlack:
    """Test Slack helpers and operations."""

    def test_channel_name_normalisation(self):
        assert normalize_channel_name("My  New\tChannel") == "my-new-channel"

    @pytest.mark.asyncio
    async def test_create_channel(self):
        client = MagicMock()
        client.conversations_create = AsyncMock(return_value={
            "ok": True, "channel": {"id": "C1", "name": "team-updates", "is_private": False},
        })

        with patch.object(SlackFamily, "acquire_client", AsyncMock(return_value=client)):
            results = await SlackFamily().execute(
                [ToolCallRequest(id="c1", name="slack_create_channel", input={"name": "Team Updates"})],
                context({"canManageChannels": True}),
            )

        client.conversations_create.assert_awaited_once_with(name="team-updates", is_private=False)
        assert json.loads(results[0].result)["channel"]["id"] == "C1"

    @pytest.mark.asyncio
    async def test_list_users_skips_deleted(self):
        client = MagicMock()
        client.users_list = AsyncMock(return_value={"members": [
            {"id": "U1", "name": "ana"},
            {"id": "U2", "name": "gone", "deleted": True},
        ]})

        with patch.object(SlackFamily, "acquire_client", AsyncMock(return_value=client)):
            results = await SlackFamily().execute(
                [ToolCallRequest(id="c1", name="slack_list_users")], context({"canReadUsers": True}),
            )

        payload = json.loads(results[0].result)
        assert payload["count"] == 1
        assert payload["users"][0]["id"] == "U1"
