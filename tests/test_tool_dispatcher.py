"""Unit tests for tool call routing, attachment injection and success shortcuts."""

import asyncio
import json

import pytest

from canvas_relay.integrations.base import IntegrationFamily
from canvas_relay.models.node import UploadedAttachment
from canvas_relay.models.tool import ToolCallRequest, ToolCallResult
from canvas_relay.services.tool_dispatcher import (
    OVERRIDE_FALSY,
    RESPECT_EXPLICIT,
    ToolDispatcher,
    find_success_shortcut,
    inject_uploaded_attachments,
)


class StubFamily(IntegrationFamily):
    """Family whose executor echoes call ids after an optional delay."""

    def __init__(self, name, delay=0.0, fail=False):
        self.name = name
        self.delay = delay
        self.fail = fail
        self.contexts = []
        self.received = []

    async def execute(self, calls, ctx):
        self.contexts.append(ctx)
        self.received.append(list(calls))
        await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError(f"{self.name} exploded")
        return [
            ToolCallResult(tool_call_id=call.id, result=json.dumps({"family": self.name, "id": call.id}))
            for call in calls
        ]


@pytest.fixture
def attachments():
    return [UploadedAttachment(name="report.pdf", type="application/pdf", size=2048, content="aGVsbG8=")]


class TestAttachmentInjection:
    """Test auto-injection of includeUploadedAttachments."""

    def test_absent_flag_injected(self, attachments):
        """Test gmail_send without the flag gets it set to true."""
        calls = [ToolCallRequest(id="c1", name="gmail_send", input={"to": "a@example.com"})]
        injected = inject_uploaded_attachments(calls, attachments, RESPECT_EXPLICIT)
        assert injected[0].input["includeUploadedAttachments"] is True

    def test_original_call_not_mutated(self, attachments):
        """Test injection works on a copy of the call input."""
        calls = [ToolCallRequest(id="c1", name="gmail_draft", input={"to": "a@example.com"})]
        inject_uploaded_attachments(calls, attachments, RESPECT_EXPLICIT)
        assert "includeUploadedAttachments" not in calls[0].input

    def test_explicit_false_respected(self, attachments):
        """Test respect_explicit keeps an explicit false."""
        calls = [ToolCallRequest(id="c1", name="gmail_send", input={"includeUploadedAttachments": False})]
        injected = inject_uploaded_attachments(calls, attachments, RESPECT_EXPLICIT)
        assert injected[0].input["includeUploadedAttachments"] is False

    def test_explicit_false_overridden(self, attachments):
        """Test override_falsy replaces an explicit false."""
        calls = [ToolCallRequest(id="c1", name="gmail_send", input={"includeUploadedAttachments": False})]
        injected = inject_uploaded_attachments(calls, attachments, OVERRIDE_FALSY)
        assert injected[0].input["includeUploadedAttachments"] is True

    def test_no_attachments_no_injection(self):
        """Test nothing is injected when no files were uploaded."""
        calls = [ToolCallRequest(id="c1", name="gmail_send", input={})]
        injected = inject_uploaded_attachments(calls, [], RESPECT_EXPLICIT)
        assert injected[0].input == {}

    def test_other_tools_untouched(self, attachments):
        """Test only gmail_send and gmail_draft are considered."""
        calls = [ToolCallRequest(id="c1", name="slack_upload_file", input={})]
        injected = inject_uploaded_attachments(calls, attachments, OVERRIDE_FALSY)
        assert injected[0].input == {}

    def test_unknown_policy_rejected(self, attachments):
        with pytest.raises(ValueError):
            inject_uploaded_attachments([], attachments, "always")

    @pytest.mark.asyncio
    async def test_dispatch_passes_injected_input(self, make_capability, attachments):
        """Test the executor receives the injected input and the attachments."""
        gmail = StubFamily("gmail")
        dispatcher = ToolDispatcher(families=[gmail], injection_policy=RESPECT_EXPLICIT)
        calls = [ToolCallRequest(id="c1", name="gmail_send", input={"to": "a@example.com"})]

        await dispatcher.dispatch(
            calls, {"gmail": make_capability("gmail", {"canSend": True})}, "user-1", attachments=attachments,
        )

        assert gmail.received[0][0].input["includeUploadedAttachments"] is True
        assert gmail.contexts[0].attachments == attachments


class TestRouting:
    """Test prefix routing and unroutable calls."""

    def test_unknown_prefix_dropped(self, make_capability):
        """Test a call with no matching family is dropped."""
        dispatcher = ToolDispatcher(families=[StubFamily("gmail")])
        plan = dispatcher.partition(
            [ToolCallRequest(id="c1", name="foo_bar")],
            {"gmail": make_capability("gmail", {"canSend": True})},
        )
        assert plan.routable_count == 0
        assert [c.name for c in plan.dropped] == ["foo_bar"]

    def test_unusable_family_dropped(self, make_capability):
        """Test a call for an unusable family is dropped."""
        dispatcher = ToolDispatcher(families=[StubFamily("sheets")])
        plan = dispatcher.partition(
            [ToolCallRequest(id="c1", name="sheets_read")],
            {"sheets": make_capability("sheets", {"canRead": True}, connection_id=None)},
        )
        assert plan.routable_count == 0

    @pytest.mark.asyncio
    async def test_dropped_calls_produce_no_results(self, make_capability):
        """Test no synthetic result is inserted for unroutable calls."""
        dispatcher = ToolDispatcher(families=[StubFamily("gmail")])
        results = await dispatcher.dispatch(
            [ToolCallRequest(id="c1", name="foo_bar"), ToolCallRequest(id="c2", name="gmail_search")],
            {"gmail": make_capability("gmail", {"canSearch": True})},
            "user-1",
        )
        assert [r.tool_call_id for r in results] == ["c2"]

    @pytest.mark.asyncio
    async def test_context_carries_resolved_permissions(self, make_capability):
        """Test each family executes with its own permission set and node id."""
        docs = StubFamily("docs")
        dispatcher = ToolDispatcher(families=[docs])
        await dispatcher.dispatch(
            [ToolCallRequest(id="c1", name="docs_read")],
            {"docs": make_capability("docs", {"canRead": True})},
            "user-1",
            node_id="node-9",
        )
        ctx = docs.contexts[0]
        assert ctx.user_id == "user-1"
        assert ctx.node_id == "node-9"
        assert ctx.permissions == {"canRead": True}


class TestConcurrentDispatch:
    """Test fan-out across families."""

    @pytest.mark.asyncio
    async def test_results_in_request_order(self, make_capability):
        """Test results follow request order regardless of completion order."""
        sheets = StubFamily("sheets", delay=0.05)
        gmail = StubFamily("gmail", delay=0.0)
        dispatcher = ToolDispatcher(families=[gmail, sheets])
        calls = [
            ToolCallRequest(id="a", name="sheets_read"),
            ToolCallRequest(id="b", name="gmail_search"),
            ToolCallRequest(id="c", name="sheets_write"),
        ]
        capabilities = {
            "gmail": make_capability("gmail", {"canSearch": True}),
            "sheets": make_capability("sheets", {"canRead": True, "canWrite": True}),
        }

        results = await dispatcher.dispatch(calls, capabilities, "user-1")

        assert [r.tool_call_id for r in results] == ["a", "b", "c"]
        assert [c.id for c in sheets.received[0]] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_failing_family_does_not_cancel_siblings(self, make_capability):
        """Test one family raising becomes error results while the other succeeds."""
        gmail = StubFamily("gmail", fail=True)
        calendar = StubFamily("calendar", delay=0.01)
        dispatcher = ToolDispatcher(families=[gmail, calendar])
        calls = [
            ToolCallRequest(id="g1", name="gmail_send"),
            ToolCallRequest(id="c1", name="calendar_list_events"),
        ]
        capabilities = {
            "gmail": make_capability("gmail", {"canSend": True}),
            "calendar": make_capability("calendar", {"canRead": True}),
        }

        results = await dispatcher.dispatch(calls, capabilities, "user-1")

        assert results[0].is_error
        assert json.loads(results[0].result) == {"error": "gmail exploded"}
        assert not results[1].is_error
        assert json.loads(results[1].result)["family"] == "calendar"


class TestSuccessShortcut:
    """Test synthesized confirmations."""

    def test_email_confirmation(self):
        """Test a sent email yields a confirmation containing the message id."""
        results = [ToolCallResult(tool_call_id="c1", result=json.dumps({"sent": True, "messageId": "m1"}))]
        assert find_success_shortcut(results) == "✅ Email sent successfully!\n\nMessage ID: m1"

    def test_email_confirmation_with_attachments(self):
        results = [ToolCallResult(
            tool_call_id="c1",
            result=json.dumps({"sent": True, "messageId": "m1", "attachmentCount": 2}),
        )]
        assert find_success_shortcut(results).endswith("\nAttachments: 2")

    def test_email_confirmation_without_attachments_omits_count(self):
        """Test an attachment count of zero adds no Attachments line."""
        results = [ToolCallResult(
            tool_call_id="c1",
            result=json.dumps({"sent": True, "messageId": "m1", "attachmentCount": 0}),
        )]
        assert find_success_shortcut(results) == "✅ Email sent successfully!\n\nMessage ID: m1"

    def test_calendar_confirmation(self):
        """Test a created event yields the calendar confirmation."""
        event = {
            "summary": "Standup",
            "start": {"dateTime": "2024-01-15T10:00:00Z"},
            "location": "Room 1",
            "htmlLink": "https://calendar.google.com/event?eid=1",
        }
        results = [ToolCallResult(tool_call_id="c1", result=json.dumps({"created": True, "event": event}))]
        assert find_success_shortcut(results) == (
            "✅ Calendar event created!\n\n**Standup**\nWhen: 2024-01-15T10:00:00Z\nWhere: Room 1"
            "\n\n[View in Google Calendar](https://calendar.google.com/event?eid=1)"
        )

    def test_all_day_event_uses_date(self):
        event = {"summary": "Offsite", "start": {"date": "2024-02-01"}}
        results = [ToolCallResult(tool_call_id="c1", result=json.dumps({"created": True, "event": event}))]
        assert "When: 2024-02-01" in find_success_shortcut(results)

    def test_all_matches_confirmed(self):
        """Test every matching result is confirmed, joined by a blank line."""
        results = [
            ToolCallResult(tool_call_id="c1", result=json.dumps({"sent": True, "messageId": "m1"})),
            ToolCallResult(tool_call_id="c2", result=json.dumps({"sent": True, "messageId": "m2"})),
        ]
        shortcut = find_success_shortcut(results)
        assert "m1" in shortcut and "m2" in shortcut
        assert shortcut.index("m1") < shortcut.index("m2")

    def test_errors_and_invalid_json_skipped(self):
        """Test error results and non-JSON results never fire the shortcut."""
        results = [
            ToolCallResult(tool_call_id="c1", result=json.dumps({"sent": True, "messageId": "m1"}), is_error=True),
            ToolCallResult(tool_call_id="c2", result="not json"),
        ]
        assert find_success_shortcut(results) is None

    def test_draft_is_not_a_shortcut(self):
        """Test a created draft (no event) does not match."""
        results = [ToolCallResult(tool_call_id="c1", result=json.dumps({"created": True, "draftId": "d1"}))]
        assert find_success_shortcut(results) is None
