"""Google Calendar integration family."""

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple
from urllib.parse import quote

from canvas_relay.adapters.google_api import CALENDAR_API, GoogleApiClient, google_client_for
from canvas_relay.integrations.base import ExecutionContext, IntegrationFamily, tool
from canvas_relay.models.integration import IntegrationConfig


def _calendar_id_field(description: str = 'Calendar ID (default: "primary")') -> Dict[str, Any]:
    return {"type": "string", "description": description, "default": "primary"}


def _notifications_field(description: str) -> Dict[str, Any]:
    return {"type": "boolean", "description": description, "default": True}


_EVENT_ID = {"type": "string"}

CALENDAR_TOOLS = [
    tool(
        "calendar_list_events",
        "List upcoming events from the Google Calendar. Returns events within a specified time range. "
        "By default, shows events for the next 7 days.",
        {
            "calendarId": _calendar_id_field('Calendar ID to list events from. Use "primary" for the main calendar (default).'),
            "timeMin": {
                "type": "string",
                "description": 'Start of time range (ISO 8601 format, e.g., "2024-01-15T00:00:00Z"). Defaults to now.',
            },
            "timeMax": {"type": "string", "description": "End of time range (ISO 8601 format). Defaults to 7 days from now."},
            "maxResults": {
                "type": "number",
                "description": "Maximum number of events to return (default: 10, max: 50)",
                "default": 10,
            },
            "query": {
                "type": "string",
                "description": "Free text search terms to filter events (searches summary, description, location, attendees)",
            },
        },
        [],
        "canRead",
    ),
    tool(
        "calendar_get_event",
        "Get details of a specific calendar event by its ID.",
        {
            "calendarId": _calendar_id_field(),
            "eventId": dict(_EVENT_ID, description="The ID of the event to retrieve"),
        },
        ["eventId"],
        "canRead",
    ),
    tool(
        "calendar_create_event",
        "Create a new calendar event. Can create both timed events and all-day events. "
        "Use with caution - this will actually create an event on the calendar.",
        {
            "calendarId": _calendar_id_field('Calendar ID to create the event in (default: "primary")'),
            "summary": {"type": "string", "description": "Event title/summary"},
            "description": {"type": "string", "description": "Event description or notes"},
            "location": {"type": "string", "description": "Event location (address or place name)"},
            "startDateTime": {
                "type": "string",
                "description": 'Start date and time for timed events (ISO 8601 format, e.g., "2024-01-15T10:00:00"). '
                               "Required for timed events.",
            },
            "endDateTime": {
                "type": "string",
                "description": "End date and time for timed events (ISO 8601 format). Required for timed events.",
            },
            "startDate": {
                "type": "string",
                "description": "Start date for all-day events (YYYY-MM-DD format). Use this OR startDateTime, not both.",
            },
            "endDate": {
                "type": "string",
                "description": "End date for all-day events (YYYY-MM-DD format). For a single all-day event, use the next day.",
            },
            "timeZone": {
                "type": "string",
                "description": 'Time zone for the event (e.g., "America/New_York", "Europe/London"). '
                               "Defaults to calendar's time zone.",
            },
            "attendees": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Array of attendee email addresses to invite",
            },
            "sendNotifications": _notifications_field("Whether to send email notifications to attendees (default: true)"),
            "reminders": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "method": {"type": "string", "enum": ["email", "popup"], "description": "Reminder method"},
                        "minutes": {"type": "number", "description": "Minutes before event to send reminder"},
                    },
                    "required": ["method", "minutes"],
                },
                "description": 'Custom reminders (e.g., [{"method": "popup", "minutes": 30}])',
            },
        },
        ["summary"],
        "canCreate",
    ),
    tool(
        "calendar_update_event",
        "Update an existing calendar event. Only specify the fields you want to change.",
        {
            "calendarId": _calendar_id_field(),
            "eventId": dict(_EVENT_ID, description="The ID of the event to update"),
            "summary": {"type": "string", "description": "New event title/summary"},
            "description": {"type": "string", "description": "New event description"},
            "location": {"type": "string", "description": "New event location"},
            "startDateTime": {"type": "string", "description": "New start date and time (ISO 8601 format)"},
            "endDateTime": {"type": "string", "description": "New end date and time (ISO 8601 format)"},
            "startDate": {"type": "string", "description": "New start date for all-day events (YYYY-MM-DD)"},
            "endDate": {"type": "string", "description": "New end date for all-day events (YYYY-MM-DD)"},
            "timeZone": {"type": "string", "description": "Time zone for the event"},
            "attendees": {
                "type": "array",
                "items": {"type": "string"},
                "description": "New list of attendee email addresses (replaces existing)",
            },
            "sendNotifications": _notifications_field("Whether to send update notifications to attendees"),
        },
        ["eventId"],
        "canUpdate",
    ),
    tool(
        "calendar_delete_event",
        "Delete a calendar event. This action cannot be undone.",
        {
            "calendarId": _calendar_id_field(),
            "eventId": dict(_EVENT_ID, description="The ID of the event to delete"),
            "sendNotifications": _notifications_field("Whether to send cancellation notifications to attendees"),
        },
        ["eventId"],
        "canDelete",
    ),
    tool(
        "calendar_list_calendars",
        "List all calendars the user has access to (own calendars and shared calendars).",
        {},
        [],
        "canRead",
    ),
    tool(
        "calendar_quick_add",
        "Quickly add an event using natural language. Google parses the text to extract event details. "
        'Example: "Meeting with John tomorrow at 3pm for 1 hour"',
        {
            "calendarId": _calendar_id_field(),
            "text": {
                "type": "string",
                "description": 'Natural language text describing the event (e.g., "Lunch with Sarah on Friday at noon")',
            },
            "sendNotifications": _notifications_field("Whether to send notifications"),
        },
        ["text"],
        "canCreate",
    ),
    tool(
        "calendar_find_free_time",
        "Find free/busy time slots for scheduling. Useful for finding available meeting times.",
        {
            "timeMin": {"type": "string", "description": "Start of time range to check (ISO 8601 format)"},
            "timeMax": {"type": "string", "description": "End of time range to check (ISO 8601 format)"},
            "calendars": {
                "type": "array",
                "items": {"type": "string"},
                "description": 'Calendar IDs to check (default: ["primary"])',
            },
            "timeZone": {"type": "string", "description": "Time zone for the results"},
        },
        ["timeMin", "timeMax"],
        "canRead",
    ),
]

_OFFSET_SUFFIX = re.compile(r"-\d{2}:\d{2}$")


def ensure_utc_suffix(value: str) -> str:
    """Append Z to a datetime string that carries no offset."""
    if value and not value.endswith("Z") and "+" not in value and not _OFFSET_SUFFIX.search(value):
        return value + "Z"
    return value


def parse_rfc3339(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def compute_free_slots(
    time_min: str,
    time_max: str,
    busy_by_calendar: Dict[str, Dict[str, Any]],
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Merge freebusy results into sorted busy slots and the free gaps between them.

    Args:
        time_min: Start of the window (RFC 3339)
        time_max: End of the window (RFC 3339)
        busy_by_calendar: The ``calendars`` mapping of a freebusy reply

    Returns:
        Tuple of (busy_slots, free_slots)
    """
    busy_slots = [
        {"calendarId": calendar_id, "start": busy["start"], "end": busy["end"]}
        for calendar_id, data in busy_by_calendar.items()
        for busy in (data or {}).get("busy") or []
    ]
    busy_slots.sort(key=lambda slot: parse_rfc3339(slot["start"]))

    free_slots = []
    current = parse_rfc3339(time_min)
    window_end = parse_rfc3339(time_max)
    for busy in busy_slots:
        busy_start = parse_rfc3339(busy["start"])
        if current < busy_start:
            free_slots.append({
                "start": to_iso(current),
                "end": to_iso(busy_start),
                "durationMinutes": round((busy_start - current).total_seconds() / 60),
            })
        current = max(current, parse_rfc3339(busy["end"]))

    if current < window_end:
        free_slots.append({
            "start": to_iso(current),
            "end": to_iso(window_end),
            "durationMinutes": round((window_end - current).total_seconds() / 60),
        })

    return busy_slots, free_slots


def format_event(event: Dict[str, Any]) -> Dict[str, Any]:
    attendees = event.get("attendees")
    return {
        "id": event.get("id"),
        "calendarId": (event.get("organizer") or {}).get("email") or "primary",
        "summary": event.get("summary") or "(No title)",
        "description": event.get("description"),
        "location": event.get("location"),
        "start": event.get("start"),
        "end": event.get("end"),
        "attendees": [
            {
                "email": a.get("email"),
                "displayName": a.get("displayName"),
                "responseStatus": a.get("responseStatus"),
                "optional": a.get("optional"),
            }
            for a in attendees
        ] if attendees else None,
        "status": event.get("status"),
        "htmlLink": event.get("htmlLink"),
        "created": event.get("created"),
        "updated": event.get("updated"),
        "recurringEventId": event.get("recurringEventId"),
        "organizer": event.get("organizer"),
    }


def _send_updates(args: Dict[str, Any]) -> str:
    return "none" if args.get("sendNotifications") is False else "all"


def _events_path(args: Dict[str, Any], event_id: str = "") -> str:
    calendar_id = quote(args.get("calendarId") or "primary", safe="")
    path = f"/calendars/{calendar_id}/events"
    return f"{path}/{quote(event_id, safe='')}" if event_id else path


class CalendarFamily(IntegrationFamily):
    name = "calendar"
    display_name = "Calendar"
    connection_label = "Google Calendar"
    tools = CALENDAR_TOOLS
    capability_labels = {
        "canRead": "Read",
        "canCreate": "Create",
        "canUpdate": "Update",
        "canDelete": "Delete",
        "canManageReminders": "Reminder management",
    }

    def describe_capabilities(self, integration_config: IntegrationConfig) -> str:
        capabilities = []
        if integration_config.grants("canRead"):
            capabilities.extend([
                "- View calendar events and check availability",
                "- Search for events",
                "- List all calendars",
                "- Find free time slots",
            ])
        if integration_config.grants("canCreate"):
            capabilities.extend([
                "- Create new calendar events",
                "- Schedule meetings with attendees",
                "- Use natural language to quickly add events",
            ])
        if integration_config.grants("canUpdate"):
            capabilities.append("- Update existing events (time, location, attendees, etc.)")
        if integration_config.grants("canDelete"):
            capabilities.append("- Delete calendar events")
        if integration_config.grants("canManageReminders"):
            capabilities.append("- Set and manage event reminders")
        if not capabilities:
            return ""

        return (
            "## Google Calendar Integration\n\n"
            "You have access to the user's Google Calendar. You can:\n"
            + "\n".join(capabilities)
            + "\n\nIMPORTANT - Be action-oriented:\n"
            "- When the user asks to add/create a calendar event, JUST DO IT immediately - do not ask for confirmation\n"
            "- Use reasonable defaults for any missing details (15-min duration, 10-min popup reminder, primary calendar)\n"
            "- Infer the timezone from context or use America/Los_Angeles as default\n"
            "- Only ask questions if critical information is truly missing (like date/time for a meeting)\n"
            "- After creating an event, briefly confirm what was created\n\n"
            "Technical notes:\n"
            '- Use ISO 8601 format for dates and times (e.g., "2024-01-15T10:00:00")\n'
            "- For all-day events, use YYYY-MM-DD format\n\n"
            "Available calendar tools: " + ", ".join(t.name for t in CALENDAR_TOOLS)
        )

    async def acquire_client(self, ctx: ExecutionContext) -> GoogleApiClient:
        return await google_client_for(ctx.user_id, CALENDAR_API, "Google Calendar")

    async def op_list_events(self, calendar: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        time_min = args.get("timeMin") or to_iso(now)
        time_max = args.get("timeMax") or to_iso(now + timedelta(days=7))
        response = await calendar.get(_events_path(args), params={
            "timeMin": time_min,
            "timeMax": time_max,
            "maxResults": min(args.get("maxResults") or 10, 50),
            "singleEvents": True,
            "orderBy": "startTime",
            "q": args.get("query") or None,
        })
        events = response.get("items") or []
        return {
            "resultCount": len(events),
            "timeRange": {"start": time_min, "end": time_max},
            "events": [format_event(e) for e in events],
        }

    async def op_get_event(self, calendar: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        return format_event(await calendar.get(_events_path(args, args["eventId"])))

    async def op_create_event(self, calendar: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        event: Dict[str, Any] = {"summary": args.get("summary")}
        if args.get("description"):
            event["description"] = args["description"]
        if args.get("location"):
            event["location"] = args["location"]

        if args.get("startDateTime") and args.get("endDateTime"):
            event["start"] = {"dateTime": args["startDateTime"]}
            event["end"] = {"dateTime": args["endDateTime"]}
            if args.get("timeZone"):
                event["start"]["timeZone"] = args["timeZone"]
                event["end"]["timeZone"] = args["timeZone"]
        elif args.get("startDate"):
            event["start"] = {"date": args["startDate"]}
            event["end"] = {"date": args.get("endDate") or args["startDate"]}
        else:
            start = datetime.now(timezone.utc)
            event["start"] = {"dateTime": to_iso(start)}
            event["end"] = {"dateTime": to_iso(start + timedelta(hours=1))}

        if isinstance(args.get("attendees"), list):
            event["attendees"] = [{"email": email} for email in args["attendees"]]
        if isinstance(args.get("reminders"), list):
            event["reminders"] = {"useDefault": False, "overrides": args["reminders"]}

        created = await calendar.post(_events_path(args), event, params={"sendUpdates": _send_updates(args)})
        return {"created": True, "event": format_event(created)}

    async def op_update_event(self, calendar: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        path = _events_path(args, args["eventId"])
        event = dict(await calendar.get(path))

        for key in ("summary", "description", "location"):
            if key in args:
                event[key] = args[key]

        if args.get("startDateTime") and args.get("endDateTime"):
            event["start"] = {
                "dateTime": args["startDateTime"],
                "timeZone": args.get("timeZone") or (event.get("start") or {}).get("timeZone"),
            }
            event["end"] = {
                "dateTime": args["endDateTime"],
                "timeZone": args.get("timeZone") or (event.get("end") or {}).get("timeZone"),
            }
        elif args.get("startDate"):
            event["start"] = {"date": args["startDate"]}
            event["end"] = {"date": args.get("endDate") or args["startDate"]}

        if "attendees" in args:
            event["attendees"] = [{"email": email} for email in args["attendees"] or []]

        updated = await calendar.put(path, event, params={"sendUpdates": _send_updates(args)})
        return {"updated": True, "event": format_event(updated)}

    async def op_delete_event(self, calendar: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        await calendar.delete(_events_path(args, args["eventId"]), params={"sendUpdates": _send_updates(args)})
        return {"deleted": True, "eventId": args["eventId"]}

    async def op_list_calendars(self, calendar: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        response = await calendar.get("/users/me/calendarList")
        return {
            "calendars": [
                {
                    "id": cal.get("id"),
                    "summary": cal.get("summary"),
                    "description": cal.get("description"),
                    "timeZone": cal.get("timeZone"),
                    "accessRole": cal.get("accessRole"),
                    "primary": cal.get("primary") or False,
                    "backgroundColor": cal.get("backgroundColor"),
                    "foregroundColor": cal.get("foregroundColor"),
                }
                for cal in response.get("items") or []
            ]
        }

    async def op_quick_add(self, calendar: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        created = await calendar.post(
            _events_path(args) + "/quickAdd",
            params={"text": args.get("text", ""), "sendUpdates": _send_updates(args)},
        )
        return {"created": True, "event": format_event(created)}

    async def op_find_free_time(self, calendar: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        time_min = ensure_utc_suffix(args["timeMin"])
        time_max = ensure_utc_suffix(args["timeMax"])
        calendars = args.get("calendars") or ["primary"]

        response = await calendar.post("/freeBusy", {
            "timeMin": time_min,
            "timeMax": time_max,
            "timeZone": args.get("timeZone") or "UTC",
            "items": [{"id": calendar_id} for calendar_id in calendars],
        })
        busy_slots, free_slots = compute_free_slots(time_min, time_max, response.get("calendars") or {})
        return {
            "timeRange": {"start": time_min, "end": time_max},
            "busySlots": busy_slots,
            "freeSlots": free_slots,
        }
