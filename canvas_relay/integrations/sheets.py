"""Google Sheets integration family."""

import re
from typing import Any, Dict
from urllib.parse import quote

from canvas_relay.adapters.google_api import SHEETS_API, GoogleApiClient, google_client_for
from canvas_relay.integrations.base import ExecutionContext, IntegrationFamily, tool
from canvas_relay.models.integration import IntegrationConfig


_SPREADSHEET_ID = {"type": "string", "description": "The ID of the spreadsheet"}
_ROWS = {
    "type": "array",
    "items": {"type": "array", "items": {"type": ["string", "number", "boolean", "null"]}},
}
_RENDER_OPTIONS = ["FORMATTED_VALUE", "UNFORMATTED_VALUE", "FORMULA"]

SHEETS_TOOLS = [
    tool(
        "sheets_read",
        'Read data from a Google Spreadsheet. Returns the values in the specified range. Use A1 notation for the '
        'range (e.g., "Sheet1!A1:D10" or just "A1:D10" for the first sheet).',
        {
            "spreadsheetId": {
                "type": "string",
                "description": "The ID of the spreadsheet (found in the URL: "
                               "docs.google.com/spreadsheets/d/SPREADSHEET_ID/edit)",
            },
            "range": {"type": "string", "description": 'The A1 notation range to read (e.g., "Sheet1!A1:D10", "A:D", "1:10")'},
            "valueRenderOption": {
                "type": "string",
                "enum": _RENDER_OPTIONS,
                "description": "How values should be rendered. FORMATTED_VALUE returns display values, "
                               "UNFORMATTED_VALUE returns raw values, FORMULA returns formulas.",
            },
        },
        ["spreadsheetId", "range"],
        "canRead",
    ),
    tool(
        "sheets_write",
        "Write data to a Google Spreadsheet. Overwrites existing data in the specified range.",
        {
            "spreadsheetId": _SPREADSHEET_ID,
            "range": {"type": "string", "description": 'The A1 notation range to write to (e.g., "Sheet1!A1:D10")'},
            "values": dict(_ROWS, description="The data to write as a 2D array. Each inner array is a row."),
            "valueInputOption": {
                "type": "string",
                "enum": ["RAW", "USER_ENTERED"],
                "description": "How input should be interpreted. RAW treats input as literal values, USER_ENTERED "
                               "parses as if typed by user (handles formulas, dates, etc.).",
            },
        },
        ["spreadsheetId", "range", "values"],
        "canWrite",
    ),
    tool(
        "sheets_append",
        "Append rows to a Google Spreadsheet. Adds data after the last row with content in the specified range.",
        {
            "spreadsheetId": _SPREADSHEET_ID,
            "range": {
                "type": "string",
                "description": 'The A1 notation of the range to search for data (e.g., "Sheet1!A:D"). '
                               "Data will be appended after the last row.",
            },
            "values": dict(_ROWS, description="The rows to append as a 2D array."),
            "valueInputOption": {
                "type": "string",
                "enum": ["RAW", "USER_ENTERED"],
                "description": "How input should be interpreted. Default is USER_ENTERED.",
            },
        },
        ["spreadsheetId", "range", "values"],
        "canWrite",
    ),
    tool(
        "sheets_clear",
        "Clear data from a range in a Google Spreadsheet. Removes values but keeps formatting.",
        {
            "spreadsheetId": _SPREADSHEET_ID,
            "range": {"type": "string", "description": 'The A1 notation range to clear (e.g., "Sheet1!A1:D10")'},
        },
        ["spreadsheetId", "range"],
        "canWrite",
    ),
    tool(
        "sheets_get_metadata",
        "Get metadata about a Google Spreadsheet including title, sheets, and their properties.",
        {"spreadsheetId": _SPREADSHEET_ID},
        ["spreadsheetId"],
        "canRead",
    ),
    tool(
        "sheets_create",
        "Create a new Google Spreadsheet.",
        {
            "title": {"type": "string", "description": "The title for the new spreadsheet"},
            "sheetTitles": {
                "type": "array",
                "items": {"type": "string"},
                "description": 'Optional array of sheet names to create. If not provided, creates one sheet named "Sheet1".',
            },
        },
        ["title"],
        "canCreate",
    ),
    tool(
        "sheets_batch_read",
        "Read multiple ranges from a Google Spreadsheet in a single request.",
        {
            "spreadsheetId": _SPREADSHEET_ID,
            "ranges": {
                "type": "array",
                "items": {"type": "string"},
                "description": 'Array of A1 notation ranges to read (e.g., ["Sheet1!A1:B10", "Sheet2!C1:D5"])',
            },
            "valueRenderOption": {"type": "string", "enum": _RENDER_OPTIONS, "description": "How values should be rendered."},
        },
        ["spreadsheetId", "ranges"],
        "canRead",
    ),
    tool(
        "sheets_add_sheet",
        "Add a new sheet (tab) to an existing Google Spreadsheet.",
        {
            "spreadsheetId": _SPREADSHEET_ID,
            "title": {"type": "string", "description": "The title for the new sheet"},
            "rowCount": {"type": "number", "description": "Optional number of rows for the new sheet (default: 1000)"},
            "columnCount": {"type": "number", "description": "Optional number of columns for the new sheet (default: 26)"},
        },
        ["spreadsheetId", "title"],
        "canWrite",
    ),
]


_SPREADSHEET_URL = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")


def extract_spreadsheet_id(value: str) -> str:
    """Accept either a bare spreadsheet id or a docs.google.com URL."""
    match = _SPREADSHEET_URL.search(value or "")
    return match.group(1) if match else value


def _spreadsheet_id(args: Dict[str, Any]) -> str:
    return extract_spreadsheet_id(str(args["spreadsheetId"]))


def _values_path(spreadsheet_id: str, a1_range: str, suffix: str = "") -> str:
    return f"/{spreadsheet_id}/values/{quote(a1_range, safe='')}{suffix}"


class SheetsFamily(IntegrationFamily):
    name = "sheets"
    display_name = "Google Sheets"
    connection_label = "Google Sheets"
    tools = SHEETS_TOOLS
    capability_labels = {
        "canRead": "Read",
        "canWrite": "Write",
        "canCreate": "Create",
        "canFormat": "Format",
    }

    def describe_capabilities(self, integration_config: IntegrationConfig) -> str:
        if not integration_config.enabled:
            return ""

        capabilities = []
        if integration_config.grants("canRead"):
            capabilities.append("- Read spreadsheet data (sheets_read, sheets_batch_read)")
            capabilities.append("- Get spreadsheet metadata (sheets_get_metadata)")
        if integration_config.grants("canWrite"):
            capabilities.append("- Write data to spreadsheets (sheets_write)")
            capabilities.append("- Append rows to spreadsheets (sheets_append)")
            capabilities.append("- Clear ranges (sheets_clear)")
            capabilities.append("- Add new sheets/tabs (sheets_add_sheet)")
        if integration_config.grants("canCreate"):
            capabilities.append("- Create new spreadsheets (sheets_create)")
        if not capabilities:
            return ""

        return (
            "📊 GOOGLE SHEETS INTEGRATION: You have access to the user's Google Sheets with the following capabilities:\n\n"
            + "\n".join(capabilities)
            + "\n\nWhen working with spreadsheets:\n"
            '- Use A1 notation for ranges (e.g., "Sheet1!A1:D10", "A:D", "1:10")\n'
            "- The spreadsheet ID is found in the URL: docs.google.com/spreadsheets/d/SPREADSHEET_ID/edit\n"
            "- For writing data, provide values as a 2D array where each inner array is a row\n"
            '- Use valueInputOption "USER_ENTERED" to have values parsed like typed input (handles formulas, dates, etc.)\n'
            '- Use valueInputOption "RAW" to write literal values without parsing\n\n'
            "Be careful with write operations as they will modify the user's data."
        )

    async def acquire_client(self, ctx: ExecutionContext) -> GoogleApiClient:
        return await google_client_for(ctx.user_id, SHEETS_API, "Google Sheets")

    async def op_read(self, sheets: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        data = await sheets.get(_values_path(_spreadsheet_id(args), args["range"]), params={
            "majorDimension": args.get("majorDimension") or "ROWS",
            "valueRenderOption": args.get("valueRenderOption") or "FORMATTED_VALUE",
        })
        values = data.get("values") or []
        return {
            "range": data.get("range"),
            "majorDimension": data.get("majorDimension"),
            "values": values,
            "rowCount": len(values),
            "columnCount": len(values[0]) if values else 0,
        }

    async def op_write(self, sheets: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        data = await sheets.put(
            _values_path(_spreadsheet_id(args), args["range"]),
            {"values": args.get("values") or []},
            params={"valueInputOption": args.get("valueInputOption") or "USER_ENTERED"},
        )
        return {
            "spreadsheetId": data.get("spreadsheetId"),
            "updatedRange": data.get("updatedRange"),
            "updatedRows": data.get("updatedRows"),
            "updatedColumns": data.get("updatedColumns"),
            "updatedCells": data.get("updatedCells"),
        }

    async def op_append(self, sheets: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        data = await sheets.post(
            _values_path(_spreadsheet_id(args), args["range"], ":append"),
            {"values": args.get("values") or []},
            params={
                "valueInputOption": args.get("valueInputOption") or "USER_ENTERED",
                "insertDataOption": args.get("insertDataOption") or "INSERT_ROWS",
            },
        )
        updates = data.get("updates") or {}
        return {
            "spreadsheetId": data.get("spreadsheetId"),
            "tableRange": data.get("tableRange"),
            "updates": {
                "updatedRange": updates.get("updatedRange"),
                "updatedRows": updates.get("updatedRows"),
                "updatedColumns": updates.get("updatedColumns"),
                "updatedCells": updates.get("updatedCells"),
            },
        }

    async def op_clear(self, sheets: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        data = await sheets.post(_values_path(_spreadsheet_id(args), args["range"], ":clear"))
        return {"spreadsheetId": data.get("spreadsheetId"), "clearedRange": data.get("clearedRange")}

    async def op_get_metadata(self, sheets: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        data = await sheets.get(f"/{_spreadsheet_id(args)}", params={
            "includeGridData": bool(args.get("includeGridData")),
        })
        properties = data.get("properties") or {}
        return {
            "spreadsheetId": data.get("spreadsheetId"),
            "title": properties.get("title"),
            "locale": properties.get("locale"),
            "timeZone": properties.get("timeZone"),
            "sheets": [
                {
                    "sheetId": (sheet.get("properties") or {}).get("sheetId"),
                    "title": (sheet.get("properties") or {}).get("title"),
                    "index": (sheet.get("properties") or {}).get("index"),
                    "rowCount": ((sheet.get("properties") or {}).get("gridProperties") or {}).get("rowCount"),
                    "columnCount": ((sheet.get("properties") or {}).get("gridProperties") or {}).get("columnCount"),
                }
                for sheet in data.get("sheets") or []
            ],
        }

    async def op_create(self, sheets: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        titles = args.get("sheetTitles")
        if titles:
            sheet_properties = [{"properties": {"title": title, "index": index}} for index, title in enumerate(titles)]
        else:
            sheet_properties = [{"properties": {"title": "Sheet1", "index": 0}}]

        data = await sheets.post("", {"properties": {"title": args.get("title")}, "sheets": sheet_properties})
        return {
            "spreadsheetId": data.get("spreadsheetId"),
            "spreadsheetUrl": data.get("spreadsheetUrl"),
            "title": (data.get("properties") or {}).get("title"),
            "sheets": [
                {
                    "sheetId": (sheet.get("properties") or {}).get("sheetId"),
                    "title": (sheet.get("properties") or {}).get("title"),
                }
                for sheet in data.get("sheets") or []
            ],
        }

    async def op_batch_read(self, sheets: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        data = await sheets.get(f"/{_spreadsheet_id(args)}/values:batchGet", params={
            "ranges": args.get("ranges") or [],
            "valueRenderOption": args.get("valueRenderOption") or "FORMATTED_VALUE",
        })
        return {
            "spreadsheetId": data.get("spreadsheetId"),
            "valueRanges": [
                {"range": vr.get("range"), "majorDimension": vr.get("majorDimension"), "values": vr.get("values") or []}
                for vr in data.get("valueRanges") or []
            ],
        }

    async def op_add_sheet(self, sheets: GoogleApiClient, args: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        data = await sheets.post(f"/{_spreadsheet_id(args)}:batchUpdate", {
            "requests": [
                {
                    "addSheet": {
                        "properties": {
                            "title": args.get("title"),
                            "gridProperties": {
                                "rowCount": args.get("rowCount") or 1000,
                                "columnCount": args.get("columnCount") or 26,
                            },
                        }
                    }
                }
            ]
        })
        replies = data.get("replies") or [{}]
        properties = (replies[0].get("addSheet") or {}).get("properties") or {}
        grid = properties.get("gridProperties") or {}
        return {
            "sheetId": properties.get("sheetId"),
            "title": properties.get("title"),
            "index": properties.get("index"),
            "rowCount": grid.get("rowCount"),
            "columnCount": grid.get("columnCount"),
        }
