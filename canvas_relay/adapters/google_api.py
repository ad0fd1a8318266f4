"""Thin REST client for Google Workspace APIs (Gmail, Sheets, Docs, Drive, Calendar)."""

from typing import Any, Dict, Optional

import httpx

from canvas_relay.infra.error_handler import AuthError, NetworkError, wrap_http_error
from canvas_relay.infra.timeout import TOOL_HTTP_TIMEOUT
from canvas_relay.services.connection_store import get_valid_access_token

GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"
SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
DOCS_API = "https://docs.googleapis.com/v1/documents"
DRIVE_API = "https://www.googleapis.com/drive/v3"
CALENDAR_API = "https://www.googleapis.com/calendar/v3"


def _clean_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not params:
        return None
    return {k: v for k, v in params.items() if v is not None}


class GoogleApiClient:
    """
    Bearer-token client bound to one Google API base URL.

    Failures raise the error types from infra.error_handler so that the
    family executor can report the Google error message to the model.
    """

    def __init__(self, access_token: str, base_url: str, service: str, timeout: float = TOOL_HTTP_TIMEOUT):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.service = service
        self.timeout = timeout

    def url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.base_url}{path}"

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.request(
                    method,
                    self.url(path),
                    params=_clean_params(params),
                    json=json_body,
                    headers={"Authorization": f"Bearer {self.access_token}"},
                )
            except httpx.TransportError as e:
                raise NetworkError(f"{self.service} request failed: {e}") from e
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise wrap_http_error(e, self.service) from e

            # DELETE and some mutations reply 204 with no body
            if not response.content:
                return {}
            return response.json()

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json_body: Optional[Dict[str, Any]] = None,
                   params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("POST", path, params=params, json_body=json_body or {})

    async def put(self, path: str, json_body: Dict[str, Any],
                  params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("PUT", path, params=params, json_body=json_body)

    async def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("DELETE", path, params=params)


async def google_client_for(user_id: str, base_url: str, service: str) -> GoogleApiClient:
    """
    Build a client with the user's (refreshed if needed) Google token.

    Raises:
        AuthError: If the user has no usable Google connection
    """
    access_token = await get_valid_access_token(user_id, "google")
    if not access_token:
        raise AuthError("No active Google connection for user")
    return GoogleApiClient(access_token, base_url, service)
