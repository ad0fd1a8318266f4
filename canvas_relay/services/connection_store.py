"""OAuth connection lookups and access-token refresh."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from sqlalchemy import text

from canvas_relay.infra.config import config
from canvas_relay.infra.crypto import decrypt_token, encrypt_token
from canvas_relay.infra.database import get_db_session
from canvas_relay.infra.metrics import connection_lookups_total
from canvas_relay.infra.timeout import TOOL_HTTP_TIMEOUT

logger = logging.getLogger(__name__)

# Tokens closer than this to expiry are refreshed before use
REFRESH_MARGIN = timedelta(minutes=5)


@dataclass
class OAuthConnection:
    """Active row of oauth_connections."""
    id: str
    user_id: str
    provider: str
    provider_email: Optional[str]
    access_token_encrypted: str
    refresh_token_encrypted: Optional[str]
    token_expires_at: Optional[datetime]
    scopes: Optional[list] = None
    status: str = "active"


def get_oauth_connection(user_id: str, provider: str) -> Optional[OAuthConnection]:
    """Active connection for (user, provider), or None."""
    with get_db_session() as session:
        row = session.execute(
            text("""
                SELECT id, user_id, provider, provider_email,
                       access_token_encrypted, refresh_token_encrypted,
                       token_expires_at, scopes, status
                FROM oauth_connections
                WHERE user_id = :user_id
                  AND provider = :provider
                  AND status = 'active'
                ORDER BY updated_at DESC
                LIMIT 1
            """),
            {"user_id": user_id, "provider": provider}
        ).fetchone()

    if not row:
        connection_lookups_total.labels(provider=provider, status="missing").inc()
        return None

    connection_lookups_total.labels(provider=provider, status="found").inc()
    return OAuthConnection(
        id=str(row.id),
        user_id=str(row.user_id),
        provider=row.provider,
        provider_email=row.provider_email,
        access_token_encrypted=row.access_token_encrypted,
        refresh_token_encrypted=row.refresh_token_encrypted,
        token_expires_at=row.token_expires_at,
        scopes=row.scopes,
        status=row.status,
    )


async def lookup_connection_id(user_id: str, provider: str) -> Optional[str]:
    """Connection id for (user, provider); used by the capability resolver."""
    connection = await asyncio.to_thread(get_oauth_connection, user_id, provider)
    return connection.id if connection else None


def _expires_soon(expires_at: Optional[datetime]) -> bool:
    if expires_at is None:
        return True
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at - datetime.now(timezone.utc) < REFRESH_MARGIN


async def _refresh_google_token(refresh_token: str) -> dict:
    async with httpx.AsyncClient(timeout=TOOL_HTTP_TIMEOUT) as client:
        response = await client.post(
            config.GOOGLE_TOKEN_URL,
            data={
                "refresh_token": refresh_token,
                "client_id": config.GOOGLE_CLIENT_ID or "",
                "client_secret": config.GOOGLE_CLIENT_SECRET or "",
                "grant_type": "refresh_token",
            },
        )
        response.raise_for_status()
        return response.json()


def _store_refreshed_token(connection_id: str, access_token: str, expires_at: datetime) -> None:
    with get_db_session() as session:
        session.execute(
            text("""
                UPDATE oauth_connections
                SET access_token_encrypted = :access_token,
                    token_expires_at = :expires_at,
                    updated_at = NOW(),
                    last_used_at = NOW()
                WHERE id = :connection_id
            """),
            {
                "access_token": encrypt_token(access_token),
                "expires_at": expires_at,
                "connection_id": connection_id,
            }
        )


def _mark_expired(connection_id: str) -> None:
    with get_db_session() as session:
        session.execute(
            text("""
                UPDATE oauth_connections
                SET status = 'expired', updated_at = NOW()
                WHERE id = :connection_id
            """),
            {"connection_id": connection_id}
        )


def _touch_last_used(connection_id: str) -> None:
    with get_db_session() as session:
        session.execute(
            text("UPDATE oauth_connections SET last_used_at = NOW() WHERE id = :connection_id"),
            {"connection_id": connection_id}
        )


async def get_valid_access_token(user_id: str, provider: str = "google") -> Optional[str]:
    """
    Return a usable access token for the user's connection.

    Tokens with less than five minutes left are refreshed first. When the
    refresh fails the connection is marked expired and None is returned.
    """
    connection = await asyncio.to_thread(get_oauth_connection, user_id, provider)
    if not connection:
        return None

    if not _expires_soon(connection.token_expires_at):
        await asyncio.to_thread(_touch_last_used, connection.id)
        return decrypt_token(connection.access_token_encrypted)

    if not connection.refresh_token_encrypted:
        logger.warning(
            "Access token expired and no refresh token stored",
            extra={"user_id": user_id, "provider": provider, "connection_id": connection.id}
        )
        await asyncio.to_thread(_mark_expired, connection.id)
        return None

    try:
        tokens = await _refresh_google_token(decrypt_token(connection.refresh_token_encrypted))
        access_token = tokens["access_token"]
    except (httpx.HTTPError, ValueError, KeyError) as e:
        logger.warning(
            "Token refresh failed, marking connection expired",
            extra={"user_id": user_id, "provider": provider, "connection_id": connection.id, "error": str(e)}
        )
        await asyncio.to_thread(_mark_expired, connection.id)
        return None

    expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(tokens.get("expires_in", 3600)))
    await asyncio.to_thread(_store_refreshed_token, connection.id, access_token, expires_at)
    logger.info("Refreshed access token", extra={"user_id": user_id, "provider": provider})
    return access_token


async def get_slack_bot_token(user_id: str) -> Optional[str]:
    """Decrypted bot token of the user's active Slack connection."""
    connection = await asyncio.to_thread(get_oauth_connection, user_id, "slack")
    if not connection:
        return None
    await asyncio.to_thread(_touch_last_used, connection.id)
    return decrypt_token(connection.access_token_encrypted)


def is_pro_user(user_id: str) -> bool:
    """True when user_profiles.tier is 'pro'."""
    with get_db_session() as session:
        row = session.execute(
            text("SELECT tier FROM user_profiles WHERE id = :user_id"),
            {"user_id": user_id}
        ).fetchone()
    return bool(row) and row.tier == "pro"
