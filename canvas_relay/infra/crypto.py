"""Encryption of OAuth tokens at rest."""

from cryptography.fernet import Fernet, InvalidToken

from canvas_relay.infra.config import config
from canvas_relay.infra.error_handler import AuthError


_fernet = None


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        if not config.OAUTH_ENCRYPTION_KEY:
            raise ValueError("OAUTH_ENCRYPTION_KEY not configured")
        _fernet = Fernet(config.OAUTH_ENCRYPTION_KEY.encode("utf-8"))
    return _fernet


def encrypt_token(token: str) -> str:
    """Encrypt a token for storage in oauth_connections."""
    return _get_fernet().encrypt(token.encode("utf-8")).decode("ascii")


def decrypt_token(encrypted_token: str) -> str:
    """
    Decrypt a stored token.

    Raises:
        AuthError: If the token was not produced with the configured key
    """
    try:
        return _get_fernet().decrypt(encrypted_token.encode("ascii")).decode("utf-8")
    except InvalidToken as e:
        raise AuthError("Stored OAuth token could not be decrypted") from e
