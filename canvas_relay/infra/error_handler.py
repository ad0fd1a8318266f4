"""Error taxonomy and classification for ask/answer requests and integrations."""

import re
from typing import Optional, Tuple
from enum import Enum

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors for better handling."""
    NETWORK = "network"  # Connection issues, timeouts
    API_ERROR = "api_error"  # API returned error response
    AUTH_ERROR = "auth_error"  # Authentication/authorization failures
    RATE_LIMIT = "rate_limit"  # Rate limit exceeded
    VALIDATION = "validation"  # Input validation errors
    UNKNOWN = "unknown"  # Unknown errors


class RetryableError(Exception):
    """Base exception for classified errors."""
    def __init__(self, message: str, category: ErrorCategory, retryable: bool = True, retry_after: Optional[float] = None):
        self.message = message
        self.category = category
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(message)


class NetworkError(RetryableError):
    """Network-related errors (connection, timeout)."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.NETWORK, retryable=True, retry_after=retry_after)


class APIError(RetryableError):
    """API returned an error response."""
    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False, retry_after: Optional[float] = None):
        self.status_code = status_code
        super().__init__(message, ErrorCategory.API_ERROR, retryable=retryable, retry_after=retry_after)


class ProviderCallError(APIError):
    """A provider turn failed: non-2xx reply, malformed body or open circuit."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code, retryable=False)


class AuthError(RetryableError):
    """Authentication/authorization errors."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.AUTH_ERROR, retryable=False)


class RateLimitError(RetryableError):
    """Rate limit exceeded."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.RATE_LIMIT, retryable=True, retry_after=retry_after)


class ValidationError(RetryableError):
    """Input validation errors."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.VALIDATION, retryable=False)


def classify_error(error: Exception) -> Tuple[ErrorCategory, bool, Optional[float]]:
    """
    Classify an error into a category and determine if it's retryable.

    Args:
        error: The exception to classify

    Returns:
        Tuple of (category, retryable, retry_after_seconds)
    """
    if isinstance(error, RetryableError):
        return error.category, error.retryable, error.retry_after

    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError, ConnectionError, TimeoutError)):
        return ErrorCategory.NETWORK, True, None

    error_str = str(error).lower()

    if 'rate limit' in error_str or '429' in error_str or 'too many requests' in error_str:
        retry_after = None
        match = re.search(r'retry[_-]after[:\s]+(\d+)', error_str, re.IGNORECASE)
        if match:
            retry_after = float(match.group(1))
        return ErrorCategory.RATE_LIMIT, True, retry_after

    if any(keyword in error_str for keyword in ['unauthorized', 'forbidden', '401', '403', 'authentication']):
        return ErrorCategory.AUTH_ERROR, False, None

    if any(keyword in error_str for keyword in ['connection', 'timeout', 'network', 'dns', 'refused']):
        return ErrorCategory.NETWORK, True, None

    return ErrorCategory.UNKNOWN, False, None


def _google_error_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("message")
    return None


def wrap_http_error(error: httpx.HTTPStatusError, service: str) -> RetryableError:
    """
    Wrap an integration REST failure into our error types.

    Google APIs report failures as {"error": {"code", "message", "status"}};
    the message is surfaced so the model can react to it.
    """
    response = error.response
    status_code = response.status_code
    detail = _google_error_message(response) or response.text

    if status_code == 429:
        retry_after_header = response.headers.get("retry-after")
        retry_after = float(retry_after_header) if retry_after_header and retry_after_header.isdigit() else None
        return RateLimitError(f"{service} rate limit exceeded: {detail}", retry_after=retry_after)
    if status_code in (401, 403):
        return AuthError(f"{service} auth error ({status_code}): {detail}")
    if status_code >= 500:
        return APIError(f"{service} server error ({status_code}): {detail}", status_code=status_code, retryable=True)
    return APIError(f"{service} API error ({status_code}): {detail}", status_code=status_code)


def http_status_for(error: Exception) -> int:
    """HTTP status for the ask/answer failure envelope."""
    if isinstance(error, ValidationError):
        return 400
    return 500
