"""Custom exceptions for the CRM sync backend."""

import logging
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Exception type → safe user-facing message mapping
_SAFE_MESSAGES: dict[str, str] = {
    "ConfigurationError": "This integration is not configured. Please contact support.",
    "MissingRefreshToken": "Your CRM connection has expired. Please reconnect it in Settings.",
    "TokenRefreshError": "Your CRM connection could not be renewed. Please reconnect it in Settings.",
    "CRMAuthError": "Your CRM connection was rejected. Please reconnect it in Settings.",
    "CRMNotFoundError": "The contact no longer exists in the CRM.",
    "RateLimitedError": "The service is busy. Please wait a moment and try again.",
    "TransportError": "Could not reach the service. Check your connection and try again.",
    "AIServiceError": "The AI service failed to respond. Please try again.",
    "ServerError": "The CRM is temporarily unavailable. Please try again.",
    "BadRequestError": "The CRM rejected the update. Please review the values and try again.",
    "TranscriptUnavailableError": "This meeting has no transcript to analyze yet.",
    "NotConnectedError": "Connect your CRM account in Settings first.",
    "ValidationError": "The provided input is invalid. Please check and try again.",
    "ExternalServiceError": "An external service is temporarily unavailable.",
}

_DEFAULT_MESSAGE = "An error occurred. Please try again."

# Service tag → name shown to users
_SERVICE_NAMES: dict[str, str] = {
    "gemini": "Gemini",
    "hubspot": "HubSpot",
    "salesforce": "Salesforce",
}


def sanitize_error(e: Exception) -> str:
    """Map an exception to a safe, user-facing error message.

    Walks the exception's MRO so subclasses inherit the closest mapped
    message. Internal details (bodies, tokens, stack traces) never leak.

    Args:
        e: The exception to sanitize.

    Returns:
        A safe, generic error message string.
    """
    for cls in type(e).__mro__:
        safe_msg = _SAFE_MESSAGES.get(cls.__name__)
        if safe_msg:
            return safe_msg

    return _DEFAULT_MESSAGE


class ErrorKind(str, Enum):
    """Classification of a failed external call."""

    NOT_FOUND = "not_found"
    AUTH_ERROR = "auth_error"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    TRANSPORT_ERROR = "transport_error"
    BAD_REQUEST = "bad_request"


class ScribeException(Exception):
    """Base exception for all application-specific errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class ConfigurationError(ScribeException):
    """A required setting (API key, OAuth client) is missing (500)."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="CONFIGURATION_ERROR", status_code=500)


class ValidationError(ScribeException):
    """Input validation error (400)."""

    def __init__(
        self, message: str, field: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        """Initialize validation error.

        Args:
            message: Error message.
            field: Name of the invalid field.
            details: Additional validation details.
        """
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=error_details,
        )


class FieldValidationError(ValidationError):
    """A single outgoing CRM field failed validation.

    Raised and caught per field while building an update diff; the field is
    dropped and the rest of the update proceeds.
    """

    def __init__(self, field: str, value: Any, reason: str) -> None:
        super().__init__(
            message=f"Invalid value for {field}: {reason}",
            field=field,
            details={"value": value, "reason": reason},
        )
        self.reason = reason


class TranscriptUnavailableError(ScribeException):
    """Meeting has no transcript or participants to build a prompt from (422)."""

    def __init__(self, message: str = "Meeting transcript is not available") -> None:
        super().__init__(message=message, code="TRANSCRIPT_UNAVAILABLE", status_code=422)


class NotConnectedError(ScribeException):
    """User has no stored credential for the provider (404)."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            message=f"No connected {provider} account",
            code="NOT_CONNECTED",
            status_code=404,
            details={"provider": provider},
        )
        self.provider = provider


class MissingRefreshToken(ScribeException):
    """Credential is expiring and cannot be refreshed (401)."""

    def __init__(self, provider: str, credential_id: str | None = None) -> None:
        super().__init__(
            message=f"{provider} credential has no refresh token",
            code="MISSING_REFRESH_TOKEN",
            status_code=401,
            details={"provider": provider, "credential_id": credential_id},
        )
        self.provider = provider


class ExternalServiceError(ScribeException):
    """Failure talking to an external service (502).

    Retains the upstream status and raw body so callers can classify the
    failure and extract retry hints.
    """

    kind: ErrorKind = ErrorKind.SERVER_ERROR
    default_code: str = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        service: str,
        message: str | None = None,
        status: int | None = None,
        body: Any = None,
    ) -> None:
        """Initialize external service error.

        Args:
            service: Name of the external service (e.g. "hubspot", "gemini").
            message: Optional error message.
            status: Upstream HTTP status, if a response was received.
            body: Raw upstream response body.
        """
        error_message = message or f"Error communicating with {service}"
        super().__init__(
            message=error_message,
            code=self.default_code,
            status_code=502,
            details={"service": service, "status": status, "kind": self.kind.value},
        )
        self.service = service
        self.status = status
        self.body = body


class TransportError(ExternalServiceError):
    """Network-level failure; no response was received."""

    kind = ErrorKind.TRANSPORT_ERROR
    default_code = "TRANSPORT_ERROR"


class CRMAuthError(ExternalServiceError):
    """Upstream rejected the access token."""

    kind = ErrorKind.AUTH_ERROR
    default_code = "CRM_AUTH_ERROR"


class TokenRefreshError(ExternalServiceError):
    """Token endpoint refused to issue a new access token."""

    kind = ErrorKind.AUTH_ERROR
    default_code = "TOKEN_REFRESH_ERROR"


class CRMNotFoundError(ExternalServiceError):
    """Requested CRM record does not exist."""

    kind = ErrorKind.NOT_FOUND
    default_code = "CRM_NOT_FOUND"


class ServerError(ExternalServiceError):
    """Upstream 5xx."""

    kind = ErrorKind.SERVER_ERROR
    default_code = "UPSTREAM_SERVER_ERROR"


class BadRequestError(ExternalServiceError):
    """Upstream rejected the request payload (4xx other than auth/404/429)."""

    kind = ErrorKind.BAD_REQUEST
    default_code = "UPSTREAM_BAD_REQUEST"


class AIServiceError(ExternalServiceError):
    """Generative text service returned an error or an unusable response."""

    default_code = "AI_SERVICE_ERROR"


class RateLimitedError(ExternalServiceError):
    """Upstream asked us to slow down (429)."""

    kind = ErrorKind.RATE_LIMITED
    default_code = "RATE_LIMITED"

    def __init__(
        self,
        service: str,
        retry_after: int | None = None,
        message: str | None = None,
        status: int | None = 429,
        body: Any = None,
    ) -> None:
        """Initialize rate limit error.

        Args:
            service: Name of the rate-limited service.
            retry_after: Suggested wait in seconds, when the service supplied one.
            message: Optional error message.
            status: Upstream HTTP status.
            body: Raw upstream response body.
        """
        super().__init__(
            service=service,
            message=message or f"{service} rate limit exceeded",
            status=status,
            body=body,
        )
        self.retry_after = retry_after
        self.details["retry_after"] = retry_after


def error_for_status(
    service: str,
    status: int,
    body: Any,
    message: str | None = None,
) -> ExternalServiceError:
    """Build the exception matching a non-success upstream status.

    Provider adapters call this after their own auth-envelope checks so the
    generic mapping only has to cover status codes.

    Args:
        service: Name of the external service.
        status: Upstream HTTP status.
        body: Decoded response body (or raw text).
        message: Optional message override.

    Returns:
        An ExternalServiceError subclass instance (not raised).
    """
    if status == 401:
        return CRMAuthError(service, message, status=status, body=body)
    if status == 404:
        return CRMNotFoundError(service, message, status=status, body=body)
    if status == 429:
        return RateLimitedError(service, message=message, status=status, body=body)
    if status >= 500:
        return ServerError(service, message, status=status, body=body)
    return BadRequestError(service, message, status=status, body=body)


def user_message_for(e: Exception, action: str = "generating suggestions") -> tuple[str, int | None]:
    """Build a short, actionable workflow message and an optional wait hint.

    Args:
        e: The failure to describe.
        action: What the user was doing, e.g. ``"updating the contact"``.

    Returns:
        ``(message, retry_after_seconds)``.
    """
    if isinstance(e, RateLimitedError):
        wait = f" ~{e.retry_after}s" if e.retry_after else ""
        if e.service == "gemini":
            return (
                f"Gemini API quota/rate limit exceeded while {action}. "
                f"Please wait{wait} and try again.",
                e.retry_after,
            )
        return (
            f"{_SERVICE_NAMES.get(e.service, e.service)} rate limit exceeded while {action}. "
            f"Please wait{wait} and try again.",
            e.retry_after,
        )
    if isinstance(e, AIServiceError) and e.status is not None:
        return f"Gemini API error (HTTP {e.status}) while {action}. Please try again.", None
    if isinstance(e, ConfigurationError):
        return e.message, None
    return sanitize_error(e), None
