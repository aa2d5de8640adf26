"""
Service errors and JSON error response utilities.

Every failure the request pipeline can report is a ResponderError
subclass carrying its HTTP status and a short public message. The API
layer renders them with create_error_response():

{
    "error": "Short public message",
    "details": "Diagnostic text (500 responses only, optional)"
}

Error taxonomy:
    - InvalidRequest (400): malformed body or missing required fields
    - NotFound (404): assistant or chat does not exist
    - ConfigurationError (500): required secrets missing, raised before any I/O
    - StorageError (500): any data-store operation failed
    - UpstreamRateLimited: completion API returned 429 (retried internally)
    - UpstreamError (500): completion API returned another non-2xx status
    - UpstreamExhausted (500): retries against the completion API ran out

Every response produced here carries the permissive CORS headers the
mobile client relies on.
"""
from typing import Iterable, Optional

from fastapi.responses import JSONResponse


# ============================================================================
# CORS
# ============================================================================

CORS_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


# ============================================================================
# Error Types
# ============================================================================

class ResponderError(Exception):
    """
    Base class for errors that map onto an HTTP response.

    Attributes:
        status_code: HTTP status returned to the caller
        message: Short public message placed in the ``error`` field
    """
    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    @property
    def details(self) -> Optional[str]:
        """Diagnostic text echoed in 500 responses (None to omit)."""
        return None


class InvalidRequest(ResponderError):
    status_code = 400
    message = "Missing required fields"

    def __init__(self, missing: Iterable[str] = (), message: Optional[str] = None):
        self.missing = list(missing)
        super().__init__(message)


class ConfigurationError(ResponderError):
    status_code = 500
    message = "Server configuration error"

    def __init__(self, missing: Iterable[str] = ()):
        self.missing = list(missing)
        super().__init__()

    @property
    def details(self) -> Optional[str]:
        if not self.missing:
            return None
        return f"Missing configuration: {', '.join(self.missing)}"


class NotFound(ResponderError):
    status_code = 404

    def __init__(self, resource: str, resource_id: str):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource.title()} not found")


# Public message per failed store operation
_STORAGE_MESSAGES: dict[str, str] = {
    "get_assistant": "Error fetching assistant",
    "get_chat": "Error fetching chat",
    "list_messages": "Error fetching chat history",
    "insert_user_message": "Error saving user message",
    "insert_ai_message": "Error saving AI message",
    "set_chat_title": "Error updating chat title",
}


class StorageError(ResponderError):
    status_code = 500

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(_STORAGE_MESSAGES.get(operation, "Storage error"))

    @property
    def details(self) -> Optional[str]:
        return str(self.cause) if self.cause is not None else None


class UpstreamRateLimited(ResponderError):
    """Completion API answered 429. Retried inside the completion client."""
    status_code = 500
    message = "Completion API rate limited"

    def __init__(self, body: str = ""):
        self.body = body
        super().__init__()


class UpstreamError(ResponderError):
    status_code = 500
    message = "Completion API error"

    def __init__(self, upstream_status: int, body: str = ""):
        self.upstream_status = upstream_status
        self.body = body
        super().__init__()

    @property
    def details(self) -> Optional[str]:
        return f"Upstream returned {self.upstream_status}: {self.body[:500]}"


class UpstreamExhausted(ResponderError):
    status_code = 500
    message = "Completion API unavailable"

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__()

    @property
    def details(self) -> Optional[str]:
        cause = f": {type(self.last_error).__name__}" if self.last_error is not None else ""
        return f"Gave up after {self.attempts} attempts{cause}"


# ============================================================================
# Error Response Factory
# ============================================================================

def create_error_response(
    message: str,
    status_code: int = 400,
    details: Optional[str] = None,
) -> JSONResponse:
    """
    Create a JSON error response with CORS headers.

    Args:
        message: Short public error message
        status_code: HTTP status code
        details: Optional diagnostic text (only sent with 5xx statuses)

    Returns:
        JSONResponse with ``{"error": ...}`` body

    Example:
        >>> create_error_response("Chat not found", status_code=404)
    """
    content: dict[str, str] = {"error": message}
    if details and status_code >= 500:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=CORS_HEADERS)


def error_response_for(exc: ResponderError) -> JSONResponse:
    """Render a ResponderError as its JSON error response."""
    return create_error_response(exc.message, status_code=exc.status_code, details=exc.details)


def internal_error() -> JSONResponse:
    """Generic 500 for unexpected exceptions. Detail stays in the logs."""
    return create_error_response("Internal server error", status_code=500)
