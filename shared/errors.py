"""
Shared error handling for the document store access layer.
"""

from typing import Any, Dict, List, Optional, Union

from opentelemetry import trace
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: Union[int, str]
    message: str
    details: Dict[str, Any] = {}


class ConnectorError(Exception):
    """Base exception for the access layer."""

    def __init__(self, code: Union[int, str], message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(ConnectorError):
    """A call was rejected locally before reaching the network."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class InvalidObjectIdError(ValidationError):
    """An object id does not have the 24 character shape."""

    def __init__(self, object_id: Any = None):
        super().__init__("Invalid objectId", details={"object_id": object_id})


class CredentialsError(ConnectorError):
    """Neither an api key nor an access token is configured."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            "CREDENTIALS_MISSING",
            message or (
                "Missing key or token for the document store connector: set the DOCSTORE_API_KEY "
                "environment variable, or build a client with client.with_credentials('<your api key>')"
            )
        )


class RemoteError(ConnectorError):
    """The remote service answered with a non-success status.

    ``code`` is the numeric code from the remote body (falling back to the HTTP
    status) and ``errors`` maps field names to validation messages.
    """

    def __init__(
        self,
        code: int,
        message: str,
        errors: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        self.errors = errors or {}
        self.status_code = status_code if status_code is not None else code
        super().__init__(code, message, {"errors": self.errors, "status_code": self.status_code})

    @classmethod
    def from_response(cls, status_code: int, body: Any, reason: str = "") -> "RemoteError":
        """Build the error from a decoded error body."""
        if not isinstance(body, dict):
            return cls(status_code, reason or str(body or ""), status_code=status_code)

        return cls(
            body.get("code") or status_code,
            body.get("message") or reason,
            body.get("errors") or {},
            status_code=status_code
        )


class NotFoundError(ConnectorError):
    """A requested document is absent."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(404, message, details)


class PartialResultError(ConnectorError):
    """Some ids of a multi-id fetch failed.

    Carries the documents that did resolve alongside the per-id failures.
    """

    def __init__(self, results: List[Dict[str, Any]], errors: Dict[str, Exception]):
        self.results = results
        self.errors = errors
        super().__init__(
            "PARTIAL_RESULT",
            f"{len(errors)} of {len(errors) + len(results)} objects could not be fetched",
            {"failed_ids": list(errors.keys())}
        )


class ChannelError(ConnectorError):
    """The invalidation channel could not be connected or joined."""

    def __init__(self, message: str = "Invalidation channel error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CHANNEL_ERROR", message, details)
