"""
Server exception hierarchy for Audit Toolkit.

Every error raised by the toolkit derives from ``ServerException``. It carries
a catalog error code, an optional extra message code and optional validation
issues so that the translation layer can turn it into a localized client
payload without inspecting exception types.
"""

from datetime import datetime, timezone
from enum import IntEnum
from typing import List, Optional

from pydantic import BaseModel, Field


class HttpStatus(IntEnum):
    """HTTP status codes attached to server exceptions."""

    BAD_REQUEST = 400
    FORBIDDEN = 403
    CONFLICT = 409
    UNPROCESSABLE_ENTITY = 422
    INTERNAL_SERVER_ERROR = 500
    SERVICE_UNAVAILABLE = 503


class ValidationIssue(BaseModel):
    """A single field-level validation failure."""

    type: str = Field(..., description="Catalog group, e.g. string, number, format")
    error: str = Field(..., description="Catalog key of the failed rule")
    insert_these: List[str] = Field(
        default_factory=list, description="Values substituted into the message"
    )
    form_entry: Optional[str] = Field(None, description="Offending input name")


class ServerException(Exception):
    """Base exception for all toolkit errors."""

    def __init__(
        self,
        error_code: str,
        extra_message_code: Optional[str] = None,
        content: Optional[List[ValidationIssue]] = None,
        http_status: HttpStatus = HttpStatus.INTERNAL_SERVER_ERROR,
        message: Optional[str] = None,
    ):
        self.error_code = error_code
        self.extra_message_code = extra_message_code
        self.content = content
        self.http_status = http_status
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(message or error_code)


class RequestValidationError(ServerException):
    """Raised when caller input fails one or more validators."""

    def __init__(self, issues: List[ValidationIssue]):
        entries = ", ".join(issue.form_entry or issue.error for issue in issues)
        super().__init__(
            "validation",
            content=list(issues),
            http_status=HttpStatus.BAD_REQUEST,
            message=f"Invalid input: {entries}",
        )

    @property
    def issues(self) -> List[ValidationIssue]:
        return self.content or []


class ConnectionRetryExhausted(ServerException):
    """Raised when a storage connection cannot be established within the retry cap."""

    def __init__(self, target: str, attempts: int):
        self.target = target
        self.attempts = attempts
        super().__init__(
            "connection",
            extra_message_code="retry_exhausted",
            http_status=HttpStatus.SERVICE_UNAVAILABLE,
            message=f"Could not connect to {target} after {attempts} attempts",
        )
