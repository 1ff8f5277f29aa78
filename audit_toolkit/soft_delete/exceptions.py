"""Exceptions for soft delete and audit interception."""

from typing import Iterable, Optional

from ..exceptions import HttpStatus, ServerException


class SoftDeleteError(ServerException):
    """Base exception for soft delete operations."""

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        extra_message_code: Optional[str] = None,
        http_status: HttpStatus = HttpStatus.CONFLICT,
    ):
        self.entity_id = entity_id
        super().__init__(
            "storage",
            extra_message_code=extra_message_code,
            http_status=http_status,
            message=message,
        )


class AlreadyDeletedException(SoftDeleteError):
    """Raised when attempting to delete an already deleted record."""

    def __init__(self, entity_id: str):
        super().__init__(
            f"Record {entity_id} is already deleted and cannot be deleted again",
            entity_id=entity_id,
            extra_message_code="delete",
        )


class NotDeletedException(SoftDeleteError):
    """Raised when attempting to restore a record that is not deleted."""

    def __init__(self, entity_id: str):
        super().__init__(
            f"Record {entity_id} is not deleted and cannot be restored",
            entity_id=entity_id,
            extra_message_code="restore",
        )


class ForbiddenFieldMutation(SoftDeleteError):
    """Raised when a generic write path touches protected audit fields."""

    def __init__(
        self,
        fields: Iterable[str],
        operation: str,
        entity_id: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        self.fields = sorted(set(fields))
        self.operation = operation
        detail = reason or f"cannot set {', '.join(self.fields)}"
        super().__init__(
            f"{operation} rejected: {detail}",
            entity_id=entity_id,
            extra_message_code=operation,
            http_status=HttpStatus.UNPROCESSABLE_ENTITY,
        )


class HardDeleteNotAllowed(SoftDeleteError):
    """Raised when a physical delete is attempted outside the purge path."""

    def __init__(self, model_name: str, reason: str):
        super().__init__(
            f"Hard delete of {model_name} not allowed: {reason}",
            extra_message_code="purge",
            http_status=HttpStatus.FORBIDDEN,
        )
