"""
SQLAlchemy mixin for audited, soft-deletable records.

The mixin adds the audit columns and the instance-level lifecycle operations.
Statement rewriting and the persist rules live in ``interception``.
"""

from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from . import clock
from .exceptions import AlreadyDeletedException, NotDeletedException
from .models import AuditInfo

AUDIT_FIELDS = (
    "created_at",
    "created_by",
    "updated_at",
    "updated_by",
    "deleted_at",
    "deleted_by",
    "restored_by",
    "version",
)

# Only soft_delete()/restore() and the delete/restore rules may write these
DELETION_STATE_FIELDS = ("deleted_at", "deleted_by", "restored_by")

# Stamped by the interception layer, never accepted from callers
MANAGED_FIELDS = ("created_at", "updated_at", "version")

LIFECYCLE_FLAG = "_audit_lifecycle_transition"


def _snapshot_value(snapshot: Any, key: str) -> Any:
    if isinstance(snapshot, Mapping):
        return snapshot.get(key)
    return getattr(snapshot, key, None)


def record_is_deleted(snapshot: Any) -> bool:
    """Return True when the snapshot (record or mapping) is soft deleted."""
    return _snapshot_value(snapshot, "deleted_at") is not None


def build_audit_info(snapshot: Any) -> AuditInfo:
    """Build the audit projection of a record or a mapping of its fields."""
    return AuditInfo(
        created_at=_snapshot_value(snapshot, "created_at"),
        created_by=_snapshot_value(snapshot, "created_by"),
        updated_at=_snapshot_value(snapshot, "updated_at"),
        updated_by=_snapshot_value(snapshot, "updated_by"),
        deleted_at=_snapshot_value(snapshot, "deleted_at"),
        deleted_by=_snapshot_value(snapshot, "deleted_by"),
        version=_snapshot_value(snapshot, "version") or 0,
        is_deleted=record_is_deleted(snapshot),
    )


def in_lifecycle_transition(record: Any) -> bool:
    """Return True when the pending deletion state came from soft_delete()/restore()."""
    token = vars(record).get(LIFECYCLE_FLAG)
    return token is not None and token == (record.deleted_at, record.version)


def audit_table_args(table_name: str) -> Tuple[Any, ...]:
    """Table-level constraints every audited table carries."""
    return (
        CheckConstraint(
            "version >= 0", name=f"ck_{table_name}_version_non_negative"
        ),
    )


class AuditMixin:
    """
    Mixin adding audit and soft delete columns to SQLAlchemy models.

    Provides:
    - Creation, modification and deletion timestamps with actor references
    - A version counter bumped once per accepted mutation
    - soft_delete() and restore() lifecycle methods
    - is_deleted and audit_info derived values

    Prefer ``interception.audited_model()`` which also registers the persist
    listeners. When subclassing by hand, call
    ``interception.register_model_listeners()`` on the mapped class.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=clock.utcnow, index=True
    )
    created_by: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=clock.utcnow, index=True
    )
    updated_by: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, index=True
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True, index=True
    )
    deleted_by: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, index=True
    )
    restored_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, index=True
    )

    @declared_attr
    def __table_args__(cls: Any) -> Any:
        """Add the version check constraint."""
        return audit_table_args(getattr(cls, "__tablename__", cls.__name__.lower()))

    def _audit_identity(self) -> str:
        return str(getattr(self, "id", "unknown"))

    def _mark_transition(self) -> None:
        # Bound to the values written, so a rolled back transition cannot
        # sanction a later direct assignment
        setattr(self, LIFECYCLE_FLAG, (self.deleted_at, self.version))

    def soft_delete(self, actor: Optional[str] = None) -> None:
        """
        Mark this record as deleted.

        Args:
            actor: Reference of whoever performs the deletion

        Raises:
            AlreadyDeletedException: If the record is already deleted
        """
        if self.deleted_at is not None:
            raise AlreadyDeletedException(self._audit_identity())

        now = clock.utcnow()
        self.deleted_at = now
        self.deleted_by = actor
        self.updated_at = now
        if actor is not None:
            self.updated_by = actor
        self.version = (self.version or 0) + 1
        self._mark_transition()

    def restore(self, actor: Optional[str] = None) -> None:
        """
        Restore a soft deleted record.

        ``restored_by`` is only overwritten when an actor is given.

        Args:
            actor: Reference of whoever performs the restoration

        Raises:
            NotDeletedException: If the record is not deleted
        """
        if self.deleted_at is None:
            raise NotDeletedException(self._audit_identity())

        self.deleted_at = None
        self.deleted_by = None
        if actor is not None:
            self.restored_by = actor
            self.updated_by = actor
        self.updated_at = clock.utcnow()
        self.version = (self.version or 0) + 1
        self._mark_transition()

    @property
    def is_deleted(self) -> bool:
        return record_is_deleted(self)

    @property
    def audit_info(self) -> AuditInfo:
        return build_audit_info(self)

    def to_dict(self, include_audit_fields: bool = True) -> Dict[str, Any]:
        """
        Convert model to dictionary representation.

        Args:
            include_audit_fields: Whether to include audit fields and is_deleted

        Returns:
            Dictionary representation of the model
        """
        result: Dict[str, Any] = {}

        table = getattr(self, "__table__", None)
        if table is None:
            return result

        for column in table.columns:
            if not include_audit_fields and column.name in AUDIT_FIELDS:
                continue
            value = getattr(self, column.key, None)
            if isinstance(value, datetime):
                value = value.isoformat()
            result[column.name] = value

        if include_audit_fields:
            result["is_deleted"] = self.is_deleted

        return result
