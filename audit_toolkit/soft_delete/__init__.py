"""
Soft Delete Module - audited records with reversible deletion.

Provides the audit mixin, the interception rules applied to every storage
operation, and the audited collection that executes them.
"""

from .collection import AuditedCollection
from .exceptions import (
    AlreadyDeletedException,
    ForbiddenFieldMutation,
    HardDeleteNotAllowed,
    NotDeletedException,
    SoftDeleteError,
)
from .interception import (
    Operation,
    OperationFamily,
    audited_model,
    intercept,
    register_audit_listeners,
    register_model_listeners,
)
from .mixins import AuditMixin, build_audit_info, record_is_deleted
from .models import AuditInfo, DeleteResult, UpdateResult

__all__ = [
    # Mixins
    "AuditMixin",
    "audited_model",
    "record_is_deleted",
    "build_audit_info",
    # Interception
    "Operation",
    "OperationFamily",
    "intercept",
    "register_model_listeners",
    "register_audit_listeners",
    # Collection
    "AuditedCollection",
    # Models
    "AuditInfo",
    "UpdateResult",
    "DeleteResult",
    # Exceptions
    "SoftDeleteError",
    "AlreadyDeletedException",
    "NotDeletedException",
    "ForbiddenFieldMutation",
    "HardDeleteNotAllowed",
]
