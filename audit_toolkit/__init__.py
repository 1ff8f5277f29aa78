"""
Audit Toolkit - audit trails and soft delete for SQLAlchemy models.

Every audited record carries who created it and when, who changed it last and
when, whether and by whom it was deleted, and a version counter. Storage
operations go through an interception layer that hides deleted records from
reads, turns deletes into reversible soft deletes and rejects writes to the
audit fields.

Key Features
------------
* **Audit Fields**: creation, modification and deletion stamps with actors
* **Soft Delete**: deletes are reversible; restore() brings records back
* **Interception**: one rule per operation family, applied before execution
* **Exception Translation**: localized client payloads from YAML catalogs
* **Validation Helpers**: field validators collecting every failure

Quick Start
-----------
>>> from audit_toolkit import AuditedCollection, audited_model
>>>
>>> Person = audited_model(Base, "Person", "people", {
...     "id": mapped_column(Integer, primary_key=True),
...     "name": mapped_column(String(100)),
... })
>>> people = AuditedCollection(session, Person)
>>> ada = await people.create({"name": "Ada"}, actor="admin")
>>> await people.delete_one({"name": "Ada"}, actor="admin")
>>> await people.count()
0
"""

__version__ = "1.0.0"

from .config import ToolkitConfig, configure, get_config, set_config
from .exceptions import (
    ConnectionRetryExhausted,
    RequestValidationError,
    ServerException,
    ValidationIssue,
)
from .soft_delete import (
    AlreadyDeletedException,
    AuditedCollection,
    AuditInfo,
    AuditMixin,
    ForbiddenFieldMutation,
    HardDeleteNotAllowed,
    NotDeletedException,
    audited_model,
    register_audit_listeners,
)
from .translation import ExceptionTranslator, translate_exception

__all__ = [
    # Soft Delete
    "AuditMixin",
    "AuditInfo",
    "AuditedCollection",
    "audited_model",
    "register_audit_listeners",
    # Exceptions
    "ServerException",
    "ValidationIssue",
    "RequestValidationError",
    "ConnectionRetryExhausted",
    "AlreadyDeletedException",
    "NotDeletedException",
    "ForbiddenFieldMutation",
    "HardDeleteNotAllowed",
    # Translation
    "ExceptionTranslator",
    "translate_exception",
    # Configuration
    "ToolkitConfig",
    "get_config",
    "set_config",
    "configure",
]
