"""
Interception rules for audited collections.

Every storage operation issued against an audited model is described as an
``Operation`` and passed through ``intercept()``, which looks up exactly one
rule for the operation family. Rules either rewrite the operation (extra
criteria, stamped values, delete-to-update translation) or reject it before
anything reaches the database.

Persisting individual records goes through SQLAlchemy mapper events instead,
registered by ``audited_model()`` / ``register_model_listeners()``.
"""

import logging
import sys
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Type

from sqlalchemy import event, inspect

from . import clock
from .exceptions import ForbiddenFieldMutation, HardDeleteNotAllowed
from .mixins import (
    AUDIT_FIELDS,
    DELETION_STATE_FIELDS,
    LIFECYCLE_FLAG,
    MANAGED_FIELDS,
    AuditMixin,
    audit_table_args,
    in_lifecycle_transition,
)

logger = logging.getLogger(__name__)

PROTECTED_ON_CREATE = DELETION_STATE_FIELDS + MANAGED_FIELDS
PROTECTED_ON_UPDATE = PROTECTED_ON_CREATE + ("created_by",)


class OperationFamily(str, Enum):
    """Kinds of storage operations the interception layer distinguishes."""

    READ = "read"
    COUNT = "count"
    ESTIMATED_COUNT = "estimated_count"
    DISTINCT = "distinct"
    AGGREGATE = "aggregate"
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    SOFT_DELETE = "soft_delete"
    RESTORE = "restore"
    PURGE = "purge"


@dataclass
class Operation:
    """A storage operation before it is executed."""

    family: OperationFamily
    model: Type[Any]
    criteria: List[Any] = field(default_factory=list)
    values: Dict[str, Any] = field(default_factory=dict)
    actor: Optional[str] = None
    include_deleted: bool = False
    hard_delete: bool = False


def live_criterion(model: Type[Any]) -> Any:
    return model.deleted_at.is_(None)


def deleted_criterion(model: Type[Any]) -> Any:
    return model.deleted_at.is_not(None)


def _reject_protected(operation: Operation, protected: Iterable[str]) -> None:
    offending = [key for key in operation.values if key in protected]
    if offending:
        raise ForbiddenFieldMutation(offending, operation.family.value)


def _column_default(prop: Any) -> Any:
    default = prop.columns[0].default
    if default is not None and default.is_scalar:
        return default.arg
    return None


def _stamp_mutation(operation: Operation, values: Dict[str, Any]) -> Dict[str, Any]:
    values["updated_at"] = clock.utcnow()
    values["version"] = operation.model.version + 1
    if operation.actor is not None:
        values["updated_by"] = operation.actor
    return values


def restrict_to_live(operation: Operation) -> Operation:
    """Hide soft deleted records unless the caller opted into them."""
    if operation.include_deleted:
        return operation
    return replace(
        operation, criteria=[*operation.criteria, live_criterion(operation.model)]
    )


def guard_create(operation: Operation) -> Operation:
    _reject_protected(operation, PROTECTED_ON_CREATE)
    values = dict(operation.values)
    if operation.actor is not None:
        values.setdefault("created_by", operation.actor)
        values.setdefault("updated_by", operation.actor)
    return replace(operation, values=values)


def guard_update(operation: Operation) -> Operation:
    """Reject protected fields, then stamp updated_at/version into the payload."""
    _reject_protected(operation, PROTECTED_ON_UPDATE)
    values = _stamp_mutation(operation, dict(operation.values))
    return restrict_to_live(replace(operation, values=values))


def guard_replace(operation: Operation) -> Operation:
    """
    Turn a replacement document into a full column assignment.

    Domain columns missing from the replacement fall back to their scalar
    default or NULL. Primary keys and audit columns are never replaced.
    """
    _reject_protected(operation, PROTECTED_ON_UPDATE)
    mapper = inspect(operation.model)
    primary_keys = {column.key for column in mapper.primary_key}

    values: Dict[str, Any] = {}
    for prop in mapper.column_attrs:
        if prop.key in AUDIT_FIELDS or prop.columns[0].key in primary_keys:
            continue
        if prop.key in operation.values:
            values[prop.key] = operation.values[prop.key]
        else:
            values[prop.key] = _column_default(prop)

    values = _stamp_mutation(operation, values)
    if "updated_by" in operation.values and operation.actor is None:
        values["updated_by"] = operation.values["updated_by"]
    return restrict_to_live(replace(operation, values=values))


def mark_deleted(operation: Operation) -> Operation:
    """Soft delete every matching live record."""
    now = clock.utcnow()
    values: Dict[str, Any] = {
        "deleted_at": now,
        "deleted_by": operation.actor,
        "updated_at": now,
        "version": operation.model.version + 1,
    }
    if operation.actor is not None:
        values["updated_by"] = operation.actor
    return replace(
        operation,
        family=OperationFamily.SOFT_DELETE,
        values=values,
        criteria=[*operation.criteria, live_criterion(operation.model)],
    )


def mark_restored(operation: Operation) -> Operation:
    """Restore every matching deleted record."""
    values: Dict[str, Any] = {
        "deleted_at": None,
        "deleted_by": None,
        "updated_at": clock.utcnow(),
        "version": operation.model.version + 1,
    }
    if operation.actor is not None:
        values["restored_by"] = operation.actor
        values["updated_by"] = operation.actor
    return replace(
        operation,
        values=values,
        criteria=[*operation.criteria, deleted_criterion(operation.model)],
    )


def translate_delete(operation: Operation) -> Operation:
    """Rewrite a delete into a soft delete, or hand it to purge when forced."""
    if operation.hard_delete:
        return restrict_to_live(replace(operation, family=OperationFamily.PURGE))
    return mark_deleted(operation)


def pass_through(operation: Operation) -> Operation:
    return operation


_RULES: Dict[OperationFamily, Callable[[Operation], Operation]] = {
    OperationFamily.READ: restrict_to_live,
    OperationFamily.COUNT: restrict_to_live,
    OperationFamily.ESTIMATED_COUNT: restrict_to_live,
    OperationFamily.DISTINCT: restrict_to_live,
    OperationFamily.AGGREGATE: restrict_to_live,
    OperationFamily.CREATE: guard_create,
    OperationFamily.UPDATE: guard_update,
    OperationFamily.REPLACE: guard_replace,
    OperationFamily.DELETE: translate_delete,
    OperationFamily.SOFT_DELETE: mark_deleted,
    OperationFamily.RESTORE: mark_restored,
    OperationFamily.PURGE: pass_through,
}


def intercept(operation: Operation) -> Operation:
    """Apply the rule registered for the operation's family."""
    rewritten = _RULES[operation.family](operation)
    logger.debug(
        "Intercepted %s on %s as %s (include_deleted=%s)",
        operation.family.value,
        operation.model.__name__,
        rewritten.family.value,
        operation.include_deleted,
    )
    return rewritten


# Persist rules


def _changed(state: Any, keys: Iterable[str]) -> set:
    return {key for key in keys if state.attrs[key].history.has_changes()}


def guard_persist(target: Any) -> None:
    """
    Validate a record about to be flushed.

    Raises:
        ForbiddenFieldMutation: On deletion state or version written outside
            soft_delete()/restore(), on a changed created_at, or when a
            deleted record is saved without being restored first
    """
    state = inspect(target)
    transition = in_lifecycle_transition(target)
    identity = str(getattr(target, "id", "unknown"))

    if state.key is None:
        if target.deleted_at is not None and not transition:
            raise ForbiddenFieldMutation(["deleted_at"], "save", identity)
        return

    changed = _changed(state, ("deleted_at", "version", "created_at"))
    if not transition and changed & {"deleted_at", "version"}:
        raise ForbiddenFieldMutation(changed & {"deleted_at", "version"}, "save", identity)
    if "created_at" in changed:
        raise ForbiddenFieldMutation(["created_at"], "save", identity)
    if target.deleted_at is not None and "deleted_at" not in changed:
        raise ForbiddenFieldMutation(
            ["deleted_at"],
            "save",
            identity,
            reason="record is deleted and must be restored before saving",
        )


def _has_non_audit_changes(mapper: Any, state: Any) -> bool:
    for prop in mapper.column_attrs:
        if prop.key in AUDIT_FIELDS:
            continue
        if state.attrs[prop.key].history.has_changes():
            return True
    return False


def _stamp_new_record(mapper: Any, connection: Any, target: Any) -> None:
    guard_persist(target)
    now = clock.utcnow()
    target.created_at = now
    target.updated_at = now
    target.version = 1


def _stamp_modified_record(mapper: Any, connection: Any, target: Any) -> None:
    guard_persist(target)
    target.updated_at = clock.utcnow()
    # soft_delete()/restore() already bumped the version for this save
    if in_lifecycle_transition(target):
        return
    if _has_non_audit_changes(mapper, inspect(target)):
        target.version = (target.version or 0) + 1


def _clear_lifecycle_flag(mapper: Any, connection: Any, target: Any) -> None:
    vars(target).pop(LIFECYCLE_FLAG, None)


def _block_unit_of_work_delete(mapper: Any, connection: Any, target: Any) -> None:
    raise HardDeleteNotAllowed(
        target.__class__.__name__,
        "use soft_delete() or the collection purge operations instead",
    )


_LISTENERS: Tuple[Tuple[str, Callable[..., None]], ...] = (
    ("before_insert", _stamp_new_record),
    ("before_update", _stamp_modified_record),
    ("after_insert", _clear_lifecycle_flag),
    ("after_update", _clear_lifecycle_flag),
    ("before_delete", _block_unit_of_work_delete),
)


def register_model_listeners(model: Type[Any]) -> Type[Any]:
    """
    Register the persist listeners on an audited mapped class.

    Args:
        model: Mapped class using AuditMixin

    Returns:
        The same class
    """
    if not issubclass(model, AuditMixin):
        raise TypeError(f"{model.__name__} does not use AuditMixin")

    for identifier, listener in _LISTENERS:
        if not event.contains(model, identifier, listener):
            event.listen(model, identifier, listener, propagate=True)
    return model


def register_audit_listeners(base_class: Type[Any]) -> None:
    """
    Register persist listeners for every audited model of a declarative base.

    Args:
        base_class: The declarative base class
    """
    for mapper in base_class.registry.mappers:
        if issubclass(mapper.class_, AuditMixin):
            register_model_listeners(mapper.class_)


def audited_model(
    base: Type[Any],
    name: str,
    tablename: str,
    columns: Mapping[str, Any],
    table_args: Tuple[Any, ...] = (),
    module: Optional[str] = None,
) -> Type[Any]:
    """
    Build an audited mapped class from a record shape.

    Args:
        base: Declarative base to map the class on
        name: Class name
        tablename: Table name
        columns: Attribute name to Column/mapped_column for the domain fields
        table_args: Extra table arguments; a trailing dict holds table options
        module: Value for the class __module__; defaults to the calling module

    Returns:
        Mapped class with audit columns and persist listeners
    """
    clashing = sorted(set(columns) & set(AUDIT_FIELDS))
    if clashing:
        raise ValueError(f"Columns clash with audit fields: {', '.join(clashing)}")

    args = tuple(table_args)
    options: Tuple[Any, ...] = ()
    if args and isinstance(args[-1], dict):
        args, options = args[:-1], (args[-1],)

    namespace: Dict[str, Any] = {"__tablename__": tablename, **columns}
    namespace["__table_args__"] = args + audit_table_args(tablename) + options
    if module is None:
        # module that called audited_model()
        module = sys._getframe(1).f_globals.get("__name__", base.__module__)
    namespace["__module__"] = module

    model = type(base)(name, (base, AuditMixin), namespace)
    return register_model_listeners(model)
