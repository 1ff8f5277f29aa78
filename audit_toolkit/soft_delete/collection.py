"""
Audited collection: the storage entry point for audited records.

``AuditedCollection`` wraps a SQLAlchemy session and one audited model. Each
public coroutine describes its work as an ``Operation``, passes it through
``interception.intercept()`` and executes the rewritten operation as a single
statement followed by a commit.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Type, Union

from sqlalchemy import delete, func, inspect, select, update
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from ..config import get_config
from ..exceptions import ValidationIssue
from ..validators import ensure_valid, is_actor_reference
from .exceptions import HardDeleteNotAllowed
from .interception import Operation, OperationFamily, guard_persist, intercept
from .mixins import LIFECYCLE_FLAG, AuditMixin
from .models import DeleteResult, UpdateResult

logger = logging.getLogger(__name__)

Filter = Union[None, Mapping[str, Any], Any, Sequence[Any]]


class AuditedCollection:
    """
    Collection of audited records with soft delete semantics.

    Reads, counts, distinct queries and aggregations hide soft deleted records
    unless ``include_deleted=True`` is passed. Deletes are reversible unless
    ``hard_delete=True`` is passed or a purge operation is called.

    Usage:
        people = AuditedCollection(session, Person)
        await people.create({"name": "Ada"}, actor="admin")
        await people.delete_many({"name": "Ada"}, actor="admin")
        await people.count()                       # 0
        await people.count(include_deleted=True)   # 1
    """

    def __init__(
        self,
        session: Session,
        model: Type[Any],
        allow_hard_delete: Optional[bool] = None,
    ):
        """
        Initialize the collection.

        Args:
            session: SQLAlchemy database session
            model: Mapped class using AuditMixin
            allow_hard_delete: Whether purge operations may remove rows;
                defaults to the configured ``allow_hard_delete``
        """
        if not issubclass(model, AuditMixin):
            raise TypeError(f"{model.__name__} does not use AuditMixin")

        self.session = session
        self.model = model
        self.allow_hard_delete = (
            get_config().allow_hard_delete
            if allow_hard_delete is None
            else allow_hard_delete
        )

        mapper = inspect(model)
        self._fields = {prop.key for prop in mapper.column_attrs}
        self._primary_key = mapper.primary_key[0]

    # Helpers

    def _check_fields(self, keys: Iterable[str], form_entry: str) -> None:
        issues = [
            ValidationIssue(
                type="field",
                error="unknownField",
                insert_these=[key, self.model.__name__],
                form_entry=f"{form_entry}.{key}",
            )
            for key in keys
            if key not in self._fields
        ]
        ensure_valid(*issues)

    def _check_actor(self, actor: Optional[str]) -> None:
        if actor is not None:
            ensure_valid(is_actor_reference(actor))

    def _criteria(self, filter: Filter) -> List[Any]:
        """Normalize a filter into a list of SQL criteria."""
        if filter is None:
            return []
        if isinstance(filter, Mapping):
            self._check_fields(filter.keys(), "filter")
            criteria = []
            for key, value in filter.items():
                column = getattr(self.model, key)
                if value is None:
                    criteria.append(column.is_(None))
                elif isinstance(value, (list, tuple, set, frozenset)):
                    criteria.append(column.in_(list(value)))
                else:
                    criteria.append(column == value)
            return criteria
        if isinstance(filter, (list, tuple)):
            return list(filter)
        return [filter]

    def _operation(
        self,
        family: OperationFamily,
        filter: Filter = None,
        values: Optional[Mapping[str, Any]] = None,
        actor: Optional[str] = None,
        include_deleted: bool = False,
        hard_delete: bool = False,
    ) -> Operation:
        self._check_actor(actor)
        if values is not None:
            self._check_fields(values.keys(), "values")
        return intercept(
            Operation(
                family=family,
                model=self.model,
                criteria=self._criteria(filter),
                values=dict(values or {}),
                actor=actor,
                include_deleted=include_deleted,
                hard_delete=hard_delete,
            )
        )

    def _matching_ids(self, operation: Operation, limit: Optional[int] = None) -> List[Any]:
        stmt = (
            select(self._primary_key)
            .where(*operation.criteria)
            .order_by(self._primary_key)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def _apply_update(self, operation: Operation, limit: Optional[int] = None) -> UpdateResult:
        """Execute an update-shaped operation against the matching rows."""
        try:
            ids = self._matching_ids(operation, limit)
            if not ids:
                return UpdateResult(matched_count=0, modified_count=0)

            # Criteria are re-applied so rows changed since the id lookup are skipped
            stmt = (
                update(self.model)
                .where(self._primary_key.in_(ids), *operation.criteria)
                .values(operation.values)
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        return UpdateResult(matched_count=len(ids), modified_count=result.rowcount)

    def _apply_purge(self, operation: Operation, limit: Optional[int] = None) -> int:
        if not self.allow_hard_delete:
            raise HardDeleteNotAllowed(
                self.model.__name__, "hard deletes are disabled by configuration"
            )

        try:
            ids = self._matching_ids(operation, limit)
            if not ids:
                return 0
            result = self.session.execute(
                delete(self.model)
                .where(self._primary_key.in_(ids))
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.warning(
            "Physically removed %d %s record(s)", result.rowcount, self.model.__name__
        )
        return result.rowcount

    def _select(self, operation: Operation) -> Select:
        return select(self.model).where(*operation.criteria)

    # Create / persist

    async def create(
        self, values: Mapping[str, Any], actor: Optional[str] = None
    ) -> Any:
        """
        Create and persist a new record.

        Args:
            values: Domain field values
            actor: Reference of the creating user, stored as created_by

        Returns:
            The persisted record with version 1

        Raises:
            ForbiddenFieldMutation: If values contain audit-managed fields
        """
        records = await self.insert_many([values], actor=actor)
        return records[0]

    async def insert_many(
        self, values_list: Sequence[Mapping[str, Any]], actor: Optional[str] = None
    ) -> List[Any]:
        """Create and persist several records in one transaction."""
        records = []
        for values in values_list:
            operation = self._operation(
                OperationFamily.CREATE, values=values, actor=actor
            )
            records.append(self.model(**operation.values))

        try:
            self.session.add_all(records)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        for record in records:
            self.session.refresh(record)
        return records

    async def save(self, record: Any) -> Any:
        """
        Persist a new or modified record.

        The persist rules run before anything is flushed: a deleted record
        cannot be saved with other changes, deletion state and version cannot
        be assigned directly, and created_at never changes.

        Raises:
            ForbiddenFieldMutation: If the record violates a persist rule
        """
        try:
            guard_persist(record)
            self.session.add(record)
            self.session.commit()
        except Exception:
            self.session.rollback()
            vars(record).pop(LIFECYCLE_FLAG, None)
            raise

        self.session.refresh(record)
        return record

    # Reads

    async def find(
        self,
        filter: Filter = None,
        include_deleted: bool = False,
        order_by: Optional[Any] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Any]:
        """
        Find records matching a filter.

        Args:
            filter: Field mapping, SQL expression or list of expressions
            include_deleted: Also return soft deleted records
            order_by: Column or expression to order by (primary key by default)
            limit: Maximum records to return
            offset: Offset for pagination

        Returns:
            List of matching records
        """
        operation = self._operation(
            OperationFamily.READ, filter, include_deleted=include_deleted
        )
        stmt = self._select(operation).order_by(
            order_by if order_by is not None else self._primary_key
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)
        return list(self.session.scalars(stmt).all())

    async def find_one(
        self, filter: Filter = None, include_deleted: bool = False
    ) -> Optional[Any]:
        records = await self.find(filter, include_deleted=include_deleted, limit=1)
        return records[0] if records else None

    async def find_by_id(
        self, record_id: Any, include_deleted: bool = False
    ) -> Optional[Any]:
        return await self.find_one(
            [self._primary_key == record_id], include_deleted=include_deleted
        )

    async def count(self, filter: Filter = None, include_deleted: bool = False) -> int:
        operation = self._operation(
            OperationFamily.COUNT, filter, include_deleted=include_deleted
        )
        stmt = select(func.count()).select_from(self.model).where(*operation.criteria)
        return int(self.session.scalar(stmt) or 0)

    async def estimated_count(self, include_deleted: bool = False) -> int:
        """Count every record of the collection without a caller filter."""
        operation = self._operation(
            OperationFamily.ESTIMATED_COUNT, include_deleted=include_deleted
        )
        stmt = select(func.count()).select_from(self.model).where(*operation.criteria)
        return int(self.session.scalar(stmt) or 0)

    async def distinct(
        self, field: str, filter: Filter = None, include_deleted: bool = False
    ) -> List[Any]:
        """Return the distinct values of one field among matching records."""
        self._check_fields([field], "field")
        operation = self._operation(
            OperationFamily.DISTINCT, filter, include_deleted=include_deleted
        )
        column = getattr(self.model, field)
        stmt = select(column).where(*operation.criteria).distinct().order_by(column)
        return list(self.session.scalars(stmt).all())

    async def aggregate(
        self, statement: Select, include_deleted: bool = False
    ) -> List[Any]:
        """
        Run an aggregation statement over the collection.

        The exclude-deleted criterion lands in the WHERE clause, which is
        evaluated before any GROUP BY, HAVING or ORDER BY of the statement.

        Args:
            statement: SELECT over the collection's model
            include_deleted: Also aggregate soft deleted records

        Returns:
            Result rows
        """
        operation = self._operation(
            OperationFamily.AGGREGATE, include_deleted=include_deleted
        )
        return list(self.session.execute(statement.where(*operation.criteria)).all())

    # Updates

    async def update_one(
        self,
        filter: Filter,
        values: Mapping[str, Any],
        actor: Optional[str] = None,
        include_deleted: bool = False,
    ) -> UpdateResult:
        """
        Update the first matching record.

        Raises:
            ForbiddenFieldMutation: If values touch deletion state or
                managed audit fields
        """
        operation = self._operation(
            OperationFamily.UPDATE, filter, values, actor, include_deleted
        )
        return self._apply_update(operation, limit=1)

    async def update_many(
        self,
        filter: Filter,
        values: Mapping[str, Any],
        actor: Optional[str] = None,
        include_deleted: bool = False,
    ) -> UpdateResult:
        operation = self._operation(
            OperationFamily.UPDATE, filter, values, actor, include_deleted
        )
        return self._apply_update(operation)

    async def find_one_and_update(
        self,
        filter: Filter,
        values: Mapping[str, Any],
        actor: Optional[str] = None,
        include_deleted: bool = False,
    ) -> Optional[Any]:
        """Update the first matching record and return it as updated."""
        operation = self._operation(
            OperationFamily.UPDATE, filter, values, actor, include_deleted
        )
        ids = self._matching_ids(operation, limit=1)
        if not ids:
            return None
        self._apply_update(operation, limit=1)
        return self.session.get(self.model, ids[0], populate_existing=True)

    async def find_by_id_and_update(
        self,
        record_id: Any,
        values: Mapping[str, Any],
        actor: Optional[str] = None,
        include_deleted: bool = False,
    ) -> Optional[Any]:
        return await self.find_one_and_update(
            [self._primary_key == record_id], values, actor, include_deleted
        )

    async def replace_one(
        self,
        filter: Filter,
        replacement: Mapping[str, Any],
        actor: Optional[str] = None,
        include_deleted: bool = False,
    ) -> UpdateResult:
        """
        Replace the domain fields of the first matching record.

        Fields missing from the replacement are reset to their defaults.
        Audit fields are kept and stamped as for an update.
        """
        operation = self._operation(
            OperationFamily.REPLACE, filter, replacement, actor, include_deleted
        )
        return self._apply_update(operation, limit=1)

    # Deletes

    async def delete_one(
        self,
        filter: Filter,
        actor: Optional[str] = None,
        hard_delete: bool = False,
        include_deleted: bool = False,
    ) -> DeleteResult:
        """
        Soft delete the first matching live record.

        Args:
            filter: Records to delete
            actor: Reference of the deleting user
            hard_delete: Physically remove the record instead
            include_deleted: With hard_delete, also remove soft deleted records

        Returns:
            Number of records deleted and whether removal was physical
        """
        return await self._delete(filter, actor, hard_delete, include_deleted, limit=1)

    async def delete_many(
        self,
        filter: Filter,
        actor: Optional[str] = None,
        hard_delete: bool = False,
        include_deleted: bool = False,
    ) -> DeleteResult:
        return await self._delete(filter, actor, hard_delete, include_deleted)

    async def _delete(
        self,
        filter: Filter,
        actor: Optional[str],
        hard_delete: bool,
        include_deleted: bool,
        limit: Optional[int] = None,
    ) -> DeleteResult:
        operation = self._operation(
            OperationFamily.DELETE,
            filter,
            actor=actor,
            include_deleted=include_deleted,
            hard_delete=hard_delete,
        )
        if operation.family is OperationFamily.PURGE:
            count = self._apply_purge(operation, limit)
            return DeleteResult(deleted_count=count, physical=True)

        result = self._apply_update(operation, limit)
        logger.info(
            "Soft deleted %d %s record(s)", result.modified_count, self.model.__name__
        )
        return DeleteResult(deleted_count=result.modified_count, physical=False)

    async def find_one_and_delete(
        self, filter: Filter, actor: Optional[str] = None
    ) -> Optional[Any]:
        """Soft delete the first matching live record and return it."""
        operation = self._operation(OperationFamily.DELETE, filter, actor=actor)
        ids = self._matching_ids(operation, limit=1)
        if not ids:
            return None
        self._apply_update(operation, limit=1)
        return self.session.get(self.model, ids[0], populate_existing=True)

    async def find_by_id_and_delete(
        self, record_id: Any, actor: Optional[str] = None
    ) -> Optional[Any]:
        return await self.find_one_and_delete([self._primary_key == record_id], actor)

    # Lifecycle

    async def soft_delete(self, record: Any, actor: Optional[str] = None) -> Any:
        """
        Soft delete a single record and persist it.

        The record is re-read first so a caller holding a stale snapshot of an
        already deleted record gets AlreadyDeletedException.

        Raises:
            AlreadyDeletedException: If the record is already deleted
        """
        self._check_actor(actor)
        if inspect(record).persistent:
            self.session.refresh(record)
        record.soft_delete(actor)
        await self.save(record)
        logger.info("Soft deleted %s %s", self.model.__name__, record._audit_identity())
        return record

    async def restore(self, record: Any, actor: Optional[str] = None) -> Any:
        """
        Restore a single soft deleted record and persist it.

        Raises:
            NotDeletedException: If the record is not deleted
        """
        self._check_actor(actor)
        if inspect(record).persistent:
            self.session.refresh(record)
        record.restore(actor)
        await self.save(record)
        logger.info("Restored %s %s", self.model.__name__, record._audit_identity())
        return record

    async def soft_delete_many(self, filter: Filter, actor: Optional[str] = None) -> int:
        """
        Soft delete every matching live record.

        Records that are already deleted are left untouched.

        Returns:
            Number of records deleted
        """
        operation = self._operation(OperationFamily.SOFT_DELETE, filter, actor=actor)
        result = self._apply_update(operation)
        logger.info(
            "Soft deleted %d %s record(s)", result.modified_count, self.model.__name__
        )
        return result.modified_count

    async def restore_many(self, filter: Filter, actor: Optional[str] = None) -> int:
        """
        Restore every matching deleted record.

        Returns:
            Number of records restored
        """
        operation = self._operation(OperationFamily.RESTORE, filter, actor=actor)
        result = self._apply_update(operation)
        logger.info(
            "Restored %d %s record(s)", result.modified_count, self.model.__name__
        )
        return result.modified_count

    # Physical removal

    async def purge_one(self, filter: Filter) -> int:
        """Physically remove the first matching record, deleted or not."""
        operation = self._operation(OperationFamily.PURGE, filter)
        return self._apply_purge(operation, limit=1)

    async def purge_many(self, filter: Filter = None) -> int:
        """
        Physically remove every matching record, deleted or not.

        Raises:
            HardDeleteNotAllowed: If hard deletes are disabled
        """
        operation = self._operation(OperationFamily.PURGE, filter)
        return self._apply_purge(operation)

    def describe(self) -> Dict[str, Any]:
        """Summary of the collection for logging and diagnostics."""
        return {
            "model": self.model.__name__,
            "table": self.model.__tablename__,
            "fields": sorted(self._fields),
            "allow_hard_delete": self.allow_hard_delete,
        }
