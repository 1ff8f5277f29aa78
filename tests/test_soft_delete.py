"""
Tests for the audit mixin and the persist rules.

Tests cover the audit columns, the soft_delete()/restore() lifecycle and the
mapper listeners that stamp and guard records on flush.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import Column, Integer, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from audit_toolkit.soft_delete import (
    AlreadyDeletedException,
    AuditInfo,
    AuditMixin,
    ForbiddenFieldMutation,
    HardDeleteNotAllowed,
    NotDeletedException,
    audited_model,
    build_audit_info,
    record_is_deleted,
    register_audit_listeners,
    register_model_listeners,
)
from audit_toolkit.soft_delete.mixins import LIFECYCLE_FLAG

Base = declarative_base()

SampleEntity = audited_model(
    Base,
    "SampleEntity",
    "sample_entities",
    {
        "id": Column(Integer, primary_key=True),
        "name": Column(String(100)),
        "status": Column(String(50), default="draft"),
    },
)


class HandWrittenEntity(Base, AuditMixin):
    """Audited entity declared as a regular subclass."""

    __tablename__ = "hand_written_entities"

    id = Column(Integer, primary_key=True)
    title = Column(String(100))


register_audit_listeners(Base)


@pytest.fixture
def ticking_clock(monkeypatch):
    """Replace the audit clock with one that advances a second per call."""
    start = datetime(2024, 1, 1, 12, 0, 0)
    calls = []

    def utcnow():
        calls.append(None)
        return start + timedelta(seconds=len(calls))

    monkeypatch.setattr("audit_toolkit.soft_delete.clock.utcnow", utcnow)
    return start


@pytest.fixture
def db_session():
    """Create an in-memory SQLite database session for testing."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    Session = sessionmaker(bind=engine)
    session = Session()

    yield session

    session.close()


@pytest.fixture
def test_entity(db_session):
    """Create a test entity."""
    entity = SampleEntity(name="Test Record", created_by="creator")
    db_session.add(entity)
    db_session.commit()
    return entity


class TestAuditColumns:
    """Test the audit columns added by the mixin."""

    def test_audited_model_adds_audit_columns(self):
        columns = {column.name for column in SampleEntity.__table__.columns}
        assert {
            "created_at",
            "created_by",
            "updated_at",
            "updated_by",
            "deleted_at",
            "deleted_by",
            "restored_by",
            "version",
        } <= columns
        assert {"id", "name", "status"} <= columns

    def test_version_check_constraint(self):
        names = {constraint.name for constraint in SampleEntity.__table__.constraints}
        assert "ck_sample_entities_version_non_negative" in names

    def test_audit_field_clash_rejected(self):
        with pytest.raises(ValueError) as exc:
            audited_model(
                declarative_base(),
                "Clashing",
                "clashing",
                {"id": Column(Integer, primary_key=True), "version": Column(Integer)},
            )
        assert "version" in str(exc.value)

    def test_table_options_kept_last(self):
        OtherBase = declarative_base()
        model = audited_model(
            OtherBase,
            "WithOptions",
            "with_options",
            {"id": Column(Integer, primary_key=True)},
            table_args=({"sqlite_autoincrement": True},),
        )
        assert model.__table__.dialect_kwargs["sqlite_autoincrement"] is True

    def test_audited_model_module(self):
        assert SampleEntity.__module__ == __name__

        model = audited_model(
            declarative_base(),
            "Relocated",
            "relocated",
            {"id": Column(Integer, primary_key=True)},
            module="records.models",
        )
        assert model.__module__ == "records.models"

    def test_register_requires_audit_mixin(self):
        OtherBase = declarative_base()

        class Plain(OtherBase):
            __tablename__ = "plain"
            id = Column(Integer, primary_key=True)

        with pytest.raises(TypeError):
            register_model_listeners(Plain)


class TestInsertStamping:
    """Test stamping of new records."""

    def test_new_record_stamped(self, db_session, ticking_clock):
        entity = SampleEntity(name="New")
        db_session.add(entity)
        db_session.commit()

        assert entity.version == 1
        assert entity.created_at is not None
        assert entity.created_at == entity.updated_at
        assert entity.deleted_at is None
        assert entity.is_deleted is False

    def test_hand_written_model_stamped(self, db_session):
        entity = HandWrittenEntity(title="Manual")
        db_session.add(entity)
        db_session.commit()

        assert entity.version == 1
        assert entity.created_at is not None

    def test_new_record_with_deletion_state_rejected(self, db_session):
        entity = SampleEntity(name="Born deleted", deleted_at=datetime(2024, 1, 1))
        db_session.add(entity)

        with pytest.raises(ForbiddenFieldMutation) as exc:
            db_session.commit()

        assert exc.value.fields == ["deleted_at"]
        db_session.rollback()


class TestSoftDeleteMixin:
    """Test the soft_delete()/restore() lifecycle methods."""

    def test_soft_delete_basic(self, db_session, test_entity):
        test_entity.soft_delete("test_user")

        assert test_entity.is_deleted is True
        assert test_entity.deleted_at is not None
        assert test_entity.deleted_by == "test_user"
        assert test_entity.updated_by == "test_user"
        assert test_entity.version == 2
        assert vars(test_entity)[LIFECYCLE_FLAG] is True

    def test_soft_delete_persists(self, db_session, test_entity):
        test_entity.soft_delete("test_user")
        db_session.commit()

        assert test_entity.is_deleted is True
        assert test_entity.version == 2
        assert LIFECYCLE_FLAG not in vars(test_entity)

    def test_soft_delete_without_actor(self, db_session, test_entity):
        test_entity.soft_delete()

        assert test_entity.deleted_by is None
        assert test_entity.updated_by is None

    def test_soft_delete_already_deleted(self, db_session, test_entity):
        test_entity.soft_delete("user1")
        db_session.commit()

        with pytest.raises(AlreadyDeletedException) as exc:
            test_entity.soft_delete("user2")

        assert str(test_entity.id) in str(exc.value)
        assert exc.value.extra_message_code == "delete"
        assert test_entity.version == 2
        assert test_entity.deleted_by == "user1"
        assert test_entity.updated_by == "user1"

    def test_restore_basic(self, db_session, test_entity):
        test_entity.soft_delete("user1")
        db_session.commit()

        test_entity.restore("user2")
        db_session.commit()

        assert test_entity.is_deleted is False
        assert test_entity.deleted_at is None
        assert test_entity.deleted_by is None
        assert test_entity.restored_by == "user2"
        assert test_entity.updated_by == "user2"
        assert test_entity.version == 3

    def test_restore_without_actor_keeps_previous_restorer(self, db_session, test_entity):
        test_entity.soft_delete("user1")
        test_entity.restore("user2")
        db_session.commit()

        test_entity.soft_delete("user1")
        test_entity.restore()
        db_session.commit()

        assert test_entity.restored_by == "user2"
        assert test_entity.is_deleted is False

    def test_restore_not_deleted(self, db_session, test_entity):
        previous_updated_at = test_entity.updated_at

        with pytest.raises(NotDeletedException) as exc:
            test_entity.restore("user1")

        assert str(test_entity.id) in str(exc.value)
        assert exc.value.extra_message_code == "restore"
        assert test_entity.version == 1
        assert test_entity.updated_at == previous_updated_at
        assert test_entity.restored_by is None
        assert test_entity.updated_by is None


class TestPersistRules:
    """Test the listeners guarding flushed records."""

    def test_domain_change_bumps_version(self, ticking_clock, db_session, test_entity):
        previous_updated_at = test_entity.updated_at

        test_entity.name = "Renamed"
        db_session.commit()

        assert test_entity.version == 2
        assert test_entity.updated_at > previous_updated_at

    def test_direct_deletion_state_rejected(self, db_session, test_entity):
        test_entity.deleted_at = datetime(2024, 1, 1)

        with pytest.raises(ForbiddenFieldMutation) as exc:
            db_session.commit()

        assert exc.value.fields == ["deleted_at"]
        db_session.rollback()

    def test_direct_version_change_rejected(self, db_session, test_entity):
        test_entity.version = 10

        with pytest.raises(ForbiddenFieldMutation) as exc:
            db_session.commit()

        assert exc.value.fields == ["version"]
        db_session.rollback()

    def test_created_at_change_rejected(self, db_session, test_entity):
        test_entity.created_at = datetime(2000, 1, 1)

        with pytest.raises(ForbiddenFieldMutation):
            db_session.commit()
        db_session.rollback()

    def test_deleted_record_cannot_be_modified(self, db_session, test_entity):
        test_entity.soft_delete("user1")
        db_session.commit()

        test_entity.name = "Changed while deleted"
        with pytest.raises(ForbiddenFieldMutation) as exc:
            db_session.commit()

        assert "restored" in str(exc.value)
        db_session.rollback()

    def test_domain_change_with_soft_delete_bumps_version_once(
        self, db_session, test_entity
    ):
        test_entity.name = "Renamed"
        test_entity.soft_delete("user1")
        db_session.commit()

        assert test_entity.version == 2
        assert test_entity.name == "Renamed"
        assert test_entity.is_deleted is True

    def test_rolled_back_soft_delete_does_not_sanction_direct_write(
        self, db_session, test_entity
    ):
        test_entity.soft_delete("user1")
        db_session.add(SampleEntity(name="Broken", deleted_at=datetime(2024, 1, 1)))
        with pytest.raises(ForbiddenFieldMutation):
            db_session.commit()
        db_session.rollback()

        assert test_entity.deleted_at is None
        assert test_entity.version == 1

        test_entity.deleted_at = datetime(2000, 1, 1)
        with pytest.raises(ForbiddenFieldMutation) as exc:
            db_session.commit()

        assert exc.value.fields == ["deleted_at"]
        db_session.rollback()

    def test_unit_of_work_delete_blocked(self, db_session, test_entity):
        db_session.delete(test_entity)

        with pytest.raises(HardDeleteNotAllowed):
            db_session.commit()
        db_session.rollback()

        assert db_session.get(SampleEntity, test_entity.id) is not None


class TestAuditProjection:
    """Test derived values and serialization."""

    def test_audit_info(self, db_session, test_entity):
        info = test_entity.audit_info

        assert isinstance(info, AuditInfo)
        assert info.created_by == "creator"
        assert info.version == 1
        assert info.is_deleted is False

    def test_build_audit_info_from_mapping(self):
        info = build_audit_info(
            {"version": 4, "deleted_at": datetime(2024, 1, 1), "deleted_by": "ops"}
        )
        assert info.is_deleted is True
        assert info.deleted_by == "ops"
        assert info.version == 4

    def test_record_is_deleted(self):
        assert record_is_deleted({"deleted_at": None}) is False
        assert record_is_deleted({}) is False
        assert record_is_deleted({"deleted_at": datetime(2024, 1, 1)}) is True

    def test_to_dict(self, db_session, test_entity):
        data = test_entity.to_dict()

        assert data["name"] == "Test Record"
        assert data["is_deleted"] is False
        assert isinstance(data["created_at"], str)

        domain_only = test_entity.to_dict(include_audit_fields=False)
        assert "version" not in domain_only
        assert "is_deleted" not in domain_only
        assert domain_only["status"] == "draft"
