"""
Data models for audited records.

These models describe the read-only audit projection of a record and the
results returned by collection write operations.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditInfo(BaseModel):
    """Read-only snapshot of a record's audit fields."""

    model_config = ConfigDict(frozen=True)

    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    version: int = Field(0, ge=0)
    is_deleted: bool = False


class UpdateResult(BaseModel):
    """Outcome of an update or replace operation."""

    matched_count: int = Field(0, ge=0)
    modified_count: int = Field(0, ge=0)


class DeleteResult(BaseModel):
    """Outcome of a delete operation."""

    deleted_count: int = Field(0, ge=0)
    physical: bool = Field(
        False, description="True when rows were removed instead of soft deleted"
    )
