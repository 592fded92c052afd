"""Base model and mixins for all SQLAlchemy models.

Provides:
- Base: Declarative base class for all models
- OrgRecordMixin: org scoping, string primary key, version counter,
  JSON payload and timestamps

Board records are stored whole: the validated pydantic record is dumped into
``payload`` and a handful of columns are lifted out for indexing. Writes
replace the full row; there is no field-level update path.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all Taskflow models."""
    pass


class OrgRecordMixin:
    """Mixin providing organization isolation and version columns.

    Adds:
    - id: String primary key (record id)
    - org_id: Indexed string for organization isolation
    - version: Monotonic write counter mirrored from the payload
    - payload: Full JSON record
    - created_at: Timestamp set on insert
    - updated_at: Mirrored from the payload on every write
    """

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    org_id: Mapped[str] = mapped_column(
        String(64),
        index=True,
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
