"""SQLAlchemy tables for board records.

Each record kind gets its own table built on OrgRecordMixin. The schema
marker table tracks which structural migrations have run per organization.
"""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from board.models.base import Base, OrgRecordMixin


class TaskRow(OrgRecordMixin, Base):
    """A stored task."""

    __tablename__ = "tasks"

    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)


class ProjectRow(OrgRecordMixin, Base):
    """A stored project."""

    __tablename__ = "projects"


class UserRow(OrgRecordMixin, Base):
    """A stored user profile."""

    __tablename__ = "users"


class GroupRow(OrgRecordMixin, Base):
    """A stored security group."""

    __tablename__ = "security_groups"


class SchemaMarker(Base):
    """Schema version applied to an organization's records."""

    __tablename__ = "schema_markers"

    org_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
