"""
WardTrack Database Models
SQLAlchemy 2.0 ORM models for the local offline replica
"""

from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy import Boolean, DateTime, Integer, String, Text, Index, CheckConstraint, JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# =============================================================================
# Replica Models
# =============================================================================

class ReplicaRecord(Base, TimestampMixin):
    """Local copy of a remote record plus its sync / tombstone flags"""
    __tablename__ = "replica_records"

    # Composite primary key
    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    record_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Entity body as last written locally or fetched remotely
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # Sync state
    synced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pending_operation: Mapped[Optional[str]] = mapped_column(String(16))
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_error: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("idx_replica_dirty", "collection", "synced", "deleted"),
        CheckConstraint("version >= 1", name="check_version_positive"),
        CheckConstraint(
            "pending_operation IS NULL OR pending_operation IN ('create', 'update', 'delete')",
            name="check_pending_operation"
        ),
    )

    def __repr__(self):
        state = "synced" if self.synced else f"dirty:{self.pending_operation}"
        return f"<ReplicaRecord({self.collection}/{self.record_id}, v{self.version}, {state})>"
