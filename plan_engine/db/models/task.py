"""Task model: A unit of work exclusively owned by one plan."""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, String, Text

from plan_engine.db.base import Base
from plan_engine.db.models.types import BigIntId, JsonDocument, status_check_sql
from plan_engine.domain.statuses import TaskStatus


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint(status_check_sql("status", TaskStatus), name="ck_tasks_status"),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    plan_id = Column(BigIntId, ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(Text, nullable=False, default="normal")  # free-text tier label
    status = Column(String(20), nullable=False, default=TaskStatus.PENDING.value)  # TaskStatus values

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    metadata_ = Column("metadata", JsonDocument, nullable=False, default=dict)
