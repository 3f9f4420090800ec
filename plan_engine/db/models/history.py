"""PlanHistory / TaskHistory models: Append-only status audit rows."""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, String, Text

from plan_engine.db.base import Base
from plan_engine.db.models.types import BigIntId, status_check_sql
from plan_engine.domain.statuses import PlanStatus, TaskStatus


class PlanHistory(Base):
    __tablename__ = "plan_history"
    __table_args__ = (
        CheckConstraint(status_check_sql("old_status", PlanStatus, nullable=True), name="ck_plan_history_old_status"),
        CheckConstraint(status_check_sql("new_status", PlanStatus), name="ck_plan_history_new_status"),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    plan_id = Column(BigIntId, ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)

    old_status = Column(String(20), nullable=True)  # null for the initial status
    new_status = Column(String(20), nullable=False)
    changed_by = Column(Text, nullable=False)  # session id or system identity
    changed_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    reason = Column(Text, nullable=True)
    # NO updated_at -- history rows are immutable (append-only)


class TaskHistory(Base):
    __tablename__ = "task_history"
    __table_args__ = (
        CheckConstraint(status_check_sql("old_status", TaskStatus, nullable=True), name="ck_task_history_old_status"),
        CheckConstraint(status_check_sql("new_status", TaskStatus), name="ck_task_history_new_status"),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    task_id = Column(BigIntId, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)

    old_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=False)
    changed_by = Column(Text, nullable=False)
    changed_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    reason = Column(Text, nullable=True)
