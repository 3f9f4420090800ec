"""Plan model: A unit of agent work owned by one session within one project."""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Index, String, Text, text

from plan_engine.db.base import Base
from plan_engine.db.models.types import BigIntId, JsonDocument, status_check_sql
from plan_engine.domain.statuses import PlanStatus


class Plan(Base):
    __tablename__ = "plans"
    __table_args__ = (
        CheckConstraint(status_check_sql("status", PlanStatus), name="ck_plans_status"),
        Index("ix_plans_session_status", "session_id", "status"),
        Index("ix_plans_project_name", "project_id", "name"),
        # At most one active plan per session, enforced by the database
        Index(
            "uq_plans_one_active_per_session",
            "session_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    project_id = Column(Text, nullable=False)
    session_id = Column(Text, nullable=False)

    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=PlanStatus.DRAFT.value)  # PlanStatus values

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JsonDocument, nullable=False, default=dict)
