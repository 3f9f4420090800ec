"""SessionGuard: Session ownership and one-active-plan checks."""

import structlog

from plan_engine.core.exceptions import (
    ActivePlanConflictError,
    SessionMismatchError,
    ValidationError,
)
from plan_engine.db.plan_store import PlanStore
from plan_engine.schemas.plans import PlanRecord

logger = structlog.get_logger(__name__)


class SessionGuard:
    """Enforces that a session only touches its own plans.

    The application-level activation check gives callers a clear error early;
    the partial unique index on plans(session_id) WHERE status = 'active' is
    what holds under concurrent writers.
    """

    def __init__(self, store: PlanStore):
        self.store = store

    async def authorize_access(self, session_id: str, plan_id: int) -> PlanRecord:
        """Load a plan and check it belongs to ``session_id``.

        Returns:
            The plan, so callers do not need a second read

        Raises:
            ValidationError: session_id is empty
            NotFoundError: The plan does not exist
            SessionMismatchError: The plan belongs to another session
        """
        if not session_id or not session_id.strip():
            raise ValidationError("Session ID is required", field="session_id")

        plan = await self.store.get_plan_by_id(plan_id)
        if plan.session_id != session_id:
            logger.warning(
                "session_access_denied",
                session_id=session_id,
                plan_id=plan_id,
                owner_session_id=plan.session_id,
            )
            raise SessionMismatchError(session_id, plan_id)
        return plan

    async def authorize_activation(self, session_id: str, exclude_plan_id: int | None = None) -> None:
        """Raise ActivePlanConflictError if the session already has an active plan.

        ``exclude_plan_id`` ignores the plan being activated itself.
        """
        active = await self.store.get_active_plan(session_id)
        if active is not None and active.id != exclude_plan_id:
            logger.warning(
                "active_plan_conflict",
                session_id=session_id,
                active_plan_id=active.id,
                source="guard",
            )
            raise ActivePlanConflictError(session_id, active.id)
