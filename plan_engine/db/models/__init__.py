"""Re-export all models so Base.metadata sees them."""

from plan_engine.db.models.history import PlanHistory, TaskHistory
from plan_engine.db.models.plan import Plan
from plan_engine.db.models.task import Task

__all__ = [
    "Plan",
    "PlanHistory",
    "Task",
    "TaskHistory",
]
