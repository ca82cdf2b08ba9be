from cascadejobs.planner.loader import load_planner
from cascadejobs.planner.types import DeletionPlan, PlannedDeletion, Planner, PlanningError

__all__ = [
    "DeletionPlan",
    "PlannedDeletion",
    "Planner",
    "PlanningError",
    "load_planner",
]
