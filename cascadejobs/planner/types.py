from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


class PlanningError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class PlannedDeletion:
    table: str
    document_id: str
    depth: int = 0
    relationship_name: str | None = None


@dataclass(frozen=True, slots=True)
class DeletionPlan:
    """Dry-run result of a cascading delete.

    ``plan`` is already in a safe deletion order; consumers only rely on the
    ``table``/``document_id`` pairs and their order.
    """

    total_deleted: int
    deleted_by_table: dict[str, int] = field(default_factory=dict)
    plan: list[PlannedDeletion] = field(default_factory=list)


@runtime_checkable
class Planner(Protocol):
    def compute_plan(self, table: str, document_id: str) -> DeletionPlan: ...
