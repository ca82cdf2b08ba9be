from __future__ import annotations

from importlib import import_module

from cascadejobs.core.config import Settings
from cascadejobs.planner.types import Planner, PlanningError


def load_planner(settings: Settings) -> Planner:
    """Resolve ``settings.planner`` ("package.module:attribute") to a planner.

    The attribute may be a planner instance or a zero-argument factory.
    """
    if not settings.planner:
        raise PlanningError("No planner configured; set CASCADEJOBS_PLANNER to 'module:attribute'")

    module_name, _, attribute = settings.planner.partition(":")
    try:
        module = import_module(module_name)
    except ImportError as exc:
        raise PlanningError(f"Cannot import planner module: {module_name}") from exc
    try:
        target = getattr(module, attribute)
    except AttributeError as exc:
        raise PlanningError(f"Planner attribute not found: {settings.planner}") from exc

    if not isinstance(target, type) and isinstance(target, Planner):
        return target
    if not callable(target):
        raise PlanningError(f"{settings.planner} is neither a planner nor a planner factory")
    candidate = target()
    if not isinstance(candidate, Planner):
        raise PlanningError(f"{settings.planner} does not provide compute_plan()")
    return candidate
