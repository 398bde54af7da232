"""
Secondary-resource projections — tasks, comments, planning and documents.

These are never stored incrementally. Each read folds the raw event log,
filtered by subject and resource kind, in arrival order. Commands sent but not
yet echoed (the optimistic overlay) are replayed at the log position where
they were dispatched, so later server events win over them. Folds are memoized
per (subject, kind) and recomputed whenever the log grows, the overlay
changes, or a resync starts a new generation.
"""

import copy
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel

from casestream.models.events import CloudEvent
from casestream.models.resources import (
    RESOURCE_MODELS,
    Comment,
    Document,
    MomentStatus,
    PlanningMoment,
    PlanningTimeline,
    Resource,
    ResourceKind,
    Task,
)
from casestream.processor.classify import ResetRequested, Unrecognized, classify
from casestream.processor.events import apply_action
from casestream.store.state import EngineState


class TaskSummary(BaseModel):
    has_task: bool
    task_count: int                         # Uncompleted tasks
    latest_task: Optional[Task] = None


class PlanningProgress(BaseModel):
    completed: int
    current: int
    planned: int
    total: int
    current_moment: Optional[PlanningMoment] = None
    next_moment: Optional[PlanningMoment] = None


class SecondaryProjector:
    """Memoized read-time fold of secondary resources for one EngineState."""

    def __init__(self, state: EngineState):
        self.state = state
        self._cache: Dict[Tuple[str, ResourceKind], Tuple[tuple, Dict[str, dict]]] = {}

    def fold(self, subject: str, kind: ResourceKind) -> Dict[str, dict]:
        """
        Current values of every resource of `kind` under `subject`.

        Keys are resource ids in order of first appearance. Each value carries
        an `updated_at` field with the time of the latest event that touched it.
        """
        key = (subject, kind)
        version = self.state.cache_key()
        cached = self._cache.get(key)
        if cached is None or cached[0] != version:
            cached = (version, self._refold(subject, kind))
            self._cache[key] = cached
        return copy.deepcopy(cached[1])

    def _refold(self, subject: str, kind: ResourceKind) -> Dict[str, dict]:
        resources: Dict[str, dict] = {}
        touched: Dict[str, Optional[datetime]] = {}

        for event in self._events_for(subject):
            action = classify(event)
            if isinstance(action, (ResetRequested, Unrecognized)):
                continue
            if action.kind != kind:
                continue
            apply_action(resources, action)
            touched[action.resource_id] = event.time

        for resource_id, value in resources.items():
            value["updated_at"] = touched.get(resource_id)
        return resources

    def _events_for(self, subject: str) -> List[CloudEvent]:
        return [e for e in self.state.replay() if e.subject == subject]

    def resources_for_case(self, case_id: str, kind: ResourceKind) -> List[Resource]:
        """Typed views of every resource of `kind` under a case."""
        model = RESOURCE_MODELS[kind]
        return [model.model_validate(v) for v in self.fold(case_id, kind).values()]

    # --- Tasks ---

    def tasks_for_case(self, case_id: str) -> List[Task]:
        return self.resources_for_case(case_id, ResourceKind.TASK)

    def uncompleted_tasks(self, case_id: str) -> List[Task]:
        return [t for t in self.tasks_for_case(case_id) if not t.completed]

    def latest_task(self, case_id: str) -> Optional[Task]:
        """First uncompleted task, if any."""
        tasks = self.uncompleted_tasks(case_id)
        return tasks[0] if tasks else None

    def task_summary(self, case_id: str) -> TaskSummary:
        tasks = self.uncompleted_tasks(case_id)
        return TaskSummary(
            has_task=bool(tasks),
            task_count=len(tasks),
            latest_task=tasks[0] if tasks else None,
        )

    # --- Comments and documents ---

    def comments_for_case(self, case_id: str) -> List[Comment]:
        return self.resources_for_case(case_id, ResourceKind.COMMENT)

    def documents_for_case(self, case_id: str) -> List[Document]:
        return self.resources_for_case(case_id, ResourceKind.DOCUMENT)

    # --- Planning ---

    def plannings_for_case(self, case_id: str) -> List[PlanningTimeline]:
        return self.resources_for_case(case_id, ResourceKind.PLANNING)

    def latest_planning(self, case_id: str) -> Optional[PlanningTimeline]:
        """Most recently updated planning that still has open moments."""
        active = [p for p in self.plannings_for_case(case_id) if is_planning_active(p)]
        if not active:
            return None
        return max(active, key=_updated_sort_key)


def _updated_sort_key(resource) -> float:
    if resource.updated_at is None:
        return float("-inf")
    return resource.updated_at.timestamp()


def is_planning_active(planning: PlanningTimeline) -> bool:
    """A planning is active while any moment is not completed."""
    return any(m.status != MomentStatus.COMPLETED for m in planning.moments)


def planning_progress(planning: PlanningTimeline) -> PlanningProgress:
    moments = planning.moments
    return PlanningProgress(
        completed=sum(1 for m in moments if m.status == MomentStatus.COMPLETED),
        current=sum(1 for m in moments if m.status == MomentStatus.CURRENT),
        planned=sum(1 for m in moments if m.status == MomentStatus.PLANNED),
        total=len(moments),
        current_moment=next((m for m in moments if m.status == MomentStatus.CURRENT), None),
        next_moment=next((m for m in moments if m.status == MomentStatus.PLANNED), None),
    )


def planning_completion_percentage(planning: PlanningTimeline) -> int:
    if not planning.moments:
        return 0
    completed = sum(1 for m in planning.moments if m.status == MomentStatus.COMPLETED)
    return round(completed * 100 / len(planning.moments))

