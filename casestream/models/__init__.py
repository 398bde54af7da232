"""casestream data models."""

from casestream.models.engine import (
    CommandState,
    ConnectionStatus,
    EngineConfig,
    PendingCommand,
)
from casestream.models.events import (
    CloudEvent,
    EventType,
    ItemEventData,
    JSONCommitData,
)
from casestream.models.resources import (
    Case,
    CaseStatus,
    Comment,
    Document,
    MomentStatus,
    PlanningMoment,
    PlanningTimeline,
    Resource,
    ResourceKind,
    Task,
)

__all__ = [
    "Case",
    "CaseStatus",
    "CloudEvent",
    "CommandState",
    "Comment",
    "ConnectionStatus",
    "Document",
    "EngineConfig",
    "EventType",
    "ItemEventData",
    "JSONCommitData",
    "MomentStatus",
    "PendingCommand",
    "PlanningMoment",
    "PlanningTimeline",
    "Resource",
    "ResourceKind",
    "Task",
]
