"""Resource models — the typed views over values derived from the event log."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class ResourceKind(str, Enum):
    """Resource type tags as they appear in item_type or in a schema URL."""

    CASE = "issue"
    TASK = "task"
    COMMENT = "comment"
    PLANNING = "planning"
    DOCUMENT = "document"

    @classmethod
    def from_tag(cls, tag: Optional[str]) -> Optional["ResourceKind"]:
        """
        Resolve an item_type value or a schema URL to a kind.

        Schema URLs are matched on their last path segment, so
        "http://host/schemas/Task" resolves to TASK. Unknown tags give None.
        """
        if not tag:
            return None
        name = tag.rstrip("/").rsplit("/", 1)[-1].lower()
        return _TAG_ALIASES.get(name)

    @property
    def schema_name(self) -> str:
        return self.value.capitalize()

    @property
    def is_primary(self) -> bool:
        """Primary resources are projected incrementally into the store."""
        return self is ResourceKind.CASE


_TAG_ALIASES = {
    "issue": ResourceKind.CASE,
    "case": ResourceKind.CASE,
    "zaak": ResourceKind.CASE,
    "task": ResourceKind.TASK,
    "comment": ResourceKind.COMMENT,
    "planning": ResourceKind.PLANNING,
    "document": ResourceKind.DOCUMENT,
}


class CaseStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class MomentStatus(str, Enum):
    COMPLETED = "completed"
    CURRENT = "current"
    PLANNED = "planned"


class Resource(BaseModel):
    """
    Base for every resource view.

    Values can be synthesized from a patch alone, so apart from the id every
    field is optional, and fields this client does not know are kept.
    """

    model_config = ConfigDict(extra="allow")

    id: str


class Case(Resource):
    """A case (zaak) — the primary resource."""

    title: Optional[str] = None
    status: Optional[str] = None            # CaseStatus value
    priority: Optional[str] = None          # "low" | "medium" | "high"
    assignee: Optional[str] = None          # e.g. "alice@gemeente.nl"
    description: Optional[str] = None
    resolution: Optional[str] = None        # Only set on closed cases
    created_at: Optional[str] = None         # ISO-8601, as sent by the producer


class Task(Resource):
    cta: Optional[str] = None               # Short call-to-action text
    description: Optional[str] = None
    completed: bool = False
    completed_at: Optional[str] = None
    completed_by: Optional[str] = None
    deadline: Optional[str] = None          # YYYY-MM-DD
    url: Optional[str] = None
    actor: Optional[str] = None
    updated_at: Optional[datetime] = None   # Time of the latest event for this task


class Comment(Resource):
    content: Optional[str] = None
    author: Optional[str] = None
    mentions: Optional[List[str]] = None
    parent_id: Optional[str] = None         # Threading
    updated_at: Optional[datetime] = None


class PlanningMoment(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    date: str                               # YYYY-MM-DD
    title: str
    status: MomentStatus = MomentStatus.PLANNED


class PlanningTimeline(Resource):
    title: Optional[str] = None
    description: Optional[str] = None
    moments: List[PlanningMoment] = []
    updated_at: Optional[datetime] = None


class Document(Resource):
    title: Optional[str] = None
    url: Optional[str] = None
    size: Optional[int] = None              # Bytes
    updated_at: Optional[datetime] = None


RESOURCE_MODELS = {
    ResourceKind.CASE: Case,
    ResourceKind.TASK: Task,
    ResourceKind.COMMENT: Comment,
    ResourceKind.PLANNING: PlanningTimeline,
    ResourceKind.DOCUMENT: Document,
}
