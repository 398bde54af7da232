"""CloudEvent envelope and commit payloads — the wire shapes of the event stream."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


SPEC_VERSION = "1.0"
JSON_CONTENT_TYPE = "application/json"


class EventType(str, Enum):
    ITEM_CREATED = "item.created"
    ITEM_UPDATED = "item.updated"
    ITEM_DELETED = "item.deleted"
    SYSTEM_RESET = "system.reset"   # Control event: discard everything, reconnect
    JSON_COMMIT = "json.commit"     # Generic commit, kind identified by schema URL


class CloudEvent(BaseModel):
    """A single commit event as delivered on the channel or sent as a command."""

    model_config = ConfigDict(extra="allow")

    specversion: str = SPEC_VERSION
    id: str
    source: str
    subject: Optional[str] = None           # Correlates to a case id
    type: str
    time: Optional[datetime] = None
    datacontenttype: Optional[str] = None
    dataschema: Optional[str] = None
    data: Any = {}                          # Usually an object; CloudEvents allows any JSON value

    @field_validator("time")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("data", mode="before")
    @classmethod
    def _null_data(cls, value):
        return {} if value is None else value

    def to_wire(self) -> dict:
        """JSON-ready representation, omitting absent optional attributes."""
        return self.model_dump(mode="json", exclude_none=True)


class ItemEventData(BaseModel):
    """Payload of the item.created / item.updated / item.deleted events."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    item_type: Optional[str] = None         # e.g. "issue", "task", "planning"
    item_id: str
    actor: Optional[str] = None
    item_data: Optional[dict] = None        # Full resource (creation)
    patch: Optional[dict] = None            # Merge patch (update)
    schema_url: Optional[str] = Field(default=None, alias="schema")

    @classmethod
    def from_payload(cls, data: dict) -> "ItemEventData":
        """Validate, accepting resource_id / resource_data for item_id / item_data."""
        payload = dict(data)
        if "item_id" not in payload and "resource_id" in payload:
            payload["item_id"] = payload["resource_id"]
        if "item_data" not in payload and "resource_data" in payload:
            payload["item_data"] = payload["resource_data"]
        return cls.model_validate(payload)


class JSONCommitData(BaseModel):
    """
    Payload of a json.commit event.

    Older producers still send item_id / item_data; both spellings are
    accepted when validating.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    schema_url: str = Field(alias="schema")  # Type-identifying URL, e.g. .../schemas/Task
    resource_id: str
    actor: Optional[str] = None
    resource_data: Optional[dict] = None
    patch: Optional[dict] = None

    @classmethod
    def from_payload(cls, data: dict) -> "JSONCommitData":
        payload = dict(data)
        if "resource_id" not in payload and "item_id" in payload:
            payload["resource_id"] = payload["item_id"]
        if "resource_data" not in payload and "item_data" in payload:
            payload["resource_data"] = payload["item_data"]
        return cls.model_validate(payload)

    @property
    def is_deletion(self) -> bool:
        return bool(self.patch) and self.patch.get("_deleted") is True
