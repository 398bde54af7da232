"""Builders for locally authored commit events."""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from casestream.models.engine import EngineConfig
from casestream.models.events import JSON_CONTENT_TYPE, CloudEvent, EventType
from casestream.models.resources import ResourceKind


def schema_url(kind: ResourceKind, config: Optional[EngineConfig] = None) -> str:
    """Schema URL identifying a resource kind, e.g. .../schemas/Task."""
    config = config or EngineConfig()
    return f"{config.schema_base_url.rstrip('/')}/{kind.schema_name}"


def new_event(
    event_type: str,
    data: dict,
    subject: Optional[str] = None,
    source: Optional[str] = None,
    config: Optional[EngineConfig] = None,
) -> CloudEvent:
    """A fresh event: new uuid4 id, time = now."""
    config = config or EngineConfig()
    return CloudEvent(
        id=str(uuid4()),
        source=source or config.source,
        subject=subject,
        type=event_type,
        time=datetime.now(timezone.utc),
        datacontenttype=JSON_CONTENT_TYPE,
        data=data,
    )


def item_created_event(
    kind: ResourceKind,
    item_data: dict,
    subject: Optional[str] = None,
    actor: Optional[str] = None,
    config: Optional[EngineConfig] = None,
) -> CloudEvent:
    config = config or EngineConfig()
    item_id = item_data["id"]
    return new_event(
        EventType.ITEM_CREATED.value,
        {
            "schema": schema_url(kind, config),
            "item_type": kind.value,
            "item_id": item_id,
            "actor": actor or config.actor,
            "item_data": item_data,
        },
        subject=subject or item_id,
        config=config,
    )


def item_updated_event(
    kind: ResourceKind,
    item_id: str,
    patch: dict,
    subject: Optional[str] = None,
    actor: Optional[str] = None,
    config: Optional[EngineConfig] = None,
) -> CloudEvent:
    config = config or EngineConfig()
    return new_event(
        EventType.ITEM_UPDATED.value,
        {
            "schema": schema_url(kind, config),
            "item_type": kind.value,
            "item_id": item_id,
            "actor": actor or config.actor,
            "patch": patch,
        },
        subject=subject or item_id,
        config=config,
    )


def item_deleted_event(
    kind: ResourceKind,
    item_id: str,
    subject: Optional[str] = None,
    actor: Optional[str] = None,
    config: Optional[EngineConfig] = None,
) -> CloudEvent:
    config = config or EngineConfig()
    return new_event(
        EventType.ITEM_DELETED.value,
        {
            "schema": schema_url(kind, config),
            "item_type": kind.value,
            "item_id": item_id,
            "actor": actor or config.actor,
            "item_data": {"id": item_id},
        },
        subject=subject or item_id,
        config=config,
    )


def json_commit_event(
    kind: ResourceKind,
    resource_id: str,
    subject: Optional[str] = None,
    resource_data: Optional[dict] = None,
    patch: Optional[dict] = None,
    deleted: bool = False,
    actor: Optional[str] = None,
    config: Optional[EngineConfig] = None,
) -> CloudEvent:
    """
    A json.commit event. Pass resource_data to create, patch to update, or
    deleted=True to delete.
    """
    if sum([resource_data is not None, patch is not None, deleted]) != 1:
        raise ValueError("Exactly one of resource_data, patch or deleted is required")

    config = config or EngineConfig()
    data = {
        "schema": schema_url(kind, config),
        "resource_id": resource_id,
        "actor": actor or config.actor,
    }
    if resource_data is not None:
        data["resource_data"] = resource_data
    elif deleted:
        data["patch"] = {"_deleted": True}
    else:
        data["patch"] = patch

    event = new_event(
        EventType.JSON_COMMIT.value,
        data,
        subject=subject or resource_id,
        config=config,
    )
    event.dataschema = f"{config.schema_base_url.rstrip('/')}/JSONCommit"
    return event


def task_completion_event(
    task_id: str,
    case_id: str,
    actor: Optional[str] = None,
    config: Optional[EngineConfig] = None,
) -> CloudEvent:
    config = config or EngineConfig()
    actor = actor or config.actor
    return item_updated_event(
        ResourceKind.TASK,
        task_id,
        {
            "completed": True,
            "completed_at": datetime.now(timezone.utc).isoformat(),
            "completed_by": actor,
        },
        subject=case_id,
        actor=actor,
        config=config,
    )
