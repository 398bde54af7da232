"""
Event classification — the boundary where a raw CloudEvent becomes a typed action.

Every event maps to exactly one EventAction variant. Adding a resource kind
or an event type means adding a branch here; there is no silent fallthrough
into resource handling.
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, ValidationError

from casestream.models.events import CloudEvent, EventType, ItemEventData, JSONCommitData
from casestream.models.resources import ResourceKind


class CreateResource(BaseModel):
    action: Literal["create"] = "create"
    kind: ResourceKind
    resource_id: str
    data: dict


class PatchResource(BaseModel):
    action: Literal["patch"] = "patch"
    kind: ResourceKind
    resource_id: str
    patch: dict


class DeleteResource(BaseModel):
    action: Literal["delete"] = "delete"
    kind: ResourceKind
    resource_id: str


class ResetRequested(BaseModel):
    action: Literal["reset"] = "reset"


class Unrecognized(BaseModel):
    action: Literal["unrecognized"] = "unrecognized"
    reason: str


EventAction = Union[
    CreateResource, PatchResource, DeleteResource, ResetRequested, Unrecognized
]


def _event_type(event: CloudEvent) -> Optional[EventType]:
    try:
        return EventType(event.type)
    except ValueError:
        return None


def _creation_data(resource_id: str, data: dict) -> dict:
    if "id" in data:
        return dict(data)
    return {"id": resource_id, **data}


def classify(event: CloudEvent) -> EventAction:
    """Classify an event by its type and payload shape."""
    event_type = _event_type(event)

    if event_type is None:
        return Unrecognized(reason=f"unknown event type {event.type!r}")

    if event_type == EventType.SYSTEM_RESET:
        return ResetRequested()

    if not isinstance(event.data, dict):
        return Unrecognized(reason=f"non-object payload for {event.type!r}")

    if event_type == EventType.JSON_COMMIT:
        return _classify_json_commit(event)

    return _classify_item_event(event, event_type)


def _classify_item_event(event: CloudEvent, event_type: EventType) -> EventAction:
    try:
        payload = ItemEventData.from_payload(event.data)
    except ValidationError as e:
        return Unrecognized(reason=f"invalid item payload: {e.error_count()} error(s)")

    kind = ResourceKind.from_tag(payload.item_type) or ResourceKind.from_tag(
        payload.schema_url
    )
    if kind is None:
        return Unrecognized(reason=f"unknown item type {payload.item_type!r}")

    if event_type == EventType.ITEM_CREATED:
        if payload.item_data is None:
            return Unrecognized(reason="item.created without item_data")
        return CreateResource(
            kind=kind,
            resource_id=payload.item_id,
            data=_creation_data(payload.item_id, payload.item_data),
        )

    if event_type == EventType.ITEM_UPDATED:
        if payload.patch is None:
            return Unrecognized(reason="item.updated without patch")
        return PatchResource(kind=kind, resource_id=payload.item_id, patch=payload.patch)

    if event_type == EventType.ITEM_DELETED:
        return DeleteResource(kind=kind, resource_id=payload.item_id)

    raise ValueError(f"Unhandled item event type: {event_type.value}")


def _classify_json_commit(event: CloudEvent) -> EventAction:
    try:
        payload = JSONCommitData.from_payload(event.data)
    except ValidationError as e:
        return Unrecognized(reason=f"invalid commit payload: {e.error_count()} error(s)")

    kind = ResourceKind.from_tag(payload.schema_url)
    if kind is None:
        return Unrecognized(reason=f"unknown schema {payload.schema_url!r}")

    if payload.resource_data is not None:
        return CreateResource(
            kind=kind,
            resource_id=payload.resource_id,
            data=_creation_data(payload.resource_id, payload.resource_data),
        )

    if payload.is_deletion:
        return DeleteResource(kind=kind, resource_id=payload.resource_id)

    if payload.patch is not None:
        return PatchResource(kind=kind, resource_id=payload.resource_id, patch=payload.patch)

    return Unrecognized(reason="commit without resource_data or patch")
