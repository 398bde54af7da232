"""
Event Processor — applies one CloudEvent at a time to the engine state.

Per resource id:
  ABSENT → PRESENT (created) → PRESENT (patched)* → ABSENT (deleted)

Behavioral Contract:
- Only case resources are projected into the store; secondary kinds are
  folded at read time (see projections.secondary).
- An update for an id that was never created synthesizes the resource from
  {"id": id} plus the patch. Out-of-order arrival is not an error.
- Deleting an absent resource is a no-op.
- Unknown events only refresh last activity for subjects already in the
  store.
- system.reset mutates nothing; the caller must discard state and reconnect.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from casestream.models.events import CloudEvent
from casestream.patch.merge import apply_patch
from casestream.processor.classify import (
    CreateResource,
    DeleteResource,
    EventAction,
    PatchResource,
    ResetRequested,
    Unrecognized,
    classify,
)
from casestream.store.state import EngineState

logger = logging.getLogger(__name__)


class ProcessOutcome(str, Enum):
    APPLIED = "applied"     # Store and/or activity changed as a resource event
    IGNORED = "ignored"     # Unrecognized event
    RESET = "reset"         # Control event, caller must resync


class ProcessResult(BaseModel):
    outcome: ProcessOutcome
    action: EventAction


def apply_action(resources: dict, action: EventAction) -> None:
    """
    Apply a resource action to a plain id -> value mapping.

    Shared by the store path and the read-time fold so both follow the same
    create / patch / delete rules.
    """
    if isinstance(action, CreateResource):
        resources[action.resource_id] = dict(action.data)
    elif isinstance(action, PatchResource):
        existing = resources.get(action.resource_id)
        if existing is None:
            existing = {"id": action.resource_id}
        resources[action.resource_id] = apply_patch(existing, action.patch)
    elif isinstance(action, DeleteResource):
        resources.pop(action.resource_id, None)
    else:
        raise TypeError(f"Not a resource action: {type(action).__name__}")


class EventProcessor:
    """The single serialized mutation entry point into EngineState."""

    def __init__(self, state: EngineState):
        self.state = state

    def process(
        self, event: CloudEvent, received_at: Optional[datetime] = None
    ) -> ProcessResult:
        """Classify and apply one event."""
        action = classify(event)
        when = event.time or received_at or datetime.now(timezone.utc)

        if isinstance(action, ResetRequested):
            return ProcessResult(outcome=ProcessOutcome.RESET, action=action)

        if isinstance(action, Unrecognized):
            logger.debug("Ignoring event %s: %s", event.id, action.reason)
            if event.subject and event.subject in self.state.store:
                self.state.activity.touch(event.subject, when)
            return ProcessResult(outcome=ProcessOutcome.IGNORED, action=action)

        if action.kind.is_primary:
            self._apply_to_store(action)

        if event.subject:
            self.state.activity.touch(event.subject, when)

        return ProcessResult(outcome=ProcessOutcome.APPLIED, action=action)

    def _apply_to_store(self, action: EventAction) -> None:
        apply_action(self.state.store, action)
