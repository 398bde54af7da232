"""
Command Dispatcher — applies a local command optimistically, then sends it.

Behavioral Contract:
- The optimistic effect is visible before the first await: the event goes
  through the Event Processor and into the optimistic overlay, never into
  the raw log (the server echo puts it there).
- The event is POSTed as JSON; 2xx is success, anything else raises
  CommandRejected. Transport failures are retried with a fixed delay, then
  raise CommandRejected without a status code.
- A rejected command always leaves the overlay. With rollback_on_reject off
  (default) its effect on the case store is kept until the next resync.
  With it on, the case it touched is restored to its pre-image if nothing
  else changed it since.
- Rejected commands stay listed until forgotten or until the next resync.
"""

import asyncio
import copy
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import httpx

from casestream.commands.builders import task_completion_event
from casestream.errors import CommandRejected
from casestream.models.engine import CommandState, EngineConfig, PendingCommand
from casestream.models.events import CloudEvent
from casestream.processor.classify import (
    CreateResource,
    DeleteResource,
    PatchResource,
    classify,
)
from casestream.store.state import EngineState
from casestream.sync.controller import ResyncController

logger = logging.getLogger(__name__)


class _Rollback:
    """What is needed to undo one optimistic primary-resource mutation."""

    def __init__(
        self,
        state: EngineState,
        resource_id: str,
        before: Optional[dict],
        after: Optional[dict],
    ):
        self.state = state
        self.resource_id = resource_id
        self.before = before
        self.after = after

    def apply(self) -> bool:
        store = self.state.store
        if store.peek(self.resource_id) != self.after:
            return False
        if self.before is None:
            store.pop(self.resource_id)
        else:
            store[self.resource_id] = self.before
        return True


class CommandDispatcher:
    """Sends locally authored events to the server."""

    def __init__(
        self,
        controller: ResyncController,
        config: Optional[EngineConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.controller = controller
        self.config = config or controller.config
        self._client = client
        self._pending: Dict[str, PendingCommand] = {}
        self._rollbacks: Dict[str, _Rollback] = {}
        self._generation = controller.state.generation
        controller.add_listener(self._prune_after_resync)

    @property
    def pending(self) -> List[PendingCommand]:
        """In-flight and rejected commands, oldest first."""
        return list(self._pending.values())

    def get_command(self, event_id: str) -> Optional[PendingCommand]:
        return self._pending.get(event_id)

    def apply_locally(self, event: CloudEvent) -> None:
        """Optimistic local application through the Event Processor."""
        state = self.controller.state
        action = classify(event)

        resource_id = None
        before = None
        if isinstance(action, (CreateResource, PatchResource, DeleteResource)):
            if action.kind.is_primary:
                resource_id = action.resource_id
                before = copy.deepcopy(state.store.peek(resource_id))

        self.controller.processor.process(event)

        if resource_id is not None:
            after = copy.deepcopy(state.store.peek(resource_id))
            self._rollbacks[event.id] = _Rollback(state, resource_id, before, after)

        state.add_optimistic(event)
        self._pending[event.id] = PendingCommand(
            event_id=event.id,
            subject=event.subject,
            submitted_at=datetime.now(timezone.utc),
        )
        self.controller.notify()

    async def dispatch(self, event: CloudEvent) -> None:
        """
        Apply an event optimistically and send it to the server.

        Raises CommandRejected if the server does not accept it.
        """
        self.apply_locally(event)

        try:
            await self._send(event)
        except CommandRejected as e:
            self._mark_rejected(event, e)
            raise

        logger.debug("Event %s accepted", event.id)
        self._pending.pop(event.id, None)
        self._rollbacks.pop(event.id, None)

    async def complete_task(self, task_id: str, case_id: str) -> CloudEvent:
        """Mark a task completed."""
        event = task_completion_event(task_id, case_id, config=self.config)
        await self.dispatch(event)
        return event

    def forget(self, event_id: str) -> None:
        """Stop tracking a rejected command."""
        self._pending.pop(event_id, None)
        self._rollbacks.pop(event_id, None)

    # --- Internals ---

    async def _send(self, event: CloudEvent) -> None:
        attempts = self.config.command_retry_attempts + 1
        command = self._pending[event.id]
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            command.attempts = attempt
            try:
                response = await self._post(event)
            except httpx.TransportError as e:
                last_error = e
                logger.warning(
                    "Sending event %s failed (attempt %d/%d): %s",
                    event.id, attempt, attempts, e,
                )
                if attempt < attempts:
                    await asyncio.sleep(self.config.command_retry_delay_seconds)
                continue

            command.status_code = response.status_code
            if response.is_success:
                return
            raise CommandRejected(
                response.reason_phrase or response.text,
                status_code=response.status_code,
                event_id=event.id,
            )

        raise CommandRejected(
            str(last_error) or type(last_error).__name__,
            event_id=event.id,
        )

    async def _post(self, event: CloudEvent) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.config.commands_url, json=event.to_wire())
        async with httpx.AsyncClient(timeout=self.config.request_timeout_seconds) as client:
            return await client.post(self.config.commands_url, json=event.to_wire())

    def _mark_rejected(self, event: CloudEvent, error: CommandRejected) -> None:
        logger.error("Event %s rejected: %s", event.id, error)
        command = self._pending[event.id]
        command.state = CommandState.REJECTED
        command.reason = error.reason
        command.completed_at = datetime.now(timezone.utc)

        state = self.controller.state
        state.retire_optimistic(event.id)

        rollback = self._rollbacks.pop(event.id, None)
        if self.config.rollback_on_reject and rollback is not None and rollback.state is state:
            if rollback.apply():
                logger.info("Rolled back optimistic change for %s", rollback.resource_id)
            else:
                logger.info(
                    "Not rolling back %s: changed since the command was applied",
                    rollback.resource_id,
                )
        self.controller.notify()

    def _prune_after_resync(self, controller: ResyncController) -> None:
        generation = controller.state.generation
        if generation == self._generation:
            return
        self._generation = generation
        rejected = [
            event_id for event_id, command in self._pending.items()
            if command.state == CommandState.REJECTED
        ]
        for event_id in rejected:
            self.forget(event_id)
        if rejected:
            logger.debug("Dropped %d rejected command(s) after resync", len(rejected))
