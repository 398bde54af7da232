"""
Resync Controller — owns the push channel and the engine state.

States:
  CONNECTING → CONNECTED → (DISCONNECTED | ERROR) → CONNECTING

Every new connection starts from nothing: the previous log, store and
activity map are discarded, the snapshot rebuilds them, and deltas are
applied one at a time in arrival order. Reconnects happen after a fixed
delay, forever. A system.reset delta reconnects immediately.

Behavioral Contract:
- A snapshot body that is not a JSON array is dropped whole; elements that
  are not valid events are skipped one by one.
- A snapshot is folded into a fresh state that is swapped in only once
  complete; a half-applied snapshot is never visible.
- Malformed snapshot / delta payloads are logged and dropped; the channel
  stays open.
- Channel failures surface only as connection status.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

from pydantic import BaseModel, TypeAdapter, ValidationError

from casestream.errors import MalformedMessage, TransportError
from casestream.models.engine import ConnectionStatus, EngineConfig
from casestream.models.events import CloudEvent
from casestream.models.resources import Case
from casestream.processor.events import EventProcessor, ProcessOutcome
from casestream.projections.secondary import SecondaryProjector
from casestream.store.state import EngineState
from casestream.sync.transport import (
    ChannelMessage,
    MessageKind,
    SSEChannel,
    TransportChannel,
)

logger = logging.getLogger(__name__)

_SNAPSHOT_ADAPTER = TypeAdapter(List[Any])

ChannelFactory = Callable[[], TransportChannel]
Listener = Callable[["ResyncController"], None]


class CaseListing(BaseModel):
    """A case with the activity timestamp used to order the case list."""

    case: Case
    last_activity: Optional[datetime] = None


def parse_snapshot(raw: str) -> List[CloudEvent]:
    """
    Parse a snapshot message body (JSON array of events).

    Raises MalformedMessage only when the body is not a JSON array. Elements
    that are not valid events are logged and skipped.
    """
    try:
        items = _SNAPSHOT_ADAPTER.validate_json(raw)
    except ValidationError as e:
        raise MalformedMessage("snapshot", f"{e.error_count()} validation error(s)") from e

    events = []
    for index, item in enumerate(items):
        try:
            events.append(CloudEvent.model_validate(item))
        except ValidationError as e:
            logger.warning(
                "Skipping snapshot element %d: %d validation error(s)", index, e.error_count()
            )
    return events


def parse_delta(raw: str) -> CloudEvent:
    """Parse a delta message body (one JSON event)."""
    try:
        return CloudEvent.model_validate_json(raw)
    except ValidationError as e:
        raise MalformedMessage("delta", f"{e.error_count()} validation error(s)") from e


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ResyncController:
    """Keeps one EngineState consistent with the server's event stream."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        channel_factory: Optional[ChannelFactory] = None,
    ):
        self.config = config or EngineConfig()
        self._channel_factory = channel_factory or self._default_channel
        self._status = ConnectionStatus.CONNECTING
        self._listeners: List[Listener] = []
        self._running = False
        self._channel: Optional[TransportChannel] = None
        self._generation = 0
        self.connection_count = 0
        self.reset_count = 0
        self._install_state(EngineState(generation=0))

    def _default_channel(self) -> TransportChannel:
        return SSEChannel(self.config)

    def _install_state(self, state: EngineState) -> None:
        self._state = state
        self._processor = EventProcessor(state)
        self._projector = SecondaryProjector(state)

    # --- Read API ---

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def running(self) -> bool:
        return self._running

    @property
    def state(self) -> EngineState:
        """Current state. Consumers must treat it as read-only."""
        return self._state

    @property
    def processor(self) -> EventProcessor:
        """The mutation entry point for the current state."""
        return self._processor

    @property
    def projections(self) -> SecondaryProjector:
        return self._projector

    @property
    def events(self) -> List[CloudEvent]:
        """Copy of the raw event log for this connection."""
        return list(self._state.log)

    def get_case(self, case_id: str) -> Optional[Case]:
        return self._state.store.get_case(case_id)

    def last_activity(self, subject: str) -> Optional[datetime]:
        return self._state.activity.last_activity(subject)

    def list_cases(self) -> List[CaseListing]:
        """All cases, most recently active first."""
        listings = []
        for case in self._state.store.get_cases():
            activity = self._state.activity.last_activity(case.id)
            listings.append(CaseListing(
                case=case,
                last_activity=activity or _parse_timestamp(case.created_at),
            ))

        def sort_key(listing: CaseListing) -> Tuple[int, float]:
            if listing.last_activity is None:
                return (0, 0.0)
            return (1, listing.last_activity.timestamp())

        return sorted(listings, key=sort_key, reverse=True)

    # --- Listeners ---

    def add_listener(self, listener: Listener) -> None:
        """Register a callback invoked after every status or state change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Listener %r failed", listener)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status != self._status:
            logger.info("Connection status: %s -> %s", self._status.value, status.value)
            self._status = status
        self.notify()

    # --- Reconciliation ---

    def begin_connection(self) -> None:
        """Discard all local state ahead of a new connection."""
        self._generation += 1
        self.connection_count += 1
        self._install_state(EngineState(generation=self._generation))
        self._set_status(ConnectionStatus.CONNECTING)

    def apply_snapshot(self, raw: str) -> int:
        """
        Rebuild the state from a snapshot message.

        Returns the number of events folded. Raises MalformedMessage, leaving
        the current state untouched, if the payload does not parse.
        """
        events = parse_snapshot(raw)
        received_at = datetime.now(timezone.utc)

        state = EngineState(generation=self._generation)
        processor = EventProcessor(state)
        state.replace_log(events)
        for event in events:
            result = processor.process(event, received_at=received_at)
            if result.outcome == ProcessOutcome.RESET:
                logger.debug("Ignoring historical reset event %s in snapshot", event.id)

        self._install_state(state)
        logger.info(
            "Snapshot applied: %d events, %d cases", len(events), len(state.store)
        )
        self.notify()
        return len(events)

    def apply_delta(self, raw: str) -> ProcessOutcome:
        """
        Apply one delta message.

        Returns RESET when the server demands a full reset; the state has
        then already been discarded and the caller must reconnect.
        """
        event = parse_delta(raw)
        if self._state.is_optimistic(event.id):
            self._state.retire_optimistic(event.id)

        self._state.append(event)
        result = self._processor.process(event)

        if result.outcome == ProcessOutcome.RESET:
            logger.info("Reset event %s received, discarding local state", event.id)
            self.reset_count += 1
            self._install_state(EngineState(generation=self._generation))

        self.notify()
        return result.outcome

    def handle_message(self, message: ChannelMessage) -> bool:
        """
        Handle one channel message.

        Returns False when the current connection must be abandoned.
        """
        if message.kind == MessageKind.OPEN:
            self._set_status(ConnectionStatus.CONNECTED)
            return True

        try:
            if message.kind == MessageKind.SNAPSHOT:
                self.apply_snapshot(message.data)
            elif message.kind == MessageKind.DELTA:
                if self.apply_delta(message.data) == ProcessOutcome.RESET:
                    return False
            else:
                raise ValueError(f"Unhandled channel message kind: {message.kind}")
        except MalformedMessage as e:
            logger.warning("Dropping message: %s", e)

        return True

    async def run_connection(self) -> float:
        """
        Run one connection until it ends.

        Returns the delay to wait before reconnecting.
        """
        self.begin_connection()
        channel = self._channel_factory()
        self._channel = channel
        messages = channel.messages()

        try:
            async for message in messages:
                if not self.handle_message(message):
                    return 0.0
            self._set_status(ConnectionStatus.DISCONNECTED)
            return self.config.reconnect_delay_seconds
        except TransportError as e:
            logger.warning("Event channel failed: %s", e)
            self._set_status(ConnectionStatus.ERROR)
            return self.config.reconnect_delay_seconds
        finally:
            await messages.aclose()
            await channel.close()
            self._channel = None

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Keep a connection open until stop_event is set, reconnecting forever."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                delay = await self.run_connection()
                if delay <= 0:
                    continue
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
