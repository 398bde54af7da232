"""
Engine State — the one container for everything derived from the stream.

Owned by the Resync Controller. Consumers only ever see it through
read-only accessors; the Event Processor is the only writer of the store
and the activity map.
"""

from typing import Dict, List, Tuple

from casestream.activity.tracker import ActivityTracker
from casestream.models.events import CloudEvent
from casestream.store.resources import ResourceStore


class EngineState:
    """
    Raw event log, primary-resource store, activity map and the optimistic
    overlay of commands sent but not yet echoed by the server.
    """

    def __init__(self, generation: int = 0):
        self.generation = generation
        self.store = ResourceStore()
        self.activity = ActivityTracker()
        self._log: List[CloudEvent] = []
        self._overlay: Dict[str, Tuple[int, CloudEvent]] = {}
        self._overlay_version = 0

    # --- Raw event log ---

    @property
    def log_length(self) -> int:
        return len(self._log)

    @property
    def log(self) -> Tuple[CloudEvent, ...]:
        return tuple(self._log)

    def append(self, event: CloudEvent) -> None:
        self._log.append(event)

    def replace_log(self, events: List[CloudEvent]) -> None:
        self._log = list(events)

    # --- Optimistic overlay ---

    def add_optimistic(self, event: CloudEvent) -> None:
        """Register a dispatched event at the current end of the raw log."""
        self._overlay[event.id] = (len(self._log), event)
        self._overlay_version += 1

    def retire_optimistic(self, event_id: str) -> bool:
        """Drop an overlay entry (echo received or command rejected)."""
        if self._overlay.pop(event_id, None) is None:
            return False
        self._overlay_version += 1
        return True

    def is_optimistic(self, event_id: str) -> bool:
        return event_id in self._overlay

    def replay(self) -> List[CloudEvent]:
        """
        The raw log with each overlay event placed where it was dispatched.

        Events that arrived after a dispatch are replayed after it.
        """
        placed: Dict[int, List[CloudEvent]] = {}
        for position, event in self._overlay.values():
            placed.setdefault(position, []).append(event)

        events: List[CloudEvent] = []
        for position, logged in enumerate(self._log):
            events.extend(placed.pop(position, ()))
            events.append(logged)
        for position in sorted(placed):
            events.extend(placed[position])
        return events

    def cache_key(self) -> Tuple[int, int, int]:
        """Changes whenever anything a secondary-resource fold reads changes."""
        return (self.generation, len(self._log), self._overlay_version)
