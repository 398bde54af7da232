"""
Activity Tracker — last-activity timestamp per subject.

Only used to order the case list (most recently active first). It never
affects resource values.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple


class ActivityTracker:
    """Per-subject max(event.time), non-decreasing until a resync replaces it."""

    def __init__(self):
        self._last_activity: Dict[str, datetime] = {}

    def __contains__(self, subject: str) -> bool:
        return subject in self._last_activity

    def last_activity(self, subject: str) -> Optional[datetime]:
        return self._last_activity.get(subject)

    def touch(self, subject: str, when: datetime) -> bool:
        """Advance a subject's last activity; returns whether it moved."""
        current = self._last_activity.get(subject)
        if current is not None and current >= when:
            return False
        self._last_activity[subject] = when
        return True

    def ranking(self) -> List[Tuple[str, datetime]]:
        """Subjects with their last activity, most recently active first."""
        return sorted(
            self._last_activity.items(),
            key=lambda item: item[1],
            reverse=True,
        )
