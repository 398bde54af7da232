"""
Resource Store — current value of every primary resource, keyed by resource id.

Written by: Event Processor (the only mutation path)
Read by: Resync Controller read API + HTTP facade
"""

import copy
from typing import Dict, Iterator, List, Optional

from casestream.models.resources import Case


class ResourceStore:
    """
    In-memory mapping of resource id -> resource value.

    Values are kept as plain JSON objects so merge patches apply to exactly
    what the server sent. Readers get copies or typed views, never the
    stored dicts themselves.
    """

    def __init__(self):
        self._resources: Dict[str, dict] = {}

    def __contains__(self, resource_id: str) -> bool:
        return resource_id in self._resources

    def __len__(self) -> int:
        return len(self._resources)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._resources))

    def __setitem__(self, resource_id: str, value: dict) -> None:
        """Insert or replace a resource."""
        self._resources[resource_id] = value

    def pop(self, resource_id: str, default=None) -> Optional[dict]:
        return self._resources.pop(resource_id, default)

    def get(self, resource_id: str) -> Optional[dict]:
        """Get a copy of a resource value."""
        value = self._resources.get(resource_id)
        return copy.deepcopy(value) if value is not None else None

    def peek(self, resource_id: str) -> Optional[dict]:
        """Get the stored value without copying. Callers must not mutate it."""
        return self._resources.get(resource_id)

    def get_case(self, case_id: str) -> Optional[Case]:
        """Typed view of a single case."""
        value = self._resources.get(case_id)
        if value is None:
            return None
        return Case.model_validate({"id": case_id, **value})

    def get_cases(self) -> List[Case]:
        """Typed views of all stored cases, in insertion order."""
        return [self.get_case(case_id) for case_id in self._resources]
