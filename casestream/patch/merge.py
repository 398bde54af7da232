"""
JSON Merge Patch (RFC 7396).

    apply_patch(target, patch) -> merged value

- A patch that is not an object replaces the target outright.
- A target that is not an object is treated as {} before merging.
- null removes a key, an object merges recursively, anything else is set.

Inputs are never modified; the result shares no mutable state with them.
"""

import copy
from typing import Any, Iterable


def apply_patch(target: Any, patch: Any) -> Any:
    """Apply a merge patch to target and return the merged value."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)

    if not isinstance(target, dict):
        target = {}

    result = {key: copy.deepcopy(value) for key, value in target.items()}

    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(value, dict):
            result[key] = apply_patch(target.get(key), value)
        else:
            result[key] = copy.deepcopy(value)

    return result


def merge_patches(target: Any, patches: Iterable[Any]) -> Any:
    """Fold a sequence of merge patches over target, in order."""
    result = copy.deepcopy(target)
    for patch in patches:
        result = apply_patch(result, patch)
    return result
