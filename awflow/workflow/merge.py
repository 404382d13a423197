"""Configuration merging across the import tree."""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Dict, List, Optional

from .errors import MergeConflictError

logger = logging.getLogger(__name__)


def canonical_json(value: Any) -> str:
    """Stable JSON rendering used for identity comparisons."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def merge_lists(first: List[Any], second: List[Any]) -> List[Any]:
    """Concatenate two lists dropping duplicates, first-seen order kept."""
    seen = set()
    out = []
    for item in list(first) + list(second):
        key = canonical_json(item)
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Merge overlay into a copy of base.

    Nested maps merge recursively and lists are concatenated. For scalars the
    value already in base wins, so the root workflow overrides its imports.
    """
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if key not in result or result[key] is None:
            result[key] = copy.deepcopy(value)
            continue
        current = result[key]
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        elif isinstance(current, list) and isinstance(value, list):
            result[key] = merge_lists(current, value)
        else:
            logger.debug("Keeping existing value for '%s' during merge", key)
    return result


def merge_named_configs(
    existing: Dict[str, Any],
    incoming: Dict[str, Any],
    kind: str,
    file_path: Optional[str] = None,
) -> Dict[str, Any]:
    """Merge name -> body maps where each name may be declared once.

    Identical bodies for the same name are accepted; differing bodies raise
    MergeConflictError.
    """
    merged = dict(existing)
    for name, body in incoming.items():
        if name in merged:
            if canonical_json(merged[name]) != canonical_json(body):
                raise MergeConflictError(
                    f"{kind} name conflict: '{name}' is defined with different configurations",
                    file_path=file_path,
                    hint=f"rename one of the '{name}' definitions or make them identical",
                )
            continue
        merged[name] = copy.deepcopy(body)
    return merged
