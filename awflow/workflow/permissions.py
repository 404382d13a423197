"""
permissions.py - GitHub token permission scopes.

Root workflows declare permissions; imported fragments declare the scopes they
need. Every fragment requirement must be covered by the root declaration,
where `write` covers `read` but not the other way around.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

from .errors import CompilerError, InsufficientPermissionsError

logger = logging.getLogger(__name__)

LEVEL_RANK = {"none": 0, "read": 1, "write": 2}

SHORTHANDS = {"read-all": "read", "write-all": "write", "none": "none"}

KNOWN_SCOPES = (
    "actions",
    "attestations",
    "checks",
    "contents",
    "deployments",
    "discussions",
    "id-token",
    "issues",
    "metadata",
    "models",
    "packages",
    "pages",
    "pull-requests",
    "repository-projects",
    "security-events",
    "statuses",
)


@dataclass(frozen=True)
class Permissions:
    """Declared permissions: either a shorthand or per-scope levels."""
    scopes: Dict[str, str] = field(default_factory=dict)
    shorthand: Optional[str] = None

    def level_for(self, scope: str) -> str:
        if self.shorthand is not None:
            return SHORTHANDS[self.shorthand]
        if scope in self.scopes:
            return self.scopes[scope]
        return self.scopes.get("all", "none")

    def is_empty(self) -> bool:
        return self.shorthand is None and not self.scopes

    def to_value(self) -> Any:
        """Render for a job's `permissions:` key."""
        if self.shorthand is not None:
            return self.shorthand
        return {scope: self.scopes[scope] for scope in sorted(self.scopes)}


def _invalid(message: str, file_path: Optional[str]) -> CompilerError:
    return CompilerError(
        message,
        file_path=file_path,
        hint="use read-all, write-all, none, or a mapping of scope: read|write|none",
    )


def permissions_from_value(value: Any, file_path: Optional[str] = None) -> Permissions:
    """Decode a frontmatter `permissions` value."""
    if value is None:
        return Permissions()
    if isinstance(value, str):
        if value not in SHORTHANDS:
            raise _invalid(f"invalid permissions shorthand '{value}'", file_path)
        return Permissions(shorthand=value)
    if not isinstance(value, dict):
        raise _invalid("permissions must be a string or a mapping", file_path)

    scopes: Dict[str, str] = {}
    for scope, level in value.items():
        if not isinstance(level, str) or level not in LEVEL_RANK:
            raise _invalid(f"invalid permission level '{level}' for scope '{scope}'", file_path)
        if scope == "all":
            if level == "write":
                raise _invalid("'all: write' is not allowed; use write-all", file_path)
        elif scope not in KNOWN_SCOPES:
            raise _invalid(f"unknown permission scope '{scope}'", file_path)
        scopes[str(scope)] = level
    return Permissions(scopes=scopes)


def merge_required_permissions(required: Iterable[Permissions]) -> Dict[str, str]:
    """Combine fragment requirements, keeping the highest level per scope."""
    merged: Dict[str, str] = {}
    for perms in required:
        if perms.shorthand is not None:
            level = SHORTHANDS[perms.shorthand]
            names = KNOWN_SCOPES if level != "none" else ()
            items = [(name, level) for name in names]
        else:
            items = list(perms.scopes.items())
        for scope, level in items:
            if scope == "all":
                for name in KNOWN_SCOPES:
                    _raise_level(merged, name, level)
                continue
            _raise_level(merged, scope, level)
    return merged


def _raise_level(merged: Dict[str, str], scope: str, level: str) -> None:
    if LEVEL_RANK[level] > LEVEL_RANK.get(merged.get(scope, "none"), 0):
        merged[scope] = level


def union_permission_maps(*maps: Dict[str, str]) -> Dict[str, str]:
    """Union scope maps, highest level wins, keys sorted."""
    merged: Dict[str, str] = {}
    for scopes in maps:
        for scope, level in scopes.items():
            _raise_level(merged, scope, level)
    return {scope: merged[scope] for scope in sorted(merged)}


def find_permission_gaps(
    root: Permissions, required: Dict[str, str]
) -> Tuple[Dict[str, str], Dict[str, Tuple[str, str]]]:
    """Return (missing, insufficient) scopes of root against requirements."""
    missing: Dict[str, str] = {}
    insufficient: Dict[str, Tuple[str, str]] = {}
    for scope in sorted(required):
        need = required[scope]
        if LEVEL_RANK[need] == 0:
            continue
        have = root.level_for(scope)
        if LEVEL_RANK[have] >= LEVEL_RANK[need]:
            continue
        if have == "none":
            missing[scope] = need
        else:
            insufficient[scope] = (have, need)
    return missing, insufficient


def check_imported_permissions(
    root: Permissions,
    required: Dict[str, str],
    file_path: Optional[str] = None,
) -> None:
    """Raise if any required scope is not granted by the root workflow."""
    missing, insufficient = find_permission_gaps(root, required)
    if missing or insufficient:
        logger.debug(
            "Permission check failed for %s: missing=%s insufficient=%s",
            file_path, sorted(missing), sorted(insufficient),
        )
        raise InsufficientPermissionsError(missing, insufficient, file_path=file_path)
