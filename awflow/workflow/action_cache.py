"""
action_cache.py - Persisted cache of action version -> commit SHA pins.

Stored at `.github/aw/actions-lock.json` under the repository root:

    {
      "entries": {
        "actions/checkout@v5": {
          "repo": "actions/checkout",
          "version": "v5",
          "sha": "..."
        }
      }
    }

Keys are sorted and the file ends with a newline so regenerated caches diff
cleanly. Entries of one repo that pin the same SHA are collapsed on save to
the most precise version.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .errors import ActionCacheError

logger = logging.getLogger(__name__)

CACHE_FILE_NAME = "actions-lock.json"
CACHE_DIR = Path(".github") / "aw"
DEFAULT_PINS_PATH = Path(__file__).parent / "data" / "action_pins.json"


@dataclass(frozen=True)
class ActionCacheEntry:
    """One pinned action version."""
    repo: str
    version: str
    sha: str

    @property
    def key(self) -> str:
        return format_cache_key(self.repo, self.version)

    def to_dict(self) -> Dict[str, str]:
        return {"repo": self.repo, "version": self.version, "sha": self.sha}


def format_cache_key(repo: str, version: str) -> str:
    return f"{repo}@{version}"


def is_more_precise_version(v1: str, v2: str) -> bool:
    """True if v1 should be kept over v2.

    More dot-separated components wins; equal counts fall back to plain string
    comparison, so `v1.2.3` beats `v1.2.10`.
    """
    parts1 = v1.count(".") + 1
    parts2 = v2.count(".") + 1
    if parts1 != parts2:
        return parts1 > parts2
    return v1 > v2


def _short(sha: str) -> str:
    return sha[:8]


def read_entries(path: Path) -> Dict[str, ActionCacheEntry]:
    """Parse an `{"entries": {...}}` pin file."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ActionCacheError(
            f"{path}:{e.lineno}:{e.colno}: invalid action cache JSON: {e.msg}"
        ) from None

    raw_entries = data.get("entries") if isinstance(data, dict) else None
    if not isinstance(raw_entries, dict):
        raise ActionCacheError(f"{path}: action cache must contain an 'entries' object")

    entries: Dict[str, ActionCacheEntry] = {}
    for key, raw in raw_entries.items():
        try:
            entries[key] = ActionCacheEntry(
                repo=raw["repo"], version=raw["version"], sha=raw["sha"]
            )
        except (KeyError, TypeError):
            raise ActionCacheError(
                f"{path}: entry '{key}' must have repo, version and sha"
            ) from None
    return entries


_default_pins: Optional[Dict[str, ActionCacheEntry]] = None


def load_default_pins() -> Dict[str, ActionCacheEntry]:
    """Pins shipped with the package for the actions generated jobs use."""
    global _default_pins
    if _default_pins is None:
        _default_pins = read_entries(DEFAULT_PINS_PATH)
    return dict(_default_pins)


class ActionCache:
    """In-memory action pins with dirty tracking and on-disk persistence.

    Bundled default pins sit underneath the repository's entries: they answer
    lookups the repository file does not cover but are never saved to it.
    """

    def __init__(
        self,
        repo_root: Union[str, Path],
        path: Optional[Union[str, Path]] = None,
        defaults: Optional[Dict[str, ActionCacheEntry]] = None,
    ):
        self.path = Path(path) if path else Path(repo_root) / CACHE_DIR / CACHE_FILE_NAME
        self.entries: Dict[str, ActionCacheEntry] = {}
        self.defaults = load_default_pins() if defaults is None else dict(defaults)
        self.dirty = False

    @property
    def cache_path(self) -> Path:
        return self.path

    def load(self) -> None:
        """Load entries from disk. A missing file leaves the cache empty."""
        if not self.path.exists():
            logger.debug("Cache file %s does not exist, starting with empty cache", self.path)
            return
        self.entries = read_entries(self.path)
        self.dirty = False
        logger.debug("Loaded action cache with %d entries", len(self.entries))

    def get(self, repo: str, version: str) -> Tuple[str, bool]:
        """Return (sha, found)."""
        key = format_cache_key(repo, version)
        entry = self.entries.get(key) or self.defaults.get(key)
        if entry is None:
            logger.debug("Cache miss for %s@%s", repo, version)
            return "", False
        return entry.sha, True

    def find_entry_by_sha(self, repo: str, sha: str) -> Tuple[Optional[ActionCacheEntry], bool]:
        """Return (entry, found) for the first key, in sorted order, pinning sha."""
        for entries in (self.entries, self.defaults):
            for key in sorted(entries):
                entry = entries[key]
                if entry.repo == repo and entry.sha == sha:
                    return entry, True
        return None, False

    def set(self, repo: str, version: str, sha: str) -> None:
        key = format_cache_key(repo, version)
        for existing_key in sorted(self.entries):
            entry = self.entries[existing_key]
            if entry.repo == repo and entry.sha == sha and entry.version != version:
                logger.debug(
                    "Adding %s with SHA %s that already exists as %s",
                    key, _short(sha), existing_key,
                )
        self.entries[key] = ActionCacheEntry(repo=repo, version=version, sha=sha)
        self.dirty = True

    def deduplicate(self) -> List[str]:
        """Collapse same (repo, sha) entries; returns removed keys."""
        groups: Dict[Tuple[str, str], List[str]] = {}
        for key in sorted(self.entries):
            entry = self.entries[key]
            groups.setdefault((entry.repo, entry.sha), []).append(key)

        removed: List[str] = []
        for (repo, sha), keys in sorted(groups.items()):
            if len(keys) <= 1:
                continue
            keep = keys[0]
            for key in keys[1:]:
                if is_more_precise_version(self.entries[key].version, self.entries[keep].version):
                    keep = key
            dropped = [key for key in keys if key != keep]
            logger.debug(
                "Deduplicating %s (%s): kept %s, removed %s",
                repo, _short(sha), keep, ", ".join(dropped),
            )
            removed.extend(dropped)

        for key in removed:
            del self.entries[key]
        return removed

    def to_json(self) -> str:
        payload = {
            "entries": {key: self.entries[key].to_dict() for key in sorted(self.entries)}
        }
        return json.dumps(payload, indent=2) + "\n"

    def save(self) -> None:
        """Persist if dirty. An empty cache removes the file."""
        if not self.dirty:
            logger.debug("Action cache is clean, skipping save")
            return

        if not self.entries:
            if self.path.exists():
                logger.debug("Removing empty action cache file %s", self.path)
                self.path.unlink()
            self.dirty = False
            return

        self.deduplicate()
        self._atomic_write(self.to_json())
        self.dirty = False
        logger.debug("Saved action cache with %d entries to %s", len(self.entries), self.path)

    def _atomic_write(self, content: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(suffix=".tmp", prefix="actions-lock_", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
