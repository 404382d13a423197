"""Resolve `uses:` references to immutable commit SHAs."""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Tuple

from .action_cache import ActionCache
from .errors import ActionResolutionError

logger = logging.getLogger(__name__)

SHA_RE = re.compile(r"^[0-9a-f]{40}$")

# (repo, version) -> sha or None. Callers inject this; the compiler itself
# never talks to a remote API.
ActionLookup = Callable[[str, str], Optional[str]]


def extract_base_repo(repo: str) -> str:
    """`github/codeql-action/upload-sarif` -> `github/codeql-action`."""
    parts = repo.split("/")
    if len(parts) >= 2:
        return f"{parts[0]}/{parts[1]}"
    return repo


def is_local_reference(uses: str) -> bool:
    return uses.startswith("./") or uses.startswith("docker://")


def parse_action_reference(uses: str) -> Tuple[str, str]:
    """Split `owner/repo[/path]@version` into (repo, version)."""
    ref = uses.split("#", 1)[0].strip()
    if "@" not in ref:
        raise ValueError(f"action reference '{uses}' has no version")
    repo, version = ref.rsplit("@", 1)
    if not repo or not version:
        raise ValueError(f"invalid action reference '{uses}'")
    return repo, version


class ActionResolver:
    """Cache-first SHA resolution; misses go to the injected lookup."""

    def __init__(self, cache: ActionCache, lookup: Optional[ActionLookup] = None):
        self.cache = cache
        self.lookup = lookup
        self.unresolved: List[str] = []

    def resolve_sha(self, repo: str, version: str) -> str:
        sha, found = self.cache.get(repo, version)
        if found:
            return sha
        if self.lookup is None:
            raise ActionResolutionError(f"no pin cached for {repo}@{version}")

        logger.debug("Cache miss for %s@%s, resolving via lookup", repo, version)
        sha = (self.lookup(extract_base_repo(repo), version) or "").strip()
        if not sha:
            raise ActionResolutionError(f"empty SHA returned for {repo}@{version}")
        if not SHA_RE.match(sha):
            raise ActionResolutionError(f"invalid SHA format for {repo}@{version}: {sha}")
        self.cache.set(repo, version, sha)
        return sha

    def pin_action_reference(self, uses: str) -> str:
        """Render `repo@<sha> # version`.

        Local and docker references are returned unchanged. Unresolvable
        references are returned unchanged and recorded in `unresolved`.
        """
        if is_local_reference(uses):
            return uses
        try:
            repo, version = parse_action_reference(uses)
        except ValueError:
            self.unresolved.append(uses)
            return uses

        if SHA_RE.match(version):
            entry, found = self.cache.find_entry_by_sha(repo, version)
            if found:
                return f"{repo}@{version} # {entry.version}"
            return f"{repo}@{version}"

        try:
            sha = self.resolve_sha(repo, version)
        except ActionResolutionError as e:
            logger.debug("Leaving %s unpinned: %s", uses, e)
            self.unresolved.append(uses)
            return uses
        return f"{repo}@{sha} # {version}"

    def reset(self) -> None:
        self.unresolved = []
