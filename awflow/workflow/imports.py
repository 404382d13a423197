"""
imports.py - Resolve the import/include tree of a workflow.

Two mechanisms assemble a workflow from shared fragments:

    imports: [shared/tools.md, {path: shared/triage.md, inputs: {...}}]
        Frontmatter list. Each fragment's configuration is merged into the
        root; its prose is not used.

    @include shared/guidelines.md     {{#import shared/guidelines.md}}
        Prose directives. The fragment's prose is spliced in place of the
        directive line and its frontmatter is merged like an import.

Resolution is depth-first. Each file's configuration is merged once, so
import cycles end quietly; its prose is spliced at every include that names
it, except where that include sits inside the file's own include chain.
Paths are relative to the file that names them.
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from .directives import ImportDirective, find_directives
from .errors import ForbiddenFieldError, ImportResolutionError
from .expressions import substitute_import_inputs
from .frontmatter import FrontmatterResult, extract_frontmatter
from .merge import deep_merge, merge_lists, merge_named_configs
from .network import merge_network_values
from .permissions import (
    Permissions,
    check_imported_permissions,
    merge_required_permissions,
    permissions_from_value,
)
from .schema import ROOT_ONLY_FIELDS, validate_frontmatter

logger = logging.getLogger(__name__)


# =============================================================================
# File access
# =============================================================================


class FileReader:
    """Source of workflow files."""

    def exists(self, path: str) -> bool:
        raise NotImplementedError

    def read(self, path: str) -> str:
        raise NotImplementedError


class DiskFileReader(FileReader):
    def exists(self, path: str) -> bool:
        return Path(path).is_file()

    def read(self, path: str) -> str:
        return Path(path).read_text(encoding="utf-8")


class InMemoryFileReader(FileReader):
    """Virtual file map, used by the preview API."""

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self.files = {os.path.normpath(p): c for p, c in (files or {}).items()}

    def exists(self, path: str) -> bool:
        return os.path.normpath(path) in self.files

    def read(self, path: str) -> str:
        return self.files[os.path.normpath(path)]


# =============================================================================
# Result
# =============================================================================


@dataclass
class Fragment:
    """A shared file whose frontmatter is merged into the root."""
    path: str
    frontmatter: Dict[str, Any]


@dataclass
class ResolvedWorkflow:
    """Root frontmatter with all fragments merged, plus the assembled prose."""
    frontmatter: Dict[str, Any]
    markdown: str
    root: FrontmatterResult
    source_path: Optional[str] = None
    imported_files: List[str] = field(default_factory=list)
    included_files: List[str] = field(default_factory=list)
    required_permissions: Dict[str, str] = field(default_factory=dict)


# =============================================================================
# Resolver
# =============================================================================


class ImportResolver:
    """Resolves imports and includes for one root document at a time."""

    def __init__(self, file_reader: Optional[FileReader] = None, validate: bool = True):
        self.file_reader = file_reader or DiskFileReader()
        self.validate = validate

    def resolve(self, path: str) -> ResolvedWorkflow:
        if not self.file_reader.exists(path):
            raise ImportResolutionError(f"workflow file not found: '{path}'", file_path=path)
        return self.resolve_content(self._read(path, path, None), path)

    def resolve_content(self, content: str, source_path: Optional[str] = None) -> ResolvedWorkflow:
        root = extract_frontmatter(content, source_path)
        base_dir = os.path.dirname(source_path) if source_path else ""
        self._root_dir = base_dir or "."
        self._root_path = os.path.normpath(source_path) if source_path else None
        self._loaded: Dict[str, FrontmatterResult] = {}
        self._imported: Set[str] = set()
        self._included: Set[str] = set()
        self._fragments: List[Fragment] = []

        self._process_imports(root.frontmatter, base_dir, source_path, root)
        chain = (self._root_path,) if self._root_path else ()
        markdown = self._expand_includes(
            root.markdown, base_dir, source_path, root.body_offset, chain
        )

        frontmatter = self._merge(root.frontmatter)
        required = merge_required_permissions(
            permissions_from_value(f.frontmatter.get("permissions"), f.path)
            for f in self._fragments
        )
        if required:
            root_permissions: Permissions = permissions_from_value(
                root.frontmatter.get("permissions"), source_path
            )
            check_imported_permissions(root_permissions, required, source_path)

        resolved = ResolvedWorkflow(
            frontmatter=frontmatter,
            markdown=markdown,
            root=root,
            source_path=source_path,
            imported_files=sorted(self._relative(p) for p in self._imported),
            included_files=sorted(self._relative(p) for p in self._included),
            required_permissions=required,
        )
        logger.debug(
            "Resolved %s: %d import(s), %d include(s)",
            source_path, len(resolved.imported_files), len(resolved.included_files),
        )
        return resolved

    # -------------------------------------------------------------------------
    # Traversal
    # -------------------------------------------------------------------------

    def _relative(self, path: str) -> str:
        return os.path.relpath(path, self._root_dir).replace(os.sep, "/")

    def _read(self, path: str, from_file: Optional[str], line: Optional[int]) -> str:
        try:
            return self.file_reader.read(path)
        except (OSError, KeyError) as e:
            raise ImportResolutionError(
                f"failed to read '{path}': {e}", file_path=from_file, line=line
            ) from None

    def _process_imports(
        self,
        frontmatter: Dict[str, Any],
        base_dir: str,
        from_file: Optional[str],
        source: FrontmatterResult,
    ) -> None:
        entries = frontmatter.get("imports") or []
        line = source.key_line("imports")
        for entry in entries:
            if isinstance(entry, dict):
                spec, inputs = entry.get("path"), entry.get("inputs") or {}
            else:
                spec, inputs = entry, {}
            optional = isinstance(spec, str) and spec.endswith("?")
            if optional:
                spec = spec[:-1]
            self._load_fragment(str(spec), inputs, base_dir, from_file, line, optional, included=False)

    def _load_fragment(
        self,
        spec: str,
        inputs: Dict[str, Any],
        base_dir: str,
        from_file: Optional[str],
        line: Optional[int],
        optional: bool,
        included: bool,
    ) -> Optional[FrontmatterResult]:
        path = os.path.normpath(os.path.join(base_dir, spec))
        if path == self._root_path:
            logger.debug("Skipping reference back to root %s", path)
            return None
        if path in self._loaded:
            logger.debug("Configuration of %s already merged", path)
            (self._included if included else self._imported).add(path)
            return self._loaded[path]
        if not self.file_reader.exists(path):
            if optional:
                logger.debug("Optional file %s not found, skipping", path)
                return None
            raise ImportResolutionError(
                f"import file not found: '{spec}'",
                file_path=from_file,
                line=line,
                hint="check the path; it is resolved relative to the importing file",
            )
        content = substitute_import_inputs(self._read(path, from_file, line), inputs)
        fragment = extract_frontmatter(content, path)
        self._loaded[path] = fragment
        (self._included if included else self._imported).add(path)
        for key in ROOT_ONLY_FIELDS:
            if key in fragment.frontmatter:
                raise ForbiddenFieldError(key, file_path=path, line=fragment.key_line(key))
        if self.validate and fragment.frontmatter:
            validate_frontmatter(
                fragment.frontmatter, file_path=path, key_line=fragment.key_line, fragment=True
            )

        self._fragments.append(Fragment(path, fragment.frontmatter))
        self._process_imports(fragment.frontmatter, os.path.dirname(path), path, fragment)
        return fragment

    def _expand_includes(
        self,
        markdown: str,
        base_dir: str,
        from_file: Optional[str],
        line_offset: int,
        chain: Tuple[str, ...],
    ) -> str:
        directives = find_directives(markdown, from_file, line_offset)
        if not directives:
            return markdown

        by_index: Dict[int, ImportDirective] = {d.line - line_offset - 1: d for d in directives}
        out: List[str] = []
        for index, line in enumerate(markdown.split("\n")):
            directive = by_index.get(index)
            if directive is None:
                out.append(line)
                continue
            path = os.path.normpath(os.path.join(base_dir, directive.path))
            if path in chain:
                logger.debug("Include cycle at %s, skipping", path)
                continue
            fragment = self._load_fragment(
                directive.path, {}, base_dir, from_file, directive.line, directive.optional, included=True
            )
            if fragment is None:
                continue
            body = self._expand_includes(
                fragment.markdown, os.path.dirname(path), path, fragment.body_offset, chain + (path,)
            )
            out.append(body.rstrip("\n"))
        return "\n".join(out)

    # -------------------------------------------------------------------------
    # Merge
    # -------------------------------------------------------------------------

    def _merge(self, root: Dict[str, Any]) -> Dict[str, Any]:
        """Merge fragment frontmatter into the root.

        Root scalars win; maps merge; lists concatenate without duplicates.
        Imported steps run before the root's own steps. MCP servers and
        custom safe jobs must agree when declared more than once.
        """
        merged = copy.deepcopy(root)
        merged.pop("imports", None)
        imported_steps: List[Any] = []
        network_values: List[Any] = []

        for fragment in self._fragments:
            fm = dict(fragment.frontmatter)
            fm.pop("imports", None)
            fm.pop("permissions", None)
            fm.pop("description", None)

            if "network" in fm:
                network_values.append(fm.pop("network"))
            if "steps" in fm:
                imported_steps = merge_lists(imported_steps, fm.pop("steps") or [])
            if "mcp-servers" in fm:
                merged["mcp-servers"] = merge_named_configs(
                    merged.get("mcp-servers") or {}, fm.pop("mcp-servers") or {},
                    "MCP server", fragment.path,
                )
            if "safe-outputs" in fm:
                merged["safe-outputs"] = _merge_safe_outputs(
                    merged.get("safe-outputs"), fm.pop("safe-outputs") or {}, fragment.path
                )
            merged = deep_merge(merged, fm)

        if imported_steps:
            merged["steps"] = merge_lists(imported_steps, merged.get("steps") or [])
        if network_values:
            merged["network"] = merge_network_values(merged.get("network"), network_values)
        return merged


def _merge_safe_outputs(
    existing: Optional[Dict[str, Any]],
    incoming: Dict[str, Any],
    file_path: Optional[str],
) -> Dict[str, Any]:
    existing = dict(existing or {})
    incoming = dict(incoming)
    jobs = merge_named_configs(
        existing.pop("jobs", None) or {}, incoming.pop("jobs", None) or {}, "safe-job", file_path
    )
    merged = deep_merge(existing, incoming)
    if jobs:
        merged["jobs"] = jobs
    return merged
