"""Frontmatter extraction for workflow markdown documents."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import FrontmatterError
from .yaml_io import load_yaml

logger = logging.getLogger(__name__)

DELIMITER = "---"
CONTEXT_RADIUS = 2


@dataclass(frozen=True)
class FrontmatterResult:
    """Parsed frontmatter plus the markdown that follows it.

    start_line is the 1-based document line of the first YAML line, so a
    YAML mark at line N (0-based) maps to document line start_line + N.
    body_offset is the number of document lines before the markdown body.
    """
    frontmatter: Dict[str, Any] = field(default_factory=dict)
    markdown: str = ""
    start_line: int = 1
    raw: str = ""
    body_offset: int = 0

    def key_line(self, key: str) -> Optional[int]:
        """Return the document line of a top-level frontmatter key."""
        for offset, line in enumerate(self.raw.splitlines()):
            if line.startswith(f"{key}:") or line.startswith(f'"{key}":'):
                return self.start_line + offset
        return None


def _context_lines(lines: List[str], line_no: int) -> List[str]:
    start = max(1, line_no - CONTEXT_RADIUS)
    end = min(len(lines), line_no + CONTEXT_RADIUS)
    out = []
    for number in range(start, end + 1):
        marker = ">" if number == line_no else " "
        out.append(f"{marker} {number:4d} | {lines[number - 1]}")
    return out


def extract_frontmatter(content: str, file_path: Optional[str] = None) -> FrontmatterResult:
    """Split a document into YAML frontmatter and markdown body.

    Documents without a leading `---` line have empty frontmatter.

    Raises:
        FrontmatterError: unterminated block, malformed YAML, or a
            frontmatter block that is not a mapping.
    """
    lines = content.splitlines()
    if not lines or lines[0].strip() != DELIMITER:
        return FrontmatterResult(frontmatter={}, markdown=content, start_line=1, raw="")

    end_index = None
    for index in range(1, len(lines)):
        if lines[index].strip() == DELIMITER:
            end_index = index
            break
    if end_index is None:
        raise FrontmatterError(
            "frontmatter is not closed",
            file_path=file_path,
            line=1,
            column=1,
            hint="add a closing '---' line after the frontmatter",
        )

    raw = "\n".join(lines[1:end_index])
    markdown = "\n".join(lines[end_index + 1:])
    if content.endswith("\n") and markdown:
        markdown += "\n"

    try:
        data = load_yaml(raw) if raw.strip() else {}
    except yaml.MarkedYAMLError as e:
        mark = e.problem_mark or e.context_mark
        line_no = 2 + (mark.line if mark else 0)
        column = (mark.column + 1) if mark else 1
        problem = e.problem or e.context or "invalid YAML"
        logger.debug("YAML error in %s at line %d: %s", file_path, line_no, problem)
        raise FrontmatterError(
            f"failed to parse frontmatter: {problem}",
            file_path=file_path,
            line=line_no,
            column=column,
            hint="check YAML syntax in frontmatter section",
            context=_context_lines(lines, line_no),
        ) from None
    except yaml.YAMLError as e:
        raise FrontmatterError(
            f"failed to parse frontmatter: {e}",
            file_path=file_path,
            line=2,
            hint="check YAML syntax in frontmatter section",
        ) from None

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise FrontmatterError(
            "frontmatter must be a YAML mapping",
            file_path=file_path,
            line=2,
            column=1,
            hint="use 'key: value' pairs in the frontmatter",
        )

    return FrontmatterResult(
        frontmatter=data, markdown=markdown, start_line=2, raw=raw, body_offset=end_index + 1
    )
