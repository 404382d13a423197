"""Markdown helpers: comment stripping, title extraction, identifiers."""

from __future__ import annotations

import re
from typing import List, Optional

_FENCE_RE = re.compile(r"^\s*(```|~~~)")
_H1_RE = re.compile(r"^#\s+(.+?)\s*#*\s*$")
_IDENT_RE = re.compile(r"[^a-z0-9]+")


def is_fence(line: str) -> bool:
    return bool(_FENCE_RE.match(line))


def remove_xml_comments(markdown: str) -> str:
    """Remove <!-- ... --> comments outside fenced code blocks.

    Comments may span lines. Fenced blocks are copied verbatim.
    """
    out: List[str] = []
    in_fence = False
    in_comment = False
    for line in markdown.split("\n"):
        if not in_comment and is_fence(line):
            in_fence = not in_fence
            out.append(line)
            continue
        if in_fence:
            out.append(line)
            continue

        kept = ""
        rest = line
        while rest:
            if in_comment:
                end = rest.find("-->")
                if end == -1:
                    rest = ""
                else:
                    rest = rest[end + 3:]
                    in_comment = False
            else:
                start = rest.find("<!--")
                if start == -1:
                    kept += rest
                    rest = ""
                else:
                    kept += rest[:start]
                    rest = rest[start + 4:]
                    in_comment = True
        # Drop lines that only held a comment.
        if kept.strip() or (kept == line):
            out.append(kept)
    return "\n".join(out)


def extract_workflow_name(markdown: str) -> Optional[str]:
    """Return the text of the first level-one heading outside code fences."""
    in_fence = False
    for line in markdown.splitlines():
        if is_fence(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _H1_RE.match(line)
        if match:
            return match.group(1).strip()
    return None


def sanitize_identifier(name: str) -> str:
    """Lowercase a name and join its alphanumeric runs with '-'."""
    return _IDENT_RE.sub("-", name.lower()).strip("-")
