"""Include/import directives embedded in workflow prose.

Recognized forms, each on a line of its own:

    @include path/to/file.md       (legacy)
    @import path/to/file.md        (legacy)
    {{#import path/to/file.md}}
    {{#import: path/to/file.md}}

A `?` after the directive keyword (`@include?`, `{{#import? ...}}`) marks
the directive optional: a missing target is skipped instead of failing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

from .errors import DirectiveError
from .markdown import is_fence

DIRECTIVE_RE = re.compile(
    r"^(?:@(?:include|import)(\?)?\s+(.+)|\{\{#import(\?)?\s*:?\s*(.+?)\s*\}\})$"
)
_IF_OPEN_RE = re.compile(r"\{\{#if\b")
_IF_CLOSE_RE = re.compile(r"\{\{/if\s*\}\}")


@dataclass(frozen=True)
class ImportDirective:
    """A parsed directive line."""
    path: str
    optional: bool
    legacy: bool
    original: str
    line: int = 0


def parse_import_directive(line: str, line_no: int = 0) -> Optional[ImportDirective]:
    """Parse a single line; returns None when it is not a directive."""
    text = line.strip()
    match = DIRECTIVE_RE.match(text)
    if not match:
        return None
    if match.group(2) is not None:
        return ImportDirective(
            path=match.group(2).strip(),
            optional=match.group(1) == "?",
            legacy=True,
            original=text,
            line=line_no,
        )
    return ImportDirective(
        path=match.group(4).strip(),
        optional=match.group(3) == "?",
        legacy=False,
        original=text,
        line=line_no,
    )


def find_directives(
    markdown: str,
    file_path: Optional[str] = None,
    line_offset: int = 0,
) -> List[ImportDirective]:
    """Find directives outside code fences.

    Raises:
        DirectiveError: a directive appears inside a {{#if}} region.
    """
    found: List[ImportDirective] = []
    in_fence = False
    depth = 0
    for index, line in enumerate(markdown.split("\n")):
        line_no = index + 1 + line_offset
        if is_fence(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue

        directive = parse_import_directive(line, line_no)
        if directive is not None:
            if depth > 0:
                raise DirectiveError(
                    f"import directive '{directive.path}' cannot be used inside a template conditional",
                    file_path=file_path,
                    line=line_no,
                    column=1,
                    context=[f"> {line_no:4d} | {line}"],
                    hint="move the directive outside the {{#if}} ... {{/if}} block",
                )
            found.append(directive)
            continue

        depth += len(_IF_OPEN_RE.findall(line))
        depth -= len(_IF_CLOSE_RE.findall(line))
        if depth < 0:
            depth = 0
    return found
