"""
expressions.py - Move `${{ ... }}` expressions out of agent prose.

Prose is interpolated into a shell heredoc when the prompt is written, so any
expression left inline would be expanded by the runner inside that shell
context. Each unique expression is replaced by a `__NAME__` placeholder and
passed to the step through an environment variable instead.

Naming:
    ${{ github.repository }}     -> AW_GITHUB_REPOSITORY
    ${{ toJSON(github.event) }}  -> AW_EXPR_<first 8 hex of sha256, upper>
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

logger = logging.getLogger(__name__)

ENV_PREFIX = "AW_"
HASH_PREFIX = "AW_EXPR_"

EXPRESSION_RE = re.compile(r"\$\{\{(.*?)\}\}")
SIMPLE_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)*$")
IMPORT_INPUT_RE = re.compile(r"\$\{\{\s*aw\.inputs\.([a-zA-Z0-9_-]+)\s*\}\}")


@dataclass(frozen=True)
class ExpressionMapping:
    """One extracted expression.

    original is the full `${{ ... }}` source, content the trimmed inner text.
    """
    original: str
    env_var: str
    content: str

    @property
    def placeholder(self) -> str:
        return f"__{self.env_var}__"


def env_var_name(content: str) -> str:
    """Derive the environment variable name for an expression body."""
    if SIMPLE_IDENTIFIER_RE.match(content):
        return ENV_PREFIX + content.replace(".", "_").upper()
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return HASH_PREFIX + digest[:8].upper()


class ExpressionExtractor:
    """Collects unique expressions across one or more extraction passes."""

    def __init__(self):
        self._mappings: Dict[str, ExpressionMapping] = {}

    def extract_expressions(self, text: str) -> List[ExpressionMapping]:
        """Record every expression in text; returns all mappings by original."""
        matches = list(EXPRESSION_RE.finditer(text))
        logger.debug("Found %d expression matches", len(matches))
        for match in matches:
            original = match.group(0)
            if original in self._mappings:
                continue
            content = match.group(1).strip()
            self._mappings[original] = ExpressionMapping(
                original=original,
                env_var=env_var_name(content),
                content=content,
            )
        return sorted(self._mappings.values(), key=lambda m: m.original)

    def replace_expressions_with_env_vars(self, text: str) -> str:
        """Swap recorded expressions for placeholders, longest first."""
        ordered = sorted(
            self._mappings.values(), key=lambda m: (-len(m.original), m.original)
        )
        for mapping in ordered:
            text = text.replace(mapping.original, mapping.placeholder)
        return text

    def get_mappings(self) -> List[ExpressionMapping]:
        """All mappings sorted by environment variable name."""
        return sorted(self._mappings.values(), key=lambda m: (m.env_var, m.original))

    def env(self) -> Dict[str, str]:
        """Environment block binding each variable to its expression."""
        env: Dict[str, str] = {}
        for mapping in self.get_mappings():
            env[mapping.env_var] = f"${{{{ {mapping.content} }}}}"
        return env


def _format_input(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def substitute_import_inputs(text: str, inputs: Mapping[str, Any]) -> str:
    """Replace `${{ aw.inputs.<key> }}` with values passed by an import.

    Unknown keys are left in place.
    """
    if not inputs:
        return text

    def _replace(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key in inputs:
            return _format_input(inputs[key])
        logger.debug("Import input key not found: %s", key)
        return match.group(0)

    return IMPORT_INPUT_RE.sub(_replace, text)
