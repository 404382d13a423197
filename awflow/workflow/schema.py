"""JSON Schema validation of workflow frontmatter."""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from jsonschema import Draft7Validator

from .errors import SchemaValidationError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).parent / "schemas"
FRONTMATTER_SCHEMA = "frontmatter"

# Keys only the root workflow may declare.
ROOT_ONLY_FIELDS = (
    "on",
    "concurrency",
    "run-name",
    "timeout-minutes",
    "roles",
    "tracker-id",
    "sandbox",
    "strict",
    "container",
    "environment",
    "name",
)

_schemas: Dict[str, Dict[str, Any]] = {}
_validators: Dict[str, Draft7Validator] = {}


def load_schema(name: str = FRONTMATTER_SCHEMA) -> Dict[str, Any]:
    """Load a bundled schema by name (cached)."""
    if name not in _schemas:
        path = SCHEMA_DIR / f"{name}.schema.json"
        with open(path, "r", encoding="utf-8") as f:
            _schemas[name] = json.load(f)
    return _schemas[name]


def fragment_schema() -> Dict[str, Any]:
    """Frontmatter schema with the root-only keys removed."""
    schema = copy.deepcopy(load_schema())
    for key in ROOT_ONLY_FIELDS:
        schema["properties"].pop(key, None)
    return schema


def _validator(fragment: bool) -> Draft7Validator:
    key = "fragment" if fragment else "root"
    if key not in _validators:
        _validators[key] = Draft7Validator(fragment_schema() if fragment else load_schema())
    return _validators[key]


def _error_path(error: Any) -> str:
    return ".".join(str(p) for p in error.absolute_path)


def _error_message(error: Any) -> str:
    # oneOf failures are reported through their closest branch; a branch that
    # matched the type but failed a constraint is closer than a type mismatch
    if error.validator == "oneOf" and error.context:
        best = min(
            error.context,
            key=lambda e: (e.validator == "type", -len(e.absolute_path), str(e.message)),
        )
        return best.message
    return error.message


def iter_schema_errors(frontmatter: Dict[str, Any], fragment: bool = False) -> List[Any]:
    """Raw jsonschema errors in path order."""
    errors = list(_validator(fragment).iter_errors(frontmatter))
    errors.sort(key=lambda e: (_error_path(e), e.message))
    return errors


def validate_frontmatter(
    frontmatter: Dict[str, Any],
    file_path: Optional[str] = None,
    key_line: Optional[Callable[[str], Optional[int]]] = None,
    fragment: bool = False,
) -> None:
    """Validate frontmatter and raise the first error as SchemaValidationError.

    key_line maps a top-level key to its document line so the error can
    point at it.
    """
    errors = iter_schema_errors(frontmatter, fragment=fragment)
    if not errors:
        return
    logger.debug("%d schema error(s) in %s", len(errors), file_path)

    first = errors[0]
    path = _error_path(first)
    message = _error_message(first)
    line = None
    if key_line is not None and first.absolute_path:
        line = key_line(str(first.absolute_path[0]))
    elif key_line is not None and first.validator == "additionalProperties":
        for key in frontmatter:
            if f"'{key}'" in first.message:
                line = key_line(str(key))
                break

    raise SchemaValidationError(
        f"'{path}': {message}" if path else message,
        path=path,
        file_path=file_path,
        line=line,
        hint="check the frontmatter against the workflow schema",
    )
