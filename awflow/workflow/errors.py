# awflow/workflow/errors.py
"""Compiler error types and diagnostic collection."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

# Error message template: file:line:col: error: message -> Fix: hint
ERROR_TEMPLATE = "{location}: {severity}: {message}"


# =============================================================================
# Error Types
# =============================================================================


class WorkflowError(Exception):
    """Base exception for workflow compilation errors."""

    pass


class CompilerError(WorkflowError):
    """Validation error positioned in a source document."""

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
        hint: Optional[str] = None,
        context: Optional[Sequence[str]] = None,
    ):
        self.message = message
        self.file_path = file_path
        self.line = line
        self.column = column
        self.hint = hint
        self.context = list(context or [])
        super().__init__(self.format())

    @property
    def location(self) -> str:
        parts = [self.file_path or "<workflow>"]
        if self.line is not None:
            parts.append(str(self.line))
            parts.append(str(self.column or 1))
        return ":".join(parts)

    def format(self) -> str:
        """Format error with context lines and fix hint."""
        lines = [
            ERROR_TEMPLATE.format(
                location=self.location, severity="error", message=self.message
            )
        ]
        lines.extend(self.context)
        if self.hint:
            lines.append(f"  Fix: {self.hint}")
        return "\n".join(lines)

    def sort_key(self) -> Tuple[str, int, int]:
        """Sort key for deterministic ordering."""
        return (self.file_path or "", self.line or 0, self.column or 0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "file_path": self.file_path,
            "line": self.line,
            "column": self.column,
            "hint": self.hint,
        }


class FrontmatterError(CompilerError):
    """Raised when the frontmatter block cannot be parsed."""


class ImportResolutionError(CompilerError):
    """Raised when an import or include target cannot be resolved."""


class DirectiveError(CompilerError):
    """Raised when a directive is malformed or used in a template region."""


class ForbiddenFieldError(CompilerError):
    """Raised when a shared fragment declares a root-only field."""

    def __init__(self, field_name: str, file_path: Optional[str] = None, line: Optional[int] = None):
        self.field_name = field_name
        super().__init__(
            f"field '{field_name}' cannot be used in a shared workflow",
            file_path=file_path,
            line=line,
            hint=f"move '{field_name}' into the main workflow that imports this file",
        )


class InsufficientPermissionsError(CompilerError):
    """Raised when imported fragments require scopes the root does not grant."""

    def __init__(
        self,
        missing: Dict[str, str],
        insufficient: Dict[str, Tuple[str, str]],
        file_path: Optional[str] = None,
    ):
        self.missing = dict(missing)
        self.insufficient = dict(insufficient)
        parts: List[str] = []
        if self.missing:
            listed = ", ".join(
                f"{scope}: {level}" for scope, level in sorted(self.missing.items())
            )
            parts.append(f"missing {listed}")
        if self.insufficient:
            listed = ", ".join(
                f"{scope}: {have} (requires {need})"
                for scope, (have, need) in sorted(self.insufficient.items())
            )
            parts.append(f"insufficient {listed}")
        super().__init__(
            "insufficient permissions for imported workflows: " + "; ".join(parts),
            file_path=file_path,
            hint="declare the required scopes in the 'permissions' section of the main workflow",
        )

    @property
    def scopes(self) -> List[str]:
        return sorted(set(self.missing) | set(self.insufficient))


class MergeConflictError(CompilerError):
    """Raised when two fragments declare the same name with different bodies."""


class SchemaValidationError(CompilerError):
    """Raised when frontmatter fails schema validation."""

    def __init__(self, message: str, path: str = "", **kwargs: Any):
        self.path = path
        super().__init__(message, **kwargs)


class SafeOutputsConfigError(CompilerError):
    """Raised for invalid safe-outputs configuration."""

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        value: Any = None,
        hint: Optional[str] = None,
        **kwargs: Any,
    ):
        self.field_name = field_name
        self.value = value
        super().__init__(
            message,
            hint=hint or "check the safe-outputs configuration in the workflow frontmatter",
            **kwargs,
        )


class JobGraphError(WorkflowError):
    """Internal invariant violation in the job graph."""


class DuplicateJobError(JobGraphError):
    """Raised when a job name is registered twice."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"job '{name}' already exists")


class DuplicateStepError(JobGraphError):
    """Raised when a step would be inserted twice."""

    def __init__(self, job_name: str, step_label: str, existing_job: str):
        self.job_name = job_name
        self.step_label = step_label
        self.existing_job = existing_job
        if existing_job == job_name:
            where = "earlier in the same job"
        else:
            where = f"in job '{existing_job}'"
        super().__init__(
            f"duplicate step '{step_label}' in job '{job_name}' (already present {where})"
        )


class DependencyCycleError(JobGraphError):
    """Raised when jobs cannot be topologically ordered."""

    def __init__(self, jobs: Sequence[str]):
        self.jobs = list(jobs)
        super().__init__(f"dependency cycle detected between jobs: {', '.join(self.jobs)}")


class UnknownDependencyError(JobGraphError):
    """Raised when a job needs a job that does not exist."""

    def __init__(self, job_name: str, dependency: str):
        self.job_name = job_name
        self.dependency = dependency
        super().__init__(f"job '{job_name}' depends on non-existent job '{dependency}'")


class SharedWorkflowError(WorkflowError):
    """Signals a shared fragment compiled as a main workflow.

    Not a failure: the document has no trigger, so it is only meant to be
    imported by other workflows.
    """

    is_shared = True

    def __init__(self, file_path: Optional[str] = None):
        self.file_path = file_path
        super().__init__(
            f"Shared agentic workflow detected: {file_path or '<workflow>'}\n"
            "This workflow has no 'on' field and is meant to be imported by other "
            "workflows. Skipping compilation."
        )


class ActionCacheError(WorkflowError):
    """Raised when the action cache file cannot be read."""


class ActionResolutionError(WorkflowError):
    """Raised when an action version cannot be resolved to a commit SHA."""


# =============================================================================
# Diagnostics
# =============================================================================


class Diagnostic:
    """A single warning recorded during compilation."""

    def __init__(
        self,
        category: str,
        message: str,
        file_path: Optional[str] = None,
        line: Optional[int] = None,
        hint: Optional[str] = None,
    ):
        self.category = category
        self.message = message
        self.file_path = file_path
        self.line = line
        self.hint = hint

    def format(self) -> str:
        location = self.file_path or "<workflow>"
        if self.line is not None:
            location = f"{location}:{self.line}"
        text = ERROR_TEMPLATE.format(location=location, severity="warning", message=self.message)
        if self.hint:
            text += f"\n  Fix: {self.hint}"
        return text

    def sort_key(self) -> Tuple[str, int, str]:
        return (self.file_path or "", self.line or 0, self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "message": self.message,
            "file_path": self.file_path,
            "line": self.line,
            "hint": self.hint,
        }


class Diagnostics:
    """Collects compilation warnings.

    In strict mode a warning is escalated to a CompilerError at the point
    it is raised, so compilation stops before anything is emitted.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict
        self.warnings: List[Diagnostic] = []

    def warn(
        self,
        category: str,
        message: str,
        file_path: Optional[str] = None,
        line: Optional[int] = None,
        hint: Optional[str] = None,
        escalate: bool = True,
    ) -> None:
        """Record a warning, or raise it in strict mode unless escalate is False."""
        if self.strict and escalate:
            raise CompilerError(
                f"strict mode: {message}", file_path=file_path, line=line, hint=hint
            )
        logger.warning("%s: %s", category, message)
        self.warnings.append(Diagnostic(category, message, file_path, line, hint))

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def sorted_warnings(self) -> List[Diagnostic]:
        """Get warnings in deterministic order."""
        return sorted(self.warnings, key=lambda w: w.sort_key())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "warnings": [w.to_dict() for w in self.sorted_warnings()],
            "warning_count": self.warning_count,
            "strict": self.strict,
        }
