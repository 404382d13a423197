"""
awflow/workflow - Compile agentic workflow markdown into CI lock files.

A workflow is a markdown file whose YAML frontmatter declares triggers,
permissions, tools, network policy and safe outputs, and whose prose is the
agent's prompt. Compiling it produces a deterministic `<name>.lock.yml`:

- activation: role check and trigger text
- agent: prompt creation and engine execution, read-only
- safe_outputs / custom safe jobs: apply the agent's output with scoped
  permissions, each gated on the output types the agent emitted
- conclusion: reports missing tools and no-op runs

Usage:
    from awflow.workflow import WorkflowCompiler, CompilerError

    compiler = WorkflowCompiler()
    try:
        result = compiler.compile_workflow(".github/workflows/triage.md")
    except CompilerError as e:
        print(e.format())
    compiler.save_action_cache()
"""

from .action_cache import ActionCache, ActionCacheEntry
from .action_resolver import ActionResolver

from .compiler import (
    CompileResult,
    WorkflowCompiler,
    lock_path_for,
)

from .conditions import build_safe_output_condition

from .errors import (
    ActionCacheError,
    CompilerError,
    DependencyCycleError,
    Diagnostics,
    DirectiveError,
    DuplicateJobError,
    DuplicateStepError,
    ForbiddenFieldError,
    FrontmatterError,
    ImportResolutionError,
    InsufficientPermissionsError,
    JobGraphError,
    MergeConflictError,
    SafeOutputsConfigError,
    SchemaValidationError,
    SharedWorkflowError,
    UnknownDependencyError,
    WorkflowError,
)

from .expressions import ExpressionExtractor, ExpressionMapping

from .imports import DiskFileReader, ImportResolver, InMemoryFileReader

from .jobs import Job, JobManager, normalize_job_name

from .types import EngineConfig, WorkflowData

__all__ = [
    # Action pins
    "ActionCache",
    "ActionCacheEntry",
    "ActionResolver",
    # Compiler
    "CompileResult",
    "WorkflowCompiler",
    "lock_path_for",
    "build_safe_output_condition",
    # Errors
    "ActionCacheError",
    "CompilerError",
    "DependencyCycleError",
    "Diagnostics",
    "DirectiveError",
    "DuplicateJobError",
    "DuplicateStepError",
    "ForbiddenFieldError",
    "FrontmatterError",
    "ImportResolutionError",
    "InsufficientPermissionsError",
    "JobGraphError",
    "MergeConflictError",
    "SafeOutputsConfigError",
    "SchemaValidationError",
    "SharedWorkflowError",
    "UnknownDependencyError",
    "WorkflowError",
    # Expressions
    "ExpressionExtractor",
    "ExpressionMapping",
    # Imports
    "DiskFileReader",
    "ImportResolver",
    "InMemoryFileReader",
    # Jobs
    "Job",
    "JobManager",
    "normalize_job_name",
    # Types
    "EngineConfig",
    "WorkflowData",
]
