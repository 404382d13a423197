"""
Compile preview endpoints.

Compiles a workflow held entirely in the request: the markdown document plus
an optional virtual file map for its imports. Nothing is read from or written
to the repository except the action pin cache, which is loaded read-only.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from awflow.config.compiler_config import ACTION_MODES, CompilerConfig
from awflow.workflow.action_cache import ActionCache
from awflow.workflow.compiler import WorkflowCompiler
from awflow.workflow.errors import (
    ActionCacheError,
    CompilerError,
    SharedWorkflowError,
    WorkflowError,
)
from awflow.workflow.imports import InMemoryFileReader

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/compile", tags=["compile"])

DEFAULT_PREVIEW_PATH = "workflow.md"


# =============================================================================
# Pydantic Models
# =============================================================================


class CompilePreviewRequest(BaseModel):
    """Request for compile-preview endpoint."""

    markdown: str = Field(..., description="Workflow document (frontmatter + prose)")
    path: str = Field(
        default=DEFAULT_PREVIEW_PATH,
        description="Virtual path of the document; imports resolve relative to it",
    )
    files: Dict[str, str] = Field(
        default_factory=dict,
        description="Virtual files available to imports, keyed by path",
    )
    strict: bool = Field(default=False, description="Escalate warnings to errors")
    action_mode: str = Field(default="dev", description="Setup action mode (dev or release)")


class WarningResponse(BaseModel):
    """A compile warning."""

    category: str
    message: str
    file_path: Optional[str] = None
    line: Optional[int] = None
    hint: Optional[str] = None


class CompilePreviewResponse(BaseModel):
    """Response from compile-preview endpoint."""

    lock_yaml: str = ""
    jobs: List[str] = Field(default_factory=list)
    warnings: List[WarningResponse] = Field(default_factory=list)
    error: Optional[Dict[str, Any]] = None


# =============================================================================
# Helper Functions
# =============================================================================


def _load_action_cache(repo_root: Optional[Path]) -> ActionCache:
    cache = ActionCache(repo_root or Path.cwd())
    if repo_root is None:
        return cache
    try:
        cache.load()
    except ActionCacheError as e:
        logger.warning("Preview running without action pins: %s", e)
    return cache


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/preview", response_model=CompilePreviewResponse)
async def compile_preview(payload: CompilePreviewRequest, request: Request):
    """Compile a workflow document without touching the filesystem.

    Returns the lock YAML, the job names in dependency order and any
    warnings. A document without an `on:` trigger is a shared fragment; it
    is reported in `error` rather than as a failure.
    """
    if payload.action_mode not in ACTION_MODES:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "invalid_action_mode",
                "message": f"action_mode must be one of: {', '.join(ACTION_MODES)}",
                "details": {"action_mode": payload.action_mode},
            },
        )

    repo_root = getattr(request.app.state, "repo_root", None)
    files = dict(payload.files)
    files[payload.path] = payload.markdown
    compiler = WorkflowCompiler(
        CompilerConfig(action_mode=payload.action_mode, strict=payload.strict),
        action_cache=_load_action_cache(repo_root),
        file_reader=InMemoryFileReader(files),
    )

    try:
        result = compiler.compile_content(payload.markdown, payload.path)
    except SharedWorkflowError as e:
        return CompilePreviewResponse(
            error={"error": "shared_workflow", "message": str(e), "details": {"path": payload.path}}
        )
    except CompilerError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "compilation_error",
                "message": e.format(),
                "details": e.to_dict(),
            },
        )
    except WorkflowError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "compilation_error",
                "message": str(e),
                "details": {"type": type(e).__name__},
            },
        )

    return CompilePreviewResponse(
        lock_yaml=result.lock_yaml,
        jobs=result.job_names,
        warnings=[WarningResponse(**w.to_dict()) for w in result.warnings],
    )
