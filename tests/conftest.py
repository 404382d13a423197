"""
Test fixtures and utilities for awflow tests.

Provides temporary repositories, a pre-pinned action cache (so compiles
never need a lookup) and helpers for writing workflow files.
"""

import sys
from pathlib import Path
from typing import Dict, Optional

import pytest

# Make the package importable when running from a checkout without install
_repo_root = Path(__file__).parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

from awflow.config.compiler_config import CompilerConfig, reset_config  # noqa: E402
from awflow.workflow.action_cache import ActionCache  # noqa: E402
from awflow.workflow.compiler import WorkflowCompiler  # noqa: E402

# ============================================================================
# Constants
# ============================================================================

CHECKOUT_SHA = "08c6903cd8c0fde910a37f88322edcfb5dd907a8"
GITHUB_SCRIPT_SHA = "ed597411d8f924073f98dfc5c65a23a2325f34cd"
SETUP_SHA = "1111111111111111111111111111111111111111"
UPLOAD_SHA = "ea165f8d65b6e75b540449e92b4886f43607fa02"

PINS = {
    ("actions/checkout", "v5"): CHECKOUT_SHA,
    ("actions/github-script", "v8"): GITHUB_SCRIPT_SHA,
    ("awflow/awflow/actions/setup", "v0.1.0"): SETUP_SHA,
    ("actions/upload-artifact", "v4"): UPLOAD_SHA,
}

MINIMAL_WORKFLOW = """---
on:
  issues:
    types: [opened]
permissions:
  contents: read
---

# Issue Triage

Triage issue #${{ github.event.issue.number }} in ${{ github.repository }}.
"""

ISSUE_WORKFLOW = """---
on:
  push:
    branches: [main]
permissions:
  contents: read
safe-outputs:
  create-issue:
    title-prefix: "[bot] "
    labels: [automation]
---

# Daily Report

Summarize recent commits and open an issue.
"""


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_config_env(monkeypatch):
    """Isolate tests from AWFLOW_* environment variables and cached config."""
    for name in (
        "AWFLOW_ACTION_MODE",
        "AWFLOW_STRICT",
        "AWFLOW_SKIP_VALIDATION",
        "AWFLOW_ACTION_REPO",
        "AWFLOW_ACTION_VERSION",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def repo(tmp_path):
    """Temporary repository with .github/workflows and .github/aw."""
    root = tmp_path / "repo"
    (root / ".github" / "workflows" / "shared").mkdir(parents=True)
    (root / ".github" / "aw").mkdir(parents=True)
    return root


@pytest.fixture
def pinned_cache(repo):
    """Action cache holding pins for every action the compiler emits."""
    return make_pinned_cache(repo)


@pytest.fixture
def compiler(repo, pinned_cache):
    """Compiler in dev mode with all actions pinned."""
    return WorkflowCompiler(CompilerConfig(), action_cache=pinned_cache, repo_root=repo)


@pytest.fixture
def strict_compiler(repo, pinned_cache):
    return WorkflowCompiler(CompilerConfig(strict=True), action_cache=pinned_cache, repo_root=repo)


# ============================================================================
# Helpers
# ============================================================================


def make_pinned_cache(root: Path, pins: Optional[Dict] = None) -> ActionCache:
    cache = ActionCache(root)
    for (action_repo, version), sha in (pins or PINS).items():
        cache.set(action_repo, version, sha)
    cache.dirty = False
    return cache


def write_workflow(repo: Path, name: str, content: str) -> Path:
    """Write a workflow under .github/workflows and return its path."""
    path = repo / ".github" / "workflows" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def job_section(lock_yaml: str, job_name: str) -> str:
    """Return the text of one job block from a rendered lock file."""
    lines = lock_yaml.splitlines()
    start = lines.index(f"  {job_name}:")
    end = len(lines)
    for index in range(start + 1, len(lines)):
        line = lines[index]
        if line.startswith("  ") and not line.startswith("    ") and line.strip():
            end = index
            break
    return "\n".join(lines[start:end])
