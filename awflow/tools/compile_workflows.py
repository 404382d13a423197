#!/usr/bin/env python3
"""
compile_workflows.py - Compile agentic workflow markdown into lock files.

Each `<name>.md` workflow compiles to `<name>.lock.yml` beside it. Shared
fragments (no `on:` trigger) are reported as skipped, not failed.

## CLI Usage

Compile every workflow in .github/workflows:
  awflow-compile

Compile specific files or directories:
  awflow-compile .github/workflows/triage.md docs/workflows/

Treat warnings (unfiltered triggers, unpinned actions) as errors:
  awflow-compile --strict

Pin the setup action to a release instead of ./actions/setup:
  awflow-compile --action-mode release

## Exit Codes

0   All workflows compiled (or were skipped as shared fragments)
1   At least one workflow failed to compile
2   Fatal error (no workflows found, unreadable action cache)

## Error Message Format

  path/to/workflow.md:12:3: error: message
    Fix: action
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from awflow.config.compiler_config import ACTION_MODES, load_config
from awflow.workflow.compiler import WorkflowCompiler
from awflow.workflow.errors import (
    ActionCacheError,
    CompilerError,
    SharedWorkflowError,
    WorkflowError,
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"
DEFAULT_WORKFLOW_DIR = Path(".github") / "workflows"

# Exit codes per contract
EXIT_SUCCESS = 0
EXIT_COMPILE_FAILED = 1
EXIT_FATAL_ERROR = 2


def find_workflows(paths: List[str], repo_root: Path) -> List[Path]:
    """Expand files and directories into a sorted list of workflow sources.

    Directories are scanned non-recursively so `shared/` fragments are only
    compiled when named explicitly.
    """
    if not paths:
        paths = [str(repo_root / DEFAULT_WORKFLOW_DIR)]
    found: List[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            found.extend(sorted(path.glob("*.md")))
        elif path.is_file():
            found.append(path)
        else:
            logger.warning("Skipping missing path: %s", path)
    seen = set()
    unique = []
    for path in found:
        if path not in seen:
            seen.add(path)
            unique.append(path)
    return unique


def compile_all(compiler: WorkflowCompiler, workflows: List[Path]) -> List[Dict[str, Any]]:
    """Compile each workflow; one result record per file."""
    results: List[Dict[str, Any]] = []
    for path in workflows:
        record: Dict[str, Any] = {"path": str(path), "status": "compiled"}
        try:
            result = compiler.compile_workflow(path)
        except SharedWorkflowError as e:
            record["status"] = "skipped"
            record["message"] = str(e)
        except CompilerError as e:
            record["status"] = "failed"
            record["error"] = e.to_dict()
            record["message"] = e.format()
        except WorkflowError as e:
            record["status"] = "failed"
            record["error"] = {"type": type(e).__name__, "message": str(e)}
            record["message"] = f"{path}: error: {e}"
        else:
            record.update(result.to_dict())
            record["warning_messages"] = [w.format() for w in result.warnings]
        results.append(record)
    return results


def print_results(results: List[Dict[str, Any]]) -> None:
    for record in results:
        status = record["status"]
        if status == "compiled":
            print(f"✓ {record['path']} -> {record['lock_path']}")
            for message in record.get("warning_messages", []):
                print(message, file=sys.stderr)
        elif status == "skipped":
            print(f"- {record['path']} (shared workflow, skipped)")
        else:
            print(f"✗ {record['path']}")
            print(record["message"], file=sys.stderr)

    counts = _summary(results)
    print(
        f"\n{counts['compiled']} compiled, {counts['failed']} failed, "
        f"{counts['skipped']} skipped, {counts['warnings']} warning(s)"
    )


def _summary(results: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "status": "FAIL" if any(r["status"] == "failed" for r in results) else "PASS",
        "compiled": sum(1 for r in results if r["status"] == "compiled"),
        "failed": sum(1 for r in results if r["status"] == "failed"),
        "skipped": sum(1 for r in results if r["status"] == "skipped"),
        "warnings": sum(len(r.get("warnings", [])) for r in results),
    }


def print_json_output(results: List[Dict[str, Any]]) -> None:
    output = {
        "version": VERSION,
        "summary": _summary(results),
        "results": [
            {k: v for k, v in r.items() if k != "warning_messages"} for r in results
        ],
    }
    print(json.dumps(output, indent=2))


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Compile agentic workflow markdown into lock files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit Codes:
  0 - All workflows compiled
  1 - One or more workflows failed to compile
  2 - Fatal error (no workflows found, unreadable action cache)

Examples:
  awflow-compile
  awflow-compile .github/workflows/triage.md --strict
  awflow-compile --action-mode release --json
        """,
    )
    parser.add_argument("paths", nargs="*", help="Workflow files or directories")
    parser.add_argument(
        "--repo-root",
        default=".",
        help="Repository root holding .github/aw (default: current directory)",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Escalate warnings (unfiltered triggers, unpinned actions) to errors",
    )
    parser.add_argument(
        "--no-validate",
        action="store_true",
        help="Skip JSON schema validation of frontmatter",
    )
    parser.add_argument(
        "--action-mode",
        choices=ACTION_MODES,
        help="Reference the setup action locally (dev) or pinned to a release",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output machine-readable JSON results",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument("--version", action="version", version=f"awflow-compile {VERSION}")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    repo_root = Path(args.repo_root)
    workflows = find_workflows(args.paths, repo_root)
    if not workflows:
        print("ERROR: no workflow files found", file=sys.stderr)
        sys.exit(EXIT_FATAL_ERROR)

    try:
        config = load_config(
            repo_root,
            strict=True if args.strict else None,
            skip_validation=True if args.no_validate else None,
            action_mode=args.action_mode,
        )
        compiler = WorkflowCompiler(config, repo_root=repo_root)
        results = compile_all(compiler, workflows)
        compiler.save_action_cache()
    except (ActionCacheError, ValueError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        if args.debug:
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(EXIT_FATAL_ERROR)

    if args.json:
        print_json_output(results)
    else:
        print_results(results)

    failed = any(r["status"] == "failed" for r in results)
    sys.exit(EXIT_COMPILE_FAILED if failed else EXIT_SUCCESS)


if __name__ == "__main__":
    main()
