"""
compiler.py - Compile agentic workflow markdown into a lock file.

The WorkflowCompiler is the entry point used by the CLI and the preview API.
One compile runs these stages:

- Resolution: frontmatter, imports and includes merged (imports.py)
- Decoding: schema validation, then typed WorkflowData (types.py)
- Job graph: activation -> agent -> safe-output jobs -> conclusion
- Rendering: header comments + YAML with jobs in dependency order

Identical input renders byte-identical output: no timestamps, every
collection ordered explicitly.

Usage:
    compiler = WorkflowCompiler(load_config(repo_root), repo_root=repo_root)
    result = compiler.compile_workflow(".github/workflows/triage.md")
    compiler.save_action_cache()
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from awflow.config.compiler_config import CompilerConfig, get_config

from .action_cache import ActionCache
from .action_resolver import ActionLookup, ActionResolver
from .conditions import (
    AndNode,
    ComparisonNode,
    FunctionCallNode,
    PropertyAccessNode,
    StringLiteralNode,
    build_job_not_skipped,
)
from .errors import Diagnostic, Diagnostics, ImportResolutionError, SharedWorkflowError
from .expressions import ExpressionExtractor
from .imports import DiskFileReader, FileReader, ImportResolver, ResolvedWorkflow
from .jobs import Job, JobManager
from .markdown import extract_workflow_name, remove_xml_comments, sanitize_identifier
from .network import network_from_value, plan_firewall
from .permissions import permissions_from_value
from .safe_jobs import AGENT_OUTPUT_ENV, AGENT_OUTPUT_EXPR
from .safe_outputs import (
    SafeOutputsCompiler,
    generate_safe_outputs_config_json,
    safe_outputs_from_dict,
)
from .schema import validate_frontmatter
from .steps import StepBuilder
from .types import WorkflowData, engine_from_value, roles_from_value
from .yaml_io import dump_yaml

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock.yml"
PROMPT_DIR = "/tmp/awflow/prompts"
PROMPT_PATH = f"{PROMPT_DIR}/prompt.txt"
SAFE_OUTPUTS_PATH = "/tmp/awflow/safeoutputs/outputs.jsonl"
PROMPT_DELIMITER = "AWFLOW_PROMPT_EOF"
DEFAULT_AGENT_TIMEOUT = 20

# Triggers that run on every branch unless filtered.
BRANCH_FILTERED_EVENTS = ("push", "pull_request")
# Triggers only users with write access can fire; no role check needed.
SAFE_EVENTS = ("schedule", "workflow_dispatch", "merge_group")

HEADER_LINES = (
    "# This file was automatically generated by awflow. DO NOT EDIT.",
    "#",
    "# To update this file, edit the corresponding .md file and run:",
    "#   awflow-compile",
)

# image reference -> True when the image can be pulled
ImageChecker = Callable[[str], bool]


@dataclass
class CompileResult:
    """Output of one successful compile."""
    lock_yaml: str
    workflow: WorkflowData
    job_names: List[str] = field(default_factory=list)
    warnings: List[Diagnostic] = field(default_factory=list)
    lock_path: Optional[Path] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.workflow.source_path,
            "lock_path": str(self.lock_path) if self.lock_path else None,
            "jobs": list(self.job_names),
            "warnings": [w.to_dict() for w in self.warnings],
        }


def lock_path_for(source: Union[str, Path]) -> Path:
    """`.github/workflows/triage.md` -> `.github/workflows/triage.lock.yml`."""
    path = Path(source)
    return path.with_name(path.stem + LOCK_SUFFIX)


def _atomic_write(path: Path, content: str) -> None:
    """Write content to path atomically (temp file + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(suffix=".tmp", prefix=f"{path.stem}_", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class WorkflowCompiler:
    """Compiles workflows; owns the action cache shared across compiles."""

    def __init__(
        self,
        config: Optional[CompilerConfig] = None,
        action_cache: Optional[ActionCache] = None,
        action_lookup: Optional[ActionLookup] = None,
        image_checker: Optional[ImageChecker] = None,
        file_reader: Optional[FileReader] = None,
        repo_root: Optional[Union[str, Path]] = None,
    ):
        self.config = config or get_config()
        self.repo_root = Path(repo_root) if repo_root is not None else Path.cwd()
        if action_cache is None:
            action_cache = ActionCache(self.repo_root)
            action_cache.load()
        self.action_cache = action_cache
        self.resolver = ActionResolver(self.action_cache, action_lookup)
        self.image_checker = image_checker
        self.file_reader = file_reader or DiskFileReader()
        self.steps = StepBuilder(self.config, self.resolver)
        self.reset()

    def reset(self) -> None:
        """Start fresh per-compile state."""
        self.diagnostics = Diagnostics(strict=self.config.strict)
        self.extractor = ExpressionExtractor()
        self.job_manager = JobManager()
        self.resolver.reset()

    # =========================================================================
    # Parsing
    # =========================================================================

    def parse_workflow(self, path: Union[str, Path]) -> WorkflowData:
        resolved = self._import_resolver().resolve(str(path))
        return self._build_workflow_data(resolved)

    def parse_workflow_content(self, content: str, source_path: Optional[str] = None) -> WorkflowData:
        resolved = self._import_resolver().resolve_content(content, source_path)
        return self._build_workflow_data(resolved)

    def _import_resolver(self) -> ImportResolver:
        return ImportResolver(self.file_reader, validate=not self.config.skip_validation)

    def _build_workflow_data(self, resolved: ResolvedWorkflow) -> WorkflowData:
        path = resolved.source_path
        root = resolved.root.frontmatter
        fm = resolved.frontmatter
        if "on" not in root:
            raise SharedWorkflowError(path)

        if not self.config.skip_validation:
            validate_frontmatter(root, file_path=path, key_line=resolved.root.key_line)
        if fm.get("strict"):
            self.diagnostics.strict = True

        markdown = remove_xml_comments(resolved.markdown)
        name = fm.get("name") or extract_workflow_name(markdown)
        if not name:
            name = Path(path).stem if path else "workflow"

        data = WorkflowData(
            name=str(name),
            on=fm["on"],
            permissions=permissions_from_value(fm.get("permissions"), path),
            engine=engine_from_value(fm.get("engine"), path),
            tools=dict(fm.get("tools") or {}),
            mcp_servers=dict(fm.get("mcp-servers") or {}),
            network=network_from_value(fm.get("network"), path),
            safe_outputs=safe_outputs_from_dict(fm.get("safe-outputs"), path),
            markdown=markdown,
            timeout_minutes=fm.get("timeout-minutes"),
            concurrency=fm.get("concurrency"),
            run_name=fm.get("run-name"),
            roles=roles_from_value(fm.get("roles")),
            runs_on=fm.get("runs-on"),
            strict=bool(fm.get("strict", False)),
            features=dict(fm.get("features") or {}),
            pre_steps=tuple(fm.get("steps") or []),
            post_steps=tuple(fm.get("post-steps") or []),
            container=fm.get("container"),
            environment=fm.get("environment"),
            tracker_id=fm.get("tracker-id"),
            sandbox=fm.get("sandbox"),
            imported_files=tuple(resolved.imported_files),
            included_files=tuple(resolved.included_files),
            source_path=path,
        )
        self._check_triggers(data, resolved)
        self._check_images(data)
        return data

    def _check_triggers(self, data: WorkflowData, resolved: ResolvedWorkflow) -> None:
        on = data.on
        if isinstance(on, str):
            on = {on: None}
        elif isinstance(on, list):
            on = {str(event): None for event in on}
        if not isinstance(on, dict):
            return
        line = resolved.root.key_line("on")
        for event in BRANCH_FILTERED_EVENTS:
            if event not in on:
                continue
            settings = on[event] or {}
            if isinstance(settings, dict) and settings.get("branches"):
                continue
            self.diagnostics.warn(
                "trigger",
                f"'{event}' trigger has no branch filter and runs on every branch",
                file_path=data.source_path,
                line=line,
                hint=f"add 'branches:' under '{event}'",
            )

    def _check_images(self, data: WorkflowData) -> None:
        if self.image_checker is None:
            return
        images: List[str] = []
        if isinstance(data.container, str):
            images.append(data.container)
        elif isinstance(data.container, dict) and data.container.get("image"):
            images.append(str(data.container["image"]))
        for name in sorted(data.mcp_servers):
            server = data.mcp_servers[name]
            if isinstance(server, dict) and server.get("container"):
                images.append(str(server["container"]))

        for image in images:
            try:
                available = self.image_checker(image)
            except (OSError, RuntimeError, ValueError) as e:
                logger.debug("Image check for %s failed: %s", image, e)
                available = False
            if not available:
                self.diagnostics.warn(
                    "container",
                    f"container image '{image}' could not be verified",
                    file_path=data.source_path,
                    hint="check the image name and tag",
                )

    # =========================================================================
    # Job graph
    # =========================================================================

    def _runs_on(self, data: WorkflowData) -> Any:
        return data.runs_on or self.config.runs_on

    def build_jobs(self, data: WorkflowData) -> List[str]:
        """Populate the job manager; returns job names in dependency order."""
        self.job_manager.add_job(self._activation_job(data))
        self.job_manager.add_job(self._agent_job(data))

        safe_outputs = SafeOutputsCompiler(self.job_manager, self.steps, self._runs_on(data))
        safe_output_jobs = safe_outputs.compile(data.safe_outputs)
        conclusion_steps = safe_outputs.conclusion_steps(data.safe_outputs)
        if conclusion_steps:
            self.job_manager.add_job(self._conclusion_job(data, safe_output_jobs, conclusion_steps))

        self._report_unpinned(data)
        return self.job_manager.topological_order()

    def _activation_job(self, data: WorkflowData) -> Job:
        steps = list(self.steps.setup_steps())
        outputs: Dict[str, str] = {}
        if self._needs_role_check(data):
            steps.append(
                self.steps.script_step(
                    "Check team membership",
                    "check_membership",
                    step_id="check_membership",
                    env={"AW_REQUIRED_ROLES": ",".join(data.roles)},
                )
            )
            outputs["activated"] = "${{ steps.check_membership.outputs.is_team_member == 'true' }}"
        steps.append(
            self.steps.script_step("Compute current body text", "compute_text", step_id="compute_text")
        )
        outputs["text"] = "${{ steps.compute_text.outputs.text }}"
        return Job(
            name="activation",
            runs_on=self._runs_on(data),
            permissions={"contents": "read"},
            steps=steps,
            outputs=outputs,
            timeout_minutes=5,
        )

    def _needs_role_check(self, data: WorkflowData) -> bool:
        if not data.has_role_check:
            return False
        on = data.on
        if isinstance(on, dict) and on:
            events = set(on)
            if events <= set(SAFE_EVENTS):
                # workflow_dispatch is only safe when write access is enough
                return "workflow_dispatch" in events and "write" not in data.roles
        return True

    def _prompt_steps(self, data: WorkflowData) -> List[Dict[str, Any]]:
        self.extractor.extract_expressions(data.markdown)
        prose = self.extractor.replace_expressions_with_env_vars(data.markdown).rstrip("\n")
        steps: List[Dict[str, Any]] = [
            {
                "name": "Create prompt",
                "env": {"AW_PROMPT": PROMPT_PATH},
                "run": (
                    f"mkdir -p {PROMPT_DIR}\n"
                    f"cat > \"$AW_PROMPT\" << '{PROMPT_DELIMITER}'\n"
                    f"{prose}\n"
                    f"{PROMPT_DELIMITER}\n"
                ),
            }
        ]
        env = self.extractor.env()
        if env:
            env["AW_PROMPT"] = PROMPT_PATH
            steps.append(
                self.steps.script_step(
                    "Interpolate variables", "interpolate_prompt", step_id="interpolate_prompt", env=env
                )
            )
        return steps

    def _engine_steps(self, data: WorkflowData) -> List[Dict[str, Any]]:
        engine = data.engine
        env: Dict[str, str] = {"AW_PROMPT": PROMPT_PATH, "AW_SAFE_OUTPUTS": SAFE_OUTPUTS_PATH}
        tools = {"tools": data.tools, "mcp-servers": data.mcp_servers}
        env["AW_MCP_CONFIG"] = json.dumps(tools, sort_keys=True, separators=(",", ":"))

        plan = plan_firewall(data.network, engine.id)
        if plan.enabled:
            env["AW_FIREWALL_VERSION"] = plan.version
            env["AW_FIREWALL_ARGS"] = " ".join(plan.command_args())
        env.update(engine.env)

        if engine.id == "custom":
            steps = self.steps.pin_steps([dict(s) for s in engine.steps])
            for step in steps:
                step["env"] = {**env, **(step.get("env") or {})}
            return steps

        with_args: Dict[str, Any] = {"engine": engine.id, "prompt-file": PROMPT_PATH}
        if engine.model:
            with_args["model"] = engine.model
        if engine.version:
            with_args["version"] = engine.version
        if engine.max_turns:
            with_args["max-turns"] = engine.max_turns
        return [
            {
                "name": "Execute agent",
                "id": "agentic_execution",
                "uses": self.steps.setup_action_uses(),
                "env": env,
                "with": with_args,
            }
        ]

    def _agent_job(self, data: WorkflowData) -> Job:
        steps: List[Dict[str, Any]] = [self.steps.checkout_step()]
        steps.extend(self.steps.setup_steps())
        steps.extend(self.steps.pin_steps(list(data.pre_steps)))
        steps.extend(self._prompt_steps(data))
        steps.extend(self._engine_steps(data))
        steps.append(
            self.steps.script_step(
                "Collect agent output",
                "collect_output",
                step_id="collect_output",
                env={"AW_SAFE_OUTPUTS": SAFE_OUTPUTS_PATH},
            )
        )
        steps.extend(self.steps.pin_steps(list(data.post_steps)))

        env: Dict[str, str] = {"AW_ENGINE_ID": data.engine.id}
        if data.engine.model:
            env["AW_ENGINE_MODEL"] = data.engine.model
        if data.safe_outputs is not None:
            env["AW_SAFE_OUTPUTS_CONFIG"] = generate_safe_outputs_config_json(data.safe_outputs)
        env["AW_WORKFLOW_NAME"] = data.name

        condition = None
        if self._needs_role_check(data):
            condition = ComparisonNode(
                PropertyAccessNode("needs.activation.outputs.activated"), "==", StringLiteralNode("true")
            ).render()

        permissions = data.permissions.to_value() if not data.permissions.is_empty() else {"contents": "read"}
        return Job(
            name="agent",
            runs_on=self._runs_on(data),
            needs=["activation"],
            if_condition=condition,
            permissions=permissions,
            concurrency={"group": f"awflow-{sanitize_identifier(data.name) or 'workflow'}-agent"},
            timeout_minutes=data.timeout_minutes or DEFAULT_AGENT_TIMEOUT,
            environment=data.environment,
            container=data.container,
            env=env,
            steps=steps,
            outputs={
                "output": "${{ steps.collect_output.outputs.output }}",
                "output_types": "${{ steps.collect_output.outputs.output_types }}",
            },
        )

    def _conclusion_job(
        self,
        data: WorkflowData,
        safe_output_jobs: List[str],
        conclusion_steps: List[Dict[str, Any]],
    ) -> Job:
        condition = AndNode(FunctionCallNode("always"), build_job_not_skipped("agent"))
        steps = list(self.steps.setup_steps()) + conclusion_steps
        return Job(
            name="conclusion",
            runs_on=self._runs_on(data),
            needs=["agent"] + safe_output_jobs,
            if_condition=condition.render(),
            permissions={"contents": "read", "issues": "write"},
            env={AGENT_OUTPUT_ENV: AGENT_OUTPUT_EXPR},
            steps=steps,
            timeout_minutes=5,
        )

    def _report_unpinned(self, data: WorkflowData) -> None:
        # Only references the user wrote fail a strict compile.
        builtin = set(self.steps.builtin_references())
        for uses in sorted(set(self.resolver.unresolved)):
            self.diagnostics.warn(
                "actions",
                f"action reference '{uses}' could not be pinned to a commit SHA",
                file_path=data.source_path,
                hint="add a pin for it to .github/aw/actions-lock.json",
                escalate=uses not in builtin,
            )

    # =========================================================================
    # Rendering
    # =========================================================================

    def _header(self, data: WorkflowData) -> str:
        lines = list(HEADER_LINES)
        if data.imported_files or data.included_files:
            lines += ["#", "# Resolved workflow manifest:"]
            if data.imported_files:
                lines.append("#   Imports:")
                lines += [f"#     - {p}" for p in sorted(data.imported_files)]
            if data.included_files:
                lines.append("#   Includes:")
                lines += [f"#     - {p}" for p in sorted(data.included_files)]
        return "\n".join(lines) + "\n\n"

    def generate_yaml(self, data: WorkflowData) -> str:
        """Render the lock document from the populated job manager."""
        workflow: Dict[str, Any] = {"name": data.name, "on": data.on, "permissions": {}}
        if data.concurrency is not None:
            workflow["concurrency"] = data.concurrency
        if data.run_name:
            workflow["run-name"] = data.run_name
        workflow["jobs"] = self.job_manager.render()
        return self._header(data) + dump_yaml(workflow)

    # =========================================================================
    # Entry points
    # =========================================================================

    def compile_content(self, content: str, source_path: Optional[str] = None) -> CompileResult:
        """Compile a document held in memory. Nothing is written."""
        self.reset()
        data = self.parse_workflow_content(content, source_path)
        job_names = self.build_jobs(data)
        lock_yaml = self.generate_yaml(data)
        logger.info(
            "Compiled %s: %d job(s), %d warning(s)",
            source_path or data.name, len(job_names), self.diagnostics.warning_count,
        )
        return CompileResult(
            lock_yaml=lock_yaml,
            workflow=data,
            job_names=job_names,
            warnings=self.diagnostics.sorted_warnings(),
        )

    def compile_workflow(self, path: Union[str, Path], write: bool = True) -> CompileResult:
        """Compile a workflow file and write `<stem>.lock.yml` beside it."""
        source = str(path)
        if not self.file_reader.exists(source):
            raise ImportResolutionError(f"workflow file not found: '{source}'", file_path=source)
        content = self.file_reader.read(source)
        result = self.compile_content(content, source)
        result.lock_path = lock_path_for(source)
        if write:
            _atomic_write(result.lock_path, result.lock_yaml)
            logger.debug("Wrote %s", result.lock_path)
        return result

    def save_action_cache(self) -> None:
        self.action_cache.save()
