"""
safe_outputs.py - Turn declared safe outputs into gated jobs.

The agent job never writes to the repository itself. It emits structured
output tagged with output types; the jobs built here consume that output with
scoped permissions, each gated on:

    (((!cancelled()) && (needs.agent.result != 'skipped'))
        && (contains(needs.agent.outputs.output_types, '<type>'))) && (<if>)

Built-in types are handled by one consolidated `safe_outputs` job (one step
per type) unless `consolidated: false`, in which case each type gets its own
job. `missing-tool` and `noop` are reported by the conclusion job. Custom
`jobs:` become one job each (see safe_jobs.py).
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .conditions import build_output_type_check, build_safe_output_condition
from .errors import SafeOutputsConfigError
from .jobs import Job, JobManager, normalize_job_name
from .permissions import union_permission_maps
from .safe_jobs import (
    AGENT_OUTPUT_ENV,
    AGENT_OUTPUT_EXPR,
    SafeJobConfig,
    build_safe_job,
    safe_jobs_from_dict,
    validate_github_token,
)
from .steps import StepBuilder

logger = logging.getLogger(__name__)

# Declaration order is the step and job order in the output.
BUILTIN_OUTPUT_TYPES = (
    "create-issue",
    "create-pull-request",
    "add-comment",
    "add-labels",
    "missing-tool",
    "noop",
)
CONCLUSION_OUTPUT_TYPES = ("missing-tool", "noop")
DEFAULT_ENABLED_TYPES = ("missing-tool", "noop")
WILDCARD_TARGET_REPO_TYPES = frozenset({"add-comment", "add-labels"})
TARGET_TYPES = frozenset({"add-comment", "add-labels"})
CONSOLIDATED_JOB_NAME = "safe_outputs"
RESERVED_JOB_NAMES = frozenset(
    {"activation", "agent", "conclusion", "detection", "pre_activation", CONSOLIDATED_JOB_NAME}
    | {normalize_job_name(t) for t in BUILTIN_OUTPUT_TYPES}
)

TYPE_PERMISSIONS: Dict[str, Dict[str, str]] = {
    "create-issue": {"contents": "read", "issues": "write"},
    "create-pull-request": {"contents": "write", "issues": "write", "pull-requests": "write"},
    "add-comment": {"contents": "read", "issues": "write", "pull-requests": "write"},
    "add-labels": {"contents": "read", "issues": "write", "pull-requests": "write"},
    "missing-tool": {},
    "noop": {},
}

TYPE_OUTPUTS: Dict[str, Tuple[str, ...]] = {
    "create-issue": ("issue_number", "issue_url"),
    "create-pull-request": ("pull_request_number", "pull_request_url"),
    "add-comment": ("comment_id", "comment_url"),
    "add-labels": ("labels_added",),
}

_TARGET_NUMBER_RE = re.compile(r"^[0-9]+$")


@dataclass(frozen=True)
class SafeOutputTypeConfig:
    """Settings of one built-in output type."""
    type: str
    max: int = 1
    target_repo: Optional[str] = None
    allowed_repos: Tuple[str, ...] = ()
    title_prefix: Optional[str] = None
    labels: Tuple[str, ...] = ()
    allowed: Tuple[str, ...] = ()
    target: Optional[str] = None
    draft: Optional[bool] = None
    github_token: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def job_name(self) -> str:
        return normalize_job_name(self.type)

    def handler_config(self) -> Dict[str, Any]:
        """Settings the runtime handler and the agent tool server both read."""
        data: Dict[str, Any] = {"max": self.max}
        if self.target_repo:
            data["target-repo"] = self.target_repo
        if self.allowed_repos:
            data["allowed-repos"] = list(self.allowed_repos)
        if self.title_prefix:
            data["title-prefix"] = self.title_prefix
        if self.labels:
            data["labels"] = list(self.labels)
        if self.allowed:
            data["allowed"] = list(self.allowed)
        if self.target:
            data["target"] = self.target
        if self.draft is not None:
            data["draft"] = self.draft
        return data


@dataclass(frozen=True)
class SafeOutputsConfig:
    """Decoded `safe-outputs:` block."""
    types: Dict[str, SafeOutputTypeConfig] = field(default_factory=dict)
    jobs: Dict[str, SafeJobConfig] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    github_token: Optional[str] = None
    runs_on: Any = None
    consolidated: bool = True

    def enabled_types(self) -> List[str]:
        return [t for t in BUILTIN_OUTPUT_TYPES if t in self.types]

    def job_types(self) -> List[str]:
        """Built-in types handled by safe-output jobs rather than the conclusion."""
        return [t for t in self.enabled_types() if t not in CONCLUSION_OUTPUT_TYPES]


# =============================================================================
# Decoding
# =============================================================================


def _validate_max(output_type: str, value: Any, file_path: Optional[str]) -> int:
    if value is None:
        return 1
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise SafeOutputsConfigError(
            f"{output_type}.max must be a positive integer, got '{value}'",
            field_name=f"{output_type}.max",
            value=value,
            file_path=file_path,
        )
    return value


def _validate_target(output_type: str, value: Any, file_path: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    text = str(value).strip()
    if text in ("triggering", "*") or _TARGET_NUMBER_RE.match(text) or text.startswith("${{"):
        return text
    raise SafeOutputsConfigError(
        f"invalid target value '{text}' for {output_type}",
        field_name=f"{output_type}.target",
        value=text,
        hint="use 'triggering', '*', an explicit number, or a ${{ }} expression",
        file_path=file_path,
    )


def _str_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def output_type_from_dict(output_type: str, data: Any, file_path: Optional[str] = None) -> SafeOutputTypeConfig:
    """Decode one built-in output type entry (`create-issue: {...}`)."""
    if data is None or data is True:
        data = {}
    if not isinstance(data, dict):
        raise SafeOutputsConfigError(
            f"{output_type} must be a mapping",
            field_name=output_type,
            value=data,
            file_path=file_path,
        )

    target_repo = data.get("target-repo")
    if target_repo == "*" and output_type not in WILDCARD_TARGET_REPO_TYPES:
        raise SafeOutputsConfigError(
            f"target-repo: \"*\" is not allowed for {output_type}",
            field_name=f"{output_type}.target-repo",
            value=target_repo,
            hint=(
                "name a specific repository; wildcard targets are only supported by "
                + ", ".join(sorted(WILDCARD_TARGET_REPO_TYPES))
            ),
            file_path=file_path,
        )

    target = None
    if output_type in TARGET_TYPES:
        target = _validate_target(output_type, data.get("target"), file_path)

    draft = data.get("draft")
    return SafeOutputTypeConfig(
        type=output_type,
        max=_validate_max(output_type, data.get("max"), file_path),
        target_repo=target_repo,
        allowed_repos=_str_tuple(data.get("allowed-repos")),
        title_prefix=data.get("title-prefix"),
        labels=_str_tuple(data.get("labels")),
        allowed=_str_tuple(data.get("allowed")),
        target=target,
        draft=bool(draft) if draft is not None else None,
        github_token=validate_github_token(
            data.get("github-token"), f"{output_type}.github-token", file_path
        ),
        env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
    )


def safe_outputs_from_dict(value: Any, file_path: Optional[str] = None) -> Optional[SafeOutputsConfig]:
    """Decode the `safe-outputs` block; returns None when absent."""
    if value is None:
        return None
    if not isinstance(value, dict):
        raise SafeOutputsConfigError(
            "safe-outputs must be a mapping",
            field_name="safe-outputs",
            file_path=file_path,
        )

    types: Dict[str, SafeOutputTypeConfig] = {}
    for output_type in BUILTIN_OUTPUT_TYPES:
        if output_type in value:
            if value[output_type] is False:
                continue
            types[output_type] = output_type_from_dict(output_type, value[output_type], file_path)
        elif output_type in DEFAULT_ENABLED_TYPES:
            types[output_type] = SafeOutputTypeConfig(type=output_type)

    jobs = safe_jobs_from_dict(value.get("jobs"), file_path)
    for name in jobs:
        if normalize_job_name(name) in RESERVED_JOB_NAMES:
            raise SafeOutputsConfigError(
                f"safe job '{name}' conflicts with a built-in job name",
                field_name=f"jobs.{name}",
                value=name,
                hint="choose a different name for the custom safe job",
                file_path=file_path,
            )

    consolidated = value.get("consolidated", True)
    return SafeOutputsConfig(
        types=types,
        jobs=jobs,
        env={str(k): str(v) for k, v in (value.get("env") or {}).items()},
        github_token=validate_github_token(value.get("github-token"), "safe-outputs.github-token", file_path),
        runs_on=value.get("runs-on"),
        consolidated=bool(consolidated),
    )


def generate_safe_outputs_config_json(config: Optional[SafeOutputsConfig]) -> str:
    """JSON the agent-side tool server uses to validate emitted output."""
    if config is None:
        return "{}"
    data: Dict[str, Any] = {}
    for output_type in config.enabled_types():
        data[normalize_job_name(output_type)] = config.types[output_type].handler_config()
    for name, job in config.jobs.items():
        data[normalize_job_name(name)] = job.tool_schema()
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


# =============================================================================
# Job construction
# =============================================================================


class SafeOutputsCompiler:
    """Adds safe-output jobs to a job graph that already holds `agent`."""

    def __init__(self, job_manager: JobManager, steps: StepBuilder, default_runs_on: Any = "ubuntu-latest"):
        self.job_manager = job_manager
        self.steps = steps
        self.default_runs_on = default_runs_on

    def compile(self, config: Optional[SafeOutputsConfig]) -> List[str]:
        """Register all safe-output jobs; returns their names in order."""
        if config is None:
            return []
        if not self.job_manager.has_job("agent"):
            raise SafeOutputsConfigError("safe outputs require an 'agent' job in the graph")

        names: List[str] = []
        job_types = config.job_types()
        if job_types:
            if config.consolidated:
                names.append(self._add(self._consolidated_job(config, job_types)))
            else:
                for output_type in job_types:
                    names.append(self._add(self._type_job(config, output_type)))

        runs_on = config.runs_on or self.default_runs_on
        for job_config in config.jobs.values():
            job = build_safe_job(
                job_config,
                default_runs_on=runs_on,
                setup_steps=None,
                pin=self.steps.pin,
            )
            names.append(self._add(job))

        logger.debug("Registered safe-output jobs: %s", names)
        return names

    def _add(self, job: Job) -> str:
        return self.job_manager.add_job(job).name

    def _job_env(self, config: SafeOutputsConfig) -> Dict[str, str]:
        env = dict(config.env)
        env[AGENT_OUTPUT_ENV] = AGENT_OUTPUT_EXPR
        return env

    def _handler_step(self, config: SafeOutputsConfig, output_type: str, gated: bool) -> Dict[str, Any]:
        type_config = config.types[output_type]
        step_name = output_type.replace("-", " ").capitalize()
        env = {"AW_SAFE_OUTPUT_CONFIG": json.dumps(type_config.handler_config(), sort_keys=True)}
        env.update(type_config.env)
        condition = build_output_type_check(type_config.job_name).render() if gated else None
        return self.steps.script_step(
            name=step_name,
            script=type_config.job_name,
            step_id=type_config.job_name,
            condition=condition,
            env=env,
            github_token=type_config.github_token or config.github_token,
        )

    def _outputs(self, output_types: List[str], prefixed: bool) -> Dict[str, str]:
        outputs: Dict[str, str] = {}
        for output_type in output_types:
            step_id = normalize_job_name(output_type)
            for name in TYPE_OUTPUTS.get(output_type, ()):
                key = f"{step_id}_{name}" if prefixed else name
                outputs[key] = f"${{{{ steps.{step_id}.outputs.{name} }}}}"
        return outputs

    def _common_steps(self, output_types: List[str]) -> List[Dict[str, Any]]:
        steps = list(self.steps.setup_steps())
        if "create-pull-request" in output_types:
            steps.append(self.steps.checkout_step(**{"fetch-depth": 0}))
        return steps

    def _consolidated_job(self, config: SafeOutputsConfig, output_types: List[str]) -> Job:
        normalized = [normalize_job_name(t) for t in output_types]
        steps = self._common_steps(output_types)
        for output_type in output_types:
            steps.append(self._handler_step(config, output_type, gated=True))
        return Job(
            name=CONSOLIDATED_JOB_NAME,
            runs_on=config.runs_on or self.default_runs_on,
            needs=["agent"],
            if_condition=build_safe_output_condition(normalized).render(),
            permissions=union_permission_maps(*(TYPE_PERMISSIONS[t] for t in output_types)),
            env=self._job_env(config),
            steps=steps,
            outputs=self._outputs(output_types, prefixed=True),
            timeout_minutes=15,
        )

    def _type_job(self, config: SafeOutputsConfig, output_type: str) -> Job:
        type_config = config.types[output_type]
        steps = self._common_steps([output_type])
        steps.append(self._handler_step(config, output_type, gated=False))
        return Job(
            name=type_config.job_name,
            runs_on=config.runs_on or self.default_runs_on,
            needs=["agent"],
            if_condition=build_safe_output_condition([type_config.job_name]).render(),
            permissions=union_permission_maps(TYPE_PERMISSIONS[output_type]),
            env=self._job_env(config),
            steps=steps,
            outputs=self._outputs([output_type], prefixed=False),
            timeout_minutes=10,
        )

    def conclusion_steps(self, config: Optional[SafeOutputsConfig]) -> List[Dict[str, Any]]:
        """Steps for the conclusion job reporting missing-tool and noop output."""
        if config is None:
            return []
        steps: List[Dict[str, Any]] = []
        for output_type in CONCLUSION_OUTPUT_TYPES:
            if output_type not in config.types:
                continue
            steps.append(self._handler_step(config, output_type, gated=True))
        return steps
