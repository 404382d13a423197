"""
safe_jobs.py - User-defined safe-output jobs (`safe-outputs.jobs`).

A safe job is an independent unit gated on the agent having emitted its
output type. Declared inputs describe what the agent may send; they are not
wired individually. The job receives the whole agent output in one env var
and its own steps extract the fields they need.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .conditions import build_safe_output_condition
from .errors import SafeOutputsConfigError
from .jobs import Job, normalize_job_name
from .permissions import Permissions, permissions_from_value

logger = logging.getLogger(__name__)

INPUT_TYPES = ("string", "boolean", "number", "choice", "environment")
AGENT_OUTPUT_ENV = "AW_AGENT_OUTPUT"
AGENT_OUTPUT_EXPR = "${{ needs.agent.outputs.output }}"

SECRETS_EXPRESSION_RE = re.compile(
    r"^\$\{\{\s*secrets\.[A-Za-z_][A-Za-z0-9_]*"
    r"(\s*\|\|\s*secrets\.[A-Za-z_][A-Za-z0-9_]*)*\s*\}\}$"
)


@dataclass(frozen=True)
class InputDefinition:
    """Typed input a safe job accepts from the agent."""
    type: str = "string"
    description: str = ""
    required: bool = False
    default: Any = None
    options: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type}
        if self.description:
            data["description"] = self.description
        data["required"] = self.required
        if self.default is not None:
            data["default"] = self.default
        if self.options:
            data["options"] = list(self.options)
        return data


@dataclass(frozen=True)
class SafeJobConfig:
    """A custom safe-output job."""
    name: str
    description: str = ""
    runs_on: Any = None
    if_condition: Optional[str] = None
    needs: Tuple[str, ...] = ()
    inputs: Dict[str, InputDefinition] = field(default_factory=dict)
    steps: Tuple[Dict[str, Any], ...] = ()
    permissions: Permissions = field(default_factory=Permissions)
    github_token: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    output: Optional[str] = None

    @property
    def job_name(self) -> str:
        return normalize_job_name(self.name)

    def tool_schema(self) -> Dict[str, Any]:
        """Entry for the agent-side safe-outputs configuration."""
        data: Dict[str, Any] = {}
        if self.description:
            data["description"] = self.description
        data["inputs"] = {name: self.inputs[name].to_dict() for name in sorted(self.inputs)}
        if self.output:
            data["output"] = self.output
        return data


def _input_from_dict(job: str, name: str, data: Any, file_path: Optional[str]) -> InputDefinition:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise SafeOutputsConfigError(
            f"input '{name}' of safe job '{job}' must be a mapping",
            field_name=f"jobs.{job}.inputs.{name}",
            file_path=file_path,
        )
    input_type = data.get("type", "string")
    if input_type not in INPUT_TYPES:
        raise SafeOutputsConfigError(
            f"input '{name}' of safe job '{job}' has invalid type '{input_type}'",
            field_name=f"jobs.{job}.inputs.{name}.type",
            value=input_type,
            hint=f"use one of: {', '.join(INPUT_TYPES)}",
            file_path=file_path,
        )
    options = tuple(str(o) for o in data.get("options", []) or [])
    if input_type == "choice" and not options:
        raise SafeOutputsConfigError(
            f"choice input '{name}' of safe job '{job}' requires options",
            field_name=f"jobs.{job}.inputs.{name}.options",
            file_path=file_path,
        )
    default = data.get("default")
    if input_type == "choice" and default is not None and str(default) not in options:
        raise SafeOutputsConfigError(
            f"default '{default}' of input '{name}' is not one of its options",
            field_name=f"jobs.{job}.inputs.{name}.default",
            value=default,
            file_path=file_path,
        )
    return InputDefinition(
        type=input_type,
        description=str(data.get("description", "")),
        required=bool(data.get("required", False)),
        default=default,
        options=options,
    )


def validate_github_token(value: Any, field_name: str, file_path: Optional[str] = None) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or not SECRETS_EXPRESSION_RE.match(value.strip()):
        raise SafeOutputsConfigError(
            f"{field_name} must be a secrets expression, got '{value}'",
            field_name=field_name,
            value=value,
            hint="use '${{ secrets.NAME }}' (optionally '|| secrets.OTHER')",
            file_path=file_path,
        )
    return value.strip()


def safe_job_from_dict(name: str, data: Any, file_path: Optional[str] = None) -> SafeJobConfig:
    """Parse one `safe-outputs.jobs.<name>` entry."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise SafeOutputsConfigError(
            f"safe job '{name}' must be a mapping",
            field_name=f"jobs.{name}",
            file_path=file_path,
        )
    inputs_data = data.get("inputs") or {}
    inputs = {
        input_name: _input_from_dict(name, input_name, inputs_data[input_name], file_path)
        for input_name in sorted(inputs_data)
    }
    needs = data.get("needs") or []
    if isinstance(needs, str):
        needs = [needs]
    return SafeJobConfig(
        name=name,
        description=str(data.get("description", "")),
        runs_on=data.get("runs-on"),
        if_condition=data.get("if"),
        needs=tuple(str(n) for n in needs),
        inputs=inputs,
        steps=tuple(data.get("steps") or []),
        permissions=permissions_from_value(data.get("permissions"), file_path),
        github_token=validate_github_token(data.get("github-token"), f"jobs.{name}.github-token", file_path),
        env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
        output=data.get("output"),
    )


def safe_jobs_from_dict(jobs: Any, file_path: Optional[str] = None) -> Dict[str, SafeJobConfig]:
    """Parse `safe-outputs.jobs`, keyed by declared name, sorted."""
    if not jobs:
        return {}
    if not isinstance(jobs, dict):
        raise SafeOutputsConfigError(
            "safe-outputs.jobs must be a mapping of job name to configuration",
            field_name="jobs",
            file_path=file_path,
        )
    return {name: safe_job_from_dict(name, jobs[name], file_path) for name in sorted(jobs)}


def build_safe_job(
    config: SafeJobConfig,
    default_runs_on: Any = "ubuntu-latest",
    setup_steps: Optional[List[Dict[str, Any]]] = None,
    pin: Optional[Callable[[str], str]] = None,
) -> Job:
    """Create the Job for a custom safe job.

    Needs the agent job plus the job's own `needs`. The safe-outputs wide env
    is not applied to custom jobs.
    """
    job_name = config.job_name
    condition = build_safe_output_condition([job_name], config.if_condition)

    env: Dict[str, str] = dict(config.env)
    env[AGENT_OUTPUT_ENV] = AGENT_OUTPUT_EXPR
    if config.github_token:
        env["GH_TOKEN"] = config.github_token

    steps: List[Dict[str, Any]] = list(setup_steps or [])
    for step in config.steps:
        step = dict(step)
        if pin is not None and isinstance(step.get("uses"), str):
            step["uses"] = pin(step["uses"])
        steps.append(step)
    if not config.steps:
        logger.warning("Safe job '%s' has no steps", config.name)

    return Job(
        name=job_name,
        runs_on=config.runs_on or default_runs_on,
        needs=["agent"] + [normalize_job_name(n) for n in config.needs],
        if_condition=condition.render(),
        permissions=(
            {"contents": "read"} if config.permissions.is_empty() else config.permissions.to_value()
        ),
        env=env,
        steps=steps,
    )
