"""
jobs.py - Job graph construction and rendering.

JobManager is an arena of jobs addressed by name. Rendering orders jobs
topologically; ties go to registration order so identical input always
renders byte-identical output.
"""

from __future__ import annotations

import heapq
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import (
    DependencyCycleError,
    DuplicateJobError,
    DuplicateStepError,
    JobGraphError,
    UnknownDependencyError,
)
from .merge import canonical_json
from .yaml_io import dump_yaml

logger = logging.getLogger(__name__)

_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_]")


def normalize_job_name(name: str) -> str:
    """Map a name onto the job identifier alphabet: `send-notification` -> `send_notification`."""
    return _INVALID_NAME_CHARS.sub("_", name)


@dataclass
class Job:
    """A unit of work in the generated pipeline."""
    name: str
    runs_on: Union[str, List[str], None] = "ubuntu-latest"
    needs: List[str] = field(default_factory=list)
    if_condition: Optional[str] = None
    permissions: Union[str, Dict[str, str], None] = None
    env: Dict[str, str] = field(default_factory=dict)
    steps: List[Dict[str, Any]] = field(default_factory=list)
    outputs: Dict[str, str] = field(default_factory=dict)
    timeout_minutes: Optional[int] = None
    concurrency: Any = None
    environment: Any = None
    container: Any = None

    def to_dict(self) -> Dict[str, Any]:
        """Render with a fixed key order."""
        data: Dict[str, Any] = {}
        if self.needs:
            data["needs"] = list(self.needs)
        if self.if_condition:
            data["if"] = self.if_condition
        if self.runs_on is not None:
            data["runs-on"] = self.runs_on
        if self.environment is not None:
            data["environment"] = self.environment
        if self.container is not None:
            data["container"] = self.container
        if self.permissions is not None:
            data["permissions"] = self.permissions
        if self.concurrency is not None:
            data["concurrency"] = self.concurrency
        if self.timeout_minutes is not None:
            data["timeout-minutes"] = self.timeout_minutes
        if self.env:
            data["env"] = dict(self.env)
        if self.outputs:
            data["outputs"] = dict(self.outputs)
        data["steps"] = [dict(step) for step in self.steps]
        return data


def step_label(step: Dict[str, Any]) -> str:
    for key in ("name", "id", "uses"):
        if step.get(key):
            return str(step[key])
    run = str(step.get("run") or "").strip()
    return run.splitlines()[0][:60] if run else "<step>"


class JobManager:
    """Registry of jobs with dependency validation and ordered rendering."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._order: List[str] = []
        # canonical step JSON -> job name, for steps that carry an id
        self._tracked_steps: Dict[str, str] = {}

    def add_job(self, job: Job) -> Job:
        """Register a job.

        Raises:
            DuplicateJobError: the normalized name is already registered.
            DuplicateStepError: a step repeats within the job, or an
                id-bearing step is already registered in another job.
        """
        job.name = normalize_job_name(job.name)
        if job.name in self._jobs:
            raise DuplicateJobError(job.name)

        seen: Dict[str, str] = {}
        new_tracked: Dict[str, str] = {}
        for step in job.steps:
            key = canonical_json(step)
            if key in seen:
                raise DuplicateStepError(job.name, step_label(step), job.name)
            seen[key] = job.name
            if "id" in step:
                if key in self._tracked_steps:
                    raise DuplicateStepError(job.name, step_label(step), self._tracked_steps[key])
                new_tracked[key] = job.name

        job.needs = _dedupe_names(job.needs)
        self._jobs[job.name] = job
        self._order.append(job.name)
        self._tracked_steps.update(new_tracked)
        logger.debug("Registered job '%s' (needs=%s)", job.name, job.needs)
        return job

    def get_job(self, name: str) -> Optional[Job]:
        return self._jobs.get(normalize_job_name(name))

    def has_job(self, name: str) -> bool:
        return normalize_job_name(name) in self._jobs

    def all_jobs(self) -> List[Job]:
        """Jobs in registration order."""
        return [self._jobs[name] for name in self._order]

    @property
    def job_names(self) -> List[str]:
        return list(self._order)

    def add_dependency(self, job_name: str, dependency: str) -> None:
        job = self.get_job(job_name)
        if job is None:
            raise JobGraphError(f"cannot add dependency to unknown job '{job_name}'")
        dep = normalize_job_name(dependency)
        if dep not in job.needs:
            job.needs.append(dep)

    def validate_dependencies(self) -> None:
        """Raise UnknownDependencyError for the first unresolved `needs`."""
        for name in self._order:
            for dep in self._jobs[name].needs:
                if dep not in self._jobs:
                    raise UnknownDependencyError(name, dep)

    def topological_order(self) -> List[str]:
        """Kahn's algorithm with registration order as the tie-break."""
        self.validate_dependencies()
        index = {name: i for i, name in enumerate(self._order)}
        indegree = {name: len(self._jobs[name].needs) for name in self._order}
        dependents: Dict[str, List[str]] = {name: [] for name in self._order}
        for name in self._order:
            for dep in self._jobs[name].needs:
                dependents[dep].append(name)

        ready: List[Tuple[int, str]] = [
            (index[name], name) for name in self._order if indegree[name] == 0
        ]
        heapq.heapify(ready)
        ordered: List[str] = []
        while ready:
            _, name = heapq.heappop(ready)
            ordered.append(name)
            for child in dependents[name]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (index[child], child))

        if len(ordered) != len(self._order):
            stuck = [name for name in self._order if indegree[name] > 0]
            raise DependencyCycleError(stuck)
        return ordered

    def render(self) -> Dict[str, Dict[str, Any]]:
        """Jobs mapping in dependency order."""
        return {name: self._jobs[name].to_dict() for name in self.topological_order()}

    def render_to_yaml(self) -> str:
        return dump_yaml({"jobs": self.render()})


def _dedupe_names(names: List[str]) -> List[str]:
    out: List[str] = []
    for name in names:
        normalized = normalize_job_name(name)
        if normalized not in out:
            out.append(normalized)
    return out
