"""Tests for the job graph: registration, validation and ordering."""

import pytest

from awflow.workflow.errors import (
    DependencyCycleError,
    DuplicateJobError,
    DuplicateStepError,
    JobGraphError,
    UnknownDependencyError,
)
from awflow.workflow.jobs import Job, JobManager, normalize_job_name
from awflow.workflow.yaml_io import load_yaml


def _step(name, **extra):
    step = {"name": name, "run": f"echo {name}"}
    step.update(extra)
    return step


class TestJobNames:
    def test_normalize_replaces_invalid_characters(self):
        assert normalize_job_name("send-notification") == "send_notification"
        assert normalize_job_name("a.b c") == "a_b_c"
        assert normalize_job_name("agent") == "agent"

    def test_add_job_normalizes_name_and_needs(self):
        manager = JobManager()
        manager.add_job(Job(name="pre-activation"))
        job = manager.add_job(Job(name="safe-job", needs=["pre-activation", "pre_activation"]))

        assert job.name == "safe_job"
        assert job.needs == ["pre_activation"]
        assert manager.has_job("safe-job")
        assert manager.get_job("safe_job") is job


class TestJobRegistration:
    def test_duplicate_job_rejected(self):
        manager = JobManager()
        manager.add_job(Job(name="agent"))

        with pytest.raises(DuplicateJobError, match="job 'agent' already exists"):
            manager.add_job(Job(name="agent"))

    def test_normalized_collision_rejected(self):
        manager = JobManager()
        manager.add_job(Job(name="create_issue"))

        with pytest.raises(DuplicateJobError):
            manager.add_job(Job(name="create-issue"))

    def test_step_repeated_in_same_job_rejected(self):
        manager = JobManager()

        with pytest.raises(DuplicateStepError, match="earlier in the same job"):
            manager.add_job(Job(name="agent", steps=[_step("a"), _step("a")]))
        assert not manager.has_job("agent")

    def test_id_step_in_two_jobs_rejected(self):
        manager = JobManager()
        manager.add_job(Job(name="one", steps=[_step("collect", id="collect")]))

        with pytest.raises(DuplicateStepError, match="in job 'one'"):
            manager.add_job(Job(name="two", steps=[_step("collect", id="collect")]))

    def test_shared_step_without_id_allowed_across_jobs(self):
        manager = JobManager()
        manager.add_job(Job(name="one", steps=[_step("setup")]))
        manager.add_job(Job(name="two", steps=[_step("setup")]))

        assert manager.job_names == ["one", "two"]
        assert [job.name for job in manager.all_jobs()] == ["one", "two"]

    def test_add_dependency(self):
        manager = JobManager()
        manager.add_job(Job(name="agent"))
        manager.add_job(Job(name="conclusion"))
        manager.add_dependency("conclusion", "agent")
        manager.add_dependency("conclusion", "agent")

        assert manager.get_job("conclusion").needs == ["agent"]

    def test_add_dependency_to_unknown_job(self):
        with pytest.raises(JobGraphError):
            JobManager().add_dependency("missing", "agent")


class TestJobOrdering:
    def test_unknown_dependency(self):
        manager = JobManager()
        manager.add_job(Job(name="agent", needs=["activation"]))

        with pytest.raises(UnknownDependencyError, match="non-existent job 'activation'"):
            manager.topological_order()

    def test_cycle_detected(self):
        manager = JobManager()
        manager.add_job(Job(name="a", needs=["b"]))
        manager.add_job(Job(name="b", needs=["a"]))
        manager.add_job(Job(name="c"))

        with pytest.raises(DependencyCycleError) as exc_info:
            manager.topological_order()
        assert exc_info.value.jobs == ["a", "b"]

    def test_dependencies_come_first(self):
        manager = JobManager()
        manager.add_job(Job(name="conclusion", needs=["agent", "safe_outputs"]))
        manager.add_job(Job(name="safe_outputs", needs=["agent"]))
        manager.add_job(Job(name="agent", needs=["activation"]))
        manager.add_job(Job(name="activation"))

        assert manager.topological_order() == [
            "activation", "agent", "safe_outputs", "conclusion",
        ]

    def test_ties_follow_registration_order(self):
        manager = JobManager()
        manager.add_job(Job(name="agent"))
        manager.add_job(Job(name="zeta", needs=["agent"]))
        manager.add_job(Job(name="alpha", needs=["agent"]))

        assert manager.topological_order() == ["agent", "zeta", "alpha"]


class TestJobRendering:
    def test_key_order(self):
        job = Job(
            name="agent",
            needs=["activation"],
            if_condition="always()",
            permissions={"contents": "read"},
            timeout_minutes=20,
            env={"A": "1"},
            outputs={"output": "${{ steps.collect.outputs.output }}"},
            steps=[_step("run")],
        )

        assert list(job.to_dict()) == [
            "needs", "if", "runs-on", "permissions", "timeout-minutes",
            "env", "outputs", "steps",
        ]

    def test_empty_fields_omitted(self):
        assert Job(name="x").to_dict() == {"runs-on": "ubuntu-latest", "steps": []}

    def test_render_to_yaml_is_deterministic(self):
        def build():
            manager = JobManager()
            manager.add_job(Job(name="activation", steps=[_step("check")]))
            manager.add_job(Job(name="agent", needs=["activation"], steps=[_step("run")]))
            return manager.render_to_yaml()

        first = build()
        assert first == build()
        assert list(load_yaml(first)["jobs"]) == ["activation", "agent"]
