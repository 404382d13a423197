"""Tests for custom safe-output jobs."""

import pytest

from awflow.workflow.errors import SafeOutputsConfigError
from awflow.workflow.safe_jobs import (
    build_safe_job,
    safe_job_from_dict,
    safe_jobs_from_dict,
)


def _notify(**extra):
    data = {
        "description": "Send a notification",
        "inputs": {
            "message": {"type": "string", "required": True},
            "channel": {"type": "choice", "options": ["ops", "dev"], "default": "ops"},
        },
        "steps": [{"name": "Notify", "uses": "acme/notify@v1"}],
    }
    data.update(extra)
    return data


class TestSafeJobDecoding:
    def test_parses_inputs_sorted(self):
        job = safe_job_from_dict("send-notification", _notify())

        assert job.job_name == "send_notification"
        assert list(job.inputs) == ["channel", "message"]
        assert job.inputs["message"].required
        assert job.inputs["channel"].options == ("ops", "dev")

    def test_tool_schema(self):
        schema = safe_job_from_dict("send-notification", _notify(output="Sent!")).tool_schema()

        assert schema["description"] == "Send a notification"
        assert schema["inputs"]["message"] == {"type": "string", "required": True}
        assert schema["inputs"]["channel"]["default"] == "ops"
        assert schema["output"] == "Sent!"

    def test_invalid_input_type(self):
        data = {"inputs": {"count": {"type": "integer"}}}

        with pytest.raises(SafeOutputsConfigError, match="invalid type 'integer'"):
            safe_job_from_dict("counter", data)

    def test_choice_requires_options(self):
        with pytest.raises(SafeOutputsConfigError, match="requires options"):
            safe_job_from_dict("pick", {"inputs": {"color": {"type": "choice"}}})

    def test_choice_default_must_be_an_option(self):
        data = {"inputs": {"color": {"type": "choice", "options": ["red"], "default": "blue"}}}

        with pytest.raises(SafeOutputsConfigError, match="not one of its options"):
            safe_job_from_dict("pick", data)

    def test_jobs_sorted_by_name(self):
        jobs = safe_jobs_from_dict({"zeta": {}, "alpha": {}})

        assert list(jobs) == ["alpha", "zeta"]

    def test_jobs_must_be_mapping(self):
        with pytest.raises(SafeOutputsConfigError, match="must be a mapping"):
            safe_jobs_from_dict(["alpha"])

    def test_plain_token_rejected(self):
        with pytest.raises(SafeOutputsConfigError) as exc_info:
            safe_jobs_from_dict({"notify": _notify(**{"github-token": "plain-text-token"})}, "w.md")

        error = exc_info.value
        assert "jobs.notify.github-token must be a secrets expression" in error.message
        assert error.file_path == "w.md"

    def test_secrets_token_accepted(self):
        job = safe_job_from_dict("notify", _notify(**{"github-token": " ${{ secrets.BOT || secrets.GITHUB_TOKEN }} "}))

        assert job.github_token == "${{ secrets.BOT || secrets.GITHUB_TOKEN }}"


class TestBuildSafeJob:
    def test_gated_on_own_output_type(self):
        job = build_safe_job(safe_job_from_dict("send-notification", _notify()))

        assert job.name == "send_notification"
        assert job.needs == ["agent"]
        assert job.if_condition == (
            "((!cancelled()) && (needs.agent.result != 'skipped')) && "
            "(contains(needs.agent.outputs.output_types, 'send_notification'))"
        )
        assert job.permissions == {"contents": "read"}
        assert job.env["AW_AGENT_OUTPUT"] == "${{ needs.agent.outputs.output }}"

    def test_user_condition_and_needs(self):
        config = safe_job_from_dict(
            "deploy",
            {"if": "github.ref == 'refs/heads/main'", "needs": "safe-outputs", "steps": [{"run": "make"}]},
        )

        job = build_safe_job(config)

        assert job.needs == ["agent", "safe_outputs"]
        assert job.if_condition.endswith("&& (github.ref == 'refs/heads/main')")

    def test_uses_are_pinned(self):
        config = safe_job_from_dict("send-notification", _notify())

        job = build_safe_job(config, pin=lambda uses: uses + "-pinned")

        assert job.steps[-1]["uses"] == "acme/notify@v1-pinned"
        assert config.steps[0]["uses"] == "acme/notify@v1"

    def test_permissions_and_token(self):
        config = safe_job_from_dict(
            "label",
            {"permissions": {"issues": "write"}, "github-token": "${{ secrets.BOT }}", "runs-on": "self-hosted"},
        )

        job = build_safe_job(config)

        assert job.permissions == {"issues": "write"}
        assert job.env["GH_TOKEN"] == "${{ secrets.BOT }}"
        assert job.runs_on == "self-hosted"
