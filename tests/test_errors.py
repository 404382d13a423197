"""Tests for error formatting and diagnostics."""

import pytest

from awflow.workflow.errors import (
    CompilerError,
    Diagnostics,
    DuplicateStepError,
    SharedWorkflowError,
    WorkflowError,
)


class TestCompilerError:
    def test_format_with_location_context_and_hint(self):
        error = CompilerError(
            "bad value",
            file_path="wf.md",
            line=4,
            column=7,
            hint="use a good value",
            context=[">    4 | key: bad"],
        )

        assert error.format() == (
            "wf.md:4:7: error: bad value\n"
            ">    4 | key: bad\n"
            "  Fix: use a good value"
        )
        assert str(error) == error.format()

    def test_location_without_line(self):
        assert CompilerError("oops").location == "<workflow>"
        assert CompilerError("oops", file_path="a.md", line=2).location == "a.md:2:1"

    def test_to_dict(self):
        data = CompilerError("oops", file_path="a.md", line=2).to_dict()

        assert data["type"] == "CompilerError"
        assert data["line"] == 2
        assert data["hint"] is None

    def test_shared_workflow_is_not_a_compiler_error(self):
        assert issubclass(SharedWorkflowError, WorkflowError)
        assert not issubclass(SharedWorkflowError, CompilerError)

    def test_duplicate_step_message(self):
        error = DuplicateStepError("two", "Collect", "one")

        assert str(error) == "duplicate step 'Collect' in job 'two' (already present in job 'one')"


class TestDiagnostics:
    def test_collects_sorted_warnings(self):
        diagnostics = Diagnostics()
        diagnostics.warn("actions", "b", file_path="b.md")
        diagnostics.warn("trigger", "a", file_path="a.md", line=3, hint="fix it")

        warnings = diagnostics.sorted_warnings()

        assert diagnostics.warning_count == 2
        assert [w.message for w in warnings] == ["a", "b"]
        assert warnings[0].format() == "a.md:3: warning: a\n  Fix: fix it"
        assert diagnostics.to_dict()["warning_count"] == 2

    def test_strict_raises(self):
        diagnostics = Diagnostics(strict=True)

        with pytest.raises(CompilerError, match="strict mode: unpinned") as exc_info:
            diagnostics.warn("actions", "unpinned", file_path="wf.md", line=5)

        assert exc_info.value.line == 5
        assert not diagnostics.has_warnings()
