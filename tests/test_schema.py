"""Tests for frontmatter schema validation."""

import pytest

from awflow.workflow.errors import CompilerError, SchemaValidationError
from awflow.workflow.frontmatter import extract_frontmatter
from awflow.workflow.schema import (
    ROOT_ONLY_FIELDS,
    fragment_schema,
    iter_schema_errors,
    load_schema,
    validate_frontmatter,
)
from awflow.workflow.types import DEFAULT_ROLES, engine_from_value, roles_from_value


def _validate(content, fragment=False):
    result = extract_frontmatter(content, "wf.md")
    validate_frontmatter(result.frontmatter, "wf.md", result.key_line, fragment=fragment)


class TestSchemaLoading:
    def test_schema_is_draft7(self):
        assert load_schema()["$schema"] == "http://json-schema.org/draft-07/schema#"

    def test_fragment_schema_drops_root_only_fields(self):
        properties = fragment_schema()["properties"]

        for key in ROOT_ONLY_FIELDS:
            assert key not in properties
        assert "tools" in properties
        assert "on" in load_schema()["properties"]


class TestValidateFrontmatter:
    def test_valid_workflow(self):
        _validate(
            "---\n"
            "on:\n  issues:\n    types: [opened]\n"
            "permissions:\n  contents: read\n"
            "engine:\n  id: claude\n  max-turns: 5\n"
            "network:\n  allowed: [python]\n"
            "safe-outputs:\n  create-issue:\n    max: 2\n"
            "---\n"
        )

    def test_unknown_key_points_at_its_line(self):
        with pytest.raises(SchemaValidationError) as exc_info:
            _validate("---\non: push\nbogus: 1\n---\n")

        error = exc_info.value
        assert "'bogus' was unexpected" in error.message
        assert error.line == 3
        assert error.file_path == "wf.md"

    def test_nested_error_reports_path(self):
        with pytest.raises(SchemaValidationError) as exc_info:
            _validate("---\non: push\ntimeout-minutes: 0\n---\n")

        error = exc_info.value
        assert error.path == "timeout-minutes"
        assert error.message.startswith("'timeout-minutes': ")
        assert error.line == 3

    def test_one_of_reports_closest_branch(self):
        with pytest.raises(SchemaValidationError) as exc_info:
            _validate("---\non: push\nengine:\n  id: gpt\n---\n")

        error = exc_info.value
        assert error.path == "engine"
        assert "'gpt' is not one of" in error.message
        assert error.line == 3

    def test_safe_output_max_must_be_integer(self):
        errors = iter_schema_errors({"on": "push", "safe-outputs": {"create-issue": {"max": "3"}}})

        assert errors
        assert list(errors[0].absolute_path)[:2] == ["safe-outputs", "create-issue"]

    def test_fragment_rejects_root_only_field(self):
        with pytest.raises(SchemaValidationError, match="'on' was unexpected"):
            _validate("---\non: push\n---\n", fragment=True)

    def test_fragment_accepts_tools(self):
        _validate("---\ntools:\n  github:\n    toolsets: [issues]\n---\n", fragment=True)

    def test_error_is_compiler_error(self):
        assert issubclass(SchemaValidationError, CompilerError)


class TestEngineAndRoles:
    def test_engine_string(self):
        engine = engine_from_value("claude")

        assert engine.id == "claude"
        assert engine.model is None

    def test_engine_mapping(self):
        engine = engine_from_value({"id": "codex", "model": "o4", "version": 1.2, "max-turns": 3})

        assert engine.version == "1.2"
        assert engine.max_turns == 3

    def test_engine_default(self):
        assert engine_from_value(None).id == "copilot"

    def test_unsupported_engine(self):
        with pytest.raises(CompilerError, match="unsupported engine 'gpt'"):
            engine_from_value("gpt")

    def test_roles(self):
        assert roles_from_value(None) == DEFAULT_ROLES
        assert roles_from_value("all") == ()
        assert roles_from_value(["admin"]) == ("admin",)
