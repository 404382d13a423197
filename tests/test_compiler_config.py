"""Tests for compiler configuration resolution."""

import pytest

from awflow.config.compiler_config import (
    CompilerConfig,
    get_config,
    load_config,
    reset_config,
)


def _write_config(repo, text):
    path = repo / ".github" / "aw" / "compiler.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestCompilerConfig:
    def test_defaults(self, repo):
        config = load_config(repo)

        assert config == CompilerConfig()
        assert config.action_mode == "dev"
        assert not config.strict

    def test_invalid_action_mode(self):
        with pytest.raises(ValueError, match="invalid action mode 'beta'"):
            CompilerConfig(action_mode="beta")

    def test_setup_action_ref(self):
        assert CompilerConfig().setup_action_ref() == "./actions/setup"
        release = CompilerConfig(action_mode="release", action_version="v2.0.0")
        assert release.setup_action_ref() == "awflow/awflow/actions/setup@v2.0.0"
        assert release.is_release


class TestConfigResolution:
    def test_file_values(self, repo):
        _write_config(repo, "action-mode: release\nstrict: true\nruns-on: self-hosted\n")

        config = load_config(repo)

        assert config.action_mode == "release"
        assert config.strict
        assert config.runs_on == "self-hosted"

    def test_unknown_file_key_ignored(self, repo, caplog):
        _write_config(repo, "colour: blue\n")

        assert load_config(repo) == CompilerConfig()
        assert "Unknown compiler config key 'colour'" in caplog.text

    def test_unreadable_file_ignored(self, repo):
        _write_config(repo, "strict: [unclosed\n")

        assert load_config(repo) == CompilerConfig()

    def test_env_overrides_file(self, repo, monkeypatch):
        _write_config(repo, "action-mode: release\nstrict: true\n")
        monkeypatch.setenv("AWFLOW_ACTION_MODE", "dev")
        monkeypatch.setenv("AWFLOW_STRICT", "no")

        config = load_config(repo)

        assert config.action_mode == "dev"
        assert not config.strict

    def test_explicit_overrides_win(self, repo, monkeypatch):
        monkeypatch.setenv("AWFLOW_STRICT", "0")

        config = load_config(repo, strict=True, action_mode=None)

        assert config.strict
        assert config.action_mode == "dev"

    def test_env_action_repo(self, repo, monkeypatch):
        monkeypatch.setenv("AWFLOW_ACTION_MODE", "release")
        monkeypatch.setenv("AWFLOW_ACTION_REPO", "acme/awflow")

        assert load_config(repo).setup_action_ref() == "acme/awflow/actions/setup@v0.1.0"

    def test_get_config_is_cached(self, repo, monkeypatch):
        monkeypatch.chdir(repo)

        first = get_config()
        assert get_config() is first

        reset_config()
        assert get_config() is not first
