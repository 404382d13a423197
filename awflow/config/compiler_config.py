"""Compiler configuration.

Resolution order (highest to lowest):
    1. Explicit overrides (CLI flags, API request fields)
    2. Environment variables (AWFLOW_*)
    3. .github/aw/compiler.yaml under the repository root
    4. Defaults

Usage:
    from awflow.config.compiler_config import get_config, load_config

    config = load_config(repo_root, strict=True)
    config.setup_action_ref()  # "./actions/setup" in dev mode
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

CONFIG_RELATIVE_PATH = Path(".github") / "aw" / "compiler.yaml"

ACTION_MODES = ("dev", "release")
DEFAULT_ACTION_REPO = "awflow/awflow"
DEFAULT_ACTION_VERSION = "v0.1.0"

ENV_ACTION_MODE = "AWFLOW_ACTION_MODE"
ENV_STRICT = "AWFLOW_STRICT"
ENV_SKIP_VALIDATION = "AWFLOW_SKIP_VALIDATION"
ENV_ACTION_REPO = "AWFLOW_ACTION_REPO"
ENV_ACTION_VERSION = "AWFLOW_ACTION_VERSION"

_TRUE_VALUES = ("1", "true", "yes", "on")

_cached_config: Optional["CompilerConfig"] = None


@dataclass(frozen=True)
class CompilerConfig:
    """Settings that shape generated output but are not part of a workflow."""
    action_mode: str = "dev"
    action_repo: str = DEFAULT_ACTION_REPO
    action_version: str = DEFAULT_ACTION_VERSION
    strict: bool = False
    skip_validation: bool = False
    runs_on: str = "ubuntu-latest"

    def __post_init__(self):
        if self.action_mode not in ACTION_MODES:
            raise ValueError(
                f"invalid action mode '{self.action_mode}' (expected one of: {', '.join(ACTION_MODES)})"
            )

    @property
    def is_release(self) -> bool:
        return self.action_mode == "release"

    def setup_action_ref(self) -> str:
        """Reference to the setup action bundle for generated jobs."""
        if self.is_release:
            return f"{self.action_repo}/actions/setup@{self.action_version}"
        return "./actions/setup"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


def _read_config_file(repo_root: Path) -> Dict[str, Any]:
    path = repo_root / CONFIG_RELATIVE_PATH
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.warning("Ignoring unreadable compiler config %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring compiler config %s: expected a mapping", path)
        return {}
    return data


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if os.environ.get(ENV_ACTION_MODE):
        overrides["action_mode"] = os.environ[ENV_ACTION_MODE].strip().lower()
    if os.environ.get(ENV_ACTION_REPO):
        overrides["action_repo"] = os.environ[ENV_ACTION_REPO].strip()
    if os.environ.get(ENV_ACTION_VERSION):
        overrides["action_version"] = os.environ[ENV_ACTION_VERSION].strip()
    if os.environ.get(ENV_STRICT) is not None:
        overrides["strict"] = _parse_bool(os.environ[ENV_STRICT])
    if os.environ.get(ENV_SKIP_VALIDATION) is not None:
        overrides["skip_validation"] = _parse_bool(os.environ[ENV_SKIP_VALIDATION])
    return overrides


def load_config(
    repo_root: Optional[Union[str, Path]] = None,
    **overrides: Any,
) -> CompilerConfig:
    """Resolve a CompilerConfig. Overrides set to None are ignored."""
    root = Path(repo_root) if repo_root is not None else Path.cwd()
    known = {f.name for f in fields(CompilerConfig)}

    values: Dict[str, Any] = {}
    for key, value in _read_config_file(root).items():
        name = str(key).replace("-", "_")
        if name in known:
            values[name] = value
        else:
            logger.warning("Unknown compiler config key '%s' ignored", key)
    values.update(_env_overrides())
    values.update({k: v for k, v in overrides.items() if v is not None})

    config = CompilerConfig(**values)
    logger.debug("Resolved compiler config: %s", config)
    return config


def get_config() -> CompilerConfig:
    """Cached config for the current working directory."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config (for testing)."""
    global _cached_config
    _cached_config = None
