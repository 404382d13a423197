"""
types.py - Dataclasses for a resolved workflow.

WorkflowData is built once per compile, after imports are merged and the
frontmatter has passed schema validation. Configuration areas are decoded
into typed values here; only tool and MCP server bodies stay as raw dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .errors import CompilerError
from .network import NetworkPolicy
from .permissions import Permissions
from .safe_outputs import SafeOutputsConfig

ENGINE_IDS = ("copilot", "claude", "codex", "custom")
DEFAULT_ENGINE = "copilot"
DEFAULT_ROLES = ("admin", "maintainer", "write")


@dataclass(frozen=True)
class EngineConfig:
    """AI engine selection."""
    id: str = DEFAULT_ENGINE
    model: Optional[str] = None
    version: Optional[str] = None
    max_turns: Optional[int] = None
    env: Dict[str, str] = field(default_factory=dict)
    steps: Tuple[Dict[str, Any], ...] = ()


def engine_from_value(value: Any, file_path: Optional[str] = None) -> EngineConfig:
    """Decode `engine: <id>` or `engine: {id, model, version, max-turns}`."""
    if value is None:
        return EngineConfig()
    if isinstance(value, str):
        value = {"id": value}
    if not isinstance(value, dict):
        raise CompilerError("engine must be a string or a mapping", file_path=file_path)

    engine_id = value.get("id", DEFAULT_ENGINE)
    if engine_id not in ENGINE_IDS:
        raise CompilerError(
            f"unsupported engine '{engine_id}'",
            file_path=file_path,
            hint=f"use one of: {', '.join(ENGINE_IDS)}",
        )
    version = value.get("version")
    return EngineConfig(
        id=engine_id,
        model=value.get("model"),
        version=str(version) if version is not None else None,
        max_turns=value.get("max-turns"),
        env={str(k): str(v) for k, v in (value.get("env") or {}).items()},
        steps=tuple(value.get("steps") or []),
    )


def roles_from_value(value: Any) -> Tuple[str, ...]:
    """`roles: all` disables the role check and yields an empty tuple."""
    if value is None:
        return DEFAULT_ROLES
    if value == "all":
        return ()
    return tuple(str(r) for r in value)


@dataclass(frozen=True)
class WorkflowData:
    """A fully resolved workflow, ready for job construction."""
    name: str
    on: Any
    permissions: Permissions = field(default_factory=Permissions)
    engine: EngineConfig = field(default_factory=EngineConfig)
    tools: Dict[str, Any] = field(default_factory=dict)
    mcp_servers: Dict[str, Any] = field(default_factory=dict)
    network: NetworkPolicy = field(default_factory=NetworkPolicy)
    safe_outputs: Optional[SafeOutputsConfig] = None
    markdown: str = ""

    # Root-only settings
    timeout_minutes: Optional[int] = None
    concurrency: Any = None
    run_name: Optional[str] = None
    roles: Tuple[str, ...] = DEFAULT_ROLES
    runs_on: Any = None
    strict: bool = False
    features: Dict[str, Any] = field(default_factory=dict)
    pre_steps: Tuple[Dict[str, Any], ...] = ()
    post_steps: Tuple[Dict[str, Any], ...] = ()
    container: Any = None
    environment: Any = None
    tracker_id: Optional[str] = None
    sandbox: Any = None

    imported_files: Tuple[str, ...] = ()
    included_files: Tuple[str, ...] = ()
    source_path: Optional[str] = None

    @property
    def has_role_check(self) -> bool:
        return bool(self.roles)
