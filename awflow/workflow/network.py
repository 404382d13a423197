"""
network.py - Network egress policy and firewall planning.

A workflow's `network:` block lists allowed and blocked domains. Entries that
name an ecosystem (`python`, `node`, ...) expand to that ecosystem's domains.
When the allowed list is restricted and the engine can run behind the egress
proxy, the agent step is wrapped in the firewall.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import CompilerError

logger = logging.getLogger(__name__)

ECOSYSTEM_DOMAINS: Dict[str, Tuple[str, ...]] = {
    "defaults": (
        "archive.ubuntu.com",
        "crl3.digicert.com",
        "crl4.digicert.com",
        "json-schema.org",
        "json.schemastore.org",
        "keyserver.ubuntu.com",
        "ocsp.digicert.com",
        "ppa.launchpad.net",
        "security.ubuntu.com",
    ),
    "github": (
        "api.github.com",
        "codeload.github.com",
        "github.com",
        "objects.githubusercontent.com",
        "raw.githubusercontent.com",
        "uploads.github.com",
    ),
    "python": (
        "bootstrap.pypa.io",
        "conda.anaconda.org",
        "files.pythonhosted.org",
        "pypi.org",
        "pypi.python.org",
        "repo.anaconda.com",
    ),
    "node": (
        "nodejs.org",
        "npmjs.com",
        "npmjs.org",
        "registry.npmjs.org",
        "registry.yarnpkg.com",
        "yarnpkg.com",
    ),
    "containers": (
        "docker.io",
        "ghcr.io",
        "mcr.microsoft.com",
        "production.cloudflare.docker.com",
        "quay.io",
        "registry.hub.docker.com",
    ),
    "go": (
        "go.dev",
        "golang.org",
        "proxy.golang.org",
        "sum.golang.org",
    ),
}

# Domains each engine must reach for its own API.
ENGINE_DOMAINS: Dict[str, Tuple[str, ...]] = {
    "copilot": ("api.githubcopilot.com", "api.github.com", "github.com"),
    "claude": ("api.anthropic.com", "statsig.anthropic.com"),
    "codex": ("api.openai.com", "openai.com"),
}

FIREWALL_ENGINES = frozenset(ENGINE_DOMAINS)
DEFAULT_FIREWALL_VERSION = "v0.7.0"
DEFAULT_FIREWALL_LOG_LEVEL = "info"
LOG_LEVELS = ("debug", "info", "warn", "error")


@dataclass(frozen=True)
class FirewallConfig:
    """Explicit `network.firewall` settings."""
    enabled: bool = True
    version: str = DEFAULT_FIREWALL_VERSION
    log_level: str = DEFAULT_FIREWALL_LOG_LEVEL
    args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NetworkPolicy:
    """Decoded `network:` block.

    mode is "defaults" when the workflow did not restrict egress beyond the
    default ecosystem, "custom" for an explicit allowed list.
    """
    mode: str = "defaults"
    allowed: Tuple[str, ...] = ("defaults",)
    blocked: Tuple[str, ...] = ()
    firewall: Optional[FirewallConfig] = None

    @property
    def unrestricted(self) -> bool:
        return "*" in self.allowed

    def allowed_domains(self) -> List[str]:
        """Expanded allowed domains, minus blocked ones, sorted."""
        blocked = set(self.blocked_domains())
        return sorted(d for d in expand_domains(self.allowed) if d not in blocked)

    def blocked_domains(self) -> List[str]:
        return sorted(expand_domains(self.blocked))


@dataclass(frozen=True)
class FirewallPlan:
    """How the agent step is wrapped in the egress proxy."""
    enabled: bool
    allowed_domains: Tuple[str, ...] = ()
    blocked_domains: Tuple[str, ...] = ()
    version: str = DEFAULT_FIREWALL_VERSION
    log_level: str = DEFAULT_FIREWALL_LOG_LEVEL
    extra_args: Tuple[str, ...] = ()

    def command_args(self) -> List[str]:
        args = ["--allow-domains", ",".join(self.allowed_domains)]
        if self.blocked_domains:
            args += ["--block-domains", ",".join(self.blocked_domains)]
        args += ["--log-level", self.log_level]
        args += list(self.extra_args)
        return args


def dedupe(items: Iterable[Any]) -> List[Any]:
    """Remove duplicates preserving first-seen order."""
    seen = set()
    out = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def expand_domains(entries: Iterable[str]) -> List[str]:
    """Expand ecosystem identifiers into domains, deduplicated."""
    domains: List[str] = []
    for entry in entries:
        if entry == "*":
            continue
        domains.extend(ECOSYSTEM_DOMAINS.get(entry, (entry,)))
    return dedupe(domains)


def _firewall_from_value(value: Any, file_path: Optional[str]) -> Optional[FirewallConfig]:
    if value is None:
        return None
    if isinstance(value, bool):
        return FirewallConfig(enabled=value)
    if value == "disable":
        return FirewallConfig(enabled=False)
    if not isinstance(value, dict):
        raise CompilerError(
            "network.firewall must be a boolean or a mapping",
            file_path=file_path,
            hint="use 'firewall: true' or 'firewall: {version: ..., log-level: ...}'",
        )
    log_level = value.get("log-level", DEFAULT_FIREWALL_LOG_LEVEL)
    if log_level not in LOG_LEVELS:
        raise CompilerError(
            f"invalid firewall log-level '{log_level}'",
            file_path=file_path,
            hint=f"use one of: {', '.join(LOG_LEVELS)}",
        )
    return FirewallConfig(
        enabled=True,
        version=str(value.get("version", DEFAULT_FIREWALL_VERSION)),
        log_level=log_level,
        args=tuple(str(a) for a in value.get("args", []) or []),
    )


def network_from_value(value: Any, file_path: Optional[str] = None) -> NetworkPolicy:
    """Decode a frontmatter `network` value."""
    if value is None or value == "defaults":
        return NetworkPolicy()
    if not isinstance(value, dict):
        raise CompilerError(
            "network must be 'defaults' or a mapping",
            file_path=file_path,
            hint="use 'network: defaults' or 'network: {allowed: [...]}'",
        )
    return NetworkPolicy(
        mode="custom",
        allowed=tuple(dedupe(str(d) for d in value.get("allowed", []) or [])),
        blocked=tuple(dedupe(str(d) for d in value.get("blocked", []) or [])),
        firewall=_firewall_from_value(value.get("firewall"), file_path),
    )


def _as_mapping(value: Any) -> Dict[str, Any]:
    if value is None or value == "defaults":
        return {"allowed": ["defaults"]}
    return dict(value)


def merge_network_values(root: Any, fragments: Iterable[Any]) -> Any:
    """Merge raw `network` values from the root and its imports.

    Allowed and blocked lists are concatenated and deduplicated, root first.
    Firewall settings come from the root only.
    """
    fragments = [f for f in fragments if f is not None]
    if not fragments:
        return root
    merged = _as_mapping(root)
    for fragment in fragments:
        if not isinstance(fragment, (dict, str)):
            continue
        frag = _as_mapping(fragment)
        for key in ("allowed", "blocked"):
            combined = list(merged.get(key, []) or []) + list(frag.get(key, []) or [])
            if combined:
                merged[key] = dedupe(combined)
    return merged


def plan_firewall(policy: NetworkPolicy, engine_id: str) -> FirewallPlan:
    """Decide whether to run the agent behind the egress firewall."""
    explicit = policy.firewall
    supported = engine_id in FIREWALL_ENGINES
    if explicit is not None:
        enabled = explicit.enabled
    else:
        enabled = policy.mode == "custom" and not policy.unrestricted and supported

    if enabled and policy.unrestricted:
        logger.warning("Firewall requested with unrestricted network access; disabling")
        enabled = False
    if enabled and not supported:
        logger.warning("Engine '%s' does not support the firewall; disabling", engine_id)
        enabled = False
    if not enabled:
        return FirewallPlan(enabled=False)

    allowed = dedupe(policy.allowed_domains() + list(ENGINE_DOMAINS.get(engine_id, ())))
    firewall = explicit or FirewallConfig()
    return FirewallPlan(
        enabled=True,
        allowed_domains=tuple(sorted(allowed)),
        blocked_domains=tuple(policy.blocked_domains()),
        version=firewall.version,
        log_level=firewall.log_level,
        extra_args=firewall.args,
    )
