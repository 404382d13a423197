"""Builders for the generated steps shared across jobs."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from awflow.config.compiler_config import CompilerConfig

from .action_resolver import ActionResolver

logger = logging.getLogger(__name__)

SCRIPTS_DIR = "/tmp/awflow/actions"
CHECKOUT_ACTION = "actions/checkout@v5"
GITHUB_SCRIPT_ACTION = "actions/github-script@v8"
DEFAULT_TOKEN = "${{ secrets.GITHUB_TOKEN }}"


class StepBuilder:
    """Creates steps for one compiler instance.

    Every external `uses:` goes through the resolver so generated jobs pin
    the same SHAs the action cache holds.
    """

    def __init__(self, config: CompilerConfig, resolver: ActionResolver):
        self.config = config
        self.resolver = resolver

    def pin(self, uses: str) -> str:
        return self.resolver.pin_action_reference(uses)

    def builtin_references(self) -> List[str]:
        """Action references generated jobs use, as opposed to user steps."""
        return [CHECKOUT_ACTION, GITHUB_SCRIPT_ACTION, self.config.setup_action_ref()]

    def checkout_step(self, name: str = "Checkout repository", **with_args: Any) -> Dict[str, Any]:
        step: Dict[str, Any] = {"name": name, "uses": self.pin(CHECKOUT_ACTION)}
        step["with"] = {"persist-credentials": False}
        step["with"].update(with_args)
        return step

    def setup_action_uses(self) -> str:
        """`uses:` value of the setup action, pinned in release mode."""
        ref = self.config.setup_action_ref()
        return self.pin(ref) if self.config.is_release else ref

    def setup_steps(self) -> List[Dict[str, Any]]:
        """Steps that make the runtime scripts available at SCRIPTS_DIR."""
        steps: List[Dict[str, Any]] = []
        if not self.config.is_release:
            # The local action only exists after the actions folder is checked out.
            steps.append(
                self.checkout_step(
                    name="Checkout actions folder",
                    **{"sparse-checkout": "actions"},
                )
            )
        steps.append(
            {
                "name": "Setup scripts",
                "uses": self.setup_action_uses(),
                "with": {"destination": SCRIPTS_DIR},
            }
        )
        return steps

    def script_step(
        self,
        name: str,
        script: str,
        step_id: Optional[str] = None,
        condition: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        github_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run `<SCRIPTS_DIR>/<script>.cjs` through github-script."""
        step: Dict[str, Any] = {"name": name}
        if step_id:
            step["id"] = step_id
        if condition:
            step["if"] = condition
        step["uses"] = self.pin(GITHUB_SCRIPT_ACTION)
        if env:
            step["env"] = dict(env)
        step["with"] = {
            "github-token": github_token or DEFAULT_TOKEN,
            "script": (
                f"const {{ main }} = require('{SCRIPTS_DIR}/{script}.cjs');\n"
                "await main();\n"
            ),
        }
        return step

    def pin_steps(self, steps: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Copy user steps, pinning their `uses:` references."""
        pinned = []
        for step in steps:
            step = dict(step)
            if isinstance(step.get("uses"), str):
                step["uses"] = self.pin(step["uses"])
            pinned.append(step)
        return pinned
