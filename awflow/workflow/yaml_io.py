"""
yaml_io.py - YAML loading and emission for workflows and lock files.

Workflow frontmatter is read with a loader that only treats true/false as
booleans, so the `on:` trigger key stays a string (YAML 1.1 would read it as
True). The same resolver rules are used when dumping so `on` is not quoted.
"""

from __future__ import annotations

import re
from typing import Any

import yaml

_BOOL_TAG = "tag:yaml.org,2002:bool"
_BOOL_PATTERN = re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$")
# `uses: 'owner/repo@<sha> # v1'` as emitted for a pinned reference
_QUOTED_PIN_RE = re.compile(
    r"^(\s*(?:- )?uses: )'([^'\s]+@[0-9a-f]{40}) # ([^']+)'$", re.MULTILINE
)


def _strip_yaml11_booleans(cls: Any) -> None:
    cls.yaml_implicit_resolvers = {
        first: [(tag, regexp) for tag, regexp in resolvers if tag != _BOOL_TAG]
        for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
    }
    cls.add_implicit_resolver(_BOOL_TAG, _BOOL_PATTERN, list("tTfF"))


class WorkflowLoader(yaml.SafeLoader):
    """Safe loader with YAML 1.2 style booleans."""


class WorkflowDumper(yaml.SafeDumper):
    """Safe dumper producing GitHub Actions friendly output."""

    def increase_indent(self, flow: bool = False, indentless: bool = False):
        # Indent sequences nested under mapping keys.
        return super().increase_indent(flow, False)


def _represent_str(dumper: yaml.SafeDumper, data: str):
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_strip_yaml11_booleans(WorkflowLoader)
_strip_yaml11_booleans(WorkflowDumper)
WorkflowDumper.add_representer(str, _represent_str)


def load_yaml(text: str) -> Any:
    """Parse YAML text. Raises yaml.YAMLError on malformed input."""
    return yaml.load(text, Loader=WorkflowLoader)


def unquote_pinned_refs(text: str) -> str:
    """Turn the version suffix of pinned `uses:` values back into a comment."""
    return _QUOTED_PIN_RE.sub(r"\1\2 # \3", text)


def dump_yaml(data: Any) -> str:
    """Serialize data preserving insertion order without line folding.

    Pinned action references keep their version as a trailing comment.
    """
    text = yaml.dump(
        data,
        Dumper=WorkflowDumper,
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        width=1_000_000,
    )
    return unquote_pinned_refs(text)
