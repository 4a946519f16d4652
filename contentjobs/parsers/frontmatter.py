"""Split and assemble markdown documents with YAML frontmatter."""
from __future__ import annotations

import re
from typing import Any

import yaml

_FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n?(.*)", re.DOTALL)


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str, bool]:
    match = _FRONTMATTER_PATTERN.match(text or "")
    if not match:
        return {}, text or "", False
    try:
        fm = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        fm = {}
    if not isinstance(fm, dict):
        fm = {}
    body = match.group(2)
    return fm, body, True


def render_markdown(frontmatter: dict[str, Any], body: str) -> str:
    """Serialize frontmatter + body. Keys keep insertion order; None values are dropped."""
    fields = {key: value for key, value in frontmatter.items() if value is not None}
    body_text = (body or "").strip("\n")
    if not fields:
        return f"{body_text}\n" if body_text else ""
    dumped = yaml.safe_dump(fields, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{dumped}---\n{body_text}\n"
