"""Shared helpers for entity identifiers and content hashing.

These keep id derivation consistent between the derivation job, the
aggregate sync and the generation job.
"""
from __future__ import annotations

import hashlib
import re
import unicodedata
from collections.abc import Iterable


_SLUG_INVALID_PATTERN = re.compile(r"[^a-z0-9]+")
_COMPOSITE_ID_PATTERN = re.compile(r"^(?P<tag>[^:]+):(?P<group>[^:]+):(?P<sub>[^:]+)$")


def compute_content_hash(content: str) -> str:
    return hashlib.sha256((content or "").encode("utf-8")).hexdigest()


def slugify(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value or "")
    ascii_text = normalized.encode("ascii", "ignore").decode("ascii").lower()
    return _SLUG_INVALID_PATTERN.sub("-", ascii_text).strip("-")


def aggregate_id(prefix: str, grouping_key: str) -> str:
    """Deterministic aggregate id: ``<prefix>-<slug>``; empty when the key has no slug."""
    slug = slugify(grouping_key)
    if not slug:
        return ""
    return f"{prefix}-{slug}" if prefix else slug


def split_composite_id(entity_id: str) -> tuple[str, str, str] | None:
    match = _COMPOSITE_ID_PATTERN.match(entity_id or "")
    if not match:
        return None
    return match.group("tag"), match.group("group"), match.group("sub")


def derive_target_id(
    entity_id: str,
    source_entity_type: str,
    target_entity_type: str,
    composite_types: Iterable[str] = (),
) -> str:
    """Map a source id onto the target type.

    Composite ids (``<tag>:<group>:<sub>``) of a known composite family get
    their leading tag replaced by the target type; every other id is reused.
    """
    if source_entity_type not in set(composite_types):
        return entity_id
    parts = split_composite_id(entity_id)
    if parts is None:
        return entity_id
    _, group_id, sub_id = parts
    return f"{target_entity_type}:{group_id}:{sub_id}"


def dedupe_id(base_id: str, taken: Iterable[str]) -> str:
    existing = set(taken)
    if base_id not in existing:
        return base_id
    counter = 2
    while f"{base_id}-{counter}" in existing:
        counter += 1
    return f"{base_id}-{counter}"
