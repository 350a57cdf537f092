"""Label helpers shared by both fetch strategies."""

from __future__ import annotations

from typing import Any, Iterable

from ..config import QueueConfig
from ..schemas import RecordType


def label_names(raw_labels: Iterable[Any] | None) -> list[str]:
    """Extract label names from REST (`[{name}]`) or GraphQL (`{nodes: [{name}]}`) shapes."""
    if raw_labels is None:
        return []
    if isinstance(raw_labels, dict):
        raw_labels = raw_labels.get("nodes") or []
    names: list[str] = []
    for label in raw_labels:
        if isinstance(label, str):
            names.append(label)
        elif isinstance(label, dict) and isinstance(label.get("name"), str):
            names.append(label["name"])
    return names


def resolve_record_type(names: Iterable[str], config: QueueConfig) -> RecordType:
    """Return the type of the first recognised label, or `UNKNOWN`."""
    for name in names:
        if name == config.plugin_label:
            return RecordType.PLUGIN
        if name == config.theme_label:
            return RecordType.THEME
    return RecordType.UNKNOWN
