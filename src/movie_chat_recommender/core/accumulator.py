from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class DeltaSchema:
    """Where a provider puts the incremental text inside one stream object.

    ``path`` is walked key by key (ints index into lists). When ``event_type``
    is set, objects whose ``type`` differs carry no content.
    """

    name: str
    path: tuple[str | int, ...]
    event_type: str | None = None


ANTHROPIC_DELTA = DeltaSchema(
    name="anthropic",
    path=("delta", "text"),
    event_type="content_block_delta",
)

# OpenAI-compatible chat completions (used for Groq).
OPENAI_DELTA = DeltaSchema(
    name="openai",
    path=("choices", 0, "delta", "content"),
)


def extract_delta(obj: dict[str, Any], schema: DeltaSchema) -> str:
    if schema.event_type is not None and obj.get("type") != schema.event_type:
        return ""

    node: Any = obj
    for key in schema.path:
        if isinstance(key, int):
            if not isinstance(node, list) or not (-len(node) <= key < len(node)):
                return ""
            node = node[key]
        else:
            if not isinstance(node, dict):
                return ""
            node = node.get(key)
        if node is None:
            return ""

    return node if isinstance(node, str) else ""


class ContentAccumulator:
    """Appends content deltas, in arrival order, into the full response text."""

    def __init__(self, schema: DeltaSchema = ANTHROPIC_DELTA) -> None:
        self.schema = schema
        self._parts: list[str] = []

    def add(self, obj: dict[str, Any]) -> str | None:
        delta = extract_delta(obj, self.schema)
        if not delta:
            return None
        self._parts.append(delta)
        return delta

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def __len__(self) -> int:
        return len(self._parts)
