"""Prompt and context rendering for the mapping scan."""
from __future__ import annotations

from typing import Optional

from specmap.models import FeatureNode

_SYSTEM_PROMPT = """You are a code analyst. You will receive a Spec Object Tree that describes the intended objects/features of a software project, together with the project's source file tree. Your task is to determine, for each object, which source files implement it and which files test it.

Objects are listed children first, so a parent's analysis can build on its children.

For each object, determine:
1. status: one of "implemented", "partial", "not_found", or "unknown"
2. summary: a concise description of how the object is implemented (or why it is not found)
3. relatedFiles: the source files related to the object

Respond ONLY with a JSON array, one element per object:
[
  {
    "objectId": "<id exactly as given in the tree>",
    "objectTitle": "<title>",
    "status": "implemented" | "partial" | "not_found" | "unknown",
    "summary": "<analysis summary>",
    "relatedFiles": [
      {
        "filePath": "<path relative to the project root>",
        "description": "<how this file relates to the object>",
        "type": "impl" | "test",
        "lineRange": { "start": <number>, "end": <number> }
      }
    ]
  }
]

Only reference files that appear in the source tree. Do NOT include any text outside the JSON array."""


def _outline_numbers(nodes: list[FeatureNode]) -> dict[str, str]:
    ids = {node.id for node in nodes}
    local_index: dict[str, int] = {}
    counters: dict[Optional[str], int] = {}
    parent_of: dict[str, Optional[str]] = {}

    for node in nodes:
        parent = node.parentId if node.parentId in ids else None
        parent_of[node.id] = parent
        counters[parent] = counters.get(parent, 0) + 1
        local_index[node.id] = counters[parent]

    numbers: dict[str, str] = {}
    for node in nodes:
        chain: list[str] = []
        current: Optional[str] = node.id
        while current is not None and current not in numbers:
            chain.append(current)
            current = parent_of[current]
        prefix = numbers[current] if current is not None else ""
        for object_id in reversed(chain):
            local = str(local_index[object_id])
            prefix = f"{prefix}.{local}" if prefix else local
            numbers[object_id] = prefix
    return numbers


def build_context(nodes: list[FeatureNode]) -> str:
    """Render walked nodes as a numbered outline keyed by object id.

    Lines keep the order of ``nodes`` (the bottom-up walk) while numbers
    reflect the hierarchy, e.g. ``1.1``, ``1.2``, ``1``, ``2``.
    """
    numbers = _outline_numbers(nodes)
    lines: list[str] = []
    for node in nodes:
        number = numbers[node.id]
        indent = "  " * number.count(".")
        title = " ".join(str(node.title or "").split())
        lines.append(f"{indent}{number} {title}  (id: {node.id})")
    return "\n".join(lines)


def build_system_prompt() -> str:
    return _SYSTEM_PROMPT


def build_user_prompt(
    context_text: str,
    directory_tree: str = "",
    workspace_path: str = "",
) -> str:
    sections = [
        "Please analyse the following Spec Object Tree and map every object to its implementation and test files.",
    ]
    if workspace_path:
        sections.append(f"Project workspace: {workspace_path}")
    sections.append(f"## Object Tree\n\n{context_text}")
    if directory_tree:
        sections.append(f"## Source Tree\n\n{directory_tree}")
    sections.append("Respond with the JSON array for every object listed above.")
    return "\n\n".join(sections)
