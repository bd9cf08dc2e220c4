"""Read-only access to the workspace object tree.

Objects are owned by the object editor; the scanner only reads the index at
``<workspace>/.spec/specs.json``::

    {"specs": [{"id": "...", "parentId": null, "title": "..."}, ...]}
"""
from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from specmap import config
from specmap.models import ObjectIndexEntry
from specmap.services.tree_walker import FeatureTree

logger = logging.getLogger("specmap.objects")


def object_index_path(workspace_root: Path) -> Path:
    return Path(workspace_root) / config.SPEC_DIR / config.OBJECT_INDEX_FILE


class ObjectTreeStore:
    """Loads the feature tree for one workspace."""

    def __init__(self, workspace_root: Path):
        self.workspace_root = Path(workspace_root)
        self.path = object_index_path(self.workspace_root)

    def load_entries(self) -> list[ObjectIndexEntry]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read object index {self.path}: {e}")
            return []

        rows = data.get("specs", []) if isinstance(data, dict) else []
        entries: list[ObjectIndexEntry] = []
        for row in rows if isinstance(rows, list) else []:
            try:
                entries.append(ObjectIndexEntry.model_validate(row))
            except ValidationError as e:
                logger.error(f"Skipping invalid object index row: {e}")
        return entries

    def load_tree(self) -> FeatureTree:
        return FeatureTree.from_index(self.load_entries())
