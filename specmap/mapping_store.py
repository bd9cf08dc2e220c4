"""Persistence for the per-workspace feature mapping index.

Layout:
    <workspace>/.spec/mapping.json   aggregated FeatureMappingIndex

Writers always produce a complete snapshot in a temp file next to the target
and swap it in with ``os.replace`` so readers never see a partial document.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from specmap import config
from specmap.errors import PersistenceError
from specmap.models import FeatureMappingIndex, MappingChangeEntry, MappingEntry

logger = logging.getLogger("specmap.store")


def mapping_index_path(workspace_root: Path) -> Path:
    return Path(workspace_root) / config.SPEC_DIR / config.MAPPING_FILE


def _write_atomic(target: Path, text: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class MappingStore:
    """Reads and atomically replaces one workspace's mapping index."""

    def __init__(self, workspace_root: Path):
        self.workspace_root = Path(workspace_root)
        self.path = mapping_index_path(self.workspace_root)

    def load(self) -> Optional[FeatureMappingIndex]:
        """Return the persisted index, or None when absent or unreadable."""
        if not self.path.exists():
            return None
        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to read mapping index {self.path}: {e}")
            return None
        if not content.strip():
            return None
        try:
            return FeatureMappingIndex.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Ignoring unreadable mapping index {self.path}: {e}")
            return None

    def replace(self, index: FeatureMappingIndex) -> None:
        """Swap in a complete new snapshot."""
        payload = json.dumps(index.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"
        try:
            _write_atomic(self.path, payload)
        except OSError as e:
            raise PersistenceError(f"Failed to write mapping index {self.path}: {e}") from e
        logger.info(f"Saved mapping index {self.path} ({len(index.entries)} entries)")

    def merge_entries(
        self,
        base: Optional[FeatureMappingIndex],
        entries: list[MappingEntry],
        changes: list[MappingChangeEntry],
        scanned_at: str,
        **updates,
    ) -> FeatureMappingIndex:
        """Return ``base`` with the given entries and changelog rows swapped in by id.

        Entries and rows for other objects are carried over unchanged; ids not
        yet present are appended.
        """
        if base is None:
            base = FeatureMappingIndex(version=config.MAPPING_INDEX_VERSION, scannedAt=scanned_at)

        merged_entries = list(base.entries)
        position = {entry.objectId: idx for idx, entry in enumerate(merged_entries)}
        for entry in entries:
            if entry.objectId in position:
                merged_entries[position[entry.objectId]] = entry
            else:
                position[entry.objectId] = len(merged_entries)
                merged_entries.append(entry)

        merged_changes = list(base.changelog)
        row_position = {row.objectId: idx for idx, row in enumerate(merged_changes)}
        for row in changes:
            if row.objectId in row_position:
                merged_changes[row_position[row.objectId]] = row
            else:
                row_position[row.objectId] = len(merged_changes)
                merged_changes.append(row)

        return base.model_copy(
            update={
                "entries": merged_entries,
                "changelog": merged_changes,
                "scannedAt": scanned_at,
                **updates,
            }
        )

    def update_entries(
        self,
        entries: list[MappingEntry],
        changes: list[MappingChangeEntry],
        scanned_at: str,
        **updates,
    ) -> FeatureMappingIndex:
        """Read-modify-write a partial update; returns the persisted index."""
        merged = self.merge_entries(self.load(), entries, changes, scanned_at, **updates)
        self.replace(merged)
        return merged
