"""Changelog computation between two mapping snapshots."""
from __future__ import annotations

from typing import Iterable, Optional

from specmap.models import MappingChangeEntry, MappingEntry, RelatedFile

CHANGE_TYPES = ("added", "changed", "removed", "unchanged")


def _all_files(entry: MappingEntry) -> list[RelatedFile]:
    return [*entry.implFiles, *entry.testFiles]


def diff_entry(
    previous: Optional[MappingEntry],
    current: Optional[MappingEntry],
) -> MappingChangeEntry:
    """Classify one object's change. At least one side must be present.

    Files are compared by ``filePath`` only; line ranges and descriptions
    are allowed to drift.
    """
    if previous is None and current is None:
        raise ValueError("diff_entry needs a previous or a current entry")

    if previous is None:
        return MappingChangeEntry(
            objectId=current.objectId,
            objectTitle=current.objectTitle,
            changeType="added",
            changeSummary="added",
            addedFiles=_all_files(current),
            removedFiles=[],
            currentStatus=current.status,
        )

    if current is None:
        return MappingChangeEntry(
            objectId=previous.objectId,
            objectTitle=previous.objectTitle,
            changeType="removed",
            changeSummary="removed",
            addedFiles=[],
            removedFiles=_all_files(previous),
            previousStatus=previous.status,
        )

    previous_files = _all_files(previous)
    current_files = _all_files(current)
    previous_paths = {file.filePath for file in previous_files}
    current_paths = {file.filePath for file in current_files}
    added = [file for file in current_files if file.filePath not in previous_paths]
    removed = [file for file in previous_files if file.filePath not in current_paths]

    status_changed = previous.status != current.status
    files_changed = previous_paths != current_paths

    if not status_changed and not files_changed:
        return MappingChangeEntry(
            objectId=current.objectId,
            objectTitle=current.objectTitle,
            changeType="unchanged",
            changeSummary="",
            addedFiles=[],
            removedFiles=[],
            currentStatus=current.status,
            previousStatus=previous.status,
        )

    parts: list[str] = []
    if status_changed:
        parts.append(f"{previous.status} -> {current.status}")
    if files_changed:
        parts.append("files changed")

    return MappingChangeEntry(
        objectId=current.objectId,
        objectTitle=current.objectTitle,
        changeType="changed",
        changeSummary="; ".join(parts),
        addedFiles=added,
        removedFiles=removed,
        currentStatus=current.status,
        previousStatus=previous.status,
    )


def diff(
    previous: Iterable[MappingEntry],
    current: Iterable[MappingEntry],
) -> list[MappingChangeEntry]:
    """One changelog row per object id seen in either snapshot.

    Rows follow ``current`` order, then objects only in ``previous`` in their
    original order.
    """
    previous_by_id: dict[str, MappingEntry] = {}
    for entry in previous:
        previous_by_id.setdefault(entry.objectId, entry)

    changelog: list[MappingChangeEntry] = []
    processed: set[str] = set()
    for entry in current:
        if entry.objectId in processed:
            continue
        processed.add(entry.objectId)
        changelog.append(diff_entry(previous_by_id.get(entry.objectId), entry))

    for object_id, entry in previous_by_id.items():
        if object_id not in processed:
            changelog.append(diff_entry(entry, None))

    return changelog


def summarize_changes(changelog: Iterable[MappingChangeEntry]) -> dict[str, int]:
    counts = {change_type: 0 for change_type in CHANGE_TYPES}
    for row in changelog:
        counts[row.changeType] = counts.get(row.changeType, 0) + 1
    return counts
