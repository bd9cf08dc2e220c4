"""Implementation/test classification for files reported by the AI provider."""
from __future__ import annotations

import re
from typing import Iterable

from specmap.models import RelatedFile

_TEST_NAME_RE = re.compile(r"\.(test|spec)\.", re.IGNORECASE)
_TEST_DIR_SEGMENTS = {"__tests__", "test"}


def _normalize_path(file_path: str) -> str:
    return str(file_path or "").replace("\\", "/").strip()


def classify_path(file_path: str) -> str:
    """Classify a bare path using filename and directory heuristics."""
    path = _normalize_path(file_path)
    parts = [part for part in path.split("/") if part]
    if not parts:
        return "impl"

    if _TEST_NAME_RE.search(parts[-1]):
        return "test"
    for segment in parts[:-1]:
        if segment.lower() in _TEST_DIR_SEGMENTS:
            return "test"
    return "impl"


def classify(file: RelatedFile) -> str:
    """Return ``'impl'`` or ``'test'``; an explicit ``type`` always wins."""
    if file.type in ("impl", "test"):
        return file.type
    return classify_path(file.filePath)


def split_files(files: Iterable[RelatedFile]) -> tuple[list[RelatedFile], list[RelatedFile]]:
    """Partition files into disjoint (impl, test) lists.

    A path is classified once; later duplicates of the same ``filePath`` are
    dropped. Returned files carry their resolved ``type``.
    """
    impl_files: list[RelatedFile] = []
    test_files: list[RelatedFile] = []
    seen: set[str] = set()

    for file in files:
        key = _normalize_path(file.filePath)
        if not key or key in seen:
            continue
        seen.add(key)
        kind = classify(file)
        typed = file if file.type == kind else file.model_copy(update={"type": kind})
        if kind == "test":
            test_files.append(typed)
        else:
            impl_files.append(typed)

    return impl_files, test_files
