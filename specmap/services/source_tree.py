"""Workspace source tree provider.

Enumerates the files the AI may reference and renders them as an ASCII tree
for the prompt. Honors built-in excludes plus the workspace ``.gitignore``.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import pathspec

from specmap import config

logger = logging.getLogger("specmap.source_tree")

BUILTIN_EXCLUDES = (
    ".git/", "node_modules/", ".next/", "dist/", "out/", "build/", ".cache/",
    ".turbo/", ".vscode/", ".idea/", "__pycache__/", "coverage/", ".nyc_output/",
    ".venv/", f"{config.SPEC_DIR}/",
)
INCLUDE_EXTS = {
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs",
    ".vue", ".svelte",
    ".json", ".yaml", ".yml", ".toml",
    ".css", ".scss", ".less",
    ".html", ".md",
    ".py", ".rs", ".go", ".java", ".kt",
    ".sh", ".sql",
}


class _IgnoreMatcher:
    def __init__(self, project_root: Path):
        self.project_root = project_root
        self._spec: pathspec.PathSpec | None = None

        gitignore = project_root / ".gitignore"
        if gitignore.exists():
            try:
                lines = gitignore.read_text(encoding="utf-8", errors="ignore").splitlines()
            except OSError as e:
                logger.warning(f"Could not read {gitignore}: {e}")
                lines = []
            patterns = [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]
            if patterns:
                self._spec = pathspec.PathSpec.from_lines("gitwildmatch", patterns)

    def should_ignore(self, rel_path: str, is_dir: bool = False) -> bool:
        rel = (rel_path or "").replace("\\", "/").strip("/")
        if not rel:
            return False

        lowered = rel.lower()
        for blocked in BUILTIN_EXCLUDES:
            token = blocked.strip("/").lower()
            if lowered == token or lowered.startswith(f"{token}/"):
                return True

        if self._spec is None:
            return False
        if self._spec.match_file(rel):
            return True
        return is_dir and self._spec.match_file(f"{rel}/")


@dataclass
class SourceTreeSnapshot:
    files: list[str] = field(default_factory=list)
    truncated: bool = False
    rendered: str = ""


class SourceTreeProvider:
    """Lists candidate source files under a workspace root."""

    def __init__(
        self,
        project_root: Path,
        max_depth: int = config.SOURCE_TREE_MAX_DEPTH,
        max_files: int = config.SOURCE_TREE_MAX_FILES,
    ):
        self.project_root = Path(project_root).expanduser().resolve(strict=False)
        self.max_depth = max(0, int(max_depth))
        self.max_files = max(1, int(max_files))

    def snapshot(self) -> SourceTreeSnapshot:
        matcher = _IgnoreMatcher(self.project_root)
        snapshot = SourceTreeSnapshot()
        lines = [f"{self.project_root.name}/"]

        def walk(directory: Path, rel_dir: str, prefix: str, depth: int) -> None:
            if depth > self.max_depth or snapshot.truncated:
                return
            entries = self._list_dir(directory, rel_dir, matcher)
            for idx, (entry, rel, is_dir) in enumerate(entries):
                if snapshot.truncated:
                    return
                is_last = idx == len(entries) - 1
                connector = "└── " if is_last else "├── "
                if is_dir:
                    lines.append(f"{prefix}{connector}{entry.name}/")
                    walk(entry, rel, prefix + ("    " if is_last else "│   "), depth + 1)
                    continue
                if len(snapshot.files) >= self.max_files:
                    snapshot.truncated = True
                    lines.append(f"{prefix}{connector}... (truncated, {self.max_files}+ files)")
                    return
                snapshot.files.append(rel)
                lines.append(f"{prefix}{connector}{entry.name}")

        walk(self.project_root, "", "", 0)
        if snapshot.truncated:
            lines.append(f"\n(Showing first {self.max_files} source files, more exist)")
        snapshot.rendered = "\n".join(lines)
        logger.info(f"Scanned {len(snapshot.files)} source files in {self.project_root}")
        return snapshot

    def _list_dir(
        self,
        directory: Path,
        rel_dir: str,
        matcher: _IgnoreMatcher,
    ) -> list[tuple[Path, str, bool]]:
        try:
            children = list(os.scandir(directory))
        except OSError as e:
            logger.debug(f"Skipping unreadable directory {directory}: {e}")
            return []

        result: list[tuple[Path, str, bool]] = []
        for child in children:
            rel = f"{rel_dir}/{child.name}" if rel_dir else child.name
            try:
                is_dir = child.is_dir(follow_symlinks=False)
            except OSError:
                continue
            if is_dir:
                if child.name.startswith(".") or matcher.should_ignore(rel, is_dir=True):
                    continue
            else:
                if PurePosixPath(child.name).suffix.lower() not in INCLUDE_EXTS:
                    continue
                if matcher.should_ignore(rel):
                    continue
            result.append((Path(child.path), rel, is_dir))

        result.sort(key=lambda item: (not item[2], item[0].name.lower()))
        return result
