"""Feature-to-code mapping scan orchestration.

A scan walks the feature tree bottom-up, sends the whole (sub)tree to the AI
provider in one request, normalizes the reply into mapping entries, diffs them
against the persisted index and commits the new snapshot atomically.

Runs move through ``idle -> running -> completed | error``. Only one run per
workspace may be in flight; a second request is rejected with
``ScanInProgressError``. Nothing is written unless the whole pipeline succeeds.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import aiosqlite

from specmap import config
from specmap.ai.base import AiProvider, AnalysisResult, TreeMetadata
from specmap.date_utils import utc_now_iso
from specmap.db.repositories.scan_runs import SqliteScanRunRepository
from specmap.errors import (
    EmptyFeatureTreeError,
    MalformedResponse,
    MappingScanError,
    ProviderError,
    ScanCancelledError,
    ScanInProgressError,
)
from specmap.mapping_store import MappingStore
from specmap.models import (
    FeatureMappingIndex,
    FeatureNode,
    MappingEntry,
    ScanDiagnostics,
    ScanProgressEvent,
    ScanStatus,
    TokenUsage,
    Workspace,
)
from specmap.object_tree import ObjectTreeStore
from specmap.observability import record_scan, record_token_usage, start_span
from specmap.parsers.mapping_response import normalize, normalize_records
from specmap.services.change_detector import diff, diff_entry, summarize_changes
from specmap.services.prompt_builder import build_context
from specmap.services.source_tree import SourceTreeProvider
from specmap.services.tree_walker import FeatureTree

logger = logging.getLogger("specmap.scanner")

ProgressCallback = Callable[[ScanProgressEvent], None]
T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation flag checked between scan steps."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ScanCancelledError("Scan was cancelled before it completed")


@dataclass
class _RunContext:
    token: CancellationToken
    diagnostics: ScanDiagnostics = field(default_factory=ScanDiagnostics)
    token_usage: Optional[TokenUsage] = None
    entry_count: int = 0
    changes: dict[str, int] = field(default_factory=dict)

    @property
    def change_count(self) -> int:
        return sum(count for change_type, count in self.changes.items() if change_type != "unchanged")


def _order_by_walk(entries: list[MappingEntry], nodes: list[FeatureNode]) -> list[MappingEntry]:
    position = {node.id: idx for idx, node in enumerate(nodes)}
    return sorted(entries, key=lambda entry: position.get(entry.objectId, len(position)))


class MappingScanner:
    """Runs full and single-object scans for one workspace."""

    def __init__(
        self,
        workspace_id: str,
        workspace_root: Path,
        provider: AiProvider,
        *,
        store: Optional[MappingStore] = None,
        tree_store: Optional[ObjectTreeStore] = None,
        source_tree: Optional[SourceTreeProvider] = None,
        run_repository: Optional[SqliteScanRunRepository] = None,
    ):
        self.workspace_id = workspace_id
        self.workspace_root = Path(workspace_root)
        self.provider = provider
        self.store = store or MappingStore(self.workspace_root)
        self.tree_store = tree_store or ObjectTreeStore(self.workspace_root)
        self.source_tree = source_tree
        self.run_repository = run_repository
        self.status = ScanStatus(workspaceId=workspace_id)
        self.last_diagnostics: Optional[ScanDiagnostics] = None
        self._lock = asyncio.Lock()
        self._observer: Optional[ProgressCallback] = None
        self._active_token: Optional[CancellationToken] = None

    # ── Public surface ────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def bind(
        self,
        provider: Optional[AiProvider] = None,
        run_repository: Optional[SqliteScanRunRepository] = None,
    ) -> None:
        """Swap collaborators between runs; ignored while a run is active."""
        if self.is_running:
            return
        if provider is not None:
            self.provider = provider
        if run_repository is not None:
            self.run_repository = run_repository

    def on_scan_progress(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register the single progress observer; returns an unsubscribe function."""
        self._observer = callback

        def unsubscribe() -> None:
            if self._observer is callback:
                self._observer = None

        return unsubscribe

    def load_mapping(self) -> Optional[FeatureMappingIndex]:
        return self.store.load()

    def cancel(self) -> bool:
        if self._active_token is None:
            return False
        self._active_token.cancel()
        logger.info(f"Cancellation requested for workspace {self.workspace_id}")
        return True

    async def scan_all(self, cancel_token: Optional[CancellationToken] = None) -> FeatureMappingIndex:
        return await self._run("full", None, cancel_token, self._scan_all)

    async def scan_one(self, object_id: str, cancel_token: Optional[CancellationToken] = None) -> MappingEntry:
        return await self._run(
            "single",
            object_id,
            cancel_token,
            lambda ctx: self._scan_one(object_id, ctx),
        )

    # ── Run lifecycle ─────────────────────────────────────────────

    async def _run(
        self,
        kind: str,
        object_id: Optional[str],
        cancel_token: Optional[CancellationToken],
        body: Callable[[_RunContext], Awaitable[T]],
    ) -> T:
        if self._lock.locked():
            raise ScanInProgressError(f"A scan is already running for workspace {self.workspace_id}")

        async with self._lock:
            ctx = _RunContext(token=cancel_token or CancellationToken())
            self._active_token = ctx.token
            self.status = ScanStatus(
                workspaceId=self.workspace_id,
                state="running",
                kind=kind,
                objectId=object_id,
                startedAt=utc_now_iso(),
            )
            run_id = await self._journal_start(kind, object_id)
            started = time.monotonic()
            logger.info(f"Starting {kind} mapping scan for workspace {self.workspace_id}" + (f" (object {object_id})" if object_id else ""))

            try:
                with start_span("specmap.scan", {"scan.kind": kind, "workspace.id": self.workspace_id, "object.id": object_id}):
                    result = await body(ctx)
            except (Exception, asyncio.CancelledError) as exc:
                duration_ms = int((time.monotonic() - started) * 1000)
                if isinstance(exc, MappingScanError):
                    if exc.diagnostics is None:
                        exc.diagnostics = ctx.diagnostics
                    else:
                        ctx.diagnostics = exc.diagnostics
                cancelled = isinstance(exc, (ScanCancelledError, asyncio.CancelledError))
                outcome = "cancelled" if cancelled else "error"
                message = str(exc) or "Scan task was cancelled"
                self.last_diagnostics = ctx.diagnostics
                self.status = self.status.model_copy(
                    update={"state": "error", "error": message, "finishedAt": utc_now_iso()}
                )
                logger.error(f"{kind.capitalize()} mapping scan failed for workspace {self.workspace_id}: {message}")
                logger.debug(
                    f"Scan diagnostics\n--- system prompt ---\n{ctx.diagnostics.systemPrompt}"
                    f"\n--- user prompt ---\n{ctx.diagnostics.userPrompt}"
                    f"\n--- raw response ---\n{ctx.diagnostics.rawResponse}"
                )
                if kind == "single" and object_id:
                    self._emit_failure(object_id)
                await self._journal_finish(run_id, outcome, duration_ms, ctx, error=message)
                record_scan(kind, outcome, duration_ms, workspace_id=self.workspace_id)
                raise
            finally:
                self._active_token = None

            duration_ms = int((time.monotonic() - started) * 1000)
            self.last_diagnostics = ctx.diagnostics
            self.status = self.status.model_copy(update={"state": "completed", "finishedAt": utc_now_iso()})
            await self._journal_finish(run_id, "completed", duration_ms, ctx)
            record_scan(kind, "completed", duration_ms, workspace_id=self.workspace_id)
            logger.info(
                f"{kind.capitalize()} mapping scan complete for workspace {self.workspace_id} "
                f"({ctx.entry_count} entries, "
                f"{ctx.changes.get('added', 0)} added, {ctx.changes.get('changed', 0)} changed, "
                f"{ctx.changes.get('removed', 0)} removed in {duration_ms}ms)"
            )
            return result

    # ── Pipelines ─────────────────────────────────────────────────

    async def _scan_all(self, ctx: _RunContext) -> FeatureMappingIndex:
        tree = self.tree_store.load_tree()
        if len(tree) == 0:
            raise EmptyFeatureTreeError("No objects in the feature tree. Add objects first.")

        previous = self.store.load()
        nodes = tree.walk()
        result = await self._analyze(nodes, ctx, scope="full", root_id=None)

        entries = _order_by_walk(self._normalize(result, tree), nodes)
        self._emit_attribution(nodes, entries)

        changelog = diff(previous.entries if previous else [], entries)
        ctx.token.raise_if_cancelled()

        index = FeatureMappingIndex(
            version=config.MAPPING_INDEX_VERSION,
            scannedAt=utc_now_iso(),
            entries=entries,
            changelog=changelog,
            tokenUsage=result.tokenUsage,
            directoryTree=result.directoryTree,
        )
        self.store.replace(index)
        ctx.entry_count = len(entries)
        ctx.changes = summarize_changes(changelog)
        return index

    async def _scan_one(self, object_id: str, ctx: _RunContext) -> MappingEntry:
        tree = self.tree_store.load_tree()
        target = tree.get(object_id)
        nodes = tree.walk(object_id)
        self._emit(
            ScanProgressEvent(
                objectId=target.id,
                objectTitle=target.title,
                status="scanning",
                current=0,
                total=len(nodes),
            )
        )

        previous = self.store.load()
        result = await self._analyze(nodes, ctx, scope="single", root_id=object_id)

        scope_ids = tree.subtree_ids(object_id)
        in_scope: list[MappingEntry] = []
        for entry in self._normalize(result, tree):
            if entry.objectId in scope_ids:
                in_scope.append(entry)
            else:
                logger.warning(f"Ignoring mapping for {entry.objectId}: outside the rescanned subtree of {object_id}")
        in_scope = _order_by_walk(in_scope, nodes)

        updated = next((entry for entry in in_scope if entry.objectId == object_id), None)
        if updated is None:
            raise MalformedResponse(
                f"AI response did not include a mapping for object {object_id}",
                raw_text=result.rawResponse,
            )
        self._emit_attribution(nodes, in_scope)

        previous_by_id = {entry.objectId: entry for entry in previous.entries} if previous else {}
        changes = [diff_entry(previous_by_id.get(entry.objectId), entry) for entry in in_scope]
        ctx.token.raise_if_cancelled()

        self.store.update_entries(in_scope, changes, scanned_at=utc_now_iso(), tokenUsage=result.tokenUsage)
        ctx.entry_count = len(in_scope)
        ctx.changes = summarize_changes(changes)
        return updated

    async def _analyze(
        self,
        nodes: list[FeatureNode],
        ctx: _RunContext,
        *,
        scope: str,
        root_id: Optional[str],
    ) -> AnalysisResult:
        ctx.token.raise_if_cancelled()
        context_text = build_context(nodes)
        metadata = TreeMetadata(
            workspacePath=str(self.workspace_root),
            scope=scope,
            rootObjectId=root_id,
            objectIds=[node.id for node in nodes],
        )
        if self.source_tree is not None:
            snapshot = self.source_tree.snapshot()
            metadata.directoryTree = snapshot.rendered
            metadata.candidateFiles = snapshot.files

        try:
            result = await self.provider.analyze(context_text, metadata)
        except MappingScanError:
            raise
        except Exception as exc:
            raise ProviderError(f"AI provider failed: {exc}") from exc

        ctx.diagnostics = ScanDiagnostics(
            systemPrompt=result.systemPrompt,
            userPrompt=result.userPrompt,
            rawResponse=result.rawResponse,
        )
        ctx.token_usage = result.tokenUsage
        record_token_usage(
            workspace_id=self.workspace_id,
            model=result.tokenUsage.model,
            token_input=result.tokenUsage.inputTokens,
            token_output=result.tokenUsage.outputTokens,
        )
        logger.info(
            f"AI analysis complete: {result.tokenUsage.inputTokens} input / "
            f"{result.tokenUsage.outputTokens} output tokens"
        )
        ctx.token.raise_if_cancelled()
        return result

    def _normalize(self, result: AnalysisResult, tree: FeatureTree) -> list[MappingEntry]:
        if not result.rawResponse.strip() and result.mappings:
            return normalize_records(result.mappings, tree=tree)
        return normalize(result.rawResponse, tree=tree)

    # ── Progress ──────────────────────────────────────────────────

    def _emit(self, event: ScanProgressEvent) -> None:
        observer = self._observer
        if observer is None:
            return
        try:
            observer(event)
        except Exception:
            logger.exception(f"Scan progress observer failed for workspace {self.workspace_id}")

    def _emit_attribution(self, nodes: list[FeatureNode], entries: list[MappingEntry]) -> None:
        attributed = {entry.objectId for entry in entries}
        total = len(nodes)
        for idx, node in enumerate(nodes, start=1):
            self._emit(
                ScanProgressEvent(
                    objectId=node.id,
                    objectTitle=node.title,
                    status="done" if node.id in attributed else "error",
                    current=idx,
                    total=total,
                )
            )

    def _emit_failure(self, object_id: str) -> None:
        title = ""
        try:
            title = self.tree_store.load_tree().get(object_id).title
        except MappingScanError:
            pass
        self._emit(ScanProgressEvent(objectId=object_id, objectTitle=title, status="error", current=0, total=1))

    # ── Journal ───────────────────────────────────────────────────

    async def _journal_start(self, kind: str, object_id: Optional[str]) -> Optional[int]:
        if self.run_repository is None:
            return None
        try:
            return await self.run_repository.start(self.workspace_id, kind, object_id)
        except aiosqlite.Error as e:
            logger.warning(f"Could not journal scan start: {e}")
            return None

    async def _journal_finish(
        self,
        run_id: Optional[int],
        status: str,
        duration_ms: int,
        ctx: _RunContext,
        error: str = "",
    ) -> None:
        if self.run_repository is None or run_id is None:
            return
        try:
            await self.run_repository.finish(
                run_id,
                status=status,
                duration_ms=duration_ms,
                entry_count=ctx.entry_count,
                change_count=ctx.change_count,
                token_usage=ctx.token_usage,
                error=error,
                diagnostics=ctx.diagnostics,
            )
        except aiosqlite.Error as e:
            logger.warning(f"Could not journal scan result: {e}")


# ── Per-workspace registry ────────────────────────────────────────

_SCANNERS: dict[str, MappingScanner] = {}


def workspace_root(workspace: Workspace) -> Path:
    """Absolute root of a workspace, with ``~`` expanded."""
    return Path(workspace.path).expanduser().resolve(strict=False)


def get_mapping_scanner(
    workspace: Workspace,
    provider: AiProvider,
    run_repository: Optional[SqliteScanRunRepository] = None,
) -> MappingScanner:
    """Return the workspace's scanner, creating it on first use."""
    root = workspace_root(workspace)
    scanner = _SCANNERS.get(workspace.id)
    if scanner is None or (scanner.workspace_root != root and not scanner.is_running):
        scanner = MappingScanner(
            workspace.id,
            root,
            provider,
            source_tree=SourceTreeProvider(root),
            run_repository=run_repository,
        )
        _SCANNERS[workspace.id] = scanner
    else:
        scanner.bind(provider=provider, run_repository=run_repository)
    return scanner


def peek_mapping_scanner(workspace_id: str) -> Optional[MappingScanner]:
    return _SCANNERS.get(workspace_id)


def clear_mapping_scanners() -> None:
    _SCANNERS.clear()
