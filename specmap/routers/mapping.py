"""Feature mapping API router."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from specmap import config
from specmap.ai import build_provider
from specmap.db import connection
from specmap.db.repositories.scan_runs import SqliteScanRunRepository
from specmap.errors import (
    AiNotConfiguredError,
    EmptyFeatureTreeError,
    MalformedResponse,
    MappingScanError,
    ObjectNotFoundError,
    ProviderError,
    ScanCancelledError,
    ScanInProgressError,
)
from specmap.mapping_store import MappingStore
from specmap.models import FeatureMappingIndex, MappingEntry, ScanProgressEvent, ScanRun, ScanStatus, Workspace
from specmap.services.mapping_scanner import MappingScanner, get_mapping_scanner, peek_mapping_scanner, workspace_root
from specmap.workspace_manager import workspace_manager

logger = logging.getLogger("specmap.api")

mapping_router = APIRouter(prefix="/api/mapping", tags=["mapping"])

KEEPALIVE_SECONDS = 15.0


def _get_active_workspace() -> Workspace:
    workspace = workspace_manager.get_active_workspace()
    if not workspace:
        raise HTTPException(status_code=400, detail="No active workspace")
    return workspace


async def _get_scanner(workspace: Workspace) -> MappingScanner:
    db = await connection.get_connection()
    provider = build_provider(workspace_manager.get_ai_config())
    return get_mapping_scanner(workspace, provider, SqliteScanRunRepository(db))


def _http_error(exc: MappingScanError) -> HTTPException:
    detail: dict = {"error": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, (EmptyFeatureTreeError, AiNotConfiguredError)):
        status_code = 400
    elif isinstance(exc, ObjectNotFoundError):
        status_code = 404
    elif isinstance(exc, (ScanInProgressError, ScanCancelledError)):
        status_code = 409
    elif isinstance(exc, (ProviderError, MalformedResponse)):
        status_code = 502
        raw = getattr(exc, "raw_text", "") or (exc.diagnostics.rawResponse if exc.diagnostics else "")
        detail["rawResponse"] = raw
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=detail)


@mapping_router.get("", response_model=Optional[FeatureMappingIndex])
def load_mapping():
    """Return the persisted mapping index for the active workspace, or null."""
    workspace = _get_active_workspace()
    return MappingStore(workspace_root(workspace)).load()


@mapping_router.post("/scan", response_model=FeatureMappingIndex)
async def scan_mapping():
    """Run a full scan of the active workspace's feature tree."""
    workspace = _get_active_workspace()
    scanner = await _get_scanner(workspace)
    try:
        return await scanner.scan_all()
    except MappingScanError as exc:
        raise _http_error(exc) from exc


@mapping_router.post("/objects/{object_id}/scan", response_model=MappingEntry)
async def scan_single_object(object_id: str):
    """Rescan one object and its descendants."""
    workspace = _get_active_workspace()
    scanner = await _get_scanner(workspace)
    try:
        return await scanner.scan_one(object_id)
    except MappingScanError as exc:
        raise _http_error(exc) from exc


@mapping_router.get("/status", response_model=ScanStatus)
def get_scan_status():
    workspace = _get_active_workspace()
    scanner = peek_mapping_scanner(workspace.id)
    if scanner is None:
        return ScanStatus(workspaceId=workspace.id)
    return scanner.status


@mapping_router.post("/scan/cancel")
def cancel_scan():
    """Request cancellation of the running scan, if any."""
    workspace = _get_active_workspace()
    scanner = peek_mapping_scanner(workspace.id)
    cancelled = bool(scanner and scanner.cancel())
    return {"workspaceId": workspace.id, "cancelled": cancelled}


@mapping_router.get("/runs", response_model=list[ScanRun])
async def list_scan_runs(limit: int = Query(config.SCAN_RUN_HISTORY_LIMIT, ge=1, le=500)):
    workspace = _get_active_workspace()
    db = await connection.get_connection()
    return await SqliteScanRunRepository(db).list_recent(workspace.id, limit=limit)


@mapping_router.get("/runs/{run_id}", response_model=ScanRun)
async def get_scan_run(run_id: int):
    """Return one journaled run including its prompts and raw response."""
    db = await connection.get_connection()
    run = await SqliteScanRunRepository(db).get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Scan run {run_id} not found")
    return run


def _enqueue(queue: asyncio.Queue, event: ScanProgressEvent) -> None:
    # Drop the oldest event when the client falls behind.
    if queue.full():
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
    queue.put_nowait(event)


def _format_sse(event: ScanProgressEvent) -> str:
    return f"event: progress\ndata: {json.dumps(event.model_dump())}\n\n"


@mapping_router.get("/progress")
async def stream_scan_progress(request: Request):
    """Server-sent stream of scan progress events. Events are not replayed."""
    workspace = _get_active_workspace()
    scanner = await _get_scanner(workspace)
    queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, config.PROGRESS_QUEUE_SIZE))
    unsubscribe = scanner.on_scan_progress(lambda event: _enqueue(queue, event))

    async def event_stream():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield _format_sse(event)
        finally:
            unsubscribe()
            logger.info(f"Progress stream closed for workspace {workspace.id}")

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
