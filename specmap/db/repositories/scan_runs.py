"""SQLite implementation of the scan run journal."""
from __future__ import annotations

from typing import Any, Optional

import aiosqlite

from specmap.date_utils import utc_now_iso
from specmap.models import ScanDiagnostics, ScanRun, TokenUsage, TokenUsageSummary


def _row_to_run(row: dict[str, Any], include_diagnostics: bool = False) -> ScanRun:
    diagnostics = None
    if include_diagnostics:
        diagnostics = ScanDiagnostics(
            systemPrompt=row.get("system_prompt") or "",
            userPrompt=row.get("user_prompt") or "",
            rawResponse=row.get("raw_response") or "",
        )
    return ScanRun(
        id=int(row["id"]),
        workspaceId=row.get("workspace_id") or "",
        kind=row.get("kind") or "full",
        objectId=row.get("object_id"),
        status=row.get("status") or "running",
        startedAt=row.get("started_at") or "",
        finishedAt=row.get("finished_at") or "",
        durationMs=int(row.get("duration_ms") or 0),
        entryCount=int(row.get("entry_count") or 0),
        changeCount=int(row.get("change_count") or 0),
        inputTokens=int(row.get("input_tokens") or 0),
        outputTokens=int(row.get("output_tokens") or 0),
        model=row.get("model") or "",
        error=row.get("error") or "",
        diagnostics=diagnostics,
    )


class SqliteScanRunRepository:
    """SQLite-backed scan run storage."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def start(self, workspace_id: str, kind: str, object_id: Optional[str] = None) -> int:
        cursor = await self.db.execute(
            """
            INSERT INTO scan_runs (workspace_id, kind, object_id, status, started_at)
            VALUES (?, ?, ?, 'running', ?)
            """,
            (workspace_id, kind, object_id, utc_now_iso()),
        )
        await self.db.commit()
        return int(cursor.lastrowid)

    async def finish(
        self,
        run_id: int,
        *,
        status: str,
        duration_ms: int,
        entry_count: int = 0,
        change_count: int = 0,
        token_usage: Optional[TokenUsage] = None,
        error: str = "",
        diagnostics: Optional[ScanDiagnostics] = None,
    ) -> None:
        usage = token_usage or TokenUsage()
        diag = diagnostics or ScanDiagnostics()
        await self.db.execute(
            """
            UPDATE scan_runs SET
                status = ?,
                finished_at = ?,
                duration_ms = ?,
                entry_count = ?,
                change_count = ?,
                input_tokens = ?,
                output_tokens = ?,
                model = ?,
                error = ?,
                system_prompt = ?,
                user_prompt = ?,
                raw_response = ?
            WHERE id = ?
            """,
            (
                status,
                utc_now_iso(),
                max(0, int(duration_ms)),
                int(entry_count),
                int(change_count),
                int(usage.inputTokens),
                int(usage.outputTokens),
                usage.model,
                error,
                diag.systemPrompt,
                diag.userPrompt,
                diag.rawResponse,
                run_id,
            ),
        )
        await self.db.commit()

    async def get(self, run_id: int) -> Optional[ScanRun]:
        async with self.db.execute("SELECT * FROM scan_runs WHERE id = ?", (run_id,)) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return _row_to_run(dict(row), include_diagnostics=True)

    async def list_recent(self, workspace_id: str, limit: int = 50) -> list[ScanRun]:
        async with self.db.execute(
            """
            SELECT * FROM scan_runs
            WHERE workspace_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (workspace_id, max(1, int(limit))),
        ) as cur:
            rows = await cur.fetchall()
        return [_row_to_run(dict(row)) for row in rows]

    async def token_usage_summary(self, workspace_id: Optional[str] = None) -> TokenUsageSummary:
        query = """
            SELECT model, COUNT(*) AS runs,
                   SUM(input_tokens) AS input_tokens,
                   SUM(output_tokens) AS output_tokens
            FROM scan_runs
            WHERE (input_tokens > 0 OR output_tokens > 0)
        """
        params: tuple[Any, ...] = ()
        if workspace_id:
            query += " AND workspace_id = ?"
            params = (workspace_id,)
        query += " GROUP BY model ORDER BY model"

        async with self.db.execute(query, params) as cur:
            rows = await cur.fetchall()

        summary = TokenUsageSummary()
        for row in rows:
            data = dict(row)
            model = data.get("model") or "unknown"
            input_tokens = int(data.get("input_tokens") or 0)
            output_tokens = int(data.get("output_tokens") or 0)
            summary.runs += int(data.get("runs") or 0)
            summary.inputTokens += input_tokens
            summary.outputTokens += output_tokens
            summary.byModel[model] = TokenUsage(inputTokens=input_tokens, outputTokens=output_tokens, model=model)
        return summary
