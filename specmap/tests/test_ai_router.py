import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

import aiosqlite

from specmap import config
from specmap.db.repositories.scan_runs import SqliteScanRunRepository
from specmap.db.sqlite_migrations import run_migrations
from specmap.models import AiConfig, TokenUsage
from specmap.routers import ai as ai_router
from specmap.workspace_manager import WorkspaceManager


class AiRouterTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.manager = WorkspaceManager(Path(self.tmpdir.name) / "workspaces.json")
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.patches = [
            patch.object(ai_router, "workspace_manager", self.manager),
            patch.object(ai_router.connection, "get_connection", AsyncMock(return_value=self.db)),
        ]
        for p in self.patches:
            p.start()

    async def asyncTearDown(self) -> None:
        for p in reversed(self.patches):
            p.stop()
        await self.db.close()
        self.tmpdir.cleanup()

    async def test_config_defaults_and_masking(self) -> None:
        view = ai_router.get_ai_config()
        self.assertEqual(view.model, config.AI_DEFAULT_MODEL)
        self.assertEqual(view.maxTokens, config.AI_MAX_TOKENS)
        self.assertFalse(view.hasApiKey)

        saved = ai_router.update_ai_config(AiConfig(apiKey="sk-secret", model="claude-test", maxTokens=1024))
        self.assertTrue(saved.hasApiKey)
        self.assertNotIn("sk-secret", saved.model_dump_json())

    async def test_empty_key_keeps_stored_key(self) -> None:
        ai_router.update_ai_config(AiConfig(apiKey="sk-secret"))
        ai_router.update_ai_config(AiConfig(model="claude-other"))
        stored = self.manager.get_ai_config()
        self.assertEqual(stored.apiKey, "sk-secret")
        self.assertEqual(stored.model, "claude-other")

    async def test_usage_aggregates_runs(self) -> None:
        repo = SqliteScanRunRepository(self.db)
        for workspace_id, tokens in (("ws-1", 100), ("ws-1", 50), ("ws-2", 7)):
            run_id = await repo.start(workspace_id, "full")
            await repo.finish(
                run_id,
                status="completed",
                duration_ms=10,
                token_usage=TokenUsage(inputTokens=tokens, outputTokens=tokens // 2, model="claude-test"),
            )

        everything = await ai_router.get_token_usage(workspace_id=None)
        self.assertEqual(everything.runs, 3)
        self.assertEqual(everything.inputTokens, 157)

        scoped = await ai_router.get_token_usage(workspace_id="ws-1")
        self.assertEqual(scoped.inputTokens, 150)
        self.assertEqual(scoped.outputTokens, 75)
        self.assertEqual(scoped.byModel["claude-test"].inputTokens, 150)


if __name__ == "__main__":
    unittest.main()
