"""API router for AI provider settings and token usage."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from specmap import config
from specmap.db import connection
from specmap.db.repositories.scan_runs import SqliteScanRunRepository
from specmap.models import AiConfig, TokenUsageSummary
from specmap.workspace_manager import workspace_manager

ai_router = APIRouter(prefix="/api/ai", tags=["ai"])


class AiConfigView(BaseModel):
    """AI settings as returned to clients; the key itself is never echoed."""

    baseUrl: str = ""
    model: str = ""
    maxTokens: int = 0
    hasApiKey: bool = False


def _mask(ai_config: AiConfig) -> AiConfigView:
    return AiConfigView(
        baseUrl=ai_config.baseUrl or config.AI_DEFAULT_BASE_URL,
        model=ai_config.model or config.AI_DEFAULT_MODEL,
        maxTokens=int(ai_config.maxTokens or config.AI_MAX_TOKENS),
        hasApiKey=bool(ai_config.apiKey),
    )


@ai_router.get("/config", response_model=AiConfigView)
def get_ai_config():
    return _mask(workspace_manager.get_ai_config())


@ai_router.put("/config", response_model=AiConfigView)
def update_ai_config(ai_config: AiConfig):
    """Save AI settings. An empty apiKey keeps the stored key."""
    current = workspace_manager.get_ai_config()
    if not ai_config.apiKey:
        ai_config = ai_config.model_copy(update={"apiKey": current.apiKey})
    workspace_manager.save_ai_config(ai_config)
    return _mask(ai_config)


@ai_router.get("/usage", response_model=TokenUsageSummary)
async def get_token_usage(workspace_id: Optional[str] = Query(None, description="Limit to one workspace")):
    """Aggregate token usage across journaled scan runs."""
    db = await connection.get_connection()
    return await SqliteScanRunRepository(db).token_usage_summary(workspace_id)
