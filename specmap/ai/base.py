"""Contract between the mapping scanner and an AI completion provider."""
from __future__ import annotations

from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field

from specmap.models import TokenUsage


class TreeMetadata(BaseModel):
    workspacePath: str = ""
    scope: str = "full"  # full | single
    rootObjectId: Optional[str] = None
    objectIds: list[str] = Field(default_factory=list)
    directoryTree: str = ""
    candidateFiles: list[str] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """What a provider hands back for one batched request.

    ``rawResponse`` and both prompts are kept verbatim for diagnostics even
    when the response cannot be parsed. ``mappings`` is only used when a
    provider returns structured records and no raw text.
    """
    mappings: list[dict[str, Any]] = Field(default_factory=list)
    rawResponse: str = ""
    systemPrompt: str = ""
    userPrompt: str = ""
    tokenUsage: TokenUsage = Field(default_factory=TokenUsage)
    directoryTree: Optional[str] = None


class AiProvider(Protocol):
    async def analyze(self, context_text: str, tree_metadata: TreeMetadata) -> AnalysisResult:
        ...
