"""Anthropic Messages API provider."""
from __future__ import annotations

import logging
import os
from typing import Optional

import anthropic

from specmap import config
from specmap.ai.base import AnalysisResult, TreeMetadata
from specmap.date_utils import utc_now_iso
from specmap.errors import AiNotConfiguredError, ProviderError
from specmap.models import AiConfig, ScanDiagnostics, TokenUsage
from specmap.services.prompt_builder import build_system_prompt, build_user_prompt

logger = logging.getLogger("specmap.ai")


def _response_text(response: anthropic.types.Message) -> str:
    parts = [block.text for block in response.content if getattr(block, "type", "") == "text"]
    return "".join(parts)


class AnthropicProvider:
    """Sends the whole object tree in one request and returns the raw reply."""

    def __init__(self, ai_config: Optional[AiConfig] = None, client: Optional[anthropic.AsyncAnthropic] = None):
        self.ai_config = ai_config or AiConfig()
        self.model = self.ai_config.model or config.AI_DEFAULT_MODEL
        self.max_tokens = int(self.ai_config.maxTokens or config.AI_MAX_TOKENS)
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is not None:
            return self._client
        api_key = self.ai_config.apiKey or os.getenv(config.AI_API_KEY_ENV, "")
        if not api_key:
            raise AiNotConfiguredError("AI is not configured. Please set an API key.")
        self._client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=self.ai_config.baseUrl or config.AI_DEFAULT_BASE_URL,
            timeout=float(config.AI_TIMEOUT_SECONDS),
        )
        return self._client

    async def analyze(self, context_text: str, tree_metadata: TreeMetadata) -> AnalysisResult:
        system_prompt = build_system_prompt()
        user_prompt = build_user_prompt(
            context_text,
            directory_tree=tree_metadata.directoryTree,
            workspace_path=tree_metadata.workspacePath,
        )
        diagnostics = ScanDiagnostics(systemPrompt=system_prompt, userPrompt=user_prompt)
        client = self._get_client()

        logger.info(f"Requesting mapping analysis for {len(tree_metadata.objectIds)} objects ({self.model})")
        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
        except (anthropic.APIStatusError, anthropic.APIConnectionError) as exc:
            raise ProviderError(f"AI provider request failed: {exc}", diagnostics=diagnostics) from exc

        usage = TokenUsage(
            inputTokens=int(getattr(response.usage, "input_tokens", 0) or 0),
            outputTokens=int(getattr(response.usage, "output_tokens", 0) or 0),
            model=self.model,
            timestamp=utc_now_iso(),
        )
        if getattr(response, "stop_reason", "") == "max_tokens":
            logger.warning(f"Mapping response hit max_tokens ({self.max_tokens}); output is likely truncated")

        return AnalysisResult(
            rawResponse=_response_text(response),
            systemPrompt=system_prompt,
            userPrompt=user_prompt,
            tokenUsage=usage,
            directoryTree=tree_metadata.directoryTree or None,
        )


def build_provider(ai_config: Optional[AiConfig]) -> AnthropicProvider:
    return AnthropicProvider(ai_config)
