import types
import unittest
from unittest.mock import AsyncMock, patch

import anthropic
import httpx

from specmap.ai import AnthropicProvider, TreeMetadata
from specmap.errors import AiNotConfiguredError, ProviderError
from specmap.models import AiConfig


def _client(create: AsyncMock) -> types.SimpleNamespace:
    return types.SimpleNamespace(messages=types.SimpleNamespace(create=create))


def _message(text: str, stop_reason: str = "end_turn") -> types.SimpleNamespace:
    return types.SimpleNamespace(
        content=[types.SimpleNamespace(type="text", text=text)],
        usage=types.SimpleNamespace(input_tokens=321, output_tokens=45),
        stop_reason=stop_reason,
    )


class AnthropicProviderTests(unittest.IsolatedAsyncioTestCase):
    def _metadata(self) -> TreeMetadata:
        return TreeMetadata(workspacePath="/work/repo", objectIds=["F1"], directoryTree="repo/\n└── src/")

    async def test_analyze_returns_raw_text_prompts_and_usage(self) -> None:
        create = AsyncMock(return_value=_message('[{"objectId": "F1"}]'))
        provider = AnthropicProvider(AiConfig(model="claude-test", maxTokens=2048), client=_client(create))

        result = await provider.analyze("1 Login  (id: F1)", self._metadata())

        self.assertEqual(result.rawResponse, '[{"objectId": "F1"}]')
        self.assertEqual(result.tokenUsage.inputTokens, 321)
        self.assertEqual(result.tokenUsage.model, "claude-test")
        self.assertIn("1 Login  (id: F1)", result.userPrompt)
        self.assertIn("JSON array", result.systemPrompt)
        self.assertEqual(result.directoryTree, "repo/\n└── src/")

        kwargs = create.await_args.kwargs
        self.assertEqual(kwargs["model"], "claude-test")
        self.assertEqual(kwargs["max_tokens"], 2048)
        self.assertEqual(kwargs["messages"][0]["role"], "user")

    async def test_truncated_output_is_logged(self) -> None:
        create = AsyncMock(return_value=_message("[", stop_reason="max_tokens"))
        provider = AnthropicProvider(AiConfig(), client=_client(create))
        with self.assertLogs("specmap.ai", level="WARNING"):
            await provider.analyze("1 Login  (id: F1)", self._metadata())

    async def test_sdk_errors_become_provider_errors(self) -> None:
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        create = AsyncMock(side_effect=anthropic.APIConnectionError(request=request))
        provider = AnthropicProvider(AiConfig(), client=_client(create))

        with self.assertRaises(ProviderError) as ctx:
            await provider.analyze("1 Login  (id: F1)", self._metadata())
        self.assertIn("1 Login", ctx.exception.diagnostics.userPrompt)

    async def test_missing_key_is_not_configured(self) -> None:
        provider = AnthropicProvider(AiConfig())
        with patch.dict("os.environ", {"ANTHROPIC_API_KEY": ""}):
            with self.assertRaises(AiNotConfiguredError):
                await provider.analyze("1 Login  (id: F1)", self._metadata())


if __name__ == "__main__":
    unittest.main()
