"""AI provider contract and implementations."""

from specmap.ai.base import AiProvider, AnalysisResult, TreeMetadata
from specmap.ai.anthropic_provider import AnthropicProvider, build_provider

__all__ = [
    "AiProvider",
    "AnalysisResult",
    "TreeMetadata",
    "AnthropicProvider",
    "build_provider",
]
