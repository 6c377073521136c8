from meeting_analyst.services.llm.base import (
    GroundedResponse,
    GroundingChunk,
    GroundingMetadata,
    GroundingSegment,
    GroundingSupport,
    LLMProvider,
    LLMProviderError,
    supports_grounding,
)
from meeting_analyst.services.llm.gemini_provider import GeminiProvider
from meeting_analyst.services.llm.openai_provider import OpenAIProvider

__all__ = [
    "GroundedResponse",
    "GroundingChunk",
    "GroundingMetadata",
    "GroundingSegment",
    "GroundingSupport",
    "LLMProvider",
    "LLMProviderError",
    "supports_grounding",
    "GeminiProvider",
    "OpenAIProvider",
]
