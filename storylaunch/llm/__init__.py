"""Language-model collaborators.

This package contains the OpenAI HTTP clients, prompt library, request pacing,
response caching, and the character, effect, and safety adapters built on them.
"""

from .cache import ResponseCache
from .character_extractor import OpenAICharacterExtractor
from .effect_detector import OpenAIEffectDetector
from .openai_client import (
    OpenAIChatClient,
    OpenAIImageClient,
    OpenAIProviderError,
    OpenAISpeechClient,
)
from .prompts import PromptLibrary
from .rate_limiter import RateLimiter
from .safety import OpenAISafetyReviewer

__all__ = [
    "OpenAICharacterExtractor",
    "OpenAIChatClient",
    "OpenAIEffectDetector",
    "OpenAIImageClient",
    "OpenAIProviderError",
    "OpenAISafetyReviewer",
    "OpenAISpeechClient",
    "PromptLibrary",
    "RateLimiter",
    "ResponseCache",
]
