"""OpenAI-backed speech synthesis collaborator.

Responsibilities:
- Synthesize narration for one text and one catalog voice.
- Reuse audio for repeated (voice, text) requests within one process.
"""

from __future__ import annotations

import asyncio
from hashlib import sha256

from ..llm.openai_client import OpenAIProviderError, OpenAISpeechClient
from ..llm.rate_limiter import RateLimiter
from ..models import SynthesisResult
from .voices import profile_for


class OpenAISpeechSynthesizer:
    """Synthesize MP3 narration through OpenAI `/audio/speech`."""

    def __init__(
        self,
        model: str = "gpt-4o-mini-tts",
        api_key: str | None = None,
        rate_limiter: RateLimiter | None = None,
        response_format: str = "mp3",
    ) -> None:
        """Initialize OpenAI-backed TTS synthesizer settings."""

        self.model = model
        self.response_format = response_format
        self.client = OpenAISpeechClient(api_key=api_key, rate_limiter=rate_limiter)
        self._audio_cache: dict[str, bytes] = {}

    def _cache_key(self, text: str, voice_id: str) -> str:
        identity = f"{self.model}\n{voice_id}\n{' '.join(text.split())}"
        return sha256(identity.encode("utf-8")).hexdigest()

    def synthesize_sync(self, text: str, voice_id: str) -> SynthesisResult:
        """Return synthesized audio for `text`, blocking on the provider call."""

        profile = profile_for(voice_id)
        if profile is None:
            raise OpenAIProviderError(
                f"Unknown OpenAI voice `{voice_id}`.",
                failure_kind="invalid_voice",
            )
        cache_key = self._cache_key(text, voice_id)
        cached_audio = self._audio_cache.get(cache_key)
        if cached_audio is not None:
            return SynthesisResult(audio_bytes=cached_audio, cached=True)

        audio_bytes = self.client.synthesize_speech(
            model=self.model,
            voice=profile.provider_voice_id,
            text=text,
            response_format=self.response_format,
            speed=max(0.25, min(4.0, profile.speaking_rate)),
        )
        self._audio_cache[cache_key] = audio_bytes
        return SynthesisResult(audio_bytes=audio_bytes)

    async def synthesize(self, text: str, voice_id: str) -> SynthesisResult:
        return await asyncio.to_thread(self.synthesize_sync, text, voice_id)
