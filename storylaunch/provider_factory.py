"""Provider factory helpers for stage collaborators.

Responsibilities:
- Resolve provider identifiers to concrete collaborator implementations.
- Assemble the `StageServices` bundle for one scene document.

Notes:
- Only `openai` is implemented at the moment.
"""

from __future__ import annotations

from .art.cover_artist import OpenAICoverArtist
from .catalog import CatalogEntityService, LibraryEffectService
from .config import LaunchConfig, RuntimeConfigSources
from .io.effect_library import EffectLibrary
from .io.scene_loader import SceneDocument
from .io.storage import DurableStore
from .llm.cache import ResponseCache
from .llm.character_extractor import OpenAICharacterExtractor
from .llm.effect_detector import OpenAIEffectDetector
from .llm.rate_limiter import RateLimiter
from .llm.safety import OpenAISafetyReviewer
from .services import StageServices
from .tts.synthesizer import OpenAISpeechSynthesizer
from .tts.voices import openai_voice_pool


class ProviderFactory:
    """Factory for provider-backed collaborators used by the pipeline."""

    @staticmethod
    def _require_supported(provider_id: str, role: str) -> None:
        if provider_id != "openai":
            raise ValueError(f"Unsupported {role} provider `{provider_id}`.")

    @staticmethod
    def create_character_extractor(
        provider_id: str,
        model: str,
        api_key: str | None = None,
        response_cache: ResponseCache | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> OpenAICharacterExtractor:
        """Create a character extractor for a configured provider identifier."""

        ProviderFactory._require_supported(provider_id, "character extraction")
        return OpenAICharacterExtractor(
            model=model,
            provider_id=provider_id,
            api_key=api_key,
            response_cache=response_cache,
            rate_limiter=rate_limiter,
        )

    @staticmethod
    def create_effect_detector(
        provider_id: str,
        model: str,
        api_key: str | None = None,
        response_cache: ResponseCache | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> OpenAIEffectDetector:
        """Create an effect detector for a configured provider identifier."""

        ProviderFactory._require_supported(provider_id, "effect detection")
        return OpenAIEffectDetector(
            model=model,
            provider_id=provider_id,
            api_key=api_key,
            response_cache=response_cache,
            rate_limiter=rate_limiter,
        )

    @staticmethod
    def create_safety_reviewer(
        provider_id: str,
        model: str,
        api_key: str | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> OpenAISafetyReviewer:
        """Create a safety reviewer for a configured provider identifier."""

        ProviderFactory._require_supported(provider_id, "safety review")
        return OpenAISafetyReviewer(model=model, api_key=api_key, rate_limiter=rate_limiter)

    @staticmethod
    def create_synthesizer(
        provider_id: str,
        model: str,
        api_key: str | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> OpenAISpeechSynthesizer:
        """Create a speech synthesizer for a configured provider identifier."""

        ProviderFactory._require_supported(provider_id, "TTS")
        return OpenAISpeechSynthesizer(model=model, api_key=api_key, rate_limiter=rate_limiter)

    @staticmethod
    def create_cover_artist(
        provider_id: str,
        model: str,
        api_key: str | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> OpenAICoverArtist:
        """Create a cover artist for a configured provider identifier."""

        ProviderFactory._require_supported(provider_id, "image")
        return OpenAICoverArtist(model=model, api_key=api_key, rate_limiter=rate_limiter)

    @staticmethod
    def create_services(
        config: LaunchConfig,
        document: SceneDocument,
        store: DurableStore,
        sources: RuntimeConfigSources | None = None,
    ) -> StageServices:
        """Assemble every collaborator for one scene document."""

        runtime = config.resolved_provider_runtime(sources)
        cache = ResponseCache()
        limiter = RateLimiter()
        extractor = ProviderFactory.create_character_extractor(
            runtime.provider, runtime.model_chat, runtime.api_key, cache, limiter
        )
        detector = ProviderFactory.create_effect_detector(
            runtime.provider, runtime.model_chat, runtime.api_key, cache, limiter
        )
        return StageServices(
            entities=CatalogEntityService(
                store=store,
                extractor=extractor,
                voice_pool=openai_voice_pool,
                declared_characters=document.characters,
            ),
            effects=LibraryEffectService(detector, EffectLibrary(config.sfx_library_dir)),
            assets=ProviderFactory.create_cover_artist(
                runtime.provider, runtime.model_image, runtime.api_key, limiter
            ),
            safety=ProviderFactory.create_safety_reviewer(
                runtime.provider, runtime.model_chat, runtime.api_key, limiter
            ),
            synthesis=ProviderFactory.create_synthesizer(
                runtime.provider, runtime.model_tts, runtime.api_key, limiter
            ),
        )
