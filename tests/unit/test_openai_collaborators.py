"""Unit tests for OpenAI-backed character, effect, safety, speech, and cover adapters."""

from __future__ import annotations

import json

import pytest

from storylaunch.art.cover_artist import OpenAICoverArtist
from storylaunch.llm.cache import ResponseCache
from storylaunch.llm.character_extractor import OpenAICharacterExtractor
from storylaunch.llm.effect_detector import MAX_DETECTED_EFFECTS, OpenAIEffectDetector
from storylaunch.llm.openai_client import (
    OpenAIChatClient,
    OpenAIImageClient,
    OpenAIProviderError,
    OpenAISpeechClient,
)
from storylaunch.llm.rate_limiter import RateLimiter
from storylaunch.llm.safety import DEFAULT_INTENSITY_LIMIT, OpenAISafetyReviewer, resolve_limits
from storylaunch.models import ScoreReport
from storylaunch.tts.synthesizer import OpenAISpeechSynthesizer
from storylaunch.tts.voices import openai_voice_pool, profile_for


def _patch_chat(monkeypatch: pytest.MonkeyPatch, replies: list[str]) -> list[dict[str, object]]:
    """Serve chat replies in order and record every request."""

    requests_seen: list[dict[str, object]] = []

    def _mock_chat_completion(self, **kwargs: object) -> str:
        """Return the next scripted reply."""

        _ = self
        requests_seen.append(kwargs)
        return replies[min(len(requests_seen), len(replies)) - 1]

    monkeypatch.setattr(OpenAIChatClient, "chat_completion_text", _mock_chat_completion)
    return requests_seen


def test_character_extractor_normalizes_and_dedupes(monkeypatch: pytest.MonkeyPatch) -> None:
    """Extraction drops the narrator and duplicates and normalizes gender and role."""

    reply = json.dumps(
        {
            "characters": [
                {"name": "Mira", "gender": "Female", "role": "hero", "description": "Keeper."},
                {"name": "mira", "gender": "female"},
                {"name": "Narrator", "gender": "neutral"},
                {"name": "Tobin", "gender": "unknown", "role": " "},
                {"gender": "male"},
            ]
        }
    )
    requests_seen = _patch_chat(monkeypatch, [reply])
    extractor = OpenAICharacterExtractor(api_key="key", rate_limiter=RateLimiter(0.0))

    entities = extractor.extract_sync("Mira and Tobin sail at dawn.")

    assert [(item.name, item.gender, item.role) for item in entities] == [
        ("Mira", "female", "hero"),
        ("Tobin", None, "character"),
    ]
    assert requests_seen[0]["response_format_json"] is True
    assert "Mira and Tobin sail at dawn." in str(requests_seen[0]["user_prompt"])


def test_character_extractor_reuses_cached_reply(monkeypatch: pytest.MonkeyPatch) -> None:
    """Repeated extraction of whitespace-equivalent text hits the response cache."""

    requests_seen = _patch_chat(monkeypatch, ['{"characters": [{"name": "Ada"}]}'])
    cache = ResponseCache()
    extractor = OpenAICharacterExtractor(
        api_key="key", response_cache=cache, rate_limiter=RateLimiter(0.0)
    )

    extractor.extract_sync("Ada  waits.")
    extractor.extract_sync("Ada waits.")

    assert len(requests_seen) == 1
    assert cache.hits == 1


def test_character_extractor_rejects_non_list_reply(monkeypatch: pytest.MonkeyPatch) -> None:
    """A `characters` field that is not a list is a provider error."""

    _patch_chat(monkeypatch, ['{"characters": "Mira"}'])
    extractor = OpenAICharacterExtractor(api_key="key", rate_limiter=RateLimiter(0.0))

    with pytest.raises(OpenAIProviderError, match="must be a list"):
        extractor.extract_sync("Mira waits.")


@pytest.mark.asyncio
async def test_effect_detector_normalizes_keys_and_caps_results(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Detection normalizes keys, clamps volume, drops bad keys, and caps the list."""

    effects = [
        {"key": "Weather.Rain Light", "timing": "beginning", "volume": 2, "loop": True},
        {"key": "weather.rain_light", "timing": "end"},
        {"key": "doors/creak"},
        {"key": "sea.waves", "timing": "sometime", "volume": "loud"},
    ] + [{"key": f"extra.sound_{index}"} for index in range(6)]
    _patch_chat(monkeypatch, [json.dumps({"effects": effects})])
    detector = OpenAIEffectDetector(api_key="key", rate_limiter=RateLimiter(0.0))

    detected = await detector.detect("Rain and waves.", {"scene_id": "scene-1"})

    assert len(detected) == MAX_DETECTED_EFFECTS
    assert detected[0].key == "weather.rain_light"
    assert detected[0].timing == "beginning"
    assert detected[0].volume == 1.0
    assert detected[0].loop is True
    assert detected[1].key == "sea.waves"
    assert detected[1].timing == "middle"
    assert detected[1].volume == 0.3
    assert all("/" not in effect.key for effect in detected)


def test_resolve_limits_fills_default_for_unset_dimensions() -> None:
    """Dimensions without a configured limit use the default limit."""

    limits = resolve_limits({"intensity_limits": {"violence": 20, "scary": 140}})

    assert limits["violence"] == 20
    assert limits["scary"] == 100
    assert limits["gore"] == DEFAULT_INTENSITY_LIMIT


def test_safety_reviewer_records_limit_breaches_before_reported_issues(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Scores above the audience limits produce findings and fail the limit check."""

    reply = json.dumps(
        {
            "scores": {"violence": 80, "scary": 20.4, "gore": True},
            "issues": ["sword fight in paragraph two", " "],
            "summary": " Action heavy. ",
        }
    )
    _patch_chat(monkeypatch, [reply])
    reviewer = OpenAISafetyReviewer(api_key="key", rate_limiter=RateLimiter(0.0))

    report = reviewer.analyze_sync(
        "The knights fought.", {"audience": "children", "intensity_limits": {"violence": 40}}
    )

    assert report.within_limits is False
    assert report.scores["violence"] == 80
    assert report.scores["scary"] == 20
    assert report.scores["gore"] == 0
    assert report.issues == (
        "violence 80/100 exceeds limit 40/100: soften physical conflict and reduce "
        "descriptions of harm",
        "sword fight in paragraph two",
    )
    assert report.summary == "Action heavy."


def test_safety_reviewer_adjust_prompt_lists_findings(monkeypatch: pytest.MonkeyPatch) -> None:
    """The rewrite request names every finding of the report."""

    requests_seen = _patch_chat(monkeypatch, ["The knights argued politely."])
    reviewer = OpenAISafetyReviewer(api_key="key", rate_limiter=RateLimiter(0.0))
    report = ScoreReport(
        scores={"violence": 80},
        within_limits=False,
        issues=("violence 80/100 exceeds limit 40/100: soften physical conflict",),
    )

    adjusted = reviewer.adjust_sync("The knights fought.", report)

    assert adjusted == "The knights argued politely."
    assert "- violence 80/100 exceeds limit 40/100" in str(requests_seen[0]["user_prompt"])


def test_safety_reviewer_requires_scores_object(monkeypatch: pytest.MonkeyPatch) -> None:
    """A reply without a scores object is a provider error."""

    _patch_chat(monkeypatch, ['{"scores": [1, 2]}'])
    reviewer = OpenAISafetyReviewer(api_key="key", rate_limiter=RateLimiter(0.0))

    with pytest.raises(OpenAIProviderError, match="`scores` must be an object"):
        reviewer.analyze_sync("Calm sea.", {})


@pytest.mark.asyncio
async def test_speech_synthesizer_caches_repeated_requests(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """The same voice and text are synthesized once per process."""

    calls: list[dict[str, object]] = []

    def _mock_synthesize_speech(self, **kwargs: object) -> bytes:
        """Return deterministic audio bytes."""

        _ = self
        calls.append(kwargs)
        return b"ID3-audio"

    monkeypatch.setattr(OpenAISpeechClient, "synthesize_speech", _mock_synthesize_speech)
    synthesizer = OpenAISpeechSynthesizer(api_key="key", rate_limiter=RateLimiter(0.0))

    first = await synthesizer.synthesize("Hello there.", "nova")
    second = await synthesizer.synthesize("Hello   there.", "nova")

    assert first.audio_bytes == b"ID3-audio"
    assert first.cached is False
    assert second.cached is True
    assert len(calls) == 1
    assert calls[0]["voice"] == "nova"
    assert calls[0]["response_format"] == "mp3"


def test_speech_synthesizer_rejects_unknown_voice() -> None:
    """Voices outside the catalog fail before any request."""

    synthesizer = OpenAISpeechSynthesizer(api_key="key", rate_limiter=RateLimiter(0.0))

    with pytest.raises(OpenAIProviderError, match="Unknown OpenAI voice") as exc_info:
        synthesizer.synthesize_sync("Hello.", "robot")

    assert exc_info.value.failure_kind == "invalid_voice"


def test_voice_catalog_exposes_gendered_pool() -> None:
    """Catalog profiles convert into casting pool records."""

    pool = {voice.voice_id: voice for voice in openai_voice_pool()}

    assert pool["nova"].gender == "female"
    assert pool["onyx"].gender == "male"
    assert pool["alloy"].gender is None
    assert profile_for("coral") is not None
    assert profile_for("missing") is None


def test_cover_artist_adds_style_only_when_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    """The art style is appended once and the portrait size is requested."""

    prompts: list[dict[str, object]] = []

    def _mock_generate_image_url(self, **kwargs: object) -> str:
        """Return a fixed image URL."""

        _ = self
        prompts.append(kwargs)
        return "https://img.example/cover.png"

    monkeypatch.setattr(OpenAIImageClient, "generate_image_url", _mock_generate_image_url)
    artist = OpenAICoverArtist(api_key="key", rate_limiter=RateLimiter(0.0))

    assert artist.generate_sync("A lighthouse at night.", "watercolor") == (
        "https://img.example/cover.png"
    )
    artist.generate_sync("A lighthouse.\nArt style: watercolor.", "watercolor")

    assert prompts[0]["prompt"] == "A lighthouse at night.\nArt style: watercolor."
    assert prompts[0]["size"] == "1024x1536"
    assert str(prompts[1]["prompt"]).count("watercolor") == 1
