"""Integration-test fixtures for deterministic provider behavior."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from storylaunch.llm.openai_client import (
    OpenAIChatClient,
    OpenAIImageClient,
    OpenAISpeechClient,
)

MOCK_COVER_URL = "https://img.example/integration-cover.png"

SCENE_DOCUMENT = """
session_id: lighthouse-1
scene:
  id: scene-1
  sequence_index: 0
  text: >-
    [CHAR:Mira] Rain drummed on the lighthouse roof while the lamp turned slowly
    above the bay. Mira pressed her palm against the cold glass and watched.
  mood: mysterious
  choices:
    - Climb to the lamp
    - Run to the shore
  effects:
    - key: weather.rain_light
      description: Light rain on the roof
session:
  title: The Lighthouse
  synopsis: A keeper's daughter follows a light across the bay.
  narrator_voice_id: nova
  sfx_enabled: true
characters:
  - name: Mira
    gender: female
    role: hero
"""


@pytest.fixture(autouse=True)
def _mock_openai_calls(monkeypatch: pytest.MonkeyPatch) -> None:
    """Mock OpenAI calls in integration tests to avoid network/key requirements."""

    def _mock_chat_completion(self, **kwargs: object) -> str:
        """Return one JSON object that satisfies every analysis prompt."""

        _ = self
        _ = kwargs
        return json.dumps(
            {
                "characters": [{"name": "Mira", "gender": "female", "role": "hero"}],
                "effects": [{"key": "weather.rain_light", "description": "Light rain"}],
                "scores": {"scary": 10},
                "issues": [],
                "summary": "Calm, child-friendly scene.",
            }
        )

    def _mock_synthesize_speech(self, **kwargs: object) -> bytes:
        """Return deterministic placeholder MP3 bytes for the requested voice."""

        _ = self
        return f"ID3-{kwargs['voice']}".encode("utf-8")

    def _mock_generate_image_url(self, **kwargs: object) -> str:
        """Return a fixed cover URL."""

        _ = self
        _ = kwargs
        return MOCK_COVER_URL

    monkeypatch.setattr(OpenAIChatClient, "chat_completion_text", _mock_chat_completion)
    monkeypatch.setattr(OpenAISpeechClient, "synthesize_speech", _mock_synthesize_speech)
    monkeypatch.setattr(OpenAIImageClient, "generate_image_url", _mock_generate_image_url)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop host storylaunch settings and provide a placeholder API key."""

    for key in (
        "STORYLAUNCH_STATE_DIR",
        "STORYLAUNCH_PROVIDER",
        "STORYLAUNCH_MODEL_CHAT",
        "STORYLAUNCH_MODEL_TTS",
        "STORYLAUNCH_MODEL_IMAGE",
        "STORYLAUNCH_SFX_LIBRARY_DIR",
        "STORYLAUNCH_MAX_RETRIES",
        "STORYLAUNCH_WATCHDOG_SECONDS",
        "STORYLAUNCH_RECOVERY_TTL_MINUTES",
        "STORYLAUNCH_BEST_EFFORT_STAGES",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "integration-key")


@pytest.fixture
def scene_file(tmp_path: Path) -> Path:
    """Write the integration scene document and return its path."""

    path = tmp_path / "lighthouse.yml"
    path.write_text(SCENE_DOCUMENT.strip() + "\n", encoding="utf-8")
    return path
