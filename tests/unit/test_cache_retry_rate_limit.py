"""Unit tests for response caching, provider retries, and request pacing."""

from __future__ import annotations

import json

import pytest
import requests

from storylaunch.llm.cache import ResponseCache
from storylaunch.llm.openai_client import (
    OpenAIChatClient,
    OpenAIImageClient,
    OpenAIProviderError,
    OpenAISpeechClient,
    decode_json_reply,
)
from storylaunch.llm.rate_limiter import RateLimiter


class _MockRequestsResponse:
    """Minimal requests response mock used by retry/rate-limit tests."""

    def __init__(self, *, payload: bytes, status_code: int = 200) -> None:
        """Initialize response with payload bytes and status code."""

        self.content = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        """Raise HTTP error when status code indicates failure."""

        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)


class _RecordingRateLimiter:
    """Rate limiter test double that records acquire keys."""

    def __init__(self) -> None:
        """Initialize recording storage."""

        self.keys: list[str] = []

    def acquire(self, key: str) -> None:
        """Record acquisition keys without sleeping."""

        self.keys.append(key)


def _chat_payload(content: str) -> bytes:
    return json.dumps({"choices": [{"message": {"content": content}}]}).encode("utf-8")


def test_response_cache_key_is_deterministic_and_normalized() -> None:
    """Cache key should include provider/model/operation and normalize input identity."""

    key_one = ResponseCache.make_key(
        provider="OpenAI",
        model="gpt-4.1-mini",
        operation="detect_effects",
        input_identity={"text": "Rain   on the roof", "scene_id": "scene-1"},
    )
    key_two = ResponseCache.make_key(
        provider="openai",
        model="gpt-4.1-mini",
        operation="DETECT_EFFECTS",
        input_identity={"scene_id": "scene-1", "text": "Rain on the roof"},
    )

    assert key_one == key_two
    assert key_one.startswith("response:openai:gpt-4.1-mini:detect_effects:")


def test_response_cache_tracks_hits_and_misses() -> None:
    """Cache get/set should keep hit/miss telemetry counters deterministic."""

    cache = ResponseCache()
    assert cache.get("missing-key") is None
    cache.set("known-key", "value")
    assert cache.get("known-key") == "value"

    assert cache.hits == 1
    assert cache.misses == 1
    assert cache.hit_rate() == 0.5


def test_response_cache_evicts_least_recently_used_entry() -> None:
    """A bounded cache drops the entry that was read least recently."""

    cache = ResponseCache(max_entries=2)
    cache.set("a", "1")
    cache.set("b", "2")
    assert cache.get("a") == "1"
    cache.set("c", "3")

    assert cache.get("b") is None
    assert cache.get("a") == "1"
    assert cache.get("c") == "3"


def test_rate_limiter_enforces_minimum_interval_per_key() -> None:
    """Rate limiter should sleep before repeated calls for the same key."""

    state = {"now": 0.0}
    waits: list[float] = []

    def _clock() -> float:
        """Return mutable fake monotonic clock value."""

        return state["now"]

    def _sleep(seconds: float) -> None:
        """Advance fake time and record requested wait duration."""

        waits.append(seconds)
        state["now"] += seconds

    limiter = RateLimiter(min_interval_seconds=0.5, clock=_clock, sleeper=_sleep)
    limiter.acquire("openai:chat:gpt-4.1-mini")
    limiter.acquire("openai:tts:gpt-4o-mini-tts")
    limiter.acquire("openai:chat:gpt-4.1-mini")

    assert waits == [0.5]


def test_openai_client_retries_transient_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    """OpenAI client should retry timeout failures within bounded retry budget."""

    calls = {"count": 0}
    sleeps: list[float] = []

    def _mock_post(_url: str, **_kwargs: object) -> _MockRequestsResponse:
        """Fail once with timeout and then return success payload."""

        calls["count"] += 1
        if calls["count"] == 1:
            raise requests.Timeout("socket timed out")
        return _MockRequestsResponse(payload=_chat_payload("ok"))

    monkeypatch.setattr("storylaunch.llm.openai_client.requests.post", _mock_post)
    monkeypatch.setattr("storylaunch.llm.openai_client.time.sleep", sleeps.append)

    client = OpenAIChatClient(
        api_key="key",
        max_retries=2,
        retry_backoff_base_seconds=0.2,
        retry_backoff_max_seconds=1.0,
        rate_limiter=RateLimiter(min_interval_seconds=0.0),
    )

    result = client.chat_completion_text(
        model="gpt-4.1-mini",
        system_prompt="system",
        user_prompt="user",
    )

    assert result == "ok"
    assert calls["count"] == 2
    assert sleeps == [0.2]
    assert client.retry_attempt_count == 1


def test_openai_client_backoff_is_capped_and_budget_bounded(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Server errors retry with doubling delays capped at the maximum, then raise."""

    calls = {"count": 0}
    sleeps: list[float] = []

    def _mock_post(_url: str, **_kwargs: object) -> _MockRequestsResponse:
        """Always return a server error."""

        calls["count"] += 1
        return _MockRequestsResponse(status_code=503, payload=b'{"error":{"message":"busy"}}')

    monkeypatch.setattr("storylaunch.llm.openai_client.requests.post", _mock_post)
    monkeypatch.setattr("storylaunch.llm.openai_client.time.sleep", sleeps.append)

    client = OpenAIChatClient(
        api_key="key",
        max_retries=3,
        retry_backoff_base_seconds=0.5,
        retry_backoff_max_seconds=1.5,
        rate_limiter=RateLimiter(min_interval_seconds=0.0),
    )
    with pytest.raises(OpenAIProviderError) as exc_info:
        client.chat_completion_text(model="gpt-4.1-mini", system_prompt="s", user_prompt="u")

    assert exc_info.value.failure_kind == "server_error"
    assert exc_info.value.status_code == 503
    assert calls["count"] == 4
    assert sleeps == [0.5, 1.0, 1.5]


def test_openai_client_does_not_retry_permanent_failures(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """OpenAI client should not retry invalid API key failures."""

    calls = {"count": 0}

    def _mock_post(_url: str, **_kwargs: object) -> _MockRequestsResponse:
        """Return a deterministic authentication failure response."""

        calls["count"] += 1
        return _MockRequestsResponse(
            status_code=401,
            payload=b'{"error":{"message":"invalid key sk-abcdefghijklmnop"}}',
        )

    monkeypatch.setattr("storylaunch.llm.openai_client.requests.post", _mock_post)

    client = OpenAIChatClient(api_key="key", max_retries=3, rate_limiter=RateLimiter(0.0))
    with pytest.raises(OpenAIProviderError, match="authentication failed") as exc_info:
        client.chat_completion_text(
            model="gpt-4.1-mini",
            system_prompt="system",
            user_prompt="user",
        )

    assert "sk-abcdefghijklmnop" not in str(exc_info.value)
    assert "[redacted-key]" in str(exc_info.value)
    assert calls["count"] == 1
    assert client.retry_attempt_count == 0


def test_openai_client_requires_api_key() -> None:
    """Requests are refused before any network call when the key is missing."""

    client = OpenAISpeechClient(api_key="  ", rate_limiter=RateLimiter(0.0))

    with pytest.raises(OpenAIProviderError, match="Missing OpenAI API key"):
        client.synthesize_speech(model="gpt-4o-mini-tts", voice="nova", text="Hello.")


def test_openai_clients_enforce_rate_limiter_per_endpoint_scope(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Chat, speech, and image clients should acquire scoped rate limit tokens."""

    limiter = _RecordingRateLimiter()

    def _mock_post(url: str, **_kwargs: object) -> _MockRequestsResponse:
        """Return deterministic payloads for each endpoint."""

        if url.endswith("/chat/completions"):
            return _MockRequestsResponse(payload=_chat_payload("ok"))
        if url.endswith("/images/generations"):
            return _MockRequestsResponse(
                payload=json.dumps({"data": [{"url": "https://img.example/a.png"}]}).encode()
            )
        return _MockRequestsResponse(payload=b"ID3")

    monkeypatch.setattr("storylaunch.llm.openai_client.requests.post", _mock_post)

    OpenAIChatClient(api_key="key", rate_limiter=limiter).chat_completion_text(
        model="gpt-4.1-mini", system_prompt="system", user_prompt="user"
    )
    OpenAISpeechClient(api_key="key", rate_limiter=limiter).synthesize_speech(
        model="gpt-4o-mini-tts", voice="nova", text="Hello."
    )
    OpenAIImageClient(api_key="key", rate_limiter=limiter).generate_image_url(
        model="gpt-image-1", prompt="A lighthouse"
    )

    assert limiter.keys == [
        "openai:chat:gpt-4.1-mini",
        "openai:tts:gpt-4o-mini-tts",
        "openai:image:gpt-image-1",
    ]


def test_image_client_falls_back_to_base64_data_url(monkeypatch: pytest.MonkeyPatch) -> None:
    """Image responses without a URL are returned as a PNG data URL."""

    def _mock_post(_url: str, **_kwargs: object) -> _MockRequestsResponse:
        """Return a base64-only image payload."""

        return _MockRequestsResponse(payload=json.dumps({"data": [{"b64_json": "iVBOR"}]}).encode())

    monkeypatch.setattr("storylaunch.llm.openai_client.requests.post", _mock_post)

    client = OpenAIImageClient(api_key="key", rate_limiter=RateLimiter(0.0))

    assert client.generate_image_url(model="gpt-image-1", prompt="p") == (
        "data:image/png;base64,iVBOR"
    )


def test_speech_client_rejects_empty_audio(monkeypatch: pytest.MonkeyPatch) -> None:
    """An empty speech body is a provider error."""

    def _mock_post(_url: str, **_kwargs: object) -> _MockRequestsResponse:
        """Return an empty payload."""

        return _MockRequestsResponse(payload=b"")

    monkeypatch.setattr("storylaunch.llm.openai_client.requests.post", _mock_post)

    client = OpenAISpeechClient(api_key="key", rate_limiter=RateLimiter(0.0))
    with pytest.raises(OpenAIProviderError, match="speech response is empty"):
        client.synthesize_speech(model="gpt-4o-mini-tts", voice="nova", text="Hello.")


def test_decode_json_reply_accepts_fenced_objects_only() -> None:
    """JSON replies may be wrapped in code fences but must hold an object."""

    assert decode_json_reply('```json\n{"effects": []}\n```') == {"effects": []}
    assert decode_json_reply(' {"a": 1} ') == {"a": 1}
    with pytest.raises(OpenAIProviderError, match="must be a JSON object"):
        decode_json_reply("[1, 2]")
    with pytest.raises(OpenAIProviderError, match="not valid JSON"):
        decode_json_reply("effects: none")
