"""Unit tests for YAML/environment configuration loader behavior."""

from __future__ import annotations

from pathlib import Path

import pytest

from storylaunch.config import ConfigLoader, LaunchConfig, PipelinePolicy, RuntimeConfigSources


def test_config_loader_from_yaml_loads_valid_config_and_normalizes_values(
    tmp_path: Path,
) -> None:
    """YAML loader should parse valid payloads and normalize typed/blank values."""

    config_path = tmp_path / "storylaunch.yml"
    config_path.write_text(
        """
state_dir: " state "
provider: " openai "
model_chat: " gpt-4.1-mini "
model_tts: " gpt-4o-mini-tts "
model_image: " gpt-image-1 "
api_key: " test-key "
sfx_library_dir: " sounds "
max_retries: " 3 "
watchdog_seconds: 0.5
recovery_ttl_minutes: "15"
best_effort_stages: " SFX, cover "
extra:
  profile: " nightly "
""".strip(),
        encoding="utf-8",
    )

    config = ConfigLoader.from_yaml(config_path)

    assert config.state_dir == Path("state")
    assert config.provider == "openai"
    assert config.model_chat == "gpt-4.1-mini"
    assert config.model_tts == "gpt-4o-mini-tts"
    assert config.model_image == "gpt-image-1"
    assert config.api_key == "test-key"
    assert config.sfx_library_dir == Path("sounds")
    assert config.max_retries == 3
    assert config.watchdog_seconds == 0.5
    assert config.recovery_ttl_minutes == 15.0
    assert config.best_effort_stages == frozenset({"sfx", "cover"})
    assert config.extra == {"profile": "nightly"}


def test_config_loader_from_yaml_applies_defaults_for_empty_file(tmp_path: Path) -> None:
    """An empty YAML file yields the default configuration."""

    config_path = tmp_path / "empty.yml"
    config_path.write_text("", encoding="utf-8")

    config = ConfigLoader.from_yaml(config_path)

    assert config.state_dir == Path(".storylaunch")
    assert config.max_retries == 2
    assert config.policy() == PipelinePolicy()


def test_config_loader_from_yaml_rejects_unknown_keys(tmp_path: Path) -> None:
    """Unknown YAML keys are reported by name."""

    config_path = tmp_path / "bad.yml"
    config_path.write_text("input_pdf: book.pdf\nlanguage: cs\n", encoding="utf-8")

    with pytest.raises(ValueError, match=r"unsupported key\(s\): input_pdf, language\."):
        ConfigLoader.from_yaml(config_path)


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("max_retries: -1", "field `max_retries` must be a non-negative integer"),
        ("watchdog_seconds: 0", "field `watchdog_seconds` must be a positive number"),
        ("best_effort_stages: [qa]", "`qa` must always succeed"),
        ("best_effort_stages: [mastering]", "unknown stage\\(s\\): mastering"),
        ("provider: azure", "Unsupported `provider` value `azure`"),
        ("extra: [1]", "field `extra` must be a mapping/object"),
        ("- a\n- b", "must contain a top-level mapping/object"),
        ("state_dir: [unclosed", "could not be parsed"),
    ],
)
def test_config_loader_from_yaml_reports_invalid_values(
    tmp_path: Path, content: str, message: str
) -> None:
    """Invalid values fail with messages naming the offending field."""

    config_path = tmp_path / "invalid.yml"
    config_path.write_text(content, encoding="utf-8")

    with pytest.raises(ValueError, match=message):
        ConfigLoader.from_yaml(config_path)


def test_config_loader_from_env_reads_policy_and_runtime_values() -> None:
    """Environment loading parses policy values and keeps runtime keys as sources."""

    config = ConfigLoader.from_env(
        {
            "STORYLAUNCH_STATE_DIR": "/tmp/story-state",
            "STORYLAUNCH_MAX_RETRIES": "0",
            "STORYLAUNCH_WATCHDOG_SECONDS": "1.5",
            "STORYLAUNCH_RECOVERY_TTL_MINUTES": "5",
            "STORYLAUNCH_BEST_EFFORT_STAGES": "cover",
            "STORYLAUNCH_MODEL_CHAT": "env-chat",
            "OPENAI_API_KEY": " env-key ",
            "UNRELATED": "value",
        }
    )

    assert config.state_dir == Path("/tmp/story-state")
    assert config.max_retries == 0
    assert config.watchdog_seconds == 1.5
    assert config.recovery_ttl_minutes == 5.0
    assert config.best_effort_stages == frozenset({"cover"})
    assert config.model_chat == "env-chat"
    assert config.api_key == "env-key"
    assert "UNRELATED" not in config.runtime_sources.env


def test_config_loader_from_env_names_invalid_variable() -> None:
    """Invalid environment values name the variable."""

    with pytest.raises(ValueError, match="Environment variable `STORYLAUNCH_MAX_RETRIES`"):
        ConfigLoader.from_env({"STORYLAUNCH_MAX_RETRIES": "many"})


def test_runtime_config_precedence_cli_over_env_over_config() -> None:
    """Runtime values resolve CLI first, then environment, then config fields."""

    config = LaunchConfig(model_chat="config-chat", model_tts="config-tts", api_key="config-key")

    runtime = config.resolved_provider_runtime(
        RuntimeConfigSources(
            cli={"model_chat": "cli-chat"},
            env={
                "STORYLAUNCH_MODEL_CHAT": "env-chat",
                "STORYLAUNCH_MODEL_TTS": "env-tts",
                "OPENAI_API_KEY": "  ",
            },
        )
    )

    assert runtime.model_chat == "cli-chat"
    assert runtime.model_tts == "env-tts"
    assert runtime.model_image == "gpt-image-1"
    assert runtime.api_key == "config-key"
    assert "api_key" not in runtime.as_metadata()


def test_policy_validation_rejects_out_of_range_values() -> None:
    """Policy values outside their ranges are rejected."""

    with pytest.raises(ValueError, match="max_retries"):
        PipelinePolicy(max_retries=-1).validate()
    with pytest.raises(ValueError, match="recovery_ttl_minutes"):
        PipelinePolicy(recovery_ttl_minutes=0).validate()
    PipelinePolicy(best_effort_stages=frozenset({"sfx", "cover"})).validate()
