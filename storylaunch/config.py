"""Configuration model and loaders for storylaunch.

Responsibilities:
- Define runtime configuration and the pipeline policy as typed dataclasses.
- Provide deterministic precedence resolution for provider/model settings.
- Provide loader entry points for file- and environment-based configuration.

Key types:
- `LaunchConfig`: normalized runtime settings for pipeline runs.
- `PipelinePolicy`: retry, watchdog, recovery, and best-effort settings for the core.
- `ProviderRuntimeConfig`: resolved provider/model runtime values.
- `RuntimeConfigSources`: optional value sources for precedence resolution.
- `ConfigLoader`: static construction helpers for `LaunchConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from .models.stages import DEGRADABLE_STAGES, STAGE_ORDER
from .parsing import (
    normalize_optional_string,
    parse_non_negative_int,
    parse_positive_float,
    parse_token_set,
)


_DEFAULT_CHAT_MODEL = "gpt-4.1-mini"
_DEFAULT_TTS_MODEL = "gpt-4o-mini-tts"
_DEFAULT_IMAGE_MODEL = "gpt-image-1"
_DEFAULT_STATE_DIR = Path(".storylaunch")
_SUPPORTED_PROVIDER_IDS = frozenset({"openai"})


@dataclass(frozen=True, slots=True)
class PipelinePolicy:
    """Settings that shape orchestration behavior.

    Attributes:
        max_retries: Out-of-band retries allowed per stage.
        watchdog_seconds: Delay before the ready payload is resent once.
        recovery_ttl_minutes: Maximum snapshot age eligible for recovery.
        best_effort_stages: Stages whose failure degrades instead of failing the run.
    """

    max_retries: int = 2
    watchdog_seconds: float = 2.0
    recovery_ttl_minutes: float = 10.0
    best_effort_stages: frozenset[str] = frozenset()

    def validate(self) -> None:
        """Validate policy values.

        Raises:
            ValueError: If a value is out of range or a stage cannot be best effort.
        """

        if isinstance(self.max_retries, bool) or self.max_retries < 0:
            raise ValueError("`max_retries` must be a non-negative integer.")
        if self.watchdog_seconds <= 0:
            raise ValueError("`watchdog_seconds` must be a positive number.")
        if self.recovery_ttl_minutes <= 0:
            raise ValueError("`recovery_ttl_minutes` must be a positive number.")
        unknown = sorted(set(self.best_effort_stages).difference(STAGE_ORDER))
        if unknown:
            raise ValueError(
                f"`best_effort_stages` includes unknown stage(s): {', '.join(unknown)}."
            )
        required = sorted(set(self.best_effort_stages).difference(DEGRADABLE_STAGES))
        if required:
            allowed = ", ".join(sorted(DEGRADABLE_STAGES))
            raise ValueError(
                f"`best_effort_stages` may only include {allowed}; "
                f"`{', '.join(required)}` must always succeed."
            )


@dataclass(frozen=True, slots=True)
class RuntimeConfigSources:
    """Source mappings used for deterministic runtime value precedence.

    Attributes:
        cli: Values explicitly provided by CLI arguments.
        env: Values loaded from environment variables.
    """

    cli: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ProviderRuntimeConfig:
    """Resolved runtime provider and model identifiers for one run."""

    provider: str
    model_chat: str
    model_tts: str
    model_image: str
    api_key: str | None = None

    def as_metadata(self) -> dict[str, str]:
        """Return non-secret runtime metadata safe to print or persist."""

        return {
            "provider": self.provider,
            "model_chat": self.model_chat,
            "model_tts": self.model_tts,
            "model_image": self.model_image,
        }


@dataclass(slots=True)
class LaunchConfig:
    """Runtime configuration for pipeline runs.

    Attributes:
        state_dir: Directory holding run snapshots and voice assignments.
        provider: Provider identifier for every collaborator adapter.
        model_chat: Chat model used for character, effect, and safety analysis.
        model_tts: Speech synthesis model.
        model_image: Cover art image model.
        api_key: Optional provider API key.
        sfx_library_dir: Optional directory of locally available sound effects.
        max_retries: Out-of-band retries allowed per stage.
        watchdog_seconds: Ready notification resend delay.
        recovery_ttl_minutes: Maximum snapshot age eligible for recovery.
        best_effort_stages: Stages allowed to degrade instead of failing.
        runtime_sources: Optional runtime source overrides injected by CLI.
        extra: Additional metadata for future extensions.
    """

    state_dir: Path = _DEFAULT_STATE_DIR
    provider: str = "openai"
    model_chat: str = _DEFAULT_CHAT_MODEL
    model_tts: str = _DEFAULT_TTS_MODEL
    model_image: str = _DEFAULT_IMAGE_MODEL
    api_key: str | None = None
    sfx_library_dir: Path | None = None
    max_retries: int = 2
    watchdog_seconds: float = 2.0
    recovery_ttl_minutes: float = 10.0
    best_effort_stages: frozenset[str] = frozenset()
    runtime_sources: RuntimeConfigSources = field(default_factory=RuntimeConfigSources)
    extra: dict[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        """Validate runtime configuration values before pipeline execution."""

        self._validate_provider_id(self.provider, "provider")
        self._require_non_empty(self.model_chat, "model_chat")
        self._require_non_empty(self.model_tts, "model_tts")
        self._require_non_empty(self.model_image, "model_image")
        self.policy().validate()

    def policy(self) -> PipelinePolicy:
        """Return the orchestration policy derived from this config."""

        return PipelinePolicy(
            max_retries=self.max_retries,
            watchdog_seconds=self.watchdog_seconds,
            recovery_ttl_minutes=self.recovery_ttl_minutes,
            best_effort_stages=frozenset(self.best_effort_stages),
        )

    def resolved_provider_runtime(
        self, sources: RuntimeConfigSources | None = None
    ) -> ProviderRuntimeConfig:
        """Resolve provider and model settings with deterministic source precedence.

        Precedence for each key is `cli` > `env` > config field value.
        """

        resolved_sources = sources if sources is not None else self.runtime_sources

        resolved = ProviderRuntimeConfig(
            provider=self._resolve_runtime_value(
                "provider", "STORYLAUNCH_PROVIDER", self.provider, resolved_sources
            ),
            model_chat=self._resolve_runtime_value(
                "model_chat", "STORYLAUNCH_MODEL_CHAT", self.model_chat, resolved_sources
            ),
            model_tts=self._resolve_runtime_value(
                "model_tts", "STORYLAUNCH_MODEL_TTS", self.model_tts, resolved_sources
            ),
            model_image=self._resolve_runtime_value(
                "model_image", "STORYLAUNCH_MODEL_IMAGE", self.model_image, resolved_sources
            ),
            api_key=self._resolve_optional_runtime_value(
                "api_key", "OPENAI_API_KEY", self.api_key, resolved_sources
            ),
        )
        self._validate_provider_id(resolved.provider, "provider")
        return resolved

    def _resolve_runtime_value(
        self,
        key: str,
        env_key: str,
        default_value: str | None,
        sources: RuntimeConfigSources,
    ) -> str:
        """Resolve a required runtime value from sources in precedence order."""

        value = self._resolve_optional_runtime_value(key, env_key, default_value, sources)
        if value is None:
            raise ValueError(f"`{key}` could not be resolved from CLI, env, or config.")
        return value

    def _resolve_optional_runtime_value(
        self,
        key: str,
        env_key: str,
        default_value: str | None,
        sources: RuntimeConfigSources,
    ) -> str | None:
        """Resolve an optional runtime value from sources in precedence order."""

        cli_value = self._normalized_lookup(sources.cli, key)
        if cli_value is not None:
            return cli_value

        env_value = self._normalized_lookup(sources.env, env_key)
        if env_value is not None:
            return env_value

        return normalize_optional_string(default_value)

    @staticmethod
    def _normalized_lookup(mapping: Mapping[str, str], key: str) -> str | None:
        """Return a stripped mapping value for a key or `None` when missing/blank."""

        if key not in mapping:
            return None
        return normalize_optional_string(mapping.get(key))

    @staticmethod
    def _validate_provider_id(provider_id: str, field_name: str) -> None:
        """Validate provider identifiers against currently supported providers."""

        if provider_id not in _SUPPORTED_PROVIDER_IDS:
            supported = ", ".join(sorted(_SUPPORTED_PROVIDER_IDS))
            raise ValueError(
                f"Unsupported `{field_name}` value `{provider_id}`; supported: {supported}."
            )

    @staticmethod
    def _require_non_empty(value: str, field_name: str) -> None:
        """Validate that runtime string fields are not empty."""

        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"`{field_name}` must be a non-empty string.")


class ConfigLoader:
    """Factory methods for creating `LaunchConfig` from external sources."""

    _REQUIRED_YAML_KEYS: frozenset[str] = frozenset()
    _SUPPORTED_YAML_KEYS = frozenset(
        {
            "state_dir",
            "provider",
            "model_chat",
            "model_tts",
            "model_image",
            "api_key",
            "sfx_library_dir",
            "max_retries",
            "watchdog_seconds",
            "recovery_ttl_minutes",
            "best_effort_stages",
            "extra",
        }
    )
    _RUNTIME_ENV_KEYS = frozenset(
        {
            "STORYLAUNCH_PROVIDER",
            "STORYLAUNCH_MODEL_CHAT",
            "STORYLAUNCH_MODEL_TTS",
            "STORYLAUNCH_MODEL_IMAGE",
            "OPENAI_API_KEY",
        }
    )

    @staticmethod
    def from_yaml(path: Path) -> LaunchConfig:
        """Create a validated config from a YAML file."""

        path_text = path.read_text(encoding="utf-8")
        payload = ConfigLoader._parse_yaml_payload(path_text, path)

        return ConfigLoader._build_config_from_mapping(payload, source_label=f"YAML `{path}`")

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> LaunchConfig:
        """Create a validated config from environment variables."""

        env_map: Mapping[str, str] = os.environ if env is None else env

        state_dir = ConfigLoader._optional_env_path(env_map, "STORYLAUNCH_STATE_DIR")
        max_retries = ConfigLoader._optional_env_value(
            env_map, "STORYLAUNCH_MAX_RETRIES", parse_non_negative_int
        )
        watchdog_seconds = ConfigLoader._optional_env_value(
            env_map, "STORYLAUNCH_WATCHDOG_SECONDS", parse_positive_float
        )
        recovery_ttl = ConfigLoader._optional_env_value(
            env_map, "STORYLAUNCH_RECOVERY_TTL_MINUTES", parse_positive_float
        )
        best_effort = ConfigLoader._optional_env_value(
            env_map, "STORYLAUNCH_BEST_EFFORT_STAGES", parse_token_set
        )

        runtime_env = {
            key: value
            for key, value in env_map.items()
            if key in ConfigLoader._RUNTIME_ENV_KEYS
            and normalize_optional_string(value) is not None
        }

        config = LaunchConfig(
            state_dir=state_dir or _DEFAULT_STATE_DIR,
            provider=ConfigLoader._optional_env_string(env_map, "STORYLAUNCH_PROVIDER")
            or "openai",
            model_chat=ConfigLoader._optional_env_string(env_map, "STORYLAUNCH_MODEL_CHAT")
            or _DEFAULT_CHAT_MODEL,
            model_tts=ConfigLoader._optional_env_string(env_map, "STORYLAUNCH_MODEL_TTS")
            or _DEFAULT_TTS_MODEL,
            model_image=ConfigLoader._optional_env_string(env_map, "STORYLAUNCH_MODEL_IMAGE")
            or _DEFAULT_IMAGE_MODEL,
            api_key=ConfigLoader._optional_env_string(env_map, "OPENAI_API_KEY"),
            sfx_library_dir=ConfigLoader._optional_env_path(
                env_map, "STORYLAUNCH_SFX_LIBRARY_DIR"
            ),
            max_retries=2 if max_retries is None else max_retries,
            watchdog_seconds=2.0 if watchdog_seconds is None else watchdog_seconds,
            recovery_ttl_minutes=10.0 if recovery_ttl is None else recovery_ttl,
            best_effort_stages=best_effort or frozenset(),
            runtime_sources=RuntimeConfigSources(env=runtime_env),
        )
        config.validate()
        return config

    @staticmethod
    def _parse_yaml_payload(raw_text: str, path: Path) -> Mapping[str, Any]:
        """Parse YAML text and enforce a mapping root payload."""

        try:
            payload = yaml.safe_load(raw_text)
        except yaml.YAMLError as exc:
            raise ValueError(f"YAML config `{path}` could not be parsed: {exc}") from exc

        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"YAML config `{path}` must contain a top-level mapping/object.")
        return payload

    @staticmethod
    def _build_config_from_mapping(payload: Mapping[str, Any], source_label: str) -> LaunchConfig:
        """Build a validated config from a normalized mapping payload."""

        ConfigLoader._validate_yaml_keys(payload, source_label)

        state_dir = ConfigLoader._optional_non_empty_string(payload, "state_dir", source_label)
        sfx_library_dir = ConfigLoader._optional_non_empty_string(
            payload, "sfx_library_dir", source_label
        )
        config = LaunchConfig(
            state_dir=Path(state_dir) if state_dir else _DEFAULT_STATE_DIR,
            provider=ConfigLoader._optional_non_empty_string(payload, "provider", source_label)
            or "openai",
            model_chat=ConfigLoader._optional_non_empty_string(payload, "model_chat", source_label)
            or _DEFAULT_CHAT_MODEL,
            model_tts=ConfigLoader._optional_non_empty_string(payload, "model_tts", source_label)
            or _DEFAULT_TTS_MODEL,
            model_image=ConfigLoader._optional_non_empty_string(
                payload, "model_image", source_label
            )
            or _DEFAULT_IMAGE_MODEL,
            api_key=ConfigLoader._optional_non_empty_string(payload, "api_key", source_label),
            sfx_library_dir=Path(sfx_library_dir) if sfx_library_dir else None,
            max_retries=ConfigLoader._optional_parsed(
                payload, "max_retries", source_label, parse_non_negative_int, default=2
            ),
            watchdog_seconds=ConfigLoader._optional_parsed(
                payload, "watchdog_seconds", source_label, parse_positive_float, default=2.0
            ),
            recovery_ttl_minutes=ConfigLoader._optional_parsed(
                payload, "recovery_ttl_minutes", source_label, parse_positive_float, default=10.0
            ),
            best_effort_stages=ConfigLoader._optional_parsed(
                payload, "best_effort_stages", source_label, parse_token_set, default=frozenset()
            ),
            extra=ConfigLoader._optional_string_map(payload, "extra", source_label),
        )
        config.validate()
        return config

    @staticmethod
    def _validate_yaml_keys(payload: Mapping[str, Any], source_label: str) -> None:
        """Validate supported and required YAML keys."""

        unknown = sorted(str(key) for key in set(payload).difference(ConfigLoader._SUPPORTED_YAML_KEYS))
        if unknown:
            key_list = ", ".join(unknown)
            raise ValueError(f"{source_label} includes unsupported key(s): {key_list}.")

        missing = sorted(
            key for key in ConfigLoader._REQUIRED_YAML_KEYS if key not in payload
        )
        if missing:
            key_list = ", ".join(missing)
            raise ValueError(f"{source_label} is missing required key(s): {key_list}.")

    @staticmethod
    def _optional_non_empty_string(
        payload: Mapping[str, Any], key: str, source_label: str
    ) -> str | None:
        """Read an optional string field and normalize blank values to `None`."""

        if key not in payload:
            return None
        return normalize_optional_string(payload[key])

    @staticmethod
    def _optional_parsed(
        payload: Mapping[str, Any],
        key: str,
        source_label: str,
        parser: Any,
        default: Any,
    ) -> Any:
        """Parse an optional field, prefixing parser errors with the source label."""

        if key not in payload or payload[key] is None:
            return default
        try:
            return parser(payload[key], key)
        except ValueError as exc:
            raise ValueError(f"{source_label} field {exc}") from exc

    @staticmethod
    def _optional_string_map(
        payload: Mapping[str, Any], key: str, source_label: str
    ) -> dict[str, str]:
        """Read an optional mapping with non-empty string keys and values."""

        if key not in payload:
            return {}

        raw = payload[key]
        if raw is None:
            return {}
        if not isinstance(raw, Mapping):
            raise ValueError(f"{source_label} field `{key}` must be a mapping/object.")

        normalized: dict[str, str] = {}
        for raw_key, raw_value in raw.items():
            key_value = normalize_optional_string(raw_key)
            value_value = normalize_optional_string(raw_value)
            if key_value is None:
                raise ValueError(f"{source_label} field `{key}` contains a blank key.")
            if value_value is None:
                raise ValueError(
                    f"{source_label} field `{key}` contains blank value for `{key_value}`."
                )
            normalized[key_value] = value_value
        return normalized

    @staticmethod
    def _optional_env_path(env: Mapping[str, str], key: str) -> Path | None:
        """Read an optional path value from environment mapping."""

        value = ConfigLoader._optional_env_string(env, key)
        if value is None:
            return None
        return Path(value)

    @staticmethod
    def _optional_env_string(env: Mapping[str, str], key: str) -> str | None:
        """Read and normalize optional string environment variable values."""

        if key not in env:
            return None
        return normalize_optional_string(env.get(key))

    @staticmethod
    def _optional_env_value(env: Mapping[str, str], key: str, parser: Any) -> Any:
        """Parse an optional environment value, naming the variable on failure."""

        raw_value = ConfigLoader._optional_env_string(env, key)
        if raw_value is None:
            return None
        try:
            return parser(raw_value, key)
        except ValueError as exc:
            raise ValueError(f"Environment variable {exc}") from exc

