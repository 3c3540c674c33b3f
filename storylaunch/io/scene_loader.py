"""YAML scene document loading.

Responsibilities:
- Parse a scene document into the target `SceneContent` of a pipeline run.
- Validate every field with errors that name the offending path.

A document has `session_id`, `scene`, `session`, and `characters` sections; only
`scene.id` and `scene.text` are required. The session id defaults to the file stem.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from ..models import EffectSpec, Entity, SceneContent, SessionSettings
from ..parsing import (
    normalize_optional_string,
    parse_non_negative_int,
    parse_permissive_boolean,
    parse_required_boolean,
)

_TOP_LEVEL_KEYS = frozenset({"session_id", "scene", "session", "characters"})
_SCENE_KEYS = frozenset({"id", "sequence_index", "text", "mood", "choices", "is_final", "effects"})
_SESSION_KEYS = frozenset(
    {
        "title",
        "synopsis",
        "narrator_voice_id",
        "multi_voice",
        "sfx_enabled",
        "audio_enabled",
        "cover_url",
        "cover_style",
        "audience",
        "intensity_limits",
    }
)
_EFFECT_KEYS = frozenset({"key", "description", "timing", "volume", "loop"})
_CHARACTER_KEYS = frozenset({"name", "gender", "role", "description"})
_GENDERS = frozenset({"female", "male", "neutral"})


@dataclass(frozen=True, slots=True)
class SceneDocument:
    """Parsed scene document.

    Attributes:
        session_id: Story session the scene belongs to.
        content: Scene and session settings handed to the pipeline.
        characters: Characters declared by the author, possibly empty.
    """

    session_id: str
    content: SceneContent
    characters: tuple[Entity, ...] = ()


def load_scene_document(path: Path) -> SceneDocument:
    """Load and validate a YAML scene document.

    Raises:
        ValueError: If the document cannot be parsed or a field is invalid.
    """

    label = f"Scene document `{path}`"
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"{label} could not be parsed: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ValueError(f"{label} must contain a top-level mapping/object.")
    _reject_unknown_keys(payload, _TOP_LEVEL_KEYS, label, "")

    session_id = normalize_optional_string(payload.get("session_id")) or path.stem
    scene = _mapping(payload.get("scene"), label, "scene", required=True)
    session = _mapping(payload.get("session"), label, "session", required=False)
    settings = _parse_settings(session, label)
    content = _parse_scene(scene, settings, label)
    characters = _parse_characters(payload.get("characters"), label)
    return SceneDocument(session_id=session_id, content=content, characters=characters)


def _field_error(label: str, field_path: str, message: str) -> ValueError:
    return ValueError(f"{label} field `{field_path}` {message}")


def _reject_unknown_keys(
    payload: Mapping[str, Any], allowed: frozenset[str], label: str, prefix: str
) -> None:
    unknown = sorted(str(key) for key in set(payload).difference(allowed))
    if unknown:
        where = f" in `{prefix}`" if prefix else ""
        raise ValueError(f"{label} includes unsupported key(s){where}: {', '.join(unknown)}.")


def _mapping(value: Any, label: str, field_path: str, *, required: bool) -> Mapping[str, Any]:
    if value is None:
        if required:
            raise _field_error(label, field_path, "is required.")
        return {}
    if not isinstance(value, Mapping):
        raise _field_error(label, field_path, "must be a mapping/object.")
    return value


def _list(value: Any, label: str, field_path: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise _field_error(label, field_path, "must be a list.")
    return value


def _parsed(parser: Any, value: Any, label: str, field_path: str) -> Any:
    """Run a parsing helper, re-labelling its error with the document path."""

    try:
        return parser(value, field_path)
    except ValueError as exc:
        raise ValueError(f"{label} field {exc}") from exc


def _parse_settings(session: Mapping[str, Any], label: str) -> SessionSettings:
    _reject_unknown_keys(session, _SESSION_KEYS, label, "session")

    multi_voice = None
    if session.get("multi_voice") is not None:
        multi_voice = parse_permissive_boolean(session["multi_voice"])
        if multi_voice is None:
            raise _field_error(label, "session.multi_voice", "must be a boolean value or null.")

    limits: dict[str, int] = {}
    raw_limits = _mapping(
        session.get("intensity_limits"), label, "session.intensity_limits", required=False
    )
    for name, value in raw_limits.items():
        field_path = f"session.intensity_limits.{name}"
        limit = _parsed(parse_non_negative_int, value, label, field_path)
        if limit > 100:
            raise _field_error(label, field_path, "must be between 0 and 100.")
        limits[str(name).strip().lower()] = limit

    return SessionSettings(
        title=normalize_optional_string(session.get("title")) or "",
        synopsis=normalize_optional_string(session.get("synopsis")) or "",
        narrator_voice_id=normalize_optional_string(session.get("narrator_voice_id")),
        multi_voice=multi_voice,
        sfx_enabled=(
            _parsed(parse_required_boolean, session["sfx_enabled"], label, "session.sfx_enabled")
            if session.get("sfx_enabled") is not None
            else False
        ),
        audio_enabled=(
            _parsed(
                parse_required_boolean, session["audio_enabled"], label, "session.audio_enabled"
            )
            if session.get("audio_enabled") is not None
            else True
        ),
        cover_url=normalize_optional_string(session.get("cover_url")),
        cover_style=normalize_optional_string(session.get("cover_style")) or "storybook",
        audience=(normalize_optional_string(session.get("audience")) or "general").lower(),
        intensity_limits=limits,
    )


def _parse_scene(
    scene: Mapping[str, Any], settings: SessionSettings, label: str
) -> SceneContent:
    _reject_unknown_keys(scene, _SCENE_KEYS, label, "scene")

    scene_id = normalize_optional_string(scene.get("id"))
    if scene_id is None:
        raise _field_error(label, "scene.id", "must be a non-empty string.")
    text = scene.get("text")
    if not isinstance(text, str) or not text.strip():
        raise _field_error(label, "scene.text", "must be a non-empty string.")

    choices = []
    for index, choice in enumerate(_list(scene.get("choices"), label, "scene.choices")):
        normalized = normalize_optional_string(choice)
        if normalized is None:
            raise _field_error(label, f"scene.choices[{index}]", "must be a non-empty string.")
        choices.append(normalized)

    effects = tuple(
        _parse_effect(item, label, f"scene.effects[{index}]")
        for index, item in enumerate(_list(scene.get("effects"), label, "scene.effects"))
    )

    return SceneContent(
        scene_id=scene_id,
        sequence_index=(
            _parsed(parse_non_negative_int, scene["sequence_index"], label, "scene.sequence_index")
            if scene.get("sequence_index") is not None
            else 0
        ),
        text=text.strip(),
        settings=settings,
        mood=normalize_optional_string(scene.get("mood")),
        choices=tuple(choices),
        is_final=(
            _parsed(parse_required_boolean, scene["is_final"], label, "scene.is_final")
            if scene.get("is_final") is not None
            else False
        ),
        effects=effects,
    )


def _parse_effect(item: Any, label: str, field_path: str) -> EffectSpec:
    effect = _mapping(item, label, field_path, required=True)
    _reject_unknown_keys(effect, _EFFECT_KEYS, label, field_path)
    key = normalize_optional_string(effect.get("key"))
    if key is None:
        raise _field_error(label, f"{field_path}.key", "must be a non-empty string.")

    volume = effect.get("volume", 0.3)
    if isinstance(volume, bool) or not isinstance(volume, int | float) or not 0 <= volume <= 1:
        raise _field_error(label, f"{field_path}.volume", "must be a number between 0 and 1.")

    return EffectSpec(
        key=key,
        description=normalize_optional_string(effect.get("description")) or "",
        timing=normalize_optional_string(effect.get("timing")) or "middle",
        volume=float(volume),
        loop=(
            _parsed(parse_required_boolean, effect["loop"], label, f"{field_path}.loop")
            if effect.get("loop") is not None
            else False
        ),
    )


def _parse_characters(value: Any, label: str) -> tuple[Entity, ...]:
    characters = []
    for index, item in enumerate(_list(value, label, "characters")):
        field_path = f"characters[{index}]"
        character = _mapping(item, label, field_path, required=True)
        _reject_unknown_keys(character, _CHARACTER_KEYS, label, field_path)
        name = normalize_optional_string(character.get("name"))
        if name is None:
            raise _field_error(label, f"{field_path}.name", "must be a non-empty string.")
        gender = normalize_optional_string(character.get("gender"))
        if gender is not None:
            gender = gender.lower()
            if gender not in _GENDERS:
                raise _field_error(
                    label, f"{field_path}.gender", "must be `female`, `male`, or `neutral`."
                )
        characters.append(
            Entity(
                name=name,
                gender=gender,
                role=normalize_optional_string(character.get("role")) or "character",
                description=normalize_optional_string(character.get("description")) or "",
            )
        )
    return tuple(characters)
