"""Unit tests for scene document loading, record stores, and the effect library."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from storylaunch.io import EffectLibrary, FileRecordStore, load_scene_document
from storylaunch.io.storage import save_json
from storylaunch.models import EffectSpec, Entity


def _write(tmp_path: Path, name: str, content: str) -> Path:
    path = tmp_path / name
    path.write_text(content.strip() + "\n", encoding="utf-8")
    return path


def test_load_scene_document_parses_full_document(tmp_path: Path) -> None:
    """Every section is parsed and normalized into typed scene content."""

    path = _write(
        tmp_path,
        "lighthouse.yml",
        """
session_id: " story-42 "
scene:
  id: scene-3
  sequence_index: "2"
  text: "  [CHAR:Mira] Rain drummed on the roof.  "
  mood: eerie
  choices: ["Climb to the lamp", " Run to the shore "]
  is_final: "no"
  effects:
    - key: weather.rain_light
      description: Light rain
      volume: 0.4
      loop: yes
session:
  title: The Lighthouse
  narrator_voice_id: nova
  multi_voice: "true"
  sfx_enabled: on
  audience: " Children "
  intensity_limits:
    Scary: 40
characters:
  - name: Mira
    gender: Female
    role: hero
  - name: Tobin
""",
    )

    document = load_scene_document(path)

    assert document.session_id == "story-42"
    content = document.content
    assert content.scene_id == "scene-3"
    assert content.sequence_index == 2
    assert content.text == "[CHAR:Mira] Rain drummed on the roof."
    assert content.choices == ("Climb to the lamp", "Run to the shore")
    assert content.is_final is False
    assert content.effects == (
        EffectSpec("weather.rain_light", "Light rain", "middle", 0.4, True),
    )
    assert content.settings.multi_voice is True
    assert content.settings.sfx_enabled is True
    assert content.settings.audio_enabled is True
    assert content.settings.audience == "children"
    assert content.settings.intensity_limits == {"scary": 40}
    assert document.characters == (
        Entity("Mira", "female", "hero"),
        Entity("Tobin", None, "character"),
    )


def test_load_scene_document_defaults_session_id_to_file_stem(tmp_path: Path) -> None:
    """Minimal documents take their session id from the file name."""

    path = _write(tmp_path, "opening.yaml", "scene:\n  id: s1\n  text: Hello.")

    document = load_scene_document(path)

    assert document.session_id == "opening"
    assert document.content.sequence_index == 0
    assert document.content.settings.cover_style == "storybook"
    assert document.content.settings.sfx_enabled is False
    assert document.characters == ()


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("scene:\n  id: s1\n  text: '  '", "field `scene.text` must be a non-empty string."),
        ("scene:\n  text: Hello.", "field `scene.id` must be a non-empty string."),
        ("session: {}", "field `scene` is required."),
        ("scene: {id: s1, text: Hi, pages: 3}", r"unsupported key\(s\) in `scene`: pages."),
        ("language: cs\nscene: {id: s1, text: Hi}", r"unsupported key\(s\): language."),
        (
            "scene: {id: s1, text: Hi, effects: [{key: rain, volume: 2}]}",
            "field `scene.effects\\[0\\].volume` must be a number between 0 and 1.",
        ),
        (
            "scene: {id: s1, text: Hi}\nsession: {intensity_limits: {gore: 120}}",
            "field `session.intensity_limits.gore` must be between 0 and 100.",
        ),
        (
            "scene: {id: s1, text: Hi}\ncharacters: [{name: Kit, gender: robot}]",
            "field `characters\\[0\\].gender` must be `female`, `male`, or `neutral`.",
        ),
        (
            "scene: {id: s1, text: Hi}\nsession: {sfx_enabled: maybe}",
            "`session.sfx_enabled` must be a boolean value",
        ),
        ("- just\n- a list", "must contain a top-level mapping/object."),
        ("scene: {id: [unclosed", "could not be parsed"),
    ],
)
def test_load_scene_document_reports_invalid_fields(
    tmp_path: Path, content: str, message: str
) -> None:
    """Invalid documents fail with messages naming the offending field path."""

    path = _write(tmp_path, "broken.yml", content)

    with pytest.raises(ValueError, match=message):
        load_scene_document(path)


def test_file_record_store_round_trips_escaped_keys(tmp_path: Path) -> None:
    """Keys with path separators are escaped on disk and listed back unescaped."""

    store = FileRecordStore(tmp_path / "records")
    store.put("pipeline-state:session/1", b"first")
    store.put("pipeline-state:session/1", b"second")
    store.put("voice-assignments:session-2", b"{}")

    assert store.get("pipeline-state:session/1") == b"second"
    assert store.keys() == ["pipeline-state:session/1", "voice-assignments:session-2"]
    assert all(path.is_file() for path in (tmp_path / "records").iterdir())

    store.delete("pipeline-state:session/1")
    store.delete("pipeline-state:session/1")

    assert store.get("pipeline-state:session/1") is None
    assert store.keys() == ["voice-assignments:session-2"]


def test_file_record_store_rejects_empty_key(tmp_path: Path) -> None:
    """Empty keys cannot be mapped to a record file."""

    with pytest.raises(ValueError, match="Record key must be a non-empty string."):
        FileRecordStore(tmp_path).get("")
    assert FileRecordStore(tmp_path / "missing").keys() == []


def test_save_json_writes_sorted_payload(tmp_path: Path) -> None:
    """JSON artifacts are written with sorted keys into created parent folders."""

    path = save_json(tmp_path / "out" / "ready.json", {"b": 1, "a": "Mira"})

    text = path.read_text(encoding="utf-8")
    assert text.index('"a"') < text.index('"b"')
    assert json.loads(text) == {"a": "Mira", "b": 1}


def test_effect_library_resolves_first_existing_suffix(tmp_path: Path) -> None:
    """Effect keys resolve to local audio files and reject path-like keys."""

    (tmp_path / "sea.waves_crash.wav").write_bytes(b"RIFF")
    (tmp_path / "sea.waves_crash.ogg").write_bytes(b"OggS")
    library = EffectLibrary(tmp_path)

    assert library.path_for("sea.waves_crash") == tmp_path / "sea.waves_crash.wav"
    assert library.path_for("weather.thunder") is None
    assert library.path_for("../sea.waves_crash") is None
    assert EffectLibrary(None).path_for("sea.waves_crash") is None
