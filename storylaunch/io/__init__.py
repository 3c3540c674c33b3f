"""Input/output components for storylaunch.

This package contains durable record storage, the scene document loader, and
the local sound effect library.
"""

from .effect_library import EffectLibrary
from .scene_loader import SceneDocument, load_scene_document
from .storage import DurableStore, FileRecordStore, MemoryRecordStore

__all__ = [
    "DurableStore",
    "EffectLibrary",
    "FileRecordStore",
    "MemoryRecordStore",
    "SceneDocument",
    "load_scene_document",
]
