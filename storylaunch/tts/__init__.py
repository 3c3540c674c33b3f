"""Text-to-speech collaborators.

This package contains the OpenAI voice catalog and the speech synthesizer used by
the audio stage and choice narration.
"""

from .synthesizer import OpenAISpeechSynthesizer
from .voices import OPENAI_VOICE_PROFILES, VoiceProfile, openai_voice_pool, profile_for

__all__ = [
    "OPENAI_VOICE_PROFILES",
    "OpenAISpeechSynthesizer",
    "VoiceProfile",
    "openai_voice_pool",
    "profile_for",
]
