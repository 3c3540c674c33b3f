"""Top-level package for storylaunch.

This package prepares interactive audio-story scenes for playback: it casts
voices, readies sound effects and cover art, checks content safety, synthesizes
narration, and announces readiness. The main orchestration entry point is
`PipelineManager`.
"""

from .pipeline import PipelineManager

__all__ = ["PipelineManager", "__version__"]

__version__ = "0.1.0"
