"""Cover art collaborators."""

from .cover_artist import OpenAICoverArtist

__all__ = ["OpenAICoverArtist"]
