"""OpenAI-backed cover art collaborator."""

from __future__ import annotations

import asyncio

from ..llm.openai_client import OpenAIImageClient
from ..llm.rate_limiter import RateLimiter

COVER_IMAGE_SIZE = "1024x1536"


class OpenAICoverArtist:
    """Generate portrait cover art with OpenAI image generation."""

    def __init__(
        self,
        model: str = "gpt-image-1",
        api_key: str | None = None,
        rate_limiter: RateLimiter | None = None,
        size: str = COVER_IMAGE_SIZE,
    ) -> None:
        self.model = model
        self.size = size
        self.client = OpenAIImageClient(api_key=api_key, rate_limiter=rate_limiter)

    def generate_sync(self, prompt: str, style: str) -> str:
        """Return the generated image URL, blocking on the provider call."""

        styled_prompt = prompt
        if style and style.lower() not in prompt.lower():
            styled_prompt = f"{prompt}\nArt style: {style}."
        return self.client.generate_image_url(
            model=self.model,
            prompt=styled_prompt,
            size=self.size,
        )

    async def generate(self, prompt: str, style: str) -> str:
        return await asyncio.to_thread(self.generate_sync, prompt, style)
