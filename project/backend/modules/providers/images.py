"""
Image synthesis providers.

OpenAI Images with base64 responses: ``dall-e-3`` in portrait as the
primary, ``dall-e-2`` square as the fallback.
"""

import asyncio
import base64
import binascii
from typing import Optional

from openai import OpenAI

from shared.config import settings
from shared.errors import FailureKind
from shared.logging import get_logger
from modules.providers import base
from modules.providers.base import ImageProvider, classify_openai_error, upstream_error

logger = get_logger("providers.images")


class OpenAIImageProvider(ImageProvider):
    """One OpenAI image model at one size."""

    def __init__(self, model: str, size: str, client: Optional[OpenAI] = None):
        self.model = model
        self.size = size
        self.name = f"openai-{model}"
        self._client = client

    @property
    def client(self) -> OpenAI:
        return self._client or base.openai_client

    async def generate(self, prompt: str) -> bytes:
        def _call():
            return self.client.images.generate(
                model=self.model,
                prompt=prompt,
                size=self.size,
                n=1,
                response_format="b64_json",
            )

        try:
            response = await asyncio.to_thread(_call)
        except Exception as e:
            raise upstream_error(self.name, classify_openai_error(e), str(e)) from e

        if not response.data or not response.data[0].b64_json:
            raise upstream_error(self.name, FailureKind.OTHER, "no image data in response")

        try:
            image = base64.b64decode(response.data[0].b64_json)
        except (binascii.Error, ValueError) as e:
            raise upstream_error(self.name, FailureKind.OTHER, f"invalid base64 payload: {e}") from e

        logger.debug(f"{self.name} returned {len(image)} bytes")
        return image


def default_image_providers():
    return [
        OpenAIImageProvider(settings.image_model, settings.image_size),
        OpenAIImageProvider(settings.fallback_image_model, settings.fallback_image_size),
    ]
