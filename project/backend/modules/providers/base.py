"""
Provider contracts and tagged results.

Raw provider responses are decoded once, here at the boundary, into a
``ProviderResult`` carrying either the payload or a closed ``FailureKind``.
"""

from typing import Optional

import openai
from openai import OpenAI
from pydantic import BaseModel

from shared.config import settings
from shared.errors import FailureKind, UpstreamError
from modules.providers.safety import is_content_policy_message

# Shared by the image and speech providers
openai_client = OpenAI(api_key=settings.openai_api_key, max_retries=0)


class VoiceParams(BaseModel):
    """Opaque voice selection passed through to speech providers."""

    voice_id: Optional[str] = None
    model_id: Optional[str] = None
    language: Optional[str] = None


class ProviderResult(BaseModel):
    """Outcome of one provider attempt."""

    provider: str
    data: Optional[bytes] = None
    kind: Optional[FailureKind] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.data is not None and self.kind is None

    @classmethod
    def success(cls, provider: str, data: bytes) -> "ProviderResult":
        return cls(provider=provider, data=data)

    @classmethod
    def failure(cls, provider: str, kind: FailureKind, message: str) -> "ProviderResult":
        return cls(provider=provider, kind=kind, message=message)


class SpeechProvider:
    """Text-to-speech backend. Implementations raise ``UpstreamError``."""

    name = "speech"

    async def synthesize(self, text: str, voice: Optional[VoiceParams] = None) -> bytes:
        raise NotImplementedError


class ImageProvider:
    """Text-to-image backend. Implementations raise ``UpstreamError``."""

    name = "image"

    async def generate(self, prompt: str) -> bytes:
        raise NotImplementedError


def classify_http_status(status_code: int, body: str = "") -> FailureKind:
    """Map an HTTP error response to a failure kind."""
    if is_content_policy_message(body):
        return FailureKind.CONTENT_POLICY
    if status_code in (401, 403):
        return FailureKind.AUTH
    if status_code in (402, 429):
        return FailureKind.QUOTA
    if status_code in (408, 504):
        return FailureKind.TIMEOUT
    return FailureKind.OTHER


def classify_openai_error(error: Exception) -> FailureKind:
    """Map an ``openai`` SDK exception to a failure kind."""
    message = str(error)
    if is_content_policy_message(message):
        return FailureKind.CONTENT_POLICY
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return FailureKind.AUTH
    if isinstance(error, openai.RateLimitError):
        return FailureKind.QUOTA
    if isinstance(error, openai.APITimeoutError):
        return FailureKind.TIMEOUT
    return FailureKind.OTHER


def upstream_error(provider: str, kind: FailureKind, message: str) -> UpstreamError:
    return UpstreamError(f"{provider}: {message}", kind=kind, provider=provider)
