"""
Speech synthesis providers.

ElevenLabs over HTTP is the primary voice; OpenAI TTS is the fallback.
"""

import asyncio
from typing import Optional

import httpx
from openai import OpenAI

from shared.config import settings
from shared.errors import FailureKind
from shared.logging import get_logger
from modules.providers import base
from modules.providers.base import (
    SpeechProvider,
    VoiceParams,
    classify_http_status,
    classify_openai_error,
    upstream_error,
)

logger = get_logger("providers.speech")

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"


class ElevenLabsSpeechProvider(SpeechProvider):
    """ElevenLabs text-to-speech, MP3 output."""

    name = "elevenlabs"

    def __init__(
        self,
        api_key: Optional[str] = None,
        voice_id: Optional[str] = None,
        model_id: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.api_key = api_key or settings.elevenlabs_api_key
        self.voice_id = voice_id or settings.elevenlabs_voice_id
        self.model_id = model_id or settings.elevenlabs_model_id
        self.timeout = timeout or settings.speech_provider_timeout

    async def synthesize(self, text: str, voice: Optional[VoiceParams] = None) -> bytes:
        voice_id = (voice.voice_id if voice and voice.voice_id else None) or self.voice_id
        model_id = (voice.model_id if voice and voice.model_id else None) or self.model_id
        payload = {
            "text": text,
            "model_id": model_id,
            "voice_settings": {"stability": 0.4, "similarity_boost": 0.75},
        }
        if voice and voice.language:
            payload["language_code"] = voice.language

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    ELEVENLABS_TTS_URL.format(voice_id=voice_id),
                    headers={
                        "xi-api-key": self.api_key,
                        "Content-Type": "application/json",
                        "Accept": "audio/mpeg",
                    },
                    json=payload,
                )
        except httpx.TimeoutException as e:
            raise upstream_error(self.name, FailureKind.TIMEOUT, str(e) or "request timed out") from e
        except httpx.HTTPError as e:
            raise upstream_error(self.name, FailureKind.OTHER, str(e)) from e

        if resp.status_code >= 400:
            body = resp.text[:500]
            raise upstream_error(
                self.name,
                classify_http_status(resp.status_code, body),
                f"HTTP {resp.status_code}: {body}"
            )
        if not resp.content:
            raise upstream_error(self.name, FailureKind.OTHER, "empty audio response")

        logger.info(f"ElevenLabs returned {len(resp.content)} bytes", extra={"voice_id": voice_id})
        return resp.content


class OpenAISpeechProvider(SpeechProvider):
    """OpenAI TTS, MP3 output."""

    name = "openai-tts"

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        voice: Optional[str] = None
    ):
        self._client = client
        self.model = model or settings.openai_tts_model
        self.voice = voice or settings.openai_tts_voice

    @property
    def client(self) -> OpenAI:
        return self._client or base.openai_client

    async def synthesize(self, text: str, voice: Optional[VoiceParams] = None) -> bytes:
        def _call() -> bytes:
            response = self.client.audio.speech.create(
                model=self.model,
                voice=self.voice,
                input=text,
                response_format="mp3",
            )
            return response.content

        try:
            data = await asyncio.to_thread(_call)
        except Exception as e:
            raise upstream_error(self.name, classify_openai_error(e), str(e)) from e

        if not data:
            raise upstream_error(self.name, FailureKind.OTHER, "empty audio response")
        return data
