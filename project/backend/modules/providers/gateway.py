"""
Provider gateway.

Runs each capability through its ordered provider chain. Every attempt has
a hard timeout and is reduced to a ``ProviderResult``; a failed attempt
moves on to the next provider instead of retrying the same one.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence

from shared.config import settings
from shared.errors import FailureKind, UpstreamError
from shared.logging import get_logger
from shared.models.pipeline import CaptionCue
from modules.providers import captions
from modules.providers.base import ImageProvider, ProviderResult, SpeechProvider, VoiceParams
from modules.providers.images import default_image_providers
from modules.providers.speech import ElevenLabsSpeechProvider, OpenAISpeechProvider

logger = get_logger("providers.gateway")


class ProviderGateway:
    """Speech, image and caption capabilities behind fallback chains."""

    def __init__(
        self,
        speech_providers: Optional[Sequence[SpeechProvider]] = None,
        image_providers: Optional[Sequence[ImageProvider]] = None,
        speech_timeout: Optional[float] = None,
        image_timeout: Optional[float] = None
    ):
        self.speech_providers = list(speech_providers) if speech_providers is not None else [
            ElevenLabsSpeechProvider(),
            OpenAISpeechProvider(),
        ]
        self.image_providers = list(image_providers) if image_providers is not None else default_image_providers()
        self.speech_timeout = speech_timeout or settings.speech_provider_timeout
        self.image_timeout = image_timeout or settings.image_provider_timeout

    async def _attempt(
        self,
        provider_name: str,
        call: Callable[[], Awaitable[bytes]],
        timeout: float
    ) -> ProviderResult:
        try:
            data = await asyncio.wait_for(call(), timeout=timeout)
            return ProviderResult.success(provider_name, data)
        except asyncio.TimeoutError:
            return ProviderResult.failure(
                provider_name, FailureKind.TIMEOUT, f"no response within {timeout:.0f}s"
            )
        except UpstreamError as e:
            return ProviderResult.failure(provider_name, e.kind, e.message)
        except Exception as e:
            logger.error(f"Unexpected error from {provider_name}", exc_info=e)
            return ProviderResult.failure(provider_name, FailureKind.OTHER, str(e))

    async def _run_chain(
        self,
        capability: str,
        attempts: List[tuple],
        timeout: float,
        stop_on: Sequence[FailureKind] = ()
    ) -> bytes:
        failures: List[ProviderResult] = []
        for provider_name, call in attempts:
            result = await self._attempt(provider_name, call, timeout)
            if result.ok:
                if failures:
                    logger.info(
                        f"{capability} served by fallback {provider_name}",
                        extra={"capability": capability, "provider": provider_name}
                    )
                return result.data

            failures.append(result)
            logger.warning(
                f"{capability} attempt failed on {provider_name}: {result.message}",
                extra={"capability": capability, "provider": provider_name, "kind": result.kind.value}
            )
            if result.kind in stop_on:
                break

        if not failures:
            raise UpstreamError(f"No {capability} providers configured")
        last = failures[-1]
        summary = "; ".join(f"{f.provider}: {f.message}" for f in failures)
        raise UpstreamError(f"{capability} failed ({summary})", kind=last.kind, provider=last.provider)

    async def synthesize_speech(self, text: str, voice: Optional[VoiceParams] = None) -> bytes:
        """
        Narrate ``text``.

        Raises:
            UpstreamError: After every speech provider failed
        """
        attempts = [
            (p.name, lambda p=p: p.synthesize(text, voice))
            for p in self.speech_providers
        ]
        return await self._run_chain("speech", attempts, self.speech_timeout)

    async def synthesize_image(self, prompt: str) -> bytes:
        """
        Render one image for ``prompt``.

        A content-policy rejection stops the chain immediately so the caller
        can soften the prompt instead of sending it to another provider.

        Raises:
            UpstreamError: With ``kind`` of the last failure
        """
        attempts = [
            (p.name, lambda p=p: p.generate(prompt))
            for p in self.image_providers
        ]
        return await self._run_chain(
            "image", attempts, self.image_timeout, stop_on=(FailureKind.CONTENT_POLICY,)
        )

    def build_captions(self, text: str, total_duration: float) -> List[CaptionCue]:
        return captions.build_captions(text, total_duration)
