"""
Per-scene image generation.

One scene at a time: provider chain, softened retry on a content-policy
rejection, placeholder as the last resort, upload, then a write that
touches only that scene's slot.
"""

import uuid
from typing import Optional, Tuple

from shared.config import settings
from shared.errors import FailureKind, RetryableError, UpstreamError
from shared.logging import get_logger
from shared.models.pipeline import SceneOutcome
from shared.models.video import Video
from shared.storage import StorageClient
from shared.video_store import VideoStore
from modules.providers.gateway import ProviderGateway
from modules.providers.safety import soften_prompt
from modules.asset_orchestrator.placeholder import (
    REASON_CONTENT_POLICY,
    REASON_GENERATION_ERROR,
    load_placeholder_image,
)

logger = get_logger("asset_orchestrator.scene_images")


def scene_image_path(video_id: str, index: int) -> str:
    # Unique per generation so a reordered scene never shares an object with another index
    return f"videos/{video_id}/images/scene-{index + 1}-{uuid.uuid4().hex[:8]}.png"


class SceneImageGenerator:
    """Generates, uploads and records the image for one storyboard slot."""

    def __init__(self, gateway: ProviderGateway, storage: StorageClient, store: VideoStore):
        self.gateway = gateway
        self.storage = storage
        self.store = store

    async def produce(self, prompt: str) -> Tuple[bytes, bool, Optional[str], bool]:
        """
        Get image bytes for ``prompt``, never raising for provider failures.

        Returns:
            (image bytes, placeholder used, placeholder reason, prompt softened)
        """
        try:
            return await self.gateway.synthesize_image(prompt), False, None, False
        except UpstreamError as e:
            if e.kind != FailureKind.CONTENT_POLICY:
                logger.warning(f"Image providers exhausted: {e.message}", extra={"kind": e.kind.value})
                return load_placeholder_image(), True, f"{REASON_GENERATION_ERROR}: {e.kind.value}", False

        softened = soften_prompt(prompt)
        logger.info("Content policy rejection, retrying with softened prompt")
        try:
            return await self.gateway.synthesize_image(softened), False, None, True
        except UpstreamError as e:
            logger.warning(
                f"Softened prompt also failed: {e.message}",
                extra={"kind": e.kind.value}
            )
            return load_placeholder_image(), True, REASON_CONTENT_POLICY, True

    async def run(
        self,
        video_id: str,
        index: int,
        prompt: str,
        run_token: Optional[str] = None
    ) -> SceneOutcome:
        """
        Generate and persist the image for scene ``index``.

        The write is skipped if the scene at ``index`` no longer carries
        ``prompt`` (it was edited, moved or deleted mid-run).

        Raises:
            StaleRunError: If the run was cancelled or superseded
        """
        image, placeholder_used, reason, softened = await self.produce(prompt)

        try:
            url = await self.storage.upload_file(
                settings.assets_bucket,
                scene_image_path(video_id, index),
                image,
                "image/png"
            )
        except RetryableError as e:
            logger.error(
                f"Scene {index} image upload failed",
                exc_info=e,
                extra={"scene_index": index}
            )
            return SceneOutcome(index=index, reason=f"upload: {e.message}", softened=softened)

        written = False

        def _record(video: Video) -> None:
            nonlocal written
            if index >= len(video.storyboard) or video.storyboard[index].effective_prompt != prompt:
                return
            scene = video.storyboard[index]
            scene.image_url = url
            scene.placeholder_used = placeholder_used
            scene.placeholder_reason = reason
            video.dirty_scenes = [i for i in video.dirty_scenes if i != index]
            written = True

        await self.store.update(video_id, _record, run_token=run_token)

        if not written:
            logger.warning(f"Scene {index} changed during generation, result discarded", extra={"scene_index": index})
        elif placeholder_used:
            logger.warning(f"Scene {index} using placeholder: {reason}", extra={"scene_index": index})
        else:
            logger.info(f"Scene {index} image ready", extra={"scene_index": index, "softened": softened})

        return SceneOutcome(
            index=index,
            image_url=url if written else None,
            placeholder_used=placeholder_used,
            reason=reason if written else "scene changed during generation",
            softened=softened,
            persisted=written
        )
