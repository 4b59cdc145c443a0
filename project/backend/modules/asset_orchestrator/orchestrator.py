"""
Asset orchestrator.

Brings a video's narration audio, captions and scene images to readiness.
Only missing or dirty assets are generated, each one is persisted as soon as
it completes, and provider failures are recorded on the result instead of
escaping.
"""

import asyncio
import io
from typing import List, Optional

from mutagen import File as MutagenFile

from shared.config import settings
from shared.errors import (
    ConflictError,
    InvalidTransitionError,
    MissingScriptError,
    RetryableError,
    StaleRunError,
    UpstreamError,
    ValidationError,
)
from shared.logging import get_logger, set_video_id
from shared.models.pipeline import (
    AssetFailure,
    AssetReadiness,
    AssetResult,
    PlaceholderScene,
    SceneOutcome,
)
from shared.models.video import Video, VideoStatus
from shared.pipeline_state import assert_transition, is_terminal, resolve_asset_status
from shared.storage import StorageClient, storage as default_storage
from shared.video_store import VideoStore, video_store
from modules.providers.captions import estimate_duration, to_srt
from modules.providers.gateway import ProviderGateway
from modules.asset_orchestrator.scene_images import SceneImageGenerator

logger = get_logger("asset_orchestrator")

ASSETS_STAGE = "assets"

# Stored statuses that may lag behind the persisted assets
UNSETTLED = frozenset({
    VideoStatus.ASSETS_PARTIAL,
    VideoStatus.ASSETS_FAILED,
    VideoStatus.ASSETS_GENERATING,
})


def measure_audio_duration(data: bytes) -> Optional[float]:
    """Read the playing time of an encoded audio file, or None if unreadable."""
    try:
        audio = MutagenFile(io.BytesIO(data))
    except Exception as e:
        logger.warning(f"Could not parse audio metadata: {str(e)}")
        return None
    if audio is None or not getattr(audio, "info", None):
        return None
    length = getattr(audio.info, "length", None)
    return float(length) if length else None


class AssetOrchestrator:
    """Runs the asset stage for one video at a time."""

    def __init__(
        self,
        store: Optional[VideoStore] = None,
        gateway: Optional[ProviderGateway] = None,
        storage: Optional[StorageClient] = None,
        image_concurrency: Optional[int] = None
    ):
        self.store = store or video_store
        self.gateway = gateway or ProviderGateway()
        self.storage = storage or default_storage
        self.image_concurrency = image_concurrency or settings.image_concurrency
        self.scene_images = SceneImageGenerator(self.gateway, self.storage, self.store)

    async def claim_run(self, video_id: str) -> str:
        """
        Reserve the next asset run for a queued job.

        Returns:
            Claim token to pass to ``ensure_assets``

        Raises:
            MissingScriptError: No approved script
            ValidationError: Storyboard has no scenes
            InvalidTransitionError: Video is completed or cancelled
            ConflictError: An asset run is in progress or already queued
        """
        video = await self.store.get(video_id)
        if not (video.script_text or "").strip():
            raise MissingScriptError("Script text is required before generating assets", video_id=video_id)
        if is_terminal(video.status):
            raise InvalidTransitionError(
                f"Video is {video.status.value}, assets can no longer change",
                video_id=video_id,
                code="TERMINAL_STATUS"
            )
        if not video.storyboard:
            raise ValidationError("Storyboard has no scenes", video_id=video_id)
        return await self.store.claim_stage(video_id, ASSETS_STAGE)

    async def ensure_assets(self, video_id: str, claim_token: Optional[str] = None) -> AssetResult:
        """
        Generate whatever assets the video is missing.

        A second call after everything is ready makes no writes and no
        provider calls. A stored status left behind by an earlier run
        (partial, failed, or a dead generating run) is settled again even
        when nothing is left to generate.

        Args:
            video_id: Video to process
            claim_token: Token from ``claim_run``; released when the run ends

        Returns:
            AssetResult describing the settled state

        Raises:
            VideoNotFoundError: Unknown video
            MissingScriptError: No approved script
            ConflictError: Another asset run holds the lock or the claim
            InvalidTransitionError: Status does not allow an asset run
        """
        set_video_id(video_id)
        async with self.store.claimed_stage(video_id, ASSETS_STAGE, claim_token):
            return await self._ensure(video_id)

    async def _ensure(self, video_id: str) -> AssetResult:
        video = await self.store.get(video_id)

        if not (video.script_text or "").strip():
            raise MissingScriptError("Script text is required before generating assets", video_id=video_id)

        needs_audio = not video.audio_ready
        needs_captions = not video.captions_ready
        scene_indices = video.scenes_needing_images()

        if not (needs_audio or needs_captions or scene_indices) and video.storyboard:
            if video.status in UNSETTLED:
                return await self._resettle(video)
            logger.info("All assets present, nothing to do")
            return self._result(video, skipped=True)

        if not video.storyboard:
            raise ValidationError("Storyboard has no scenes", video_id=video_id)

        async with self.store.stage_lock(video_id, ASSETS_STAGE) as token:
            # Holding the lock means a stored assets_generating belongs to a dead run
            recover = video.status == VideoStatus.ASSETS_GENERATING

            def _start(v: Video) -> None:
                v.run_token = token
                v.error_message = None
                v.pending_upload_path = None

            video = await self.store.transition(
                video_id, VideoStatus.ASSETS_GENERATING, recover=recover, mutate=_start
            )
            logger.info(
                "Asset run started",
                extra={
                    "needs_audio": needs_audio,
                    "needs_captions": needs_captions,
                    "scene_indices": scene_indices,
                }
            )

            failures: List[AssetFailure] = []
            try:
                outcomes = await asyncio.gather(
                    self._narration(video, token, needs_audio, needs_captions, failures),
                    self._scene_batch(video, token, scene_indices),
                    return_exceptions=True
                )
            except asyncio.CancelledError:
                await self._settle_quietly(video_id, token, failures, "asset run cancelled")
                raise

            stale = [o for o in outcomes if isinstance(o, StaleRunError)]
            if stale:
                logger.info("Asset run superseded or cancelled, abandoning")
                return self._result(await self.store.get(video_id), failures=failures)

            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    logger.error("Asset run step crashed", exc_info=outcome)
                    failures.append(AssetFailure(asset="run", message=str(outcome)))

            for outcome in outcomes[1] if isinstance(outcomes[1], list) else []:
                if not outcome.persisted and outcome.reason:
                    failures.append(AssetFailure(asset=f"image:{outcome.index}", message=outcome.reason))

            try:
                final = await self._settle(video_id, token, failures)
            except StaleRunError:
                logger.info("Asset run cancelled before settling")
                return self._result(await self.store.get(video_id), failures=failures)

        logger.info(
            f"Asset run finished with {final.status.value}",
            extra={"status": final.status.value, "failures": len(failures)}
        )
        return self._result(final, failures=failures)

    async def regenerate_scene(
        self,
        video_id: str,
        index: int,
        new_prompt: Optional[str] = None
    ) -> SceneOutcome:
        """
        Regenerate one scene image, optionally with a new prompt.

        Status is left untouched; the scene's dirty flag is cleared on success.

        Raises:
            VideoNotFoundError: Unknown video
            ValidationError: Index out of range
            InvalidTransitionError: Video is completed or cancelled
            ConflictError: Video is rendering, or an asset run holds the lock
        """
        set_video_id(video_id)
        video = await self.store.get(video_id)

        if is_terminal(video.status):
            raise InvalidTransitionError(
                f"Video is {video.status.value}, scenes can no longer change",
                video_id=video_id,
                code="TERMINAL_STATUS"
            )
        if video.status == VideoStatus.RENDERING:
            raise ConflictError("Video is rendering", video_id=video_id, code="RENDER_IN_PROGRESS")
        if index < 0 or index >= len(video.storyboard):
            raise ValidationError(f"Scene index {index} out of range", video_id=video_id)

        async with self.store.stage_lock(video_id, ASSETS_STAGE) as token:
            def _claim(v: Video) -> None:
                if index >= len(v.storyboard):
                    raise ValidationError(f"Scene index {index} out of range", video_id=video_id)
                if new_prompt is not None and new_prompt.strip():
                    v.storyboard[index].image_prompt = new_prompt.strip()
                    v.storyboard_version += 1
                v.run_token = token
                v.pending_upload_path = None

            video = await self.store.update(video_id, _claim)
            prompt = video.storyboard[index].effective_prompt

            try:
                outcome = await self.scene_images.run(video_id, index, prompt, run_token=token)
                await self._settle_if_complete(video_id, token)
            finally:
                await self._release_token(video_id, token)

        logger.info(
            f"Scene {index} regenerated",
            extra={"scene_index": index, "placeholder_used": outcome.placeholder_used}
        )
        return outcome

    async def _narration(
        self,
        video: Video,
        token: str,
        needs_audio: bool,
        needs_captions: bool,
        failures: List[AssetFailure]
    ) -> None:
        """Audio first, then captions timed to it."""
        script = video.script_text
        audio_duration = video.audio_duration

        if needs_audio:
            try:
                audio = await self.gateway.synthesize_speech(script)
            except UpstreamError as e:
                failures.append(AssetFailure(asset="audio", kind=e.kind, message=e.message))
                return

            try:
                audio_url = await self.storage.upload_file(
                    settings.assets_bucket,
                    f"videos/{video.id}/audio.mp3",
                    audio,
                    "audio/mpeg"
                )
            except RetryableError as e:
                failures.append(AssetFailure(asset="audio", message=f"upload: {e.message}"))
                return

            audio_duration = measure_audio_duration(audio)

            def _record_audio(v: Video) -> None:
                v.audio_url = audio_url
                v.audio_duration = audio_duration
                if audio_duration:
                    v.allocate_durations(audio_duration)

            await self.store.update(video.id, _record_audio, run_token=token)
            logger.info("Narration audio ready", extra={"audio_duration": audio_duration})

        if needs_captions:
            total = audio_duration or estimate_duration(script)
            srt = to_srt(self.gateway.build_captions(script, total))
            try:
                captions_url = await self.storage.upload_file(
                    settings.assets_bucket,
                    f"videos/{video.id}/captions.srt",
                    srt.encode("utf-8"),
                    "application/x-subrip"
                )
            except RetryableError as e:
                failures.append(AssetFailure(asset="captions", message=f"upload: {e.message}"))
                return

            def _record_captions(v: Video) -> None:
                v.captions_url = captions_url

            await self.store.update(video.id, _record_captions, run_token=token)
            logger.info("Captions ready", extra={"caption_duration": total})

    async def _scene_batch(self, video: Video, token: str, indices: List[int]) -> List[SceneOutcome]:
        semaphore = asyncio.Semaphore(self.image_concurrency)

        async def _one(index: int) -> SceneOutcome:
            async with semaphore:
                return await self.scene_images.run(
                    video.id, index, video.storyboard[index].effective_prompt, run_token=token
                )

        results = await asyncio.gather(*[_one(i) for i in indices], return_exceptions=True)
        outcomes = []
        for index, result in zip(indices, results):
            if isinstance(result, StaleRunError):
                raise result
            if isinstance(result, BaseException):
                logger.error(f"Scene {index} crashed", exc_info=result, extra={"scene_index": index})
                outcomes.append(SceneOutcome(index=index, reason=str(result)))
            else:
                outcomes.append(result)
        return outcomes

    async def _settle(self, video_id: str, token: str, failures: List[AssetFailure]) -> Video:
        hard_failure = any(f.asset in ("audio", "captions", "run") for f in failures)

        def _finish(v: Video) -> None:
            target = resolve_asset_status(v.images_ready, v.audio_ready, v.captions_ready, hard_failure)
            assert_transition(v.status, target, video_id=video_id)
            v.status = target
            v.run_token = None
            if target == VideoStatus.ASSETS_GENERATED:
                v.error_message = None
            else:
                v.error_message = "; ".join(f"{f.asset}: {f.message}" for f in failures) or _missing_summary(v)

        return await self.store.update(video_id, _finish, run_token=token)

    async def _resettle(self, video: Video) -> AssetResult:
        """Re-resolve a stale stored status when every asset is already persisted."""
        async with self.store.stage_lock(video.id, ASSETS_STAGE) as token:
            def _start(v: Video) -> None:
                v.run_token = token

            await self.store.transition(
                video.id,
                VideoStatus.ASSETS_GENERATING,
                recover=video.status == VideoStatus.ASSETS_GENERATING,
                mutate=_start
            )
            try:
                final = await self._settle(video.id, token, [])
            except StaleRunError:
                logger.info("Video cancelled before settling")
                return self._result(await self.store.get(video.id))

        logger.info(
            f"Stored {video.status.value} settled to {final.status.value}",
            extra={"from_status": video.status.value, "status": final.status.value}
        )
        return self._result(final)

    async def _settle_if_complete(self, video_id: str, token: str) -> None:
        """After a single-scene fix, move a partial or failed video on once nothing is missing."""
        video = await self.store.get(video_id)
        if video.status not in (VideoStatus.ASSETS_PARTIAL, VideoStatus.ASSETS_FAILED):
            return
        if not (video.images_ready and video.audio_ready and video.captions_ready):
            return
        try:
            await self.store.transition(video_id, VideoStatus.ASSETS_GENERATING, run_token=token)
            await self._settle(video_id, token, [])
        except StaleRunError:
            logger.info("Video cancelled before settling")

    async def _settle_quietly(self, video_id: str, token: str, failures: List[AssetFailure], reason: str) -> None:
        failures.append(AssetFailure(asset="run", message=reason))
        try:
            await self._settle(video_id, token, failures)
        except Exception as e:
            logger.warning("Could not settle interrupted asset run", exc_info=e)

    async def _release_token(self, video_id: str, token: str) -> None:
        def _clear(v: Video) -> None:
            v.run_token = None

        try:
            await self.store.update(video_id, _clear, run_token=token)
        except StaleRunError:
            pass

    def _result(
        self,
        video: Video,
        skipped: bool = False,
        failures: Optional[List[AssetFailure]] = None
    ) -> AssetResult:
        return AssetResult(
            video_id=video.id,
            status=video.status,
            skipped=skipped,
            readiness=AssetReadiness(
                images=video.images_ready,
                audio=video.audio_ready,
                captions=video.captions_ready
            ),
            images_done=video.images_done,
            images_total=len(video.storyboard),
            placeholders=[
                PlaceholderScene(index=i, reason=video.storyboard[i].placeholder_reason or "")
                for i in video.placeholder_scenes
            ],
            failures=failures or []
        )


def _missing_summary(video: Video) -> str:
    missing = []
    if not video.audio_ready:
        missing.append("audio")
    if not video.captions_ready:
        missing.append("captions")
    missing.extend(f"image:{i}" for i in video.scenes_needing_images())
    return "missing: " + ", ".join(missing)
