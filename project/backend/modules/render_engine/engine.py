"""
Render engine.

Composites scene images, narration and captions into the final video,
uploads it, and settles the video at ``completed`` or ``render_failed``.
"""

import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from shared.config import settings
from shared.errors import (
    ConflictError,
    EncodeError,
    PipelineError,
    PreconditionError,
    RetryableError,
    StaleRunError,
    UploadError,
)
from shared.logging import get_logger, set_video_id
from shared.models.pipeline import RenderResult
from shared.models.video import Video, VideoStatus
from shared.pipeline_state import render_blockers
from shared.storage import StorageClient, storage as default_storage
from shared.video_store import VideoStore, video_store
from modules.render_engine.encoder import (
    build_encode_args,
    convert_vtt_to_srt,
    media_duration,
    run_ffmpeg,
)
from modules.render_engine.filters import build_video_filters
from modules.render_engine.manifest import DEFAULT_SCENE_SECONDS, build_concat_manifest

logger = get_logger("render_engine")

RENDER_STAGE = "render"


class RenderStageError(PipelineError):
    """A render step failed; ``stage`` names which one."""

    def __init__(self, stage: str, message: str, video_id: Optional[str] = None):
        self.stage = stage
        super().__init__(f"{stage}: {message}", video_id, code=f"RENDER_{stage.upper()}_FAILED")


def _suffix(url: str, default: str) -> str:
    suffix = Path(urlparse(url).path).suffix.lower()
    return suffix or default


def scene_durations(video: Video) -> List[float]:
    """Per-scene seconds, re-fitted to the narration when its length is known."""
    timed = video.model_copy(deep=True)
    if timed.audio_duration:
        timed.allocate_durations(timed.audio_duration)
    return [scene.duration if scene.duration > 0 else DEFAULT_SCENE_SECONDS for scene in timed.storyboard]


class RenderEngine:
    """Runs the render stage for one video at a time."""

    def __init__(
        self,
        store: Optional[VideoStore] = None,
        storage: Optional[StorageClient] = None
    ):
        self.store = store or video_store
        self.storage = storage or default_storage

    async def check_ready(self, video_id: str) -> Video:
        """
        Validate that a render may start, without changing anything.

        Raises:
            VideoNotFoundError: Unknown video
            ConflictError: A render is already in flight
            PreconditionError: Inputs are missing; ``missing`` lists them
        """
        video = await self.store.get(video_id)
        locked = await self.store.is_stage_locked(video_id, RENDER_STAGE)
        if locked:
            raise ConflictError("A render is already in progress", video_id=video_id, code="RENDER_IN_PROGRESS")

        # A stored "rendering" with no lock holder is a render that died mid-run
        missing = render_blockers(video, recovering=video.status == VideoStatus.RENDERING)
        if missing:
            raise PreconditionError(
                f"Video is not ready to render: {', '.join(missing)}",
                missing=missing,
                video_id=video_id
            )
        return video

    async def claim_run(self, video_id: str) -> str:
        """
        Check readiness and reserve the next render for one caller.

        Returns:
            Claim token to pass to ``render``

        Raises:
            ConflictError: A render is already in flight or queued
            PreconditionError: Inputs are missing
        """
        await self.check_ready(video_id)
        return await self.store.claim_stage(video_id, RENDER_STAGE)

    async def render(self, video_id: str, claim_token: Optional[str] = None) -> RenderResult:
        """
        Encode and publish the final video.

        Args:
            video_id: Video to render
            claim_token: Token from ``claim_run``; released when the render ends

        Returns:
            RenderResult with the settled status

        Raises:
            VideoNotFoundError: Unknown video
            ConflictError: A render is already in flight, or claimed by another request
            PreconditionError: Inputs are missing (status unchanged)
        """
        set_video_id(video_id)
        async with self.store.claimed_stage(video_id, RENDER_STAGE, claim_token):
            return await self._render(video_id)

    async def _render(self, video_id: str) -> RenderResult:
        video = await self.check_ready(video_id)

        async with self.store.stage_lock(video_id, RENDER_STAGE) as token:
            recover = video.status == VideoStatus.RENDERING

            def _start(v: Video) -> None:
                v.run_token = token
                v.error_message = None

            video = await self.store.transition(
                video_id, VideoStatus.RENDERING, recover=recover, mutate=_start
            )
            logger.info("Render started", extra={"scenes": len(video.storyboard)})

            try:
                return await self._run(video, token)
            except StaleRunError:
                logger.info("Render superseded or cancelled, abandoning")
                current = await self.store.get(video_id)
                return RenderResult(video_id=video_id, status=current.status)
            except asyncio.CancelledError:
                await self._fail_quietly(video_id, token, "render: cancelled")
                raise

    async def _run(self, video: Video, token: str) -> RenderResult:
        pending = video.pending_upload_path
        if pending and os.path.exists(pending) and os.path.getsize(pending) > 0:
            logger.info("Retrying upload of previously encoded file", extra={"path": pending})
            return await self._publish(video, token, pending, subtitles_burned=False, upload_only=True)

        scratch = tempfile.mkdtemp(prefix=f"render-{video.id}-")
        try:
            local_path, subtitles_burned = await self._encode(video, scratch)
        except RenderStageError as e:
            return await self._fail(video.id, token, e.message)
        except EncodeError as e:
            return await self._fail(video.id, token, f"encode: {e.message}")
        except Exception as e:
            logger.error("Render crashed", exc_info=e)
            return await self._fail(video.id, token, f"render: {str(e)}")
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        return await self._publish(video, token, local_path, subtitles_burned=subtitles_burned)

    async def _download_inputs(self, video: Video, scratch: str) -> Tuple[List[str], str, Optional[str]]:
        semaphore = asyncio.Semaphore(settings.image_concurrency)

        async def _fetch(url: str, dest: str) -> str:
            async with semaphore:
                data = await self.storage.download_url(url)
            Path(dest).write_bytes(data)
            return dest

        image_jobs = [
            _fetch(scene.image_url, os.path.join(scratch, f"scene_{i:03d}{_suffix(scene.image_url, '.png')}"))
            for i, scene in enumerate(video.storyboard)
        ]
        audio_job = _fetch(video.audio_url, os.path.join(scratch, f"narration{_suffix(video.audio_url, '.mp3')}"))
        captions_job = _fetch(video.captions_url, os.path.join(scratch, f"captions{_suffix(video.captions_url, '.srt')}"))

        try:
            results = await asyncio.gather(audio_job, captions_job, *image_jobs)
        except RetryableError as e:
            raise RenderStageError("download", e.message, video_id=video.id) from e

        audio_path, captions_path, image_paths = results[0], results[1], list(results[2:])

        if captions_path.endswith(".vtt"):
            srt_path = os.path.join(scratch, "captions.srt")
            try:
                await convert_vtt_to_srt(captions_path, srt_path)
                captions_path = srt_path
            except EncodeError as e:
                logger.warning(f"Caption conversion failed, rendering without subtitles: {e.message}")
                captions_path = None

        return image_paths, audio_path, captions_path

    async def _encode(self, video: Video, scratch: str) -> Tuple[str, bool]:
        """
        Produce the encoded file.

        Returns:
            (path of the kept local copy, whether subtitles were burned in)
        """
        image_paths, audio_path, captions_path = await self._download_inputs(video, scratch)

        manifest_path = os.path.join(scratch, "images.ffconcat")
        manifest = build_concat_manifest(list(zip(image_paths, scene_durations(video))))
        Path(manifest_path).write_text(manifest, encoding="utf-8")

        output_path = os.path.join(scratch, "final.mp4")
        subtitles_burned = captions_path is not None

        try:
            await self._encode_once(manifest_path, audio_path, output_path, captions_path)
        except EncodeError as e:
            if not captions_path:
                raise
            logger.warning(
                f"Encode with subtitles failed, retrying without: {e.message}",
                extra={"encoder_output": e.output[-500:]}
            )
            if os.path.exists(output_path):
                os.remove(output_path)
            await self._encode_once(manifest_path, audio_path, output_path, None)
            subtitles_burned = False

        local_dir = Path(settings.renders_dir) / "videos"
        local_dir.mkdir(parents=True, exist_ok=True)
        local_path = str(local_dir / f"{video.id}.mp4")
        shutil.copyfile(output_path, local_path)
        return local_path, subtitles_burned

    async def _encode_once(
        self,
        manifest_path: str,
        audio_path: str,
        output_path: str,
        captions_path: Optional[str]
    ) -> None:
        graph = build_video_filters(
            settings.render_width,
            settings.render_height,
            settings.render_fps,
            settings.kenburns_max_zoom,
            subtitles_path=captions_path
        )
        args = build_encode_args(manifest_path, audio_path, graph.build(), output_path, settings.render_fps)
        await run_ffmpeg(args, output_path)

    async def _publish(
        self,
        video: Video,
        token: str,
        local_path: str,
        subtitles_burned: bool,
        upload_only: bool = False
    ) -> RenderResult:
        duration = await media_duration(local_path)
        if duration is None:
            duration = sum(scene_durations(video))

        try:
            data = Path(local_path).read_bytes()
            final_url = await self.storage.upload_file(
                settings.videos_bucket,
                f"finals/{video.id}.mp4",
                data,
                "video/mp4"
            )
        except (RetryableError, OSError) as e:
            error = UploadError(str(e), video_id=video.id, code="UPLOAD_FAILED")
            logger.error("Final upload failed", exc_info=error)
            return await self._fail(video.id, token, f"upload: {error.message}", pending_upload_path=local_path)

        total_duration = int(round(duration))

        def _complete(v: Video) -> None:
            v.final_video_url = final_url
            v.total_duration = total_duration
            v.error_message = None
            v.pending_upload_path = None
            v.run_token = None

        await self.store.transition(video.id, VideoStatus.COMPLETED, run_token=token, mutate=_complete)

        if not settings.keep_local_copy:
            try:
                os.remove(local_path)
            except OSError as e:
                logger.warning(f"Could not remove local copy: {str(e)}")

        logger.info(
            "Render completed",
            extra={"final_video_url": final_url, "total_duration": total_duration, "subtitles_burned": subtitles_burned}
        )
        return RenderResult(
            video_id=video.id,
            status=VideoStatus.COMPLETED,
            final_video_url=final_url,
            subtitles_burned=subtitles_burned,
            duration=total_duration,
            upload_only=upload_only
        )

    async def _fail(
        self,
        video_id: str,
        token: str,
        message: str,
        pending_upload_path: Optional[str] = None
    ) -> RenderResult:
        def _mark(v: Video) -> None:
            v.error_message = message
            v.pending_upload_path = pending_upload_path
            v.run_token = None

        logger.error(f"Render failed: {message}")
        await self.store.transition(video_id, VideoStatus.RENDER_FAILED, run_token=token, mutate=_mark)
        return RenderResult(video_id=video_id, status=VideoStatus.RENDER_FAILED)

    async def _fail_quietly(self, video_id: str, token: str, message: str) -> None:
        try:
            await self._fail(video_id, token, message)
        except Exception as e:
            logger.warning("Could not mark interrupted render as failed", exc_info=e)
