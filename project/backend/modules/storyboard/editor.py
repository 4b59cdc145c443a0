"""
Storyboard editing.

User-driven mutations of a video's script and scenes. Edits never roll the
status back: they mark scenes dirty or clear asset URLs, and the next asset
run picks the work up.
"""

from typing import Iterable, List, Optional

from shared.errors import ConflictError, InvalidTransitionError, ValidationError
from shared.logging import get_logger, set_video_id
from shared.models.video import Scene, Video, VideoStatus
from shared.pipeline_state import assert_transition, is_terminal
from shared.video_store import VideoStore, video_store

logger = get_logger("storyboard")

CLEARABLE_ASSETS = ("audio", "captions")


def _guard_editable(video: Video) -> None:
    if is_terminal(video.status):
        raise InvalidTransitionError(
            f"Video is {video.status.value} and can no longer be edited",
            video_id=video.id,
            code="TERMINAL_STATUS"
        )
    if video.status == VideoStatus.RENDERING:
        raise ConflictError("Video is rendering", video_id=video.id, code="RENDER_IN_PROGRESS")


def _guard_index(video: Video, index: int) -> None:
    if index < 0 or index >= len(video.storyboard):
        raise ValidationError(
            f"Scene index {index} out of range (storyboard has {len(video.storyboard)} scenes)",
            video_id=video.id
        )


def _storyboard_changed(video: Video) -> None:
    video.storyboard_version += 1
    # An encoded file from before the edit must not be uploaded later
    video.pending_upload_path = None
    if video.audio_duration:
        video.allocate_durations(video.audio_duration)


def remap_after_reorder(dirty: Iterable[int], new_order: List[int]) -> List[int]:
    """Follow each dirty scene to its new position. ``new_order[new] == old``."""
    position = {old: new for new, old in enumerate(new_order)}
    return sorted(position[i] for i in dirty if i in position)


def remap_after_delete(dirty: Iterable[int], deleted: int) -> List[int]:
    """Drop the deleted index and shift later indices down by one."""
    return sorted(i - 1 if i > deleted else i for i in dirty if i != deleted)


class StoryboardEditor:
    """Entry points for script and storyboard changes."""

    def __init__(self, store: Optional[VideoStore] = None):
        self.store = store or video_store

    async def edit_scene(
        self,
        video_id: str,
        index: int,
        text: Optional[str] = None,
        image_prompt: Optional[str] = None
    ) -> Video:
        """
        Change a scene's description and/or image prompt.

        A changed scene is marked dirty so its image is regenerated.

        Raises:
            ValidationError: Bad index or nothing to change
        """
        set_video_id(video_id)
        if text is None and image_prompt is None:
            raise ValidationError("Provide text or image_prompt", video_id=video_id)
        if text is not None and not text.strip():
            raise ValidationError("Scene text cannot be empty", video_id=video_id)

        def _apply(video: Video) -> None:
            _guard_editable(video)
            _guard_index(video, index)
            scene = video.storyboard[index]
            before = (scene.description, scene.image_prompt)
            if text is not None:
                scene.description = text.strip()
            if image_prompt is not None:
                scene.image_prompt = image_prompt.strip() or None
            if (scene.description, scene.image_prompt) == before:
                return
            video.dirty_scenes = sorted(set(video.dirty_scenes) | {index})
            _storyboard_changed(video)

        video = await self.store.update(video_id, _apply)
        logger.info(f"Scene {index} edited", extra={"scene_index": index, "storyboard_version": video.storyboard_version})
        return video

    async def reorder_scenes(self, video_id: str, new_order: List[int]) -> Video:
        """
        Reorder scenes. ``new_order[k]`` is the current index of the scene
        that moves to position ``k``.

        Raises:
            ValidationError: If ``new_order`` is not a permutation of the current indices
        """
        set_video_id(video_id)

        def _apply(video: Video) -> None:
            _guard_editable(video)
            if sorted(new_order) != list(range(len(video.storyboard))):
                raise ValidationError(
                    f"new_order must be a permutation of 0..{len(video.storyboard) - 1}",
                    video_id=video_id
                )
            video.storyboard = [video.storyboard[old] for old in new_order]
            video.dirty_scenes = remap_after_reorder(video.dirty_scenes, new_order)
            _storyboard_changed(video)

        video = await self.store.update(video_id, _apply)
        logger.info("Scenes reordered", extra={"new_order": new_order})
        return video

    async def delete_scene(self, video_id: str, index: int) -> Video:
        """
        Remove one scene.

        Raises:
            ValidationError: Bad index, or it is the last remaining scene
        """
        set_video_id(video_id)

        def _apply(video: Video) -> None:
            _guard_editable(video)
            _guard_index(video, index)
            if len(video.storyboard) == 1:
                raise ValidationError("Cannot delete the last scene", video_id=video_id)
            del video.storyboard[index]
            video.dirty_scenes = remap_after_delete(video.dirty_scenes, index)
            _storyboard_changed(video)

        video = await self.store.update(video_id, _apply)
        logger.info(f"Scene {index} deleted", extra={"scene_index": index, "remaining": len(video.storyboard)})
        return video

    async def approve_script(self, video_id: str, script_text: str) -> Video:
        """
        Approve (or re-approve) the narration script.

        First approval moves the video to ``script_approved``. Approving a
        different text later keeps the status but clears audio and captions
        and marks every scene that already has an image dirty.
        """
        set_video_id(video_id)
        if not script_text or not script_text.strip():
            raise ValidationError("Script text cannot be empty", video_id=video_id)
        text = script_text.strip()

        def _apply(video: Video) -> None:
            _guard_editable(video)
            if video.status in (VideoStatus.DRAFT, VideoStatus.SCRIPT_GENERATED):
                if video.status == VideoStatus.DRAFT:
                    assert_transition(video.status, VideoStatus.SCRIPT_GENERATED, video_id=video_id)
                    video.status = VideoStatus.SCRIPT_GENERATED
                assert_transition(video.status, VideoStatus.SCRIPT_APPROVED, video_id=video_id)
                video.status = VideoStatus.SCRIPT_APPROVED
                video.script_text = text
                return

            if text == (video.script_text or ""):
                return
            video.script_text = text
            video.audio_url = None
            video.audio_duration = None
            video.captions_url = None
            video.pending_upload_path = None
            imaged = {i for i, scene in enumerate(video.storyboard) if scene.has_image}
            video.dirty_scenes = sorted(set(video.dirty_scenes) | imaged)

        video = await self.store.update(video_id, _apply)
        logger.info("Script approved", extra={"status": video.status.value})
        return video

    async def set_storyboard(self, video_id: str, scenes: List[Scene]) -> Video:
        """
        Replace the whole storyboard.

        Moves ``script_approved`` to ``storyboard_generated``; later
        replacements keep the status. Image URLs on the new scenes are dropped.
        """
        set_video_id(video_id)
        if not scenes:
            raise ValidationError("Storyboard must contain at least one scene", video_id=video_id)

        fresh = [
            Scene(
                description=scene.description,
                image_prompt=scene.image_prompt,
                duration=scene.duration,
                duration_locked=scene.duration_locked
            )
            for scene in scenes
        ]

        def _apply(video: Video) -> None:
            _guard_editable(video)
            if video.status in (VideoStatus.DRAFT, VideoStatus.SCRIPT_GENERATED):
                raise InvalidTransitionError(
                    "Approve the script before creating a storyboard",
                    video_id=video_id,
                    code="INVALID_TRANSITION"
                )
            if video.status == VideoStatus.SCRIPT_APPROVED:
                video.status = VideoStatus.STORYBOARD_GENERATED
            video.storyboard = [scene.model_copy() for scene in fresh]
            video.dirty_scenes = []
            _storyboard_changed(video)

        video = await self.store.update(video_id, _apply)
        logger.info("Storyboard replaced", extra={"scenes": len(video.storyboard)})
        return video

    async def clear_asset(self, video_id: str, asset: str) -> Video:
        """
        Drop the audio or captions so the next asset run regenerates it.

        Raises:
            ValidationError: Unknown asset name
        """
        set_video_id(video_id)
        if asset not in CLEARABLE_ASSETS:
            raise ValidationError(
                f"Unknown asset '{asset}', expected one of {', '.join(CLEARABLE_ASSETS)}",
                video_id=video_id
            )

        def _apply(video: Video) -> None:
            _guard_editable(video)
            if asset == "audio":
                video.audio_url = None
                video.audio_duration = None
            else:
                video.captions_url = None
            video.pending_upload_path = None

        video = await self.store.update(video_id, _apply)
        logger.info(f"Cleared {asset}", extra={"asset": asset})
        return video

    async def cancel_video(self, video_id: str) -> Video:
        """
        Cancel the video. In-flight runs notice through their run token and
        stop writing. Cancelling an already cancelled video is a no-op.

        Raises:
            InvalidTransitionError: If the video is already completed
        """
        set_video_id(video_id)
        video = await self.store.get(video_id)
        if video.status == VideoStatus.CANCELLED:
            return video

        def _clear(v: Video) -> None:
            v.run_token = None

        video = await self.store.transition(video_id, VideoStatus.CANCELLED, mutate=_clear)
        logger.info("Video cancelled")
        return video
