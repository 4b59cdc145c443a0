"""
Status read model.

Builds the polled status view from the persisted record, with a short-lived
Redis copy that every store write invalidates.
"""

from typing import Optional

from shared.config import settings
from shared.logging import get_logger
from shared.models.pipeline import VideoStatusView
from shared.models.video import Video
from shared.pipeline_state import PROGRESS, render_blockers
from shared.redis_client import RedisClient, redis_client
from shared.video_store import VideoStore, status_cache_key, video_store

logger = get_logger(__name__)


def build_status_view(video: Video) -> VideoStatusView:
    """Project a video onto the status view. The stored status is reported as-is."""
    progress, message = PROGRESS[video.status]
    if video.error_message and not video.final_video_url:
        message = f"{message}: {video.error_message}"
    return VideoStatusView(
        video_id=video.id,
        status=video.status,
        progress=progress,
        message=message,
        images_done=video.images_done,
        images_total=len(video.storyboard),
        audio_ready=video.audio_ready,
        captions_ready=video.captions_ready,
        dirty_scenes=sorted(video.dirty_scenes),
        placeholder_scenes=video.placeholder_scenes,
        storyboard_version=video.storyboard_version,
        can_render=not render_blockers(video),
        error_message=video.error_message,
        final_video_url=video.final_video_url
    )


async def get_status(
    video_id: str,
    store: Optional[VideoStore] = None,
    cache: Optional[RedisClient] = None
) -> VideoStatusView:
    """
    Current status of a video.

    Raises:
        VideoNotFoundError: Unknown video
    """
    store = store or video_store
    cache = cache or redis_client
    key = status_cache_key(video_id)

    # Cached views are tagged with the status version current before the
    # row was read; any later write bumps the version and retires them
    version: Optional[int] = None
    try:
        version = await store.status_version(video_id)
        cached = await cache.get_json(key)
        if cached and cached.get("version") == version:
            return VideoStatusView(**cached["view"])
    except Exception as e:
        logger.warning("Failed to read status cache", exc_info=e, extra={"video_id": video_id})

    view = build_status_view(await store.get(video_id))

    if version is not None:
        try:
            await cache.set_json(
                key,
                {"version": version, "view": view.model_dump(mode="json")},
                ttl=settings.status_cache_ttl
            )
        except Exception as e:
            logger.warning("Failed to write status cache", exc_info=e, extra={"video_id": video_id})

    return view
