"""
Video record store.

Single source of truth for a video's status and asset slots. Every write
re-reads the row under a per-video lock, checks the caller's run token, and
invalidates the cached status copy.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional

from shared.config import settings
from shared.database import DatabaseClient, db
from shared.errors import ConflictError, InvalidTransitionError, StaleRunError, VideoNotFoundError
from shared.logging import get_logger
from shared.models.video import Video, VideoStatus
from shared.pipeline_state import assert_transition, is_terminal
from shared.redis_client import RedisClient, redis_client

logger = get_logger("video_store")

TABLE = "videos"


def status_cache_key(video_id: str) -> str:
    return f"video_status:{video_id}"


def status_version_key(video_id: str) -> str:
    return f"video_status_version:{video_id}"


def stage_lock_key(video_id: str, stage: str) -> str:
    return f"lock:{stage}:{video_id}"


def stage_claim_key(video_id: str, stage: str) -> str:
    return f"queued:{stage}:{video_id}"


class VideoStore:
    """Reads and writes ``videos`` rows as ``Video`` aggregates."""

    def __init__(
        self,
        database: Optional[DatabaseClient] = None,
        cache: Optional[RedisClient] = None
    ):
        self._db = database or db
        self._cache = cache or redis_client
        # Serializes read-modify-write per video inside this process
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_manager = asyncio.Lock()

    async def _get_lock(self, video_id: str) -> asyncio.Lock:
        """Get or create lock for a video_id."""
        async with self._lock_manager:
            if video_id not in self._locks:
                self._locks[video_id] = asyncio.Lock()
            return self._locks[video_id]

    async def get(self, video_id: str) -> Video:
        """
        Load a video.

        Raises:
            VideoNotFoundError: If no row exists
        """
        result = await self._db.table(TABLE).select("*").eq("id", video_id).execute()
        if not result.data:
            raise VideoNotFoundError(f"Video {video_id} not found", video_id=video_id)
        return Video.from_row(result.data[0])

    async def create(self, video: Video) -> Video:
        await self._db.table(TABLE).insert(video.to_row()).execute()
        logger.info("Video created", extra={"video_id": video.id})
        return video

    async def update(
        self,
        video_id: str,
        mutate: Callable[[Video], None],
        run_token: Optional[str] = None
    ) -> Video:
        """
        Apply ``mutate`` to a fresh copy of the record and write it back.

        Args:
            video_id: Video to update
            mutate: Callback that edits the ``Video`` in place
            run_token: If given, the stored token must still match

        Returns:
            The written record

        Raises:
            VideoNotFoundError: If no row exists
            StaleRunError: If the run token no longer matches
            InvalidTransitionError: If the write would change a terminal status
        """
        lock = await self._get_lock(video_id)
        async with lock:
            current = await self.get(video_id)

            if run_token is not None and current.run_token != run_token:
                raise StaleRunError(
                    f"Run {run_token} is no longer current for video {video_id}",
                    video_id=video_id,
                    code="STALE_RUN"
                )

            updated = current.model_copy(deep=True)
            mutate(updated)

            if is_terminal(current.status) and updated.status != current.status:
                raise InvalidTransitionError(
                    f"Video {video_id} is {current.status.value} and cannot change status",
                    video_id=video_id,
                    code="TERMINAL_STATUS"
                )

            row = updated.to_row()
            row.pop("id")
            await self._db.table(TABLE).update(row).eq("id", video_id).execute()

        await self.invalidate_status(video_id)
        return updated

    async def transition(
        self,
        video_id: str,
        target: VideoStatus,
        run_token: Optional[str] = None,
        recover: bool = False,
        mutate: Optional[Callable[[Video], None]] = None
    ) -> Video:
        """
        Move a video to ``target`` after checking the transition table.

        ``mutate`` may set additional fields in the same write.
        """
        def _apply(video: Video) -> None:
            assert_transition(video.status, target, video_id=video_id, recover=recover)
            previous = video.status
            video.status = target
            if mutate:
                mutate(video)
            logger.info(
                f"Status {previous.value} -> {target.value}",
                extra={"video_id": video_id, "from_status": previous.value, "to_status": target.value}
            )

        return await self.update(video_id, _apply, run_token=run_token)

    async def invalidate_status(self, video_id: str) -> None:
        """
        Bump the status version and drop the cached view.

        The version is bumped after the row is written, so a view read
        before the write is never accepted from the cache afterwards.
        """
        try:
            await self._cache.incr(status_version_key(video_id))
        except Exception as e:
            logger.warning("Failed to bump status version", exc_info=e, extra={"video_id": video_id})
        try:
            await self._cache.delete(status_cache_key(video_id))
        except Exception as e:
            logger.warning("Failed to invalidate status cache", exc_info=e, extra={"video_id": video_id})

    async def status_version(self, video_id: str) -> int:
        """Current status version; every write increments it."""
        value = await self._cache.get(status_version_key(video_id))
        return int(value) if value else 0

    async def is_stage_locked(self, video_id: str, stage: str) -> bool:
        return await self._cache.is_locked(stage_lock_key(video_id, stage))

    @asynccontextmanager
    async def stage_lock(self, video_id: str, stage: str):
        """
        Hold the cross-process lock for one stage of one video.

        Yields the lock token, which doubles as the run token.

        Raises:
            ConflictError: If another run of the stage holds the lock
        """
        key = stage_lock_key(video_id, stage)
        token = uuid.uuid4().hex
        acquired = await self._cache.acquire_lock(key, token, settings.stage_lock_ttl)
        if not acquired:
            raise ConflictError(
                f"A {stage} run is already in progress for video {video_id}",
                video_id=video_id,
                code="STAGE_IN_PROGRESS"
            )
        try:
            yield token
        finally:
            try:
                await self._cache.release_lock(key, token)
            except Exception as e:
                logger.warning(
                    "Failed to release stage lock",
                    exc_info=e,
                    extra={"video_id": video_id, "stage": stage}
                )

    async def claim_stage(self, video_id: str, stage: str) -> str:
        """
        Reserve the next run of a stage before it is queued or started.

        The claim is held from the request until the run finishes, so a second
        request for the same stage is refused instead of queued.

        Returns:
            Claim token to hand to the run

        Raises:
            ConflictError: If the stage is running or already claimed
        """
        if await self.is_stage_locked(video_id, stage):
            raise ConflictError(
                f"A {stage} run is already in progress for video {video_id}",
                video_id=video_id,
                code="STAGE_IN_PROGRESS"
            )
        token = uuid.uuid4().hex
        claimed = await self._cache.acquire_lock(stage_claim_key(video_id, stage), token, settings.stage_lock_ttl)
        if not claimed:
            raise ConflictError(
                f"A {stage} run is already queued for video {video_id}",
                video_id=video_id,
                code="STAGE_QUEUED"
            )
        return token

    async def release_stage_claim(self, video_id: str, stage: str, token: str) -> None:
        try:
            await self._cache.release_lock(stage_claim_key(video_id, stage), token)
        except Exception as e:
            logger.warning(
                "Failed to release stage claim",
                exc_info=e,
                extra={"video_id": video_id, "stage": stage}
            )

    async def assert_stage_unclaimed(self, video_id: str, stage: str, claim_token: Optional[str] = None) -> None:
        """
        Raise ``ConflictError`` if someone other than ``claim_token`` holds the claim.
        """
        holder = await self._cache.get(stage_claim_key(video_id, stage))
        if holder is not None and holder != claim_token:
            raise ConflictError(
                f"A {stage} run is already queued for video {video_id}",
                video_id=video_id,
                code="STAGE_QUEUED"
            )

    @asynccontextmanager
    async def claimed_stage(self, video_id: str, stage: str, claim_token: Optional[str] = None):
        """
        Run a stage on behalf of ``claim_token``, releasing the claim on exit.

        Without a token the run is refused while any claim is outstanding.

        Raises:
            ConflictError: If another request holds the claim
        """
        try:
            await self.assert_stage_unclaimed(video_id, stage, claim_token)
            yield
        finally:
            if claim_token:
                await self.release_stage_claim(video_id, stage, claim_token)


# Singleton instance
video_store = VideoStore()
