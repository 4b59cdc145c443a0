"""
Video aggregate and storyboard scenes.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field


class VideoStatus(str, Enum):
    """Pipeline lifecycle states."""

    DRAFT = "draft"
    SCRIPT_GENERATED = "script_generated"
    SCRIPT_APPROVED = "script_approved"
    STORYBOARD_GENERATED = "storyboard_generated"
    ASSETS_GENERATING = "assets_generating"
    ASSETS_GENERATED = "assets_generated"
    ASSETS_PARTIAL = "assets_partial"
    ASSETS_FAILED = "assets_failed"
    RENDERING = "rendering"
    COMPLETED = "completed"
    RENDER_FAILED = "render_failed"
    CANCELLED = "cancelled"


def is_ready_url(url: Optional[str]) -> bool:
    """A well-formed absolute http(s) URL is the only readiness signal for an asset."""
    if not url or not isinstance(url, str):
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class Scene(BaseModel):
    """One storyboard entry. Its index in the storyboard is its identity."""

    description: str
    image_prompt: Optional[str] = None
    image_url: Optional[str] = None
    duration: float = 0.0
    duration_locked: bool = False
    placeholder_used: bool = False
    placeholder_reason: Optional[str] = None

    @property
    def effective_prompt(self) -> str:
        return (self.image_prompt or "").strip() or self.description

    @property
    def has_image(self) -> bool:
        return is_ready_url(self.image_url)


class Video(BaseModel):
    """Root aggregate persisted as one row of the ``videos`` table."""

    id: str
    status: VideoStatus = VideoStatus.DRAFT
    script_text: Optional[str] = None
    storyboard: List[Scene] = Field(default_factory=list)
    dirty_scenes: List[int] = Field(default_factory=list)
    audio_url: Optional[str] = None
    audio_duration: Optional[float] = None
    captions_url: Optional[str] = None
    final_video_url: Optional[str] = None
    total_duration: Optional[int] = None
    error_message: Optional[str] = None
    storyboard_version: int = 1
    run_token: Optional[str] = None
    pending_upload_path: Optional[str] = None

    @property
    def image_urls(self) -> List[Optional[str]]:
        """Per-scene image URLs, index-aligned with the storyboard."""
        return [scene.image_url for scene in self.storyboard]

    @property
    def audio_ready(self) -> bool:
        return is_ready_url(self.audio_url)

    @property
    def captions_ready(self) -> bool:
        return is_ready_url(self.captions_url)

    @property
    def images_done(self) -> int:
        dirty = set(self.dirty_scenes)
        return sum(
            1 for i, scene in enumerate(self.storyboard)
            if scene.has_image and i not in dirty
        )

    @property
    def images_ready(self) -> bool:
        return bool(self.storyboard) and self.images_done == len(self.storyboard)

    @property
    def placeholder_scenes(self) -> List[int]:
        return [i for i, scene in enumerate(self.storyboard) if scene.placeholder_used]

    def allocate_durations(self, total: float, minimum: float = 1.0) -> None:
        """
        Split ``total`` seconds across scenes in proportion to their text length.

        Scenes with ``duration_locked`` keep their duration; the rest share
        what remains, each getting at least ``minimum``.
        """
        free = [scene for scene in self.storyboard if not scene.duration_locked]
        if not free:
            return
        locked_total = sum(scene.duration for scene in self.storyboard if scene.duration_locked)
        remaining = max(total - locked_total, minimum * len(free))
        weights = [max(len(scene.description.strip()), 1) for scene in free]
        weight_sum = sum(weights)
        for scene, weight in zip(free, weights):
            scene.duration = round(max(remaining * weight / weight_sum, minimum), 3)

    def scenes_needing_images(self) -> List[int]:
        dirty = set(self.dirty_scenes)
        return [
            i for i, scene in enumerate(self.storyboard)
            if not scene.has_image or i in dirty
        ]

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Video":
        """Build from a ``videos`` row."""
        storyboard_json = row.get("storyboard_json") or {}
        scenes = storyboard_json.get("scenes", []) if isinstance(storyboard_json, dict) else []
        return cls(
            id=str(row["id"]),
            status=row.get("status") or VideoStatus.DRAFT,
            script_text=row.get("script_text"),
            storyboard=[Scene(**scene) for scene in scenes],
            dirty_scenes=sorted(set(row.get("dirty_scenes") or [])),
            audio_url=row.get("audio_url"),
            audio_duration=row.get("audio_duration"),
            captions_url=row.get("captions_url"),
            final_video_url=row.get("final_video_url"),
            total_duration=row.get("total_duration"),
            error_message=row.get("error_message"),
            storyboard_version=row.get("storyboard_version") or 1,
            run_token=row.get("run_token"),
            pending_upload_path=row.get("pending_upload_path"),
        )

    def to_row(self) -> Dict[str, Any]:
        """Serialize to a ``videos`` row, including the derived projection columns."""
        placeholders = self.placeholder_scenes
        return {
            "id": self.id,
            "status": self.status.value,
            "script_text": self.script_text,
            "storyboard_json": {
                "scenes": [scene.model_dump(mode="json") for scene in self.storyboard],
                "total_duration": round(sum(scene.duration for scene in self.storyboard), 3),
            },
            "image_urls": self.image_urls,
            "dirty_scenes": sorted(set(self.dirty_scenes)),
            "audio_url": self.audio_url,
            "audio_duration": self.audio_duration,
            "captions_url": self.captions_url,
            "final_video_url": self.final_video_url,
            "total_duration": self.total_duration,
            "error_message": self.error_message,
            "storyboard_version": self.storyboard_version,
            "run_token": self.run_token,
            "pending_upload_path": self.pending_upload_path,
            "placeholder_count": len(placeholders),
            "scenes_with_placeholders": placeholders,
        }
