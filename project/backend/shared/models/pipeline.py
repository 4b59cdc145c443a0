"""
Stage results and the status read model.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from shared.errors import FailureKind
from shared.models.video import VideoStatus


class CaptionCue(BaseModel):
    """One caption entry, times in seconds."""

    index: int
    start: float
    end: float
    text: str


class AssetReadiness(BaseModel):
    images: bool = False
    audio: bool = False
    captions: bool = False


class PlaceholderScene(BaseModel):
    index: int
    reason: str


class AssetFailure(BaseModel):
    """A required asset that could not be produced in this run."""

    asset: str  # "audio", "captions" or "image:<index>"
    kind: FailureKind = FailureKind.OTHER
    message: str


class SceneOutcome(BaseModel):
    """Result of generating one scene image."""

    index: int
    image_url: Optional[str] = None
    placeholder_used: bool = False
    reason: Optional[str] = None
    softened: bool = False
    persisted: bool = False


class AssetResult(BaseModel):
    """Returned by ``ensure_assets``."""

    video_id: str
    status: VideoStatus
    skipped: bool = False
    readiness: AssetReadiness = Field(default_factory=AssetReadiness)
    images_done: int = 0
    images_total: int = 0
    placeholders: List[PlaceholderScene] = Field(default_factory=list)
    failures: List[AssetFailure] = Field(default_factory=list)


class RenderResult(BaseModel):
    """Returned by ``render``."""

    video_id: str
    status: VideoStatus
    final_video_url: Optional[str] = None
    subtitles_burned: bool = False
    duration: Optional[int] = None
    upload_only: bool = False


class VideoStatusView(BaseModel):
    """Read model polled by callers."""

    video_id: str
    status: VideoStatus
    progress: int
    message: str
    images_done: int
    images_total: int
    audio_ready: bool
    captions_ready: bool
    dirty_scenes: List[int] = Field(default_factory=list)
    placeholder_scenes: List[int] = Field(default_factory=list)
    storyboard_version: int
    can_render: bool
    error_message: Optional[str] = None
    final_video_url: Optional[str] = None
