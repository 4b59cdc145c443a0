"""
Data models for the video generation pipeline.

This module exports all Pydantic models used across pipeline modules.
"""

from shared.models.video import Scene, Video, VideoStatus, is_ready_url
from shared.models.pipeline import (
    AssetFailure,
    AssetReadiness,
    AssetResult,
    CaptionCue,
    PlaceholderScene,
    RenderResult,
    SceneOutcome,
    VideoStatusView,
)

__all__ = [
    # Video models
    "Scene",
    "Video",
    "VideoStatus",
    "is_ready_url",
    # Stage results
    "AssetFailure",
    "AssetReadiness",
    "AssetResult",
    "CaptionCue",
    "PlaceholderScene",
    "RenderResult",
    "SceneOutcome",
    "VideoStatusView",
]
