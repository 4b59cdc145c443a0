"""
Pipeline state machine.

The authoritative transition table for ``VideoStatus``. Asset presence is
only used to pick the next status during a transition, never to override a
stored one.
"""

from typing import Dict, FrozenSet, List, Optional

from shared.errors import InvalidTransitionError
from shared.models.video import Video, VideoStatus

S = VideoStatus

TERMINAL: FrozenSet[VideoStatus] = frozenset({S.COMPLETED, S.CANCELLED})

TRANSITIONS: Dict[VideoStatus, FrozenSet[VideoStatus]] = {
    S.DRAFT: frozenset({S.SCRIPT_GENERATED}),
    S.SCRIPT_GENERATED: frozenset({S.SCRIPT_APPROVED}),
    S.SCRIPT_APPROVED: frozenset({S.STORYBOARD_GENERATED, S.ASSETS_GENERATING}),
    S.STORYBOARD_GENERATED: frozenset({S.ASSETS_GENERATING}),
    S.ASSETS_GENERATING: frozenset({S.ASSETS_GENERATED, S.ASSETS_PARTIAL, S.ASSETS_FAILED}),
    S.ASSETS_PARTIAL: frozenset({S.ASSETS_GENERATING}),
    S.ASSETS_FAILED: frozenset({S.ASSETS_GENERATING}),
    # Follow-up pass after scene edits or a cleared asset
    S.ASSETS_GENERATED: frozenset({S.RENDERING, S.ASSETS_GENERATING}),
    S.RENDERING: frozenset({S.COMPLETED, S.RENDER_FAILED}),
    S.RENDER_FAILED: frozenset({S.RENDERING, S.ASSETS_GENERATING}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Stored status at the start of each stage whose previous run died without
# settling; re-entering is allowed once its lock has expired.
RECOVERABLE: FrozenSet[VideoStatus] = frozenset({S.ASSETS_GENERATING, S.RENDERING})


def is_terminal(status: VideoStatus) -> bool:
    return status in TERMINAL


def can_transition(current: VideoStatus, target: VideoStatus, recover: bool = False) -> bool:
    """
    Check a status change against the transition table.

    Args:
        current: Stored status
        target: Requested status
        recover: Allow re-entering an in-progress status left behind by a dead run

    Returns:
        True if the change is permitted
    """
    if is_terminal(current):
        return False
    if target == S.CANCELLED:
        return True
    if recover and current == target and current in RECOVERABLE:
        return True
    return target in TRANSITIONS.get(current, frozenset())


def assert_transition(
    current: VideoStatus,
    target: VideoStatus,
    video_id: Optional[str] = None,
    recover: bool = False
) -> None:
    """Raise ``InvalidTransitionError`` unless ``current -> target`` is allowed."""
    if not can_transition(current, target, recover=recover):
        raise InvalidTransitionError(
            f"Cannot move video from {current.value} to {target.value}",
            video_id=video_id,
            code="INVALID_TRANSITION"
        )


def resolve_asset_status(
    images_ready: bool,
    audio_ready: bool,
    captions_ready: bool,
    hard_failure: bool
) -> VideoStatus:
    """
    Pick the status that ends an asset run.

    A failed audio or captions asset is a hard failure; anything short of
    full readiness without one is partial.
    """
    if hard_failure:
        return S.ASSETS_FAILED
    if images_ready and audio_ready and captions_ready:
        return S.ASSETS_GENERATED
    return S.ASSETS_PARTIAL


PROGRESS: Dict[VideoStatus, tuple] = {
    S.DRAFT: (0, "Initializing..."),
    S.SCRIPT_GENERATED: (10, "Script generated, awaiting approval"),
    S.SCRIPT_APPROVED: (20, "Script approved, creating storyboard..."),
    S.STORYBOARD_GENERATED: (30, "Storyboard ready"),
    S.ASSETS_GENERATING: (40, "Generating assets..."),
    S.ASSETS_GENERATED: (80, "Assets ready for rendering"),
    S.ASSETS_PARTIAL: (60, "Some assets are missing"),
    S.ASSETS_FAILED: (40, "Asset generation failed"),
    S.RENDERING: (90, "Rendering video..."),
    S.COMPLETED: (100, "Video completed!"),
    S.RENDER_FAILED: (80, "Rendering failed"),
    S.CANCELLED: (0, "Cancelled"),
}

RENDERABLE: FrozenSet[VideoStatus] = frozenset({S.ASSETS_GENERATED, S.RENDER_FAILED})


def render_blockers(video: Video, recovering: bool = False) -> List[str]:
    """
    Everything standing between ``video`` and a render.

    Returns:
        Names such as ``"status:assets_partial"``, ``"audio"``, ``"captions"``,
        ``"image:3"`` and ``"dirty:2"``; empty when the video can render
    """
    missing = []
    allowed = RENDERABLE | ({S.RENDERING} if recovering else frozenset())
    if video.status not in allowed:
        missing.append(f"status:{video.status.value}")
    if not video.storyboard:
        missing.append("storyboard")
    dirty = set(video.dirty_scenes)
    for index, scene in enumerate(video.storyboard):
        if not scene.has_image:
            missing.append(f"image:{index}")
    missing.extend(f"dirty:{index}" for index in sorted(dirty))
    if not video.audio_ready:
        missing.append("audio")
    if not video.captions_ready:
        missing.append("captions")
    return missing
