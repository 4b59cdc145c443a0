"""
Concat demuxer manifest.
"""

from typing import List, Tuple

from shared.errors import ValidationError
from modules.render_engine.paths import concat_entry

DEFAULT_SCENE_SECONDS = 3.0


def build_concat_manifest(entries: List[Tuple[str, float]]) -> str:
    """
    Build an ``ffconcat`` manifest showing each image for its duration.

    The last file is listed again without a duration; the concat demuxer
    otherwise drops the final image's display time.

    Args:
        entries: (image path, seconds) in playback order

    Raises:
        ValidationError: If there are no entries or a duration is not positive
    """
    if not entries:
        raise ValidationError("Cannot build a manifest with no images")

    lines = ["ffconcat version 1.0"]
    for index, (path, seconds) in enumerate(entries):
        if seconds <= 0:
            raise ValidationError(f"Scene {index} has non-positive duration {seconds}")
        lines.append(concat_entry(path))
        lines.append(f"duration {seconds:.3f}")
    lines.append(concat_entry(entries[-1][0]))
    return "\n".join(lines) + "\n"
