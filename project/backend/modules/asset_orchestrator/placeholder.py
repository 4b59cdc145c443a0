"""
Static placeholder image used when a scene cannot be generated.
"""

import base64
from pathlib import Path
from typing import Optional

from shared.config import settings
from shared.logging import get_logger

logger = get_logger("asset_orchestrator.placeholder")

# 1x1 neutral PNG; the encoder scales and pads it to the output frame
_BUILTIN_PLACEHOLDER = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVQImWNgYGBgAAAABQABJzQpGQAAAABJRU5ErkJggg=="
)

REASON_CONTENT_POLICY = "content_policy_violation"
REASON_GENERATION_ERROR = "generation_error"


def load_placeholder_image(path: Optional[str] = None) -> bytes:
    """
    Read the configured placeholder image, or fall back to the built-in PNG.

    Args:
        path: Override for ``settings.placeholder_image_path``
    """
    configured = path or settings.placeholder_image_path
    if configured:
        try:
            return Path(configured).read_bytes()
        except OSError as e:
            logger.warning(f"Placeholder image unreadable at {configured}: {str(e)}")
    return _BUILTIN_PLACEHOLDER
