"""
Render Engine Module.

Final video encode with ffmpeg: concat manifest, filter graph, subtitle
burn-in with fallback, upload.
"""

from modules.render_engine.engine import RenderEngine
from modules.render_engine.paths import normalize

__all__ = [
    "RenderEngine",
    "normalize",
]
