"""
Storyboard Module.

Script approval and scene editing with index-aligned asset tracking.
"""

from modules.storyboard.editor import StoryboardEditor

__all__ = [
    "StoryboardEditor",
]
