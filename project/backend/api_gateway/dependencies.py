"""
FastAPI dependencies.

Service instances shared by the routes and the worker. Tests override them
through ``app.dependency_overrides``.
"""

from functools import lru_cache

from shared.video_store import VideoStore, video_store
from modules.asset_orchestrator import AssetOrchestrator
from modules.render_engine import RenderEngine
from modules.storyboard import StoryboardEditor


def get_video_store() -> VideoStore:
    return video_store


@lru_cache()
def get_asset_orchestrator() -> AssetOrchestrator:
    return AssetOrchestrator(store=video_store)


@lru_cache()
def get_render_engine() -> RenderEngine:
    return RenderEngine(store=video_store)


@lru_cache()
def get_storyboard_editor() -> StoryboardEditor:
    return StoryboardEditor(store=video_store)
