"""
Video endpoints.

Asset generation, rendering, status polling and storyboard editing.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.models.pipeline import AssetResult, RenderResult, SceneOutcome, VideoStatusView
from shared.models.video import Scene
from modules.asset_orchestrator import AssetOrchestrator
from modules.render_engine import RenderEngine
from modules.storyboard import StoryboardEditor
from api_gateway.dependencies import (
    get_asset_orchestrator,
    get_render_engine,
    get_storyboard_editor,
)
from api_gateway.services.queue_service import enqueue_stage
from api_gateway.services.status_service import build_status_view, get_status

logger = get_logger(__name__)

router = APIRouter()


class EditSceneRequest(BaseModel):
    text: Optional[str] = None
    image_prompt: Optional[str] = None


class ReorderRequest(BaseModel):
    new_order: List[int]


class RegenerateRequest(BaseModel):
    new_prompt: Optional[str] = None


class ScriptRequest(BaseModel):
    script_text: str = Field(..., min_length=1)


class SceneInput(BaseModel):
    description: str = Field(..., min_length=1)
    image_prompt: Optional[str] = None
    duration: float = Field(0.0, ge=0)
    duration_locked: bool = False


class StoryboardRequest(BaseModel):
    scenes: List[SceneInput] = Field(..., min_length=1)


async def _queue_claimed(video_id: str, stage: str, claim_token: str, release) -> JSONResponse:
    try:
        await enqueue_stage(video_id, stage, claim_token=claim_token)
    except Exception:
        await release(video_id, stage, claim_token)
        raise
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"video_id": video_id, "stage": stage, "queued": True}
    )


@router.post("/videos/{video_id}/assets")
async def ensure_assets(
    video_id: str = Path(...),
    background: bool = Query(False, description="Queue the run for the worker instead of waiting"),
    orchestrator: AssetOrchestrator = Depends(get_asset_orchestrator)
):
    """
    Generate whatever assets the video is missing.

    Returns:
        AssetResult with the settled status and any per-asset failures, or
        202 when ``background=true`` queued the run
    """
    if background:
        claim_token = await orchestrator.claim_run(video_id)
        return await _queue_claimed(video_id, "assets", claim_token, orchestrator.store.release_stage_claim)

    result: AssetResult = await orchestrator.ensure_assets(video_id)
    return result.model_dump(mode="json")


@router.post("/videos/{video_id}/render")
async def render_video(
    video_id: str = Path(...),
    wait: bool = Query(False, description="Render inline instead of queueing"),
    engine: RenderEngine = Depends(get_render_engine)
):
    """
    Start the final render.

    The render is claimed before anything else, so a second request while
    one is queued or running gets 409. Missing inputs are reported
    immediately; otherwise the render is queued for the worker (202)
    unless ``wait=true``.
    """
    claim_token = await engine.claim_run(video_id)
    if wait:
        result: RenderResult = await engine.render(video_id, claim_token=claim_token)
        return result.model_dump(mode="json")

    return await _queue_claimed(video_id, "render", claim_token, engine.store.release_stage_claim)


@router.get("/videos/{video_id}/status", response_model=VideoStatusView)
async def video_status(video_id: str = Path(...)):
    """Current status of a video (polling endpoint)."""
    return await get_status(video_id)


@router.patch("/videos/{video_id}/scenes/{index}", response_model=VideoStatusView)
async def edit_scene(
    body: EditSceneRequest,
    video_id: str = Path(...),
    index: int = Path(..., ge=0),
    editor: StoryboardEditor = Depends(get_storyboard_editor)
):
    video = await editor.edit_scene(video_id, index, text=body.text, image_prompt=body.image_prompt)
    return build_status_view(video)


@router.delete("/videos/{video_id}/scenes/{index}", response_model=VideoStatusView)
async def delete_scene(
    video_id: str = Path(...),
    index: int = Path(..., ge=0),
    editor: StoryboardEditor = Depends(get_storyboard_editor)
):
    video = await editor.delete_scene(video_id, index)
    return build_status_view(video)


@router.post("/videos/{video_id}/scenes/reorder", response_model=VideoStatusView)
async def reorder_scenes(
    body: ReorderRequest,
    video_id: str = Path(...),
    editor: StoryboardEditor = Depends(get_storyboard_editor)
):
    video = await editor.reorder_scenes(video_id, body.new_order)
    return build_status_view(video)


@router.post("/videos/{video_id}/scenes/{index}/regenerate", response_model=SceneOutcome)
async def regenerate_scene(
    body: Optional[RegenerateRequest] = None,
    video_id: str = Path(...),
    index: int = Path(..., ge=0),
    orchestrator: AssetOrchestrator = Depends(get_asset_orchestrator)
):
    """Regenerate one scene image, optionally with a new prompt."""
    new_prompt = body.new_prompt if body else None
    return await orchestrator.regenerate_scene(video_id, index, new_prompt=new_prompt)


@router.post("/videos/{video_id}/cancel", response_model=VideoStatusView)
async def cancel_video(
    video_id: str = Path(...),
    editor: StoryboardEditor = Depends(get_storyboard_editor)
):
    video = await editor.cancel_video(video_id)
    return build_status_view(video)


@router.put("/videos/{video_id}/script", response_model=VideoStatusView)
async def approve_script(
    body: ScriptRequest,
    video_id: str = Path(...),
    editor: StoryboardEditor = Depends(get_storyboard_editor)
):
    video = await editor.approve_script(video_id, body.script_text)
    return build_status_view(video)


@router.put("/videos/{video_id}/storyboard", response_model=VideoStatusView)
async def set_storyboard(
    body: StoryboardRequest,
    video_id: str = Path(...),
    editor: StoryboardEditor = Depends(get_storyboard_editor)
):
    scenes = [Scene(**scene.model_dump()) for scene in body.scenes]
    video = await editor.set_storyboard(video_id, scenes)
    return build_status_view(video)


@router.delete("/videos/{video_id}/assets/{asset}", response_model=VideoStatusView)
async def clear_asset(
    video_id: str = Path(...),
    asset: str = Path(...),
    editor: StoryboardEditor = Depends(get_storyboard_editor)
):
    video = await editor.clear_asset(video_id, asset)
    return build_status_view(video)
