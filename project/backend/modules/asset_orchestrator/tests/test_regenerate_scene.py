"""
Tests for single-scene regeneration.
"""

import pytest

from shared.errors import ConflictError, InvalidTransitionError, ValidationError
from shared.models.video import VideoStatus
from modules.asset_orchestrator import AssetOrchestrator
from modules.providers.gateway import ProviderGateway


@pytest.fixture
def image_provider(image_provider_factory):
    return image_provider_factory(blocked_words=("forbidden",))


@pytest.fixture
def orchestrator(store, fake_storage, image_provider, speech_provider_factory):
    gateway = ProviderGateway(
        speech_providers=[speech_provider_factory()],
        image_providers=[image_provider],
        speech_timeout=5,
        image_timeout=5
    )
    return AssetOrchestrator(store=store, gateway=gateway, storage=fake_storage)


def _ready_video(make_video, **fields):
    return make_video(
        status=VideoStatus.ASSETS_GENERATED,
        with_images=True,
        with_audio=True,
        with_captions=True,
        **fields
    )


@pytest.mark.asyncio
async def test_new_prompt_saved_and_image_replaced(orchestrator, store, fake_db, image_provider, make_video):
    original = fake_db.seed(_ready_video(make_video))

    outcome = await orchestrator.regenerate_scene("video-1", 3, new_prompt="  a red kite over dunes ")

    assert outcome.persisted
    assert not outcome.placeholder_used
    assert image_provider.prompts == ["a red kite over dunes"]

    video = await store.get("video-1")
    assert video.status == VideoStatus.ASSETS_GENERATED
    assert video.storyboard[3].image_prompt == "a red kite over dunes"
    assert video.storyboard[3].image_url == outcome.image_url
    assert video.storyboard[3].image_url != original.storyboard[3].image_url
    assert video.storyboard_version == original.storyboard_version + 1
    assert video.run_token is None
    # Other slots untouched
    assert video.image_urls[:3] == original.image_urls[:3]


@pytest.mark.asyncio
async def test_existing_prompt_reused_and_dirty_cleared(orchestrator, store, fake_db, image_provider, make_video):
    fake_db.seed(_ready_video(make_video, dirty_scenes=[1, 4]))

    await orchestrator.regenerate_scene("video-1", 1)

    assert image_provider.prompts == ["prompt for scene 1"]
    video = await store.get("video-1")
    assert video.dirty_scenes == [4]
    assert video.storyboard_version == 1


@pytest.mark.asyncio
async def test_policy_block_falls_back_to_placeholder(orchestrator, store, fake_db, make_video):
    fake_db.seed(_ready_video(make_video))

    outcome = await orchestrator.regenerate_scene("video-1", 0, new_prompt="forbidden scene")

    assert outcome.placeholder_used
    assert outcome.softened
    assert outcome.reason == "content_policy_violation"
    video = await store.get("video-1")
    assert video.storyboard[0].placeholder_used
    assert video.placeholder_scenes == [0]


@pytest.mark.asyncio
async def test_clears_pending_upload(orchestrator, store, fake_db, make_video):
    fake_db.seed(_ready_video(make_video, pending_upload_path="/tmp/renders/videos/video-1.mp4"))

    await orchestrator.regenerate_scene("video-1", 2)

    assert (await store.get("video-1")).pending_upload_path is None


@pytest.mark.asyncio
async def test_out_of_range_index(orchestrator, fake_db, make_video):
    fake_db.seed(_ready_video(make_video))

    with pytest.raises(ValidationError):
        await orchestrator.regenerate_scene("video-1", 5)


@pytest.mark.asyncio
async def test_rendering_video_conflicts(orchestrator, fake_db, make_video):
    fake_db.seed(make_video(status=VideoStatus.RENDERING, with_images=True))

    with pytest.raises(ConflictError):
        await orchestrator.regenerate_scene("video-1", 0)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [VideoStatus.COMPLETED, VideoStatus.CANCELLED])
async def test_terminal_video_rejected(orchestrator, fake_db, image_provider, make_video, status):
    fake_db.seed(make_video(status=status, with_images=True))

    with pytest.raises(InvalidTransitionError):
        await orchestrator.regenerate_scene("video-1", 0)
    assert image_provider.prompts == []


@pytest.mark.asyncio
async def test_conflicts_with_running_asset_stage(orchestrator, store, fake_db, make_video):
    fake_db.seed(_ready_video(make_video))

    async with store.stage_lock("video-1", "assets"):
        with pytest.raises(ConflictError):
            await orchestrator.regenerate_scene("video-1", 0)


def _partial_video(make_video, missing=(2,)):
    video = make_video(
        status=VideoStatus.ASSETS_PARTIAL,
        with_images=True,
        with_audio=True,
        with_captions=True,
        error_message="image:2: provider outage"
    )
    for index in missing:
        video.storyboard[index].image_url = None
    return video


@pytest.mark.asyncio
async def test_fixing_last_missing_scene_settles_partial_video(orchestrator, store, fake_db, make_video):
    fake_db.seed(_partial_video(make_video))

    outcome = await orchestrator.regenerate_scene("video-1", 2)

    assert outcome.persisted
    video = await store.get("video-1")
    assert video.status == VideoStatus.ASSETS_GENERATED
    assert video.error_message is None
    assert video.run_token is None
    assert not await store.is_stage_locked("video-1", "assets")

    # Nothing left to do afterwards
    result = await orchestrator.ensure_assets("video-1")
    assert result.skipped
    assert result.status == VideoStatus.ASSETS_GENERATED


@pytest.mark.asyncio
async def test_partial_video_stays_partial_while_scenes_missing(orchestrator, store, fake_db, make_video):
    fake_db.seed(_partial_video(make_video, missing=(1, 2)))

    await orchestrator.regenerate_scene("video-1", 2)

    video = await store.get("video-1")
    assert video.status == VideoStatus.ASSETS_PARTIAL
    assert video.storyboard[1].image_url is None
    assert video.run_token is None


@pytest.mark.asyncio
async def test_ready_video_status_untouched(orchestrator, store, fake_db, make_video):
    fake_db.seed(_ready_video(make_video))

    await orchestrator.regenerate_scene("video-1", 0)

    assert (await store.get("video-1")).status == VideoStatus.ASSETS_GENERATED
