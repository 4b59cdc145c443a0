"""
Tests for the asset orchestrator's ensure_assets run.
"""

from unittest.mock import patch

import pytest

from shared.errors import (
    ConflictError,
    FailureKind,
    InvalidTransitionError,
    MissingScriptError,
    ValidationError,
)
from shared.models.pipeline import PlaceholderScene
from shared.models.video import VideoStatus
from shared.video_store import stage_claim_key
from modules.asset_orchestrator import AssetOrchestrator
from modules.asset_orchestrator.placeholder import REASON_CONTENT_POLICY
from modules.providers.gateway import ProviderGateway
from modules.providers.safety import SAFE_PREFIX
from modules.storyboard import StoryboardEditor


@pytest.fixture(autouse=True)
def fixed_audio_duration():
    with patch("modules.asset_orchestrator.orchestrator.measure_audio_duration", return_value=15.0) as mock_measure:
        yield mock_measure


@pytest.fixture
def image_provider(image_provider_factory):
    return image_provider_factory()


@pytest.fixture
def speech_provider(speech_provider_factory):
    return speech_provider_factory()


def _orchestrator(store, storage, speech, images):
    gateway = ProviderGateway(
        speech_providers=[speech],
        image_providers=images if isinstance(images, list) else [images],
        speech_timeout=5,
        image_timeout=5
    )
    return AssetOrchestrator(store=store, gateway=gateway, storage=storage, image_concurrency=2)


@pytest.fixture
def orchestrator(store, fake_storage, speech_provider, image_provider):
    return _orchestrator(store, fake_storage, speech_provider, image_provider)


class TestFullRun:
    """Test a run from a fresh storyboard."""

    @pytest.mark.asyncio
    async def test_generates_everything(self, orchestrator, fake_db, fake_storage, image_provider, make_video):
        fake_db.seed(make_video())

        result = await orchestrator.ensure_assets("video-1")

        assert result.status == VideoStatus.ASSETS_GENERATED
        assert not result.skipped
        assert result.images_done == 5
        assert result.readiness.audio and result.readiness.captions and result.readiness.images
        assert result.failures == []
        assert sorted(image_provider.prompts) == [f"prompt for scene {i}" for i in range(5)]

        row = fake_db.row("video-1")
        assert row["status"] == "assets_generated"
        assert row["run_token"] is None
        assert row["error_message"] is None
        assert all(url.startswith(fake_storage.BASE_URL) for url in row["image_urls"])
        assert len(set(row["image_urls"])) == 5

    @pytest.mark.asyncio
    async def test_audio_duration_drives_scene_durations(self, orchestrator, store, fake_db, make_video):
        fake_db.seed(make_video())

        await orchestrator.ensure_assets("video-1")

        video = await store.get("video-1")
        assert video.audio_duration == 15.0
        assert sum(scene.duration for scene in video.storyboard) == pytest.approx(15.0)

    @pytest.mark.asyncio
    async def test_captions_uploaded_as_srt(self, orchestrator, store, fake_db, fake_storage, make_video):
        fake_db.seed(make_video())

        await orchestrator.ensure_assets("video-1")

        video = await store.get("video-1")
        srt = fake_storage.objects[video.captions_url].decode("utf-8")
        assert srt.startswith("1\n00:00:00,000 --> ")
        assert "00:00:15,000" in srt

    @pytest.mark.asyncio
    async def test_second_call_is_a_no_op(self, orchestrator, fake_db, image_provider, speech_provider, make_video):
        fake_db.seed(make_video())
        await orchestrator.ensure_assets("video-1")
        image_calls = len(image_provider.prompts)
        writes = fake_db.writes

        result = await orchestrator.ensure_assets("video-1")

        assert result.skipped
        assert result.status == VideoStatus.ASSETS_GENERATED
        assert len(image_provider.prompts) == image_calls
        assert speech_provider.calls == 1
        assert fake_db.writes == writes


class TestIncrementalRuns:
    """Test runs that only touch what is missing."""

    @pytest.mark.asyncio
    async def test_only_dirty_scene_regenerated(self, orchestrator, fake_db, image_provider, speech_provider, make_video):
        video = make_video(
            status=VideoStatus.ASSETS_GENERATED,
            with_images=True,
            with_audio=True,
            with_captions=True,
            dirty_scenes=[2]
        )
        fake_db.seed(video)

        result = await orchestrator.ensure_assets("video-1")

        assert result.status == VideoStatus.ASSETS_GENERATED
        assert image_provider.prompts == ["prompt for scene 2"]
        assert speech_provider.calls == 0
        row = fake_db.row("video-1")
        assert row["dirty_scenes"] == []
        assert row["image_urls"][2] != video.storyboard[2].image_url
        assert row["image_urls"][:2] == video.image_urls[:2]

    @pytest.mark.asyncio
    async def test_missing_captions_only(self, orchestrator, fake_db, image_provider, speech_provider, make_video):
        fake_db.seed(make_video(status=VideoStatus.ASSETS_PARTIAL, with_images=True, with_audio=True))

        result = await orchestrator.ensure_assets("video-1")

        assert result.status == VideoStatus.ASSETS_GENERATED
        assert image_provider.prompts == []
        assert speech_provider.calls == 0
        assert fake_db.row("video-1")["captions_url"].endswith("captions.srt")

    @pytest.mark.asyncio
    async def test_recovers_run_left_generating(self, orchestrator, fake_db, make_video):
        fake_db.seed(make_video(status=VideoStatus.ASSETS_GENERATING, run_token="dead-run"))

        result = await orchestrator.ensure_assets("video-1")

        assert result.status == VideoStatus.ASSETS_GENERATED
        assert fake_db.row("video-1")["run_token"] is None


class TestStaleStatus:
    """Test stored statuses that lag behind assets persisted earlier."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [VideoStatus.ASSETS_PARTIAL, VideoStatus.ASSETS_FAILED])
    async def test_settles_when_nothing_left_to_generate(
        self, orchestrator, fake_db, fake_redis, image_provider, speech_provider, make_video, status
    ):
        fake_db.seed(make_video(
            status=status,
            with_images=True,
            with_audio=True,
            with_captions=True,
            error_message="image:2: provider outage"
        ))

        result = await orchestrator.ensure_assets("video-1")

        assert result.status == VideoStatus.ASSETS_GENERATED
        assert not result.skipped
        assert image_provider.prompts == []
        assert speech_provider.calls == 0
        row = fake_db.row("video-1")
        assert row["status"] == "assets_generated"
        assert row["error_message"] is None
        assert row["run_token"] is None
        assert not await orchestrator.store.is_stage_locked("video-1", "assets")

    @pytest.mark.asyncio
    async def test_dead_generating_run_with_all_assets_settles(self, orchestrator, fake_db, image_provider, make_video):
        fake_db.seed(make_video(
            status=VideoStatus.ASSETS_GENERATING,
            with_images=True,
            with_audio=True,
            with_captions=True,
            run_token="dead-run"
        ))

        result = await orchestrator.ensure_assets("video-1")

        assert result.status == VideoStatus.ASSETS_GENERATED
        assert image_provider.prompts == []
        assert fake_db.row("video-1")["run_token"] is None

    @pytest.mark.asyncio
    async def test_live_generating_run_conflicts(self, orchestrator, store, fake_db, make_video):
        fake_db.seed(make_video(
            status=VideoStatus.ASSETS_GENERATING,
            with_images=True,
            with_audio=True,
            with_captions=True
        ))

        async with store.stage_lock("video-1", "assets"):
            with pytest.raises(ConflictError):
                await orchestrator.ensure_assets("video-1")

        assert fake_db.row("video-1")["status"] == "assets_generating"


class TestClaimedRuns:
    """Test runs reserved by a queued job."""

    @pytest.mark.asyncio
    async def test_claimed_run_releases_claim(self, orchestrator, store, fake_db, fake_redis, make_video):
        fake_db.seed(make_video())
        token = await orchestrator.claim_run("video-1")

        result = await orchestrator.ensure_assets("video-1", claim_token=token)

        assert result.status == VideoStatus.ASSETS_GENERATED
        assert stage_claim_key("video-1", "assets") not in fake_redis.store

    @pytest.mark.asyncio
    async def test_unclaimed_run_refused_while_claimed(self, orchestrator, fake_db, image_provider, make_video):
        fake_db.seed(make_video())
        await orchestrator.claim_run("video-1")

        with pytest.raises(ConflictError) as exc_info:
            await orchestrator.ensure_assets("video-1")

        assert exc_info.value.code == "STAGE_QUEUED"
        assert image_provider.prompts == []

    @pytest.mark.asyncio
    async def test_claim_requires_script(self, orchestrator, fake_db, fake_redis, make_video):
        fake_db.seed(make_video(script_text=None))

        with pytest.raises(MissingScriptError):
            await orchestrator.claim_run("video-1")

        assert stage_claim_key("video-1", "assets") not in fake_redis.store


class TestSceneFailures:
    """Test per-scene failure isolation."""

    @pytest.mark.asyncio
    async def test_content_policy_scene_gets_placeholder(
        self, store, fake_db, fake_storage, speech_provider, image_provider_factory, make_video
    ):
        images = image_provider_factory(blocked_words=("scene 0",))
        orchestrator = _orchestrator(store, fake_storage, speech_provider, images)
        fake_db.seed(make_video())

        result = await orchestrator.ensure_assets("video-1")

        assert result.status == VideoStatus.ASSETS_GENERATED
        assert result.placeholders == [PlaceholderScene(index=0, reason=REASON_CONTENT_POLICY)]
        assert result.images_done == 5
        assert images.prompts.count("prompt for scene 0") == 1
        assert SAFE_PREFIX + "prompt for scene 0" in images.prompts

        row = fake_db.row("video-1")
        assert row["placeholder_count"] == 1
        assert row["scenes_with_placeholders"] == [0]
        scenes = row["storyboard_json"]["scenes"]
        assert [scene["placeholder_used"] for scene in scenes] == [True, False, False, False, False]

    @pytest.mark.asyncio
    async def test_softened_prompt_succeeds(
        self, store, fake_db, fake_storage, speech_provider, image_provider_factory, make_video
    ):
        images = image_provider_factory(blocked_words=("knife",))
        orchestrator = _orchestrator(store, fake_storage, speech_provider, images)
        video = make_video(scenes=2)
        video.storyboard[1].image_prompt = "a knife on the table"
        fake_db.seed(video)

        result = await orchestrator.ensure_assets("video-1")

        assert result.placeholders == []
        assert SAFE_PREFIX + "a on the table" in images.prompts
        assert fake_db.row("video-1")["scenes_with_placeholders"] == []

    @pytest.mark.asyncio
    async def test_provider_outage_uses_placeholder_with_reason(
        self, store, fake_db, fake_storage, speech_provider, image_provider_factory, make_video
    ):
        images = image_provider_factory(fail_kind=FailureKind.QUOTA)
        orchestrator = _orchestrator(store, fake_storage, speech_provider, images)
        fake_db.seed(make_video(scenes=2))

        result = await orchestrator.ensure_assets("video-1")

        assert result.status == VideoStatus.ASSETS_GENERATED
        assert [p.reason for p in result.placeholders] == ["generation_error: quota", "generation_error: quota"]

    @pytest.mark.asyncio
    async def test_upload_failure_leaves_scene_missing(self, orchestrator, fake_db, fake_storage, make_video):
        fake_db.seed(make_video())
        fake_storage.fail_when = lambda bucket, path: "/scene-3-" in path

        result = await orchestrator.ensure_assets("video-1")

        assert result.status == VideoStatus.ASSETS_PARTIAL
        assert result.images_done == 4
        assert [f.asset for f in result.failures] == ["image:2"]
        row = fake_db.row("video-1")
        assert row["image_urls"][2] is None
        assert all(row["image_urls"][i] for i in (0, 1, 3, 4))
        assert "image:2" in row["error_message"]

        fake_storage.fail_when = None
        retry = await orchestrator.ensure_assets("video-1")

        assert retry.status == VideoStatus.ASSETS_GENERATED
        assert fake_db.row("video-1")["error_message"] is None

    @pytest.mark.asyncio
    async def test_scene_edited_mid_run_is_not_overwritten(
        self, store, fake_db, fake_storage, speech_provider, make_video
    ):
        editor = StoryboardEditor(store=store)

        class EditingImageProvider:
            name = "editing"

            def __init__(self):
                self.prompts = []

            async def generate(self, prompt):
                self.prompts.append(prompt)
                if prompt == "prompt for scene 1":
                    await editor.edit_scene("video-1", 1, image_prompt="a brand new prompt")
                return f"png:{prompt}".encode("utf-8")

        orchestrator = _orchestrator(store, fake_storage, speech_provider, EditingImageProvider())
        fake_db.seed(make_video(scenes=3))

        result = await orchestrator.ensure_assets("video-1")

        assert result.status == VideoStatus.ASSETS_PARTIAL
        video = await store.get("video-1")
        assert video.storyboard[1].image_url is None
        assert video.storyboard[1].image_prompt == "a brand new prompt"
        assert video.dirty_scenes == [1]


class TestNarrationFailures:
    """Test audio and captions failures."""

    @pytest.mark.asyncio
    async def test_speech_outage_fails_run(
        self, store, fake_db, fake_storage, image_provider, speech_provider_factory, make_video
    ):
        speech = speech_provider_factory(fail_kind=FailureKind.QUOTA)
        orchestrator = _orchestrator(store, fake_storage, speech, image_provider)
        fake_db.seed(make_video())

        result = await orchestrator.ensure_assets("video-1")

        assert result.status == VideoStatus.ASSETS_FAILED
        assert result.failures[0].asset == "audio"
        assert result.failures[0].kind == FailureKind.QUOTA
        # Images are still kept
        assert result.images_done == 5
        row = fake_db.row("video-1")
        assert row["audio_url"] is None
        assert row["error_message"].startswith("audio:")

    @pytest.mark.asyncio
    async def test_audio_upload_failure(self, orchestrator, fake_db, fake_storage, make_video):
        fake_db.seed(make_video())
        fake_storage.fail_when = lambda bucket, path: path.endswith("audio.mp3")

        result = await orchestrator.ensure_assets("video-1")

        assert result.status == VideoStatus.ASSETS_FAILED
        assert result.failures[0].message.startswith("upload:")


class TestGuards:
    """Test the conditions that stop a run before it starts."""

    @pytest.mark.asyncio
    async def test_missing_script(self, orchestrator, fake_db, make_video):
        fake_db.seed(make_video(script_text="   "))

        with pytest.raises(MissingScriptError):
            await orchestrator.ensure_assets("video-1")

    @pytest.mark.asyncio
    async def test_empty_storyboard(self, orchestrator, fake_db, make_video):
        fake_db.seed(make_video(scenes=0, status=VideoStatus.SCRIPT_APPROVED))

        with pytest.raises(ValidationError):
            await orchestrator.ensure_assets("video-1")

    @pytest.mark.asyncio
    async def test_conflict_when_run_in_progress(self, orchestrator, store, fake_db, image_provider, make_video):
        fake_db.seed(make_video())

        async with store.stage_lock("video-1", "assets"):
            with pytest.raises(ConflictError):
                await orchestrator.ensure_assets("video-1")

        assert image_provider.prompts == []
        assert fake_db.row("video-1")["status"] == "storyboard_generated"

    @pytest.mark.asyncio
    async def test_cancelled_video_rejected(self, orchestrator, store, fake_db, make_video):
        fake_db.seed(make_video(status=VideoStatus.CANCELLED))

        with pytest.raises(InvalidTransitionError):
            await orchestrator.ensure_assets("video-1")

        assert not await store.is_stage_locked("video-1", "assets")

    @pytest.mark.asyncio
    async def test_cancel_mid_run_stops_writes(self, store, fake_db, fake_storage, image_provider, make_video):
        editor = StoryboardEditor(store=store)

        class CancellingSpeechProvider:
            name = "cancelling"

            async def synthesize(self, text, voice=None):
                await editor.cancel_video("video-1")
                return b"ID3-fake-narration"

        orchestrator = _orchestrator(store, fake_storage, CancellingSpeechProvider(), image_provider)
        fake_db.seed(make_video())

        result = await orchestrator.ensure_assets("video-1")

        assert result.status == VideoStatus.CANCELLED
        row = fake_db.row("video-1")
        assert row["status"] == "cancelled"
        assert row["audio_url"] is None
        assert row["run_token"] is None
