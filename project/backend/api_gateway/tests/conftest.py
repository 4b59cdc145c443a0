"""
Pytest configuration and fixtures for API Gateway tests.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from modules.asset_orchestrator import AssetOrchestrator
from modules.providers.gateway import ProviderGateway
from modules.render_engine import RenderEngine
from modules.storyboard import StoryboardEditor
from api_gateway.dependencies import (
    get_asset_orchestrator,
    get_render_engine,
    get_storyboard_editor,
)
from api_gateway.main import app


@pytest.fixture
def image_provider(image_provider_factory):
    return image_provider_factory()


@pytest.fixture
def orchestrator(store, fake_storage, image_provider, speech_provider_factory):
    gateway = ProviderGateway(
        speech_providers=[speech_provider_factory()],
        image_providers=[image_provider],
        speech_timeout=5,
        image_timeout=5
    )
    return AssetOrchestrator(store=store, gateway=gateway, storage=fake_storage)


@pytest.fixture
def render_engine(store, fake_storage):
    return RenderEngine(store=store, storage=fake_storage)


@pytest.fixture
def editor(store):
    return StoryboardEditor(store=store)


@pytest.fixture
def client(store, fake_redis, orchestrator, render_engine, editor):
    """TestClient wired to in-memory stores and fake providers."""
    app.dependency_overrides[get_asset_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_render_engine] = lambda: render_engine
    app.dependency_overrides[get_storyboard_editor] = lambda: editor

    with patch("api_gateway.services.status_service.video_store", store), \
         patch("api_gateway.services.status_service.redis_client", fake_redis), \
         patch("api_gateway.services.queue_service.redis_client", fake_redis), \
         patch("modules.asset_orchestrator.orchestrator.measure_audio_duration", return_value=15.0):
        with TestClient(app) as test_client:
            yield test_client

    app.dependency_overrides.clear()
