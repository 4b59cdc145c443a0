"""
Shared pytest configuration and in-memory fakes.

Environment variables are set before any ``shared`` module is imported so
the settings singleton validates without a ``.env`` file.
"""

import copy
import json
import os

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test_service_key_1234567890123456789012345678901234567890")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")
os.environ.setdefault("OPENAI_API_KEY", "sk-test123456789012345678901234567890")
os.environ.setdefault("ELEVENLABS_API_KEY", "el_test_key_123456789012345")
os.environ.setdefault("ENVIRONMENT", "test")

from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest

from shared.errors import FailureKind, RetryableError, UpstreamError
from shared.models.video import Scene, Video, VideoStatus
from shared.video_store import VideoStore


class FakeQuery:
    """Chainable stand-in for ``AsyncTableQueryBuilder``."""

    def __init__(self, rows: List[Dict[str, Any]]):
        self._rows = rows
        self._filters: List[tuple] = []
        self._op = "select"
        self._payload: Any = None
        self._limit: Optional[int] = None

    def select(self, *columns, **kwargs):
        self._op = "select"
        return self

    def insert(self, data):
        self._op = "insert"
        self._payload = data
        return self

    def update(self, data):
        self._op = "update"
        self._payload = data
        return self

    def eq(self, column, value):
        self._filters.append((column, value))
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _matches(self, row):
        return all(row.get(column) == value for column, value in self._filters)

    async def execute(self):
        if self._op == "insert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            for item in items:
                self._rows.append(json.loads(json.dumps(item)))
            return SimpleNamespace(data=copy.deepcopy(items))

        matched = [row for row in self._rows if self._matches(row)]
        if self._op == "update":
            for row in matched:
                row.update(json.loads(json.dumps(self._payload)))
        if self._limit is not None:
            matched = matched[:self._limit]
        return SimpleNamespace(data=copy.deepcopy(matched))


class FakeDatabaseClient:
    """In-memory tables keyed by name."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.writes = 0

    def table(self, name: str) -> FakeQuery:
        query = FakeQuery(self.tables.setdefault(name, []))
        original_execute = query.execute

        async def _counting_execute():
            if query._op in ("insert", "update"):
                self.writes += 1
            return await original_execute()

        query.execute = _counting_execute
        return query

    def seed(self, video: Video) -> Video:
        self.tables.setdefault("videos", []).append(json.loads(json.dumps(video.to_row())))
        return video

    def row(self, video_id: str) -> Dict[str, Any]:
        return next(r for r in self.tables["videos"] if r["id"] == video_id)

    async def health_check(self) -> bool:
        return True


class FakeRedisList:
    """The raw list commands the queue uses."""

    def __init__(self):
        self.lists: Dict[str, List[str]] = {}

    async def lpush(self, key, value):
        self.lists.setdefault(key, []).insert(0, value)
        return len(self.lists[key])

    async def brpop(self, key, timeout=0):
        items = self.lists.get(key) or []
        if not items:
            return None
        return (key, items.pop())

    async def llen(self, key):
        return len(self.lists.get(key, []))

    async def ping(self):
        return True


class FakeRedisClient:
    """Mirrors ``RedisClient`` over a dict."""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.prefix = "storyshort:"
        self.client = FakeRedisList()

    def _prefix_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def set(self, key, value, ex=None):
        self.store[key] = value
        return True

    async def get(self, key):
        return self.store.get(key)

    async def delete(self, key):
        return self.store.pop(key, None) is not None

    async def incr(self, key):
        value = int(self.store.get(key, "0")) + 1
        self.store[key] = str(value)
        return value

    async def set_json(self, key, data, ttl=None):
        return await self.set(key, json.dumps(data, default=str), ex=ttl)

    async def get_json(self, key):
        value = await self.get(key)
        return json.loads(value) if value is not None else None

    async def acquire_lock(self, key, token, ttl):
        if key in self.store:
            return False
        self.store[key] = token
        return True

    async def release_lock(self, key, token):
        if self.store.get(key) != token:
            return False
        del self.store[key]
        return True

    async def is_locked(self, key):
        return key in self.store

    async def health_check(self):
        return True


class FakeStorage:
    """Records uploads and serves them back by URL."""

    BASE_URL = "https://storage.test"

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.uploads: List[str] = []
        self.fail_when: Optional[Callable[[str, str], bool]] = None

    async def upload_file(self, bucket, path, data, content_type):
        if self.fail_when and self.fail_when(bucket, path):
            raise RetryableError(f"Failed to upload {bucket}/{path}: storage unavailable")
        url = f"{self.BASE_URL}/{bucket}/{path}"
        self.objects[url] = bytes(data)
        self.uploads.append(f"{bucket}/{path}")
        return url

    async def download_url(self, url):
        return self.objects.get(url, b"asset-bytes")


class FakeImageProvider:
    """Image provider whose failures are chosen per prompt."""

    def __init__(self, name="fake-image", blocked_words=(), fail_kind=None):
        self.name = name
        self.blocked_words = tuple(blocked_words)
        self.fail_kind = fail_kind
        self.prompts: List[str] = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if any(word in prompt.lower() for word in self.blocked_words):
            raise UpstreamError("blocked by our content filters", kind=FailureKind.CONTENT_POLICY, provider=self.name)
        if self.fail_kind:
            raise UpstreamError(f"{self.name} unavailable", kind=self.fail_kind, provider=self.name)
        return f"png:{prompt}".encode("utf-8")


class FakeSpeechProvider:
    def __init__(self, name="fake-speech", fail_kind=None):
        self.name = name
        self.fail_kind = fail_kind
        self.calls = 0

    async def synthesize(self, text, voice=None):
        self.calls += 1
        if self.fail_kind:
            raise UpstreamError(f"{self.name} unavailable", kind=self.fail_kind, provider=self.name)
        return b"ID3-fake-narration"


def build_video(
    video_id: str = "video-1",
    scenes: int = 5,
    status: VideoStatus = VideoStatus.STORYBOARD_GENERATED,
    with_images: bool = False,
    with_audio: bool = False,
    with_captions: bool = False,
    script_text: Optional[str] = "A fox crossed the river. It found a lantern. The village cheered!",
    **fields
) -> Video:
    storyboard = [
        Scene(
            description=f"Scene {i} description",
            image_prompt=f"prompt for scene {i}",
            image_url=f"{FakeStorage.BASE_URL}/renders-assets/videos/{video_id}/images/scene-{i + 1}.png" if with_images else None,
            duration=3.0 if with_images else 0.0,
        )
        for i in range(scenes)
    ]
    return Video(
        id=video_id,
        status=status,
        script_text=script_text,
        storyboard=storyboard,
        audio_url=f"{FakeStorage.BASE_URL}/renders-assets/videos/{video_id}/audio.mp3" if with_audio else None,
        audio_duration=15.0 if with_audio else None,
        captions_url=f"{FakeStorage.BASE_URL}/renders-assets/videos/{video_id}/captions.srt" if with_captions else None,
        **fields
    )


@pytest.fixture
def fake_db():
    return FakeDatabaseClient()


@pytest.fixture
def fake_redis():
    return FakeRedisClient()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def store(fake_db, fake_redis):
    return VideoStore(database=fake_db, cache=fake_redis)


@pytest.fixture
def make_video():
    """Factory for ``Video`` aggregates with a filled-in storyboard."""
    return build_video


@pytest.fixture
def image_provider_factory():
    return FakeImageProvider


@pytest.fixture
def speech_provider_factory():
    return FakeSpeechProvider
