"""Shared fixtures for Station Snapshots tests."""

import asyncio
import io
from types import SimpleNamespace

import pytest
from PIL import Image

from station_workers.shared import (
    FetchError,
    MemoryBucket,
    MemoryQueue,
    MessageBatch,
    QueueMessage
)


TEST_BASE_URL = 'http://testserver'

DEFAULT_SETTINGS = {
    'STORAGE_BACKEND': 'memory',
    'PHOTO_SOURCE': 'placeholder',
    'STATION_COUNT': 3,
    'MAX_STATIONS': 10,
    'MERGE_MAX_ATTEMPTS': 8,
    'MERGE_RETRY_DELAY': 0.001,
    'MERGE_MAX_DELAY': 0.005,
    'COMPLETION_POLICY': 'images',
    'LINK_TTL_SECONDS': 3600,
    'PUBLIC_BASE_URL': TEST_BASE_URL,
    'QUEUE_MAX_RETRIES': 3,
    'QUEUE_RETRY_DELAY': 0,
    'WORKER_CONCURRENCY': 4,
}


def png_bytes(size=(160, 120), color=(40, 90, 160), fmt='PNG'):
    img = Image.new('RGB', size, color=color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


class StaticPhotoSource:
    """Photo source that always returns the same small image."""

    def __init__(self):
        self.calls = []

    async def fetch(self, station):
        self.calls.append(station.number)
        return png_bytes()


class FailingPhotoSource(StaticPhotoSource):
    """Photo source that fails for selected station numbers."""

    def __init__(self, fail_stations):
        super().__init__()
        self.fail_stations = set(fail_stations)

    async def fetch(self, station):
        if station.number in self.fail_stations:
            self.calls.append(station.number)
            raise FetchError('No valid image found from Unsplash.')
        return await super().fetch(station)


class YieldingBucket(MemoryBucket):
    """MemoryBucket that yields to the event loop on every call, so
    concurrent read-modify-write cycles actually interleave."""

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def put(self, key, body, **kwargs):
        await asyncio.sleep(0)
        return await super().put(key, body, **kwargs)


@pytest.fixture
def make_env():
    """Factory for worker environments backed by in-memory bindings."""

    def _make_env(metadata=None, **settings):
        values = dict(DEFAULT_SETTINGS)
        values.update(settings)
        env = SimpleNamespace(**values)
        env.METADATA = metadata or MemoryBucket('metadata')
        env.IMAGES = MemoryBucket('images', signing_key='test-signing-key', public_base_url=TEST_BASE_URL)
        env.START_QUEUE = MemoryQueue('start-queue', max_retries=3, retry_delay=0)
        env.IMAGE_QUEUE = MemoryQueue('image-queue', max_retries=3, retry_delay=0)
        return env

    return _make_env


@pytest.fixture
def env(make_env):
    return make_env()


@pytest.fixture
def photo_source():
    return StaticPhotoSource()


@pytest.fixture
def failing_photo_source():
    return FailingPhotoSource(fail_stations={3})


@pytest.fixture
def station_one_failing_photo_source():
    return FailingPhotoSource(fail_stations={1})


@pytest.fixture
def make_batch():
    """Build a MessageBatch from raw message bodies."""

    def _make_batch(*bodies, queue='test-queue'):
        return MessageBatch(queue, [QueueMessage(body) for body in bodies])

    return _make_batch


@pytest.fixture
def yielding_bucket():
    return YieldingBucket('metadata')


@pytest.fixture
def sample_png():
    return png_bytes()


@pytest.fixture
def sample_jpeg():
    return png_bytes(fmt='JPEG')
