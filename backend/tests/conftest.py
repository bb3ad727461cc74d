"""Pytest configuration and fixtures."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from robotrain.main import create_app
from robotrain.seed import seed_defaults
from robotrain.services.broadcaster import EventBroadcaster
from robotrain.storage import Storage


@pytest.fixture
def storage():
    """Fresh in-memory store holding the default user and marketplace catalog."""
    store = Storage.from_url("sqlite://")
    seed_defaults(store)
    return store


@pytest.fixture
def broadcaster():
    """Broadcaster without a running pump; published events stay queued."""
    return EventBroadcaster()


@pytest.fixture
def drain():
    """Pop every queued event off a broadcaster, oldest first."""
    def _drain(broadcaster):
        published = []
        while True:
            try:
                published.append(broadcaster.queue.get_nowait())
            except asyncio.QueueEmpty:
                return published
    return _drain


@pytest.fixture
def upload_dir(tmp_path):
    return str(tmp_path / "uploads")


@pytest.fixture
def app(storage, upload_dir):
    """App whose simulations effectively never tick during a test."""
    return create_app(storage=storage, tick_interval=60, upload_dir=upload_dir,
                      max_upload_size=1024, seed_demo=False)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def fast_client(storage, upload_dir):
    """Client for an app whose simulations tick every 10ms."""
    fast_app = create_app(storage=storage, tick_interval=0.01, upload_dir=upload_dir, seed_demo=False)
    with TestClient(fast_app) as test_client:
        yield test_client


@pytest.fixture
def make_user(storage):
    def _make_user(username):
        return storage.create_user(
            username=username,
            email=f"{username}@example.com",
            full_name=username.title(),
        )
    return _make_user


@pytest.fixture
def sample_reward_config():
    return {"position": 0.7, "velocity": 0.3, "energy": 0.5}
