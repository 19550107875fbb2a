"""Shared fixtures for the compressor backend tests."""

import pytest

from app import create_app
from compressor.job_registry import InMemoryJobRegistry
from compressor.storage import LocalStorage
from helpers import FakeEngine


@pytest.fixture
def registry():
    registry = InMemoryJobRegistry()
    yield registry
    registry.close()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(base_path=str(tmp_path / "data"))


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def make_app(tmp_path):
    """Factory building isolated apps; every app is shut down after the test."""
    apps = []

    def _make_app(engine=None, registry=None, **overrides):
        config = {
            "STORAGE_PATH": str(tmp_path / "data"),
            "ENCODE_CONCURRENCY": 2,
            "ENCODE_QUEUE_LIMIT": 8,
            "MAX_ENCODE_SECONDS": 0,
            "RETENTION_TTL": 24 * 3600,
            "SWEEP_INTERVAL": 3600,
            "INPUT_CLEANUP_DELAY": 3600,
            "JOB_STORE": "memory",
            "START_BACKGROUND_SERVICES": True,
        }
        config.update(overrides)
        app = create_app(config, engine=engine if engine is not None else FakeEngine(), registry=registry)
        app.config["TESTING"] = True
        apps.append(app)
        return app

    yield _make_app

    for app in apps:
        app.compressor.shutdown(timeout=5)


@pytest.fixture
def app(make_app, engine):
    return make_app(engine=engine)


@pytest.fixture
def client(app):
    return app.test_client()
