"""Test configuration and fixtures."""

import os
import time

import pytest
import pytest_asyncio

from registry_sync.core.types import MemorySample, SyncConfig
from tests.helpers import FakeRegistry, RunningRegistry


class FakeMemory:
    """Settable memory reader for gate and queue tests."""

    def __init__(self, total: int = 0) -> None:
        self.total = total
        self.calls = 0

    def __call__(self) -> MemorySample:
        self.calls += 1
        return MemorySample(heap_used=self.total, external=0, sampled_at=time.time())


@pytest.fixture
def fake_memory():
    return FakeMemory()


@pytest_asyncio.fixture
async def source_registry():
    """Fake source registry served on localhost."""
    running = await RunningRegistry(FakeRegistry()).start()
    yield running
    await running.close()


@pytest_asyncio.fixture
async def destination_registry():
    """Fake destination registry served on localhost."""
    running = await RunningRegistry(FakeRegistry()).start()
    yield running
    await running.close()


@pytest.fixture
def sync_config(tmp_path, fake_memory):
    """Fast-ticking config with a private temp dir."""
    temp_dir = tmp_path / "staging"
    temp_dir.mkdir()
    return SyncConfig(
        adjust_interval=3600,
        gate_poll_interval=0.01,
        temp_dir=str(temp_dir),
    )


# Pytest configuration
def pytest_configure(config):
    """Configure pytest markers and settings."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test requiring registry"
    )
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")


def pytest_collection_modifyitems(config, items):
    """Modify test collection."""
    # Skip integration tests if no registry
    skip_integration = pytest.mark.skip(reason="Registry not available")

    for item in items:
        if (
            "integration" in item.keywords
            and os.getenv("REGISTRY_AVAILABLE", "false").lower() != "true"
        ):
            item.add_marker(skip_integration)
