"""Shared fixtures for pg_rewarm tests."""

import pytest

from pg_rewarm.image import PageDescriptor, SnapshotMetadata
from pg_rewarm.manager import CacheConfig, CacheManager
from pg_rewarm.tests.mocks import BUFFER_ROWS, FakeServer


@pytest.fixture
def pages():
    """The golden page list in priority order."""
    return [PageDescriptor(*row) for row in BUFFER_ROWS]


@pytest.fixture
def metadata(pages):
    return SnapshotMetadata(
        captured_at="2026-10-19T08:30:00+00:00",
        server_version="16.2",
        buffer_pool_pages_total=16384,
        buffer_pool_pages_data=len(pages),
        page_count=len(pages),
        database="pgbench",
    )


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def make_manager(server):
    """Build a CacheManager wired to the fake server."""
    def factory(**overrides):
        config = CacheConfig(**overrides)
        return CacheManager(config, connection_factory=lambda cfg: server)
    return factory
