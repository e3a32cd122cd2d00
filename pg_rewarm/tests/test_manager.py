"""Tests for CacheManager save and restore against the fake server."""

import json
import logging
import threading
import time

import psycopg2.errors
import pytest

from pg_rewarm.errors import (
    ConnectionError,
    ImageCorruptError,
    ImageVersionMismatch,
    IntrospectionUnavailableError,
    InvalidConfigurationError,
    InvalidStateTransition,
)
from pg_rewarm.image import JsonCacheImage
from pg_rewarm.manager import CacheConfig, CacheManager
from pg_rewarm.state import State
from pg_rewarm.tests.mocks import FakeServer, buffer_rows_with_duplicates


def manager_for(server, **overrides):
    return CacheManager(CacheConfig(**overrides), connection_factory=lambda cfg: server)


@pytest.fixture
def saved_image(make_manager, tmp_path):
    path = tmp_path / "pgbench.img"
    make_manager().save(path)
    return path


class TestSave:

    @pytest.mark.parametrize("image_format", ["json", "sqlite"])
    def test_save_writes_image(self, make_manager, server, tmp_path, pages, image_format):
        path = tmp_path / "snap.img"
        manager = make_manager(image_format=image_format)

        report = manager.save(path)

        assert report.success
        assert report.path == path
        assert report.page_count == len(pages)
        assert report.metadata.server_version == "16.2"
        assert report.metadata.database == "pgbench"
        assert report.metadata.buffer_pool_pages_total == 16384
        assert manager.state == State.CLOSED
        assert server.close_count == 1
        assert list(tmp_path.iterdir()) == [path]

        image = manager.image_class()
        with image.open(path, "r"):
            assert list(image.read_pages()) == pages

    def test_duplicate_buffer_rows_are_dropped(self, tmp_path, pages):
        server = FakeServer(buffer_rows=buffer_rows_with_duplicates())

        report = manager_for(server).save(tmp_path / "snap.img")

        assert report.page_count == len(pages)

    def test_timings_cover_save_phases(self, make_manager, tmp_path):
        manager = make_manager()
        report = manager.save(tmp_path / "snap.img")

        assert set(report.timings) == {"connect", "enumerate", "status", "write"}
        assert manager.timings.frozen

    def test_save_without_buffercache(self, tmp_path):
        server = FakeServer(extensions=("pg_prewarm",))
        manager = manager_for(server)
        path = tmp_path / "snap.img"

        with pytest.raises(IntrospectionUnavailableError) as exc_info:
            manager.save(path)

        assert exc_info.value.phase == "enumerate"
        assert not path.exists()
        assert list(tmp_path.iterdir()) == []
        assert manager.state == State.FAILED
        assert server.close_count == 1

    def test_unreadable_buffercache(self, tmp_path):
        server = FakeServer()
        server.buffercache_error = psycopg2.errors.InsufficientPrivilege(
            "permission denied for view pg_buffercache"
        )

        with pytest.raises(IntrospectionUnavailableError, match="permission denied"):
            manager_for(server).save(tmp_path / "snap.img")

    def test_buffercache_timeout_is_a_connection_error(self, tmp_path):
        server = FakeServer()
        server.buffercache_error = psycopg2.errors.QueryCanceled(
            "canceling statement due to statement timeout"
        )
        manager = manager_for(server)

        with pytest.raises(ConnectionError, match="statement timeout") as exc_info:
            manager.save(tmp_path / "snap.img")

        assert exc_info.value.phase == "enumerate"
        assert manager.state == State.FAILED

    def test_connect_failure(self, tmp_path):
        server = FakeServer(fail_connect=True)
        manager = manager_for(server)

        with pytest.raises(ConnectionError) as exc_info:
            manager.save(tmp_path / "snap.img")

        assert exc_info.value.phase == "connect"
        assert manager.state == State.FAILED
        assert list(tmp_path.iterdir()) == []

    def test_write_failure_leaves_previous_image(self, make_manager, saved_image, tmp_path, monkeypatch):
        original = saved_image.read_bytes()

        def broken_finish(self):
            raise OSError("No space left on device")

        monkeypatch.setattr(JsonCacheImage, "_finish_write", broken_finish)
        with pytest.raises(OSError):
            make_manager().save(saved_image)

        assert saved_image.read_bytes() == original
        assert list(tmp_path.iterdir()) == [saved_image]

    def test_cancelled_save_writes_nothing(self, make_manager, tmp_path):
        cancel = threading.Event()
        cancel.set()
        manager = make_manager()

        report = manager.save(tmp_path / "snap.img", cancel=cancel)

        assert report.cancelled
        assert not report.success
        assert list(tmp_path.iterdir()) == []
        assert manager.state == State.CLOSED

    def test_manager_is_single_use(self, make_manager, tmp_path):
        manager = make_manager()
        manager.save(tmp_path / "one.img")

        with pytest.raises(InvalidStateTransition):
            manager.save(tmp_path / "two.img")
        with pytest.raises(InvalidStateTransition):
            manager.restore(tmp_path / "one.img")

    def test_state_history_logged_at_debug(self, make_manager, tmp_path, caplog, monkeypatch):
        monkeypatch.setattr(logging.getLogger("pg_rewarm"), "propagate", True)
        caplog.set_level(logging.DEBUG, logger="pg_rewarm.manager")

        make_manager().save(tmp_path / "snap.img")

        history = [r.getMessage() for r in caplog.records if "State history" in r.getMessage()]
        assert len(history) == 1
        assert "SAVING" in history[0]
        assert "CLOSED" in history[0]


class TestRestore:

    def test_full_restore(self, make_manager, server, saved_image, pages):
        server.prewarmed.clear()
        manager = make_manager()

        report = manager.restore(saved_image)

        assert report.pages_fetched == len(pages)
        assert report.pages_attempted == len(pages)
        assert report.pages_failed == 0
        assert report.errors == []
        assert report.warnings == []
        assert report.batches == 1
        assert server.prewarmed == [(p.relation, p.page_number) for p in pages]
        assert manager.state == State.CLOSED
        assert report.status_after["data_read"] > report.status_before["data_read"]

    @pytest.mark.parametrize("image_format", ["json", "sqlite"])
    def test_restore_in_batches(self, make_manager, server, tmp_path, pages, image_format):
        path = tmp_path / "snap.img"
        make_manager(image_format=image_format).save(path)
        progress = []

        report = make_manager(image_format=image_format).restore(
            path, batch_size=5, on_batch=lambda f, a: progress.append((f, a))
        )

        assert report.batches == 4
        assert progress == [(5, 5), (10, 10), (15, 15), (16, 16)]

    def test_dropped_relation(self, make_manager, server, saved_image, pages):
        server.drop_relation("public.audit_log")

        report = make_manager().restore(saved_image)

        assert report.pages_fetched == len(pages) - 1
        assert report.pages_attempted == len(pages)
        assert [(e.relation, e.kind) for e in report.errors] == [("public.audit_log", "missing")]

    def test_newer_image_version_fails_before_connect(self, make_manager, server, saved_image):
        document = json.loads(saved_image.read_text())
        document["format"]["version"] = 2
        saved_image.write_text(json.dumps(document))
        server.connect_count = 0
        manager = make_manager()

        with pytest.raises(ImageVersionMismatch) as exc_info:
            manager.restore(saved_image)

        assert exc_info.value.phase == "read"
        assert server.connect_count == 0
        assert manager.state == State.FAILED

    def test_corrupt_image_fails_before_connect(self, make_manager, server, tmp_path):
        path = tmp_path / "garbage.img"
        path.write_text("{not json")

        with pytest.raises(ImageCorruptError):
            make_manager().restore(path)
        assert server.connect_count == 0

    def test_missing_image_file(self, make_manager, server, tmp_path):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            make_manager().restore(tmp_path / "absent.img")

        assert exc_info.value.phase == "read"
        assert server.connect_count == 0

    @pytest.mark.parametrize("batch_size", [0, -1, True])
    def test_invalid_batch_size(self, make_manager, server, saved_image, batch_size):
        server.connect_count = 0
        manager = make_manager()

        with pytest.raises(InvalidConfigurationError) as exc_info:
            manager.restore(saved_image, batch_size=batch_size)

        assert exc_info.value.phase == "configure"
        assert server.connect_count == 0
        assert manager.state == State.FAILED

    def test_restore_without_prewarm(self, saved_image):
        server = FakeServer(extensions=("pg_buffercache",))

        with pytest.raises(IntrospectionUnavailableError) as exc_info:
            manager_for(server).restore(saved_image)

        assert exc_info.value.phase == "status"
        assert server.prewarmed == []

    def test_connection_lost_mid_restore(self, make_manager, server, saved_image, pages):
        # A dead session shows up as per-page connection failures
        def disconnect(relation, page_number):
            if relation == "pgbench_accounts":
                raise ConnectionError("server closed the connection unexpectedly")

        server.prewarmed.clear()
        server.before_prewarm = disconnect

        report = make_manager().restore(saved_image)

        assert report.pages_fetched == len(pages) - 4
        assert {e.kind for e in report.errors} == {"connection"}

    def test_capacity_warning(self, saved_image):
        server = FakeServer(shared_buffers=10)

        report = manager_for(server).restore(saved_image)

        assert len(report.warnings) == 1
        assert "shared_buffers" in report.warnings[0]
        assert report.pages_fetched == report.pages_attempted

    def test_major_version_warning(self, saved_image):
        server = FakeServer(server_version="17.0")

        report = manager_for(server).restore(saved_image)

        assert any("17.0" in warning for warning in report.warnings)

    @pytest.mark.parametrize("image_version,target_version,warned", [
        ("9.5.25", "9.6.24", True),
        ("9.6.3", "9.6.24", False),
        ("16.2", "16.4", False),
        ("16.2", "17.0 (Debian 17.0-1.pgdg120+1)", True),
    ])
    def test_major_version_compared_per_release_scheme(self, tmp_path, image_version,
                                                       target_version, warned):
        path = tmp_path / "old.img"
        manager_for(FakeServer(server_version=image_version)).save(path)

        report = manager_for(FakeServer(server_version=target_version)).restore(path)

        version_warnings = [w for w in report.warnings if "captured on PostgreSQL" in w]
        assert bool(version_warnings) == warned

    def test_status_timeout_before_restore_fails(self, saved_image):
        server = FakeServer()
        server.status_error = psycopg2.errors.QueryCanceled(
            "canceling statement due to statement timeout"
        )
        manager = manager_for(server)

        with pytest.raises(ConnectionError, match="statement timeout") as exc_info:
            manager.restore(saved_image)

        assert exc_info.value.phase == "status"
        assert manager.state == State.FAILED
        assert server.prewarmed == []
        assert server.close_count == 1

    def test_status_timeout_after_restore_is_a_warning(self, saved_image, pages):
        server = FakeServer()
        server.status_error = psycopg2.errors.QueryCanceled(
            "canceling statement due to statement timeout"
        )
        server.status_error_after = 1
        manager = manager_for(server)

        report = manager.restore(saved_image)

        assert report.pages_fetched == len(pages)
        assert report.status_before["server_version"] == "16.2"
        assert report.status_after == {}
        assert any("after restore" in warning for warning in report.warnings)
        assert manager.state == State.CLOSED

    def test_cancel_after_first_batch(self, make_manager, server, saved_image):
        cancel = threading.Event()
        manager = make_manager()

        report = manager.restore(
            saved_image, batch_size=4, on_batch=lambda f, a: cancel.set(), cancel=cancel
        )

        assert report.cancelled
        assert report.pages_attempted == 4
        assert report.batches == 1
        assert manager.state == State.CLOSED

    def test_callbacks(self, make_manager, saved_image, pages):
        seen_metadata = []
        results = []

        make_manager().restore(
            saved_image,
            batch_size=10,
            on_metadata=seen_metadata.append,
            on_batch_result=results.append,
        )

        assert seen_metadata[0].page_count == len(pages)
        assert [r.pages_attempted for r in results] == [10, 6]

    def test_timings_are_monotonic(self, make_manager, saved_image):
        manager = make_manager()

        started = time.monotonic()
        report = manager.restore(saved_image)
        elapsed = time.monotonic() - started

        assert set(report.timings) == {"read", "connect", "status", "fetch"}
        assert all(value >= 0 for value in report.timings.values())
        assert sum(report.timings.values()) <= elapsed
        with pytest.raises(RuntimeError):
            manager.timings.record("fetch", 1.0)

    def test_concurrent_restore(self, make_manager, server, saved_image, pages):
        server.prewarmed.clear()

        report = make_manager(concurrency=4).restore(saved_image, batch_size=6)

        assert report.pages_fetched == len(pages)
        assert sorted(server.prewarmed) == sorted((p.relation, p.page_number) for p in pages)


class TestCacheConfig:

    @pytest.mark.parametrize("field,value", [
        ("batch_size", 0),
        ("port", -1),
        ("concurrency", 0),
        ("connect_timeout", 0),
        ("statement_timeout", False),
        ("host", ""),
        ("user", ""),
    ])
    def test_rejects_unusable_values(self, field, value):
        with pytest.raises(InvalidConfigurationError):
            CacheManager(CacheConfig(**{field: value}))
