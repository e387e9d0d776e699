"""Tests for session folders and the expiry sweeper."""

import os
import shutil

import pytest

from mediagrab_backend import workspace
from mediagrab_backend.errors import ValidationError
from mediagrab_backend.security import new_session_id
from mediagrab_backend.workspace import SweepScheduler, cleanup_expired_sessions


class TestReset:
    def test_creates_missing_directory(self, directories):
        sid = new_session_id()
        path = directories.reset(sid)
        assert path.is_dir()
        assert list(path.iterdir()) == []

    def test_empties_files_and_nested_directories(self, directories):
        sid = new_session_id()
        path = directories.ensure(sid)
        (path / "a.jpg").write_bytes(b"a")
        nested = path / "nested" / "deeper"
        nested.mkdir(parents=True)
        (nested / "b.mp4").write_bytes(b"b")
        inode = path.stat().st_ino

        directories.reset(sid)

        assert path.is_dir()
        assert list(path.iterdir()) == []
        # The folder itself is kept, only its contents go.
        assert path.stat().st_ino == inode

    def test_is_idempotent(self, directories):
        sid = new_session_id()
        directories.reset(sid)
        directories.reset(sid)
        assert directories.exists(sid)

    def test_no_session_maps_to_default_bucket(self, directories):
        assert directories.reset(None) == directories.root / "default"


class TestResolveAndDestroy:
    @pytest.mark.parametrize("name", ["../x.jpg", "a/b.jpg", "a\\b.jpg", ".."])
    def test_resolve_fails_closed(self, directories, name):
        with pytest.raises(ValidationError):
            directories.resolve(new_session_id(), name)

    def test_invalid_session_id_rejected(self, directories):
        with pytest.raises(ValidationError):
            directories.path_for("../../etc")

    def test_resolve_stays_in_session(self, directories):
        sid = new_session_id()
        assert directories.resolve(sid, "a.jpg") == (directories.root / sid / "a.jpg").resolve()

    def test_destroy_tolerates_missing(self, directories):
        sid = new_session_id()
        directories.destroy(sid)
        directories.ensure(sid)
        (directories.path_for(sid) / "f.bin").write_bytes(b"x")
        directories.destroy(sid)
        assert not directories.exists(sid)


def _aged_session(directories, store, mtime):
    sid = new_session_id()
    path = directories.ensure(sid)
    (path / "f.jpg").write_bytes(b"x")
    store.register(sid, "1.2.3.4")
    os.utime(path, (mtime, mtime))
    return sid


class TestCleanupExpiredSessions:
    def test_removes_session_just_past_ttl(self, directories, store):
        base = 1_700_000_000.0
        sid = _aged_session(directories, store, base)

        removed = cleanup_expired_sessions(directories, store, 3600, now=base + 3601)

        assert removed == 1
        assert not directories.exists(sid)
        assert sid not in store.backend.load()

    def test_keeps_session_just_inside_ttl(self, directories, store):
        base = 1_700_000_000.0
        sid = _aged_session(directories, store, base)

        removed = cleanup_expired_sessions(directories, store, 3600, now=base + 3599)

        assert removed == 0
        assert directories.exists(sid)
        assert sid in store.backend.load()

    def test_missing_root_sweeps_nothing(self, tmp_path):
        dirs = workspace.SessionDirectories(tmp_path / "nope")
        assert cleanup_expired_sessions(dirs, None, 3600) == 0

    def test_one_failure_does_not_stop_the_sweep(self, directories, store, monkeypatch):
        base = 1_700_000_000.0
        broken = _aged_session(directories, store, base)
        healthy = _aged_session(directories, store, base)
        real_rmtree = shutil.rmtree

        def flaky_rmtree(path, *args, **kwargs):
            if os.path.basename(str(path)) == broken:
                raise PermissionError("busy")
            return real_rmtree(path, *args, **kwargs)

        monkeypatch.setattr(workspace.shutil, "rmtree", flaky_rmtree)

        removed = cleanup_expired_sessions(directories, store, 3600, now=base + 7200)

        assert removed == 1
        assert directories.exists(broken)
        assert not directories.exists(healthy)

    def test_metadata_file_is_not_a_session(self, directories, store):
        _aged_session(directories, store, 1_700_000_000.0)
        cleanup_expired_sessions(directories, store, 3600, now=1_700_000_000.0 + 7200)
        assert store.backend.path.exists()


class TestSweepScheduler:
    async def test_scheduled_sweep_swallows_errors(self, directories, store, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(workspace, "cleanup_expired_sessions", boom)
        scheduler = SweepScheduler(directories, store, 3600)

        task = scheduler.schedule()
        assert await task == 0

    async def test_drain_waits_for_pending_sweeps(self, directories, store):
        sid = _aged_session(directories, store, 1_000.0)
        scheduler = SweepScheduler(directories, store, 3600)

        scheduler.schedule()
        await scheduler.drain()

        assert not directories.exists(sid)
