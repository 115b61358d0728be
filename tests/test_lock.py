"""Tests for the per-project reconciliation lock."""
import os
import threading
import time

import pytest

from skiff.core.lock import ProjectLock, check_lock_status, lock_path_for, project_lock
from skiff.models.errors import LockError


class TestProjectLock:
    """File-based locking of one project directory."""

    def test_acquire_and_release(self, tmp_path):
        lock = ProjectLock(tmp_path)

        assert lock.acquire() is True
        assert lock_path_for(tmp_path).exists()

        lock.release()
        assert check_lock_status(tmp_path) is None

    def test_lock_file_kept_after_release(self, tmp_path):
        path = lock_path_for(tmp_path)
        with ProjectLock(tmp_path):
            inode = path.stat().st_ino

        assert path.exists()

        with ProjectLock(tmp_path, timeout=0):
            assert path.stat().st_ino == inode
            assert check_lock_status(tmp_path)['pid'] == str(os.getpid())

    def test_waiter_gets_lock_after_release(self, tmp_path):
        first = ProjectLock(tmp_path)
        first.acquire()
        waiter = ProjectLock(tmp_path, timeout=2)
        threading.Timer(0.3, first.release).start()

        assert waiter.acquire() is True
        with pytest.raises(LockError):
            ProjectLock(tmp_path, timeout=0).acquire()

        waiter.release()

    def test_concurrent_lock_fails(self, tmp_path):
        first = ProjectLock(tmp_path)
        first.acquire()

        second = ProjectLock(tmp_path, timeout=0)
        with pytest.raises(LockError) as exc_info:
            second.acquire()

        assert "Another skiff run is reconciling this project" in str(exc_info.value)
        assert f"PID {os.getpid()}" in str(exc_info.value)

        first.release()

    def test_context_manager(self, tmp_path):
        with ProjectLock(tmp_path):
            assert check_lock_status(tmp_path) is not None

        assert check_lock_status(tmp_path) is None

    def test_lock_timeout(self, tmp_path):
        first = ProjectLock(tmp_path)
        first.acquire()

        second = ProjectLock(tmp_path, timeout=1)
        start = time.time()
        with pytest.raises(LockError) as exc_info:
            second.acquire()

        elapsed = time.time() - start
        assert 1.0 <= elapsed < 2.0
        assert "after 1s" in str(exc_info.value)

        first.release()

    def test_lock_info_written(self, tmp_path):
        lock = ProjectLock(tmp_path)
        lock.acquire()

        lines = lock_path_for(tmp_path).read_text().splitlines()
        assert lines[0] == str(os.getpid())
        assert '-' in lines[1]  # YYYY-MM-DD

        lock.release()

    def test_release_without_acquire(self, tmp_path):
        ProjectLock(tmp_path).release()

    def test_lock_lives_under_project(self, tmp_path):
        assert lock_path_for(tmp_path) == tmp_path / ".skiff" / "reconcile.lock"


class TestProjectLockContext:

    def test_body_runs(self, tmp_path):
        executed = False
        with project_lock(tmp_path):
            executed = True
        assert executed

    def test_held_elsewhere(self, tmp_path):
        holder = ProjectLock(tmp_path)
        holder.acquire()

        with pytest.raises(LockError):
            with project_lock(tmp_path, timeout=0):
                pass

        holder.release()

    def test_released_on_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with project_lock(tmp_path):
                raise RuntimeError("boom")
        assert check_lock_status(tmp_path) is None


class TestCheckLockStatus:

    def test_no_lock_file(self, tmp_path):
        assert check_lock_status(tmp_path) is None

    def test_lock_held(self, tmp_path):
        lock = ProjectLock(tmp_path)
        lock.acquire()

        status = check_lock_status(tmp_path)

        assert status['pid'] == str(os.getpid())
        assert status['lock_file'] == str(lock_path_for(tmp_path))
        lock.release()

    def test_stale_lock_file(self, tmp_path):
        path = lock_path_for(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text("12345\n2025-01-01 00:00:00\n")

        assert check_lock_status(tmp_path) is None
