"""Per-project locking so reconciliations of one manifest are serialized.

The reconciler itself is not reentrant: two runs over the same project would
race on the override documents. Every writing workflow holds this lock.
"""
import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from skiff.core.logger import get_logger
from skiff.models.errors import LockError

logger = get_logger(__name__)

LOCK_DIR = ".skiff"
LOCK_NAME = "reconcile.lock"


def lock_path_for(working_dir: Path) -> Path:
    return Path(working_dir) / LOCK_DIR / LOCK_NAME


class ProjectLock:
    """File-based lock held for the duration of a reconciliation."""

    def __init__(self, working_dir: Path = Path("."), timeout: float = 0):
        """Initialize lock.

        Args:
            working_dir: Project directory; the lock lives in <working_dir>/.skiff/
            timeout: Seconds to wait for lock (0 = fail immediately)
        """
        self.lock_file = lock_path_for(working_dir)
        self.timeout = timeout
        self.lock_fd = None

    def acquire(self) -> bool:
        """Acquire the lock.

        Raises:
            LockError: If another process holds it past the timeout
        """
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        self.lock_fd = open(self.lock_file, 'a+')

        start_time = time.time()
        while True:
            try:
                fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)

                self.lock_fd.seek(0)
                self.lock_fd.truncate()
                self.lock_fd.write(f"{os.getpid()}\n")
                self.lock_fd.write(f"{time.strftime('%Y-%m-%d %H:%M:%S')}\n")
                self.lock_fd.flush()

                logger.debug(f"Acquired lock: {self.lock_file}")
                return True

            except OSError:
                elapsed = time.time() - start_time
                if self.timeout <= 0 or elapsed >= self.timeout:
                    lock_info = self._read_lock_info()
                    self._close()
                    waited = f" after {self.timeout}s" if self.timeout > 0 else ""
                    raise LockError(
                        f"Another skiff run is reconciling this project{waited}.\n"
                        f"Lock held by PID {lock_info['pid']} since {lock_info['time']}\n"
                        "Wait for it to finish and retry."
                    )
                time.sleep(0.2)

    def release(self):
        """Release the lock.

        Only the flock is dropped; the lock file is left in place.
        """
        if self.lock_fd is None:
            return
        try:
            fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_UN)
            logger.debug(f"Released lock: {self.lock_file}")
        except OSError as e:
            logger.warning(f"Error releasing lock: {e}")
        finally:
            self._close()

    def _close(self):
        if self.lock_fd is not None:
            self.lock_fd.close()
            self.lock_fd = None

    def _read_lock_info(self) -> dict:
        try:
            with open(self.lock_file) as f:
                lines = f.readlines()
        except OSError:
            lines = []

        if len(lines) >= 2:
            return {'pid': lines[0].strip(), 'time': lines[1].strip()}
        return {'pid': 'unknown', 'time': 'unknown'}

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


@contextmanager
def project_lock(working_dir: Path = Path("."), timeout: float = 0):
    """Hold the project lock for the body of a with-block.

    Usage:
        with project_lock(project_dir):
            ...

    Raises:
        LockError: If unable to acquire lock
    """
    lock = ProjectLock(working_dir, timeout=timeout)
    lock.acquire()
    try:
        yield lock
    finally:
        lock.release()


def check_lock_status(working_dir: Path = Path(".")) -> Optional[dict]:
    """Return lock holder info if a reconciliation is running, None if free."""
    lock_file = lock_path_for(working_dir)
    if not lock_file.exists():
        return None

    try:
        with open(lock_file) as f:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                return None  # stale lock file
            except OSError:
                f.seek(0)
                lines = f.readlines()
    except OSError as e:
        logger.warning(f"Error checking lock status: {e}")
        return None

    if len(lines) >= 2:
        return {'pid': lines[0].strip(), 'time': lines[1].strip(), 'lock_file': str(lock_file)}
    return {'pid': 'unknown', 'time': 'unknown', 'lock_file': str(lock_file)}
