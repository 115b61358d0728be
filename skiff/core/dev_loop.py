"""Development loop: watch sources and overrides, reconcile on change.

A single daemon thread polls file modification times and feeds changed paths
into a bounded queue. The main loop takes one change, drains whatever else
piled up meanwhile, and runs exactly one reconciliation for the whole burst.
Cancellation is observed between passes, never inside one.
"""
import queue
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from skiff.core.change_report import NullReporter, Reporter
from skiff.core.config import get_config
from skiff.core.logger import get_logger
from skiff.core.project import ReconcileResult, manifest_path, reconcile
from skiff.models.errors import SkiffError
from skiff.models.manifest import Manifest

logger = get_logger(__name__)

ChangeHandler = Callable[[str], None]


def _mtime(path: Path) -> Optional[int]:
    try:
        return path.stat().st_mtime_ns
    except FileNotFoundError:
        return None


class ChangeWatcher:
    """Polls a fixed set of files and queues the ones that changed."""

    def __init__(self, paths: Iterable[Path], changes: queue.Queue, poll_interval: float = 1.0):
        self.paths = [Path(p) for p in paths]
        self.changes = changes
        self.poll_interval = poll_interval
        self._mtimes: Dict[Path, Optional[int]] = {}
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.snapshot()

    def snapshot(self) -> None:
        """Record current modification times as the baseline."""
        with self._lock:
            self._mtimes = {path: _mtime(path) for path in self.paths}

    def poll(self) -> List[Path]:
        """Queue every path whose modification time moved since the last poll."""
        changed = []
        with self._lock:
            for path in self.paths:
                current = _mtime(path)
                if current != self._mtimes.get(path):
                    self._mtimes[path] = current
                    changed.append(path)

        for path in changed:
            try:
                self.changes.put_nowait(str(path))
            except queue.Full:
                logger.debug(f"Change queue full, dropping notification for {path}")
        return changed

    @contextmanager
    def paused(self):
        """Suspend polling while a pass runs.

        Paths added to the yielded set are the pass's own writes: their new
        modification times become the baseline. Any other watched file that
        moved meanwhile is queued on exit.
        """
        own_writes: Set[Path] = set()
        with self._lock:
            try:
                yield own_writes
            finally:
                for path in own_writes:
                    path = Path(path)
                    if path in self._mtimes:
                        self._mtimes[path] = _mtime(path)
                self.poll()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()

        def _loop() -> None:
            while not self._stop_event.wait(self.poll_interval):
                self.poll()

        self._thread = threading.Thread(target=_loop, daemon=True, name="skiff-watcher")
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=5.0)
        if self._thread.is_alive():
            logger.warning("Watcher thread did not stop cleanly")
        self._thread = None


class DevLoop:
    """Reconcile selected environments whenever a watched file changes."""

    def __init__(
        self,
        working_dir: Path = Path("."),
        envs: Optional[Iterable[str]] = None,
        on_change: Optional[ChangeHandler] = None,
        reporter: Optional[Reporter] = None,
        poll_interval: Optional[float] = None,
        queue_size: Optional[int] = None,
        verbose: bool = False,
    ):
        config = get_config()
        self.working_dir = Path(working_dir)
        self.envs = list(envs) if envs else None
        self.on_change = on_change
        self.reporter = reporter or NullReporter()
        self.poll_interval = poll_interval if poll_interval is not None else config.dev_poll_interval
        self.verbose = verbose
        self.changes: queue.Queue = queue.Queue(
            maxsize=queue_size if queue_size is not None else config.dev_queue_size
        )
        self.passes = 0
        self.last_result: Optional[ReconcileResult] = None
        self.watcher = ChangeWatcher(self.watched_paths(), self.changes, self.poll_interval)

    def watched_paths(self) -> List[Path]:
        """Compose sources, the .env file and the selected environments' overrides.

        Raises:
            ProjectError: If the manifest is missing or an environment is unknown
        """
        manifest = Manifest.load(manifest_path(self.working_dir))
        paths = [self.working_dir / f for f in manifest.compose_files]
        paths.append(self.working_dir / ".env")
        paths.extend(self.working_dir / file for _, file in manifest.select(self.envs))
        return paths

    def run_once(self) -> Optional[ReconcileResult]:
        """Run one reconciliation pass. Failures are reported, not raised."""
        with self.watcher.paused() as own_writes:
            try:
                result = reconcile(
                    self.working_dir, self.envs, reporter=self.reporter, verbose=self.verbose
                )
                own_writes.update(result.written)
            except SkiffError as e:
                logger.error(f"Reconciliation pass failed: {e}")
                self.reporter.write(f"Reconciliation failed: {e}\n")
                result = None

        self.passes += 1
        self.last_result = result
        return result

    def drain(self) -> int:
        """Discard queued notifications; returns how many were collapsed."""
        drained = 0
        while True:
            try:
                self.changes.get_nowait()
            except queue.Empty:
                return drained
            drained += 1

    def run(self, cancel: threading.Event) -> int:
        """Initial pass, then one pass per burst of changes until cancelled.

        Returns:
            Number of reconciliation passes run
        """
        self.reporter.write("[development mode] watching for changes\n")
        self.run_once()
        self.watcher.start()
        try:
            while not cancel.is_set():
                try:
                    path = self.changes.get(timeout=self.poll_interval)
                except queue.Empty:
                    continue

                self.reporter.write(f"Change detected in: {path}\n")
                if self.on_change is not None:
                    self.on_change(path)

                collapsed = self.drain()
                if collapsed:
                    logger.debug(f"Coalesced {collapsed} further change notification(s)")
                self.run_once()
        finally:
            self.watcher.stop()

        return self.passes
