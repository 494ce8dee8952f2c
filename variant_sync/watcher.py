"""File system event source for Variant Watcher.

Uses the watchdog library to monitor the source folder.  New or
modified images go through a stability tracker, so an ADDED event is
only emitted once the file has stopped changing.  Deletions are emitted
straight away.  Every event lands in a de-duplicating FIFO that a
single consumer drains.
"""

from __future__ import annotations

import enum
import logging
import os
import queue
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class EventKind(enum.Enum):
    ADDED = "added"
    REMOVED = "removed"


@dataclass(frozen=True)
class SourceEvent:
    """An add/remove notification for one source file."""
    kind: EventKind
    path: Path


def normalise_extensions(extensions: Iterable[str]) -> frozenset[str]:
    """Lowercase extensions without the leading dot."""
    return frozenset(e.lower().strip().lstrip(".") for e in extensions if e.strip())


def is_hidden(path: str | os.PathLike[str]) -> bool:
    return os.path.basename(os.fspath(path)).startswith(".")


def is_eligible(path: str | os.PathLike[str], extensions: frozenset[str]) -> bool:
    """Return True for non-hidden files whose extension is in *extensions*."""
    if is_hidden(path):
        return False
    ext = os.path.splitext(os.fspath(path))[1].lower().lstrip(".")
    return ext in extensions


def scan_directory(folder: str | os.PathLike[str], extensions: Iterable[str]) -> list[Path]:
    """
    List eligible image files directly inside *folder*, sorted by name.

    An unreadable or missing folder is logged and treated as empty.
    """
    exts = normalise_extensions(extensions)
    found = []  # type: list[Path]
    try:
        with os.scandir(folder) as entries:
            for entry in entries:
                if not is_eligible(entry.name, exts):
                    continue
                try:
                    if entry.is_file():
                        found.append(Path(entry.path))
                except OSError as exc:
                    logger.error("Initial scan: cannot stat %s: %s", entry.name, exc)
    except OSError as exc:
        logger.error("Error reading input folder %s for initial scan: %s", folder, exc)
        return []
    found.sort(key=lambda p: p.name)
    return found


class EventQueue:
    """
    Buffered FIFO of ``SourceEvent`` with pending-duplicate suppression.

    An event is dropped when the most recent queued event for the same
    path has the same kind; an ADDED after a pending REMOVED is kept.
    Once closed, new events are rejected.
    """

    def __init__(self) -> None:
        self._queue = queue.Queue()  # type: queue.Queue[SourceEvent]
        # path -> (kind of the last queued event, number of queued events)
        self._latest = {}  # type: dict[Path, tuple[EventKind, int]]
        self._lock = threading.Lock()
        self._closed = False

    def put(self, event: SourceEvent) -> bool:
        """Enqueue *event*; return False if it was dropped."""
        with self._lock:
            if self._closed:
                logger.debug("Queue closed, dropping %s %s", event.kind.value, event.path)
                return False
            kind, count = self._latest.get(event.path, (None, 0))
            if kind is event.kind:
                logger.debug("Duplicate pending event %s %s", event.kind.value, event.path)
                return False
            self._latest[event.path] = (event.kind, count + 1)
            self._queue.put(event)
        return True

    def get(self, timeout: float | None = None) -> SourceEvent | None:
        """Return the next event, or None if none arrived within *timeout*."""
        try:
            event = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        with self._lock:
            kind, count = self._latest[event.path]
            if count <= 1:
                del self._latest[event.path]
            else:
                self._latest[event.path] = (kind, count - 1)
        return event

    def drain(self) -> list[SourceEvent]:
        """Remove and return every event still queued."""
        drained = []  # type: list[SourceEvent]
        with self._lock:
            while True:
                try:
                    drained.append(self._queue.get_nowait())
                except queue.Empty:
                    break
            self._latest.clear()
        return drained

    def close(self) -> None:
        with self._lock:
            self._closed = True

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def __len__(self) -> int:
        return self._queue.qsize()


class _StabilityTracker:
    """Tracks files until their size and mtime are unchanged for a given duration."""

    def __init__(self, stable_seconds: float, queue: EventQueue, poll_interval: float = 0.1):
        self._stable_seconds = stable_seconds
        self._queue = queue
        self._poll_interval = poll_interval
        # file_path -> (last_change_time, (size, mtime_ns))
        self._pending = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread = None  # type: threading.Thread | None

    @property
    def stable_seconds(self) -> float:
        return self._stable_seconds

    @stable_seconds.setter
    def stable_seconds(self, value: float) -> None:
        self._stable_seconds = max(0.0, value)

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._poll, daemon=True, name="StabilityTracker"
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def track(self, path: Path) -> None:
        """Register or refresh a file for stability tracking."""
        try:
            stat = path.stat()
        except OSError:
            return
        with self._lock:
            self._pending[path] = (time.monotonic(), (stat.st_size, stat.st_mtime_ns))
        logger.debug("Tracking %s (size=%d)", path, stat.st_size)

    def untrack(self, path: Path) -> None:
        with self._lock:
            self._pending.pop(path, None)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def check(self, now: float | None = None) -> list[Path]:
        """Emit ADDED for every file that has been stable long enough."""
        now = time.monotonic() if now is None else now
        stable = []  # type: list[Path]
        with self._lock:
            for path, (last_change, signature) in list(self._pending.items()):
                try:
                    stat = path.stat()
                except OSError:
                    # File vanished; drop it
                    del self._pending[path]
                    continue
                current = (stat.st_size, stat.st_mtime_ns)
                if current != signature:
                    self._pending[path] = (now, current)
                elif now - last_change >= self._stable_seconds:
                    stable.append(path)
            for p in stable:
                del self._pending[p]

        for p in stable:
            logger.debug("File stable: %s", p)
            self._queue.put(SourceEvent(EventKind.ADDED, p))
        return stable

    def _poll(self) -> None:
        while not self._stop.is_set():
            try:
                self.check()
            except Exception:
                logger.exception("Stability check failed")
            self._stop.wait(timeout=self._poll_interval)


class SourceEventHandler(FileSystemEventHandler):
    """Watchdog handler that turns raw events into ``SourceEvent``s."""

    def __init__(self, tracker: _StabilityTracker, queue: EventQueue, extensions: frozenset[str]):
        super().__init__()
        self._tracker = tracker
        self._queue = queue
        self._extensions = extensions

    def _accept(self, path: Any) -> bool:
        return is_eligible(os.fsdecode(path), self._extensions)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._accept(event.src_path):
            self._tracker.track(Path(os.fsdecode(event.src_path)))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._accept(event.src_path):
            self._tracker.track(Path(os.fsdecode(event.src_path)))

    def on_closed(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._accept(event.src_path):
            self._tracker.track(Path(os.fsdecode(event.src_path)))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._accept(event.src_path):
            self._removed(Path(os.fsdecode(event.src_path)))

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        if self._accept(event.src_path):
            self._removed(Path(os.fsdecode(event.src_path)))
        if self._accept(event.dest_path):
            self._tracker.track(Path(os.fsdecode(event.dest_path)))

    def _removed(self, path: Path) -> None:
        self._tracker.untrack(path)
        self._queue.put(SourceEvent(EventKind.REMOVED, path))


class FolderWatcher:
    """High-level watcher that combines watchdog + stability tracking.

    Usage:
        events = EventQueue()
        watcher = FolderWatcher(source, events, stable_seconds=2, extensions=["png"])
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        source_folder: str | os.PathLike[str],
        queue: EventQueue,
        stable_seconds: float = 2.0,
        extensions: Iterable[str] = (),
        poll_interval: float = 0.1,
    ):
        self.source_folder = os.fspath(source_folder)
        self._tracker = _StabilityTracker(stable_seconds, queue, poll_interval)
        self._handler = SourceEventHandler(self._tracker, queue, normalise_extensions(extensions))
        self._observer: Any | None = None

    # ---- lifecycle ----

    def start(self) -> None:
        """Start watching the source folder (non-recursive)."""
        if not os.path.isdir(self.source_folder):
            logger.error("Source folder does not exist: %s", self.source_folder)
            raise FileNotFoundError(
                f"Source folder does not exist: {self.source_folder}"
            )

        observer = Observer()
        self._observer = observer
        observer.schedule(self._handler, self.source_folder, recursive=False)
        observer.start()
        self._tracker.start()
        logger.info(
            "Watching '%s' (stable=%.1fs)", self.source_folder, self._tracker.stable_seconds
        )

    def stop(self) -> None:
        """Stop watching and release resources."""
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        self._tracker.stop()
        logger.info("Watcher stopped.")

    @property
    def is_running(self) -> bool:
        """Return whether the watcher is currently active."""
        return self._observer is not None and self._observer.is_alive()

    @property
    def pending_count(self) -> int:
        """Return the number of files awaiting stability."""
        return self._tracker.pending_count
