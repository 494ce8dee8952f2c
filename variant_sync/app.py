"""
Main application controller for Variant Watcher.

Ties together configuration, the folder watcher, the event queue and
the convergence engine.  Events are handled one at a time, in arrival
order, by the thread that calls ``App.run``; each one runs to
completion before the next is taken from the queue.
"""

import logging
import logging.handlers
import os
import sys
import threading
from pathlib import Path

from variant_sync import __app_name__, __version__
from variant_sync.codec import Codec, PillowCodec
from variant_sync.config import Config, get_log_path
from variant_sync.engine import ConvergenceEngine
from variant_sync.errors import StartupError
from variant_sync.stats import SyncStats
from variant_sync.watcher import (
    EventKind,
    EventQueue,
    FolderWatcher,
    SourceEvent,
    scan_directory,
)

logger = logging.getLogger(__name__)

# How long the consumer blocks on an empty queue before re-checking stop.
_QUEUE_TIMEOUT = 0.5


class App:
    """
    Central orchestrator.

    Owns the stats, the event queue, the engine and the watcher.
    """

    def __init__(self, config: Config, codec: Codec | None = None) -> None:
        self.config = config
        self.stats = SyncStats()
        self.events = EventQueue()
        self.engine = ConvergenceEngine(
            matrix=config.build_matrix(),
            codec=codec or PillowCodec(),
            stats=self.stats,
            max_width=config.max_width,
            max_height=config.max_height,
        )
        self.watcher: FolderWatcher | None = None
        self._stop = threading.Event()
        self._shut_down = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Prepare folders, reconcile, then consume events until stopped."""
        logger.info("%s %s starting.", __app_name__, __version__)
        logger.info("Watching %s for changes.", os.path.abspath(self.config.input_folder))
        logger.info("Outputting to %s.", os.path.abspath(self.config.output_folder))

        self.prepare()
        try:
            # Events arriving during the initial scan are buffered and
            # handled afterwards; duplicates of scanned files become skips.
            if not self._stop.is_set():
                self._start_watcher()
            self.reconcile()
            while not self._stop.is_set():
                self.process_next(timeout=_QUEUE_TIMEOUT)
        finally:
            self.shutdown()

    def prepare(self) -> None:
        """Create the output folder; raise ``StartupError`` if it is unusable."""
        output = Path(self.config.output_folder)
        existed = output.is_dir()
        try:
            output.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StartupError(f"Cannot create output folder {output}: {exc}") from exc
        if not os.access(output, os.W_OK | os.X_OK):
            raise StartupError(f"Output folder {output} is not writable")
        if not existed:
            logger.info("Created output directory: %s", output)

        source = Path(self.config.input_folder)
        if not source.exists():
            logger.warning("Input folder %s does not exist; creating it.", source)
            try:
                source.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.error("Cannot create input folder %s: %s", source, exc)

    def reconcile(self) -> int:
        """Run ``sync_create`` for every image already in the input folder."""
        logger.info("Performing initial scan of input directory...")
        files = scan_directory(self.config.input_folder, self.config.image_extensions)
        processed = 0
        for path in files:
            if self._stop.is_set():
                logger.info("Stop requested; initial scan interrupted.")
                break
            logger.info("Initial scan: found image %s", path.name)
            self.engine.sync_create(path)
            processed += 1
        logger.info("Initial scan complete. Processed %d image(s).", processed)
        self.engine.report()
        return processed

    def request_stop(self) -> None:
        """Stop after the event currently being handled (thread/signal safe)."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def shutdown(self) -> None:
        """Stop accepting events, release the watcher and log final stats."""
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("Shutting down %s...", __app_name__)
        self.events.close()
        if self.watcher:
            self.watcher.stop()
            self.watcher = None
        dropped = self.events.drain()
        if dropped:
            logger.warning("Discarding %d pending event(s).", len(dropped))
        self.engine.report()

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def process_next(self, timeout: float | None = None) -> bool:
        """Handle one queued event; return False if none arrived in time."""
        event = self.events.get(timeout=timeout)
        if event is None:
            return False
        self.handle(event)
        return True

    def handle(self, event: SourceEvent) -> None:
        """Dispatch one event to the engine and run it to completion."""
        if event.kind is EventKind.ADDED:
            logger.info("[EVENT] File added: %s", event.path)
            self.engine.sync_create(event.path)
        else:
            logger.info("[EVENT] File deleted: %s", event.path)
            self.engine.sync_delete(event.path)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_watcher(self) -> None:
        self.watcher = FolderWatcher(
            source_folder=self.config.input_folder,
            queue=self.events,
            stable_seconds=self.config.stable_time,
            extensions=self.config.image_extensions,
            poll_interval=self.config.poll_interval,
        )
        self.watcher.start()
        logger.info("%s is now watching for changes.", __app_name__)

    def setup_logging(self, log_path: Path | None = None) -> None:
        """Configure rotating file log and stderr handler."""
        log_path = log_path or get_log_path()
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        root_logger = logging.getLogger()
        root_logger.setLevel(level)

        fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

        # Rotating file handler
        max_bytes = self.config.max_log_size_mb * 1024 * 1024
        fh = logging.handlers.RotatingFileHandler(
            str(log_path),
            maxBytes=max_bytes,
            backupCount=self.config.log_backup_count,
            encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(fmt)
        root_logger.addHandler(fh)

        sh = logging.StreamHandler(sys.stderr)
        sh.setLevel(level)
        sh.setFormatter(fmt)
        root_logger.addHandler(sh)
