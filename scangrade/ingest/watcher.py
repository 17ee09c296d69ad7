"""Folder watcher that feeds new scans into a batch queue."""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

from watchdog.events import FileCreatedEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..batch.queue import BatchQueue
from ..config import SCANS_FOLDER
from .pdf import add_pdf_to_queue

logger = logging.getLogger("scangrade.ingest.watcher")


class ScanHandler(FileSystemEventHandler):
    """Handle new scan files in the watched folder."""

    SUPPORTED_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.pdf', '.tiff', '.tif'}

    def __init__(self, on_scan_detected, settle_seconds: float = 1.0):
        """
        Args:
            on_scan_detected: Called with the Path of each new scan
            settle_seconds: How long to let the scanner finish writing the file
        """
        self.on_scan_detected = on_scan_detected
        self.settle_seconds = settle_seconds

    def on_created(self, event: FileCreatedEvent):
        if event.is_directory:
            return

        file_path = Path(event.src_path)
        if file_path.suffix.lower() not in self.SUPPORTED_EXTENSIONS:
            return

        # Wait a moment for file to be fully written
        if self.settle_seconds:
            time.sleep(self.settle_seconds)

        logger.info("Scan detected: %s", file_path.name)
        self.on_scan_detected(file_path)


class ScanWatcher:
    """Watch a folder for new scans and append them to a queue.

    watchdog calls back on its own thread; items are handed to the loop
    that owns the queue so the queue only ever changes on that loop.
    """

    def __init__(self, queue: BatchQueue, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.queue = queue
        self.loop = loop
        self.observer = None

    def _add_scan(self, scan_path: Path):
        try:
            if scan_path.suffix.lower() == ".pdf":
                ids = add_pdf_to_queue(self.queue, scan_path)
                logger.info("Queued %d page(s) from %s", len(ids), scan_path.name)
            else:
                self.queue.add_image(scan_path, filename=scan_path.name)
        except (OSError, RuntimeError, ValueError) as e:
            logger.error("Could not import scan %s: %s", scan_path, e)

    def _handle_scan(self, scan_path: Path):
        if self.loop is not None:
            self.loop.call_soon_threadsafe(self._add_scan, scan_path)
        else:
            self._add_scan(scan_path)

    def import_existing(self, folder: Optional[Path] = None) -> int:
        """Queue the scans already sitting in the folder, oldest first."""
        folder = Path(folder or SCANS_FOLDER)
        if not folder.is_dir():
            return 0
        paths = sorted(
            (p for p in folder.iterdir() if p.suffix.lower() in ScanHandler.SUPPORTED_EXTENSIONS),
            key=lambda p: p.stat().st_mtime,
        )
        for path in paths:
            self._add_scan(path)
        return len(paths)

    def start(self, folder: Optional[Path] = None):
        """Start watching the folder."""
        folder = Path(folder or SCANS_FOLDER)
        folder.mkdir(parents=True, exist_ok=True)

        handler = ScanHandler(self._handle_scan)
        self.observer = Observer()
        self.observer.schedule(handler, str(folder), recursive=False)
        self.observer.start()

        logger.info("Watching for scans in: %s", folder)

    def stop(self):
        """Stop watching."""
        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None
