"""Getting scans into a batch: PDF splitting and scanner folders."""

from .pdf import add_pdf_to_queue, split_pdf_pages


# ScanWatcher imported lazily to avoid the watchdog import at module load
def get_scan_watcher():
    from .watcher import ScanWatcher
    return ScanWatcher


__all__ = ["add_pdf_to_queue", "split_pdf_pages", "get_scan_watcher"]
