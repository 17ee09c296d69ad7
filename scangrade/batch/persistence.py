"""Best-effort crash recovery for an in-progress batch.

The queue is written to a local JSON file after changes. On restart a
snapshot younger than the max age is restored. This is not a
transactional log: a failed write is logged and the batch carries on.
"""

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from ..config import SESSION_MAX_AGE_HOURS, SESSION_SNAPSHOT_PATH
from .queue import BatchQueue

logger = logging.getLogger("scangrade.session")

SNAPSHOT_VERSION = 1


class SessionStore:
    """Saves and restores BatchQueue snapshots in one JSON file."""

    def __init__(self, path: Optional[Path] = None, max_age_hours: float = SESSION_MAX_AGE_HOURS):
        self.path = Path(path or SESSION_SNAPSHOT_PATH)
        self.max_age = timedelta(hours=max_age_hours)

    def save(self, queue: BatchQueue, now: Optional[datetime] = None) -> bool:
        """Write a snapshot. Returns False (after logging) if the write failed."""
        now = now or datetime.now(timezone.utc)
        data = {
            "version": SNAPSHOT_VERSION,
            "saved_at": now.isoformat(),
            "queue": queue.snapshot(),
        }
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Could not save session snapshot to %s: %s", self.path, e)
            return False
        logger.debug("Saved session snapshot with %d item(s)", len(queue))
        return True

    def load(self, now: Optional[datetime] = None) -> Optional[BatchQueue]:
        """Restore the last snapshot, or None if there is no usable one."""
        if not self.path.exists():
            return None
        now = now or datetime.now(timezone.utc)

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            if data.get("version") != SNAPSHOT_VERSION:
                raise ValueError(f"unsupported snapshot version {data.get('version')!r}")
            saved_at = datetime.fromisoformat(data["saved_at"])
            if saved_at.tzinfo is None:
                saved_at = saved_at.replace(tzinfo=timezone.utc)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Discarding unreadable session snapshot %s: %s", self.path, e)
            self.clear()
            return None

        if now - saved_at > self.max_age:
            logger.info("Discarding session snapshot from %s (older than %s)", saved_at.isoformat(), self.max_age)
            self.clear()
            return None

        try:
            queue = BatchQueue.from_snapshot(data["queue"])
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Discarding corrupt session snapshot %s: %s", self.path, e)
            self.clear()
            return None

        logger.info("Restored session with %d item(s) saved at %s", len(queue), saved_at.isoformat())
        return queue

    def clear(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove session snapshot %s: %s", self.path, e)

    def attach(self, queue: BatchQueue):
        """Save a snapshot after every queue change. Returns the unsubscribe function."""
        return queue.subscribe(lambda event, item_id: self.save(queue))
