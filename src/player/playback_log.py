"""
Proof-of-play buffering for the terminal player.

Every item the rotation puts on screen is recorded in a local SQLite buffer
so the record survives reboots and offline periods. A background reporter
uploads the buffer to the CMS in batches every few minutes and deletes what
the CMS accepted.

The buffer keeps at most MAX_BUFFER_SIZE records; when a terminal stays
offline long enough to fill it, the oldest records are dropped first.
"""

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from src.common.cms_client import CMSClient, CMSClientError
from src.common.logger import setup_logger

logger = setup_logger(__name__)

MAX_BUFFER_SIZE = 1000


class PlaybackLogStore:
    """
    SQLite-backed buffer of playback records awaiting upload.

    Thread-safe: uses a connection per thread via thread-local storage.
    """

    def __init__(self, db_file: str, max_size: int = MAX_BUFFER_SIZE):
        self.db_file = Path(db_file)
        self.max_size = max_size
        self._local = threading.local()

        self.db_file.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()
        logger.info("PlaybackLogStore initialized: %s", self.db_file)

    def _get_conn(self) -> sqlite3.Connection:
        """Get a thread-local SQLite connection."""
        if getattr(self._local, "conn", None) is None:
            self._local.conn = sqlite3.connect(str(self.db_file), timeout=10)
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA synchronous=NORMAL")
        return self._local.conn

    def _init_schema(self) -> None:
        conn = self._get_conn()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS playback_buffer (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                entry TEXT NOT NULL,
                created_at TEXT DEFAULT (datetime('now'))
            )
        """)
        conn.commit()

    def record(self, entry: Dict[str, Any]) -> bool:
        """
        Buffer one playback record, dropping the oldest beyond the size cap.

        Returns:
            True if the record was stored
        """
        try:
            conn = self._get_conn()
            conn.execute("INSERT INTO playback_buffer (entry) VALUES (?)", (json.dumps(entry),))
            cursor = conn.execute(
                "DELETE FROM playback_buffer WHERE id NOT IN "
                "(SELECT id FROM playback_buffer ORDER BY id DESC LIMIT ?)",
                (self.max_size,)
            )
            conn.commit()
        except sqlite3.Error as e:
            logger.error("Could not buffer playback record: %s", e)
            return False

        if cursor.rowcount > 0:
            logger.warning("Playback buffer full, dropped %d oldest records", cursor.rowcount)
        return True

    def pending(self, limit: int = MAX_BUFFER_SIZE) -> List[Tuple[int, Dict[str, Any]]]:
        """Oldest buffered records as (row id, entry) pairs."""
        rows = self._get_conn().execute(
            "SELECT id, entry FROM playback_buffer ORDER BY id ASC LIMIT ?",
            (limit,)
        ).fetchall()
        return [(row_id, json.loads(entry)) for row_id, entry in rows]

    def remove(self, row_ids: List[int]) -> None:
        """Delete records the CMS accepted."""
        if not row_ids:
            return
        conn = self._get_conn()
        placeholders = ",".join("?" for _ in row_ids)
        conn.execute(f"DELETE FROM playback_buffer WHERE id IN ({placeholders})", row_ids)
        conn.commit()

    def count(self) -> int:
        return self._get_conn().execute("SELECT COUNT(*) FROM playback_buffer").fetchone()[0]

    def close(self) -> None:
        """Close the calling thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None


class PlaybackReporter:
    """Uploads buffered playback records at regular intervals."""

    DEFAULT_INTERVAL = 300  # seconds between uploads

    def __init__(
        self,
        client: CMSClient,
        store: PlaybackLogStore,
        terminal_id: str,
        interval: int = DEFAULT_INTERVAL,
        batch_size: int = MAX_BUFFER_SIZE
    ):
        """
        Initialize the playback reporter.

        Args:
            client: CMS client
            store: Local playback buffer
            terminal_id: Terminal the records belong to
            interval: Seconds between uploads (default: 300)
            batch_size: Records per upload
        """
        self._client = client
        self._store = store
        self.terminal_id = terminal_id
        self.interval = interval
        self.batch_size = batch_size

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()

        self._last_upload_time: Optional[float] = None
        self._uploaded_total = 0
        self._consecutive_failures = 0

    def flush(self) -> int:
        """
        Upload one batch of buffered records.

        Records stay buffered when the CMS cannot be reached or does not
        know the terminal.

        Returns:
            Number of records uploaded
        """
        try:
            pending = self._store.pending(self.batch_size)
        except sqlite3.Error as e:
            logger.error(f"Could not read playback buffer: {e}")
            return 0

        if not pending:
            return 0

        row_ids = [row_id for row_id, _ in pending]
        entries = [entry for _, entry in pending]

        try:
            result = self._client.report_playback(self.terminal_id, entries)
        except CMSClientError as e:
            logger.warning(f"Playback upload failed, keeping {len(entries)} records: {e}")
            self._consecutive_failures += 1
            return 0

        if result is None:
            logger.warning(f"Playback upload rejected: terminal {self.terminal_id} unknown to CMS")
            self._consecutive_failures += 1
            return 0

        self._store.remove(row_ids)
        self._last_upload_time = time.time()
        self._uploaded_total += len(row_ids)
        self._consecutive_failures = 0
        logger.info(f"Uploaded {len(row_ids)} playback records")
        return len(row_ids)

    def trigger(self) -> None:
        """Request an immediate upload from the background thread."""
        self._wake_event.set()

    def _upload_loop(self) -> None:
        logger.info(f"Playback reporter started (interval: {self.interval}s)")

        while True:
            self._wake_event.wait(timeout=self.interval)
            self._wake_event.clear()
            self.flush()
            if self._stop_event.is_set():
                break

        self._store.close()
        logger.info("Playback reporter stopped")

    def start(self) -> None:
        """Start the upload thread."""
        if self.is_running():
            logger.warning("Playback reporter already running")
            return

        self._stop_event.clear()
        self._wake_event.clear()
        self._thread = threading.Thread(
            target=self._upload_loop,
            name="playback",
            daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the upload thread after one last upload attempt."""
        if not self._thread:
            return

        self._stop_event.set()
        self._wake_event.set()
        self._thread.join(timeout=5)
        self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def get_status(self) -> Dict[str, Any]:
        return {
            "last_upload_time": self._last_upload_time,
            "uploaded_total": self._uploaded_total,
            "consecutive_failures": self._consecutive_failures,
        }
