"""State management for tracking archived meetings."""

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from zoom_archiver.errors import DuplicateKeyError, PersistenceError
from zoom_archiver.models import ProcessedEntry, RunState, RunStatistics, RunStatus

logger = logging.getLogger(__name__)

# Zoom's Reports API only answers for the last 6 months
DEFAULT_LOOKBACK_DAYS = 150

SCHEMA = """
CREATE TABLE IF NOT EXISTS processed_meetings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid TEXT NOT NULL,
    platform TEXT NOT NULL,
    meeting_id TEXT,
    processed_at TEXT NOT NULL,
    output_location TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    UNIQUE(uuid, platform)
);

CREATE TABLE IF NOT EXISTS sync_state (
    platform TEXT PRIMARY KEY,
    last_fetch_timestamp TEXT NOT NULL,
    total_processed INTEGER NOT NULL DEFAULT 0,
    last_run_status TEXT NOT NULL,
    last_run_at TEXT,
    consecutive_failures INTEGER NOT NULL DEFAULT 0
);
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class StateManager:
    """Idempotency ledger for the archive, stored in SQLite.

    The state is read into memory by ``load()``, mutated in memory while a run
    is in progress and written back in a single transaction by ``save()``.
    Nothing reaches the database before ``save()`` completes.

    All mutating methods must be called from a single thread.
    """

    def __init__(
        self,
        db_path: str = "meetings_state.db",
        platform: str = "zoom",
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    ):
        """Initialize the state manager.

        Args:
            db_path: Path to the SQLite database file.
            platform: Platform whose state this instance manages.
            lookback_days: How far back the very first run fetches.
        """
        self.db_path = Path(db_path)
        self.platform = platform
        self.lookback_days = lookback_days
        self.conn: Optional[sqlite3.Connection] = None
        self.state = self._default_state()
        self._unsaved: List[str] = []

    def _default_state(self) -> RunState:
        start = (_utcnow() - timedelta(days=self.lookback_days)).replace(hour=0, minute=0, second=0, microsecond=0)
        return RunState(last_fetch_timestamp=start)

    def _connect(self) -> sqlite3.Connection:
        if self.conn is None:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            try:
                conn.executescript(SCHEMA)
                conn.commit()
            except sqlite3.Error:
                conn.close()
                raise
            self.conn = conn
            logger.info(f"Initialized state database at {self.db_path}")
        return self.conn

    def load(self) -> RunState:
        """Load persisted state.

        A missing database yields a fresh state. A corrupt one is moved aside
        and also yields a fresh state, so a damaged file never blocks a run.

        Returns:
            The current run state.
        """
        self._unsaved = []

        if not self.db_path.exists():
            logger.info("No existing state database found, starting fresh")
            self.state = self._default_state()
            return self.state

        try:
            self.state = self._read_state(self._connect())
        except (sqlite3.Error, ValueError) as e:
            logger.error(f"Failed to load state database, starting with default state: {e}")
            self._quarantine()
            self.state = self._default_state()
            return self.state

        logger.info(
            f"Loaded state: {self.state.statistics.total_processed} meetings processed, "
            f"last fetch {self.state.last_fetch_timestamp.isoformat()}"
        )
        return self.state

    def _read_state(self, conn: sqlite3.Connection) -> RunState:
        row = conn.execute("SELECT * FROM sync_state WHERE platform = ?", (self.platform,)).fetchone()
        state = self._default_state()

        if row:
            state.last_fetch_timestamp = _parse_timestamp(row["last_fetch_timestamp"])
            state.statistics = RunStatistics(
                total_processed=row["total_processed"],
                last_run_status=RunStatus(row["last_run_status"]),
                last_run_at=_parse_timestamp(row["last_run_at"]),
                consecutive_failures=row["consecutive_failures"],
            )

        rows = conn.execute("SELECT * FROM processed_meetings WHERE platform = ?", (self.platform,))
        for entry_row in rows:
            state.processed_entries[entry_row["uuid"]] = ProcessedEntry(
                uuid=entry_row["uuid"],
                meeting_id=entry_row["meeting_id"],
                processed_at=_parse_timestamp(entry_row["processed_at"]),
                output_location=entry_row["output_location"],
                content_hash=entry_row["content_hash"],
            )

        return state

    def _quarantine(self) -> None:
        self.close()
        backup = self.db_path.with_name(f"{self.db_path.name}.corrupt-{_utcnow().strftime('%Y%m%d%H%M%S')}")
        try:
            self.db_path.rename(backup)
            logger.warning(f"Moved unreadable state database to {backup}")
        except OSError as e:
            logger.error(f"Could not move unreadable state database aside: {e}")

    def is_processed(self, uuid: str) -> bool:
        """Check if a meeting has already been archived.

        Args:
            uuid: Meeting UUID.

        Returns:
            True if the meeting has been archived, False otherwise.
        """
        return uuid in self.state.processed_entries

    def record_processed(self, entry: ProcessedEntry) -> None:
        """Record an archived meeting.

        Raises:
            DuplicateKeyError: If the uuid was already recorded.
        """
        if entry.uuid in self.state.processed_entries:
            raise DuplicateKeyError(f"Meeting already recorded: {entry.uuid}")

        self.state.processed_entries[entry.uuid] = entry
        self.state.statistics.total_processed += 1
        self._unsaved.append(entry.uuid)
        logger.info(f"Recorded meeting: {entry.uuid} ({self.platform})")

    def advance_fetch_boundary(self, timestamp: datetime) -> None:
        """Move the last fetch timestamp forward.

        Raises:
            ValueError: If the timestamp is earlier than the current boundary.
        """
        if timestamp < self.state.last_fetch_timestamp:
            raise ValueError(
                f"Fetch boundary cannot move backwards: {timestamp.isoformat()} < "
                f"{self.state.last_fetch_timestamp.isoformat()}"
            )
        self.state.last_fetch_timestamp = timestamp
        logger.info(f"Advanced fetch boundary for {self.platform}: {timestamp.isoformat()}")

    def record_run_outcome(self, status: RunStatus) -> None:
        """Update run statistics after a run."""
        statistics = self.state.statistics
        statistics.last_run_status = status
        statistics.last_run_at = _utcnow()

        if status is RunStatus.FAILURE:
            statistics.consecutive_failures += 1
        else:
            statistics.consecutive_failures = 0

    def save(self) -> None:
        """Write the in-memory state to the database in one transaction.

        Raises:
            PersistenceError: If the state could not be written.
        """
        state = self.state
        statistics = state.statistics

        try:
            conn = self._connect()
            with conn:
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO processed_meetings
                        (uuid, platform, meeting_id, processed_at, output_location, content_hash)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            entry.uuid,
                            self.platform,
                            entry.meeting_id,
                            entry.processed_at.isoformat(),
                            entry.output_location,
                            entry.content_hash,
                        )
                        for entry in (state.processed_entries[uuid] for uuid in self._unsaved)
                    ],
                )
                # An overlapping run that finishes later must not move the boundary back
                conn.execute(
                    """
                    INSERT INTO sync_state
                        (platform, last_fetch_timestamp, total_processed, last_run_status,
                         last_run_at, consecutive_failures)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(platform) DO UPDATE SET
                        last_fetch_timestamp = MAX(last_fetch_timestamp, excluded.last_fetch_timestamp),
                        total_processed = MAX(total_processed, excluded.total_processed),
                        last_run_status = excluded.last_run_status,
                        last_run_at = excluded.last_run_at,
                        consecutive_failures = excluded.consecutive_failures
                    """,
                    (
                        self.platform,
                        state.last_fetch_timestamp.astimezone(timezone.utc).isoformat(),
                        statistics.total_processed,
                        statistics.last_run_status.value,
                        statistics.last_run_at.isoformat() if statistics.last_run_at else None,
                        statistics.consecutive_failures,
                    ),
                )
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to save state database {self.db_path}: {e}")
            raise PersistenceError(f"Could not save state to {self.db_path}: {e}") from e

        self._unsaved = []
        logger.debug("Saved state to disk")

    def get_processed_entries(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Get archived meetings as stored on disk, newest first.

        Args:
            limit: Optional limit on number of results.

        Returns:
            List of meeting records.
        """
        query = "SELECT * FROM processed_meetings WHERE platform = ? ORDER BY processed_at DESC"
        params: List[Any] = [self.platform]

        if limit:
            query += " LIMIT ?"
            params.append(limit)

        rows = self._connect().execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Closed state database connection")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
