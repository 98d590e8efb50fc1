import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from common.config import config
from common.errors import StorageError, TransientStorageError
from common.logging.logger import get_logger

logger = get_logger("database")


@contextmanager
def storage_errors(operation: str):
    """Re-raises sqlite3 failures as StorageError / TransientStorageError."""
    try:
        yield
    except sqlite3.OperationalError as e:
        message = str(e).lower()
        if "locked" in message or "busy" in message:
            raise TransientStorageError("sqlite", f"{operation}: {e}") from e
        raise StorageError("sqlite", f"{operation}: {e}") from e
    except sqlite3.DatabaseError as e:
        raise StorageError("sqlite", f"{operation}: {e}") from e


class Database:
    def __init__(self, db_path: Optional[str] = None, busy_timeout: Optional[float] = None):
        if db_path is None:
            # Convert to absolute path to avoid issues with relative paths in threads
            raw_path = config.get("database.sqlite_path")
            self.db_path = os.path.abspath(raw_path)
        elif db_path == ":memory:":
            self.db_path = ":memory:"
        else:
            self.db_path = os.path.abspath(db_path)
        self.busy_timeout = busy_timeout or config.get("database.busy_timeout_seconds")
        self._init_db()

    def get_connection(self, timeout: Optional[float] = None) -> sqlite3.Connection:
        """
        Opens a connection in autocommit mode.

        Multi-statement atomicity goes through transaction(), which issues
        BEGIN IMMEDIATE explicitly.
        """
        return sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout if timeout is None else timeout,
            isolation_level=None,
        )

    @contextmanager
    def connection(self):
        """Context manager that provides a connection with automatic commit/rollback."""
        conn = self.get_connection()
        try:
            yield conn
            if conn.in_transaction:
                conn.commit()
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self, timeout: Optional[float] = None):
        """
        Runs the block as one write transaction (BEGIN IMMEDIATE).

        The write lock is taken up front, so a contended lock surfaces as
        TransientStorageError before any statement runs. Everything inside
        the block commits together or not at all.
        """
        conn = self.get_connection(timeout=timeout)
        try:
            with storage_errors("transaction"):
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize the database schema."""
        schema = """
        -- Raters: personal calibration and reliability
        CREATE TABLE IF NOT EXISTS raters (
            rater_id TEXT PRIMARY KEY,
            rating_mean REAL NOT NULL,
            rating_std REAL NOT NULL,
            rating_sample_count INTEGER NOT NULL DEFAULT 0,
            m2 REAL NOT NULL DEFAULT 0,
            reliability_score REAL NOT NULL DEFAULT 1.0,
            reliability_sample_count INTEGER NOT NULL DEFAULT 0,
            reliability_agreements INTEGER NOT NULL DEFAULT 0,
            last_reliability_event_id INTEGER NOT NULL DEFAULT 0,
            reliability_updated_at REAL,
            created_at REAL NOT NULL
        );

        -- Append-only event streams
        CREATE TABLE IF NOT EXISTS pairwise_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            rater_id TEXT NOT NULL,
            item_a_id TEXT NOT NULL,
            item_b_id TEXT NOT NULL,
            winner_id TEXT NOT NULL,
            item_a_rating_snapshot REAL NOT NULL,
            item_b_rating_snapshot REAL NOT NULL,
            weight_class TEXT NOT NULL DEFAULT 'normal',
            created_at REAL NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_pairwise_item_a ON pairwise_events (item_a_id, id);
        CREATE INDEX IF NOT EXISTS idx_pairwise_item_b ON pairwise_events (item_b_id, id);
        CREATE INDEX IF NOT EXISTS idx_pairwise_rater ON pairwise_events (rater_id, id);
        CREATE INDEX IF NOT EXISTS idx_pairwise_created ON pairwise_events (created_at);

        CREATE TABLE IF NOT EXISTS rating_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            rater_id TEXT NOT NULL,
            item_id TEXT NOT NULL,
            raw_score REAL NOT NULL,
            rater_mean_snapshot REAL NOT NULL,
            rater_std_snapshot REAL NOT NULL,
            created_at REAL NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_rating_item ON rating_events (item_id, id);
        CREATE INDEX IF NOT EXISTS idx_rating_created ON rating_events (created_at);

        CREATE TABLE IF NOT EXISTS favorite_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            rater_id TEXT NOT NULL,
            item_id TEXT NOT NULL,
            created_at REAL NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_favorite_item ON favorite_events (item_id, id);
        CREATE INDEX IF NOT EXISTS idx_favorite_created ON favorite_events (created_at);

        -- Work queue of items needing recompute
        CREATE TABLE IF NOT EXISTS dirty_items (
            item_id TEXT PRIMARY KEY,
            priority INTEGER NOT NULL DEFAULT 0,
            first_seen_at REAL NOT NULL,
            last_event_at REAL NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_dirty_priority ON dirty_items (priority DESC, first_seen_at);

        -- Incremental running statistics per item
        CREATE TABLE IF NOT EXISTS item_stats (
            item_id TEXT PRIMARY KEY,
            rating_mean REAL NOT NULL,
            rating_uncertainty REAL NOT NULL,
            last_processed_pairwise_id INTEGER NOT NULL DEFAULT 0,
            last_processed_rating_id INTEGER NOT NULL DEFAULT 0,
            last_processed_favorite_id INTEGER NOT NULL DEFAULT 0,
            sum_weighted_rating REAL NOT NULL DEFAULT 0,
            sum_weight REAL NOT NULL DEFAULT 0,
            sum_favorite_weight REAL NOT NULL DEFAULT 0,
            sum_pairwise_weight REAL NOT NULL DEFAULT 0,
            total_pairwise INTEGER NOT NULL DEFAULT 0,
            total_ratings INTEGER NOT NULL DEFAULT 0,
            total_favorites INTEGER NOT NULL DEFAULT 0,
            updated_at REAL
        );

        -- Read-optimized published scores
        CREATE TABLE IF NOT EXISTS published_scores (
            item_id TEXT PRIMARY KEY,
            score REAL NOT NULL,
            rating_mean REAL NOT NULL,
            rating_uncertainty REAL NOT NULL,
            confidence REAL NOT NULL,
            provisional INTEGER NOT NULL DEFAULT 1,
            rating_component REAL,
            rating_signal_component REAL,
            favorite_component REAL,
            reliability_factor REAL,
            policy_version TEXT,
            revision INTEGER NOT NULL DEFAULT 1,
            updated_at REAL NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_published_rank ON published_scores (provisional, score DESC);
        """

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = self.get_connection()
            try:
                if self.db_path != ":memory:":
                    conn.execute("PRAGMA journal_mode=WAL")
                conn.executescript(schema)
            finally:
                conn.close()
            logger.info(f"Database initialized at {self.db_path}")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

db = Database()
