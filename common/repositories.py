"""
Repository layer for the ranking engine.

Each repository class accepts an optional Database instance,
defaulting to the module-level singleton when not provided.
Thread-safe: each method opens its own connection unless a caller passes
one in, in which case the statement joins the caller's transaction.
"""

import sqlite3
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple, Iterable

from common.database import db as _default_db
from common.errors import DataIntegrityError
from common.models import (
    Rater,
    PairwiseEvent,
    RatingEvent,
    FavoriteEvent,
    DirtyMarker,
    ItemStats,
    PublishedScore,
    LeaderboardEntry,
    RATER_COLUMNS,
    PAIRWISE_COLUMNS,
    RATING_COLUMNS,
    FAVORITE_COLUMNS,
    DIRTY_COLUMNS,
    ITEM_STATS_COLUMNS,
    PUBLISHED_COLUMNS,
)


@contextmanager
def _write_conn(database, conn=None):
    """Yields *conn* as-is, or runs the block in a fresh write transaction."""
    if conn is not None:
        yield conn
        return
    with database.transaction() as owned:
        yield owned


class EventRepository:
    """Append-only access to the three event streams."""

    def __init__(self, database=None):
        self._db = database or _default_db

    # ---- writes ----

    def insert_pairwise(
        self,
        rater_id: str,
        item_a_id: str,
        item_b_id: str,
        winner_id: str,
        item_a_rating_snapshot: float,
        item_b_rating_snapshot: float,
        weight_class: str,
        created_at: float,
        conn=None,
    ) -> int:
        with _write_conn(self._db, conn) as c:
            cursor = c.execute("""
                INSERT INTO pairwise_events
                (rater_id, item_a_id, item_b_id, winner_id,
                 item_a_rating_snapshot, item_b_rating_snapshot, weight_class, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                rater_id, item_a_id, item_b_id, winner_id,
                item_a_rating_snapshot, item_b_rating_snapshot, weight_class, created_at,
            ))
            return cursor.lastrowid

    def insert_rating(
        self,
        rater_id: str,
        item_id: str,
        raw_score: float,
        rater_mean_snapshot: float,
        rater_std_snapshot: float,
        created_at: float,
        conn=None,
    ) -> int:
        with _write_conn(self._db, conn) as c:
            cursor = c.execute("""
                INSERT INTO rating_events
                (rater_id, item_id, raw_score, rater_mean_snapshot, rater_std_snapshot, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (rater_id, item_id, raw_score, rater_mean_snapshot, rater_std_snapshot, created_at))
            return cursor.lastrowid

    def insert_favorite(self, rater_id: str, item_id: str, created_at: float, conn=None) -> int:
        with _write_conn(self._db, conn) as c:
            cursor = c.execute(
                "INSERT INTO favorite_events (rater_id, item_id, created_at) VALUES (?, ?, ?)",
                (rater_id, item_id, created_at),
            )
            return cursor.lastrowid

    # ---- reads ----

    def pairwise_for_item(self, item_id: str, after_id: int = 0) -> List[PairwiseEvent]:
        """Pairwise events where *item_id* is either side, id ascending."""
        conn = self._db.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT {PAIRWISE_COLUMNS} FROM pairwise_events
                WHERE item_a_id = ? AND id > ?
                UNION
                SELECT {PAIRWISE_COLUMNS} FROM pairwise_events
                WHERE item_b_id = ? AND id > ?
                ORDER BY id ASC
            """, (item_id, after_id, item_id, after_id))
            return [PairwiseEvent.from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def ratings_for_item(self, item_id: str, after_id: int = 0) -> List[RatingEvent]:
        conn = self._db.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT {RATING_COLUMNS} FROM rating_events
                WHERE item_id = ? AND id > ?
                ORDER BY id ASC
            """, (item_id, after_id))
            return [RatingEvent.from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def favorites_for_item(self, item_id: str, after_id: int = 0) -> List[FavoriteEvent]:
        conn = self._db.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT {FAVORITE_COLUMNS} FROM favorite_events
                WHERE item_id = ? AND id > ?
                ORDER BY id ASC
            """, (item_id, after_id))
            return [FavoriteEvent.from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def pairwise_for_rater(
        self, rater_id: str, after_id: int = 0, limit: int = 1000
    ) -> List[PairwiseEvent]:
        conn = self._db.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT {PAIRWISE_COLUMNS} FROM pairwise_events
                WHERE rater_id = ? AND id > ?
                ORDER BY id ASC
                LIMIT ?
            """, (rater_id, after_id, limit))
            return [PairwiseEvent.from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_counts(self) -> Dict[str, int]:
        conn = self._db.get_connection()
        try:
            cursor = conn.cursor()
            counts = {}
            for stream, table in (
                ('pairwise', 'pairwise_events'),
                ('rating', 'rating_events'),
                ('favorite', 'favorite_events'),
            ):
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                counts[stream] = cursor.fetchone()[0]
            return counts
        finally:
            conn.close()

    # ---- retention ----

    def purge_folded(self, cutoff: float, conn=None) -> Dict[str, int]:
        """
        Deletes events older than *cutoff* that every consumer has already folded.

        A rating or favorite event is folded once its item's checkpoint has
        passed it; a pairwise event additionally needs both sides' checkpoints
        and the rater's reliability checkpoint.
        """
        with _write_conn(self._db, conn) as c:
            pairwise = c.execute("""
                DELETE FROM pairwise_events
                WHERE created_at < ?
                AND id <= COALESCE((SELECT s.last_processed_pairwise_id FROM item_stats s
                                    WHERE s.item_id = pairwise_events.item_a_id), 0)
                AND id <= COALESCE((SELECT s.last_processed_pairwise_id FROM item_stats s
                                    WHERE s.item_id = pairwise_events.item_b_id), 0)
                AND id <= COALESCE((SELECT r.last_reliability_event_id FROM raters r
                                    WHERE r.rater_id = pairwise_events.rater_id), 0)
            """, (cutoff,)).rowcount
            ratings = c.execute("""
                DELETE FROM rating_events
                WHERE created_at < ?
                AND id <= COALESCE((SELECT s.last_processed_rating_id FROM item_stats s
                                    WHERE s.item_id = rating_events.item_id), 0)
            """, (cutoff,)).rowcount
            favorites = c.execute("""
                DELETE FROM favorite_events
                WHERE created_at < ?
                AND id <= COALESCE((SELECT s.last_processed_favorite_id FROM item_stats s
                                    WHERE s.item_id = favorite_events.item_id), 0)
            """, (cutoff,)).rowcount
            return {'pairwise': pairwise, 'rating': ratings, 'favorite': favorites}


class RaterRepository:
    """Per-rater calibration and reliability rows."""

    def __init__(self, database=None):
        self._db = database or _default_db

    def get(self, rater_id: str, conn=None) -> Optional[Rater]:
        owns_conn = conn is None
        if owns_conn:
            conn = self._db.get_connection()
        try:
            row = conn.execute(
                f"SELECT {RATER_COLUMNS} FROM raters WHERE rater_id = ?", (rater_id,)
            ).fetchone()
            return Rater.from_row(row) if row else None
        finally:
            if owns_conn:
                conn.close()

    def get_many(self, rater_ids: Iterable[str]) -> Dict[str, Rater]:
        ids = sorted(set(rater_ids))
        if not ids:
            return {}
        conn = self._db.get_connection()
        try:
            placeholders = ", ".join("?" for _ in ids)
            cursor = conn.execute(
                f"SELECT {RATER_COLUMNS} FROM raters WHERE rater_id IN ({placeholders})", ids
            )
            return {row[0]: Rater.from_row(row) for row in cursor.fetchall()}
        finally:
            conn.close()

    def ensure(self, rater_id: str, policy, created_at: float, conn=None) -> Rater:
        """Returns the rater row, inserting the neutral defaults on first sight."""
        with _write_conn(self._db, conn) as c:
            c.execute("""
                INSERT OR IGNORE INTO raters
                (rater_id, rating_mean, rating_std, rating_sample_count, m2,
                 reliability_score, reliability_sample_count, reliability_agreements,
                 last_reliability_event_id, reliability_updated_at, created_at)
                VALUES (?, ?, ?, 0, 0, ?, 0, 0, 0, NULL, ?)
            """, (
                rater_id, policy.rater_default_mean, policy.rater_default_std,
                policy.reliability_neutral, created_at,
            ))
            return self.get(rater_id, conn=c)

    def update_calibration(
        self, rater_id: str, mean: float, std: float, count: int, m2: float, conn=None
    ) -> None:
        with _write_conn(self._db, conn) as c:
            c.execute("""
                UPDATE raters
                SET rating_mean = ?, rating_std = ?, rating_sample_count = ?, m2 = ?
                WHERE rater_id = ?
            """, (mean, std, count, m2, rater_id))

    def update_reliability(
        self,
        rater_id: str,
        reliability_score: float,
        sample_count: int,
        agreements: int,
        last_event_id: int,
        updated_at: float,
        expected_last_event_id: Optional[int] = None,
        conn=None,
    ) -> bool:
        """
        Stores a reliability step. With *expected_last_event_id* the update only
        applies if no other recalibration advanced the rater in the meantime.
        """
        query = """
            UPDATE raters
            SET reliability_score = ?, reliability_sample_count = ?,
                reliability_agreements = ?, last_reliability_event_id = ?,
                reliability_updated_at = ?
            WHERE rater_id = ?
        """
        params: list = [
            reliability_score, sample_count, agreements, last_event_id, updated_at, rater_id,
        ]
        if expected_last_event_id is not None:
            query += " AND last_reliability_event_id = ?"
            params.append(expected_last_event_id)
        with _write_conn(self._db, conn) as c:
            return c.execute(query, params).rowcount == 1

    def ids_with_pending_pairwise(self) -> List[str]:
        """Raters with pairwise events past their reliability checkpoint."""
        conn = self._db.get_connection()
        try:
            cursor = conn.execute("""
                SELECT r.rater_id FROM raters r
                WHERE EXISTS (
                    SELECT 1 FROM pairwise_events p
                    WHERE p.rater_id = r.rater_id AND p.id > r.last_reliability_event_id
                )
                ORDER BY r.rater_id
            """)
            return [row[0] for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_count(self) -> int:
        conn = self._db.get_connection()
        try:
            return conn.execute("SELECT COUNT(*) FROM raters").fetchone()[0]
        finally:
            conn.close()


class DirtyQueueRepository:
    """Deduplicating queue of items awaiting recompute."""

    def __init__(self, database=None):
        self._db = database or _default_db

    def mark_dirty(self, item_id: str, priority: int, at: float, conn=None) -> None:
        """Creates the marker or raises its priority; never duplicates it."""
        with _write_conn(self._db, conn) as c:
            c.execute("""
                INSERT INTO dirty_items (item_id, priority, first_seen_at, last_event_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(item_id) DO UPDATE SET
                    priority = MAX(dirty_items.priority, excluded.priority),
                    last_event_at = MAX(dirty_items.last_event_at, excluded.last_event_at)
            """, (item_id, priority, at, at))

    def requeue(self, marker: DirtyMarker, conn=None) -> None:
        """Puts a claimed marker back, keeping the oldest first-seen and highest priority."""
        with _write_conn(self._db, conn) as c:
            c.execute("""
                INSERT INTO dirty_items (item_id, priority, first_seen_at, last_event_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(item_id) DO UPDATE SET
                    priority = MAX(dirty_items.priority, excluded.priority),
                    first_seen_at = MIN(dirty_items.first_seen_at, excluded.first_seen_at),
                    last_event_at = MAX(dirty_items.last_event_at, excluded.last_event_at)
            """, (marker.item_id, marker.priority, marker.first_seen_at, marker.last_event_at))

    def take(self, batch_size: int, conn) -> List[DirtyMarker]:
        """
        Selects and deletes up to *batch_size* markers inside the caller's
        transaction, highest priority first, oldest first within a tier.
        """
        cursor = conn.execute(f"""
            SELECT {DIRTY_COLUMNS} FROM dirty_items
            ORDER BY priority DESC, first_seen_at ASC, item_id ASC
            LIMIT ?
        """, (batch_size,))
        markers = [DirtyMarker.from_row(row) for row in cursor.fetchall()]
        conn.executemany(
            "DELETE FROM dirty_items WHERE item_id = ?",
            [(m.item_id,) for m in markers],
        )
        return markers

    def get(self, item_id: str) -> Optional[DirtyMarker]:
        conn = self._db.get_connection()
        try:
            row = conn.execute(
                f"SELECT {DIRTY_COLUMNS} FROM dirty_items WHERE item_id = ?", (item_id,)
            ).fetchone()
            return DirtyMarker.from_row(row) if row else None
        finally:
            conn.close()

    def count(self) -> int:
        conn = self._db.get_connection()
        try:
            return conn.execute("SELECT COUNT(*) FROM dirty_items").fetchone()[0]
        finally:
            conn.close()

    def oldest_first_seen(self) -> Optional[float]:
        conn = self._db.get_connection()
        try:
            return conn.execute("SELECT MIN(first_seen_at) FROM dirty_items").fetchone()[0]
        finally:
            conn.close()

    def high_priority_count(self, min_priority: int) -> int:
        conn = self._db.get_connection()
        try:
            return conn.execute(
                "SELECT COUNT(*) FROM dirty_items WHERE priority >= ?", (min_priority,)
            ).fetchone()[0]
        finally:
            conn.close()


class ItemStatsRepository:
    """Running statistics rows, written only through a checkpoint-guarded save."""

    def __init__(self, database=None):
        self._db = database or _default_db

    def get(self, item_id: str, conn=None) -> Optional[ItemStats]:
        owns_conn = conn is None
        if owns_conn:
            conn = self._db.get_connection()
        try:
            row = conn.execute(
                f"SELECT {ITEM_STATS_COLUMNS} FROM item_stats WHERE item_id = ?", (item_id,)
            ).fetchone()
            return ItemStats.from_row(row) if row else None
        finally:
            if owns_conn:
                conn.close()

    def get_many(self, item_ids: Iterable[str]) -> Dict[str, ItemStats]:
        ids = sorted(set(item_ids))
        if not ids:
            return {}
        conn = self._db.get_connection()
        try:
            placeholders = ", ".join("?" for _ in ids)
            cursor = conn.execute(
                f"SELECT {ITEM_STATS_COLUMNS} FROM item_stats WHERE item_id IN ({placeholders})",
                ids,
            )
            return {row[0]: ItemStats.from_row(row) for row in cursor.fetchall()}
        finally:
            conn.close()

    def save(
        self,
        stats: ItemStats,
        expected_checkpoints: Optional[Tuple[int, int, int]],
        conn,
    ) -> None:
        """
        Writes *stats* inside the caller's transaction.

        *expected_checkpoints* are the checkpoints the update was computed
        from (None for an item with no row yet). If the stored row no longer
        matches them another writer got there first and DataIntegrityError
        is raised so the caller's transaction rolls back.
        """
        if expected_checkpoints is None:
            try:
                conn.execute(f"""
                    INSERT INTO item_stats ({ITEM_STATS_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    stats.item_id, stats.rating_mean, stats.rating_uncertainty,
                    stats.last_processed_pairwise_id, stats.last_processed_rating_id,
                    stats.last_processed_favorite_id, stats.sum_weighted_rating,
                    stats.sum_weight, stats.sum_favorite_weight, stats.sum_pairwise_weight,
                    stats.total_pairwise, stats.total_ratings, stats.total_favorites,
                    stats.updated_at,
                ))
            except sqlite3.IntegrityError as e:
                raise DataIntegrityError(stats.item_id, "stats row created concurrently") from e
            return

        cursor = conn.execute("""
            UPDATE item_stats
            SET rating_mean = ?, rating_uncertainty = ?,
                last_processed_pairwise_id = ?, last_processed_rating_id = ?,
                last_processed_favorite_id = ?, sum_weighted_rating = ?,
                sum_weight = ?, sum_favorite_weight = ?, sum_pairwise_weight = ?,
                total_pairwise = ?, total_ratings = ?, total_favorites = ?,
                updated_at = ?
            WHERE item_id = ?
            AND last_processed_pairwise_id = ?
            AND last_processed_rating_id = ?
            AND last_processed_favorite_id = ?
        """, (
            stats.rating_mean, stats.rating_uncertainty,
            stats.last_processed_pairwise_id, stats.last_processed_rating_id,
            stats.last_processed_favorite_id, stats.sum_weighted_rating,
            stats.sum_weight, stats.sum_favorite_weight, stats.sum_pairwise_weight,
            stats.total_pairwise, stats.total_ratings, stats.total_favorites,
            stats.updated_at, stats.item_id,
            *expected_checkpoints,
        ))
        if cursor.rowcount != 1:
            raise DataIntegrityError(stats.item_id, "checkpoints changed since read")

    def get_count(self) -> int:
        conn = self._db.get_connection()
        try:
            return conn.execute("SELECT COUNT(*) FROM item_stats").fetchone()[0]
        finally:
            conn.close()


class PublishedScoreRepository:
    """Read-optimized published scores and the public leaderboard."""

    def __init__(self, database=None):
        self._db = database or _default_db

    def get(self, item_id: str, conn=None) -> Optional[PublishedScore]:
        """Internal view of one item, provisional rows included."""
        owns_conn = conn is None
        if owns_conn:
            conn = self._db.get_connection()
        try:
            row = conn.execute(
                f"SELECT {PUBLISHED_COLUMNS} FROM published_scores WHERE item_id = ?",
                (item_id,),
            ).fetchone()
            return PublishedScore.from_row(row) if row else None
        finally:
            if owns_conn:
                conn.close()

    def upsert(self, score: PublishedScore, conn=None) -> None:
        with _write_conn(self._db, conn) as c:
            c.execute("""
                INSERT INTO published_scores
                (item_id, score, rating_mean, rating_uncertainty, confidence, provisional,
                 rating_component, rating_signal_component, favorite_component,
                 reliability_factor, policy_version, revision, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?)
                ON CONFLICT(item_id) DO UPDATE SET
                    score = excluded.score,
                    rating_mean = excluded.rating_mean,
                    rating_uncertainty = excluded.rating_uncertainty,
                    confidence = excluded.confidence,
                    provisional = excluded.provisional,
                    rating_component = excluded.rating_component,
                    rating_signal_component = excluded.rating_signal_component,
                    favorite_component = excluded.favorite_component,
                    reliability_factor = excluded.reliability_factor,
                    policy_version = excluded.policy_version,
                    revision = published_scores.revision + 1,
                    updated_at = excluded.updated_at
            """, (
                score.item_id, score.score, score.rating_mean, score.rating_uncertainty,
                score.confidence, int(score.provisional), score.rating_component,
                score.rating_signal_component, score.favorite_component,
                score.reliability_factor, score.policy_version, score.updated_at,
            ))

    def leaderboard(self, limit: int = 50, offset: int = 0) -> List[LeaderboardEntry]:
        """Non-provisional items, highest score first."""
        conn = self._db.get_connection()
        try:
            cursor = conn.execute(f"""
                SELECT {PUBLISHED_COLUMNS} FROM published_scores
                WHERE provisional = 0
                ORDER BY score DESC, item_id ASC
                LIMIT ? OFFSET ?
            """, (limit, offset))
            entries = []
            for row in cursor.fetchall():
                published = PublishedScore.from_row(row)
                entries.append(LeaderboardEntry(
                    item_id=published.item_id,
                    score=published.score,
                    confidence=published.confidence,
                    breakdown=published.breakdown,
                ))
            return entries
        finally:
            conn.close()


class MetricsRepository:
    """Aggregate queries behind monitor/health.py."""

    def __init__(self, database=None):
        self._db = database or _default_db

    def get_queue_snapshot(self, min_high_priority: int) -> Tuple[int, int, Optional[float], Optional[float]]:
        """Returns (dirty_count, high_priority_count, min_first_seen, avg_first_seen)."""
        conn = self._db.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT COUNT(*),
                       COUNT(CASE WHEN priority >= ? THEN 1 END),
                       MIN(first_seen_at),
                       AVG(first_seen_at)
                FROM dirty_items
            """, (min_high_priority,))
            return cursor.fetchone()
        finally:
            conn.close()

    def get_publication_counts(self) -> Tuple[int, int, int]:
        """Returns (tracked_items, published_count, provisional_count)."""
        conn = self._db.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM item_stats")
            tracked = cursor.fetchone()[0]
            cursor.execute("""
                SELECT
                    COUNT(CASE WHEN provisional = 0 THEN 1 END),
                    COUNT(CASE WHEN provisional = 1 THEN 1 END)
                FROM published_scores
            """)
            published, provisional = cursor.fetchone()
            return tracked, published, provisional
        finally:
            conn.close()
