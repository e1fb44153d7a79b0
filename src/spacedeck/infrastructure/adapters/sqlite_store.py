"""
SQLite store: infrastructure adapter for a local database file.

Implements every persistence port on one connection. Timestamps are stored
as UTC epoch seconds; the memory state snapshot of each review is stored as
JSON next to the columns the queries filter on.
"""

import asyncio
import json
import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from spacedeck.domain.errors import NotFoundError, StorageError, ValidationError
from spacedeck.domain.ports import DeckRepository, DeckScoreRepository, ReviewLogRepository
from spacedeck.domain.scheduling.models import MemoryState, Rating, ReviewEvent
from spacedeck.domain.stats.models import DeckScore, ScoreWindow, WindowStats

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS decks (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS cards (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    deck_id TEXT NOT NULL REFERENCES decks(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_cards_deck ON cards(deck_id, seq);

CREATE TABLE IF NOT EXISTS reviews (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL,
    card_id TEXT NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    rating TEXT NOT NULL,
    reviewed_at REAL NOT NULL,
    scheduled_at REAL NOT NULL,
    interval_days INTEGER NOT NULL,
    stability REAL NOT NULL,
    difficulty REAL NOT NULL,
    state TEXT NOT NULL,
    parameters_version TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_reviews_user_card ON reviews(user_id, card_id, seq);
CREATE INDEX IF NOT EXISTS idx_reviews_user_time ON reviews(user_id, reviewed_at);

CREATE TABLE IF NOT EXISTS deck_scores (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    deck_id TEXT NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
    score_window TEXT NOT NULL,
    accuracy_pct REAL NOT NULL,
    stability_avg REAL NOT NULL,
    lapses INTEGER NOT NULL DEFAULT 0,
    updated_at REAL NOT NULL,
    UNIQUE (user_id, deck_id, score_window)
);
"""

# Latest event per (user, card): the row with the highest append sequence.
LATEST_FOR_DECK = """
    SELECT r.card_id, r.scheduled_at, c.seq AS card_seq
    FROM reviews r
    JOIN cards c ON c.id = r.card_id
    WHERE r.user_id = ? AND c.deck_id = ?
      AND r.seq = (
          SELECT MAX(r2.seq) FROM reviews r2
          WHERE r2.user_id = r.user_id AND r2.card_id = r.card_id
      )
"""


def _to_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


class SqliteStore(DeckRepository, ReviewLogRepository, DeckScoreRepository):
    """
    SQLite-backed implementation of the persistence ports.

    `update_atomically` runs inside BEGIN IMMEDIATE, so the read-modify-write
    of a score row holds the database write lock for its whole duration.
    """

    def __init__(self, database_path: Path | str):
        self.database_path = database_path
        try:
            if str(database_path) != ":memory:":
                Path(database_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(database_path), isolation_level=None, check_same_thread=False
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as e:
            logger.critical(f"Failed to open database {database_path}: {e}")
            raise StorageError(f"Cannot open database {database_path}: {e}") from e
        self._lock = asyncio.Lock()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Query failed: {e}")
            raise StorageError(f"Database read failed: {e}") from e

    def _write(self, sql: str, params: tuple = ()) -> None:
        try:
            self._conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            raise StorageError(f"Constraint violated: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Write failed: {e}")
            raise StorageError(f"Database write failed: {e}") from e

    # ------------------------------------------------------------------
    # Catalogue seeding
    # ------------------------------------------------------------------

    async def add_deck(self, deck_id: str, owner_id: str) -> None:
        existing = await self.deck_owner(deck_id)
        if existing is not None and existing != owner_id:
            raise ValidationError(f"Deck already exists: {deck_id}", field="deck_id")
        self._write(
            "INSERT INTO decks (id, owner_id) VALUES (?, ?) ON CONFLICT(id) DO NOTHING",
            (deck_id, owner_id),
        )

    async def add_card(self, deck_id: str, card_id: str) -> None:
        if await self.deck_owner(deck_id) is None:
            raise NotFoundError(f"Deck not found: {deck_id}")
        if await self.card_deck(card_id) is not None:
            raise ValidationError(f"Card already exists: {card_id}", field="card_id")
        self._write("INSERT INTO cards (id, deck_id) VALUES (?, ?)", (card_id, deck_id))

    async def delete_card(self, card_id: str) -> None:
        """Remove a card; its review events cascade."""
        self._write("DELETE FROM cards WHERE id = ?", (card_id,))

    # ------------------------------------------------------------------
    # DeckRepository
    # ------------------------------------------------------------------

    async def deck_owner(self, deck_id: str) -> str | None:
        rows = self._query("SELECT owner_id FROM decks WHERE id = ?", (deck_id,))
        return rows[0]["owner_id"] if rows else None

    async def card_deck(self, card_id: str) -> str | None:
        rows = self._query("SELECT deck_id FROM cards WHERE id = ?", (card_id,))
        return rows[0]["deck_id"] if rows else None

    async def list_card_ids(self, deck_id: str) -> list[str]:
        rows = self._query("SELECT id FROM cards WHERE deck_id = ? ORDER BY seq", (deck_id,))
        return [row["id"] for row in rows]

    # ------------------------------------------------------------------
    # ReviewLogRepository
    # ------------------------------------------------------------------

    def _row_to_event(self, row: sqlite3.Row) -> ReviewEvent:
        try:
            memory = MemoryState.from_dict(json.loads(row["state"]))
        except (KeyError, TypeError, ValueError) as e:
            # A snapshot that cannot be parsed is a data-integrity bug, not a miss.
            raise StorageError(f"Corrupt memory state in review {row['id']}: {e}") from e
        return ReviewEvent(
            id=row["id"],
            user_id=row["user_id"],
            card_id=row["card_id"],
            rating=Rating.parse(row["rating"]),
            reviewed_at=_from_epoch(row["reviewed_at"]),
            memory=memory,
            parameters_version=row["parameters_version"],
        )

    async def latest_event(self, user_id: str, card_id: str) -> ReviewEvent | None:
        rows = self._query(
            "SELECT * FROM reviews WHERE user_id = ? AND card_id = ? ORDER BY seq DESC LIMIT 1",
            (user_id, card_id),
        )
        return self._row_to_event(rows[0]) if rows else None

    async def append(self, event: ReviewEvent) -> None:
        self._write(
            """
            INSERT INTO reviews (
                id, user_id, card_id, rating, reviewed_at, scheduled_at,
                interval_days, stability, difficulty, state, parameters_version
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.id,
                event.user_id,
                event.card_id,
                event.rating.label,
                _to_epoch(event.reviewed_at),
                _to_epoch(event.scheduled_at),
                event.interval_days,
                event.stability,
                event.difficulty,
                json.dumps(event.memory.to_dict()),
                event.parameters_version,
            ),
        )

    async def due_card_ids(
        self, user_id: str, deck_id: str, now: datetime, limit: int
    ) -> list[str]:
        rows = self._query(
            LATEST_FOR_DECK + " AND r.scheduled_at <= ? ORDER BY r.scheduled_at, card_seq LIMIT ?",
            (user_id, deck_id, _to_epoch(now), limit),
        )
        return [row["card_id"] for row in rows]

    async def unreviewed_card_ids(self, user_id: str, deck_id: str, limit: int) -> list[str]:
        rows = self._query(
            """
            SELECT c.id FROM cards c
            WHERE c.deck_id = ?
              AND NOT EXISTS (
                  SELECT 1 FROM reviews r WHERE r.card_id = c.id AND r.user_id = ?
              )
            ORDER BY c.seq
            LIMIT ?
            """,
            (deck_id, user_id, limit),
        )
        return [row["id"] for row in rows]

    async def count_reviews_since(self, user_id: str, deck_id: str, since: datetime) -> int:
        rows = self._query(
            """
            SELECT COUNT(*) AS n FROM reviews r
            JOIN cards c ON c.id = r.card_id
            WHERE r.user_id = ? AND c.deck_id = ? AND r.reviewed_at >= ?
            """,
            (user_id, deck_id, _to_epoch(since)),
        )
        return int(rows[0]["n"])

    async def recent_ratings(self, user_id: str, deck_id: str, limit: int) -> list[Rating]:
        rows = self._query(
            """
            SELECT r.rating FROM reviews r
            JOIN cards c ON c.id = r.card_id
            WHERE r.user_id = ? AND c.deck_id = ?
            ORDER BY r.seq DESC
            LIMIT ?
            """,
            (user_id, deck_id, limit),
        )
        return [Rating.parse(row["rating"]) for row in rows]

    async def window_stats(self, user_id: str, deck_id: str, since: datetime) -> WindowStats:
        rows = self._query(
            """
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN r.rating IN ('good', 'easy') THEN 1 ELSE 0 END) AS correct,
                AVG(r.stability) AS avg_stability,
                SUM(CASE WHEN r.rating = 'again' THEN 1 ELSE 0 END) AS lapses
            FROM reviews r
            JOIN cards c ON c.id = r.card_id
            WHERE r.user_id = ? AND c.deck_id = ? AND r.reviewed_at >= ?
            """,
            (user_id, deck_id, _to_epoch(since)),
        )
        row = rows[0]
        return WindowStats(
            total_reviews=int(row["total"] or 0),
            correct_reviews=int(row["correct"] or 0),
            avg_stability=float(row["avg_stability"] or 0.0),
            lapses=int(row["lapses"] or 0),
        )

    # ------------------------------------------------------------------
    # DeckScoreRepository
    # ------------------------------------------------------------------

    def _row_to_score(self, row: sqlite3.Row) -> DeckScore:
        return DeckScore(
            id=row["id"],
            user_id=row["user_id"],
            deck_id=row["deck_id"],
            window=ScoreWindow(row["score_window"]),
            accuracy_pct=row["accuracy_pct"],
            stability_avg=row["stability_avg"],
            lapses=row["lapses"],
            updated_at=_from_epoch(row["updated_at"]),
        )

    def _select_score(self, user_id: str, deck_id: str, window: ScoreWindow) -> DeckScore | None:
        rows = self._query(
            "SELECT * FROM deck_scores WHERE user_id = ? AND deck_id = ? AND score_window = ?",
            (user_id, deck_id, window.value),
        )
        return self._row_to_score(rows[0]) if rows else None

    def _upsert_score(self, score: DeckScore) -> None:
        self._write(
            """
            INSERT INTO deck_scores (
                id, user_id, deck_id, score_window, accuracy_pct, stability_avg, lapses, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, deck_id, score_window) DO UPDATE SET
                accuracy_pct = excluded.accuracy_pct,
                stability_avg = excluded.stability_avg,
                lapses = excluded.lapses,
                updated_at = excluded.updated_at
            """,
            (
                score.id,
                score.user_id,
                score.deck_id,
                score.window.value,
                score.accuracy_pct,
                score.stability_avg,
                score.lapses,
                _to_epoch(score.updated_at),
            ),
        )

    async def get(self, user_id: str, deck_id: str, window: ScoreWindow) -> DeckScore | None:
        return self._select_score(user_id, deck_id, window)

    async def list_for_deck(self, user_id: str, deck_id: str) -> list[DeckScore]:
        rows = self._query(
            "SELECT * FROM deck_scores WHERE user_id = ? AND deck_id = ?",
            (user_id, deck_id),
        )
        scores = [self._row_to_score(row) for row in rows]
        return sorted(scores, key=lambda s: s.window.days)

    async def update_atomically(
        self,
        user_id: str,
        deck_id: str,
        window: ScoreWindow,
        update: Callable[[DeckScore | None], DeckScore],
    ) -> DeckScore:
        async with self._lock:
            self._write("BEGIN IMMEDIATE")
            try:
                score = update(self._select_score(user_id, deck_id, window))
                self._upsert_score(score)
                self._write("COMMIT")
            except Exception:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise
        return score

    async def upsert(self, score: DeckScore) -> None:
        async with self._lock:
            self._upsert_score(score)
