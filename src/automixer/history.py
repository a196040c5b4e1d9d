"""
SQLite transition history for automixer.

Records every generated transition with its decision policy, feature
vector and track names, plus an optional listener rating, so that
decision trees can later be evaluated or refit from real mixes.
"""

import json
import sqlite3
import logging
from pathlib import Path
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone

from .types import Transition

logger = logging.getLogger(__name__)


class TransitionLog:
    """SQLite log of generated transitions."""

    SCHEMA_VERSION = 1

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS transitions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        mix_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        type TEXT NOT NULL,
        duration REAL NOT NULL,
        decision TEXT,
        features TEXT,
        names TEXT,
        rating INTEGER,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_transitions_mix_id ON transitions(mix_id);
    CREATE INDEX IF NOT EXISTS idx_transitions_type ON transitions(type);
    """

    def __init__(self, db_path: str = "data/db/transitions.sqlite"):
        """
        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn: Optional[sqlite3.Connection] = None

    def connect(self) -> None:
        """Open database connection and initialize schema."""
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        logger.info(f"Connected to transition log: {self.db_path}")
        self._initialize_schema()

    def disconnect(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Transition log disconnected")

    def _initialize_schema(self) -> None:
        assert self.conn is not None
        cursor = self.conn.cursor()
        cursor.executescript(self.SCHEMA)
        cursor.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1")
        row = cursor.fetchone()
        if row is None:
            cursor.execute(
                "INSERT INTO schema_version (version, updated_at) VALUES (?, ?)",
                (self.SCHEMA_VERSION, datetime.now(timezone.utc).isoformat()),
            )
            self.conn.commit()
            logger.info(f"✅ Transition log schema initialized (v{self.SCHEMA_VERSION})")
        elif row[0] < self.SCHEMA_VERSION:
            logger.warning(
                f"Schema version mismatch: {row[0]} < {self.SCHEMA_VERSION}. "
                f"Consider running migration."
            )

    def record(self, mix_id: str, transition: Transition) -> int:
        """
        Store a transition.

        Returns:
            Row ID of the stored transition
        """
        assert self.conn is not None, "Transition log not connected"
        data = transition.to_dict()
        cursor = self.conn.execute(
            """
            INSERT INTO transitions (mix_id, position, type, duration, decision, features, names, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                mix_id,
                data["index"],
                data["type"],
                data["duration"],
                data["decision"],
                json.dumps(data["features"]) if data["features"] is not None else None,
                json.dumps(data["names"]) if data["names"] is not None else None,
                data["date"],
            ),
        )
        self.conn.commit()
        logger.debug(f"Recorded {data['type']} transition #{data['index']} of {mix_id}")
        return cursor.lastrowid

    def rate(self, transition_id: int, rating: int) -> bool:
        """Attach a listener rating; returns False if the transition does not exist."""
        assert self.conn is not None, "Transition log not connected"
        cursor = self.conn.execute(
            "UPDATE transitions SET rating = ? WHERE id = ?", (rating, transition_id)
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def list_transitions(self, mix_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent transitions first, optionally restricted to one mix."""
        assert self.conn is not None, "Transition log not connected"
        query = "SELECT * FROM transitions"
        params: tuple = ()
        if mix_id is not None:
            query += " WHERE mix_id = ?"
            params = (mix_id,)
        query += " ORDER BY id DESC LIMIT ?"
        rows = self.conn.execute(query, params + (limit,)).fetchall()
        return [self._row_to_dict(row) for row in rows]

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        result = dict(row)
        for column in ("features", "names"):
            if result[column] is not None:
                result[column] = json.loads(result[column])
        return result
