"""
SQLite-backed radar storage for the intake's storage endpoint.

Schema
──────
table: radars
  id          INTEGER PRIMARY KEY AUTOINCREMENT
  topic       TEXT NOT NULL
  description TEXT            (nullable)
  cadence     TEXT NOT NULL   (hourly | daily | weekly | monthly | option value)
  created_at  TEXT NOT NULL   (ISO-8601 UTC)
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from core.models import CreatedRadar, RadarDraft

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "radars.db"


def _db_path() -> Path:
    """Return the database file path, honouring a DB_PATH env var if set."""
    env = os.getenv("DB_PATH")
    return Path(env) if env else DEFAULT_DB_PATH


@contextmanager
def _connect():
    """Yield a connected sqlite3.Connection, creating the file/dir if needed."""
    path = _db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _row_to_radar(row: sqlite3.Row) -> CreatedRadar:
    return CreatedRadar(
        id=row["id"],
        topic=row["topic"],
        description=row["description"],
        cadence=row["cadence"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def init_db() -> None:
    """Create the radars table if it doesn't exist yet."""
    with _connect() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS radars (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                topic       TEXT NOT NULL,
                description TEXT,
                cadence     TEXT NOT NULL,
                created_at  TEXT NOT NULL
            )
            """
        )
    logger.info("Radar DB initialised at %s", _db_path())


def create(draft: RadarDraft) -> CreatedRadar:
    """Persist a new radar and return it with its generated ID.

    Args:
        draft: The confirmed topic, optional description and cadence.

    Raises:
        ValueError: If the topic or cadence is blank.
    """
    topic = draft.topic.strip()
    cadence = draft.cadence.strip()
    if not topic:
        raise ValueError("Radar topic must not be empty.")
    if not cadence:
        raise ValueError("Radar cadence must not be empty.")

    now = datetime.now(timezone.utc)
    description = (draft.description or "").strip() or None

    with _connect() as conn:
        cursor = conn.execute(
            "INSERT INTO radars (topic, description, cadence, created_at) "
            "VALUES (?, ?, ?, ?)",
            (topic, description, cadence, now.isoformat()),
        )
        row_id = cursor.lastrowid

    logger.info("Created radar id=%d topic=%r cadence=%s", row_id, topic, cadence)
    return CreatedRadar(
        id=row_id,
        topic=topic,
        description=description,
        cadence=cadence,
        created_at=now,
    )


def get_all(limit: int = 50) -> list[CreatedRadar]:
    """Return the most recent *limit* radars (newest first)."""
    with _connect() as conn:
        rows = conn.execute(
            "SELECT id, topic, description, cadence, created_at FROM radars "
            "ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()

    radars: list[CreatedRadar] = []
    for row in rows:
        try:
            radars.append(_row_to_radar(row))
        except Exception as exc:
            logger.warning("Skipping corrupt radar id=%d: %s", row["id"], exc)
    return radars


def get_by_id(radar_id: int) -> CreatedRadar | None:
    """Fetch a single radar by its primary key, or None if not found."""
    with _connect() as conn:
        row = conn.execute(
            "SELECT id, topic, description, cadence, created_at FROM radars WHERE id = ?",
            (radar_id,),
        ).fetchone()

    if row is None:
        return None
    return _row_to_radar(row)


def delete(radar_id: int) -> bool:
    """Delete a radar by ID.

    Returns:
        True if a row was deleted, False if not found.
    """
    with _connect() as conn:
        cursor = conn.execute("DELETE FROM radars WHERE id = ?", (radar_id,))
    deleted = cursor.rowcount > 0
    if deleted:
        logger.info("Deleted radar id=%d", radar_id)
    return deleted
