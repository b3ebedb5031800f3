"""Simple SQLite persistence for filter patterns, hit counters and audit.

This module provides small helper functions that open a sqlite3 database on
each call. It's intentionally simple and synchronous. Pattern lists are
stored as raw strings in insertion order; they are revalidated by the
caller when loaded.

DB_PATH can be overridden via the DB_PATH environment variable.
"""
from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone
from typing import Sequence

DEFAULT_DB = "nameban_telegram.db"


def _get_db_path() -> str:
    return os.environ.get("DB_PATH", DEFAULT_DB)


def init_db(db_path: str | None = None) -> None:
    """Create tables if they don't exist."""
    path = db_path or _get_db_path()
    with sqlite3.connect(path) as conn:
        cur = conn.cursor()
        # position keeps the admin's insertion order per group
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS patterns (
                chat_id INTEGER NOT NULL,
                position INTEGER NOT NULL,
                raw TEXT NOT NULL,
                PRIMARY KEY(chat_id, position)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS hits (
                chat_id INTEGER NOT NULL,
                pattern TEXT NOT NULL,
                count INTEGER NOT NULL,
                PRIMARY KEY(chat_id, pattern)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS audit (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                chat_id INTEGER,
                action TEXT NOT NULL,
                user_id INTEGER,
                admin_id INTEGER,
                timestamp TEXT NOT NULL,
                details TEXT
            )
            """
        )
        conn.commit()


def save_patterns(chat_id: int, patterns: Sequence[str], db_path: str | None = None) -> None:
    """Replace the stored pattern list of a group."""
    path = db_path or _get_db_path()
    cid = int(chat_id)
    with sqlite3.connect(path) as conn:
        cur = conn.cursor()
        cur.execute("DELETE FROM patterns WHERE chat_id = ?", (cid,))
        cur.executemany(
            "INSERT INTO patterns(chat_id, position, raw) VALUES(?, ?, ?)",
            [(cid, pos, raw) for pos, raw in enumerate(patterns)],
        )
        conn.commit()


def load_patterns(db_path: str | None = None) -> dict[int, list[str]]:
    """Return {chat_id: [raw, ...]} for every group, in insertion order."""
    path = db_path or _get_db_path()
    result: dict[int, list[str]] = {}
    with sqlite3.connect(path) as conn:
        cur = conn.cursor()
        cur.execute("SELECT chat_id, raw FROM patterns ORDER BY chat_id, position")
        for chat_id, raw in cur.fetchall():
            result.setdefault(int(chat_id), []).append(raw)
    return result


def record_hit(chat_id: int, pattern: str, db_path: str | None = None) -> int:
    """Increment the hit counter of a pattern in a group and return the new total."""
    path = db_path or _get_db_path()
    cid = int(chat_id)
    with sqlite3.connect(path) as conn:
        cur = conn.cursor()
        cur.execute("SELECT count FROM hits WHERE chat_id = ? AND pattern = ?", (cid, pattern))
        row = cur.fetchone()
        if row is None:
            cur.execute("INSERT INTO hits(chat_id, pattern, count) VALUES(?, ?, ?)", (cid, pattern, 1))
            total = 1
        else:
            total = row[0] + 1
            cur.execute("UPDATE hits SET count = ? WHERE chat_id = ? AND pattern = ?", (total, cid, pattern))
        conn.commit()
        return total


def get_hit_stats(chat_id: int, db_path: str | None = None) -> list[tuple[str, int]]:
    """Return [(pattern, count), ...] for a group, most hits first."""
    path = db_path or _get_db_path()
    with sqlite3.connect(path) as conn:
        cur = conn.cursor()
        cur.execute(
            "SELECT pattern, count FROM hits WHERE chat_id = ? ORDER BY count DESC, pattern",
            (int(chat_id),),
        )
        return [(pattern, int(count)) for pattern, count in cur.fetchall()]


def log_action(action: str, user_id: int | None, admin_id: int | None, details: str | None = None, chat_id: int | None = None, db_path: str | None = None) -> None:
    """Record an audit action in the audit table."""
    path = db_path or _get_db_path()
    now = datetime.now(timezone.utc).isoformat()
    cid = None if chat_id is None else int(chat_id)
    with sqlite3.connect(path) as conn:
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO audit(chat_id, action, user_id, admin_id, timestamp, details) VALUES(?, ?, ?, ?, ?, ?)",
            (cid, action, user_id, admin_id, now, details),
        )
        conn.commit()


def get_audit(chat_id: int, limit: int = 50, db_path: str | None = None):
    """Return recent audit rows for a group ordered by timestamp desc.

    Each row is (id, action, user_id, admin_id, timestamp, details).
    """
    path = db_path or _get_db_path()
    with sqlite3.connect(path) as conn:
        cur = conn.cursor()
        cur.execute(
            "SELECT id, action, user_id, admin_id, timestamp, details FROM audit WHERE chat_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?",
            (int(chat_id), limit),
        )
        return cur.fetchall()
