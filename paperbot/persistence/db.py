from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator


# =========================
# Time helpers
# =========================
def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# =========================
# Database class
# =========================
class DB:
    """
    Single source of truth for SQLite access.
    Default path: data/paperbot.db
    """

    def __init__(self, path: str = "data/paperbot.db"):
        self.path = path

        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)

        self._init()

    # -------------------------
    # Connection manager
    # -------------------------
    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """One transaction per block: commit on success, rollback on error."""
        conn = sqlite3.connect(self.path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # -------------------------
    # Init / migrations
    # -------------------------
    def _init(self) -> None:
        conn = sqlite3.connect(self.path, timeout=30)
        try:
            # =========================
            # Account (single row)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS account (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    active INTEGER NOT NULL,
                    started_at INTEGER,
                    balance REAL NOT NULL,
                    total_profit REAL NOT NULL,
                    history_cap INTEGER NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

            # =========================
            # Open positions (0 or 1 per symbol)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS open_positions (
                    symbol TEXT PRIMARY KEY,
                    id TEXT NOT NULL,
                    side TEXT NOT NULL,                 -- BUY/SELL
                    entry_price REAL NOT NULL,
                    amount REAL NOT NULL,
                    take_profit REAL NOT NULL,
                    stop_loss REAL NOT NULL,
                    opened_at INTEGER NOT NULL,
                    leverage INTEGER NOT NULL DEFAULT 1
                )
                """
            )

            # =========================
            # Closed trades
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trade_history (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    side TEXT NOT NULL,
                    entry_price REAL NOT NULL,
                    amount REAL NOT NULL,
                    take_profit REAL NOT NULL,
                    stop_loss REAL NOT NULL,
                    opened_at INTEGER NOT NULL,
                    leverage INTEGER NOT NULL DEFAULT 1,
                    exit_price REAL NOT NULL,
                    exit_time INTEGER NOT NULL,
                    outcome TEXT NOT NULL,              -- WIN/LOSS/CLOSED
                    pnl REAL NOT NULL,
                    fee REAL NOT NULL DEFAULT 0
                )
                """
            )

            # =========================
            # Events (audit log)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp_utc TEXT NOT NULL,
                    tick_id TEXT,
                    symbol TEXT,
                    event_type TEXT NOT NULL,
                    action TEXT,
                    details_json TEXT
                )
                """
            )

            # =========================
            # Indexes
            # =========================
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_time ON events(timestamp_utc)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_symbol ON events(symbol)"
            )

            conn.commit()

        finally:
            conn.close()
