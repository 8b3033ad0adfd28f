# paperbot/persistence/audit.py
from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from paperbot.ops.context import get_tick_id
from paperbot.persistence.db import DB, utc_now_iso

log = logging.getLogger("paperbot.audit")


class Audit:
    """
    DB audit is the source of truth.
    Additionally mirrors events to a JSONL file for tailing.
    Audit failures are logged and never reach the engine.
    """

    def __init__(self, db: DB, jsonl_path: str | None = "logs/paperbot_audit.jsonl"):
        self.db = db
        self.jsonl_path = Path(jsonl_path) if jsonl_path else None

        if self.jsonl_path is not None:
            try:
                self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
                self.jsonl_path.touch(exist_ok=True)
            except OSError as e:
                log.warning("audit jsonl unavailable (%s): %s", self.jsonl_path, e)
                self.jsonl_path = None

    def event(
        self,
        event_type: str,
        symbol: Optional[str] = None,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        tick_id = get_tick_id()
        ts = utc_now_iso()
        payload = json.dumps(details or {}, ensure_ascii=False, default=str)

        # 1) DB (source of truth)
        try:
            with self.db.connect() as conn:
                conn.execute(
                    """
                    INSERT INTO events(timestamp_utc, tick_id, symbol, event_type, action, details_json)
                    VALUES (?,?,?,?,?,?)
                    """,
                    (ts, tick_id, symbol, event_type, action, payload),
                )
        except sqlite3.Error as e:
            log.error("audit db write failed (%s/%s): %s", event_type, action, e)

        # 2) JSONL mirror
        self._write_jsonl(
            {
                "timestamp_utc": ts,
                "event_type": event_type,
                "tick_id": tick_id,
                "symbol": symbol,
                "action": action,
                "details": details or {},
            }
        )

    def tail(self, limit: int = 50) -> List[Dict[str, Any]]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM events ORDER BY id DESC LIMIT ?", (int(limit),)
            ).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            d["details"] = json.loads(d.pop("details_json") or "{}")
            out.append(d)
        return out

    def _write_jsonl(self, obj: Dict[str, Any]) -> None:
        if self.jsonl_path is None:
            return
        try:
            with self.jsonl_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            log.error("audit jsonl write failed: %s", e)
