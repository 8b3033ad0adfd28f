# paperbot/persistence/account_store.py

from __future__ import annotations

from typing import Dict, List, Optional

from paperbot.account.models import AccountState, Position, TradeRecord
from paperbot.persistence.db import DB, utc_now_iso

_POSITION_COLS = (
    "id",
    "symbol",
    "side",
    "entry_price",
    "amount",
    "take_profit",
    "stop_loss",
    "opened_at",
    "leverage",
)


class AccountStore:
    def __init__(self, db: DB, history_cap: int = 50):
        self.db = db
        self.history_cap = int(history_cap)

    # ---------- ACCOUNT ----------
    def load_account_state(self) -> Optional[AccountState]:
        """
        Returns the saved account, or None on a fresh database.
        """
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT active, started_at, balance, total_profit, history_cap FROM account WHERE id = 1"
            ).fetchone()
            if not row:
                return None
            pos_rows = conn.execute(
                f"SELECT {', '.join(_POSITION_COLS)} FROM open_positions ORDER BY opened_at, symbol"
            ).fetchall()

        positions: Dict[str, Position] = {}
        for r in pos_rows:
            p = Position.from_dict(dict(r))
            positions[p.symbol] = p

        cap = int(row["history_cap"] or self.history_cap)
        return AccountState(
            active=bool(row["active"]),
            started_at=row["started_at"],
            balance=float(row["balance"]),
            total_profit=float(row["total_profit"]),
            open_positions=positions,
            history=self.load_history(cap),
            history_cap=cap,
        )

    def save_account_state(self, state: AccountState) -> None:
        """
        Account row and open positions are rewritten in one transaction,
        so readers never see a balance without its matching positions.
        """
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO account(id, active, started_at, balance, total_profit, history_cap, updated_at)
                VALUES (1,?,?,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET
                    active=excluded.active,
                    started_at=excluded.started_at,
                    balance=excluded.balance,
                    total_profit=excluded.total_profit,
                    history_cap=excluded.history_cap,
                    updated_at=excluded.updated_at
                """,
                (
                    1 if state.active else 0,
                    state.started_at,
                    float(state.balance),
                    float(state.total_profit),
                    int(state.history_cap),
                    utc_now_iso(),
                ),
            )
            conn.execute("DELETE FROM open_positions")
            conn.executemany(
                f"""
                INSERT INTO open_positions({', '.join(_POSITION_COLS)})
                VALUES ({', '.join('?' for _ in _POSITION_COLS)})
                """,
                [
                    tuple(p.to_dict()[c] for c in _POSITION_COLS)
                    for p in state.open_positions.values()
                ],
            )

    # ---------- HISTORY ----------
    def append_history(self, record: TradeRecord) -> None:
        d = record.to_dict()
        cols = _POSITION_COLS + ("exit_price", "exit_time", "outcome", "pnl", "fee")
        with self.db.connect() as conn:
            conn.execute(
                f"INSERT INTO trade_history({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
                tuple(d[c] for c in cols),
            )
            # keep only the newest history_cap rows
            conn.execute(
                """
                DELETE FROM trade_history WHERE seq NOT IN (
                    SELECT seq FROM trade_history ORDER BY seq DESC LIMIT ?
                )
                """,
                (self.history_cap,),
            )

    def load_history(self, limit: Optional[int] = None) -> List[TradeRecord]:
        """Newest first."""
        n = int(limit or self.history_cap)
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM trade_history ORDER BY seq DESC LIMIT ?", (n,)
            ).fetchall()
        return [TradeRecord.from_dict(dict(r)) for r in rows]

    def clear(self) -> None:
        with self.db.connect() as conn:
            conn.execute("DELETE FROM account")
            conn.execute("DELETE FROM open_positions")
            conn.execute("DELETE FROM trade_history")
