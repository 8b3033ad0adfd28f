# paperbot/risk/sizing.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class SizeResult:
    amount: float
    notional: float
    reason: str
    details: Dict[str, Any]


def size_from_balance(
    *,
    symbol: str,
    price: float,
    balance: float,
    risk_fraction: float,
    leverage: int = 1,
) -> SizeResult:
    """
    Paper sizing:
      - Budget is a fixed fraction of the current balance.
      - Notional = budget * leverage (leverage is 1 for paper spot).
      - amount = notional / price, in base-asset units.
    """
    lev = max(1, int(leverage))

    if price <= 0:
        return SizeResult(
            amount=0.0,
            notional=0.0,
            reason="invalid_price",
            details={"symbol": symbol, "price": float(price)},
        )

    budget = float(balance) * float(risk_fraction)
    if budget <= 0:
        return SizeResult(
            amount=0.0,
            notional=0.0,
            reason="no_budget",
            details={
                "symbol": symbol,
                "balance": float(balance),
                "risk_fraction": float(risk_fraction),
            },
        )

    notional = budget * lev
    amount = notional / float(price)

    return SizeResult(
        amount=amount,
        notional=notional,
        reason="ok",
        details={
            "symbol": symbol,
            "price": float(price),
            "balance": float(balance),
            "risk_fraction": float(risk_fraction),
            "leverage": lev,
        },
    )
