from __future__ import annotations

from dataclasses import dataclass

from paperbot.account.models import AccountState


@dataclass
class RiskDecision:
    allowed: bool
    reason: str
    open_positions: int
    max_open_positions: int


class RiskGate:
    """
    Single source of truth for whether a new position may be opened.

    - OPEN must pass this gate.
    - Exits are never gated.
    """

    def __init__(self, *, max_open_positions: int):
        self.max_open_positions = int(max_open_positions)

    def can_open(self, account: AccountState, symbol: str) -> RiskDecision:
        n = len(account.open_positions)

        if symbol.upper() in account.open_positions:
            return RiskDecision(
                allowed=False,
                reason="symbol_already_open",
                open_positions=n,
                max_open_positions=self.max_open_positions,
            )

        if n >= self.max_open_positions:
            return RiskDecision(
                allowed=False,
                reason="max_open_positions_reached",
                open_positions=n,
                max_open_positions=self.max_open_positions,
            )

        if account.balance <= 0:
            return RiskDecision(
                allowed=False,
                reason="balance_depleted",
                open_positions=n,
                max_open_positions=self.max_open_positions,
            )

        return RiskDecision(
            allowed=True,
            reason="ok",
            open_positions=n,
            max_open_positions=self.max_open_positions,
        )

    def has_capacity(self, account: AccountState) -> bool:
        return len(account.open_positions) < self.max_open_positions
