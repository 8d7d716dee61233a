"""Realized PnL engine.

Keeps a queue of open buy lots per instrument and realizes gain or loss
on each sell. State lives for one run only: realized PnL is only as
complete as the trade history fed in.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ledger_sync.domain.records import ZERO, TradeRecord
from ledger_sync.domain.types import LotMatching, TradeSide

logger = logging.getLogger(__name__)


@dataclass
class PositionLot:
    """Open buy quantity awaiting a matching sell."""

    quantity: Decimal
    price: Decimal
    opened_at: datetime


class PnLEngine:
    """Per-instrument lot matching.

    Example:
        engine = PnLEngine(LotMatching.FIFO)
        engine.apply_fill("BTCUSDT", TradeSide.BUY, Decimal("1"), Decimal("100"), ts)
        pnl = engine.apply_fill("BTCUSDT", TradeSide.SELL, Decimal("1"), Decimal("110"), ts)
    """

    def __init__(self, lot_matching: LotMatching = LotMatching.FIFO) -> None:
        self._lot_matching = lot_matching
        self._lots: dict[str, list[PositionLot]] = {}

    @property
    def lot_matching(self) -> LotMatching:
        return self._lot_matching

    def open_lots(self, symbol: str) -> list[PositionLot]:
        """Return a copy of the open lots for a symbol, oldest first."""
        return [
            PositionLot(lot.quantity, lot.price, lot.opened_at)
            for lot in self._lots.get(symbol, [])
        ]

    def open_quantity(self, symbol: str) -> Decimal:
        return sum((lot.quantity for lot in self._lots.get(symbol, [])), ZERO)

    def apply_fill(
        self,
        symbol: str,
        side: TradeSide,
        quantity: Decimal,
        price: Decimal,
        executed_at: datetime,
    ) -> Decimal:
        """Apply one fill and return the PnL it realizes.

        Buys open a lot and realize zero. Sells consume open lots in the
        configured order; quantity beyond all open lots has no lot to
        charge against and realizes nothing.

        Args:
            symbol: Instrument symbol
            side: Fill side
            quantity: Filled quantity
            price: Fill price
            executed_at: Execution time

        Returns:
            Realized PnL for this fill
        """
        lots = self._lots.setdefault(symbol, [])
        if side == TradeSide.BUY:
            if quantity > ZERO:
                lots.append(PositionLot(quantity, price, executed_at))
            return ZERO

        remaining = quantity
        realized = ZERO
        while remaining > ZERO and lots:
            index = 0 if self._lot_matching == LotMatching.FIFO else len(lots) - 1
            lot = lots[index]
            matched = min(remaining, lot.quantity)
            realized += (price - lot.price) * matched
            lot.quantity -= matched
            remaining -= matched
            if lot.quantity <= ZERO:
                lots.pop(index)

        if remaining > ZERO:
            logger.debug(
                f"{symbol}: sell of {quantity} exceeds open lots by {remaining}, "
                "no lot to charge against"
            )
        return realized

    def annotate(self, records: Iterable[TradeRecord]) -> list[TradeRecord]:
        """Feed records through the engine in execution order.

        Records that already carry realized PnL keep it; the rest get the
        engine's value. Every record updates the lots either way.

        Returns:
            Records sorted by execution time with PnL filled in
        """
        ordered = sorted(records, key=lambda r: r.executed_at)
        annotated: list[TradeRecord] = []
        for record in ordered:
            computed = self.apply_fill(
                record.symbol,
                record.side,
                record.quantity,
                record.price,
                record.executed_at,
            )
            if record.realized_pnl is None:
                record = record.with_realized_pnl(computed)
            annotated.append(record)
        return annotated

    def reset(self) -> None:
        self._lots.clear()
