"""Identity computation and insert/update/skip planning.

Trade identity follows a strict precedence:
1. (account, order id) when the record carries an order id
2. (account, execution id) when it carries an execution id
3. (account, second-truncated time, symbol, side, price@8dp, qty@8dp)

Records fetched from exchange trade history are single executions, and
several can share one order id, so they are keyed on the execution id
first. An order-keyed record that misses is retried by execution id.

Cashflow identity is (account, external reference).

The resolver turns a batch of incoming records plus an index of stored
records into a WritePlan. Every incoming record is accounted exactly
once: as a pending insert, an update, or unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Generic, TypeVar

from ledger_sync.domain.records import CashflowRecord, TradeRecord
from ledger_sync.domain.types import TradeSide

logger = logging.getLogger(__name__)

EIGHT_PLACES = Decimal("0.00000001")

Identity = tuple[Any, ...]
R = TypeVar("R", TradeRecord, CashflowRecord)


def quantize8(value: Decimal) -> str:
    """Round to 8 decimal places and render canonically."""
    return str(value.quantize(EIGHT_PLACES, rounding=ROUND_HALF_UP))


def composite_key(
    account_id: str,
    executed_at: datetime,
    symbol: str,
    side: TradeSide,
    price: Decimal,
    quantity: Decimal,
) -> Identity:
    """Fingerprint for fills without stable external ids."""
    return (
        "composite",
        account_id,
        int(executed_at.timestamp()),
        symbol.upper(),
        side.value,
        quantize8(price),
        quantize8(quantity),
    )


def trade_identity(record: TradeRecord) -> Identity:
    """Resolve the identity of a trade record by precedence."""
    if record.per_execution and record.trade_id:
        return ("trade", record.account_id, record.trade_id)
    if record.order_id:
        return ("order", record.account_id, record.order_id)
    if record.trade_id:
        return ("trade", record.account_id, record.trade_id)
    return composite_key(
        record.account_id,
        record.executed_at,
        record.symbol,
        record.side,
        record.price,
        record.quantity,
    )


def trade_lookup_keys(record: TradeRecord) -> list[Identity]:
    """Keys tried, in order, when matching an incoming trade to storage."""
    primary = trade_identity(record)
    keys = [primary]
    if primary[0] == "order" and record.trade_id:
        keys.append(("trade", record.account_id, record.trade_id))
    return keys


def stored_trade_keys(record: TradeRecord) -> list[Identity]:
    """Keys under which a stored trade can be found.

    Stored trades are reachable by every external id they carry; the
    composite fingerprint is only used for trades with no id at all.
    """
    keys: list[Identity] = []
    if record.order_id:
        keys.append(("order", record.account_id, record.order_id))
    if record.trade_id:
        keys.append(("trade", record.account_id, record.trade_id))
    if not keys:
        keys.append(trade_identity(record))
    return keys


def cashflow_identity(record: CashflowRecord) -> Identity:
    """Resolve the identity of a cashflow record."""
    return ("ref", record.account_id, record.external_ref)


def _comparable(fields: dict[str, Any]) -> dict[str, Any]:
    # Decimals compare at storage precision
    return {
        key: quantize8(value) if isinstance(value, Decimal) else value
        for key, value in fields.items()
    }


def trade_changed(stored: TradeRecord, incoming: TradeRecord) -> bool:
    """Return True if writing incoming would change the stored row."""
    new = incoming.persisted_fields()
    old = stored.persisted_fields()
    if incoming.realized_pnl is None:
        new["realized_pnl"] = old["realized_pnl"]
    return _comparable(new) != _comparable(old)


def cashflow_changed(stored: CashflowRecord, incoming: CashflowRecord) -> bool:
    """Return True if writing incoming would change the stored row."""
    return _comparable(incoming.persisted_fields()) != _comparable(stored.persisted_fields())


def merge_trade(stored: TradeRecord, incoming: TradeRecord) -> TradeRecord:
    """Incoming fields bound to the stored id; absent PnL keeps the stored value."""
    merged = incoming.with_id(stored.id) if stored.id else incoming
    if incoming.realized_pnl is None and stored.realized_pnl is not None:
        merged = merged.with_realized_pnl(stored.realized_pnl)
    return merged


def merge_cashflow(stored: CashflowRecord, incoming: CashflowRecord) -> CashflowRecord:
    return incoming.with_id(stored.id) if stored.id else incoming


class IdentityIndex(Generic[R]):
    """Lookup of stored records by identity key."""

    def __init__(self, keys_of: Callable[[R], list[Identity]]) -> None:
        self._keys_of = keys_of
        self._by_key: dict[Identity, R] = {}

    @classmethod
    def for_trades(cls, records: Iterable[TradeRecord] = ()) -> IdentityIndex[TradeRecord]:
        index: IdentityIndex[TradeRecord] = IdentityIndex(stored_trade_keys)
        index.add_all(records)
        return index

    @classmethod
    def for_cashflows(
        cls, records: Iterable[CashflowRecord] = ()
    ) -> IdentityIndex[CashflowRecord]:
        index: IdentityIndex[CashflowRecord] = IdentityIndex(
            lambda r: [cashflow_identity(r)]
        )
        index.add_all(records)
        return index

    def add(self, record: R) -> None:
        for key in self._keys_of(record):
            # First stored match wins; duplicates are cleaned by maintenance
            self._by_key.setdefault(key, record)

    def add_all(self, records: Iterable[R]) -> None:
        for record in records:
            self.add(record)

    def get(self, identity: Identity) -> R | None:
        return self._by_key.get(identity)

    def find(self, identities: Iterable[Identity]) -> R | None:
        """Return the record stored under the first matching identity."""
        for identity in identities:
            record = self._by_key.get(identity)
            if record is not None:
                return record
        return None

    def __contains__(self, identity: object) -> bool:
        return identity in self._by_key

    def __len__(self) -> int:
        return len({id(r) for r in self._by_key.values()})


@dataclass
class WritePlan(Generic[R]):
    """Writes decided for one batch.

    Attributes:
        inserts: New records, one per identity
        updates: Records bound to stored ids whose fields changed
        updated: Incoming records accounted as updates
        unchanged: Incoming records that matched without changes
    """

    inserts: list[R] = field(default_factory=list)
    updates: list[R] = field(default_factory=list)
    updated: int = 0
    unchanged: int = 0

    @property
    def incoming(self) -> int:
        return len(self.inserts) + self.updated + self.unchanged


@dataclass
class _Pending(Generic[R]):
    record: R
    stored: R | None  # None for a pending insert
    written: bool  # an update will be written


class Resolver(Generic[R]):
    """Decides insert vs update vs unchanged for a batch.

    Within a batch, records sharing an identity collapse into one write;
    the later record's fields win.
    """

    def __init__(
        self,
        identity_of: Callable[[R], Identity],
        changed: Callable[[R, R], bool],
        merge: Callable[[R, R], R],
        lookup_keys_of: Callable[[R], list[Identity]] | None = None,
    ) -> None:
        self._identity_of = identity_of
        self._lookup_keys_of = lookup_keys_of or (lambda r: [identity_of(r)])
        self._changed = changed
        self._merge = merge

    @classmethod
    def for_trades(cls) -> Resolver[TradeRecord]:
        return Resolver(trade_identity, trade_changed, merge_trade, trade_lookup_keys)

    @classmethod
    def for_cashflows(cls) -> Resolver[CashflowRecord]:
        return Resolver(cashflow_identity, cashflow_changed, merge_cashflow)

    def identity(self, record: R) -> Identity:
        return self._identity_of(record)

    def resolve(self, record: R, index: IdentityIndex[R]) -> str | None:
        """Return the stored id the record matches, or None if it is new."""
        stored = index.find(self._lookup_keys_of(record))
        return stored.id if stored is not None else None

    def plan(self, records: Iterable[R], index: IdentityIndex[R]) -> WritePlan[R]:
        """Build the write plan for a batch.

        Args:
            records: Incoming records in processing order
            index: Stored records that may match

        Returns:
            WritePlan accounting for every incoming record
        """
        pending: dict[Identity, _Pending[R]] = {}
        plan: WritePlan[R] = WritePlan()

        for record in records:
            key = self._identity_of(record)
            current = pending.get(key)

            if current is None:
                stored = index.find(self._lookup_keys_of(record))
                if stored is None:
                    pending[key] = _Pending(record=record, stored=None, written=True)
                    continue
                if self._changed(stored, record):
                    pending[key] = _Pending(
                        record=self._merge(stored, record), stored=stored, written=True
                    )
                    plan.updated += 1
                else:
                    pending[key] = _Pending(record=stored, stored=stored, written=False)
                    plan.unchanged += 1
                continue

            # Duplicate identity within the batch
            base = current.record
            if self._changed(base, record):
                if current.stored is None:
                    current.record = record
                else:
                    current.record = self._merge(current.stored, record)
                    current.written = True
                plan.updated += 1
            else:
                plan.unchanged += 1

        for item in pending.values():
            if item.stored is None:
                plan.inserts.append(item.record)
            elif item.written:
                plan.updates.append(item.record)
        return plan


def collapse_duplicates(
    records: Iterable[R], identity_of: Callable[[R], Identity]
) -> list[R]:
    """Keep one record per identity; later duplicates replace earlier ones in place."""
    positions: dict[Identity, int] = {}
    result: list[R] = []
    for record in records:
        key = identity_of(record)
        if key in positions:
            result[positions[key]] = record
        else:
            positions[key] = len(result)
            result.append(record)
    return result


def promote_found_inserts(
    plan: WritePlan[TradeRecord], found: IdentityIndex[TradeRecord]
) -> int:
    """Turn pending inserts already present in storage into updates.

    Used by the last check before a bulk insert. Returns the number of
    inserts converted.
    """
    remaining: list[TradeRecord] = []
    converted = 0
    for record in plan.inserts:
        stored = found.find(trade_lookup_keys(record))
        if stored is None:
            remaining.append(record)
            continue
        converted += 1
        if trade_changed(stored, record):
            plan.updates.append(merge_trade(stored, record))
            plan.updated += 1
        else:
            plan.unchanged += 1
    plan.inserts = remaining
    if converted:
        logger.info(f"Last check found {converted} concurrently inserted trades")
    return converted


__all__ = [
    "IdentityIndex",
    "Resolver",
    "WritePlan",
    "collapse_duplicates",
    "composite_key",
    "promote_found_inserts",
    "trade_identity",
    "trade_lookup_keys",
]
