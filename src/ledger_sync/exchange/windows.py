"""Sub-window splitting for exchange queries.

The exchange caps the span of a single history query. A longer range is
cut into consecutive half-open sub-windows that cover it exactly.
"""

from __future__ import annotations

from datetime import timedelta

from ledger_sync.domain.records import TimeWindow


def split_window(window: TimeWindow, max_span: timedelta) -> list[TimeWindow]:
    """Split a window into consecutive sub-windows.

    Sub-windows are contiguous, never longer than max_span, and the last
    one is truncated at window.end.

    Args:
        window: Range to cover
        max_span: Longest allowed sub-window

    Returns:
        Sub-windows in ascending order

    Raises:
        ValueError: If max_span is not positive
    """
    if max_span <= timedelta(0):
        raise ValueError("max_span must be positive")

    windows: list[TimeWindow] = []
    cursor = window.start
    while cursor < window.end:
        upper = min(cursor + max_span, window.end)
        windows.append(TimeWindow(start=cursor, end=upper))
        cursor = upper
    return windows


def trade_windows(window: TimeWindow, hours: int) -> list[TimeWindow]:
    """Split for trade-history queries."""
    return split_window(window, timedelta(hours=hours))


def transfer_windows(window: TimeWindow, days: int) -> list[TimeWindow]:
    """Split for fiat and crypto movement queries."""
    return split_window(window, timedelta(days=days))
