"""Low-level parsing helpers for spreadsheet exports.

Covers quoted-field splitting, locale-tolerant numbers with unit
suffixes, and the timestamp shapes seen in exchange exports.
"""

from __future__ import annotations

import csv
import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

logger = logging.getLogger(__name__)

_NON_NUMERIC = re.compile(r"[^\d.,\-]")
_UNIT_SUFFIX = re.compile(r"^([\-\d.,]+)([A-Za-z]+)$")

_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%Y-%m-%d %H:%M",
)
_DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
)


@dataclass(frozen=True)
class CsvLine:
    """One data line of a CSV file.

    Attributes:
        offset: Zero-based data row index (header excluded)
        fields: Column name to raw value, or None if the line is malformed
        reason: Why the line is malformed
    """

    offset: int
    fields: dict[str, str] | None
    reason: str = ""


def split_line(line: str) -> list[str]:
    """Split one CSV line honoring double-quoted fields.

    Values are stripped of surrounding whitespace and quotes.
    """
    values = next(csv.reader([line], skipinitialspace=True), [])
    return [v.strip().strip('"') for v in values]


def read_table(text: str) -> tuple[list[str], list[CsvLine]]:
    """Split CSV text into a header and data lines.

    Blank lines are ignored. Lines whose field count differs from the
    header are returned with fields=None so offsets stay stable.

    Args:
        text: Full file contents

    Returns:
        Tuple of (header names, data lines)
    """
    raw_lines = [ln for ln in text.lstrip("\ufeff").splitlines() if ln.strip()]
    if not raw_lines:
        return [], []

    header = split_line(raw_lines[0])
    lines: list[CsvLine] = []
    for offset, raw in enumerate(raw_lines[1:]):
        values = split_line(raw)
        if len(values) != len(header):
            logger.warning(
                f"Line {offset + 2} has {len(values)} columns, expected {len(header)}"
            )
            lines.append(CsvLine(offset=offset, fields=None, reason="malformed row"))
            continue
        lines.append(CsvLine(offset=offset, fields=dict(zip(header, values, strict=True))))
    return header, lines


def parse_number(value: str | None) -> Decimal:
    """Parse a loosely formatted number.

    Non-numeric characters (currency codes, unit suffixes, spaces) are
    stripped. When both "." and "," appear, the right-most one is the
    decimal separator and the other is a thousands separator. A lone ","
    is a decimal separator unless it repeats.

    Returns:
        The parsed value, or zero if nothing numeric remains
    """
    if not value:
        return Decimal("0")

    cleaned = _NON_NUMERIC.sub("", value)
    if not cleaned:
        return Decimal("0")

    if "." in cleaned and "," in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        if cleaned.count(",") > 1:
            cleaned = cleaned.replace(",", "")
        else:
            cleaned = cleaned.replace(",", ".")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")

    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return Decimal("0")


def split_unit(value: str | None) -> tuple[str, str | None]:
    """Separate a letters-only unit suffix from a numeric string.

    "0.045ETH" -> ("0.045", "ETH"); "12.5" -> ("12.5", None).
    """
    if not value:
        return "", None
    compact = re.sub(r"\s", "", value)
    match = _UNIT_SUFFIX.match(compact)
    if match:
        return match.group(1), match.group(2).upper()
    return value.strip(), None


def parse_timestamp(text: str | None, allow_date_only: bool = False) -> datetime | None:
    """Parse an export timestamp as UTC.

    Accepted shapes:
    - YYYY-MM-DD HH:MM:SS (optionally with fractional seconds)
    - DD/MM/YYYY HH:MM:SS
    - Any ISO-8601 instant ("2024-01-02T03:04:05Z", with offsets)
    - YYYY-MM-DD or DD/MM/YYYY when allow_date_only is set

    Naive values are taken as UTC.

    Returns:
        Aware UTC datetime, or None if unparseable
    """
    if not text:
        return None
    value = text.strip()
    if not value:
        return None

    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue

    if allow_date_only:
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(value, fmt).replace(tzinfo=UTC)
            except ValueError:
                continue

    iso = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(iso)
    except ValueError:
        return None
    if "T" not in iso and " " not in iso and not allow_date_only:
        # Bare dates are only timestamps in the cashflow dialect
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def first_value(fields: dict[str, str], aliases: tuple[str, ...]) -> str:
    """Return the first non-empty value among alias columns."""
    for alias in aliases:
        value = fields.get(alias)
        if value:
            return value
    return ""
