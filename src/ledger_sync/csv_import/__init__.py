"""CSV import dialects for trade and cashflow exports."""

from ledger_sync.csv_import.normalizer import CashflowCsvNormalizer, TradeCsvNormalizer

__all__ = ["CashflowCsvNormalizer", "TradeCsvNormalizer"]
