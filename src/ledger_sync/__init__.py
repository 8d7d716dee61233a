"""Exchange ledger reconciliation service.

Pulls trades, deposits and withdrawals from the exchange (or CSV
exports), reconciles them against the stored ledger and tracks each
run as a pollable background job.
"""

__version__ = "0.1.0"
