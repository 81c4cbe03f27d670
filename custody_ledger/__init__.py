"""
Custody Ledger

Owner-controlled value custody: a configuration value and a per-account
balance ledger funded by deposits and drained by owner withdrawals, with
notifications and a hash-chained audit trail for every state change.
"""

__version__ = "1.0.0"
