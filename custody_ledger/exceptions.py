"""
Ledger Errors

Every rejection aborts the requested operation with no state change and
leaves the ledger usable.
"""


class LedgerError(Exception):
    """Base class for ledger rejections"""

    default_reason = "Ledger operation rejected"

    def __init__(self, reason: str = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class Unauthorized(LedgerError, PermissionError):
    """Caller lacks the required identity"""

    default_reason = "Only owner can call this function"


class InvalidAmount(LedgerError, ValueError):
    """Deposit or withdrawal amount is not acceptable"""

    default_reason = "Must send Coins"


class InsufficientFunds(LedgerError, ValueError):
    """Withdrawal exceeds the available balance"""

    default_reason = "Insufficient balance"


class TransferFailed(LedgerError, RuntimeError):
    """Outbound value movement could not complete"""

    default_reason = "Transfer failed"
