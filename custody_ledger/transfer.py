"""
Value Transfer Module

The outbound native-value primitive used by withdrawals. It is the only point
where control leaves the ledger during an operation.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Set
import logging

from .exceptions import TransferFailed
from .storage import StorageInterface


class TransferInterface(ABC):
    """Abstract outbound value transfer"""

    @abstractmethod
    def send(self, recipient: str, amount: int) -> None:
        """
        Move `amount` native units out of custody to `recipient`.

        Raises:
            TransferFailed: If the recipient cannot accept the value
        """
        pass


class StorageWallets(TransferInterface):
    """
    Recipient wallets kept in a storage table.

    Sharing the ledger's storage puts every credit inside the withdrawal's
    transaction scope, so a rolled-back withdrawal also takes back the value
    it sent. Recipients can be marked as refusing value, and a receive hook
    can be registered per recipient; the hook runs during send() before the
    credit lands and may call back into the ledger.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "wallets"):
        self.storage = storage
        self.table_name = table_name
        self._refusing: Set[str] = set()
        self._hooks: Dict[str, Callable[[str, int], None]] = {}
        self.logger = logging.getLogger("custody.transfer")

    def send(self, recipient: str, amount: int) -> None:
        if recipient in self._refusing:
            raise TransferFailed(f"Recipient {recipient} does not accept value")

        hook = self._hooks.get(recipient)
        if hook:
            hook(recipient, amount)

        self.storage.save(self.table_name, recipient, {
            'account': recipient,
            'amount': self.balance_of(recipient) + amount
        })
        self.logger.debug(f"Sent {amount} to {recipient}")

    def refuse(self, recipient: str) -> None:
        """Make every future send to `recipient` fail"""
        self._refusing.add(recipient)

    def accept(self, recipient: str) -> None:
        """Undo refuse()"""
        self._refusing.discard(recipient)

    def on_receive(self, recipient: str, hook: Callable[[str, int], None]) -> None:
        """Register a hook called as hook(recipient, amount) on each send"""
        self._hooks[recipient] = hook

    def clear_hook(self, recipient: str) -> None:
        self._hooks.pop(recipient, None)

    def balance_of(self, recipient: str) -> int:
        """Native value received so far by `recipient`"""
        record = self.storage.load(self.table_name, recipient)
        return record['amount'] if record else 0

    def total_paid_out(self) -> int:
        return sum(record['amount'] for record in self.storage.load_all(self.table_name))
