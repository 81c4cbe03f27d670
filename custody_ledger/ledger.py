"""
Custody Ledger Engine

Owner-gated configuration value plus a per-account balance ledger. Every
mutating operation is serialized by a reentrant lock and runs inside a storage
transaction scope, so a rejected or failed call leaves no trace. Withdrawals
debit the balance before value leaves custody.
"""

from contextlib import contextmanager
from typing import Any, Dict, List, Optional
import threading

from .audit import AuditTrail, AuditEventType
from .events import Notification, NotificationDispatcher, NotificationType
from .exceptions import InsufficientFunds, InvalidAmount, TransferFailed, Unauthorized
from .logging_config import get_logger, log_action
from .storage import StorageInterface
from .transfer import StorageWallets, TransferInterface


def _is_integer(amount: Any) -> bool:
    return isinstance(amount, int) and not isinstance(amount, bool)


class CustodyLedger:
    """
    Single-owner value custody ledger

    The owner is fixed at construction. Anyone may deposit and read; only the
    owner may change the configuration value or withdraw, and a withdrawal
    only ever draws on the owner's own balance.
    """

    STATE_TABLE = "ledger_state"
    BALANCES_TABLE = "balances"
    NOTIFICATIONS_TABLE = "notifications"
    STATE_ID = "state"

    def __init__(
        self,
        owner: str,
        storage: StorageInterface,
        transfer: Optional[TransferInterface] = None,
        audit_trail: Optional[AuditTrail] = None,
        dispatcher: Optional[NotificationDispatcher] = None
    ):
        """
        Args:
            owner: Identity of the creating account, fixed for the ledger's lifetime
            storage: Backend holding ledger state, balances and notifications
            transfer: Outbound value primitive (wallets in the same storage by default)
            audit_trail: Optional hash-chained audit trail
            dispatcher: Notification subscribers (a private dispatcher by default)

        Raises:
            ValueError: If owner is empty or the storage belongs to another owner
        """
        if not isinstance(owner, str) or not owner:
            raise ValueError("Owner account is required")

        self.storage = storage
        self.transfer = transfer or StorageWallets(storage)
        self.audit_trail = audit_trail
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.logger = get_logger("custody.ledger")

        self._lock = threading.RLock()
        self._depth = 0
        self._pending: List[Notification] = []
        self._publishing = False

        state = self.storage.load(self.STATE_TABLE, self.STATE_ID)
        if state:
            if state['owner'] != owner:
                raise ValueError(f"Ledger is already owned by {state['owner']}")
        else:
            with self.storage.atomic():
                self.storage.save(self.STATE_TABLE, self.STATE_ID, {'owner': owner, 'value': 0})
                self._audit(AuditEventType.LEDGER_CREATED, "ledger", self.STATE_ID, {'owner': owner}, owner)
            log_action(self.logger, "info", "Ledger created", user_id=owner, action="create")

        self._owner = owner

    @property
    def owner(self) -> str:
        """Account fixed as owner at construction"""
        return self._owner

    def is_owner(self, account: str) -> bool:
        return account == self._owner

    # Mutating operations

    def set_value(self, caller: str, new_value: int) -> None:
        """
        Replace the configuration value (owner only)

        Raises:
            Unauthorized: If caller is not the owner
            TypeError: If new_value is not an integer
        """
        with self._operation():
            self._require_owner(caller, "set_value")
            if not _is_integer(new_value):
                raise TypeError("Value must be an integer")

            state = self._load_state()
            previous = state['value']
            state['value'] = new_value
            self.storage.save(self.STATE_TABLE, self.STATE_ID, state)

            self._emit(NotificationType.VALUE_CHANGED, value=new_value)
            self._audit(AuditEventType.VALUE_CHANGED, "ledger", self.STATE_ID,
                        {'previous_value': previous, 'new_value': new_value}, caller)

        log_action(self.logger, "info", "Value changed", user_id=caller, action="set_value",
                   resource="ledger:value", extra={'previous_value': previous, 'new_value': new_value})

    def deposit(self, caller: str, amount: int) -> None:
        """
        Credit the native value attached to the call to the caller's balance

        Raises:
            InvalidAmount: If amount is not a positive integer
        """
        with self._operation():
            if not _is_integer(amount) or amount <= 0:
                self._reject(InvalidAmount(), caller, "deposit", amount)

            balance = self._balance(caller) + amount
            self._save_balance(caller, balance)

            self._emit(NotificationType.DEPOSITED, account=caller, amount=amount)
            self._audit(AuditEventType.DEPOSIT_CREDITED, "balance", caller,
                        {'amount': amount, 'balance': balance}, caller)

        log_action(self.logger, "info", "Deposit credited", user_id=caller, action="deposit",
                   resource=f"balance:{caller}", extra={'amount': amount, 'balance': balance})

    def withdraw(self, caller: str, amount: int) -> None:
        """
        Debit the owner's balance, then send the value out to the owner

        The debit is stored before the transfer starts, so a reentrant call
        made from the transfer sees the reduced balance. A failed transfer
        rolls the debit back.

        Raises:
            Unauthorized: If caller is not the owner
            InvalidAmount: If amount is not a non-negative integer
            InsufficientFunds: If amount exceeds the owner's balance
            TransferFailed: If the value could not be sent
        """
        with self._operation():
            self._require_owner(caller, "withdraw")
            if not _is_integer(amount) or amount < 0:
                self._reject(InvalidAmount("Withdrawal amount must be a non-negative integer"),
                             caller, "withdraw", amount)

            balance = self._balance(caller)
            if balance < amount:
                self._reject(InsufficientFunds(), caller, "withdraw", amount)

            remaining = balance - amount
            self._save_balance(caller, remaining)
            self._send(caller, amount)

            self._emit(NotificationType.WITHDRAWN, account=caller, amount=amount)
            self._audit(AuditEventType.WITHDRAWAL_DEBITED, "balance", caller,
                        {'amount': amount, 'balance': remaining}, caller)

        log_action(self.logger, "info", "Withdrawal sent", user_id=caller, action="withdraw",
                   resource=f"balance:{caller}", extra={'amount': amount, 'balance': remaining})

    # Reads

    def get_value(self) -> int:
        """Current configuration value"""
        with self._lock:
            return self._load_state()['value']

    def get_balance(self, account: str) -> int:
        """Balance of `account`, 0 when it never deposited"""
        with self._lock:
            return self._balance(account)

    def get_balances(self) -> Dict[str, int]:
        """Snapshot of every balance entry"""
        with self._lock:
            return {record['account']: record['amount']
                    for record in self.storage.load_all(self.BALANCES_TABLE)}

    def total_balance(self) -> int:
        """Native value held in custody across all accounts"""
        return sum(self.get_balances().values())

    def get_notifications(
        self,
        notification_type: Optional[NotificationType] = None,
        account: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Notification]:
        """
        Committed notifications in emission order

        Args:
            notification_type: Only notifications of this type
            account: Only notifications carrying this account
            limit: Only the most recent N matches
        """
        with self._lock:
            records = self.storage.load_all(self.NOTIFICATIONS_TABLE)

        notifications = [Notification.from_dict(data) for data in records]
        if notification_type:
            notifications = [n for n in notifications if n.notification_type == notification_type]
        if account:
            notifications = [n for n in notifications if n.account == account]
        notifications.sort(key=lambda n: n.sequence)

        if limit is not None:
            notifications = notifications[max(len(notifications) - limit, 0):]
        return notifications

    # Internals

    @contextmanager
    def _operation(self):
        """
        Serialize one mutating operation and make it atomic

        Notifications emitted inside the scope reach subscribers only once the
        outermost operation has committed; a failed scope drops its own.
        Operations run by a subscriber queue behind the batch being delivered.
        """
        with self._lock:
            mark = len(self._pending)
            self._depth += 1
            try:
                with self.storage.atomic():
                    yield
            except BaseException:
                del self._pending[mark:]
                raise
            finally:
                self._depth -= 1

            if self._depth == 0 and not self._publishing:
                self._publishing = True
                try:
                    while self._pending:
                        self.dispatcher.publish(self._pending.pop(0))
                finally:
                    self._publishing = False

    def _require_owner(self, caller: str, action: str) -> None:
        if caller != self._owner:
            self._reject(Unauthorized(), caller, action)

    def _reject(self, error: Exception, caller: str, action: str, amount: Any = None) -> None:
        extra = {'reason': str(error)}
        if amount is not None:
            extra['amount'] = amount
        log_action(self.logger, "warning", f"{action} rejected", user_id=caller,
                   action=action, extra=extra)
        raise error

    def _send(self, recipient: str, amount: int) -> None:
        try:
            self.transfer.send(recipient, amount)
        except TransferFailed as e:
            self._reject(e, recipient, "withdraw", amount)
        except Exception as e:
            self._reject(TransferFailed(f"Transfer to {recipient} failed: {e}"), recipient, "withdraw", amount)

    def _load_state(self) -> Dict[str, Any]:
        return self.storage.load(self.STATE_TABLE, self.STATE_ID)

    def _balance(self, account: str) -> int:
        record = self.storage.load(self.BALANCES_TABLE, account)
        return record['amount'] if record else 0

    def _save_balance(self, account: str, amount: int) -> None:
        self.storage.save(self.BALANCES_TABLE, account, {'account': account, 'amount': amount})

    def _emit(self, notification_type: NotificationType, **payload) -> None:
        notification = Notification.create(
            sequence=self.storage.count(self.NOTIFICATIONS_TABLE) + 1,
            notification_type=notification_type,
            **payload
        )
        self.storage.save(self.NOTIFICATIONS_TABLE, notification.id, notification.to_dict())
        self._pending.append(notification)

    def _audit(self, event_type: AuditEventType, entity_type: str, entity_id: str,
               metadata: Dict[str, Any], user_id: str) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
                user_id=user_id
            )
