"""
Test suite for the custody ledger

Covers owner-only access, balance accounting, debit-before-transfer ordering,
rollback on failed transfers and the notifications each operation emits.
"""

import logging
import threading

import pytest
from unittest.mock import Mock

from custody_ledger.audit import AuditTrail, AuditEventType
from custody_ledger.events import NotificationDispatcher, NotificationType
from custody_ledger.exceptions import (
    LedgerError, Unauthorized, InvalidAmount, InsufficientFunds, TransferFailed
)
from custody_ledger.ledger import CustodyLedger
from custody_ledger.storage import InMemoryStorage, SQLiteStorage
from custody_ledger.transfer import TransferInterface


OWNER = "owner"
OTHER = "other"


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def dispatcher():
    return NotificationDispatcher()


@pytest.fixture
def ledger(storage, dispatcher):
    return CustodyLedger(OWNER, storage, audit_trail=AuditTrail(storage), dispatcher=dispatcher)


class ExplodingTransfer(TransferInterface):
    """Transfer primitive that fails with an arbitrary error"""

    def send(self, recipient, amount):
        raise ConnectionError("recipient unreachable")


class TestOwnership:
    """Owner identity is fixed at construction"""

    def test_owner_is_creator(self, ledger):
        assert ledger.owner == OWNER
        assert ledger.is_owner(OWNER)
        assert not ledger.is_owner(OTHER)

    def test_initial_state(self, ledger):
        assert ledger.get_value() == 0
        assert ledger.get_balance(OWNER) == 0
        assert ledger.get_balances() == {}
        assert ledger.total_balance() == 0

    def test_owner_required(self, storage):
        with pytest.raises(ValueError, match="Owner account is required"):
            CustodyLedger("", storage)

    def test_reopen_with_same_owner(self, storage):
        first = CustodyLedger(OWNER, storage)
        first.deposit(OWNER, 10)

        second = CustodyLedger(OWNER, storage)
        assert second.get_balance(OWNER) == 10

    def test_reopen_with_other_owner_rejected(self, storage):
        CustodyLedger(OWNER, storage)
        with pytest.raises(ValueError, match="already owned by owner"):
            CustodyLedger(OTHER, storage)


class TestSetValue:
    """Owner-only configuration value"""

    def test_owner_sets_value(self, ledger):
        ledger.set_value(OWNER, 42)
        assert ledger.get_value() == 42

    def test_non_owner_rejected(self, ledger):
        ledger.set_value(OWNER, 7)

        with pytest.raises(Unauthorized, match="Only owner can call this function"):
            ledger.set_value(OTHER, 42)

        assert ledger.get_value() == 7
        assert len(ledger.get_notifications(NotificationType.VALUE_CHANGED)) == 1

    def test_non_owner_rejected_before_type_check(self, ledger):
        with pytest.raises(Unauthorized):
            ledger.set_value(OTHER, "42")
        assert ledger.get_value() == 0

    def test_value_changed_notification(self, ledger):
        ledger.set_value(OWNER, 42)

        notifications = ledger.get_notifications()
        assert len(notifications) == 1
        assert notifications[0].notification_type == NotificationType.VALUE_CHANGED
        assert notifications[0].args == (42,)

    def test_negative_and_large_values(self, ledger):
        ledger.set_value(OWNER, -5)
        assert ledger.get_value() == -5

        ledger.set_value(OWNER, 2 ** 200)
        assert ledger.get_value() == 2 ** 200

    @pytest.mark.parametrize("value", ["42", 4.2, True, None])
    def test_non_integer_rejected(self, ledger, value):
        with pytest.raises(TypeError):
            ledger.set_value(OWNER, value)
        assert ledger.get_value() == 0


class TestDeposit:
    """Deposits from any account"""

    def test_deposit_credits_caller(self, ledger):
        ledger.deposit(OWNER, 100)
        assert ledger.get_balance(OWNER) == 100

        ledger.deposit(OWNER, 50)
        assert ledger.get_balance(OWNER) == 150

    def test_any_account_may_deposit(self, ledger):
        ledger.deposit(OTHER, 30)

        assert ledger.get_balance(OTHER) == 30
        assert ledger.get_balance(OWNER) == 0
        assert ledger.get_balances() == {OTHER: 30}

    def test_total_increases_by_amount(self, ledger):
        ledger.deposit(OWNER, 100)
        before = ledger.total_balance()

        ledger.deposit(OTHER, 25)
        assert ledger.total_balance() == before + 25

    def test_zero_deposit_rejected(self, ledger):
        ledger.deposit(OWNER, 10)

        with pytest.raises(InvalidAmount, match="Must send Coins"):
            ledger.deposit(OWNER, 0)

        assert ledger.get_balance(OWNER) == 10
        assert len(ledger.get_notifications()) == 1

    @pytest.mark.parametrize("amount", [-1, 1.5, "10", None, True])
    def test_invalid_amounts_rejected(self, ledger, amount):
        with pytest.raises(InvalidAmount):
            ledger.deposit(OTHER, amount)
        assert ledger.get_balances() == {}

    def test_deposited_notification(self, ledger):
        ledger.deposit(OTHER, 5)

        notification = ledger.get_notifications()[0]
        assert notification.notification_type == NotificationType.DEPOSITED
        assert notification.args == (OTHER, 5)


class TestWithdraw:
    """Owner-only withdrawals from the owner's balance"""

    def test_deposit_withdraw_scenario(self, ledger):
        ledger.deposit(OWNER, 100)
        assert ledger.get_balance(OWNER) == 100

        ledger.withdraw(OWNER, 1)
        assert ledger.get_balance(OWNER) == 99
        withdrawn = ledger.get_notifications(NotificationType.WITHDRAWN)
        assert [n.args for n in withdrawn] == [(OWNER, 1)]

        with pytest.raises(InsufficientFunds, match="Insufficient balance"):
            ledger.withdraw(OWNER, 1000)
        assert ledger.get_balance(OWNER) == 99
        assert len(ledger.get_notifications(NotificationType.WITHDRAWN)) == 1

    def test_value_sent_to_owner(self, ledger):
        ledger.deposit(OWNER, 100)
        ledger.withdraw(OWNER, 40)

        assert ledger.transfer.balance_of(OWNER) == 40
        assert ledger.get_balance(OWNER) == 60

    def test_full_withdrawal(self, ledger):
        ledger.deposit(OWNER, 100)
        ledger.withdraw(OWNER, 100)
        assert ledger.get_balance(OWNER) == 0

    def test_non_owner_rejected(self, ledger):
        ledger.deposit(OWNER, 100)
        ledger.deposit(OTHER, 100)

        with pytest.raises(Unauthorized, match="Only owner can call this function"):
            ledger.withdraw(OTHER, 10)

        assert ledger.get_balance(OTHER) == 100
        assert ledger.get_balance(OWNER) == 100
        assert ledger.transfer.balance_of(OTHER) == 0

    def test_authorization_checked_before_balance(self, ledger):
        with pytest.raises(Unauthorized):
            ledger.withdraw(OTHER, 10 ** 9)

    def test_owner_cannot_draw_on_other_balances(self, ledger):
        ledger.deposit(OTHER, 500)

        with pytest.raises(InsufficientFunds):
            ledger.withdraw(OWNER, 1)
        assert ledger.get_balance(OTHER) == 500

    def test_zero_withdrawal_allowed(self, ledger):
        ledger.deposit(OWNER, 10)
        ledger.withdraw(OWNER, 0)

        assert ledger.get_balance(OWNER) == 10
        assert ledger.get_notifications(NotificationType.WITHDRAWN)[0].args == (OWNER, 0)

    @pytest.mark.parametrize("amount", [-1, 2.5, "5"])
    def test_invalid_amounts_rejected(self, ledger, amount):
        ledger.deposit(OWNER, 10)

        with pytest.raises(InvalidAmount):
            ledger.withdraw(OWNER, amount)
        assert ledger.get_balance(OWNER) == 10

    def test_refused_transfer_rolls_back(self, ledger):
        ledger.deposit(OWNER, 100)
        ledger.transfer.refuse(OWNER)

        with pytest.raises(TransferFailed):
            ledger.withdraw(OWNER, 30)

        assert ledger.get_balance(OWNER) == 100
        assert ledger.transfer.balance_of(OWNER) == 0
        assert ledger.get_notifications(NotificationType.WITHDRAWN) == []

        # The ledger stays usable
        ledger.transfer.accept(OWNER)
        ledger.withdraw(OWNER, 30)
        assert ledger.get_balance(OWNER) == 70

    def test_transfer_errors_wrapped(self, storage):
        ledger = CustodyLedger(OWNER, storage, transfer=ExplodingTransfer())
        ledger.deposit(OWNER, 100)

        with pytest.raises(TransferFailed, match="recipient unreachable") as exc_info:
            ledger.withdraw(OWNER, 10)

        assert isinstance(exc_info.value.__cause__ or exc_info.value.__context__, ConnectionError)
        assert ledger.get_balance(OWNER) == 100


class TestReentrancy:
    """The transfer hook is the only point where control leaves the ledger"""

    def test_reentrant_call_sees_debited_balance(self, ledger):
        ledger.deposit(OWNER, 100)
        observed = []

        def hook(recipient, amount):
            observed.append(ledger.get_balance(OWNER))
            with pytest.raises(InsufficientFunds):
                ledger.withdraw(OWNER, 60)

        ledger.transfer.on_receive(OWNER, hook)
        ledger.withdraw(OWNER, 60)

        assert observed == [40]
        assert ledger.get_balance(OWNER) == 40
        assert ledger.transfer.balance_of(OWNER) == 60

    def test_nested_withdrawal_commits_with_outer(self, ledger, dispatcher):
        ledger.deposit(OWNER, 100)
        handler = Mock()
        dispatcher.subscribe(NotificationType.WITHDRAWN, handler)

        def hook(recipient, amount):
            ledger.transfer.clear_hook(OWNER)
            ledger.withdraw(OWNER, 10)

        ledger.transfer.on_receive(OWNER, hook)
        ledger.withdraw(OWNER, 60)

        assert ledger.get_balance(OWNER) == 30
        assert ledger.transfer.balance_of(OWNER) == 70
        assert [n.args for n in ledger.get_notifications(NotificationType.WITHDRAWN)] == [
            (OWNER, 10), (OWNER, 60)
        ]
        assert [c.args[0].amount for c in handler.call_args_list] == [10, 60]

    def test_failed_outer_transfer_undoes_nested_withdrawal(self, ledger, dispatcher):
        ledger.deposit(OWNER, 100)
        handler = Mock()
        dispatcher.subscribe(NotificationType.WITHDRAWN, handler)

        def hook(recipient, amount):
            ledger.transfer.clear_hook(OWNER)
            ledger.withdraw(OWNER, 10)
            raise RuntimeError("recipient reverted")

        ledger.transfer.on_receive(OWNER, hook)
        with pytest.raises(TransferFailed, match="recipient reverted"):
            ledger.withdraw(OWNER, 60)

        assert ledger.get_balance(OWNER) == 100
        assert ledger.transfer.balance_of(OWNER) == 0
        assert ledger.get_notifications(NotificationType.WITHDRAWN) == []
        handler.assert_not_called()

    def test_ledger_error_from_hook_becomes_transfer_failure(self, ledger):
        ledger.deposit(OWNER, 100)

        def hook(recipient, amount):
            ledger.set_value(OTHER, 1)

        ledger.transfer.on_receive(OWNER, hook)
        with pytest.raises(TransferFailed, match="Only owner can call this function"):
            ledger.withdraw(OWNER, 10)
        assert ledger.get_balance(OWNER) == 100


class TestNotificationDelivery:
    """Subscribers see committed notifications only"""

    def test_subscribers_notified_in_order(self, ledger, dispatcher):
        received = []
        dispatcher.subscribe_all(received.append)

        ledger.set_value(OWNER, 42)
        ledger.deposit(OWNER, 100)
        ledger.withdraw(OWNER, 1)

        assert [n.notification_type for n in received] == [
            NotificationType.VALUE_CHANGED,
            NotificationType.DEPOSITED,
            NotificationType.WITHDRAWN,
        ]
        assert [n.sequence for n in received] == [1, 2, 3]
        assert [n.args for n in received] == [(42,), (OWNER, 100), (OWNER, 1)]

    def test_rejected_calls_publish_nothing(self, ledger, dispatcher):
        handler = Mock()
        dispatcher.subscribe_all(handler)

        with pytest.raises(LedgerError):
            ledger.set_value(OTHER, 1)
        with pytest.raises(LedgerError):
            ledger.deposit(OTHER, 0)
        with pytest.raises(LedgerError):
            ledger.withdraw(OWNER, 1)

        handler.assert_not_called()
        assert ledger.get_notifications() == []

    def test_handler_sees_committed_balance(self, ledger, dispatcher):
        seen = []
        dispatcher.subscribe(
            NotificationType.DEPOSITED,
            lambda n: seen.append(ledger.get_balance(n.account))
        )

        ledger.deposit(OTHER, 12)
        assert seen == [12]

    def test_failing_handler_does_not_break_operation(self, ledger, dispatcher):
        dispatcher.subscribe(NotificationType.DEPOSITED, Mock(side_effect=RuntimeError("boom")))

        ledger.deposit(OWNER, 5)
        assert ledger.get_balance(OWNER) == 5

    def test_notification_log_filters(self, ledger):
        ledger.deposit(OWNER, 100)
        ledger.deposit(OTHER, 10)
        ledger.withdraw(OWNER, 5)
        ledger.set_value(OWNER, 3)

        assert len(ledger.get_notifications()) == 4
        assert [n.sequence for n in ledger.get_notifications(account=OWNER)] == [1, 3]
        assert len(ledger.get_notifications(NotificationType.DEPOSITED)) == 2
        latest = ledger.get_notifications(limit=2)
        assert [n.sequence for n in latest] == [3, 4]
        assert ledger.get_notifications(limit=0) == []
        assert len(ledger.get_notifications(limit=10)) == 4

    def test_subscriber_operations_delivered_after_batch(self, ledger, dispatcher):
        ledger.deposit(OWNER, 100)
        delivered = []

        def on_withdrawn(notification):
            delivered.append(notification.sequence)
            if notification.amount == 10:
                ledger.deposit(OTHER, 5)

        dispatcher.subscribe(NotificationType.WITHDRAWN, on_withdrawn)
        dispatcher.subscribe(NotificationType.DEPOSITED, lambda n: delivered.append(n.sequence))

        def hook(recipient, amount):
            ledger.transfer.clear_hook(OWNER)
            ledger.withdraw(OWNER, 10)

        ledger.transfer.on_receive(OWNER, hook)
        ledger.withdraw(OWNER, 20)

        # 2: nested Withdrawn(10), 3: outer Withdrawn(20), 4: subscriber's Deposited
        assert delivered == [2, 3, 4]
        assert ledger.get_balance(OTHER) == 5


class TestAuditIntegration:
    """Successful mutations land in the audit trail"""

    def test_operations_audited(self, ledger):
        ledger.set_value(OWNER, 1)
        ledger.deposit(OWNER, 100)
        ledger.withdraw(OWNER, 40)

        events = ledger.audit_trail.get_all_events()
        assert [e.event_type for e in events] == [
            AuditEventType.LEDGER_CREATED,
            AuditEventType.VALUE_CHANGED,
            AuditEventType.DEPOSIT_CREDITED,
            AuditEventType.WITHDRAWAL_DEBITED,
        ]
        assert events[-1].metadata == {'amount': 40, 'balance': 60}
        assert events[-1].user_id == OWNER
        assert ledger.audit_trail.verify_integrity()['valid']

    def test_rejections_not_audited(self, ledger):
        with pytest.raises(Unauthorized):
            ledger.set_value(OTHER, 1)
        ledger.transfer.refuse(OWNER)
        ledger.deposit(OWNER, 10)
        with pytest.raises(TransferFailed):
            ledger.withdraw(OWNER, 10)

        event_types = [e.event_type for e in ledger.audit_trail.get_all_events()]
        assert event_types == [AuditEventType.LEDGER_CREATED, AuditEventType.DEPOSIT_CREDITED]
        assert ledger.audit_trail.verify_integrity()['valid']


class TestRejectionLogging:
    """Rejections are logged with structured fields"""

    def test_unauthorized_logged(self, ledger, caplog):
        with caplog.at_level(logging.WARNING, logger="custody.ledger"):
            with pytest.raises(Unauthorized):
                ledger.withdraw(OTHER, 1)

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.action == "withdraw"
        assert record.user_id == OTHER
        assert record.extra["reason"] == "Only owner can call this function"


class TestExceptions:
    """Error taxonomy"""

    def test_default_reasons(self):
        assert str(Unauthorized()) == "Only owner can call this function"
        assert str(InvalidAmount()) == "Must send Coins"
        assert str(InsufficientFunds()) == "Insufficient balance"
        assert TransferFailed("nope").reason == "nope"

    def test_builtin_bases(self):
        assert isinstance(Unauthorized(), PermissionError)
        assert isinstance(InvalidAmount(), ValueError)
        assert isinstance(InsufficientFunds(), ValueError)
        assert isinstance(TransferFailed(), RuntimeError)


class TestSQLiteLedger:
    """Ledger over persistent storage"""

    def test_state_survives_reopen(self, tmp_path):
        db_path = tmp_path / "ledger.db"

        storage = SQLiteStorage(db_path)
        ledger = CustodyLedger(OWNER, storage, audit_trail=AuditTrail(storage))
        ledger.set_value(OWNER, 42)
        ledger.deposit(OWNER, 100)
        ledger.withdraw(OWNER, 1)
        storage.close()

        storage = SQLiteStorage(db_path)
        reopened = CustodyLedger(OWNER, storage, audit_trail=AuditTrail(storage))
        assert reopened.get_value() == 42
        assert reopened.get_balance(OWNER) == 99
        assert len(reopened.get_notifications()) == 3
        assert reopened.audit_trail.verify_integrity()['valid']

        with pytest.raises(ValueError):
            CustodyLedger(OTHER, storage)
        storage.close()

    def test_refused_transfer_rolls_back(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "ledger.db")
        ledger = CustodyLedger(OWNER, storage)
        ledger.deposit(OWNER, 100)
        ledger.transfer.refuse(OWNER)

        with pytest.raises(TransferFailed):
            ledger.withdraw(OWNER, 50)

        assert ledger.get_balance(OWNER) == 100
        assert ledger.get_notifications(NotificationType.WITHDRAWN) == []
        assert not storage.in_transaction
        storage.close()


class TestConcurrency:
    """Operations from many threads are serialized"""

    @pytest.mark.parametrize("backend", ["memory", "sqlite"])
    def test_concurrent_deposits(self, backend, tmp_path):
        if backend == "memory":
            storage = InMemoryStorage()
        else:
            storage = SQLiteStorage(tmp_path / "ledger.db")
        ledger = CustodyLedger(OWNER, storage, audit_trail=AuditTrail(storage))
        threads_count, deposits_each = 8, 25
        errors = []

        def worker():
            try:
                for _ in range(deposits_each):
                    ledger.deposit(OTHER, 1)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(threads_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        total = threads_count * deposits_each
        assert errors == []
        assert ledger.get_balance(OTHER) == total
        assert [n.sequence for n in ledger.get_notifications()] == list(range(1, total + 1))
        assert ledger.audit_trail.verify_integrity()['total_events'] == total + 1
        assert ledger.audit_trail.verify_integrity()['valid']
        storage.close()
