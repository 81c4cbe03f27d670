"""
Notification System Module

Append-only notifications for ledger state changes, with a publish/subscribe
dispatcher for observers.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock

from .storage import StorageRecord


class NotificationType(Enum):
    """Notifications emitted by the ledger"""
    VALUE_CHANGED = "ValueChanged"
    DEPOSITED = "Deposited"
    WITHDRAWN = "Withdrawn"


@dataclass
class Notification(StorageRecord):
    """
    A single ledger notification.

    ValueChanged carries the new value; Deposited and Withdrawn carry the
    account and amount.
    """
    sequence: int
    notification_type: NotificationType
    account: Optional[str] = None
    amount: Optional[int] = None
    value: Optional[int] = None

    @classmethod
    def create(cls, sequence: int, notification_type: NotificationType,
               account: Optional[str] = None, amount: Optional[int] = None,
               value: Optional[int] = None) -> 'Notification':
        return cls(
            id=str(uuid.uuid4()),
            created_at=datetime.now(timezone.utc),
            sequence=sequence,
            notification_type=notification_type,
            account=account,
            amount=amount,
            value=value
        )

    @property
    def args(self) -> tuple:
        """Positional payload, e.g. (account, amount) for Withdrawn"""
        if self.notification_type == NotificationType.VALUE_CHANGED:
            return (self.value,)
        return (self.account, self.amount)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['notification_type'] = self.notification_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        if isinstance(data['notification_type'], str):
            data['notification_type'] = NotificationType(data['notification_type'])
        return super().from_dict(data)


class NotificationDispatcher:
    """Central notification dispatcher (publish/subscribe)"""

    def __init__(self):
        self._handlers: Dict[NotificationType, List[Callable]] = {}
        self._global_handlers: List[Callable] = []
        self._lock = RLock()
        self.logger = logging.getLogger("custody.events")

    @staticmethod
    def _name(handler: Callable) -> str:
        return getattr(handler, "__name__", repr(handler))

    def subscribe(self, notification_type: NotificationType, handler: Callable) -> None:
        """Subscribe to a specific notification type"""
        with self._lock:
            self._handlers.setdefault(notification_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {self._name(handler)} to {notification_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL notifications"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {self._name(handler)}")

    def unsubscribe(self, notification_type: NotificationType, handler: Callable) -> None:
        """Unsubscribe from a specific notification type"""
        with self._lock:
            try:
                self._handlers.get(notification_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {self._name(handler)} was not subscribed to {notification_type.value}")

    def unsubscribe_all(self, handler: Callable) -> None:
        """Remove a global handler"""
        with self._lock:
            try:
                self._global_handlers.remove(handler)
            except ValueError:
                self.logger.warning(f"Global handler {self._name(handler)} was not subscribed")

    def publish(self, notification: Notification) -> None:
        """Publish a notification to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(notification.notification_type, []))
            handlers.extend(self._global_handlers)

        self.logger.debug(f"Publishing {notification.notification_type.value} #{notification.sequence}")
        for handler in handlers:
            try:
                handler(notification)
            except Exception as e:
                # Log but don't break the ledger operation
                self.logger.error(
                    f"Error in handler {self._name(handler)} for {notification.notification_type.value}: {e}"
                )

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, notification_type: Optional[NotificationType] = None) -> int:
        """Get count of handlers for a specific notification type or all"""
        with self._lock:
            if notification_type:
                return len(self._handlers.get(notification_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)
