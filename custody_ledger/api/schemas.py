"""
Pydantic schemas for API requests and responses
"""

from typing import List, Optional
from pydantic import BaseModel, Field, StrictInt

from ..events import Notification


class SetValueRequest(BaseModel):
    value: StrictInt


class DepositRequest(BaseModel):
    amount: StrictInt = Field(..., description="Native value attached to the call")


class WithdrawRequest(BaseModel):
    amount: StrictInt = Field(..., ge=0, description="Native value to send to the owner")


class NotificationModel(BaseModel):
    id: str
    sequence: int
    type: str
    account: Optional[str] = None
    amount: Optional[int] = None
    value: Optional[int] = None
    created_at: str

    @classmethod
    def from_notification(cls, notification: Notification) -> 'NotificationModel':
        return cls(
            id=notification.id,
            sequence=notification.sequence,
            type=notification.notification_type.value,
            account=notification.account,
            amount=notification.amount,
            value=notification.value,
            created_at=notification.created_at.isoformat()
        )


class NotificationListResponse(BaseModel):
    notifications: List[NotificationModel]
