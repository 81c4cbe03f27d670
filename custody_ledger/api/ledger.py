"""
Ledger endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, Query

from .auth import LedgerSystem, get_ledger_system, get_current_account
from .schemas import (
    SetValueRequest, DepositRequest, WithdrawRequest,
    NotificationModel, NotificationListResponse
)
from ..events import NotificationType
from ..exceptions import (
    LedgerError, Unauthorized, InvalidAmount, InsufficientFunds, TransferFailed
)


router = APIRouter()


ERROR_STATUS = {
    Unauthorized: 403,
    InvalidAmount: 400,
    InsufficientFunds: 409,
    TransferFailed: 502,
}


def to_http_error(error: LedgerError) -> HTTPException:
    """Map a ledger rejection onto an HTTP error carrying its reason"""
    return HTTPException(status_code=ERROR_STATUS.get(type(error), 400), detail=error.reason)


@router.get("/owner")
async def get_owner(system: LedgerSystem = Depends(get_ledger_system)):
    """Get the ledger owner"""
    return {"owner": system.ledger.owner}


@router.get("/value")
async def get_value(system: LedgerSystem = Depends(get_ledger_system)):
    """Get the configuration value"""
    return {"value": system.ledger.get_value()}


@router.put("/value")
async def set_value(
    request: SetValueRequest,
    caller: str = Depends(get_current_account),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Change the configuration value (owner only)"""
    try:
        system.ledger.set_value(caller, request.value)
    except LedgerError as e:
        raise to_http_error(e)
    return {"value": system.ledger.get_value()}


@router.get("/balances/{account}")
async def get_balance(account: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Get the balance of an account"""
    return {"account": account, "balance": system.ledger.get_balance(account)}


@router.get("/total")
async def get_total(system: LedgerSystem = Depends(get_ledger_system)):
    """Get the native value held in custody"""
    return {"total": system.ledger.total_balance()}


@router.post("/deposit")
async def deposit(
    request: DepositRequest,
    caller: str = Depends(get_current_account),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Deposit native value to the caller's balance"""
    try:
        system.ledger.deposit(caller, request.amount)
    except LedgerError as e:
        raise to_http_error(e)
    return {"account": caller, "balance": system.ledger.get_balance(caller)}


@router.post("/withdraw")
async def withdraw(
    request: WithdrawRequest,
    caller: str = Depends(get_current_account),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Withdraw native value from the owner's balance (owner only)"""
    try:
        system.ledger.withdraw(caller, request.amount)
    except LedgerError as e:
        raise to_http_error(e)
    return {"account": caller, "balance": system.ledger.get_balance(caller)}


@router.get("/notifications", response_model=NotificationListResponse)
async def get_notifications(
    kind: Optional[str] = Query(None, alias="type", description="ValueChanged, Deposited or Withdrawn"),
    account: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get the notification log, oldest first"""
    notification_type = None
    if kind:
        try:
            notification_type = NotificationType(kind)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown notification type: {kind}")

    notifications = system.ledger.get_notifications(
        notification_type=notification_type,
        account=account,
        limit=limit
    )
    return NotificationListResponse(
        notifications=[NotificationModel.from_notification(n) for n in notifications]
    )


@router.get("/audit/verify")
async def verify_audit(system: LedgerSystem = Depends(get_ledger_system)):
    """Verify the audit hash chain"""
    if not system.audit_trail:
        raise HTTPException(status_code=404, detail="Audit logging is disabled")
    return system.audit_trail.verify_integrity()
