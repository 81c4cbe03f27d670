"""
Authentication dependencies and ledger system wiring
"""

from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..audit import AuditTrail
from ..config import CustodyConfig, get_config
from ..events import NotificationDispatcher
from ..ledger import CustodyLedger
from ..storage import create_storage
from ..transfer import StorageWallets


security = HTTPBearer(auto_error=False)


class LedgerSystem:
    """Custody ledger with all components initialized"""

    def __init__(self, config: Optional[CustodyConfig] = None):
        self.config = config or get_config()

        self.storage = create_storage(self.config.storage_backend, self.config.database_path)
        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.dispatcher = NotificationDispatcher()
        self.wallets = StorageWallets(self.storage)
        self.ledger = CustodyLedger(
            owner=self.config.owner_account,
            storage=self.storage,
            transfer=self.wallets,
            audit_trail=self.audit_trail,
            dispatcher=self.dispatcher
        )

    def close(self) -> None:
        self.storage.close()


_ledger_system: Optional[LedgerSystem] = None


def get_ledger_system() -> LedgerSystem:
    """Dependency returning the process-wide ledger system, built on first use"""
    global _ledger_system
    if _ledger_system is None:
        _ledger_system = LedgerSystem()
    return _ledger_system


def create_access_token(account: str, expires_in: Optional[timedelta] = None,
                        config: Optional[CustodyConfig] = None) -> str:
    """Issue a bearer token identifying `account`"""
    config = config or get_config()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": account,
        "iat": now,
        "exp": now + (expires_in or timedelta(hours=config.jwt_expiry_hours)),
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def get_current_account(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    system: LedgerSystem = Depends(get_ledger_system)
) -> str:
    """Dependency that validates the bearer token and returns the calling account"""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(
            credentials.credentials,
            system.config.jwt_secret,
            algorithms=[system.config.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    account = payload.get("sub")
    if not account:
        raise HTTPException(status_code=401, detail="Invalid token")
    return account
