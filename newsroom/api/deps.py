"""Common API dependencies: token decoding, current account, role checks."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from newsroom.database import get_session
from newsroom.models.account import Account
from newsroom.schemas.auth import is_elevated
from newsroom.services.device_service import Caller
from newsroom.utils.security import decode_token

bearer_scheme = HTTPBearer()


def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> dict:
    """Decode and validate a JWT access token."""
    try:
        payload = decode_token(credentials.credentials)
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )
    return payload


def get_current_account(
    payload: dict = Depends(get_token_payload),
    session: Session = Depends(get_session),
) -> Account:
    """The account the access token was issued to."""
    account = session.get(Account, payload["sub"])
    if not account:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account not found",
        )
    return account


def get_caller(
    payload: dict = Depends(get_token_payload),
    account: Account = Depends(get_current_account),
) -> Caller:
    """The signed-in account plus the device its token was issued to."""
    return Caller(account_id=account.id, role=account.role, device_id=payload.get("dev"))


def require_staff(account: Account = Depends(get_current_account)) -> Account:
    """Require an editorial or administrative role."""
    if not is_elevated(account.role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Editor or admin access required",
        )
    return account
