"""Identity provider: accounts, sessions and password recovery.

The trust core only consumes these as opaque calls. Recovery code state is
kept in memory per e-mail address, like a short-lived one-time PIN.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

from sqlmodel import Session, select

from newsroom.config import settings
from newsroom.models.account import Account
from newsroom.schemas.auth import Role, SessionInfo
from newsroom.utils.security import (
    create_access_token,
    generate_recovery_code,
    hash_code,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)


class AuthError(ValueError):
    pass


class RecoveryError(ValueError):
    """Message format: '<error_code>:<remaining_attempts>:<message>'."""


@dataclass
class RecoveryState:
    code_hash: str = ""
    created_at: float = 0.0
    attempts: int = 0
    lockout_until: float = 0.0


# One pending recovery per registered e-mail address
_recovery_states: dict[str, RecoveryState] = {}

# (email, code) -> None; delivers a code out of band
CodeSink = Callable[[str, str], None]


def _log_code(email: str, code: str) -> None:
    logger.info("Recovery code for %s: %s", email, code)


_code_sink: CodeSink = _log_code


def set_code_sink(sink: CodeSink | None) -> None:
    """Replace the out-of-band delivery channel. None restores the log sink."""
    global _code_sink
    _code_sink = sink or _log_code


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def session_info(account: Account) -> SessionInfo:
    return SessionInfo(
        account_id=account.id,
        role=account.role,
        display_name=account.display_name,
        avatar_url=account.avatar_url,
    )


def sign_up(
    email: str,
    password: str,
    display_name: str,
    session: Session,
    device_id: str | None = None,
) -> tuple[Account, str]:
    email = _normalize_email(email)
    if session.exec(select(Account).where(Account.email == email)).first():
        raise AuthError("Email already registered")

    account = Account(
        email=email,
        display_name=display_name,
        password_hash=hash_password(password),
        role=Role.READER.value,
    )
    session.add(account)
    session.commit()
    session.refresh(account)
    return account, create_access_token(account.id, account.role, device_id)


def sign_in(email: str, password: str, session: Session, device_id: str | None = None) -> tuple[Account, str]:
    account = session.exec(select(Account).where(Account.email == _normalize_email(email))).first()
    if not account or not verify_password(password, account.password_hash):
        raise AuthError("Invalid email or password")
    return account, create_access_token(account.id, account.role, device_id)


def update_user(
    account: Account,
    session: Session,
    display_name: str | None = None,
    avatar_url: str | None = None,
    password: str | None = None,
) -> Account:
    if display_name is not None:
        account.display_name = display_name
    if avatar_url is not None:
        account.avatar_url = avatar_url
    if password:
        account.password_hash = hash_password(password)
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


def _prune_recovery_states(now: float) -> None:
    """Forget addresses whose code has expired and that are not locked out."""
    for email, state in list(_recovery_states.items()):
        expired = not state.code_hash or (now - state.created_at) >= settings.recovery_code_expire_seconds
        if expired and state.lockout_until <= now:
            del _recovery_states[email]


def send_password_recovery(email: str, session: Session) -> dict:
    """Issue a recovery code and deliver it out of band.

    Answers the same way whether or not the address is registered. Only
    registered addresses get recovery state.
    """
    email = _normalize_email(email)
    now = time.time()
    _prune_recovery_states(now)

    state = _recovery_states.get(email)
    if state and state.lockout_until > now:
        remaining = int(state.lockout_until - now)
        return {
            "expires_in": 0,
            "message": f"Too many attempts. Try again in {remaining}s",
        }

    account = session.exec(select(Account).where(Account.email == email)).first()
    if account:
        code = generate_recovery_code()
        state = _recovery_states.setdefault(email, RecoveryState())
        state.code_hash = hash_code(code)
        state.created_at = now
        state.attempts = 0
        _code_sink(email, code)

    return {
        "expires_in": settings.recovery_code_expire_seconds,
        "message": "If the address is registered, a recovery code has been sent",
    }


def verify_recovery_code(email: str, code: str, session: Session) -> Account:
    """Check a recovery code, counting failed attempts. Raises RecoveryError."""
    email = _normalize_email(email)
    now = time.time()
    state = _recovery_states.get(email)

    if state and state.lockout_until > now:
        remaining = int(state.lockout_until - now)
        raise RecoveryError(f"locked_out:0:Too many attempts. Wait {remaining}s")

    if not state or not state.code_hash:
        raise RecoveryError("no_code:0:No active recovery code. Request a new one")

    if (now - state.created_at) >= settings.recovery_code_expire_seconds:
        state.code_hash = ""
        raise RecoveryError("code_expired:0:Recovery code has expired. Request a new one")

    if hash_code(code) != state.code_hash:
        state.attempts += 1
        remaining = settings.recovery_max_attempts - state.attempts

        if state.attempts >= settings.recovery_max_attempts:
            state.lockout_until = now + settings.recovery_lockout_seconds
            state.code_hash = ""
            logger.warning("Recovery locked for %s after %d attempts", email, state.attempts)
            raise RecoveryError(
                f"invalid_code:0:Too many attempts. Locked for {settings.recovery_lockout_seconds}s"
            )

        raise RecoveryError(f"invalid_code:{remaining}:Incorrect recovery code")

    account = session.exec(select(Account).where(Account.email == email)).first()
    if not account:
        raise RecoveryError("no_code:0:No active recovery code. Request a new one")

    # Code is single use
    _recovery_states.pop(email, None)
    return account


def reset_password(
    email: str,
    code: str,
    new_password: str,
    session: Session,
    device_id: str | None = None,
) -> tuple[Account, str]:
    """Set a new password; the returned token is bound to the recovering device."""
    account = verify_recovery_code(email, code, session)
    account.password_hash = hash_password(new_password)
    session.add(account)
    session.commit()
    session.refresh(account)
    return account, create_access_token(account.id, account.role, device_id)
