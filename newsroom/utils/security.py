"""Security utilities: JWT tokens, password hashing, recovery codes."""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from newsroom.config import settings


# --- Password Hashing ---

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return bcrypt.checkpw(password.encode(), hashed.encode())


# --- JWT Tokens ---

def create_access_token(account_id: str, role: str, device_id: str | None = None) -> str:
    """Access token for one account, bound to the device it was issued to."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": account_id,
        "dev": device_id,
        "role": role,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


# --- Recovery Code ---

def generate_recovery_code(length: int | None = None) -> str:
    """Generate a random numeric recovery code (8 digits by default)."""
    length = length or settings.recovery_code_length
    low = 10 ** (length - 1)
    return str(secrets.randbelow(9 * low) + low)


def hash_code(code: str) -> str:
    """Fingerprint a recovery code for in-memory comparison."""
    return hashlib.sha256(code.encode()).hexdigest()[:32]
