"""Identity, session and recovery request/response schemas."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from newsroom.schemas.device import DeviceRecord, DeviceUpsert


class Role(str, Enum):
    READER = "READER"
    WRITER = "WRITER"
    EDITOR = "EDITOR"
    ADMIN = "ADMIN"


ELEVATED_ROLES = {Role.EDITOR.value, Role.ADMIN.value}


def is_elevated(role: str) -> bool:
    return role in ELEVATED_ROLES


# --- Session ---

class SessionInfo(BaseModel):
    account_id: str
    role: str
    display_name: str
    avatar_url: Optional[str] = None


class SignUpRequest(BaseModel):
    email: str
    password: str
    display_name: str
    device_id: Optional[str] = None


class SignInRequest(BaseModel):
    email: str
    password: str
    device_id: Optional[str] = None


class AuthResponse(BaseModel):
    access_token: str
    session: SessionInfo


class UserUpdateRequest(BaseModel):
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    password: Optional[str] = None


# --- Recovery ---

class RecoveryRequest(BaseModel):
    email: str


class RecoveryRequestResponse(BaseModel):
    expires_in: int
    message: str


class RecoveryResetRequest(BaseModel):
    email: str
    code: str
    new_password: str
    device_id: str
    device: DeviceUpsert


class RecoveryResetResponse(BaseModel):
    access_token: str
    session: SessionInfo
    device: DeviceRecord
