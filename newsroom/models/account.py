"""Account model (identity provider side)."""

import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class Account(SQLModel, table=True):
    __tablename__ = "accounts"

    id: str = Field(default_factory=lambda: f"acc_{secrets.token_hex(6)}", primary_key=True)
    email: str = Field(unique=True, index=True)
    display_name: str
    password_hash: str
    role: str = Field(default="READER")  # 'READER' | 'WRITER' | 'EDITOR' | 'ADMIN'
    avatar_url: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
