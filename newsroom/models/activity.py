"""Activity log model."""

import secrets
from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


class ActivityLog(SQLModel, table=True):
    __tablename__ = "activity_logs"

    id: str = Field(default_factory=lambda: f"act_{secrets.token_hex(6)}", primary_key=True)
    account_id: str = Field(index=True)
    device_name: str = Field(default="")
    action: str  # 'LOGIN' | 'LOGOUT' | 'EDIT'
    details: str = Field(default="")
    source_address: str = Field(default="")
    location: str = Field(default="")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
