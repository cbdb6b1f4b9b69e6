"""Trusted device model."""

from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


class TrustedDevice(SQLModel, table=True):
    __tablename__ = "trusted_devices"

    # One row per (account, browser profile fingerprint)
    id: str = Field(primary_key=True)
    account_id: str = Field(primary_key=True, foreign_key="accounts.id", index=True)
    device_name: str
    device_type: str = Field(default="desktop")  # 'desktop' | 'mobile' | 'tablet'
    browser: str = Field(default="Unknown Browser")
    location: str = Field(default="")
    last_active: str = Field(default="")  # display label, not a timestamp
    status: str = Field(default="pending", index=True)  # 'approved' | 'pending' | 'awaiting_verification'
    is_primary: bool = Field(default=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
