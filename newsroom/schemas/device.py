"""Trusted device wire types, shared by the API and the trust client."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class DeviceStatus(str, Enum):
    APPROVED = "approved"
    PENDING = "pending"
    AWAITING_VERIFICATION = "awaiting_verification"


class DeviceKind(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"


class DeviceRecord(BaseModel):
    id: str
    account_id: str
    device_name: str
    device_type: DeviceKind = DeviceKind.DESKTOP
    browser: str = "Unknown Browser"
    location: str = ""
    last_active: str = ""
    status: DeviceStatus = DeviceStatus.PENDING
    is_primary: bool = False

    model_config = {"from_attributes": True}

    @property
    def key(self) -> tuple[str, str]:
        """Row identity: (account_id, id)."""
        return (self.account_id, self.id)


class DeviceUpsert(BaseModel):
    device_name: str
    device_type: DeviceKind = DeviceKind.DESKTOP
    browser: str = "Unknown Browser"
    location: str = ""
    last_active: str = ""
    status: DeviceStatus = DeviceStatus.PENDING
    is_primary: bool = False


class StatusUpdateRequest(BaseModel):
    status: DeviceStatus


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """Row-level change notification for the trusted_devices table."""

    type: ChangeType
    table: str = "trusted_devices"
    record: Optional[DeviceRecord] = None  # new row, absent on DELETE
    old: Optional[DeviceRecord] = None  # previous row, absent on INSERT

    @property
    def row(self) -> DeviceRecord:
        return self.record or self.old
