"""Activity log schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class ActivityAction(str, Enum):
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    EDIT = "EDIT"


class ActivityAppendRequest(BaseModel):
    action: ActivityAction
    details: str = ""
    device_name: str = ""
    location: str = ""


class ActivityEntry(BaseModel):
    id: str
    account_id: str
    device_name: str
    action: ActivityAction
    details: str
    source_address: str
    location: str
    timestamp: datetime

    model_config = {"from_attributes": True}
