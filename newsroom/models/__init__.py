"""Newsroom database models."""

from newsroom.models.account import Account
from newsroom.models.device import TrustedDevice
from newsroom.models.activity import ActivityLog

__all__ = [
    "Account",
    "TrustedDevice",
    "ActivityLog",
]
