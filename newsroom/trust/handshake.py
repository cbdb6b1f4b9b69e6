"""Approval handshake: the primary device approves, rejects or revokes.

Pending devices are read straight from the store, so it does not matter
whether they arrived through a fetch or a realtime event.
"""

import logging

from newsroom.schemas.device import DeviceRecord, DeviceStatus
from newsroom.trust.registry import TrustRegistryClient
from newsroom.trust.results import Result
from newsroom.trust.store import DeviceStore

logger = logging.getLogger(__name__)


class TrustActionError(Exception):
    """A user-initiated trust action failed and should be shown to the user."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _raise_for(result: Result, action: str, device_id: str) -> None:
    if not result.ok:
        raise TrustActionError(f"Could not {action} device {device_id}: {result.reason}", result.status_code)


class ApprovalHandshake:
    def __init__(self, store: DeviceStore, registry: TrustRegistryClient, account_id: str, device_id: str):
        self.store = store
        self.registry = registry
        self.account_id = account_id
        self.device_id = device_id

    @property
    def is_primary_session(self) -> bool:
        me = self.store.get(self.account_id, self.device_id)
        return bool(me and me.is_primary and me.status == DeviceStatus.APPROVED)

    def pending_devices(self) -> list[DeviceRecord]:
        if not self.is_primary_session:
            return []
        return [
            d for d in self.store.devices_for(self.account_id)
            if d.status == DeviceStatus.PENDING and d.id != self.device_id
        ]

    @property
    def badge_count(self) -> int:
        return len(self.pending_devices())

    def my_devices(self) -> list[DeviceRecord]:
        """Devices shown under "my devices": approved or pending only."""
        return [
            d for d in self.store.devices_for(self.account_id)
            if d.status in (DeviceStatus.APPROVED, DeviceStatus.PENDING)
        ]

    async def approve(self, device_id: str) -> DeviceRecord:
        result = await self.registry.set_status(self.account_id, device_id, DeviceStatus.APPROVED)
        _raise_for(result, "approve", device_id)
        logger.info("Approved device %s for %s", device_id, self.account_id)
        return result.value

    async def reject(self, device_id: str) -> None:
        result = await self.registry.delete(self.account_id, device_id)
        _raise_for(result, "reject", device_id)
        logger.info("Rejected device %s for %s", device_id, self.account_id)

    async def revoke(self, device_id: str) -> None:
        device = self.store.get(self.account_id, device_id)
        if device is not None and device.is_primary:
            raise TrustActionError("The primary device cannot be revoked")
        result = await self.registry.delete(self.account_id, device_id)
        _raise_for(result, "revoke", device_id)
        logger.info("Revoked device %s for %s", device_id, self.account_id)


class ModerationQueue:
    """Cross-account awaiting_verification queue for editors and admins."""

    def __init__(self, store: DeviceStore, registry: TrustRegistryClient):
        self.store = store
        self.registry = registry

    def items(self) -> list[DeviceRecord]:
        return self.store.awaiting_verification()

    async def refresh(self) -> list[DeviceRecord]:
        result = await self.registry.list_awaiting_verification_across_accounts()
        _raise_for(result, "load", "queue")
        return result.value

    async def approve(self, account_id: str, device_id: str) -> DeviceRecord:
        result = await self.registry.set_status(account_id, device_id, DeviceStatus.APPROVED)
        _raise_for(result, "approve", device_id)
        return result.value

    async def block(self, account_id: str, device_id: str) -> None:
        result = await self.registry.delete(account_id, device_id)
        _raise_for(result, "block", device_id)
