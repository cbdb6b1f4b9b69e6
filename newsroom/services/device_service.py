"""Trust registry business logic.

Every mutation returns the ChangeEvent it caused (None for a no-op) so the
API layer can publish it on the realtime feed.
"""

import logging
import threading
from dataclasses import dataclass

from sqlmodel import Session, select

from newsroom.models.device import TrustedDevice
from newsroom.schemas.auth import is_elevated
from newsroom.schemas.device import (
    ChangeEvent,
    ChangeType,
    DeviceRecord,
    DeviceStatus,
    DeviceUpsert,
)

logger = logging.getLogger(__name__)

# Serializes "are there any devices? then insert as primary"
_registration_lock = threading.Lock()


class DeviceNotFoundError(ValueError):
    pass


class PrimaryConflictError(ValueError):
    pass


class DevicePermissionError(ValueError):
    pass


@dataclass
class Caller:
    account_id: str
    role: str
    device_id: str | None = None

    @property
    def elevated(self) -> bool:
        return is_elevated(self.role)


def to_record(device: TrustedDevice) -> DeviceRecord:
    return DeviceRecord.model_validate(device)


def list_devices(session: Session, account_id: str) -> list[TrustedDevice]:
    """All devices of one account, oldest first."""
    return list(session.exec(
        select(TrustedDevice)
        .where(TrustedDevice.account_id == account_id)
        .order_by(TrustedDevice.created_at)
    ).all())


def list_awaiting_verification(session: Session) -> list[TrustedDevice]:
    """Moderation queue across every account."""
    return list(session.exec(
        select(TrustedDevice)
        .where(TrustedDevice.status == DeviceStatus.AWAITING_VERIFICATION.value)
        .order_by(TrustedDevice.created_at)
    ).all())


def upsert_device(
    session: Session,
    account_id: str,
    device_id: str,
    payload: DeviceUpsert,
) -> tuple[TrustedDevice, ChangeEvent | None]:
    """Register a device, or refresh the activity labels of a known one.

    Status and the primary flag are never escalated through an upsert. A new
    device may only claim primary+approved when the account has no devices
    at all, otherwise PrimaryConflictError is raised.
    """
    with _registration_lock:
        existing = session.get(TrustedDevice, (device_id, account_id))
        if existing:
            old = to_record(existing)
            if existing.location == payload.location and existing.last_active == payload.last_active:
                return existing, None
            existing.location = payload.location
            existing.last_active = payload.last_active
            session.add(existing)
            session.commit()
            session.refresh(existing)
            return existing, ChangeEvent(type=ChangeType.UPDATE, record=to_record(existing), old=old)

        wants_trust = payload.is_primary or payload.status == DeviceStatus.APPROVED
        if wants_trust:
            has_devices = session.exec(
                select(TrustedDevice.id).where(TrustedDevice.account_id == account_id)
            ).first() is not None
            if has_devices:
                raise PrimaryConflictError("Account already has a primary device")
            status = DeviceStatus.APPROVED
            is_primary = True
        else:
            status = payload.status
            is_primary = False

        device = TrustedDevice(
            id=device_id,
            account_id=account_id,
            device_name=payload.device_name,
            device_type=payload.device_type.value,
            browser=payload.browser,
            location=payload.location,
            last_active=payload.last_active,
            status=status.value,
            is_primary=is_primary,
        )
        session.add(device)
        session.commit()
        session.refresh(device)

    logger.info(
        "Registered device %s for %s (status=%s primary=%s)",
        device_id, account_id, device.status, device.is_primary,
    )
    return device, ChangeEvent(type=ChangeType.INSERT, record=to_record(device))


def reanchor_primary(
    session: Session,
    account_id: str,
    device_id: str,
    payload: DeviceUpsert,
) -> tuple[TrustedDevice, ChangeEvent]:
    """Emergency recovery: make this device an approved primary, unconditionally.

    Other primaries of the account are left as they are, so two primaries
    can coexist afterwards.
    """
    with _registration_lock:
        device = session.get(TrustedDevice, (device_id, account_id))
        if device:
            old = to_record(device)
            device.status = DeviceStatus.APPROVED.value
            device.is_primary = True
            device.location = payload.location
            device.last_active = payload.last_active
            change_type = ChangeType.UPDATE
        else:
            old = None
            device = TrustedDevice(
                id=device_id,
                account_id=account_id,
                device_name=payload.device_name,
                device_type=payload.device_type.value,
                browser=payload.browser,
                location=payload.location,
                last_active=payload.last_active,
                status=DeviceStatus.APPROVED.value,
                is_primary=True,
            )
            change_type = ChangeType.INSERT
        session.add(device)
        session.commit()
        session.refresh(device)

    others = [
        d.id for d in list_devices(session, account_id)
        if d.is_primary and d.id != device_id
    ]
    if others:
        logger.warning(
            "Account %s now has %d primary devices after recovery",
            account_id, len(others) + 1,
        )
    return device, ChangeEvent(type=change_type, record=to_record(device), old=old)


def _is_approved_primary(session: Session, account_id: str, device_id: str | None) -> bool:
    if not device_id:
        return False
    device = session.get(TrustedDevice, (device_id, account_id))
    return bool(device and device.is_primary and device.status == DeviceStatus.APPROVED.value)


def set_status(
    session: Session,
    caller: Caller,
    account_id: str,
    device_id: str,
    status: DeviceStatus,
) -> tuple[TrustedDevice, ChangeEvent | None]:
    """Change a device's status. Setting the current status again is a no-op."""
    device = session.get(TrustedDevice, (device_id, account_id))
    if not device:
        raise DeviceNotFoundError(f"Device {device_id} not found")

    owner_primary = account_id == caller.account_id and _is_approved_primary(session, account_id, caller.device_id)
    moderator = caller.elevated and device.status in (DeviceStatus.AWAITING_VERIFICATION.value, status.value)
    if not (owner_primary or moderator):
        raise DevicePermissionError("Only the primary device can change device status")

    if device.status == status.value:
        return device, None

    old = to_record(device)
    device.status = status.value
    session.add(device)
    session.commit()
    session.refresh(device)
    logger.info("Device %s of %s is now %s", device_id, account_id, device.status)
    return device, ChangeEvent(type=ChangeType.UPDATE, record=to_record(device), old=old)


def delete_device(
    session: Session,
    caller: Caller,
    account_id: str,
    device_id: str,
) -> ChangeEvent | None:
    """Revoke a device. Deleting a missing device is a no-op."""
    device = session.get(TrustedDevice, (device_id, account_id))
    if not device:
        return None

    own_account = account_id == caller.account_id
    if own_account and (caller.device_id == device_id or _is_approved_primary(session, account_id, caller.device_id)):
        pass
    elif caller.elevated and device.status == DeviceStatus.AWAITING_VERIFICATION.value:
        pass
    else:
        raise DevicePermissionError("Only the primary device can revoke devices")

    old = to_record(device)
    session.delete(device)
    session.commit()
    logger.info("Revoked device %s of %s", device_id, account_id)
    return ChangeEvent(type=ChangeType.DELETE, old=old)
