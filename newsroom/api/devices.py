"""Trust registry API endpoints."""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlmodel import Session

from newsroom.api.deps import get_caller, get_current_account, require_staff
from newsroom.database import get_session
from newsroom.models.account import Account
from newsroom.schemas.device import DeviceRecord, DeviceUpsert, StatusUpdateRequest
from newsroom.services import device_service
from newsroom.services.device_service import (
    Caller,
    DeviceNotFoundError,
    DevicePermissionError,
    PrimaryConflictError,
)
from newsroom.ws.changes import feed

router = APIRouter(tags=["devices"])


@router.get("/devices", response_model=list[DeviceRecord])
def list_devices(
    account: Account = Depends(get_current_account),
    session: Session = Depends(get_session),
):
    """List every device registered to the current account."""
    devices = device_service.list_devices(session, account.id)
    return [device_service.to_record(d) for d in devices]


@router.get("/devices/moderation", response_model=list[DeviceRecord])
def list_moderation_queue(
    staff: Account = Depends(require_staff),
    session: Session = Depends(get_session),
):
    """Devices awaiting verification, across all accounts."""
    devices = device_service.list_awaiting_verification(session)
    return [device_service.to_record(d) for d in devices]


@router.put("/devices/{device_id}", response_model=DeviceRecord)
def upsert_device(
    device_id: str,
    request: DeviceUpsert,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_caller),
    session: Session = Depends(get_session),
):
    """Register this device, idempotent by id."""
    if caller.device_id != device_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token is bound to another device")
    try:
        device, event = device_service.upsert_device(session, caller.account_id, device_id, request)
    except PrimaryConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    background_tasks.add_task(feed.publish, event)
    return device_service.to_record(device)


@router.patch("/devices/{device_id}/status", response_model=DeviceRecord)
def update_device_status(
    device_id: str,
    request: StatusUpdateRequest,
    background_tasks: BackgroundTasks,
    account_id: Optional[str] = None,
    caller: Caller = Depends(get_caller),
    session: Session = Depends(get_session),
):
    """Approve (or otherwise re-status) a device."""
    try:
        device, event = device_service.set_status(
            session, caller, account_id or caller.account_id, device_id, request.status,
        )
    except DeviceNotFoundError:
        raise HTTPException(status_code=404, detail="Device not found")
    except DevicePermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    background_tasks.add_task(feed.publish, event)
    return device_service.to_record(device)


@router.delete("/devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_device(
    device_id: str,
    background_tasks: BackgroundTasks,
    account_id: Optional[str] = None,
    caller: Caller = Depends(get_caller),
    session: Session = Depends(get_session),
):
    """Reject or revoke a device. Revoking an unknown device is a no-op."""
    try:
        event = device_service.delete_device(session, caller, account_id or caller.account_id, device_id)
    except DevicePermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    background_tasks.add_task(feed.publish, event)
