"""Activity log API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlmodel import Session

from newsroom.api.deps import get_current_account
from newsroom.database import get_session
from newsroom.models.account import Account
from newsroom.schemas.activity import ActivityAppendRequest, ActivityEntry
from newsroom.schemas.auth import is_elevated
from newsroom.services import activity_service

router = APIRouter(tags=["activity"])


@router.post("/activity", status_code=status.HTTP_202_ACCEPTED)
def append_activity(
    request: ActivityAppendRequest,
    request_obj: Request,
    account: Account = Depends(get_current_account),
    session: Session = Depends(get_session),
):
    """Append an entry. Accepted even when the log is unavailable."""
    entry = activity_service.append_log(
        session,
        account.id,
        request.action.value,
        details=request.details,
        device_name=request.device_name,
        source_address=request_obj.client.host if request_obj.client else "",
        location=request.location,
    )
    return {"stored": entry is not None}


@router.get("/activity", response_model=list[ActivityEntry])
def list_activity(
    limit: int = Query(default=50, ge=1, le=500),
    scope: str = Query(default="own", pattern="^(own|all)$"),
    account: Account = Depends(get_current_account),
    session: Session = Depends(get_session),
):
    if scope == "all" and not is_elevated(account.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Editor or admin access required")
    account_id = None if scope == "all" else account.id
    return activity_service.list_logs(session, limit=limit, account_id=account_id)
