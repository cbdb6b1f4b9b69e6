"""Identity and account recovery API endpoints."""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlmodel import Session

from newsroom.api.deps import get_current_account
from newsroom.database import get_session
from newsroom.models.account import Account
from newsroom.schemas.auth import (
    AuthResponse,
    RecoveryRequest,
    RecoveryRequestResponse,
    RecoveryResetRequest,
    RecoveryResetResponse,
    SessionInfo,
    SignInRequest,
    SignUpRequest,
    UserUpdateRequest,
)
from newsroom.services import device_service
from newsroom.services.identity_service import (
    AuthError,
    RecoveryError,
    reset_password,
    send_password_recovery,
    session_info,
    sign_in,
    sign_up,
    update_user,
)
from newsroom.ws.changes import feed

router = APIRouter(tags=["auth"])


@router.post("/auth/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def signup(request: SignUpRequest, session: Session = Depends(get_session)):
    """Create a reader account."""
    try:
        account, token = sign_up(
            request.email, request.password, request.display_name, session, device_id=request.device_id,
        )
    except AuthError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return AuthResponse(access_token=token, session=session_info(account))


@router.post("/auth/signin", response_model=AuthResponse)
def signin(request: SignInRequest, session: Session = Depends(get_session)):
    try:
        account, token = sign_in(request.email, request.password, session, device_id=request.device_id)
    except AuthError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    return AuthResponse(access_token=token, session=session_info(account))


@router.post("/auth/recovery", response_model=RecoveryRequestResponse, status_code=status.HTTP_202_ACCEPTED)
def request_recovery(request: RecoveryRequest, session: Session = Depends(get_session)):
    """Send a recovery code out of band."""
    result = send_password_recovery(request.email, session)
    return RecoveryRequestResponse(**result)


@router.post("/auth/recovery/reset", response_model=RecoveryResetResponse)
def recovery_reset(
    request: RecoveryResetRequest,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
):
    """Reset the password and re-anchor trust to the recovering device."""
    try:
        account, token = reset_password(
            request.email, request.code, request.new_password, session, device_id=request.device_id,
        )
    except RecoveryError as e:
        parts = str(e).split(":", 2)
        error_code = parts[0] if len(parts) > 0 else "error"
        remaining = int(parts[1]) if len(parts) > 1 else 0
        message = parts[2] if len(parts) > 2 else str(e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": error_code,
                "remaining_attempts": remaining,
                "message": message,
            },
        )

    device, event = device_service.reanchor_primary(session, account.id, request.device_id, request.device)
    background_tasks.add_task(feed.publish, event)
    return RecoveryResetResponse(
        access_token=token,
        session=session_info(account),
        device=device_service.to_record(device),
    )


@router.get("/users/me", response_model=SessionInfo)
def get_my_session(account: Account = Depends(get_current_account)):
    """Session introspection."""
    return session_info(account)


@router.patch("/users/me", response_model=SessionInfo)
def update_my_profile(
    request: UserUpdateRequest,
    account: Account = Depends(get_current_account),
    session: Session = Depends(get_session),
):
    account = update_user(
        account,
        session,
        display_name=request.display_name,
        avatar_url=request.avatar_url,
        password=request.password,
    )
    return session_info(account)
