"""Emergency recovery: re-anchor primary trust to the recovering device.

A successful password reset makes this device an approved primary even if
another primary still exists for the account. Two primaries can coexist
afterwards; that is accepted so a user who lost their primary device can get
back in without an administrator.
"""

import logging

from newsroom.schemas.activity import ActivityAction
from newsroom.schemas.auth import RecoveryResetResponse
from newsroom.schemas.device import DeviceStatus, DeviceUpsert
from newsroom.trust.api_client import NewsroomApiClient, NewsroomApiError
from newsroom.trust.audit import ActivityAuditLog
from newsroom.trust.handshake import TrustActionError
from newsroom.trust.identity import DeviceMetadata
from newsroom.trust.store import DeviceStore

logger = logging.getLogger(__name__)


class EmergencyRecovery:
    def __init__(
        self,
        api: NewsroomApiClient,
        store: DeviceStore,
        device_id: str,
        metadata: DeviceMetadata,
        audit: ActivityAuditLog | None = None,
    ):
        self.api = api
        self.store = store
        self.device_id = device_id
        self.metadata = metadata
        self.audit = audit

    async def request_code(self, email: str) -> dict:
        try:
            return await self.api.send_password_recovery(email)
        except NewsroomApiError as e:
            raise TrustActionError(f"Could not send recovery code: {e}", e.status_code) from e

    async def reset(self, email: str, code: str, new_password: str) -> RecoveryResetResponse:
        device = DeviceUpsert(
            device_name=self.metadata.name,
            device_type=self.metadata.kind,
            browser=self.metadata.browser_label,
            location="Recovered Station",
            last_active="Active Now",
            status=DeviceStatus.APPROVED,
            is_primary=True,
        )
        try:
            result = await self.api.reset_password(email, code, new_password, self.device_id, device)
        except NewsroomApiError as e:
            raise TrustActionError(f"Recovery failed: {e}", e.status_code) from e

        self.store.upsert(result.device)
        logger.warning(
            "Device %s re-anchored as primary for %s by emergency recovery",
            self.device_id, result.session.account_id,
        )
        if self.audit is not None:
            self.audit.append(ActivityAction.LOGIN, "Emergency recovery: device re-anchored as primary")
        return result
