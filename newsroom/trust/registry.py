"""Trust registry client: typed CRUD over the device API.

Mutations patch the local store before the request resolves. When the
request fails, the account is refetched in full rather than rolled back
patch by patch.
"""

import logging

from newsroom.schemas.device import DeviceRecord, DeviceStatus, DeviceUpsert
from newsroom.trust.api_client import NewsroomApiClient, NewsroomApiError
from newsroom.trust.results import Err, Ok, Result
from newsroom.trust.store import DeviceStore

logger = logging.getLogger(__name__)


class TrustRegistryClient:
    def __init__(self, api: NewsroomApiClient, store: DeviceStore, account_id: str | None = None):
        self.api = api
        self.store = store
        # The signed-in account; the API only lists devices of this account
        self.account_id = account_id

    async def list_devices(self, account_id: str) -> Result:
        """Fetch the account's devices into the store. Ok(list) or Err."""
        try:
            records = await self.api.list_devices()
        except NewsroomApiError as e:
            logger.warning("Device list fetch failed for %s: %s", account_id, e)
            return Err(str(e), e.status_code)
        self.store.replace_account(account_id, records)
        return Ok(records)

    def _is_foreign(self, account_id: str) -> bool:
        return self.account_id is not None and account_id != self.account_id

    async def _revert(self, account_id: str, error: NewsroomApiError) -> Err:
        logger.warning("Registry write failed, refetching %s: %s", account_id, error)
        if not self._is_foreign(account_id):
            await self.list_devices(account_id)
        else:
            await self.list_awaiting_verification_across_accounts()
        return Err(str(error), error.status_code)

    async def upsert_device(self, device: DeviceRecord) -> Result:
        """Idempotent by id."""
        self.store.upsert(device)
        payload = DeviceUpsert(
            device_name=device.device_name,
            device_type=device.device_type,
            browser=device.browser,
            location=device.location,
            last_active=device.last_active,
            status=device.status,
            is_primary=device.is_primary,
        )
        try:
            saved = await self.api.put_device(device.id, payload)
        except NewsroomApiError as e:
            return await self._revert(device.account_id, e)
        self.store.upsert(saved)
        return Ok(saved)

    async def set_status(self, account_id: str, device_id: str, status: DeviceStatus) -> Result:
        self.store.set_status(account_id, device_id, status)
        try:
            saved = await self.api.set_device_status(device_id, status, account_id=account_id)
        except NewsroomApiError as e:
            return await self._revert(account_id, e)
        if self._is_foreign(account_id) and saved.status != DeviceStatus.AWAITING_VERIFICATION:
            # Out of the moderation queue, and not ours to mirror
            self.store.remove(account_id, device_id)
        else:
            self.store.upsert(saved)
        return Ok(saved)

    async def delete(self, account_id: str, device_id: str) -> Result:
        self.store.remove(account_id, device_id)
        try:
            await self.api.delete_device(device_id, account_id=account_id)
        except NewsroomApiError as e:
            return await self._revert(account_id, e)
        return Ok(None)

    async def list_awaiting_verification_across_accounts(self) -> Result:
        """Moderation queue. Only call this for elevated roles."""
        try:
            records = await self.api.list_moderation_queue()
        except NewsroomApiError as e:
            logger.warning("Moderation queue fetch failed: %s", e)
            return Err(str(e), e.status_code)
        self.store.replace_moderation(records)
        return Ok(records)
