"""Realtime reconciliation: merge change-feed events into the device store.

The realtime feed is an optimization over periodic full refetches. Both
write through the same idempotent merge in DeviceStore, so their relative
order never matters. There is no retry beyond what the transport does: when
the socket drops, reconciliation stalls until the next subscribe() while
polling carries on.
"""

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

import aiohttp

from newsroom.config import settings
from newsroom.schemas.device import ChangeEvent, ChangeType, DeviceStatus
from newsroom.trust.store import DeviceStore

logger = logging.getLogger(__name__)

# (account_id, privileged) -> stream of events
SourceFactory = Callable[[str, bool], AsyncIterator[ChangeEvent]]

_EVENT_TYPES = {t.value for t in ChangeType}


class WebSocketChangeSource:
    """Change events from the server's /ws/changes endpoint, via aiohttp."""

    def __init__(
        self,
        base_url: str,
        token: str,
        channel: str | None = None,
        heartbeat: float = 30.0,
    ):
        self.url = base_url.rstrip("/").replace("https://", "wss://").replace("http://", "ws://") + "/ws/changes"
        self.token = token
        self.channel = channel or settings.realtime_channel
        self.heartbeat = heartbeat

    async def events(self) -> AsyncIterator[ChangeEvent]:
        params = {"token": self.token, "channel": self.channel}
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(self.url, params=params, heartbeat=self.heartbeat) as ws:
                logger.info("Realtime feed connected: %s", self.channel)
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        data = msg.json()
                        if data.get("type") in _EVENT_TYPES:
                            yield ChangeEvent.model_validate(data)
                        elif data.get("type") == "error":
                            logger.warning("Realtime feed error: %s", data.get("message"))
                    elif msg.type in (aiohttp.WSMsgType.ERROR, aiohttp.WSMsgType.CLOSE):
                        break


class RealtimeChannel:
    """One subscription per loaded account."""

    def __init__(self, store: DeviceStore, source_factory: SourceFactory):
        self.store = store
        self.source_factory = source_factory
        self.account_id: str | None = None
        self.privileged = False
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def accepts(self, event: ChangeEvent) -> bool:
        """Own account rows; moderation-queue rows only for privileged sessions."""
        if self.account_id is None:
            return False
        if event.row.account_id == self.account_id:
            return True
        if not self.privileged:
            return False
        awaiting = DeviceStatus.AWAITING_VERIFICATION
        return any(r is not None and r.status == awaiting for r in (event.record, event.old))

    def apply_event(self, event: ChangeEvent) -> bool:
        if not self.accepts(event):
            return False
        row = event.row
        if row.account_id != self.account_id and row.status != DeviceStatus.AWAITING_VERIFICATION:
            # A foreign row that left the moderation queue
            self.store.remove(row.account_id, row.id)
        else:
            self.store.apply_event(event)
        return True

    async def subscribe(self, account_id: str, privileged: bool = False) -> None:
        """(Re)subscribe. A change of account or role tears down the old feed."""
        if self.active and account_id == self.account_id and privileged == self.privileged:
            return
        await self.close()
        self.account_id = account_id
        self.privileged = privileged
        events = self.source_factory(account_id, privileged)
        self._task = asyncio.get_running_loop().create_task(self._consume(account_id, events))

    async def _consume(self, account_id: str, events: AsyncIterator[ChangeEvent]) -> None:
        try:
            async for event in events:
                self.apply_event(event)
        except Exception as e:
            logger.warning("Realtime feed for %s failed: %s", account_id, e)
        else:
            logger.warning("Realtime feed for %s ended", account_id)

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


class PollingRefresher:
    """Baseline periodic full refetch."""

    def __init__(self, refresh: Callable[[], Awaitable[Any]], interval: float | None = None):
        self.refresh = refresh
        self.interval = interval if interval is not None else settings.poll_interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run(), name="device-poller")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.refresh()
            except Exception as e:
                logger.warning("Periodic device refresh failed: %s", e)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
