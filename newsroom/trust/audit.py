"""Activity audit log: fire-and-forget, best-effort.

append() schedules a detached task and returns at once. Each write is tried
exactly once. Failures are logged and dropped; they never reach the caller
and never influence the authorization gate.
"""

import asyncio
import logging

from newsroom.schemas.activity import ActivityAction, ActivityEntry
from newsroom.trust.api_client import NewsroomApiClient, NewsroomApiError

logger = logging.getLogger(__name__)


class ActivityAuditLog:
    def __init__(self, api: NewsroomApiClient, device_label: str = "", location: str = ""):
        self.api = api
        self.device_label = device_label
        self.location = location
        self._tasks: set[asyncio.Task] = set()
        self._cache: dict[tuple[int, str], list[ActivityEntry]] = {}

    def append(self, action: ActivityAction, details: str = "") -> asyncio.Task | None:
        try:
            task = asyncio.get_running_loop().create_task(self._write(action, details))
        except RuntimeError:
            logger.warning("No event loop, dropping %s audit entry", action.value)
            return None
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _write(self, action: ActivityAction, details: str) -> None:
        try:
            await self.api.append_activity(action.value, details, self.device_label, self.location)
        except NewsroomApiError as e:
            logger.warning("Audit log write failed (%s): %s", action.value, e)
        except Exception:
            logger.exception("Unexpected audit log failure (%s)", action.value)

    async def list(self, limit: int = 50, account_scope: str = "own") -> list[ActivityEntry]:
        """Latest entries; on failure the previous result (or [])."""
        key = (limit, account_scope)
        try:
            entries = await self.api.list_activity(limit=limit, scope=account_scope)
        except NewsroomApiError as e:
            logger.warning("Audit log fetch failed: %s", e)
            return self._cache.get(key, [])
        self._cache[key] = entries
        return entries

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for writes still in flight."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
