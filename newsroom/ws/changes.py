"""WebSocket handler for the realtime change feed (trusted_devices rows)."""

import json
import logging
from dataclasses import dataclass

from fastapi import WebSocket, WebSocketDisconnect

from newsroom.config import settings
from newsroom.database import session_scope
from newsroom.models.account import Account
from newsroom.schemas.auth import is_elevated
from newsroom.schemas.device import ChangeEvent, DeviceStatus
from newsroom.utils.security import decode_token

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Subscriber:
    ws: WebSocket
    account_id: str
    privileged: bool


def wants(sub: Subscriber, event: ChangeEvent) -> bool:
    """Own account rows, plus moderation-queue rows for privileged sessions."""
    if event.row.account_id == sub.account_id:
        return True
    if not sub.privileged:
        return False
    awaiting = DeviceStatus.AWAITING_VERIFICATION
    return any(r is not None and r.status == awaiting for r in (event.record, event.old))


class ChangeFeed:
    """Manages websocket subscribers per channel."""

    def __init__(self):
        self._subscribers: dict[str, list[Subscriber]] = {}  # channel -> [subscriber]

    async def connect(self, channel: str, sub: Subscriber):
        await sub.ws.accept()
        self._subscribers.setdefault(channel, []).append(sub)

    def disconnect(self, channel: str, sub: Subscriber):
        subs = self._subscribers.get(channel, [])
        if sub in subs:
            subs.remove(sub)

    async def publish(self, event: ChangeEvent | None, channel: str | None = None):
        """Send a change event to every interested subscriber of the channel."""
        if event is None:
            return
        channel = channel or settings.realtime_channel
        subs = self._subscribers.get(channel, [])
        message = event.model_dump(mode="json")
        dead = []
        for sub in subs:
            if not wants(sub, event):
                continue
            try:
                await sub.ws.send_json(message)
            except Exception:
                dead.append(sub)
        for sub in dead:
            subs.remove(sub)

    @property
    def connection_count(self) -> int:
        return sum(len(v) for v in self._subscribers.values())


feed = ChangeFeed()


async def websocket_changes(ws: WebSocket, token: str | None = None, channel: str = ""):
    """WebSocket endpoint for row-level change notifications."""
    if not token:
        await ws.close(code=4001, reason="Missing token")
        return

    try:
        payload = decode_token(token)
    except Exception:
        await ws.close(code=4001, reason="Invalid token")
        return

    channel = channel or settings.realtime_channel
    if channel != settings.realtime_channel:
        await ws.close(code=4004, reason=f"Unknown channel: {channel}")
        return

    with session_scope() as session:
        account = session.get(Account, payload.get("sub", ""))
    if account is None:
        await ws.close(code=4001, reason="Account not found")
        return

    sub = Subscriber(ws=ws, account_id=account.id, privileged=is_elevated(account.role))
    await feed.connect(channel, sub)
    logger.info("Realtime subscriber connected for %s (privileged=%s)", sub.account_id, sub.privileged)

    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                await ws.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await ws.send_json({"type": "error", "message": "Expected a JSON object"})
                continue

            msg_type = msg.get("type", "")
            if msg_type == "ping":
                await ws.send_json({"type": "pong"})
            else:
                await ws.send_json({"type": "error", "message": f"Unknown type: {msg_type}"})
    except WebSocketDisconnect:
        logger.info("Realtime subscriber disconnected for %s", sub.account_id)
    finally:
        feed.disconnect(channel, sub)
