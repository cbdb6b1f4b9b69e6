"""Application shell: owns the trust store and wires the components together.

start() introspects the session under a safety timeout. If the identity
provider does not answer in time, loading ends anyway with no session; the
public surface stays usable and protected routes redirect to login.
"""

import asyncio
import logging
from typing import Coroutine

from newsroom.config import settings
from newsroom.schemas.activity import ActivityAction
from newsroom.schemas.auth import SessionInfo, is_elevated
from newsroom.trust.api_client import NewsroomApiClient, NewsroomApiError
from newsroom.trust.audit import ActivityAuditLog
from newsroom.trust.channel import PollingRefresher, RealtimeChannel, SourceFactory, WebSocketChangeSource
from newsroom.trust.gate import AuthorizationGate, GateState, RouteDecision
from newsroom.trust.handshake import ApprovalHandshake, ModerationQueue
from newsroom.trust.identity import DeviceIdentityResolver, FileStorage, get_device_metadata
from newsroom.trust.recovery import EmergencyRecovery
from newsroom.trust.registry import TrustRegistryClient
from newsroom.trust.store import DeviceStore

logger = logging.getLogger(__name__)


class TrustShell:
    def __init__(
        self,
        api: NewsroomApiClient,
        resolver: DeviceIdentityResolver,
        user_agent: str | None,
        platform: str | None = None,
        source_factory: SourceFactory | None = None,
        poll_interval: float | None = None,
        session_check_timeout: float | None = None,
    ):
        self.api = api
        self.device_id = resolver.get_device_id()
        self.api.device_id = self.device_id
        self.metadata = get_device_metadata(user_agent, platform)
        self.session_check_timeout = (
            session_check_timeout if session_check_timeout is not None else settings.session_check_timeout
        )

        self.store = DeviceStore()
        self.registry = TrustRegistryClient(api, self.store)
        self.audit = ActivityAuditLog(api, device_label=self.metadata.name)
        self.gate = AuthorizationGate(self.store, self.registry, self.device_id, self.metadata, self.audit)
        self.channel = RealtimeChannel(self.store, source_factory or self._websocket_source)
        self.poller = PollingRefresher(self._poll, poll_interval)
        self.recovery = EmergencyRecovery(api, self.store, self.device_id, self.metadata, self.audit)

        self.session: SessionInfo | None = None
        self.loading = True
        self.handshake: ApprovalHandshake | None = None
        self.moderation: ModerationQueue | None = None
        self._tasks: set[asyncio.Task] = set()

        self.gate.on_first_approval(self._on_first_approval)
        self.gate.on_transition(self._on_gate_transition)

    @classmethod
    def from_settings(cls, user_agent: str | None, platform: str | None = None) -> "TrustShell":
        resolver = DeviceIdentityResolver(FileStorage(settings.client_state_dir / "device.json"))
        return cls(NewsroomApiClient(settings.api_base_url), resolver, user_agent, platform)

    @property
    def privileged(self) -> bool:
        return bool(self.session and is_elevated(self.session.role))

    def _websocket_source(self, account_id: str, privileged: bool):
        return WebSocketChangeSource(self.api.base_url, self.api.access_token or "").events()

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # --- gate hooks ---

    def _on_first_approval(self, account_id: str) -> None:
        self._spawn(self.channel.subscribe(account_id, self.privileged))

    def _on_gate_transition(self, old: GateState, new: GateState) -> None:
        # A pending device listens too, to see its own approval arrive
        if new == GateState.THIS_DEVICE_PENDING and self.gate.account_id:
            self._spawn(self.channel.subscribe(self.gate.account_id, self.privileged))
        elif new == GateState.THIS_DEVICE_BLOCKED:
            self._spawn(self.channel.close())

    # --- lifecycle ---

    async def start(self, access_token: str | None = None) -> GateState:
        if access_token:
            self.api.access_token = access_token
        self.loading = True
        try:
            self.session = await asyncio.wait_for(self.api.get_session(), timeout=self.session_check_timeout)
        except asyncio.TimeoutError:
            logger.warning("Session check timed out after %.1fs, continuing without a session",
                           self.session_check_timeout)
            self.session = None
        except NewsroomApiError as e:
            logger.warning("Session check failed: %s", e)
            self.session = None
        finally:
            self.loading = False

        await self._bind(self.session)
        return self.gate.state

    async def _bind(self, session: SessionInfo | None) -> None:
        """Tear down the old account's subscriptions and gate the new one."""
        await self.channel.close()
        if session is None:
            await self.poller.stop()
            self.gate.bind(None)
            self.registry.account_id = None
            self.handshake = None
            self.moderation = None
            return

        self.registry.account_id = session.account_id
        self.gate.bind(session.account_id)
        self.handshake = ApprovalHandshake(self.store, self.registry, session.account_id, self.device_id)
        self.moderation = ModerationQueue(self.store, self.registry) if self.privileged else None

        await self.gate.load()
        if self.moderation is not None:
            await self.registry.list_awaiting_verification_across_accounts()
        self.poller.start()

    async def _poll(self) -> None:
        if self.gate.account_id is None:
            return
        await self.gate.load()
        if self.moderation is not None:
            await self.registry.list_awaiting_verification_across_accounts()

    async def sign_in(self, email: str, password: str) -> GateState:
        await self.api.sign_in(email, password)
        return await self.start()

    async def sign_out(self) -> None:
        if self.session is not None:
            self.audit.append(ActivityAction.LOGOUT, f"Signed out from {self.metadata.name}")
            await self.audit.drain()
        self.api.sign_out()
        self.session = None
        await self._bind(None)
        self.store.clear()

    async def switch_account(self, email: str, password: str) -> GateState:
        """Sign out of the current account and gate another one on this device."""
        await self.sign_out()
        return await self.sign_in(email, password)

    async def emergency_reset(self, email: str, code: str, new_password: str) -> GateState:
        await self.recovery.reset(email, code, new_password)
        return await self.start()

    async def stop(self) -> None:
        await self.poller.stop()
        await self.channel.close()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.audit.drain()
        self.gate.close()

    def decide(self, path: str) -> RouteDecision:
        return self.gate.decide(path)
