"""Authorization gate: may this session and device enter protected routes?

State is derived from the device store for the bound account and
recomputed on every store mutation. Only THIS_DEVICE_APPROVED reaches
protected content. THIS_DEVICE_PENDING is shown the awaiting-approval
screen and keeps its session; every other state is sent to the login
surface.
"""

import logging
from enum import Enum
from typing import Callable

from newsroom.config import settings
from newsroom.schemas.activity import ActivityAction
from newsroom.schemas.device import DeviceRecord, DeviceStatus
from newsroom.trust.audit import ActivityAuditLog
from newsroom.trust.identity import DeviceMetadata
from newsroom.trust.registry import TrustRegistryClient
from newsroom.trust.store import DeviceStore

logger = logging.getLogger(__name__)

HOME_PATH = "/"
LOGIN_PATH = "/login"
AWAITING_APPROVAL_PATH = "/awaiting-approval"


class GateState(str, Enum):
    UNKNOWN = "UNKNOWN"
    NO_DEVICES = "NO_DEVICES"
    THIS_DEVICE_APPROVED = "THIS_DEVICE_APPROVED"
    THIS_DEVICE_PENDING = "THIS_DEVICE_PENDING"
    THIS_DEVICE_BLOCKED = "THIS_DEVICE_BLOCKED"


class RouteDecision(str, Enum):
    ALLOW = "ALLOW"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    REDIRECT_LOGIN = "REDIRECT_LOGIN"
    REDIRECT_HOME = "REDIRECT_HOME"


TransitionListener = Callable[[GateState, GateState], None]
ApprovedHook = Callable[[str], None]


class AuthorizationGate:
    def __init__(
        self,
        store: DeviceStore,
        registry: TrustRegistryClient,
        device_id: str,
        metadata: DeviceMetadata,
        audit: ActivityAuditLog | None = None,
        protected_paths: list[str] | None = None,
    ):
        self.store = store
        self.registry = registry
        self.device_id = device_id
        self.metadata = metadata
        self.audit = audit
        self.protected_paths = protected_paths if protected_paths is not None else list(settings.protected_paths)

        self.account_id: str | None = None
        self.state = GateState.UNKNOWN
        self._seen_self = False
        self._approved_once = False
        self._registering = False
        self._listeners: list[TransitionListener] = []
        self._approved_hooks: list[ApprovedHook] = []
        self._unsubscribe = store.subscribe(self._on_store_change)

    # --- wiring ---

    def on_transition(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def on_first_approval(self, hook: ApprovedHook) -> None:
        """Called once per bound session on the first entry into THIS_DEVICE_APPROVED."""
        self._approved_hooks.append(hook)

    def bind(self, account_id: str | None) -> None:
        """Start gating a (new) account. Resets per-session memory."""
        self.account_id = account_id
        self._seen_self = False
        self._approved_once = False
        self._transition(GateState.UNKNOWN)

    def close(self) -> None:
        self._unsubscribe()

    # --- state ---

    def evaluate(self) -> GateState:
        """Derive the gate state from the store, without side effects."""
        account_id = self.account_id
        if account_id is None or not self.store.is_loaded(account_id):
            return GateState.UNKNOWN

        me = self.store.get(account_id, self.device_id)
        if me is not None:
            if me.status == DeviceStatus.APPROVED:
                return GateState.THIS_DEVICE_APPROVED
            if me.status == DeviceStatus.PENDING:
                return GateState.THIS_DEVICE_PENDING
            return GateState.THIS_DEVICE_BLOCKED

        # Revoked or rejected during this session: never re-promote
        if self._seen_self:
            return GateState.THIS_DEVICE_BLOCKED
        if not self.store.devices_for(account_id):
            return GateState.NO_DEVICES
        return GateState.THIS_DEVICE_BLOCKED

    def _on_store_change(self, store: DeviceStore) -> None:
        if self._registering or self.account_id is None:
            return
        self._refresh()

    def _refresh(self) -> None:
        if self.account_id and self.store.get(self.account_id, self.device_id) is not None:
            self._seen_self = True
        self._transition(self.evaluate())

    def _transition(self, new: GateState) -> None:
        old = self.state
        if new == old:
            return
        self.state = new
        logger.info("Gate %s -> %s (account=%s device=%s)", old.value, new.value, self.account_id, self.device_id)

        if new == GateState.THIS_DEVICE_APPROVED and not self._approved_once and self.account_id:
            self._approved_once = True
            if self.audit is not None:
                self.audit.append(ActivityAction.LOGIN, f"Signed in from {self.metadata.name}")
            for hook in list(self._approved_hooks):
                hook(self.account_id)

        for listener in list(self._listeners):
            listener(old, new)

    # --- loading and registration ---

    async def load(self) -> GateState:
        """Fetch the account's devices and register this device if needed.

        Safe to call repeatedly; the periodic refetch does exactly that. A
        failed fetch leaves the gate UNKNOWN and never self-bootstraps.
        """
        account_id = self.account_id
        if account_id is None or self._registering:
            return self.state

        result = await self.registry.list_devices(account_id)
        if not result.ok:
            logger.warning("Gate stays %s, device list unavailable: %s", self.state.value, result.reason)
            return self.state

        self._refresh()
        if self.state == GateState.NO_DEVICES:
            await self._register(primary=True)
        elif self.store.get(account_id, self.device_id) is None and not self._seen_self:
            await self._register(primary=False)
        return self.state

    def _record(self, primary: bool) -> DeviceRecord:
        return DeviceRecord(
            id=self.device_id,
            account_id=self.account_id,
            device_name=self.metadata.name,
            device_type=self.metadata.kind,
            browser=self.metadata.browser_label,
            location="Primary Station" if primary else "New Login",
            last_active="Active Now" if primary else "Requesting Access",
            status=DeviceStatus.APPROVED if primary else DeviceStatus.PENDING,
            is_primary=primary,
        )

    async def _register(self, primary: bool) -> None:
        """Register this device, moving to the optimistic state right away."""
        self._registering = True
        try:
            self._seen_self = True
            self._transition(GateState.THIS_DEVICE_APPROVED if primary else GateState.THIS_DEVICE_PENDING)
            result = await self.registry.upsert_device(self._record(primary))
            if primary and not result.ok and result.conflict:
                # Another profile won the race to become primary
                logger.warning("Primary claim for %s rejected, registering as pending", self.device_id)
                self._transition(GateState.THIS_DEVICE_PENDING)
                result = await self.registry.upsert_device(self._record(primary=False))
            if not result.ok:
                logger.warning("Device registration failed for %s: %s", self.device_id, result.reason)
                # The write is known to have failed; retry on the next load
                self._seen_self = False
                self.store.remove(self.account_id, self.device_id)
        finally:
            self._registering = False
        self._refresh()

    # --- routing ---

    def is_protected(self, path: str) -> bool:
        path = path.lower().rstrip("/") or "/"
        if path == AWAITING_APPROVAL_PATH:
            return True
        return any(path == p or path.startswith(p + "/") for p in self.protected_paths)

    def decide(self, path: str) -> RouteDecision:
        """Where a navigation to `path` should land."""
        if not self.is_protected(path):
            return RouteDecision.ALLOW
        if self.state == GateState.THIS_DEVICE_APPROVED:
            # Nothing to wait for any more
            if path.lower().rstrip("/") == AWAITING_APPROVAL_PATH:
                return RouteDecision.REDIRECT_HOME
            return RouteDecision.ALLOW
        if self.state == GateState.THIS_DEVICE_PENDING:
            return RouteDecision.AWAITING_APPROVAL
        return RouteDecision.REDIRECT_LOGIN

    def landing(self, path: str) -> str:
        """The path a navigation to `path` actually ends up on."""
        decision = self.decide(path)
        if decision == RouteDecision.ALLOW:
            return path
        if decision == RouteDecision.AWAITING_APPROVAL:
            return AWAITING_APPROVAL_PATH
        if decision == RouteDecision.REDIRECT_HOME:
            return HOME_PATH
        return LOGIN_PATH
