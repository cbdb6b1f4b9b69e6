"""Multi-device trust flows against the in-process API."""

import asyncio

import httpx
import pytest

from conftest import (
    UA_DESKTOP,
    UA_PHONE,
    QueueSource,
    asgi_api,
    auth_headers,
    close_shell,
    device_body,
    failing_api,
    make_shell,
    set_role,
    signin_token,
    unique_email,
)

from newsroom.config import settings
from newsroom.main import app
from newsroom.schemas.activity import ActivityAction
from newsroom.schemas.device import ChangeEvent, ChangeType, DeviceRecord, DeviceStatus
from newsroom.trust.api_client import NewsroomApiClient
from newsroom.trust.gate import AuthorizationGate, GateState, RouteDecision
from newsroom.trust.handshake import TrustActionError
from newsroom.trust.identity import get_device_metadata
from newsroom.trust.registry import TrustRegistryClient
from newsroom.trust.results import Ok
from newsroom.trust.shell import TrustShell
from newsroom.trust.store import DeviceStore

API = "/api/v1"


async def settle():
    await asyncio.sleep(0.05)


async def test_primary_approves_second_device(account):
    email, password, _, account_id = account
    d2_source = QueueSource()
    d1 = make_shell("dev_d1", UA_DESKTOP)
    d2 = make_shell("dev_d2", UA_PHONE, source=d2_source)
    try:
        assert await d1.sign_in(email, password) == GateState.THIS_DEVICE_APPROVED
        me = d1.store.get(account_id, "dev_d1")
        assert me.is_primary and me.status == DeviceStatus.APPROVED
        assert d1.decide("/editor") == RouteDecision.ALLOW

        assert await d2.sign_in(email, password) == GateState.THIS_DEVICE_PENDING
        assert d2.decide("/editor/drafts") == RouteDecision.AWAITING_APPROVAL
        assert d2.decide("/") == RouteDecision.ALLOW
        assert not d2.handshake.is_primary_session
        assert d2.handshake.pending_devices() == []

        # d1 picks up the request on its next refresh
        await d1.gate.load()
        assert [d.id for d in d1.handshake.pending_devices()] == ["dev_d2"]
        assert d1.handshake.badge_count == 1

        approved = await d1.handshake.approve("dev_d2")
        assert approved.status == DeviceStatus.APPROVED
        assert not approved.is_primary
        assert d1.handshake.badge_count == 0

        # d2 learns about it from the realtime feed, without a refetch
        await settle()
        await d2_source.queue.put(ChangeEvent(
            type=ChangeType.UPDATE,
            record=approved,
            old=approved.model_copy(update={"status": DeviceStatus.PENDING}),
        ))
        await settle()
        assert d2.gate.state == GateState.THIS_DEVICE_APPROVED
        assert d2.decide("/editor") == RouteDecision.ALLOW

        # Approving again is harmless
        await d1.handshake.approve("dev_d2")
    finally:
        await close_shell(d1)
        await close_shell(d2)


async def test_rejected_device_is_blocked_until_a_new_session(account):
    email, password, _, account_id = account
    d1 = make_shell("dev_d1", UA_DESKTOP)
    d2 = make_shell("dev_d2", UA_PHONE)
    try:
        await d1.sign_in(email, password)
        assert await d2.sign_in(email, password) == GateState.THIS_DEVICE_PENDING

        await d1.gate.load()
        await d1.handshake.reject("dev_d2")
        assert d1.store.get(account_id, "dev_d2") is None
        await d1.handshake.reject("dev_d2")  # already gone

        # Polling sees the row gone and does not register again
        assert await d2.gate.load() == GateState.THIS_DEVICE_BLOCKED
        assert await d2.gate.load() == GateState.THIS_DEVICE_BLOCKED
        assert d2.decide("/editor") == RouteDecision.REDIRECT_LOGIN
        assert d2.store.get(account_id, "dev_d2") is None
    finally:
        await close_shell(d2)

    # Signing in again from the same profile asks for approval again
    d2_again = make_shell("dev_d2", UA_PHONE)
    try:
        assert await d2_again.sign_in(email, password) == GateState.THIS_DEVICE_PENDING
        row = d2_again.store.get(account_id, "dev_d2")
        assert row.status == DeviceStatus.PENDING
        assert not row.is_primary
    finally:
        await close_shell(d2_again)
        await close_shell(d1)


async def test_revoke_keeps_primary(account):
    email, password, _, account_id = account
    d1 = make_shell("dev_d1", UA_DESKTOP)
    d2 = make_shell("dev_d2", UA_PHONE)
    try:
        await d1.sign_in(email, password)
        await d2.sign_in(email, password)
        await d1.gate.load()
        await d1.handshake.approve("dev_d2")

        with pytest.raises(TrustActionError):
            await d1.handshake.revoke("dev_d1")

        await d1.handshake.revoke("dev_d2")
        await d1.handshake.revoke("dev_d2")
        assert [d.id for d in d1.handshake.my_devices()] == ["dev_d1"]
        assert await d1.gate.load() == GateState.THIS_DEVICE_APPROVED

        assert await d2.gate.load() == GateState.THIS_DEVICE_BLOCKED
    finally:
        await close_shell(d1)
        await close_shell(d2)


async def test_secondary_cannot_approve_others(account):
    email, password, _, _ = account
    d1 = make_shell("dev_d1", UA_DESKTOP)
    d2 = make_shell("dev_d2", UA_PHONE)
    d3 = make_shell("dev_d3", UA_PHONE)
    try:
        await d1.sign_in(email, password)
        await d2.sign_in(email, password)
        await d3.sign_in(email, password)

        with pytest.raises(TrustActionError) as exc:
            await d2.handshake.approve("dev_d3")
        assert exc.value.status_code == 403
        # The refetch after the refusal still shows it pending
        assert d2.store.get(d2.gate.account_id, "dev_d3").status == DeviceStatus.PENDING
    finally:
        for shell in (d1, d2, d3):
            await close_shell(shell)


async def test_emergency_recovery_reanchors_primary(account, recovery_codes):
    email, password, _, account_id = account
    d1 = make_shell("dev_d1", UA_DESKTOP)
    d3 = make_shell("dev_d3", UA_PHONE)
    try:
        await d1.sign_in(email, password)

        await d3.recovery.request_code(email)
        code = recovery_codes[email]

        state = await d3.emergency_reset(email, code, "fresh-pass-2")
        assert state == GateState.THIS_DEVICE_APPROVED
        me = d3.store.get(account_id, "dev_d3")
        assert me.is_primary and me.status == DeviceStatus.APPROVED
        primaries = [d.id for d in d3.store.devices_for(account_id) if d.is_primary]
        assert sorted(primaries) == ["dev_d1", "dev_d3"]

        # The old primary keeps working
        assert await d1.gate.load() == GateState.THIS_DEVICE_APPROVED
        assert d1.handshake.is_primary_session

        await d3.audit.drain()
        entries = await d3.audit.list()
        recovered = [e for e in entries if "Emergency recovery" in e.details]
        assert recovered and recovered[0].action == ActivityAction.LOGIN
    finally:
        await close_shell(d1)
        await close_shell(d3)


async def test_wrong_recovery_code_surfaces_error(account, recovery_codes):
    email, _, _, _ = account
    d3 = make_shell("dev_d3", UA_PHONE)
    try:
        await d3.recovery.request_code(email)
        wrong = "11111111" if recovery_codes[email] == "00000000" else "00000000"
        with pytest.raises(TrustActionError) as exc:
            await d3.emergency_reset(email, wrong, "x-pass-3")
        assert exc.value.status_code == 401
        assert d3.session is None
    finally:
        await close_shell(d3)


async def test_failed_fetch_keeps_gate_unknown():
    store = DeviceStore()
    api = failing_api(503, device_id="dev_x")
    gate = AuthorizationGate(store, TrustRegistryClient(api, store), "dev_x", get_device_metadata(UA_DESKTOP))
    try:
        gate.bind("acc_x")
        assert await gate.load() == GateState.UNKNOWN
        assert len(store) == 0
        assert gate.decide("/editor") == RouteDecision.REDIRECT_LOGIN
        assert gate.decide("/") == RouteDecision.ALLOW
    finally:
        gate.close()
        await api.aclose()


class StaleFirstFetch(TrustRegistryClient):
    """Reports an empty device list once, as if another profile had not registered yet."""

    stale = True

    async def list_devices(self, account_id):
        if self.stale:
            self.stale = False
            self.store.replace_account(account_id, [])
            return Ok([])
        return await super().list_devices(account_id)


async def test_losing_the_primary_race_falls_back_to_pending(client, account):
    email, password, _, account_id = account
    d1_headers = auth_headers(signin_token(client, email, password, "dev_d1"))
    r = client.put(f"{API}/devices/dev_d1", json=device_body(primary=True), headers=d1_headers)
    assert r.status_code == 200

    store = DeviceStore()
    api = asgi_api(signin_token(client, email, password, "dev_d2"), device_id="dev_d2")
    gate = AuthorizationGate(store, StaleFirstFetch(api, store), "dev_d2", get_device_metadata(UA_PHONE))
    transitions = []
    gate.on_transition(lambda old, new: transitions.append(new))
    try:
        gate.bind(account_id)
        assert await gate.load() == GateState.THIS_DEVICE_PENDING
        assert GateState.THIS_DEVICE_APPROVED in transitions
        assert transitions[-1] == GateState.THIS_DEVICE_PENDING

        row = store.get(account_id, "dev_d2")
        assert row.status == DeviceStatus.PENDING and not row.is_primary
        assert store.get(account_id, "dev_d1").is_primary
    finally:
        gate.close()
        await api.aclose()


async def test_failed_write_is_reverted_by_refetch():
    pending = DeviceRecord(id="dev_d1", account_id="acc_a", device_name="Desktop - Win32")

    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json=[pending.model_dump(mode="json")])
        return httpx.Response(500, json={"detail": "boom"})

    api = NewsroomApiClient("http://testserver", access_token="t", transport=httpx.MockTransport(handler))
    store = DeviceStore()
    registry = TrustRegistryClient(api, store, account_id="acc_a")
    try:
        await registry.list_devices("acc_a")
        seen = []
        store.subscribe(lambda s: seen.append(s.get("acc_a", "dev_d1").status))

        result = await registry.set_status("acc_a", "dev_d1", DeviceStatus.APPROVED)
        assert not result.ok
        assert result.status_code == 500
        assert seen == [DeviceStatus.APPROVED, DeviceStatus.PENDING]
        assert store.get("acc_a", "dev_d1").status == DeviceStatus.PENDING
    finally:
        await api.aclose()


async def test_session_check_timeout_ends_loading():
    class SlowApi(NewsroomApiClient):
        async def get_session(self):
            await asyncio.sleep(5)

    shell = make_shell("dev_slow", api=SlowApi("http://testserver", transport=httpx.ASGITransport(app=app)))
    shell.session_check_timeout = 0.05
    try:
        assert await shell.start("some-token") == GateState.UNKNOWN
        assert not shell.loading
        assert shell.session is None
        assert shell.decide("/") == RouteDecision.ALLOW
        assert shell.decide("/writer") == RouteDecision.REDIRECT_LOGIN
    finally:
        await close_shell(shell)


async def test_sign_in_and_out_are_audited(account):
    email, password, token, _ = account
    shell = make_shell("dev_audit", UA_DESKTOP)
    try:
        assert await shell.sign_in(email, password) == GateState.THIS_DEVICE_APPROVED
        await shell.sign_out()
        assert shell.session is None
        assert shell.gate.state == GateState.UNKNOWN
        assert shell.handshake is None
        assert shell.decide("/editor") == RouteDecision.REDIRECT_LOGIN
    finally:
        await close_shell(shell)

    async with asgi_api(token) as api:
        actions = [e.action.value for e in await api.list_activity()]
    assert "LOGIN" in actions
    assert "LOGOUT" in actions


async def test_editor_moderates_awaiting_devices(client, account):
    email, password, _, reader_id = account
    r = client.put(
        f"{API}/devices/dev_q",
        json=device_body(status="awaiting_verification"),
        headers=auth_headers(signin_token(client, email, password, "dev_q")),
    )
    assert r.status_code == 200

    editor_email = unique_email("editor")
    r = client.post(f"{API}/auth/signup", json={
        "email": editor_email, "password": "desk-pass-9", "display_name": "Night Editor",
    })
    set_role(r.json()["session"]["account_id"], "EDITOR")

    source = QueueSource()
    shell = make_shell("dev_editor", UA_DESKTOP, source=source)
    try:
        assert await shell.sign_in(editor_email, "desk-pass-9") == GateState.THIS_DEVICE_APPROVED
        assert shell.privileged
        assert ("dev_q", reader_id) in [(d.id, d.account_id) for d in shell.moderation.items()]

        approved = await shell.moderation.approve(reader_id, "dev_q")
        assert approved.status == DeviceStatus.APPROVED
        assert "dev_q" not in [d.id for d in shell.moderation.items() if d.account_id == reader_id]
        # Approved foreign rows are not mirrored in this session's cache
        assert shell.store.get(reader_id, "dev_q") is None

        await settle()
        assert source.opened[-1][1] is True
    finally:
        await close_shell(shell)


async def test_switch_account_on_shared_profile(client, account):
    email_a, password_a, _, account_a = account
    email_b = unique_email("second")
    r = client.post(f"{API}/auth/signup", json={
        "email": email_b, "password": "press-pass-2", "display_name": "Copy Desk",
    })
    account_b = r.json()["session"]["account_id"]

    source = QueueSource()
    shell = make_shell("dev_shared", UA_DESKTOP, source=source)
    try:
        assert await shell.sign_in(email_a, password_a) == GateState.THIS_DEVICE_APPROVED
        assert await shell.switch_account(email_b, "press-pass-2") == GateState.THIS_DEVICE_APPROVED
        assert shell.gate.account_id == account_b
        assert shell.store.get(account_b, "dev_shared").is_primary
        # Signing out drops the previous account from the cache
        assert shell.store.get(account_a, "dev_shared") is None

        await settle()
        assert source.opened[-1] == (account_b, False)
    finally:
        await close_shell(shell)


async def test_api_client_identity_calls():
    async with asgi_api() as api:
        auth = await api.sign_up(unique_email("api"), "press-pass-4", "Stringer")
        assert api.access_token == auth.access_token

        updated = await api.update_user(display_name="Senior Stringer")
        assert updated.display_name == "Senior Stringer"
        assert (await api.get_session()).account_id == auth.session.account_id

        api.sign_out()
        assert await api.get_session() is None


async def test_shell_from_settings_persists_device_id():
    first = TrustShell.from_settings(UA_DESKTOP, "MacIntel")
    second = TrustShell.from_settings(UA_DESKTOP, "MacIntel")
    try:
        assert first.device_id == second.device_id
        assert first.metadata.name == "Desktop - MacIntel"
        assert first.api.base_url == settings.api_base_url
    finally:
        await close_shell(first)
        await close_shell(second)
