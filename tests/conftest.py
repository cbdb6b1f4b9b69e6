"""Shared test setup: temp directories, the app, and API helpers."""

import asyncio
import os
import tempfile
import uuid

# Point settings at temp dirs before anything imports newsroom.config
_DATA_DIR = tempfile.mkdtemp()
os.environ["NEWSROOM_DATA_DIR"] = _DATA_DIR
os.environ["NEWSROOM_CLIENT_STATE_DIR"] = tempfile.mkdtemp()
os.environ["NEWSROOM_DB_PATH"] = os.path.join(_DATA_DIR, "test.db")

import httpx
import pytest
from fastapi.testclient import TestClient

from newsroom.database import init_db, session_scope
from newsroom.main import app
from newsroom.models.account import Account
from newsroom.services import identity_service
from newsroom.trust.api_client import NewsroomApiClient
from newsroom.trust.identity import DURABLE_KEY, DeviceIdentityResolver, MemoryStorage
from newsroom.trust.shell import TrustShell

init_db()

UA_DESKTOP = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0 Safari/537.36"
UA_PHONE = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}@newsroom.test"


def device_body(primary: bool = False, status: str | None = None, name: str = "Desktop - Win32") -> dict:
    return {
        "device_name": name,
        "device_type": "desktop",
        "browser": "Chrome",
        "location": "Primary Station" if primary else "New Login",
        "last_active": "Active Now" if primary else "Requesting Access",
        "status": status or ("approved" if primary else "pending"),
        "is_primary": primary,
    }


def set_role(account_id: str, role: str) -> None:
    with session_scope() as session:
        account = session.get(Account, account_id)
        account.role = role
        session.add(account)
        session.commit()


@pytest.fixture(scope="session")
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def account(client):
    """A fresh reader account: (email, password, token, account_id)."""
    email = unique_email()
    r = client.post("/api/v1/auth/signup", json={
        "email": email,
        "password": "press-pass-1",
        "display_name": "Desk Reporter",
    })
    assert r.status_code == 201, r.text
    data = r.json()
    return email, "press-pass-1", data["access_token"], data["session"]["account_id"]


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def signin_token(client, email: str, password: str, device_id: str | None = None) -> str:
    """An access token bound to `device_id`."""
    r = client.post("/api/v1/auth/signin", json={"email": email, "password": password, "device_id": device_id})
    assert r.status_code == 200, r.text
    return r.json()["access_token"]


@pytest.fixture
def as_device(client, account):
    """Headers for the fixture account signed in on a given device."""
    email, password, _, _ = account
    tokens = {}

    def headers(device_id: str) -> dict:
        if device_id not in tokens:
            tokens[device_id] = signin_token(client, email, password, device_id)
        return auth_headers(tokens[device_id])

    return headers


@pytest.fixture
def recovery_codes():
    """Captures delivered recovery codes by e-mail address."""
    codes = {}
    identity_service.set_code_sink(lambda email, code: codes.__setitem__(email, code))
    yield codes
    identity_service.set_code_sink(None)


def asgi_api(token: str | None = None, device_id: str | None = None) -> NewsroomApiClient:
    """An API client that talks to the app in-process."""
    return NewsroomApiClient(
        "http://testserver",
        device_id=device_id,
        access_token=token,
        transport=httpx.ASGITransport(app=app),
    )


def failing_api(status_code: int = 503, token: str = "t", device_id: str | None = None) -> NewsroomApiClient:
    """An API client whose every request fails with the given status."""
    transport = httpx.MockTransport(lambda request: httpx.Response(status_code, json={"detail": "unavailable"}))
    return NewsroomApiClient("http://testserver", device_id=device_id, access_token=token, transport=transport)


class QueueSource:
    """In-memory change feed for a RealtimeChannel; put None to end the stream."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.opened: list[tuple[str, bool]] = []

    def __call__(self, account_id, privileged):
        self.opened.append((account_id, privileged))
        return self._events()

    async def _events(self):
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event


def make_shell(device_id: str, user_agent: str = UA_DESKTOP, source: QueueSource | None = None,
               api: NewsroomApiClient | None = None) -> TrustShell:
    """A trust shell for one browser profile whose stored device id is `device_id`."""
    durable = MemoryStorage()
    durable.set(DURABLE_KEY, device_id)
    return TrustShell(
        api or asgi_api(),
        DeviceIdentityResolver(durable),
        user_agent,
        platform="Win32",
        source_factory=source or QueueSource(),
        poll_interval=3600,
        session_check_timeout=5,
    )


async def close_shell(shell: TrustShell) -> None:
    await shell.stop()
    await shell.api.aclose()
