"""Async HTTP client for the newsroom API (registry, identity, activity)."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from newsroom.config import settings
from newsroom.schemas.activity import ActivityEntry
from newsroom.schemas.auth import AuthResponse, RecoveryResetResponse, SessionInfo
from newsroom.schemas.device import DeviceRecord, DeviceStatus, DeviceUpsert

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class NewsroomApiError(RuntimeError):
    """Raised on transport failure or a non-2xx response."""

    def __init__(self, message: str, *, status_code: int | None = None, payload: Any | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class NewsroomApiClient:
    """Thin async wrapper over httpx.AsyncClient.

    Carries the bearer token on every request. Tokens are issued for the
    device id of this browser profile, which is sent at sign-in.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        device_id: str | None = None,
        access_token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.api_base_url
        self.device_id = device_id
        self.access_token = access_token
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "NewsroomApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Mapping[str, Any] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method,
                f"{API_PREFIX}{path}",
                json=json,
                params=params,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise NewsroomApiError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            detail = payload.get("detail") if isinstance(payload, dict) else payload
            raise NewsroomApiError(
                f"{method} {path} -> {response.status_code}: {detail}",
                status_code=response.status_code,
                payload=payload,
            )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # --- Identity ---

    async def sign_up(self, email: str, password: str, display_name: str) -> AuthResponse:
        data = await self.request("POST", "/auth/signup", json={
            "email": email,
            "password": password,
            "display_name": display_name,
            "device_id": self.device_id,
        })
        auth = AuthResponse.model_validate(data)
        self.access_token = auth.access_token
        return auth

    async def sign_in(self, email: str, password: str) -> AuthResponse:
        data = await self.request("POST", "/auth/signin", json={
            "email": email,
            "password": password,
            "device_id": self.device_id,
        })
        auth = AuthResponse.model_validate(data)
        self.access_token = auth.access_token
        return auth

    def sign_out(self) -> None:
        self.access_token = None

    async def get_session(self) -> SessionInfo | None:
        """Session introspection. None when signed out or the token is rejected."""
        if not self.access_token:
            return None
        try:
            data = await self.request("GET", "/users/me")
        except NewsroomApiError as exc:
            if exc.status_code in (401, 403):
                return None
            raise
        return SessionInfo.model_validate(data)

    async def update_user(self, **changes: Any) -> SessionInfo:
        data = await self.request("PATCH", "/users/me", json=changes)
        return SessionInfo.model_validate(data)

    async def send_password_recovery(self, email: str) -> dict:
        return await self.request("POST", "/auth/recovery", json={"email": email})

    async def reset_password(
        self,
        email: str,
        code: str,
        new_password: str,
        device_id: str,
        device: DeviceUpsert,
    ) -> RecoveryResetResponse:
        data = await self.request("POST", "/auth/recovery/reset", json={
            "email": email,
            "code": code,
            "new_password": new_password,
            "device_id": device_id,
            "device": device.model_dump(mode="json"),
        })
        result = RecoveryResetResponse.model_validate(data)
        self.access_token = result.access_token
        return result

    # --- Trust registry ---

    async def list_devices(self) -> list[DeviceRecord]:
        data = await self.request("GET", "/devices")
        return [DeviceRecord.model_validate(d) for d in data]

    async def list_moderation_queue(self) -> list[DeviceRecord]:
        data = await self.request("GET", "/devices/moderation")
        return [DeviceRecord.model_validate(d) for d in data]

    async def put_device(self, device_id: str, device: DeviceUpsert) -> DeviceRecord:
        data = await self.request("PUT", f"/devices/{device_id}", json=device.model_dump(mode="json"))
        return DeviceRecord.model_validate(data)

    async def set_device_status(
        self, device_id: str, status: DeviceStatus, account_id: str | None = None,
    ) -> DeviceRecord:
        params = {"account_id": account_id} if account_id else None
        data = await self.request(
            "PATCH", f"/devices/{device_id}/status", json={"status": status.value}, params=params,
        )
        return DeviceRecord.model_validate(data)

    async def delete_device(self, device_id: str, account_id: str | None = None) -> None:
        params = {"account_id": account_id} if account_id else None
        await self.request("DELETE", f"/devices/{device_id}", params=params)

    # --- Activity ---

    async def append_activity(self, action: str, details: str, device_name: str, location: str = "") -> None:
        await self.request("POST", "/activity", json={
            "action": action,
            "details": details,
            "device_name": device_name,
            "location": location,
        })

    async def list_activity(self, limit: int = 50, scope: str = "own") -> list[ActivityEntry]:
        data = await self.request("GET", "/activity", params={"limit": limit, "scope": scope})
        return [ActivityEntry.model_validate(e) for e in data]
