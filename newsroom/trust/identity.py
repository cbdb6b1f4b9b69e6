"""Device identity: a stable per-browser-profile id, plus user-agent metadata.

The id is read from durable storage first, then from the session-scoped
fallback. A new id is only mirrored to the session tier when the durable
write did not stick. If neither tier works the id lives in a process-local
map, so the device looks new after every restart.
"""

import json
import logging
import re
import secrets
from dataclasses import dataclass
from pathlib import Path

from newsroom.schemas.device import DeviceKind

logger = logging.getLogger(__name__)

DURABLE_KEY = "dn_device_id"
SESSION_KEY = "dn_temp_device_id"


class StorageUnavailable(Exception):
    """A storage tier cannot be read or written."""


class KeyValueStorage:
    def get(self, key: str) -> str | None:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):
    """Session-scoped storage: lives as long as this object."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class FileStorage(KeyValueStorage):
    """Durable storage: a small JSON document on disk."""

    def __init__(self, path: Path):
        self._path = Path(path)

    def _load(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            return json.loads(self._path.read_text() or "{}")
        except (OSError, ValueError) as e:
            raise StorageUnavailable(str(e)) from e

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        try:
            data = self._load()
            data[key] = value
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(data))
        except OSError as e:
            raise StorageUnavailable(str(e)) from e


class DeviceIdentityResolver:
    """Resolves this profile's device id across storage tiers."""

    def __init__(self, durable: KeyValueStorage, session: KeyValueStorage | None = None):
        self._durable = durable
        self._session = session or MemoryStorage()
        self._memory: dict[str, str] = {}

    def _get(self, storage: KeyValueStorage, key: str) -> str | None:
        try:
            return storage.get(key)
        except StorageUnavailable:
            return self._memory.get(key)

    def _stored(self, storage: KeyValueStorage, key: str) -> str | None:
        """What the storage itself holds, ignoring the in-memory fallback."""
        try:
            return storage.get(key)
        except StorageUnavailable:
            return None

    def _set(self, storage: KeyValueStorage, key: str, value: str) -> None:
        try:
            storage.set(key, value)
        except StorageUnavailable:
            logger.debug("Storage unavailable for %s, keeping id in memory", key)
            self._memory[key] = value

    def get_device_id(self) -> str:
        device_id = self._get(self._durable, DURABLE_KEY)
        if device_id:
            return device_id

        device_id = self._get(self._session, SESSION_KEY)
        if device_id:
            return device_id

        device_id = f"dev_{secrets.token_hex(4)}"
        self._set(self._durable, DURABLE_KEY, device_id)

        # Mirror to the session tier only if the durable write did not persist
        if self._stored(self._durable, DURABLE_KEY) != device_id:
            self._set(self._session, SESSION_KEY, device_id)

        return device_id


@dataclass(frozen=True)
class DeviceMetadata:
    name: str
    kind: DeviceKind
    browser_label: str


_TABLET_RE = re.compile(r"tablet|ipad|playbook|silk", re.IGNORECASE)
_MOBILE_RE = re.compile(
    r"Mobile|Android|iP(hone|od)|IEMobile|BlackBerry|Kindle|Silk-Accelerated|(hpw|web)OS|Opera M(obi|ini)"
)
_BROWSER_RE = re.compile(r"(firefox|msie|trident|chrome|safari|opera)", re.IGNORECASE)


def get_device_metadata(user_agent: str | None, platform: str | None = None) -> DeviceMetadata:
    """Describe a device from its user-agent string. Pure, no I/O."""
    ua = user_agent or "Unknown"
    if _TABLET_RE.search(ua):
        kind = DeviceKind.TABLET
    elif _MOBILE_RE.search(ua):
        kind = DeviceKind.MOBILE
    else:
        kind = DeviceKind.DESKTOP

    match = _BROWSER_RE.search(ua)
    browser = match.group(0) if match else "Unknown Browser"

    return DeviceMetadata(
        name=f"{kind.value.capitalize()} - {platform or 'Unknown OS'}",
        kind=kind,
        browser_label=browser,
    )
