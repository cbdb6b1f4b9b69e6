"""Local reconciliation cache for trusted devices.

Owned by the application shell. Full refetches, optimistic writes, polling
and realtime events all go through the same merge, keyed by row identity
(account_id, id) with last-writer-wins, so their arrival order does not
matter. The remote registry stays the source of truth: any account can be
rebuilt from scratch with replace_account().
"""

import logging
from typing import Callable, Iterable

from newsroom.schemas.device import ChangeEvent, ChangeType, DeviceRecord, DeviceStatus

logger = logging.getLogger(__name__)

Key = tuple[str, str]
Listener = Callable[["DeviceStore"], None]


class DeviceStore:
    def __init__(self):
        self._rows: dict[Key, DeviceRecord] = {}
        self._listeners: list[Listener] = []
        self._loaded_accounts: set[str] = set()

    # --- reads ---

    def devices_for(self, account_id: str) -> list[DeviceRecord]:
        return [d for d in self._rows.values() if d.account_id == account_id]

    def get(self, account_id: str, device_id: str) -> DeviceRecord | None:
        return self._rows.get((account_id, device_id))

    def awaiting_verification(self) -> list[DeviceRecord]:
        return [d for d in self._rows.values() if d.status == DeviceStatus.AWAITING_VERIFICATION]

    def is_loaded(self, account_id: str) -> bool:
        """True once a full fetch for the account has landed."""
        return account_id in self._loaded_accounts

    def __len__(self) -> int:
        return len(self._rows)

    # --- subscriptions ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # --- mutations ---

    def replace_account(self, account_id: str, records: Iterable[DeviceRecord]) -> None:
        """Full refetch result: the account's rows become exactly `records`."""
        for key in [k for k in self._rows if k[0] == account_id]:
            del self._rows[key]
        for record in records:
            self._rows[record.key] = record
        self._loaded_accounts.add(account_id)
        self._notify()

    def replace_moderation(self, records: Iterable[DeviceRecord]) -> None:
        """Full refetch of the cross-account awaiting_verification queue.

        Rows of accounts that were never loaded are only kept while queued.
        """
        awaiting = DeviceStatus.AWAITING_VERIFICATION
        for key in [k for k, d in self._rows.items() if d.status == awaiting or k[0] not in self._loaded_accounts]:
            del self._rows[key]
        for record in records:
            self._rows[record.key] = record
        self._notify()

    def upsert(self, record: DeviceRecord) -> None:
        self._rows[record.key] = record
        self._notify()

    def remove(self, account_id: str, device_id: str) -> None:
        if self._rows.pop((account_id, device_id), None) is not None:
            self._notify()

    def set_status(self, account_id: str, device_id: str, status: DeviceStatus) -> None:
        device = self._rows.get((account_id, device_id))
        if device is None or device.status == status:
            return
        self._rows[device.key] = device.model_copy(update={"status": status})
        self._notify()

    def apply_event(self, event: ChangeEvent) -> None:
        if event.type == ChangeType.DELETE:
            self.remove(event.row.account_id, event.row.id)
        elif event.record is not None:
            self.upsert(event.record)
        else:
            logger.debug("Ignoring %s event without a record", event.type)

    def clear(self) -> None:
        self._rows.clear()
        self._loaded_accounts.clear()
        self._notify()
