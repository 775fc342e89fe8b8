"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from blemaster.core.model import ConnectEvent, EventKind, PrepareEvent, ScanRecord, TransportEvent


class Transport(Protocol):
    """Callback-based BLE central backend.

    None of the attribute I/O calls report an outcome through their return
    value; completion arrives later through handlers registered with
    ``on_event``.
    """

    def start_scan(self, callback: Callable[[ScanRecord], None]) -> bool: ...

    def stop_scan(self) -> bool: ...

    def connect(self, address: bytes, callback: Callable[[ConnectEvent], None]) -> bool: ...

    def disconnect(self, connection_id: int) -> bool: ...

    def pair(self, connection_id: int) -> bool: ...

    def on_prepare(self, callback: Callable[[PrepareEvent], None]) -> None: ...

    def build_profile(self, tree: dict[str, Any]) -> bool: ...

    def read_characteristic(self, profile_handle: int, uuid: str) -> None: ...

    def write_characteristic(self, profile_handle: int, uuid: str, data: bytes, length: int) -> None: ...

    def write_characteristic_without_response(
        self,
        profile_handle: int,
        uuid: str,
        data: bytes,
        length: int,
    ) -> None: ...

    def read_descriptor(self, profile_handle: int, chara: str, desc: str) -> None: ...

    def write_descriptor(
        self,
        profile_handle: int,
        chara: str,
        desc: str,
        data: bytes,
        length: int,
    ) -> None: ...

    def on_event(self, kind: EventKind, handler: Callable[[TransportEvent], None]) -> None:
        """Register the push handler for ``kind``, replacing any previous one."""

    def off_all_callbacks(self) -> None: ...

    def destroy_profile(self, profile_handle: int) -> None: ...
