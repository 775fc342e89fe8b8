from __future__ import annotations

import asyncio
from typing import Any

import pytest

from blemaster.core.config import EngineConfig
from blemaster.core.model import ConnectEvent, EventKind, PrepareEvent, TransportEvent


class FakeTransport:
    """Scripted transport: records every call and answers on the next loop turn."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.connect_code: int | None = 0
        self.connect_reply_address: bytes | None = None
        self.connection_id = 7
        self.build_result = True
        self.prepare_status: int | None = 0
        self.profile_handle = 100
        self.auto_complete = True
        self.scan_started = True
        self.handlers: dict[EventKind, Any] = {}
        self.prepare_callback: Any = None
        self.scan_callback: Any = None
        self.connect_callbacks: list[Any] = []

    def _later(self, fn: Any, *args: Any) -> None:
        asyncio.get_running_loop().call_soon(fn, *args)

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def emit(self, kind: EventKind, event: TransportEvent) -> None:
        handler = self.handlers.get(kind)
        if handler is not None:
            handler(event)

    def start_scan(self, callback: Any) -> bool:
        self.calls.append(("start_scan",))
        self.scan_callback = callback
        return self.scan_started

    def stop_scan(self) -> bool:
        self.calls.append(("stop_scan",))
        self.scan_callback = None
        return True

    def connect(self, address: bytes, callback: Any) -> bool:
        self.calls.append(("connect", address))
        self.connect_callbacks.append(callback)
        if self.connect_code is not None:
            event = ConnectEvent(
                dev_addr=self.connect_reply_address or address,
                connected=self.connect_code,
                connection_id=self.connection_id if self.connect_code == 0 else None,
            )
            self._later(callback, event)
        return True

    def disconnect(self, connection_id: int) -> bool:
        self.calls.append(("disconnect", connection_id))
        return True

    def pair(self, connection_id: int) -> bool:
        self.calls.append(("pair", connection_id))
        return True

    def on_prepare(self, callback: Any) -> None:
        self.prepare_callback = callback

    def build_profile(self, tree: dict[str, Any]) -> bool:
        self.calls.append(("build_profile", tree))
        if self.build_result and self.prepare_status is not None:
            handle = self.profile_handle if self.prepare_status == 0 else None
            self._later(self._prepared, PrepareEvent(status=self.prepare_status, profile_handle=handle))
        return self.build_result

    def _prepared(self, event: PrepareEvent) -> None:
        if self.prepare_callback is not None:
            self.prepare_callback(event)

    def read_characteristic(self, profile_handle: int, uuid: str) -> None:
        self.calls.append(("read_characteristic", profile_handle, uuid))
        if self.auto_complete:
            self._later(
                self.emit,
                EventKind.CHARA_VALUE_ARRIVED,
                TransportEvent(profile_handle, uuid, data=b"\x64", length=1),
            )
            self._later(self.emit, EventKind.CHARA_READ_COMPLETE, TransportEvent(profile_handle, uuid, status=0))

    def write_characteristic(self, profile_handle: int, uuid: str, data: bytes, length: int) -> None:
        self.calls.append(("write_characteristic", profile_handle, uuid, data))
        if self.auto_complete:
            self._later(self.emit, EventKind.CHARA_WRITE_COMPLETE, TransportEvent(profile_handle, uuid, status=0))

    def write_characteristic_without_response(
        self,
        profile_handle: int,
        uuid: str,
        data: bytes,
        length: int,
    ) -> None:
        self.calls.append(("write_characteristic_without_response", profile_handle, uuid, data))

    def read_descriptor(self, profile_handle: int, chara: str, desc: str) -> None:
        self.calls.append(("read_descriptor", profile_handle, chara, desc))
        if self.auto_complete:
            self._later(
                self.emit,
                EventKind.DESC_VALUE_ARRIVED,
                TransportEvent(profile_handle, chara, desc, data=b"\x01\x00", length=2),
            )
            self._later(
                self.emit,
                EventKind.DESC_READ_COMPLETE,
                TransportEvent(profile_handle, chara, desc, status=0),
            )

    def write_descriptor(self, profile_handle: int, chara: str, desc: str, data: bytes, length: int) -> None:
        self.calls.append(("write_descriptor", profile_handle, chara, desc, data))
        if self.auto_complete:
            self._later(
                self.emit,
                EventKind.DESC_WRITE_COMPLETE,
                TransportEvent(profile_handle, chara, desc, status=0),
            )

    def on_event(self, kind: EventKind, handler: Any) -> None:
        self.handlers[kind] = handler

    def off_all_callbacks(self) -> None:
        self.calls.append(("off_all_callbacks",))
        self.handlers.clear()
        self.prepare_callback = None

    def destroy_profile(self, profile_handle: int) -> None:
        self.calls.append(("destroy_profile", profile_handle))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fast_config() -> EngineConfig:
    return EngineConfig(
        operation_timeout_s=0.2,
        poll_interval_s=0.01,
        prepare_delay_s=0.0,
        prepare_timeout_s=0.3,
        scan_throttle_s=0.05,
        connect_timeout_s=0.3,
        debug_level=3,
    )
