"""Stable public API for building tooling on top of blemaster.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from blemaster.core.config import EngineConfig, load_config
from blemaster.core.correlator import EventCorrelator, EventHandler
from blemaster.core.errors import (
    BleMasterError,
    ConfigError,
    ErrorKind,
    ProfileLoadError,
    ProfileValidationError,
    TransportConnectError,
    TransportError,
    TransportTimeoutError,
)
from blemaster.core.logs import set_debug_level
from blemaster.core.model import (
    CompletionFlags,
    ConnectResult,
    ConnectStatus,
    Device,
    EventKind,
    OperationResult,
    PrepareResult,
    ProfileTree,
    Result,
    SessionState,
    TransportEvent,
)
from blemaster.core.profile import PERMISSIONS
from blemaster.core.profile_loader import ProfileSpec, load_profile_file
from blemaster.core.queue import OperationCallback, OperationQueue
from blemaster.core.registry import DeviceRegistry, address_matches, normalize_address
from blemaster.core.scanner import ScanCallback, Scanner
from blemaster.core.session import ConnectionStateMachine
from blemaster.transports.base import Transport
from blemaster.transports.bleak_gatt import BleakTransport

__all__ = [
    "BleMasterError",
    "ConfigError",
    "ProfileLoadError",
    "ProfileValidationError",
    "TransportError",
    "TransportConnectError",
    "TransportTimeoutError",
    "ErrorKind",
    "ConnectResult",
    "ConnectStatus",
    "Device",
    "EngineConfig",
    "EventKind",
    "OperationResult",
    "PrepareResult",
    "ProfileSpec",
    "ProfileTree",
    "Result",
    "SessionState",
    "TransportEvent",
    "PERMISSIONS",
    "BleakTransport",
    "Transport",
    "Client",
    "address_matches",
    "load_profile_file",
    "normalize_address",
    "set_debug_level",
]


class Client:
    """Public client for one BLE peripheral session.

    A `Client` wires the device registry, connection state machine, event
    correlator and operation queue around a single transport. Reads and writes
    return futures resolved with an `OperationResult`; event handlers receive
    `TransportEvent` values for the prepared session only.
    """

    def __init__(
        self,
        *,
        transport: Transport | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.config = config or load_config()
        set_debug_level(self.config.debug_level)
        self.transport = transport or BleakTransport(connect_timeout_s=self.config.connect_timeout_s)
        self.registry = DeviceRegistry()
        self.flags = CompletionFlags()
        self._state_machine = ConnectionStateMachine(self.transport, self.registry, config=self.config)
        self._correlator = EventCorrelator(self.transport, self._state_machine, self.flags)
        self._queue = OperationQueue(self.transport, self._state_machine, self.flags, config=self.config)
        self._scanner = Scanner(self.transport, self.registry, throttle_interval_s=self.config.scan_throttle_s)

    @property
    def state(self) -> SessionState:
        return self._state_machine.state

    @property
    def queue(self) -> OperationQueue:
        return self._queue

    def start_scan(
        self,
        callback: ScanCallback,
        *,
        duration_s: float | None = None,
        on_duration: Callable[[], Any] | None = None,
        throttle_interval_s: float | None = None,
        allow_duplicates: bool = False,
    ) -> bool:
        return self._scanner.start(
            callback,
            duration_s=duration_s,
            on_duration=on_duration,
            throttle_interval_s=throttle_interval_s,
            allow_duplicates=allow_duplicates,
        )

    def stop_scan(self) -> bool:
        return self._scanner.stop()

    def connect(self, address: str, callback: Callable[[ConnectResult], Any] | None = None) -> Result:
        return self._state_machine.connect(address, callback)

    async def connect_async(self, address: str) -> ConnectResult:
        future: asyncio.Future[ConnectResult] = asyncio.get_running_loop().create_future()

        def _resolve(result: ConnectResult) -> None:
            if not future.done():
                future.set_result(result)

        self._state_machine.connect(address, _resolve)
        return await future

    def disconnect(self) -> bool:
        return self._state_machine.disconnect()

    def pair(self) -> bool:
        return self._state_machine.pair()

    def generate_profile(
        self,
        services: Mapping[str, Mapping[str, Sequence[str]]],
        permissions: Mapping[str, int | str] | None = None,
    ) -> ProfileTree | Result:
        return self._state_machine.generate_profile(services, permissions)

    def generate_profile_from_file(self, path: str) -> ProfileTree | Result:
        spec = load_profile_file(path)
        return self.generate_profile(spec.services, spec.permissions)

    def prepare_profile(
        self,
        tree: ProfileTree | Result,
        callback: Callable[[PrepareResult], Any] | None = None,
    ) -> Result:
        return self._state_machine.prepare_profile(tree, callback)

    async def prepare_profile_async(self, tree: ProfileTree | Result) -> PrepareResult:
        future: asyncio.Future[PrepareResult] = asyncio.get_running_loop().create_future()

        def _resolve(result: PrepareResult) -> None:
            if not future.done():
                future.set_result(result)

        self._state_machine.prepare_profile(tree, _resolve)
        return await future

    def read_characteristic(
        self,
        uuid: str,
        callback: OperationCallback | None = None,
    ) -> asyncio.Future[OperationResult]:
        return self._queue.read_characteristic(uuid, callback)

    def write_characteristic(
        self,
        uuid: str,
        data: bytes | bytearray | str | list[int],
        *,
        without_response: bool = False,
        callback: OperationCallback | None = None,
    ) -> asyncio.Future[OperationResult]:
        return self._queue.write_characteristic(
            uuid,
            data,
            without_response=without_response,
            callback=callback,
        )

    def read_descriptor(
        self,
        chara: str,
        desc: str,
        callback: OperationCallback | None = None,
    ) -> asyncio.Future[OperationResult]:
        return self._queue.read_descriptor(chara, desc, callback)

    def write_descriptor(
        self,
        chara: str,
        desc: str,
        data: bytes | bytearray | str | list[int],
        callback: OperationCallback | None = None,
    ) -> asyncio.Future[OperationResult]:
        return self._queue.write_descriptor(chara, desc, data, callback)

    def enable_notifications(
        self,
        chara: str,
        enable: bool = True,
        callback: OperationCallback | None = None,
    ) -> asyncio.Future[OperationResult]:
        return self._queue.enable_notifications(chara, enable, callback)

    def on(self, kind: EventKind | str, handler: EventHandler) -> Result:
        return self._correlator.on(EventKind(kind), handler)

    def off(self, kind: EventKind | str) -> None:
        self._correlator.off(EventKind(kind))

    def off_all(self) -> None:
        self._correlator.off_all()

    def devices(self) -> dict[str, Device]:
        return self.registry.devices()

    def find_device(self, address_or_pattern: str) -> Device | None:
        return self.registry.find(address_or_pattern)

    def is_connected(self) -> bool:
        return self._state_machine.is_connected()

    def has_mac(self, address_or_pattern: str) -> bool:
        return self.registry.has_address(address_or_pattern)

    def has_device_name(self, name: str) -> bool:
        return self.registry.has_name(name)

    def has_service(self, service_uuid: str) -> bool:
        return self.registry.has_service(service_uuid)

    def has_service_data(self, fragment: str) -> bool:
        return self.registry.has_service_data(fragment)

    def has_service_data_uuid(self, uuid: str) -> bool:
        return self.registry.has_service_data_uuid(uuid)

    def has_vendor_data(self, fragment: str) -> bool:
        return self.registry.has_vendor_data(fragment)

    def has_vendor_id(self, vendor_id: int) -> bool:
        return self.registry.has_vendor_id(vendor_id)

    def profile_handle(self) -> int | None:
        return self._state_machine.profile_handle()

    def connection_id(self) -> int | None:
        return self._state_machine.connection_id()

    def quit(self) -> None:
        """Disconnect, drop every handler and queued operation, stop scanning."""
        self._queue.clear()
        self._state_machine.quit()
        self._scanner.stop()
