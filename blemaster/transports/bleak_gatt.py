"""BLE GATT transport implementation on top of bleak.

Adapts bleak's awaitable client to the callback-only ``Transport`` contract:
every call schedules a task on the running loop and reports its outcome only
through the registered push handlers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from blemaster.core.errors import TransportConnectError, TransportTimeoutError
from blemaster.core.model import ConnectEvent, EventKind, PrepareEvent, ScanRecord, TransportEvent
from blemaster.core.registry import address_from_bytes, address_to_bytes

_BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"
_CCCD = "2902"
STATUS_OK = 0
STATUS_FAIL = -1
STATUS_MISSING_ATTRIBUTE = -10

LOGGER = logging.getLogger(__name__)


def full_uuid(uuid: str) -> str:
    """128-bit form of a 16- or 32-bit SIG UUID; longer UUIDs pass through."""
    lowered = uuid.strip().lower()
    if len(lowered) == 4:
        return f"0000{lowered}{_BASE_UUID_SUFFIX}"
    if len(lowered) == 8:
        return f"{lowered}{_BASE_UUID_SUFFIX}"
    return lowered


def short_uuid(uuid: str) -> str:
    lowered = uuid.strip().lower()
    if lowered.endswith(_BASE_UUID_SUFFIX) and lowered.startswith("0000"):
        return lowered[4:8]
    return lowered


def _load_bleak() -> Any:
    try:
        import bleak  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise TransportConnectError(
            "BLE transport requires 'bleak'. Install dependency and retry."
        ) from exc
    return bleak


class BleakTransport:
    def __init__(
        self,
        *,
        client_factory: Callable[..., Any] | None = None,
        scanner_factory: Callable[..., Any] | None = None,
        connect_timeout_s: float = 10.0,
    ) -> None:
        self._client_factory = client_factory
        self._scanner_factory = scanner_factory
        self._connect_timeout_s = connect_timeout_s
        self._clients: dict[int, Any] = {}
        self._profiles: dict[int, int] = {}
        self._next_connection_id = 0
        self._next_profile_handle = 0
        self._prepare_callback: Callable[[PrepareEvent], None] | None = None
        self._handlers: dict[EventKind, Callable[[TransportEvent], None]] = {}
        self._scanner: Any = None
        self._tasks: set[asyncio.Task[Any]] = set()

    def _new_client(self, address: str) -> Any:
        factory = self._client_factory or _load_bleak().BleakClient
        return factory(address, timeout=self._connect_timeout_s)

    def _new_scanner(self, callback: Callable[..., None]) -> Any:
        factory = self._scanner_factory or _load_bleak().BleakScanner
        return factory(detection_callback=callback)

    def _spawn(self, coro: Awaitable[Any]) -> bool:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    def _emit(self, kind: EventKind, event: TransportEvent) -> None:
        handler = self._handlers.get(kind)
        if handler is not None:
            handler(event)

    def _client_for(self, profile_handle: int) -> Any:
        connection_id = self._profiles.get(profile_handle)
        if connection_id is None:
            return None
        return self._clients.get(connection_id)

    async def _drain_tasks(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def wait_idle(self, timeout_s: float | None = None) -> None:
        """Wait for every scheduled backend task to finish."""
        try:
            await asyncio.wait_for(self._drain_tasks(), timeout_s)
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(f"BLE backend did not settle within {timeout_s}s") from exc

    def start_scan(self, callback: Callable[[ScanRecord], None]) -> bool:
        def _detection(device: Any, advertisement: Any) -> None:
            raw = address_to_bytes(device.address)
            if raw is None:
                LOGGER.debug("Skipping device without a MAC address: %s", device.address)
                return
            manufacturer = dict(getattr(advertisement, "manufacturer_data", {}) or {})
            vendor_id, vendor_data = next(iter(manufacturer.items()), (None, b""))
            callback(
                ScanRecord(
                    dev_addr=raw,
                    dev_name=getattr(advertisement, "local_name", None) or device.name or "",
                    rssi=getattr(advertisement, "rssi", None),
                    service_uuids=tuple(
                        short_uuid(uuid) for uuid in getattr(advertisement, "service_uuids", []) or []
                    ),
                    service_data=tuple(
                        (short_uuid(uuid), bytes(data))
                        for uuid, data in (getattr(advertisement, "service_data", {}) or {}).items()
                    ),
                    vendor_id=vendor_id,
                    vendor_data=bytes(vendor_data),
                )
            )

        self._scanner = self._new_scanner(_detection)
        return self._spawn(self._scanner.start())

    def stop_scan(self) -> bool:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return False
        return self._spawn(scanner.stop())

    def connect(self, address: bytes, callback: Callable[[ConnectEvent], None]) -> bool:
        mac = address_from_bytes(address)

        async def _run() -> None:
            client = self._new_client(mac)
            try:
                await client.connect()
            except Exception as exc:
                LOGGER.warning("BLE connect failed for %s: %s", mac, exc)
                callback(ConnectEvent(dev_addr=address, connected=1))
                return
            if not client.is_connected:
                callback(ConnectEvent(dev_addr=address, connected=2))
                return
            self._next_connection_id += 1
            self._clients[self._next_connection_id] = client
            callback(ConnectEvent(dev_addr=address, connected=0, connection_id=self._next_connection_id))

        return self._spawn(_run())

    def disconnect(self, connection_id: int) -> bool:
        client = self._clients.pop(connection_id, None)
        if client is None:
            return False
        for handle, owner in list(self._profiles.items()):
            if owner == connection_id:
                del self._profiles[handle]
        return self._spawn(client.disconnect())

    def pair(self, connection_id: int) -> bool:
        client = self._clients.get(connection_id)
        if client is None:
            return False
        return self._spawn(client.pair())

    def on_prepare(self, callback: Callable[[PrepareEvent], None]) -> None:
        self._prepare_callback = callback

    def build_profile(self, tree: dict[str, Any]) -> bool:
        connection_id = tree.get("id")
        client = self._clients.get(connection_id)
        if client is None:
            LOGGER.error("No bleak client for connection %s", connection_id)
            return False

        async def _run() -> None:
            wanted = [
                chara["uuid"]
                for root in tree.get("list", [])
                for service in root.get("list", [])
                for chara in service.get("list", [])
            ]
            missing = [uuid for uuid in wanted if client.services.get_characteristic(full_uuid(uuid)) is None]
            if self._prepare_callback is None:
                LOGGER.warning("Profile built with no prepare listener")
                return
            if missing:
                LOGGER.error("Characteristics missing on device: %s", ", ".join(missing))
                self._prepare_callback(PrepareEvent(status=STATUS_MISSING_ATTRIBUTE))
                return
            self._next_profile_handle += 1
            self._profiles[self._next_profile_handle] = connection_id
            self._prepare_callback(PrepareEvent(status=STATUS_OK, profile_handle=self._next_profile_handle))

        return self._spawn(_run())

    def read_characteristic(self, profile_handle: int, uuid: str) -> None:
        async def _run() -> None:
            client = self._client_for(profile_handle)
            if client is None:
                LOGGER.error("Unknown profile handle %s", profile_handle)
                return
            try:
                data = bytes(await client.read_gatt_char(full_uuid(uuid)))
            except Exception as exc:
                LOGGER.warning("Read of %s failed: %s", uuid, exc)
                self._emit(EventKind.CHARA_READ_COMPLETE, TransportEvent(profile_handle, uuid, status=STATUS_FAIL))
                return
            self._emit(
                EventKind.CHARA_VALUE_ARRIVED,
                TransportEvent(profile_handle, uuid, data=data, length=len(data)),
            )
            self._emit(EventKind.CHARA_READ_COMPLETE, TransportEvent(profile_handle, uuid, status=STATUS_OK))

        self._spawn(_run())

    def _write_char(self, profile_handle: int, uuid: str, data: bytes, *, response: bool) -> None:
        async def _run() -> None:
            client = self._client_for(profile_handle)
            if client is None:
                LOGGER.error("Unknown profile handle %s", profile_handle)
                return
            status = STATUS_OK
            try:
                await client.write_gatt_char(full_uuid(uuid), data, response=response)
            except Exception as exc:
                LOGGER.warning("Write to %s failed: %s", uuid, exc)
                status = STATUS_FAIL
            if response:
                self._emit(EventKind.CHARA_WRITE_COMPLETE, TransportEvent(profile_handle, uuid, status=status))

        self._spawn(_run())

    def write_characteristic(self, profile_handle: int, uuid: str, data: bytes, length: int) -> None:
        self._write_char(profile_handle, uuid, data[:length], response=True)

    def write_characteristic_without_response(
        self,
        profile_handle: int,
        uuid: str,
        data: bytes,
        length: int,
    ) -> None:
        self._write_char(profile_handle, uuid, data[:length], response=False)

    def _descriptor(self, client: Any, chara: str, desc: str) -> Any:
        characteristic = client.services.get_characteristic(full_uuid(chara))
        if characteristic is None:
            return None
        return characteristic.get_descriptor(full_uuid(desc))

    def read_descriptor(self, profile_handle: int, chara: str, desc: str) -> None:
        async def _run() -> None:
            client = self._client_for(profile_handle)
            if client is None:
                LOGGER.error("Unknown profile handle %s", profile_handle)
                return
            descriptor = self._descriptor(client, chara, desc)
            if descriptor is None:
                self._emit(
                    EventKind.DESC_READ_COMPLETE,
                    TransportEvent(profile_handle, chara, desc, status=STATUS_MISSING_ATTRIBUTE),
                )
                return
            try:
                data = bytes(await client.read_gatt_descriptor(descriptor.handle))
            except Exception as exc:
                LOGGER.warning("Read of descriptor %s/%s failed: %s", chara, desc, exc)
                self._emit(
                    EventKind.DESC_READ_COMPLETE,
                    TransportEvent(profile_handle, chara, desc, status=STATUS_FAIL),
                )
                return
            self._emit(
                EventKind.DESC_VALUE_ARRIVED,
                TransportEvent(profile_handle, chara, desc, data=data, length=len(data)),
            )
            self._emit(EventKind.DESC_READ_COMPLETE, TransportEvent(profile_handle, chara, desc, status=STATUS_OK))

        self._spawn(_run())

    def write_descriptor(
        self,
        profile_handle: int,
        chara: str,
        desc: str,
        data: bytes,
        length: int,
    ) -> None:
        payload = data[:length]

        async def _run() -> None:
            client = self._client_for(profile_handle)
            if client is None:
                LOGGER.error("Unknown profile handle %s", profile_handle)
                return
            status = STATUS_OK
            try:
                if short_uuid(desc) == _CCCD:
                    # bleak owns the CCCD; subscription state goes through start/stop_notify.
                    await self._set_notify(client, profile_handle, chara, enable=any(payload))
                else:
                    descriptor = self._descriptor(client, chara, desc)
                    if descriptor is None:
                        status = STATUS_MISSING_ATTRIBUTE
                    else:
                        await client.write_gatt_descriptor(descriptor.handle, payload)
            except Exception as exc:
                LOGGER.warning("Write to descriptor %s/%s failed: %s", chara, desc, exc)
                status = STATUS_FAIL
            self._emit(
                EventKind.DESC_WRITE_COMPLETE,
                TransportEvent(profile_handle, chara, desc, status=status),
            )

        self._spawn(_run())

    async def _set_notify(self, client: Any, profile_handle: int, chara: str, *, enable: bool) -> None:
        if not enable:
            await client.stop_notify(full_uuid(chara))
            return

        def _notify_handler(_: Any, data: bytearray) -> None:
            payload = bytes(data)
            self._emit(
                EventKind.CHARA_NOTIFICATION,
                TransportEvent(profile_handle, chara, data=payload, length=len(payload)),
            )

        await client.start_notify(full_uuid(chara), _notify_handler)

    def on_event(self, kind: EventKind, handler: Callable[[TransportEvent], None]) -> None:
        self._handlers[kind] = handler

    def off_all_callbacks(self) -> None:
        self._handlers.clear()
        self._prepare_callback = None

    def destroy_profile(self, profile_handle: int) -> None:
        self._profiles.pop(profile_handle, None)
