from __future__ import annotations

import asyncio

from blemaster.core.model import Device, ScanRecord
from blemaster.core.registry import DeviceRegistry
from blemaster.core.scanner import Scanner

FIRST = ScanRecord(dev_addr=b"\x11\x22\x33\x44\x55\x66", dev_name="Thermo", rssi=-70)
SECOND = ScanRecord(dev_addr=b"\xaa\xbb\xcc\xdd\xee\xff", dev_name="Scale", rssi=-50)


def test_new_devices_reported_once(transport) -> None:
    registry = DeviceRegistry()
    scanner = Scanner(transport, registry)
    seen: list[str] = []

    async def scenario() -> None:
        assert scanner.start(lambda device: seen.append(device.address))
        assert scanner.is_scanning
        transport.scan_callback(FIRST)
        transport.scan_callback(FIRST)
        transport.scan_callback(SECOND)
        assert scanner.stop()

    asyncio.run(scenario())
    assert seen == ["11:22:33:44:55:66", "aa:bb:cc:dd:ee:ff"]
    assert len(registry) == 2
    assert transport.names() == ["start_scan", "stop_scan"]


def test_duplicates_are_batched(transport) -> None:
    registry = DeviceRegistry()
    scanner = Scanner(transport, registry, throttle_interval_s=0.05)
    seen: list[Device] = []

    async def scenario() -> None:
        scanner.start(seen.append, allow_duplicates=True)
        transport.scan_callback(FIRST)
        transport.scan_callback(ScanRecord(dev_addr=FIRST.dev_addr, dev_name="Thermo", rssi=-60))
        transport.scan_callback(ScanRecord(dev_addr=FIRST.dev_addr, dev_name="Thermo", rssi=-55))
        assert len(seen) == 1
        await asyncio.sleep(0.1)
        assert len(seen) == 3
        scanner.stop()

    asyncio.run(scenario())
    assert seen[-1].rssi == -55


def test_long_duplicate_scan_keeps_one_flush_timer(transport) -> None:
    scanner = Scanner(transport, DeviceRegistry(), throttle_interval_s=0.01)
    seen: list[Device] = []
    pending: list[bool] = []

    async def scenario() -> None:
        scanner.start(seen.append, allow_duplicates=True)
        transport.scan_callback(FIRST)
        for rssi in (-60, -59, -58, -57, -56):
            transport.scan_callback(ScanRecord(dev_addr=FIRST.dev_addr, dev_name="Thermo", rssi=rssi))
            transport.scan_callback(ScanRecord(dev_addr=FIRST.dev_addr, dev_name="Thermo", rssi=rssi))
            pending.append(scanner._flush_timer is not None)
            await asyncio.sleep(0.03)
            assert scanner._flush_timer is None
        assert scanner._timers == []
        scanner.stop()

    asyncio.run(scenario())
    assert pending == [True] * 5
    assert len(seen) == 11
    assert seen[-1].rssi == -56


def test_duration_stops_scan(transport) -> None:
    scanner = Scanner(transport, DeviceRegistry())
    finished: list[bool] = []

    async def scenario() -> None:
        scanner.start(lambda device: None, duration_s=0.05, on_duration=lambda: finished.append(True))
        await asyncio.sleep(0.1)

    asyncio.run(scenario())
    assert finished == [True]
    assert not scanner.is_scanning
    assert transport.names() == ["start_scan", "stop_scan"]


def test_refused_scan(transport) -> None:
    transport.scan_started = False
    scanner = Scanner(transport, DeviceRegistry())

    async def scenario() -> bool:
        return scanner.start(lambda device: None)

    assert not asyncio.run(scenario())
    assert not scanner.is_scanning
    assert not scanner.stop()


def test_records_after_stop_are_ignored(transport) -> None:
    registry = DeviceRegistry()
    scanner = Scanner(transport, registry)

    async def scenario() -> None:
        scanner.start(lambda device: None)
        callback = transport.scan_callback
        scanner.stop()
        callback(FIRST)

    asyncio.run(scenario())
    assert len(registry) == 0
