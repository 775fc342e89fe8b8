from __future__ import annotations

import pytest

from blemaster.core.model import ScanRecord
from blemaster.core.registry import (
    DeviceRegistry,
    address_matches,
    address_to_bytes,
    is_valid_address,
    normalize_address,
)


@pytest.mark.parametrize(
    "address",
    ["A1:B2:C3:D4:E5:F6", "a1:b2:c3:d4:e5:f6", "A1-B2-C3-D4-E5-F6", b"\xa1\xb2\xc3\xd4\xe5\xf6"],
)
def test_normalize_is_idempotent_and_case_insensitive(address) -> None:
    normalized = normalize_address(address)
    assert normalized == "a1:b2:c3:d4:e5:f6"
    assert normalize_address(normalized) == normalized


def test_wildcard_match() -> None:
    assert address_matches("11:xx:33:44:55:66", "11:22:33:44:55:66")
    assert address_matches("11:XX:33:44:55:66", "11:22:33:44:55:66")
    assert not address_matches("11:xx:33:44:55:66", "11:22:99:44:55:66")
    assert not address_matches("11:xx:33", "11:22:33:44:55:66")


def test_address_validation() -> None:
    assert is_valid_address("aa:bb:cc:dd:ee:ff")
    assert is_valid_address("AA-BB-CC-DD-EE-FF")
    assert not is_valid_address("aa:bb:cc:dd:ee")
    assert not is_valid_address("aa:bb-cc:dd:ee:ff")
    assert not is_valid_address("gg:bb:cc:dd:ee:ff")
    assert not is_valid_address("")
    assert address_to_bytes("AA:BB:CC:DD:EE:FF") == b"\xaa\xbb\xcc\xdd\xee\xff"
    assert address_to_bytes("aa:xx:cc:dd:ee:ff") is None


def test_record_scan_creates_then_updates() -> None:
    registry = DeviceRegistry()
    record = ScanRecord(
        dev_addr=b"\xaa\xbb\xcc\xdd\xee\xff",
        dev_name="Thermo",
        rssi=-60,
        service_uuids=("180F",),
        service_data=(("FEAA", b"\x10\x20"),),
        vendor_id=0x004C,
        vendor_data=b"\x02\x15",
    )

    device, is_new = registry.record_scan(record)
    assert is_new
    assert device.address == "aa:bb:cc:dd:ee:ff"
    assert device.service_uuids == ["180f"]
    assert device.vendor_data == "0215"

    again, is_new = registry.record_scan(ScanRecord(dev_addr=record.dev_addr, rssi=-40))
    assert not is_new
    assert again is device
    assert device.rssi == -40
    assert device.name == "undefined"
    assert len(registry) == 1


def test_queries() -> None:
    registry = DeviceRegistry()
    registry.record_scan(
        ScanRecord(
            dev_addr=b"\x11\x22\x33\x44\x55\x66",
            dev_name="Sensor",
            service_uuids=("181a",),
            service_data=(("feaa", b"\xde\xad\xbe\xef"),),
            vendor_id=89,
            vendor_data=b"\xca\xfe",
        )
    )

    assert registry.has_address("11:22:33:44:55:66")
    assert registry.has_address("11:xx:33:44:55:66")
    assert not registry.has_address("11:22:33:44:55:67")
    assert registry.has_name("sensor")
    assert registry.has_service("181A")
    assert registry.has_service_data("BEEF")
    assert registry.has_service_data_uuid("FEAA")
    assert registry.has_vendor_data("cafe")
    assert registry.has_vendor_id(89)
    assert not registry.has_vendor_id(90)
    assert "11:22:33:44:55:66" in registry


def test_connection_bookkeeping() -> None:
    registry = DeviceRegistry()
    registry.upsert("AA:BB:CC:DD:EE:FF", name="Thermo")

    assert registry.mark_connected("aa:bb:cc:dd:ee:ff", 3)
    assert registry.set_profile_handle("aa:bb:cc:dd:ee:ff", 42)
    device = registry.find("aa:bb:cc:dd:ee:ff")
    assert device.is_connected and device.connection_id == 3 and device.profile_handle == 42

    assert registry.mark_disconnected("aa:bb:cc:dd:ee:ff")
    assert not device.is_connected
    assert device.connection_id is None
    assert device.profile_handle is None


def test_unknown_address_is_noop() -> None:
    registry = DeviceRegistry()
    assert not registry.mark_connected("aa:bb:cc:dd:ee:ff", 1)
    assert not registry.mark_disconnected("aa:bb:cc:dd:ee:ff")
    assert not registry.set_profile_handle("aa:bb:cc:dd:ee:ff", 1)
    assert registry.find("aa:bb:cc:dd:ee:ff") is None
    assert len(registry) == 0


def test_upsert_rejects_unknown_fields() -> None:
    registry = DeviceRegistry()
    with pytest.raises(TypeError):
        registry.upsert("aa:bb:cc:dd:ee:ff", colour="red")
