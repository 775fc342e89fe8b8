"""Identity and metadata store for peripherals seen by scan or direct connect."""

from __future__ import annotations

import logging
import re
from typing import Any

from blemaster.core.model import Device, ScanRecord, ServiceData

_STRICT_MAC_RE = re.compile(r"^[0-9a-f]{2}([-:])[0-9a-f]{2}(\1[0-9a-f]{2}){4}$", re.IGNORECASE)
_WILDCARD = "xx"
_DEVICE_FIELDS = frozenset(Device.__dataclass_fields__) - {"address"}
LOGGER = logging.getLogger(__name__)


def normalize_address(address: str | bytes | bytearray) -> str:
    """Lowercase, colon-separated text form of ``address``.

    Six raw bytes are formatted as hex octets. Text input keeps its octets and
    only has its case and separators normalized, so wildcard patterns such as
    ``11:XX:33:44:55:66`` survive as ``11:xx:33:44:55:66``.
    """
    if isinstance(address, (bytes, bytearray)):
        return address_from_bytes(bytes(address))
    return address.strip().lower().replace("-", ":")


def is_valid_address(address: str | None) -> bool:
    if not address:
        return False
    return _STRICT_MAC_RE.match(address.strip()) is not None


def address_from_bytes(raw: bytes) -> str:
    return ":".join(f"{byte:02x}" for byte in raw)


def address_to_bytes(address: str) -> bytes | None:
    """Six address bytes, or ``None`` when ``address`` is not a plain MAC."""
    normalized = normalize_address(address)
    if not is_valid_address(normalized):
        return None
    return bytes(int(octet, 16) for octet in normalized.split(":"))


def is_pattern(address: str) -> bool:
    return _WILDCARD in normalize_address(address)


def address_matches(pattern: str, address: str) -> bool:
    pattern_octets = normalize_address(pattern).split(":")
    address_octets = normalize_address(address).split(":")
    if len(pattern_octets) != len(address_octets):
        return False
    return all(
        want == _WILDCARD or want == have
        for want, have in zip(pattern_octets, address_octets)
    )


class DeviceRegistry:
    """Devices keyed by normalized address, in first-seen order."""

    def __init__(self) -> None:
        self._devices: dict[str, Device] = {}

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and normalize_address(address) in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def devices(self) -> dict[str, Device]:
        return dict(self._devices)

    def upsert(self, address: str | bytes, **fields: Any) -> Device:
        key = normalize_address(address)
        unknown = set(fields) - _DEVICE_FIELDS
        if unknown:
            raise TypeError(f"Unknown device field(s): {', '.join(sorted(unknown))}")

        device = self._devices.get(key)
        if device is None:
            device = Device(address=key, **fields)
            self._devices[key] = device
            LOGGER.debug("Adding new device %s", key)
            return device

        for name, value in fields.items():
            setattr(device, name, value)
        return device

    def record_scan(self, record: ScanRecord) -> tuple[Device, bool]:
        """Merge a raw scan record; returns the device and whether it is new."""
        key = normalize_address(record.dev_addr)
        is_new = key not in self._devices
        device = self.upsert(
            key,
            name=record.dev_name or "undefined",
            rssi=record.rssi,
            service_uuids=[uuid.lower() for uuid in record.service_uuids],
            service_data=[
                ServiceData(uuid=uuid.lower(), data=data.hex()) for uuid, data in record.service_data
            ],
            vendor_id=record.vendor_id,
            vendor_data=record.vendor_data.hex(),
        )
        return device, is_new

    def find(self, address_or_pattern: str | None) -> Device | None:
        if not address_or_pattern:
            return None
        key = normalize_address(address_or_pattern)
        if _WILDCARD not in key:
            return self._devices.get(key)
        for address, device in self._devices.items():
            if address_matches(key, address):
                LOGGER.debug("Address pattern %s matched %s", key, address)
                return device
        return None

    def mark_connected(self, address: str, connection_id: int) -> bool:
        device = self.find(address)
        if device is None:
            return False
        device.connection_id = connection_id
        device.is_connected = True
        return True

    def mark_disconnected(self, address: str) -> bool:
        device = self.find(address)
        if device is None:
            return False
        device.is_connected = False
        device.connection_id = None
        device.profile_handle = None
        return True

    def set_profile_handle(self, address: str, profile_handle: int | None) -> bool:
        device = self.find(address)
        if device is None:
            return False
        device.profile_handle = profile_handle
        return True

    def clear(self) -> None:
        self._devices.clear()

    def has_address(self, address_or_pattern: str | None) -> bool:
        return self.find(address_or_pattern) is not None

    def has_name(self, name: str) -> bool:
        lowered = name.lower()
        return any(d.name and d.name.lower() == lowered for d in self._devices.values())

    def has_service(self, service_uuid: str) -> bool:
        lowered = service_uuid.lower()
        return any(lowered in d.service_uuids for d in self._devices.values())

    def has_service_data(self, fragment: str) -> bool:
        lowered = fragment.lower()
        return any(
            lowered in entry.data for d in self._devices.values() for entry in d.service_data
        )

    def has_service_data_uuid(self, uuid: str) -> bool:
        lowered = uuid.lower()
        return any(
            entry.uuid == lowered for d in self._devices.values() for entry in d.service_data
        )

    def has_vendor_data(self, fragment: str) -> bool:
        lowered = fragment.lower()
        return any(d.vendor_data and lowered in d.vendor_data for d in self._devices.values())

    def has_vendor_id(self, vendor_id: int) -> bool:
        return any(d.vendor_id == vendor_id for d in self._devices.values())
