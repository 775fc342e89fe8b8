"""Compile a service map into the attribute tree the transport builds profiles from."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from blemaster.core.errors import ErrorKind
from blemaster.core.model import (
    CharacteristicNode,
    DescriptorNode,
    Device,
    ProfileTree,
    Result,
    ServiceNode,
)
from blemaster.core.registry import address_to_bytes

DEFAULT_PERMISSION = 0x20
SERVICE_PERMISSION = 0

PERMISSIONS: dict[str, int] = {
    "READ": 0x01,
    "READ_ENCRYPTED": 0x02,
    "READ_ENCRYPTED_MITM": 0x04,
    "WRITE": 0x10,
    "WRITE_ENCRYPTED": 0x20,
    "WRITE_ENCRYPTED_MITM": 0x40,
    "WRITE_SIGNED": 0x80,
    "WRITE_SIGNED_MITM": 0x100,
    "READ_DESCRIPTOR": 0x01,
    "WRITE_DESCRIPTOR": 0x02,
    "READ_WRITE_DESCRIPTOR": 0x03,
    "NONE": 0x00,
    "ALL": 0xFFFFFFFF,
}

ServiceMap = Mapping[str, Mapping[str, Sequence[str]]]
PermissionMap = Mapping[str, int | str]

LOGGER = logging.getLogger(__name__)


def resolve_permission(value: int | str) -> int:
    """Numeric permission for an int or a ``PERMISSIONS`` name."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid permission {value!r}")
    if isinstance(value, int):
        return value
    try:
        return PERMISSIONS[value.strip().upper()]
    except KeyError:
        raise ValueError(f"Unknown permission name '{value}'") from None


def _permission_for(uuid: str, permissions: Mapping[str, int]) -> int:
    return permissions.get(uuid.lower(), DEFAULT_PERMISSION)


def compile_profile(
    device: Device | None,
    services: ServiceMap,
    permissions: PermissionMap | None = None,
) -> ProfileTree | Result:
    """Build the four-level attribute tree for ``device``.

    ``services`` maps service UUID -> characteristic UUID -> descriptor UUIDs.
    ``permissions`` optionally overrides the default permission (0x20) per
    characteristic or descriptor UUID.

    Returns a failed ``Result`` instead of raising when the device is not
    connected, its address is not a plain 6-byte MAC, or ``services`` is
    empty.
    """
    if device is None or not device.is_connected:
        LOGGER.error("Device not connected. Connect before generating a profile.")
        return Result.fail(ErrorKind.NOT_CONNECTED, "Device not connected")

    if not isinstance(device.connection_id, int) or isinstance(device.connection_id, bool):
        LOGGER.error("Device %s has no connection id", device.address)
        return Result.fail(ErrorKind.NOT_CONNECTED, "Device has no connection id")

    address = address_to_bytes(device.address)
    if address is None or len(address) != 6:
        LOGGER.error("Invalid MAC address format: %s", device.address)
        return Result.fail(ErrorKind.INVALID_ADDRESS, f"Invalid MAC address format: {device.address}")

    if not services:
        return Result.fail(ErrorKind.INVALID_ARGUMENT, "At least one service is required")

    try:
        overrides = {
            uuid.lower(): resolve_permission(value) for uuid, value in (permissions or {}).items()
        }
    except (AttributeError, ValueError) as exc:
        return Result.fail(ErrorKind.INVALID_ARGUMENT, str(exc))

    service_nodes: list[ServiceNode] = []
    for service_uuid, characteristics in services.items():
        chara_nodes: list[CharacteristicNode] = []
        for chara_uuid, descriptor_uuids in characteristics.items():
            descriptors = tuple(
                DescriptorNode(uuid=desc_uuid, permission=_permission_for(desc_uuid, overrides))
                for desc_uuid in descriptor_uuids
            )
            chara_nodes.append(
                CharacteristicNode(
                    uuid=chara_uuid,
                    permission=_permission_for(chara_uuid, overrides),
                    desc_count=len(descriptors),
                    length=len(descriptors),
                    descriptors=descriptors,
                )
            )
        # Firmware reads either len1 or len2 here; both must carry the count.
        service_nodes.append(
            ServiceNode(
                uuid=service_uuid,
                permission=SERVICE_PERMISSION,
                len1=len(chara_nodes),
                len2=len(chara_nodes),
                characteristics=tuple(chara_nodes),
            )
        )

    LOGGER.debug("Compiled profile with %d service(s) for %s", len(service_nodes), device.address)
    return ProfileTree(
        connection_id=device.connection_id,
        profile_name=device.name or "undefined",
        address=address,
        service_count=len(service_nodes),
        service_len=len(service_nodes),
        services=tuple(service_nodes),
    )
