"""Core data models shared by the registry, session, queue and correlator."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from blemaster.core.errors import ErrorKind


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    PREPARING_PROFILE = "preparing_profile"
    READY = "ready"
    DISCONNECTING = "disconnecting"
    FAILED = "failed"


class ConnectStatus(str, Enum):
    CONNECTED = "connected"
    INVALID_ADDRESS = "invalid mac"
    IN_PROGRESS = "in progress"
    FAILED = "failed"
    DISCONNECTED = "disconnected"
    DEVICE_NOT_FOUND = "device not found"


class OperationKind(str, Enum):
    READ_CHARACTERISTIC = "read_characteristic"
    WRITE_CHARACTERISTIC = "write_characteristic"
    READ_DESCRIPTOR = "read_descriptor"
    WRITE_DESCRIPTOR = "write_descriptor"


class EventKind(str, Enum):
    CHARA_READ_COMPLETE = "chara_read_complete"
    CHARA_VALUE_ARRIVED = "chara_value_arrived"
    CHARA_WRITE_COMPLETE = "chara_write_complete"
    DESC_READ_COMPLETE = "desc_read_complete"
    DESC_VALUE_ARRIVED = "desc_value_arrived"
    DESC_WRITE_COMPLETE = "desc_write_complete"
    CHARA_NOTIFICATION = "chara_notification"
    SERVICE_CHANGE_BEGIN = "service_change_begin"
    SERVICE_CHANGE_END = "service_change_end"


# Which queue flag each push event raises. Value-arrived and read-complete
# overlap on purpose so either subscription unblocks a pending read.
EVENT_COMPLETES: dict[EventKind, OperationKind] = {
    EventKind.CHARA_READ_COMPLETE: OperationKind.READ_CHARACTERISTIC,
    EventKind.CHARA_VALUE_ARRIVED: OperationKind.READ_CHARACTERISTIC,
    EventKind.CHARA_WRITE_COMPLETE: OperationKind.WRITE_CHARACTERISTIC,
    EventKind.DESC_READ_COMPLETE: OperationKind.READ_DESCRIPTOR,
    EventKind.DESC_VALUE_ARRIVED: OperationKind.READ_DESCRIPTOR,
    EventKind.DESC_WRITE_COMPLETE: OperationKind.WRITE_DESCRIPTOR,
}


@dataclass(frozen=True)
class ServiceData:
    uuid: str
    data: str


@dataclass
class Device:
    address: str
    name: str = "default"
    rssi: int | None = None
    service_uuids: list[str] = field(default_factory=list)
    service_data: list[ServiceData] = field(default_factory=list)
    vendor_id: int | None = None
    vendor_data: str = ""
    connection_id: int | None = None
    profile_handle: int | None = None
    is_connected: bool = False


@dataclass
class Session:
    address: str
    connection_id: int
    profile_handle: int | None = None
    state: SessionState = SessionState.CONNECTED


@dataclass(frozen=True)
class ScanRecord:
    """Raw advertisement as pushed by the transport scan callback."""

    dev_addr: bytes
    dev_name: str = ""
    rssi: int | None = None
    service_uuids: tuple[str, ...] = ()
    service_data: tuple[tuple[str, bytes], ...] = ()
    vendor_id: int | None = None
    vendor_data: bytes = b""


@dataclass(frozen=True)
class ConnectEvent:
    dev_addr: bytes
    connected: int
    connection_id: int | None = None


@dataclass(frozen=True)
class PrepareEvent:
    status: int
    profile_handle: int | None = None


@dataclass(frozen=True)
class TransportEvent:
    profile_handle: int | None
    uuid: str | None = None
    descriptor: str | None = None
    data: bytes | None = None
    length: int | None = None
    status: int | None = None


@dataclass(frozen=True)
class Result:
    success: bool
    error: ErrorKind | None = None
    message: str | None = None
    code: str | None = None

    @classmethod
    def ok(cls, message: str | None = None) -> Result:
        return cls(success=True, message=message)

    @classmethod
    def fail(cls, error: ErrorKind, message: str, code: str | None = None) -> Result:
        return cls(success=False, error=error, message=message, code=code)


@dataclass(frozen=True)
class ConnectResult:
    connected: bool
    status: ConnectStatus


@dataclass(frozen=True)
class PrepareResult:
    success: bool
    message: str
    code: str | None = None


@dataclass(frozen=True)
class OperationResult:
    success: bool
    kind: OperationKind
    error: ErrorKind | None = None
    message: str | None = None
    status: int | None = None


@dataclass
class Operation:
    kind: OperationKind
    characteristic: str
    descriptor: str | None = None
    payload: bytes = b""
    without_response: bool = False
    callback: Callable[[OperationResult], Any] | None = None
    future: asyncio.Future[OperationResult] | None = None


@dataclass
class CompletionFlags:
    """Completion flags shared between the operation queue and the correlator."""

    flags: dict[OperationKind, bool] = field(
        default_factory=lambda: {kind: False for kind in OperationKind}
    )
    statuses: dict[OperationKind, int | None] = field(
        default_factory=lambda: {kind: None for kind in OperationKind}
    )

    def mark(self, kind: OperationKind, status: int | None = 0) -> None:
        self.flags[kind] = True
        self.statuses[kind] = status

    def is_set(self, kind: OperationKind) -> bool:
        return self.flags[kind]

    def consume(self, kind: OperationKind) -> bool:
        if not self.flags[kind]:
            return False
        self.flags[kind] = False
        return True

    def last_status(self, kind: OperationKind) -> int | None:
        return self.statuses[kind]

    def reset(self) -> None:
        for kind in OperationKind:
            self.flags[kind] = False
            self.statuses[kind] = None


@dataclass(frozen=True)
class DescriptorNode:
    uuid: str
    permission: int


@dataclass(frozen=True)
class CharacteristicNode:
    uuid: str
    permission: int
    desc_count: int
    length: int
    descriptors: tuple[DescriptorNode, ...] = ()


@dataclass(frozen=True)
class ServiceNode:
    uuid: str
    permission: int
    len1: int
    len2: int
    characteristics: tuple[CharacteristicNode, ...] = ()


@dataclass(frozen=True)
class ProfileTree:
    connection_id: int
    profile_name: str
    address: bytes
    service_count: int
    service_len: int
    services: tuple[ServiceNode, ...]
    pair: bool = True
    root_len: int = 1

    def to_transport(self) -> dict[str, Any]:
        """Render the nested mapping the transport's profile builder reads."""
        service_list: list[dict[str, Any]] = []
        for service in self.services:
            chara_list: list[dict[str, Any]] = []
            for chara in service.characteristics:
                node: dict[str, Any] = {
                    "uuid": chara.uuid,
                    "permission": chara.permission,
                    "desc": chara.desc_count,
                    "len": chara.length,
                }
                if chara.descriptors:
                    node["list"] = [
                        {"uuid": desc.uuid, "permission": desc.permission}
                        for desc in chara.descriptors
                    ]
                chara_list.append(node)
            service_list.append(
                {
                    "uuid": service.uuid,
                    "permission": service.permission,
                    "len1": service.len1,
                    "len2": service.len2,
                    "list": chara_list,
                }
            )
        return {
            "pair": self.pair,
            "id": self.connection_id,
            "profile": self.profile_name,
            "dev": self.address,
            "len": self.root_len,
            "list": [
                {
                    "uuid": True,
                    "size": self.service_count,
                    "len": self.service_len,
                    "list": service_list,
                }
            ],
        }

    def characteristic_uuids(self) -> list[str]:
        return [chara.uuid for service in self.services for chara in service.characteristics]
