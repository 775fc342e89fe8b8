"""Domain-specific errors and failure tags for blemaster."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure tags carried by result values."""

    INVALID_ADDRESS = "invalid_address"
    DEVICE_NOT_FOUND = "device_not_found"
    ALREADY_IN_PROGRESS = "already_in_progress"
    NOT_CONNECTED = "not_connected"
    PROFILE_NOT_PREPARED = "profile_not_prepared"
    OPERATION_TIMEOUT = "operation_timeout"
    BACKEND_REJECTED = "backend_rejected"
    CALLBACK_MISSING = "callback_missing"
    INVALID_ARGUMENT = "invalid_argument"


# Status codes reported by the transport on profile prepare and attribute I/O.
BACKEND_STATUS_CODES: dict[int, tuple[str, str]] = {
    -10: ("Missing Attribute", "BX_CORE_MISS_ATT"),
    -9: ("System Error", "BX_CORE_SYS"),
    -8: ("Authentication Error", "BX_CORE_AUTH"),
    -7: ("Invalid Parameter", "BX_CORE_PARAM"),
    -6: ("Invalid Operation", "BX_CORE_INVALID"),
    -5: ("Invalid State", "BX_CORE_STATE"),
    -4: ("Busy", "BX_CORE_BUSY"),
    -3: ("Timeout", "BX_CORE_TIMEOUT"),
    -2: ("Uninitialized", "BX_CORE_UNINIT"),
    -1: ("Fail", "BX_CORE_FAIL"),
    0: ("Success", "BX_CORE_SUCCESS"),
}
UNKNOWN_STATUS = ("Unknown Error", "UNKNOWN")


def describe_status(status: int | None) -> tuple[str, str]:
    """Return ``(message, code)`` for a transport status code."""
    if status is None:
        return UNKNOWN_STATUS
    return BACKEND_STATUS_CODES.get(status, UNKNOWN_STATUS)


class BleMasterError(Exception):
    """Base error for blemaster."""


class ConfigError(BleMasterError):
    """Raised when the engine configuration file is unreadable or invalid."""


class ProfileLoadError(BleMasterError):
    """Raised when reading a profile file fails."""


class ProfileValidationError(BleMasterError):
    """Raised when a profile file does not conform to schema or semantics."""


class TransportError(BleMasterError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when the transport backend cannot be reached or connected."""


class TransportTimeoutError(TransportError):
    """Raised when a transport call does not finish in time."""
