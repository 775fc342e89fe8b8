"""Serialized attribute I/O against the active session."""

from __future__ import annotations

import asyncio
import logging
import re
from collections import deque
from collections.abc import Callable
from typing import Any

from blemaster.core.config import EngineConfig
from blemaster.core.errors import ErrorKind
from blemaster.core.model import CompletionFlags, Operation, OperationKind, OperationResult
from blemaster.core.session import ConnectionStateMachine
from blemaster.transports.base import Transport

CCCD_UUID = "2902"
CCCD_ENABLE = b"\x01\x00"
CCCD_DISABLE = b"\x00\x00"

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")

_TIMEOUT_MESSAGES = {
    OperationKind.WRITE_CHARACTERISTIC: (
        "Characteristic write operation timeout. "
        "Make sure to subscribe to the chara_write_complete event!"
    ),
    OperationKind.READ_CHARACTERISTIC: (
        "Characteristic read operation timeout. "
        "Make sure to subscribe to either the chara_value_arrived or chara_read_complete event!"
    ),
    OperationKind.WRITE_DESCRIPTOR: (
        "Descriptor write operation timeout. "
        "Make sure to subscribe to the desc_write_complete event!"
    ),
    OperationKind.READ_DESCRIPTOR: (
        "Descriptor read operation timeout. "
        "Make sure to subscribe to either the desc_value_arrived or desc_read_complete event!"
    ),
}
_PROFILE_MISSING = "No profile handle for the connected device. Prepare a profile before reading or writing."

OperationCallback = Callable[[OperationResult], Any]
LOGGER = logging.getLogger(__name__)


def coerce_payload(data: bytes | bytearray | memoryview | str | list[int]) -> bytes:
    """Bytes for a write payload.

    Bytes-like values pass through, an even-length hex string is decoded and
    any other string is sent as UTF-8 text.
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, (list, tuple)):
        return bytes(data)
    if isinstance(data, str):
        if data and len(data) % 2 == 0 and _HEX_RE.match(data):
            return bytes.fromhex(data)
        return data.encode("utf-8")
    raise TypeError(f"Unsupported payload type {type(data).__name__}")


class OperationQueue:
    """FIFO of operations with at most one transport call in flight.

    The transport reports read/write outcomes only through push-events, so an
    in-flight operation polls the shared ``CompletionFlags`` every
    ``poll_interval_s`` until the correlator raises its flag or
    ``operation_timeout_s`` elapses. The next operation is not dequeued until
    the current one's continuation has fired.
    """

    def __init__(
        self,
        transport: Transport,
        state_machine: ConnectionStateMachine,
        flags: CompletionFlags,
        *,
        config: EngineConfig | None = None,
    ) -> None:
        self._transport = transport
        self._state_machine = state_machine
        self._flags = flags
        self._config = config or EngineConfig()
        self._pending: deque[Operation] = deque()
        self._current: Operation | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def busy(self) -> bool:
        return self._current is not None

    @property
    def current(self) -> Operation | None:
        return self._current

    def pending(self) -> int:
        return len(self._pending)

    def enqueue(self, operation: Operation) -> asyncio.Future[OperationResult]:
        loop = asyncio.get_running_loop()
        if operation.future is None:
            operation.future = loop.create_future()
        self._pending.append(operation)
        self._drain()
        return operation.future

    def clear(self) -> int:
        """Drop queued operations that have not started; returns how many."""
        dropped = 0
        while self._pending:
            operation = self._pending.popleft()
            if operation.future is not None and not operation.future.done():
                operation.future.cancel()
            dropped += 1
        return dropped

    def _drain(self) -> None:
        if self._current is not None or not self._pending:
            return
        operation = self._pending.popleft()
        self._current = operation
        self._task = asyncio.get_running_loop().create_task(self._run(operation))

    async def _run(self, operation: Operation) -> None:
        try:
            result = await self._execute(operation)
        except Exception as exc:
            LOGGER.exception("Transport call for %s failed", operation.kind.value)
            result = OperationResult(
                success=False,
                kind=operation.kind,
                error=ErrorKind.BACKEND_REJECTED,
                message=str(exc),
            )
        self._complete(operation, result)
        self._current = None
        self._task = None
        self._drain()

    def _complete(self, operation: Operation, result: OperationResult) -> None:
        if operation.callback is not None:
            try:
                operation.callback(result)
            except Exception:
                LOGGER.exception("Continuation for %s raised", operation.kind.value)
        if operation.future is not None and not operation.future.done():
            operation.future.set_result(result)

    async def _execute(self, operation: Operation) -> OperationResult:
        session = self._state_machine.session
        handle = session.profile_handle if session is not None else None
        if handle is None:
            LOGGER.error(_PROFILE_MISSING)
            return OperationResult(
                success=False,
                kind=operation.kind,
                error=ErrorKind.PROFILE_NOT_PREPARED,
                message=_PROFILE_MISSING,
            )

        kind = operation.kind
        payload = operation.payload
        if kind is OperationKind.WRITE_CHARACTERISTIC:
            if operation.without_response:
                LOGGER.debug("EXEC: write_characteristic_without_response(%s, %s, %s)", handle, operation.characteristic, payload.hex())
                self._transport.write_characteristic_without_response(
                    handle, operation.characteristic, payload, len(payload)
                )
                return OperationResult(success=True, kind=kind)
            LOGGER.debug("EXEC: write_characteristic(%s, %s, %s)", handle, operation.characteristic, payload.hex())
            self._transport.write_characteristic(handle, operation.characteristic, payload, len(payload))
        elif kind is OperationKind.WRITE_DESCRIPTOR:
            LOGGER.debug(
                "EXEC: write_descriptor(%s, %s, %s, %s)",
                handle,
                operation.characteristic,
                operation.descriptor,
                payload.hex(),
            )
            self._transport.write_descriptor(
                handle, operation.characteristic, operation.descriptor, payload, len(payload)
            )
        elif kind is OperationKind.READ_CHARACTERISTIC:
            LOGGER.debug("EXEC: read_characteristic(%s, %s)", handle, operation.characteristic)
            self._transport.read_characteristic(handle, operation.characteristic)
        else:
            LOGGER.debug("EXEC: read_descriptor(%s, %s, %s)", handle, operation.characteristic, operation.descriptor)
            self._transport.read_descriptor(handle, operation.characteristic, operation.descriptor)

        return await self._wait_for_completion(kind)

    async def _wait_for_completion(self, kind: OperationKind) -> OperationResult:
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            if self._flags.consume(kind):
                return OperationResult(success=True, kind=kind, status=self._flags.last_status(kind))
            if loop.time() - started >= self._config.operation_timeout_s:
                message = _TIMEOUT_MESSAGES[kind]
                LOGGER.error(message)
                return OperationResult(
                    success=False,
                    kind=kind,
                    error=ErrorKind.OPERATION_TIMEOUT,
                    message=message,
                )
            await asyncio.sleep(self._config.poll_interval_s)

    def read_characteristic(
        self,
        uuid: str,
        callback: OperationCallback | None = None,
    ) -> asyncio.Future[OperationResult]:
        return self.enqueue(
            Operation(kind=OperationKind.READ_CHARACTERISTIC, characteristic=uuid, callback=callback)
        )

    def write_characteristic(
        self,
        uuid: str,
        data: bytes | bytearray | str | list[int],
        *,
        without_response: bool = False,
        callback: OperationCallback | None = None,
    ) -> asyncio.Future[OperationResult]:
        return self.enqueue(
            Operation(
                kind=OperationKind.WRITE_CHARACTERISTIC,
                characteristic=uuid,
                payload=coerce_payload(data),
                without_response=without_response,
                callback=callback,
            )
        )

    def read_descriptor(
        self,
        chara: str,
        desc: str,
        callback: OperationCallback | None = None,
    ) -> asyncio.Future[OperationResult]:
        return self.enqueue(
            Operation(
                kind=OperationKind.READ_DESCRIPTOR,
                characteristic=chara,
                descriptor=desc,
                callback=callback,
            )
        )

    def write_descriptor(
        self,
        chara: str,
        desc: str,
        data: bytes | bytearray | str | list[int],
        callback: OperationCallback | None = None,
    ) -> asyncio.Future[OperationResult]:
        return self.enqueue(
            Operation(
                kind=OperationKind.WRITE_DESCRIPTOR,
                characteristic=chara,
                descriptor=desc,
                payload=coerce_payload(data),
                callback=callback,
            )
        )

    def enable_notifications(
        self,
        chara: str,
        enable: bool = True,
        callback: OperationCallback | None = None,
    ) -> asyncio.Future[OperationResult]:
        """Write the characteristic's CCCD to turn notifications on or off."""
        return self.write_descriptor(
            chara,
            CCCD_UUID,
            CCCD_ENABLE if enable else CCCD_DISABLE,
            callback=callback,
        )
