"""Connection and profile lifecycle for the single active peripheral session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from blemaster.core.config import EngineConfig
from blemaster.core.errors import ErrorKind, describe_status
from blemaster.core.model import (
    ConnectEvent,
    ConnectResult,
    ConnectStatus,
    Device,
    PrepareEvent,
    PrepareResult,
    ProfileTree,
    Result,
    Session,
    SessionState,
)
from blemaster.core.profile import compile_profile
from blemaster.core.registry import (
    DeviceRegistry,
    address_to_bytes,
    is_pattern,
    is_valid_address,
    normalize_address,
)
from blemaster.transports.base import Transport

ConnectCallback = Callable[[ConnectResult], Any]
PrepareCallback = Callable[[PrepareResult], Any]

LOGGER = logging.getLogger(__name__)


def _opened_link(event: ConnectEvent | None) -> bool:
    return event is not None and event.connected == 0 and event.connection_id is not None


class ConnectionStateMachine:
    """Owns the one ``Session`` and every transition of its lifecycle.

    ``IDLE -> CONNECTING -> CONNECTED -> PREPARING_PROFILE -> READY ->
    DISCONNECTING -> IDLE``; ``FAILED`` is passed through on a failed connect
    (back to ``IDLE``) or a failed prepare (back to ``CONNECTED``).

    Collaborators read the session through the accessors here and never
    mutate it or the registry themselves.
    """

    def __init__(
        self,
        transport: Transport,
        registry: DeviceRegistry,
        *,
        config: EngineConfig | None = None,
    ) -> None:
        self._transport = transport
        self._registry = registry
        self._config = config or EngineConfig()
        self._state = SessionState.IDLE
        self._session: Session | None = None
        self._generation = 0
        self._prepare_callback: PrepareCallback | None = None
        self._prepare_timers: list[asyncio.TimerHandle] = []
        self._teardown_listeners: list[Callable[[], Any]] = []
        self._disconnect_listeners: list[Callable[[], Any]] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    def current_device(self) -> Device | None:
        if self._session is None:
            return None
        return self._registry.find(self._session.address)

    def is_connected(self) -> bool:
        device = self.current_device()
        return device is not None and device.is_connected

    def profile_handle(self) -> int | None:
        if self._session is None:
            LOGGER.error("Device not connected. Connect before attempting this operation.")
            return None
        return self._session.profile_handle

    def connection_id(self) -> int | None:
        if self._session is None:
            LOGGER.error("Device not connected. Connect before attempting this operation.")
            return None
        return self._session.connection_id

    def add_teardown_listener(self, listener: Callable[[], Any]) -> None:
        self._teardown_listeners.append(listener)

    def add_disconnect_listener(self, listener: Callable[[], Any]) -> None:
        """Called after a user-requested disconnect; handlers stay attached."""
        self._disconnect_listeners.append(listener)

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            LOGGER.debug("Session state %s -> %s", self._state.value, state.value)
        self._state = state
        if self._session is not None:
            self._session.state = state

    def connect(self, address: str | None, callback: ConnectCallback | None = None) -> Result:
        """Start a connection to ``address``; ``callback`` fires exactly once."""

        def reply(connected: bool, status: ConnectStatus) -> None:
            if callback is not None:
                callback(ConnectResult(connected=connected, status=status))

        if not address:
            LOGGER.error("Device address is undefined")
            reply(False, ConnectStatus.INVALID_ADDRESS)
            return Result.fail(ErrorKind.INVALID_ADDRESS, "Device address is undefined")

        target = normalize_address(address)
        if is_pattern(target):
            device = self._registry.find(target)
            if device is None:
                LOGGER.error("Device not found: %s", target)
                reply(False, ConnectStatus.DEVICE_NOT_FOUND)
                return Result.fail(ErrorKind.DEVICE_NOT_FOUND, f"No known device matches {target}")
            target = device.address

        if not is_valid_address(target):
            LOGGER.error("Invalid MAC address format: %s", target)
            reply(False, ConnectStatus.INVALID_ADDRESS)
            return Result.fail(ErrorKind.INVALID_ADDRESS, f"Invalid MAC address format: {target}")

        if self._state is SessionState.CONNECTING:
            LOGGER.warning("Connection already in progress for: %s", target)
            reply(False, ConnectStatus.IN_PROGRESS)
            return Result.fail(ErrorKind.ALREADY_IN_PROGRESS, "Connection already in progress")

        if self._session is not None:
            if self._session.address == target:
                reply(True, ConnectStatus.CONNECTED)
                return Result.ok("Already connected")
            LOGGER.warning("Session for %s is active, refusing %s", self._session.address, target)
            reply(False, ConnectStatus.IN_PROGRESS)
            return Result.fail(
                ErrorKind.ALREADY_IN_PROGRESS,
                f"Another device session is active: {self._session.address}",
            )

        known = self._registry.find(target)
        if known is not None and known.is_connected and known.connection_id is not None:
            LOGGER.warning("Device already connected: %s", target)
            self._adopt(known)
            reply(True, ConnectStatus.CONNECTED)
            return Result.ok("Already connected")

        return self._initiate(target, reply)

    def _adopt(self, device: Device) -> None:
        self._session = Session(
            address=device.address,
            connection_id=device.connection_id,
            profile_handle=device.profile_handle,
        )
        self._set_state(SessionState.READY if device.profile_handle is not None else SessionState.CONNECTED)

    def _initiate(self, target: str, reply: Callable[[bool, ConnectStatus], None]) -> Result:
        self._set_state(SessionState.CONNECTING)
        generation = self._generation
        finished = False
        abandoned = False
        timer: asyncio.TimerHandle | None = None

        def finish(event: ConnectEvent | None) -> None:
            nonlocal finished, abandoned
            if finished:
                if abandoned and _opened_link(event):
                    LOGGER.warning("Closing connection to %s that completed after the attempt ended", target)
                    self._transport.disconnect(event.connection_id)
                    return
                LOGGER.warning("Ignoring repeated connect result for %s", target)
                return
            finished = True
            if timer is not None:
                timer.cancel()

            if generation != self._generation:
                abandoned = True
                LOGGER.warning("Connect result for %s arrived after teardown", target)
                if _opened_link(event):
                    self._transport.disconnect(event.connection_id)
                reply(False, ConnectStatus.DISCONNECTED)
                return

            if event is None:
                abandoned = True
                LOGGER.error("Connection to %s timed out", target)
                self._fail_connect()
                reply(False, ConnectStatus.FAILED)
                return
            self._on_connect_result(target, event, reply)

        started = self._transport.connect(address_to_bytes(target), finish)
        if not finished and started is False:
            finished = True
            LOGGER.error("Transport refused to start a connection to %s", target)
            self._fail_connect()
            reply(False, ConnectStatus.FAILED)
            return Result.fail(ErrorKind.BACKEND_REJECTED, "Transport refused the connect call")

        if not finished:
            loop = asyncio.get_running_loop()
            timer = loop.call_later(self._config.connect_timeout_s, finish, None)
        return Result.ok("Connection attempt started")

    def _on_connect_result(
        self,
        target: str,
        event: ConnectEvent,
        reply: Callable[[bool, ConnectStatus], None],
    ) -> None:
        # The backend sometimes reports an unrelated address for non-zero
        # codes; the requested address stays the address of record.
        reported = normalize_address(event.dev_addr) if event.dev_addr else None
        if reported != target:
            LOGGER.error("Discrepancy in MAC addresses. Backend MAC: %s, Expected MAC: %s", reported, target)

        if event.connected != 0:
            LOGGER.error("Connection to %s failed with code %s", target, event.connected)
            self._fail_connect()
            status = ConnectStatus.FAILED if event.connected == 1 else ConnectStatus.DISCONNECTED
            reply(False, status)
            return

        if self._registry.find(target) is None:
            self._registry.upsert(target, name="default")
        self._registry.mark_connected(target, event.connection_id)
        self._session = Session(address=target, connection_id=event.connection_id)
        self._set_state(SessionState.CONNECTED)
        LOGGER.info("Successful connection to device: %s", target)
        reply(True, ConnectStatus.CONNECTED)

    def _fail_connect(self) -> None:
        self._set_state(SessionState.FAILED)
        self._set_state(SessionState.IDLE)

    def disconnect(self) -> bool:
        session = self._session
        if session is None:
            LOGGER.error("Device not connected. Connect before attempting this operation.")
            return False
        if self._state not in (SessionState.CONNECTED, SessionState.READY):
            LOGGER.warning("Cannot disconnect while %s", self._state.value)
            return False

        self._set_state(SessionState.DISCONNECTING)
        ok = self._transport.disconnect(session.connection_id)
        self._registry.mark_disconnected(session.address)
        self._session = None
        for listener in self._disconnect_listeners:
            listener()
        self._set_state(SessionState.IDLE)
        return bool(ok)

    def pair(self) -> bool:
        """Ask the transport to pair with the connected device (backend support varies)."""
        if self._session is None or not self.is_connected():
            LOGGER.error("Device not connected. Connect before attempting this operation.")
            return False
        LOGGER.debug("Pairing with the device: %s", self._session.address)
        return bool(self._transport.pair(self._session.connection_id))

    def generate_profile(
        self,
        services: Mapping[str, Mapping[str, Sequence[str]]],
        permissions: Mapping[str, int | str] | None = None,
    ) -> ProfileTree | Result:
        return compile_profile(self.current_device(), services, permissions)

    def prepare_profile(self, tree: ProfileTree | Result, callback: PrepareCallback | None = None) -> Result:
        """Build ``tree`` on the transport and wait for its prepare event.

        The prepare handler is registered before the build call, which runs
        after ``prepare_delay_s``; the transport drops the event if it is not
        listening yet. ``callback`` fires exactly once.
        """

        def reject(error: ErrorKind, message: str) -> Result:
            if callback is not None:
                callback(PrepareResult(success=False, message=message))
            return Result.fail(error, message)

        if not isinstance(tree, ProfileTree):
            detail = tree.message if isinstance(tree, Result) and tree.message else "not a profile tree"
            LOGGER.error("Profile creation failed: %s", detail)
            return reject(ErrorKind.INVALID_ARGUMENT, f"Profile creation failed: {detail}")

        if self._state is SessionState.PREPARING_PROFILE:
            LOGGER.warning("Listener start already in progress")
            return reject(ErrorKind.ALREADY_IN_PROGRESS, "Profile preparation already in progress")

        if self._state is SessionState.READY:
            LOGGER.warning("Profile already prepared for %s", self._session.address if self._session else None)
            return reject(ErrorKind.ALREADY_IN_PROGRESS, "Profile already prepared for this session")

        if self._session is None or self._state is not SessionState.CONNECTED:
            LOGGER.error("Device not connected. Connect before attempting this operation.")
            return reject(ErrorKind.NOT_CONNECTED, "Device not connected")

        loop = asyncio.get_running_loop()
        self._set_state(SessionState.PREPARING_PROFILE)
        self._prepare_callback = callback or (lambda _result: None)
        self._transport.on_prepare(self._handle_prepare)
        self._prepare_timers = [
            loop.call_later(self._config.prepare_delay_s, self._build_profile, tree),
            loop.call_later(self._config.prepare_timeout_s, self._prepare_timed_out),
        ]
        return Result.ok("Profile preparation started")

    def _build_profile(self, tree: ProfileTree) -> None:
        if self._state is not SessionState.PREPARING_PROFILE:
            return
        ok = self._transport.build_profile(tree.to_transport())
        LOGGER.debug("build_profile called with success: %s", ok)
        if ok is False and self._prepare_callback is not None:
            LOGGER.error("Profile creation failed")
            _, code = describe_status(-1)
            self._finish_prepare(PrepareResult(success=False, message="Profile creation failed", code=code))

    def _handle_prepare(self, event: PrepareEvent) -> None:
        if self._state is not SessionState.PREPARING_PROFILE or self._prepare_callback is None:
            LOGGER.warning("Ignoring prepare event outside a pending prepare: status %s", event.status)
            return

        message, code = describe_status(event.status)
        if event.status != 0:
            LOGGER.error("%s. Status: %s", message, code)
            self._finish_prepare(PrepareResult(success=False, message=message, code=code))
            return

        LOGGER.info("Profile prepared, handle %s", event.profile_handle)
        session = self._session
        session.profile_handle = event.profile_handle
        self._registry.set_profile_handle(session.address, event.profile_handle)
        self._finish_prepare(PrepareResult(success=True, message=message))

    def _prepare_timed_out(self) -> None:
        if self._state is not SessionState.PREPARING_PROFILE:
            return
        message, code = describe_status(-3)
        LOGGER.error("No prepare event within %.1fs", self._config.prepare_timeout_s)
        self._finish_prepare(PrepareResult(success=False, message=message, code=code))

    def _finish_prepare(self, result: PrepareResult) -> None:
        self._cancel_prepare_timers()
        callback = self._prepare_callback
        self._prepare_callback = None
        if result.success:
            self._set_state(SessionState.READY)
        else:
            self._set_state(SessionState.FAILED)
            self._set_state(SessionState.CONNECTED)
        if callback is not None:
            callback(result)

    def _cancel_prepare_timers(self) -> None:
        for timer in self._prepare_timers:
            timer.cancel()
        self._prepare_timers = []

    def quit(self) -> None:
        """Tear everything down; safe to call from any state, any number of times."""
        LOGGER.debug("Stopping BLE session")
        self._generation += 1
        self._cancel_prepare_timers()
        pending_prepare = self._prepare_callback
        self._prepare_callback = None

        self._transport.off_all_callbacks()
        session = self._session
        if session is not None:
            self._set_state(SessionState.DISCONNECTING)
            if session.profile_handle is not None:
                self._transport.destroy_profile(session.profile_handle)
            self._transport.disconnect(session.connection_id)
            self._registry.mark_disconnected(session.address)
            self._session = None

        for listener in self._teardown_listeners:
            listener()
        self._set_state(SessionState.IDLE)

        if pending_prepare is not None:
            message, code = describe_status(-5)
            pending_prepare(PrepareResult(success=False, message=message, code=code))
