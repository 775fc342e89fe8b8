"""Routes transport push-events to user handlers for the active session only."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from blemaster.core.errors import ErrorKind
from blemaster.core.model import EVENT_COMPLETES, CompletionFlags, EventKind, Result, TransportEvent
from blemaster.core.session import ConnectionStateMachine
from blemaster.transports.base import Transport

EventHandler = Callable[[TransportEvent], Any]

LOGGER = logging.getLogger(__name__)


class EventCorrelator:
    """One transport subscription per ``EventKind``, wrapping a replaceable handler.

    Events whose profile handle differs from the session's current handle are
    dropped silently; they belong to a torn-down profile or an earlier
    connection. Completion events also raise the matching flag on the shared
    ``CompletionFlags`` so the operation queue can move on, whether or not a
    user handler is still attached.
    """

    def __init__(
        self,
        transport: Transport,
        state_machine: ConnectionStateMachine,
        flags: CompletionFlags,
    ) -> None:
        self._transport = transport
        self._state_machine = state_machine
        self._flags = flags
        self._handlers: dict[EventKind, EventHandler | None] = {}
        self._registered: set[EventKind] = set()
        state_machine.add_teardown_listener(self._on_teardown)
        state_machine.add_disconnect_listener(self._flags.reset)

    def on(self, kind: EventKind, handler: EventHandler) -> Result:
        if not callable(handler):
            LOGGER.error("You have to provide a callback function")
            return Result.fail(ErrorKind.INVALID_ARGUMENT, "You have to provide a callback function")

        self._handlers[kind] = handler
        if kind not in self._registered:
            self._transport.on_event(kind, self._make_dispatcher(kind))
            self._registered.add(kind)
        return Result.ok()

    def off(self, kind: EventKind) -> None:
        self._handlers[kind] = None

    def off_all(self) -> None:
        for kind in list(self._handlers):
            self._handlers[kind] = None

    def has_handler(self, kind: EventKind) -> bool:
        return self._handlers.get(kind) is not None

    def _on_teardown(self) -> None:
        self.off_all()
        # quit() disabled every transport callback; the next on() re-registers.
        self._registered.clear()
        self._flags.reset()

    def _make_dispatcher(self, kind: EventKind) -> Callable[[TransportEvent], None]:
        def dispatch(event: TransportEvent) -> None:
            self.dispatch(kind, event)

        return dispatch

    def dispatch(self, kind: EventKind, event: TransportEvent) -> Result | None:
        """Deliver ``event``; ``None`` means it belonged to no current session."""
        session = self._state_machine.session
        if session is None or session.profile_handle is None:
            LOGGER.debug("Dropping %s event, no prepared session", kind.value)
            return None
        if event.profile_handle != session.profile_handle:
            LOGGER.debug(
                "Dropping %s event for profile %s (current %s)",
                kind.value,
                event.profile_handle,
                session.profile_handle,
            )
            return None

        completes = EVENT_COMPLETES.get(kind)
        if completes is not None:
            status = 0 if kind in (EventKind.CHARA_VALUE_ARRIVED, EventKind.DESC_VALUE_ARRIVED) else event.status
            self._flags.mark(completes, status)

        handler = self._handlers.get(kind)
        if handler is None:
            message = f"You are trying to execute a callback that was deregistered: {kind.value}"
            LOGGER.error(message)
            return Result.fail(ErrorKind.CALLBACK_MISSING, message)
        handler(event)
        return Result.ok()
