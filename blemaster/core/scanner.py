"""Scan coordination: feeds the registry and de-duplicates sightings."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from blemaster.core.model import Device, ScanRecord
from blemaster.core.registry import DeviceRegistry
from blemaster.transports.base import Transport

ScanCallback = Callable[[Device], Any]
LOGGER = logging.getLogger(__name__)


class Scanner:
    def __init__(
        self,
        transport: Transport,
        registry: DeviceRegistry,
        *,
        throttle_interval_s: float = 1.0,
    ) -> None:
        self._transport = transport
        self._registry = registry
        self._throttle_interval_s = throttle_interval_s
        self._is_scanning = False
        self._batch: list[Device] = []
        self._timers: list[asyncio.TimerHandle] = []
        self._flush_timer: asyncio.TimerHandle | None = None

    @property
    def is_scanning(self) -> bool:
        return self._is_scanning

    def start(
        self,
        callback: ScanCallback,
        *,
        duration_s: float | None = None,
        on_duration: Callable[[], Any] | None = None,
        throttle_interval_s: float | None = None,
        allow_duplicates: bool = False,
    ) -> bool:
        """Start scanning; ``callback`` receives each new device once.

        With ``allow_duplicates`` repeated sightings are collected and handed
        over in batches every ``throttle_interval_s``. ``duration_s`` stops
        the scan automatically and then calls ``on_duration``.
        """
        loop = asyncio.get_running_loop()
        throttle = self._throttle_interval_s if throttle_interval_s is None else throttle_interval_s
        self._batch = []

        def flush() -> None:
            self._flush_timer = None
            batch, self._batch = self._batch, []
            LOGGER.debug("Processing batch of %d duplicate sighting(s)", len(batch))
            for device in batch:
                callback(device)

        def on_record(record: ScanRecord) -> None:
            if not self._is_scanning:
                return
            device, is_new = self._registry.record_scan(record)
            if is_new:
                callback(device)
                return
            if not allow_duplicates:
                return
            self._batch.append(device)
            if self._flush_timer is None:
                self._flush_timer = loop.call_later(throttle, flush)

        LOGGER.debug("Starting scan")
        self._is_scanning = True
        started = bool(self._transport.start_scan(on_record))
        if not started:
            self._is_scanning = False
            LOGGER.error("Transport refused to start scanning")
            return False

        if duration_s is not None:

            def stop_after_duration() -> None:
                self.stop()
                if on_duration is not None:
                    on_duration()

            self._timers.append(loop.call_later(duration_s, stop_after_duration))
        return True

    def stop(self) -> bool:
        if not self._is_scanning:
            return False
        self._is_scanning = False
        for timer in self._timers:
            timer.cancel()
        self._timers = []
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None
        self._batch = []
        return bool(self._transport.stop_scan())
