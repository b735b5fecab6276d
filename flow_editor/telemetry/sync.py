"""
FlowDeck Telemetry Sync

Keeps the live overlays current: polls GPIO levels and the Bluetooth
device list on fixed intervals, and appends pushed debug and XBee events
into bounded logs. Polls never wait for the previous poll; responses are
applied in request order and stale ones are dropped.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from flow_editor.client.event_stream import EventSubscription
from flow_editor.client.runtime_api import RuntimeClient
from flow_editor.config import TelemetryConfig, get_config
from flow_editor.exceptions import TransportError
from flow_editor.telemetry.bluetooth import BluetoothTelemetry
from flow_editor.telemetry.events import (
    DEBUG_EVENTS,
    TRAFFIC_EVENTS,
    DebugEvent,
    EventLog,
    TrafficEntry,
    parse_debug_event,
    parse_lifecycle_event,
    parse_traffic_event,
)
from flow_editor.telemetry.gpio import GpioTelemetry


Listener = Callable[[str, Any], None]


class Poller:
    """Starts a poll on every tick without waiting for earlier polls to finish."""

    def __init__(self, name: str, interval: float, poll: Callable[[], Awaitable[Any]], logger=None):
        self.name = name
        self.interval = interval
        self.poll = poll
        self.logger = logger or logging.getLogger(__name__)
        self.in_flight: Set[asyncio.Task] = set()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if not self.running:
            self._task = asyncio.create_task(self._loop())

    async def _loop(self):
        while True:
            self._spawn()
            await asyncio.sleep(self.interval)

    def _spawn(self):
        task = asyncio.create_task(self.poll())
        self.in_flight.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task):
        self.in_flight.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(f"{self.name} poll failed: {error}")

    async def stop(self):
        """Cancel the timer and every poll still in flight."""
        tasks = list(self.in_flight)
        if self._task:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self.in_flight.clear()


class TelemetrySync:
    """Owns the GPIO, Bluetooth, debug and traffic read models for one editor view."""

    def __init__(
        self,
        client: RuntimeClient,
        ws_url: Optional[str] = None,
        flow_id: Optional[str] = None,
        config: Optional[TelemetryConfig] = None,
        logger=None,
    ):
        editor_config = get_config()
        self.config = config or editor_config.telemetry
        self.ws_url = ws_url or editor_config.runtime.ws_url
        self.client = client
        self.flow_id = flow_id
        self.logger = logger or logging.getLogger(__name__)

        self.gpio = GpioTelemetry(logger=self.logger)
        self.bluetooth = BluetoothTelemetry(logger=self.logger)
        self.debug_log: EventLog[DebugEvent] = EventLog(self.config.debug_buffer_size)
        self.traffic_log: EventLog[TrafficEntry] = EventLog(self.config.traffic_buffer_size)

        self.subscription: Optional[EventSubscription] = None
        self._pollers: List[Poller] = []
        self._listeners: List[Listener] = []
        self._bt_issued = 0
        self._bt_applied = 0
        self._closed = False

    def log(self, level: str, message: str):
        if self.logger:
            getattr(self.logger, level)(message)

    def add_listener(self, callback: Listener):
        """Callback receives ('debug' | 'traffic' | 'lifecycle', entry) for each stored event."""
        self._listeners.append(callback)

    def _notify(self, kind: str, entry: Any):
        for callback in list(self._listeners):
            callback(kind, entry)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, gpio: bool = True, bluetooth: bool = True, events: bool = True):
        if self._closed:
            raise RuntimeError("TelemetrySync has been closed")
        if gpio:
            self._add_poller('gpio', self.config.gpio_poll_interval, self.poll_gpio)
        if bluetooth:
            self._add_poller('bluetooth', self.config.bluetooth_poll_interval, self.poll_bluetooth)
        if events and self.subscription is None:
            self.subscription = EventSubscription(
                self.ws_url,
                self.handle_event,
                reconnect_delay=self.config.reconnect_delay,
                logger=self.logger,
            )
            self.subscription.start()

    def _add_poller(self, name: str, interval: float, poll: Callable[[], Awaitable[Any]]):
        if any(p.name == name for p in self._pollers):
            return
        poller = Poller(name, interval, poll, logger=self.logger)
        self._pollers.append(poller)
        poller.start()

    async def close(self):
        """Cancel all polls and the event subscription. Nothing restarts afterwards."""
        self._closed = True
        for poller in self._pollers:
            await poller.stop()
        self._pollers.clear()
        if self.subscription:
            await self.subscription.close()
            self.subscription = None

    @property
    def closed(self) -> bool:
        return self._closed

    # =========================================================================
    # Polls
    # =========================================================================

    async def poll_gpio(self) -> bool:
        token = self.gpio.begin_poll()
        try:
            status = await self.client.gpio_status()
            if not isinstance(status, dict):
                raise TransportError(f"Unexpected GPIO status body: {type(status).__name__}")
            return self.gpio.apply(token, status)
        except TransportError as e:
            self.gpio.fail(token, e)
            self.log('warning', f"GPIO status poll failed: {e}")
            return False
        finally:
            self.gpio.release(token)

    async def poll_bluetooth(self) -> bool:
        self._bt_issued += 1
        token = self._bt_issued
        try:
            devices = await self.client.bluetooth_devices()
        except TransportError as e:
            self.log('warning', f"Bluetooth device poll failed: {e}")
            return False
        if token <= self._bt_applied:
            return False
        self._bt_applied = token
        self.bluetooth.refresh(devices)
        return True

    async def inspect_bluetooth(self, address: str, services: Dict[str, Any]) -> Dict[str, Any]:
        """
        Record a GATT inspection and persist it through the runtime.

        Raises:
            DeviceNotConnected: the device is not connected
            TransportError: the runtime rejected the capability update
        """
        payload = self.bluetooth.record_inspection(address, services)
        await self.client.save_bluetooth_device(**payload)
        return payload

    # =========================================================================
    # Pushed events
    # =========================================================================

    def handle_event(self, event: str, data: Dict[str, Any]) -> Optional[Any]:
        """Store one event-stream frame in the matching log."""
        if self._closed:
            return None

        if event in DEBUG_EVENTS:
            debug = parse_debug_event(event, data, self.debug_log.next_id(), self.flow_id)
            if debug is not None:
                self.debug_log.append(debug)
                self._notify('debug', debug)
            return debug

        if event in TRAFFIC_EVENTS:
            traffic = parse_traffic_event(event, data, self.traffic_log.next_id())
            self.traffic_log.append(traffic)
            self._notify('traffic', traffic)
            return traffic

        lifecycle = parse_lifecycle_event(event, data)
        if lifecycle is not None:
            self._notify('lifecycle', lifecycle)
        return lifecycle

    def clear_debug(self):
        self.debug_log.clear()

    def clear_traffic(self):
        self.traffic_log.clear()
