"""
FlowDeck Event Stream

Websocket subscription to the runtime's event stream. Frames are JSON
objects {"event": name, "data": {...}}; each is handed to a callback.
The connection is re-established after a delay until closed.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

import websockets


EventCallback = Callable[[str, Dict[str, Any]], None]


class EventSubscription:
    """Reconnecting websocket listener."""

    def __init__(self, url: str, callback: EventCallback, reconnect_delay: float = 2.0, logger=None):
        self.url = url
        self.callback = callback
        self.reconnect_delay = reconnect_delay
        self.logger = logger or logging.getLogger(__name__)
        self.connected = False
        self._closed = False
        self._task: Optional[asyncio.Task] = None
        self._connected_event = asyncio.Event()

    def log(self, level: str, message: str):
        if self.logger:
            getattr(self.logger, level)(message)

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self):
        """Start listening in the background."""
        if self._closed:
            raise RuntimeError("Subscription has been closed")
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def wait_connected(self, timeout: Optional[float] = None):
        await asyncio.wait_for(self._connected_event.wait(), timeout)

    async def _run(self):
        while not self._closed:
            try:
                async with websockets.connect(self.url, ping_interval=None, close_timeout=5) as ws:
                    self.connected = True
                    self._connected_event.set()
                    self.log('info', f"Event stream connected: {self.url}")
                    async for raw in ws:
                        self.dispatch(raw)
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                self.log('warning', f"Event stream error: {e}")
            finally:
                self.connected = False
                self._connected_event.clear()

            if self._closed:
                break
            await asyncio.sleep(self.reconnect_delay)

    def dispatch(self, raw: Any):
        """Decode one frame and pass it to the callback."""
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8', errors='replace')
        try:
            frame = json.loads(raw)
        except ValueError:
            self.log('warning', f"Ignoring non-JSON event frame: {raw[:80]}")
            return
        if not isinstance(frame, dict):
            return
        event = frame.get('event') or frame.get('type')
        if not event:
            return
        data = frame.get('data')
        self.callback(event, data if isinstance(data, dict) else {"value": data})

    async def close(self):
        """Stop listening. Nothing reconnects after this."""
        self._closed = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.connected = False
