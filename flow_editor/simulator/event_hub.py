"""
FlowDeck Simulator Event Hub

Websocket endpoint of the simulated runtime. Every connected client
receives every event as {"event": name, "data": {...}}.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict

from aiohttp import web, WSMsgType

from flow_editor.simulator.state import SimulatorState


@dataclass
class EventClient:
    """A connected websocket client."""
    id: str
    ws: web.WebSocketResponse
    connected_at: float = field(default_factory=time.time)


class EventHub:
    """Tracks websocket clients and fans events out to them."""

    def __init__(self, state: SimulatorState, logger=None):
        self.state = state
        self.logger = logger
        self.clients: Dict[str, EventClient] = {}
        self._lock = asyncio.Lock()

    def log(self, level: str, message: str):
        """Log a message if logger is available."""
        if self.logger:
            getattr(self.logger, level)(message)

    async def handle_connection(self, request: web.Request) -> web.WebSocketResponse:
        """Handle a new websocket connection."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        client = EventClient(id=str(uuid.uuid4())[:8], ws=ws)

        async with self._lock:
            self.clients[client.id] = client
            self.state.set_client_count(len(self.clients))

        self.log('info', f'Event client connected: {client.id}')

        await self._send_to_client(client, {
            "event": "connected",
            "data": {
                "clientId": client.id,
                "serverName": self.state.server_name,
            },
        })

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._handle_message(client, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    self.log('error', f'Websocket error: {ws.exception()}')
                    break
        finally:
            async with self._lock:
                self.clients.pop(client.id, None)
                self.state.set_client_count(len(self.clients))
            self.log('info', f'Event client disconnected: {client.id}')

        return ws

    async def _handle_message(self, client: EventClient, data: str):
        # Clients only listen; pings are answered so they can check liveness
        if data.strip() == 'ping':
            await client.ws.send_str('pong')

    async def _send_to_client(self, client: EventClient, message: dict):
        """Send a message to a specific client."""
        try:
            await client.ws.send_json(message)
        except (ConnectionError, RuntimeError) as e:
            self.log('error', f'Failed to send to client {client.id}: {e}')

    async def emit(self, event: str, data: Dict[str, Any]):
        """Broadcast an event to all clients."""
        message = {"event": event, "data": data}
        async with self._lock:
            for client in list(self.clients.values()):
                await self._send_to_client(client, message)

    async def close_all_connections(self):
        """Close all websocket connections."""
        async with self._lock:
            for client in list(self.clients.values()):
                try:
                    await client.ws.close()
                except (ConnectionError, RuntimeError) as e:
                    self.log('debug', f'Error closing client {client.id}: {e}')
            self.clients.clear()
            self.state.set_client_count(0)
