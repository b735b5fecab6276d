"""
FlowDeck Runtime Simulator

aiohttp application that speaks the runtime's REST and event-stream
contract from memory. Triggered broadcast nodes run through the broadcast
queue against a simulated radio; nothing else is executed.
"""

import argparse
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from aiohttp import web

from flow_editor.config import SimulatorConfig, get_config, load_config
from flow_editor.graph.lock import FlowStatus
from flow_editor.graph.model import Node
from flow_editor.node_types import NodeTypeRegistry, get_registry
from flow_editor.radio.broadcast import BROADCAST_TYPES, BroadcastRequestBuilder, resolve_cancel_key
from flow_editor.radio.channel import ChannelEncoder
from flow_editor.radio.pins import NAMED_PINS
from flow_editor.radio.queue import BroadcastJob, BroadcastQueue
from flow_editor.simulator.event_hub import EventHub
from flow_editor.simulator.radio import SimulatedRadio
from flow_editor.simulator.state import SimulatorState, StoredFlow
from flow_editor.validation import ConfigValidator


TriggerHandler = Callable[[StoredFlow, Node, Dict[str, Any]], Awaitable[Dict[str, Any]]]


def _error(message: str, status: int = 400) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status)


def _now_ms() -> int:
    return int(time.time() * 1000)


async def _read_json(request: web.Request) -> Dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(
            text='{"success": false, "error": "Invalid JSON body"}',
            content_type='application/json',
        )
    return data if isinstance(data, dict) else {}


class SimulatorServer:
    """In-memory stand-in for the flow runtime."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        config: Optional[SimulatorConfig] = None,
        registry: Optional[NodeTypeRegistry] = None,
        state: Optional[SimulatorState] = None,
        logger=None,
    ):
        self.config = config or get_config().simulator
        self.host = host or self.config.host
        self.port = port if port is not None else self.config.port
        self.logger = logger

        self.registry = registry or get_registry()
        self.state = state or SimulatorState(logger=logger)
        self.hub = EventHub(self.state, logger=logger)
        self.radio = SimulatedRadio(self.state, audio_ms=self.config.simulated_audio_ms)
        self.queue = BroadcastQueue(
            self.radio,
            clear_poll_ms=self.config.clear_channel_poll_ms,
            logger=logger or logging.getLogger(__name__),
        )
        self.builder = BroadcastRequestBuilder(ConfigValidator(self.registry))

        self._watchers: Set[asyncio.Task] = set()
        self._trigger_handlers: Dict[str, TriggerHandler] = {
            'debug': self._trigger_debug,
            'cancel-broadcast': self._trigger_cancel,
            'radio-channel': self._trigger_channel,
            'awr-erm100-channel': self._trigger_channel,
        }
        for node_type in BROADCAST_TYPES:
            self._trigger_handlers[node_type] = self._trigger_broadcast

        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    def log(self, level: str, message: str):
        """Log a message if logger is available."""
        if self.logger:
            getattr(self.logger, level)(message)

    def build_app(self) -> web.Application:
        """Create the aiohttp application with all routes."""
        app = web.Application(middlewares=[self._error_middleware])

        app.router.add_get('/ws', self.hub.handle_connection)

        app.router.add_get('/api/flows', self._handle_list_flows)
        app.router.add_post('/api/flows', self._handle_create_flow)
        app.router.add_get('/api/flows/{flow_id}', self._handle_get_flow)
        app.router.add_put('/api/flows/{flow_id}', self._handle_update_flow)
        app.router.add_delete('/api/flows/{flow_id}', self._handle_delete_flow)
        app.router.add_post('/api/flows/{flow_id}/start', self._handle_start_flow)
        app.router.add_post('/api/flows/{flow_id}/stop', self._handle_stop_flow)
        app.router.add_get('/api/flows/{flow_id}/status', self._handle_flow_status)
        app.router.add_post('/api/flows/{flow_id}/trigger/{node_id}', self._handle_trigger)
        app.router.add_get('/api/nodes', self._handle_node_types)

        app.router.add_get('/api/audio', self._handle_audio)
        app.router.add_get('/api/devices', self._handle_devices)
        app.router.add_get('/api/system/status', self._handle_system_status)

        app.router.add_get('/api/gpio/status', self._handle_gpio_status)
        app.router.add_post('/api/gpio/channel', self._handle_gpio_channel)
        app.router.add_post('/api/gpio/write', self._handle_gpio_write)

        app.router.add_get('/api/bluetooth/status', self._handle_bluetooth_status)
        app.router.add_get('/api/bluetooth/devices', self._handle_bluetooth_devices)
        app.router.add_post('/api/bluetooth/devices', self._handle_bluetooth_save)
        app.router.add_put('/api/bluetooth/devices/{address}/connection', self._handle_bluetooth_connection)
        app.router.add_delete('/api/bluetooth/devices/{address}', self._handle_bluetooth_delete)

        app.on_shutdown.append(self._on_shutdown)
        self.app = app
        return app

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler):
        self.log('debug', f'Request: {request.method} {request.path}')
        try:
            response = await handler(request)
        except web.HTTPException as e:
            self.log('debug', f'HTTP Exception: {e.status} for {request.path}')
            raise
        except Exception as e:
            self.log('error', f'Unhandled error for {request.method} {request.path}: {e}')
            return _error(str(e), status=500)
        self.log('debug', f'Response: {response.status} for {request.path}')
        return response

    async def start(self):
        """Start serving on host:port."""
        self.runner = web.AppRunner(self.build_app())
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        self.log('info', f'Simulator listening on {self.host}:{self.port}')

    async def stop(self):
        """Stop the server gracefully."""
        self.log('info', 'Stopping simulator...')
        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()
        self.log('info', 'Simulator stopped')

    async def _on_shutdown(self, app: web.Application):
        await self.queue.stop()
        for task in list(self._watchers):
            task.cancel()
        await asyncio.gather(*self._watchers, return_exceptions=True)
        self._watchers.clear()
        await self.hub.close_all_connections()

    # =========================================================================
    # Flows
    # =========================================================================

    def _flow_or_404(self, request: web.Request) -> StoredFlow:
        flow_id = request.match_info['flow_id']
        flow = self.state.get_flow(flow_id)
        if flow is None:
            raise web.HTTPNotFound(
                text=f'{{"success": false, "error": "Flow not found: {flow_id}"}}',
                content_type='application/json',
            )
        return flow

    async def _handle_list_flows(self, request: web.Request) -> web.Response:
        return web.json_response({"success": True, "flows": self.state.list_flows()})

    async def _handle_get_flow(self, request: web.Request) -> web.Response:
        flow = self._flow_or_404(request)
        return web.json_response({"success": True, "flow": flow.to_dict()})

    async def _handle_create_flow(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        try:
            flow = self.state.create_flow(data)
        except ValueError as e:
            return _error(str(e))
        await self.hub.emit('flow:deployed', {"flowId": flow.id, "name": flow.name})
        return web.json_response({"success": True, "flowId": flow.id})

    async def _handle_update_flow(self, request: web.Request) -> web.Response:
        flow = self._flow_or_404(request)
        data = await _read_json(request)
        try:
            self.state.update_flow(flow.id, data)
        except ValueError as e:
            return _error(str(e))
        await self.hub.emit('flow:deployed', {"flowId": flow.id, "name": flow.name})
        return web.json_response({"success": True, "flowId": flow.id})

    async def _handle_delete_flow(self, request: web.Request) -> web.Response:
        flow = self._flow_or_404(request)
        self.state.delete_flow(flow.id)
        await self.hub.emit('flow:deleted', {"flowId": flow.id})
        return web.json_response({"success": True})

    async def _handle_start_flow(self, request: web.Request) -> web.Response:
        flow = self._flow_or_404(request)
        self.state.set_flow_status(flow.id, FlowStatus.RUNNING.value)
        await self.hub.emit('flow:started', {"flowId": flow.id})
        return web.json_response({"success": True, "status": flow.status})

    async def _handle_stop_flow(self, request: web.Request) -> web.Response:
        flow = self._flow_or_404(request)
        self.state.set_flow_status(flow.id, FlowStatus.STOPPED.value)
        await self.hub.emit('flow:stopped', {"flowId": flow.id})
        return web.json_response({"success": True, "status": flow.status})

    async def _handle_flow_status(self, request: web.Request) -> web.Response:
        flow = self._flow_or_404(request)
        return web.json_response({"success": True, "status": flow.status})

    async def _handle_node_types(self, request: web.Request) -> web.Response:
        return web.json_response({"success": True, "nodeTypes": self.registry.to_catalog()})

    # =========================================================================
    # Node triggers
    # =========================================================================

    async def _handle_trigger(self, request: web.Request) -> web.Response:
        flow = self._flow_or_404(request)
        node_id = request.match_info['node_id']
        node_data = flow.find_node(node_id)
        if node_data is None:
            return _error(f"Node not found: {node_id}", status=404)

        payload = await _read_json(request)
        message = {"payload": payload or {"timestamp": _now_ms()}, "topic": node_id}
        node = Node.from_dict(node_data)

        handler = self._trigger_handlers.get(node.type, self._trigger_default)
        result = await handler(flow, node, message)
        return web.json_response({"success": True, "nodeId": node_id, **result})

    async def _trigger_default(self, flow: StoredFlow, node: Node, message: Dict[str, Any]) -> Dict[str, Any]:
        await self.hub.emit('flow:node-output', {
            "flowId": flow.id,
            "nodeId": node.id,
            "data": message,
            "timestamp": _now_ms(),
        })
        return {}

    async def _trigger_debug(self, flow: StoredFlow, node: Node, message: Dict[str, Any]) -> Dict[str, Any]:
        output = message if node.config.get('output') == 'msg' else message.get('payload')
        await self.hub.emit('debug:message', {
            "flowId": flow.id,
            "nodeId": node.id,
            "nodeName": node.config.get('name') or node.type,
            "message": output,
            "timestamp": _now_ms(),
        })
        return {}

    async def _trigger_channel(self, flow: StoredFlow, node: Node, message: Dict[str, Any]) -> Dict[str, Any]:
        payload = message.get('payload') or {}
        channel = payload.get('channel', node.config.get('channel', 0))
        try:
            bits = self.state.set_channel(int(channel))
        except (TypeError, ValueError) as e:
            await self._node_error(flow, node, str(e))
            return {"error": str(e)}
        await self._trigger_default(flow, node, {"payload": {"channel": int(channel), "csStates": bits.to_dict()}})
        return {"channel": int(channel), "csStates": bits.to_dict()}

    async def _trigger_cancel(self, flow: StoredFlow, node: Node, message: Dict[str, Any]) -> Dict[str, Any]:
        source = resolve_cancel_key(node.config.get('cancelSource'), message)
        cancelled = self.queue.cancel_by_source(source) if source else 0
        if not source:
            self.log('warning', f'{node.id}: no source specified for cancellation')
        result = {"action": "cancel_broadcast", "source": source, "cancelled": cancelled > 0}
        await self._trigger_default(flow, node, {"payload": result})
        return result

    async def _trigger_broadcast(self, flow: StoredFlow, node: Node, message: Dict[str, Any]) -> Dict[str, Any]:
        requests = self.builder.build_sequence(node.type, node.config, message)
        job = self.queue.submit(requests)
        watcher = asyncio.create_task(self._watch_job(flow, node, job))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        return {"queued": True, "jobId": job.id, "queueLength": self.queue.queue_length}

    async def _watch_job(self, flow: StoredFlow, node: Node, job: BroadcastJob):
        try:
            completed = await job.future
        except Exception as e:
            await self._node_error(flow, node, str(e))
            return
        await self._trigger_default(flow, node, {"payload": {
            "broadcast": "complete" if completed else "cancelled",
            "channels": job.completed,
            "source": job.source_key,
        }})

    async def _node_error(self, flow: StoredFlow, node: Node, error: str):
        self.log('warning', f'{node.id}: {error}')
        await self.hub.emit('flow:node-error', {
            "flowId": flow.id,
            "nodeId": node.id,
            "error": error,
            "timestamp": _now_ms(),
        })

    # =========================================================================
    # Resources
    # =========================================================================

    async def _handle_audio(self, request: web.Request) -> web.Response:
        return web.json_response(self.state.audio_files)

    async def _handle_devices(self, request: web.Request) -> web.Response:
        return web.json_response({"success": True, "devices": self.state.list_devices()})

    async def _handle_system_status(self, request: web.Request) -> web.Response:
        return web.json_response(self.state.get_system_status())

    # =========================================================================
    # GPIO
    # =========================================================================

    async def _handle_gpio_status(self, request: web.Request) -> web.Response:
        return web.json_response(self.state.gpio_status())

    async def _handle_gpio_channel(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        try:
            channel = int(data.get('channel'))
            bits = self.state.set_channel(channel)
        except (TypeError, ValueError):
            return _error('Channel must be 0-15')

        return web.json_response({
            "success": True,
            "channel": ChannelEncoder.decode(bits),
            "csStates": bits.to_dict(),
            "pins": {name: NAMED_PINS[name] for name in ('CS0', 'CS1', 'CS2', 'CS3')},
        })

    async def _handle_gpio_write(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        pin = data.get('pin')
        if data.get('pinName'):
            pin = NAMED_PINS.get(data['pinName'])
        try:
            physical = int(pin)
            self.state.write_pin(physical, int(data.get('value', 0)))
        except (TypeError, ValueError) as e:
            return _error(f'Invalid pin write: {e}')
        return web.json_response({"success": True, "pin": physical, "value": self.state.read_pin(physical)})

    # =========================================================================
    # Bluetooth
    # =========================================================================

    async def _handle_bluetooth_status(self, request: web.Request) -> web.Response:
        devices = self.state.list_bluetooth_devices()
        return web.json_response({
            "success": True,
            "mode": "simulated",
            "deviceCount": len(devices),
            "connectedCount": sum(1 for d in devices if d.get('connected')),
        })

    async def _handle_bluetooth_devices(self, request: web.Request) -> web.Response:
        return web.json_response({"success": True, "devices": self.state.list_bluetooth_devices()})

    async def _handle_bluetooth_save(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        try:
            device = self.state.upsert_bluetooth_device(data)
        except ValueError as e:
            return _error(str(e))
        return web.json_response({"success": True, "device": device})

    async def _handle_bluetooth_connection(self, request: web.Request) -> web.Response:
        address = request.match_info['address']
        data = await _read_json(request)
        try:
            device = self.state.set_bluetooth_connection(address, bool(data.get('connected')))
        except KeyError:
            return _error(f"Device not found: {address}", status=404)
        return web.json_response({"success": True, "device": device})

    async def _handle_bluetooth_delete(self, request: web.Request) -> web.Response:
        address = request.match_info['address']
        if not self.state.delete_bluetooth_device(address):
            return _error(f"Device not found: {address}", status=404)
        return web.json_response({"success": True})


async def _serve(server: SimulatorServer):
    await server.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await server.stop()


def main(args=None):
    parser = argparse.ArgumentParser(description='FlowDeck runtime simulator')
    parser.add_argument('--host', help='Interface to bind (default from config)')
    parser.add_argument('--port', type=int, help='Port to listen on (default from config)')
    parser.add_argument('--config', help='Path to editor_config.yaml')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log every request')
    options = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if options.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    logger = logging.getLogger('flowdeck.simulator')

    config = load_config(options.config)
    server = SimulatorServer(
        host=options.host,
        port=options.port,
        config=config.simulator,
        logger=logger,
    )

    try:
        asyncio.run(_serve(server))
    except KeyboardInterrupt:
        logger.info('Interrupted')


if __name__ == '__main__':
    main()
