"""
Tests for FlowDeck Runtime Simulator

End-to-end tests: the editor session, runtime client, event stream and
telemetry sync talking to the simulator over real HTTP and websockets.
"""

import asyncio
import pytest
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from aiohttp import test_utils

from flow_editor.client import EventSubscription, RuntimeClient
from flow_editor.config import SimulatorConfig, TelemetryConfig
from flow_editor.editor import EditorSession, NoticeBoard
from flow_editor.exceptions import TransportError
from flow_editor.node_types import NodeTypeRegistry
from flow_editor.radio.pins import NAMED_PINS
from flow_editor.simulator import SimulatorServer, SimulatorState
from flow_editor.telemetry import TelemetrySync


REGISTRY = NodeTypeRegistry()


def run_async(coro):
    """Helper to run async functions in tests."""
    return asyncio.run(coro)


class EventCollector:
    """Event stream callback that remembers every frame."""

    def __init__(self):
        self.events = []

    def __call__(self, event, data):
        self.events.append((event, data))

    async def wait_for(self, predicate, timeout=5.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            for event, data in self.events:
                if predicate(event, data):
                    return data
            if loop.time() > deadline:
                raise AssertionError(f"No matching event in {self.events}")
            await asyncio.sleep(0.02)


class SimulatorHarness:
    """Runs a simulator on a free port with a client pointed at it."""

    def __init__(self, audio_ms=20):
        config = SimulatorConfig(clear_channel_poll_ms=10, simulated_audio_ms=audio_ms)
        self.simulator = SimulatorServer(config=config, registry=REGISTRY, state=SimulatorState(server_name='test-server'))

    async def __aenter__(self):
        self.server = test_utils.TestServer(self.simulator.build_app())
        await self.server.start_server()
        self.client = RuntimeClient(base_url=f"http://{self.server.host}:{self.server.port}/api", timeout=5)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.client.close()
        await self.server.close()

    @property
    def ws_url(self):
        return f"ws://{self.server.host}:{self.server.port}/ws"

    def session(self):
        return EditorSession(self.client, REGISTRY, NoticeBoard(ttl=0))

    async def subscribe(self):
        collector = EventCollector()
        subscription = EventSubscription(self.ws_url, collector, reconnect_delay=0.1)
        subscription.start()
        await subscription.wait_connected(timeout=5)
        await collector.wait_for(lambda event, data: event == 'connected')
        return subscription, collector


class TestFlowLifecycle:
    """Test saving, running and deleting flows against the simulator."""

    def test_save_start_stop(self):
        """Test the full editing round trip of a flow."""
        async def _test():
            async with SimulatorHarness() as harness:
                session = harness.session()
                session.new_flow('Front Gate')
                inject = session.graph.add_node('inject', (0, 0))
                debug = session.graph.add_node('debug', (200, 0))
                session.graph.connect(inject.id, debug.id)

                assert await session.save()
                assert session.flow.id == 'f1'
                flows = await harness.client.list_flows()
                assert flows[0]['nodeCount'] == 2

                assert await session.start()
                assert session.lock.locked
                assert await harness.client.flow_status('f1') == 'running'

                assert await session.stop()
                assert not session.lock.locked

                reopened = harness.session()
                assert await reopened.open('f1')
                assert reopened.flow.name == 'Front Gate'
                assert [n.type for n in reopened.graph.node_list()] == ['inject', 'debug']
                assert len(reopened.graph.edge_list()) == 1

        run_async(_test())

    def test_lifecycle_events(self):
        """Test that flow lifecycle changes are pushed to subscribers."""
        async def _test():
            async with SimulatorHarness() as harness:
                subscription, events = await harness.subscribe()
                try:
                    flow_id = await harness.client.create_flow({'name': 'Tower'})
                    await harness.client.start_flow(flow_id)
                    await harness.client.delete_flow(flow_id)
                    await events.wait_for(lambda e, d: e == 'flow:deleted' and d['flowId'] == flow_id)
                    names = [e for e, _ in events.events]
                    assert names.index('flow:deployed') < names.index('flow:started') < names.index('flow:deleted')
                finally:
                    await subscription.close()

        run_async(_test())

    def test_errors_surface_as_transport_errors(self):
        """Test that runtime rejections raise TransportError."""
        async def _test():
            async with SimulatorHarness() as harness:
                with pytest.raises(TransportError) as info:
                    await harness.client.get_flow('f99')
                assert info.value.status == 404
                assert 'f99' in info.value.message

                with pytest.raises(TransportError) as info:
                    await harness.client.create_flow({'name': ''})
                assert info.value.status == 400

                with pytest.raises(TransportError) as info:
                    await harness.client.set_channel(16)
                assert info.value.message == 'Channel must be 0-15'

        run_async(_test())

    def test_unreachable_runtime(self):
        """Test that a dead runtime becomes a notice, not a crash."""
        async def _test():
            client = RuntimeClient(base_url=f"http://127.0.0.1:{test_utils.unused_port()}/api", timeout=2)
            try:
                session = EditorSession(client, REGISTRY, NoticeBoard(ttl=0))
                session.new_flow('Offline')
                assert await session.save() is False
                assert session.flow.is_new
                assert session.notices.active()[0].text.startswith('Saving flow failed: Runtime unreachable')
            finally:
                await client.close()

        run_async(_test())


class TestTriggers:
    """Test node triggers and the broadcast queue in the simulator."""

    def test_debug_node(self):
        """Test that triggering a debug node emits a debug message."""
        async def _test():
            async with SimulatorHarness() as harness:
                session = harness.session()
                session.new_flow('Debugging')
                node = session.graph.add_node('debug')
                session.graph.set_node_config(node.id, {'name': 'Log'})
                await session.save()

                subscription, events = await harness.subscribe()
                try:
                    assert await session.trigger(node.id, {'hello': 'world'})
                    data = await events.wait_for(lambda e, d: e == 'debug:message')
                    assert data['nodeId'] == node.id
                    assert data['nodeName'] == 'Log'
                    assert data['message'] == {'hello': 'world'}
                finally:
                    await subscription.close()

        run_async(_test())

    def test_broadcast_completes(self):
        """Test a broadcast running through the simulated radio."""
        async def _test():
            async with SimulatorHarness() as harness:
                session = harness.session()
                session.new_flow('Broadcast')
                node = session.graph.add_node('radio-gpio-broadcast')
                session.graph.set_node_config(node.id, {
                    'audioFileId': '1', 'channel': 5, 'preKeyDelay': 0, 'postKeyDelay': 0,
                })
                await session.save()

                subscription, events = await harness.subscribe()
                try:
                    await session.trigger(node.id)
                    data = await events.wait_for(
                        lambda e, d: e == 'flow:node-output' and d['nodeId'] == node.id
                    )
                    assert data['data']['payload']['broadcast'] == 'complete'
                    assert harness.simulator.radio.played == [(5, '1')]

                    state = harness.simulator.state
                    assert state.read_pin(NAMED_PINS['PTT']) == 0
                    assert state.read_pin(NAMED_PINS['CS0']) == 1
                    assert state.read_pin(NAMED_PINS['CS2']) == 1
                finally:
                    await subscription.close()

        run_async(_test())

    def test_busy_channel_reports_error(self):
        """Test that a busy channel surfaces as a node error."""
        async def _test():
            async with SimulatorHarness() as harness:
                session = harness.session()
                session.new_flow('Busy')
                node = session.graph.add_node('radio-gpio-broadcast')
                session.graph.set_node_config(node.id, {'audioFileId': '1', 'clearChannelTimeout': 1000})
                await session.save()
                harness.simulator.state.write_pin(NAMED_PINS['CLEAR_CHANNEL'], 1)

                subscription, events = await harness.subscribe()
                try:
                    await session.trigger(node.id)
                    data = await events.wait_for(lambda e, d: e == 'flow:node-error')
                    assert 'timeout waiting for clear channel' in data['error']
                    assert harness.simulator.radio.played == []
                finally:
                    await subscription.close()

        run_async(_test())

    def test_cancel_broadcast(self):
        """Test cancelling a broadcast by the button that started it."""
        async def _test():
            async with SimulatorHarness(audio_ms=300) as harness:
                session = harness.session()
                session.new_flow('Cancel')
                broadcast = session.graph.add_node('radio-gpio-broadcast')
                session.graph.set_node_config(broadcast.id, {
                    'audioFileId': '1', 'repeat': 5, 'repeatDelay': 0, 'preKeyDelay': 0, 'postKeyDelay': 0,
                })
                cancel = session.graph.add_node('cancel-broadcast')
                await session.save()

                subscription, events = await harness.subscribe()
                try:
                    await harness.client.trigger_node('f1', broadcast.id, {'buttonName': 'btn1'})
                    result = await harness.client.trigger_node('f1', cancel.id, {'buttonName': 'btn1'})
                    assert result['cancelled'] is True
                    assert result['source'] == 'btn1'

                    data = await events.wait_for(
                        lambda e, d: e == 'flow:node-output' and d['nodeId'] == broadcast.id
                    )
                    assert data['data']['payload']['broadcast'] == 'cancelled'
                    assert len(harness.simulator.radio.played) < 5
                    assert harness.simulator.state.read_pin(NAMED_PINS['PTT']) == 0
                finally:
                    await subscription.close()

        run_async(_test())

    def test_unknown_node(self):
        """Test triggering a node that is not in the flow."""
        async def _test():
            async with SimulatorHarness() as harness:
                flow_id = await harness.client.create_flow({'name': 'Empty'})
                with pytest.raises(TransportError) as info:
                    await harness.client.trigger_node(flow_id, 'node_1')
                assert info.value.status == 404

        run_async(_test())


class TestHardware:
    """Test GPIO and Bluetooth endpoints with the telemetry layer."""

    def test_channel_and_gpio_poll(self):
        """Test that a channel change shows up in the GPIO telemetry."""
        async def _test():
            async with SimulatorHarness() as harness:
                session = harness.session()
                bits = await session.test_channel(9)
                assert bits.to_dict() == {'cs0': 1, 'cs1': 0, 'cs2': 0, 'cs3': 1}

                sync = TelemetrySync(harness.client, ws_url=harness.ws_url, config=TelemetryConfig())
                assert await sync.poll_gpio()
                assert sync.gpio.current_channel() == 9
                assert sync.gpio.named_state('PTT') == 'low'
                await sync.close()

        run_async(_test())

    def test_bluetooth_inspection(self):
        """Test persisting a GATT inspection through the runtime."""
        async def _test():
            async with SimulatorHarness() as harness:
                await harness.client.save_bluetooth_device('AA:BB', 'Remote', {}, {})
                await harness.client.set_bluetooth_connection('AA:BB', True)

                sync = TelemetrySync(harness.client, ws_url=harness.ws_url, config=TelemetryConfig())
                assert await sync.poll_bluetooth()
                await sync.inspect_bluetooth('AA:BB', {
                    '180f': {'characteristics': [{'uuid': '2a19', 'properties': ['read', 'notify']}]},
                })

                devices = await harness.client.bluetooth_devices()
                assert devices[0]['capabilities']['180f:2a19']['properties']['notify'] is True

                assert await sync.poll_bluetooth()
                tree = sync.bluetooth.service_tree('AA:BB')
                assert tree[0]['name'] == 'Battery Service'
                assert tree[0]['characteristics'][0]['name'] == 'Battery Level'
                await sync.close()

        run_async(_test())

    def test_event_stream_feeds_debug_log(self):
        """Test that pushed events reach the telemetry logs."""
        async def _test():
            async with SimulatorHarness() as harness:
                flow_id = await harness.client.create_flow({
                    'name': 'Logs',
                    'nodes': [{'id': 'node_1', 'type': 'debug', 'config': {'name': 'Out'}}],
                })
                sync = TelemetrySync(harness.client, ws_url=harness.ws_url, flow_id=flow_id, config=TelemetryConfig())
                sync.start(gpio=False, bluetooth=False, events=True)
                try:
                    await sync.subscription.wait_connected(timeout=5)
                    for _ in range(100):
                        if harness.simulator.hub.clients:
                            break
                        await asyncio.sleep(0.02)
                    await harness.client.trigger_node(flow_id, 'node_1', {'n': 1})
                    for _ in range(100):
                        if len(sync.debug_log):
                            break
                        await asyncio.sleep(0.02)
                    entry = sync.debug_log.entries()[0]
                    assert entry.node_name == 'Out'
                    assert entry.payload == {'n': 1}
                finally:
                    await sync.close()

        run_async(_test())

    def test_resources(self):
        """Test the catalogue endpoints."""
        async def _test():
            async with SimulatorHarness() as harness:
                audio = await harness.client.list_audio()
                assert [a['id'] for a in audio] == [1, 2, 3]
                devices = await harness.client.list_devices()
                assert devices[0]['type'] == 'xbee'
                types = await harness.client.list_node_types()
                assert 'radio-broadcast' in [t['type'] for t in types]
                status = await harness.client.system_status()
                assert status['server_name'] == 'test-server'

        run_async(_test())
