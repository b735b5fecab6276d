"""
Tests for FlowDeck Broadcast Requests and Queue

Tests request building from node configs and trigger messages, cancel
source resolution, and the serialized transmission queue.
"""

import asyncio
import pytest
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from flow_editor.exceptions import ClearChannelTimeout
from flow_editor.node_types import NodeTypeRegistry
from flow_editor.radio import (
    BroadcastQueue,
    BroadcastRequest,
    BroadcastRequestBuilder,
    ChannelEncoder,
    RadioDriver,
    resolve_cancel_key,
    substitute_template,
)
from flow_editor.validation import ConfigValidator


def run_async(coro):
    """Helper to run async functions in tests."""
    return asyncio.run(coro)


def make_request(channel=1, source=None, repeat=1, wait_for_clear=False, timeout_ms=1000):
    return BroadcastRequest(
        node_type='radio-gpio-broadcast',
        radio_id='default',
        audio_source='file',
        audio_file_id='1',
        tts_text=None,
        channel=channel,
        wait_for_clear=wait_for_clear,
        clear_channel_timeout_ms=timeout_ms,
        repeat=repeat,
        repeat_delay_ms=0,
        pre_key_delay_ms=0,
        post_key_delay_ms=0,
        channel_settle_ms=0,
        cancel_source_key=source,
    )


class MockRadio(RadioDriver):
    """Mock radio recording every call."""

    def __init__(self, clear=True):
        self.calls = []
        self.clear = clear
        self.gate = None

    async def set_channel(self, bits):
        self.calls.append(('channel', ChannelEncoder.decode(bits)))

    async def set_ptt(self, active):
        self.calls.append(('ptt', active))

    async def is_channel_clear(self):
        return self.clear

    async def play(self, request):
        self.calls.append(('play', request.channel))
        if self.gate is not None:
            await self.gate.wait()


class TestBuilder:
    """Test building requests from node configs."""

    def setup_method(self):
        """Setup test fixtures."""
        self.builder = BroadcastRequestBuilder(ConfigValidator(NodeTypeRegistry()))

    def test_defaults(self):
        """Test the defaults of a minimal broadcast node."""
        request = self.builder.build('radio-gpio-broadcast', {'audioFileId': '2', 'channel': 5})
        assert request.channel == 5
        assert request.audio_source == 'file'
        assert request.audio_ref == '2'
        assert request.wait_for_clear is True
        assert request.clear_channel_timeout_ms == 5000
        assert request.repeat == 1
        assert request.repeat_delay_ms == 500
        assert request.pre_key_delay_ms == 100
        assert request.post_key_delay_ms == 100
        assert request.cancel_source_key is None

    def test_payload_text_switches_to_tts(self):
        """Test that text in the message overrides the configured file."""
        request = self.builder.build(
            'radio-broadcast',
            {'audioFileId': '2', 'channel': 3},
            {'payload': {'ttsText': 'Gate open'}},
        )
        assert request.audio_source == 'tts'
        assert request.tts_text == 'Gate open'
        assert request.audio_file_id is None

    def test_payload_channel_is_clamped(self):
        """Test that message overrides are validated like the config."""
        request = self.builder.build(
            'radio-gpio-broadcast',
            {'audioFileId': '2'},
            {'payload': {'channel': 99}},
        )
        assert request.channel == 15

    def test_cancel_key_from_message(self):
        """Test that the trigger's button becomes the cancel key."""
        request = self.builder.build(
            'radio-gpio-broadcast',
            {'audioFileId': '2'},
            {'payload': {'buttonName': 'btn1'}},
        )
        assert request.cancel_source_key == 'btn1'

    def test_multi_channel_sequence(self):
        """Test that the multi-channel node yields one request per channel."""
        requests = self.builder.build_sequence(
            'awr-erm100-broadcast',
            {'channels': [2, 5, 2], 'audioFileId': '1'},
        )
        assert [r.channel for r in requests] == [2, 5]
        for request in requests:
            assert request.repeat == 1
            assert request.key_duration_ms == 2000
            assert request.channel_settle_ms == 50
            assert request.repeat_delay_ms == 500

    def test_not_a_broadcast_type(self):
        """Test that other node types are rejected."""
        with pytest.raises(ValueError):
            self.builder.build('debug', {})

    def test_to_dict(self):
        """Test the wire form of a request."""
        data = self.builder.build('radio-gpio-broadcast', {'audioFileId': '2'}).to_dict()
        assert data['audioSource'] == 'file'
        assert data['clearChannelTimeout'] == 5000
        assert data['cancelSource'] is None


class TestCancelKey:
    """Test cancel source resolution."""

    def test_configured_source_wins(self):
        """Test that a literal configured source is used as-is."""
        assert resolve_cancel_key('gate', {'payload': {'source': 'other'}}) == 'gate'

    def test_template_source(self):
        """Test template substitution in the configured source."""
        message = {'payload': {'buttonName': 'btn1'}}
        assert resolve_cancel_key('{{payload.buttonName}}', message) == 'btn1'

    def test_payload_fallback_order(self):
        """Test the payload keys consulted without a configured source."""
        assert resolve_cancel_key(None, {'payload': {'source': 'a', 'buttonName': 'b'}}) == 'a'
        assert resolve_cancel_key('', {'payload': {'deviceName': 'remote'}}) == 'remote'
        assert resolve_cancel_key('', {'payload': 'text'}) is None
        assert resolve_cancel_key(None) is None

    def test_unresolved_placeholders_kept(self):
        """Test that placeholders without a value stay in the text."""
        text = substitute_template('{{payload.deviceName}}-{{payload.button}}', {'payload': {'deviceName': 'gate'}})
        assert text == 'gate-{{payload.button}}'

    def test_nested_values(self):
        """Test substitution of several placeholders."""
        message = {'payload': {'n': 3}, 'topic': 'buttons'}
        assert substitute_template('Button {{payload.n}} on {{ topic }}', message) == 'Button 3 on buttons'


class TestQueue:
    """Test the serialized transmission queue."""

    def test_transmission_sequence(self):
        """Test channel selection, keying and release order."""
        async def _test():
            radio = MockRadio()
            queue = BroadcastQueue(radio, clear_poll_ms=5)
            completed = await queue.enqueue(make_request(channel=6, repeat=2))
            assert completed is True
            assert radio.calls == [
                ('channel', 6),
                ('ptt', True),
                ('play', 6),
                ('play', 6),
                ('ptt', False),
            ]

        run_async(_test())

    def test_jobs_run_in_order(self):
        """Test that jobs never overlap."""
        async def _test():
            radio = MockRadio()
            queue = BroadcastQueue(radio, clear_poll_ms=5)
            first = queue.submit(make_request(channel=1))
            second = queue.submit([make_request(channel=2), make_request(channel=3)])
            assert queue.queue_length == 2
            assert await first.future is True
            assert await second.future is True
            channels = [value for call, value in radio.calls if call == 'channel']
            assert channels == [1, 2, 3]
            assert second.completed == [2, 3]

        run_async(_test())

    def test_cancel_by_source(self):
        """Test that cancelling drops queued jobs and stops the active one."""
        async def _test():
            radio = MockRadio()
            radio.gate = asyncio.Event()
            queue = BroadcastQueue(radio, clear_poll_ms=5)

            active = queue.submit(make_request(channel=1, source='btn1', repeat=3))
            queued = queue.submit(make_request(channel=2, source='btn1'))
            other = queue.submit(make_request(channel=3, source='btn2'))
            await asyncio.sleep(0.05)

            assert queue.cancel_by_source('btn1') == 2
            assert queued.future.result() is False
            assert queue.queue_length == 1

            radio.gate.set()
            assert await active.future is False
            assert await other.future is True

            plays = [value for call, value in radio.calls if call == 'play']
            assert plays == [1, 3]
            ptt = [value for call, value in radio.calls if call == 'ptt']
            assert ptt == [True, False, True, False]

        run_async(_test())

    def test_cancel_without_key(self):
        """Test that an empty key cancels nothing."""
        async def _test():
            queue = BroadcastQueue(MockRadio())
            assert queue.cancel_by_source('') == 0
            assert queue.cancel_by_source(None) == 0

        run_async(_test())

    def test_clear_channel_timeout(self):
        """Test that a busy channel fails the job without keying."""
        async def _test():
            radio = MockRadio(clear=False)
            queue = BroadcastQueue(radio, clear_poll_ms=10)
            job = queue.submit(make_request(wait_for_clear=True, timeout_ms=50))
            with pytest.raises(ClearChannelTimeout) as info:
                await job.future
            assert info.value.timeout_ms == 50
            assert '50ms' in str(info.value)
            assert ('ptt', True) not in radio.calls

        run_async(_test())

    def test_failure_does_not_stop_queue(self):
        """Test that the next job runs after a failed one."""
        async def _test():
            radio = MockRadio(clear=False)
            queue = BroadcastQueue(radio, clear_poll_ms=10)
            failing = queue.submit(make_request(wait_for_clear=True, timeout_ms=30))
            passing = queue.submit(make_request(channel=4))
            with pytest.raises(ClearChannelTimeout):
                await failing.future
            assert await passing.future is True

        run_async(_test())

    def test_stop_drops_pending(self):
        """Test that stopping resolves queued jobs as not completed."""
        async def _test():
            radio = MockRadio()
            radio.gate = asyncio.Event()
            queue = BroadcastQueue(radio)
            queue.submit(make_request(channel=1))
            pending = queue.submit(make_request(channel=2))
            await asyncio.sleep(0.05)
            await queue.stop()
            assert pending.future.result() is False
            assert radio.calls[-1] == ('ptt', False)

        run_async(_test())
