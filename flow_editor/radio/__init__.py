"""FlowDeck radio protocol: channel encoding, pin catalogue, broadcast requests and queue."""

from flow_editor.radio.broadcast import (
    BROADCAST_TYPES,
    BroadcastRequest,
    BroadcastRequestBuilder,
    resolve_cancel_key,
    substitute_template,
)
from flow_editor.radio.channel import ChannelBits, ChannelEncoder
from flow_editor.radio.queue import BroadcastQueue, RadioDriver, transmit, wait_for_clear_channel

__all__ = [
    'BROADCAST_TYPES',
    'BroadcastRequest',
    'BroadcastRequestBuilder',
    'resolve_cancel_key',
    'substitute_template',
    'ChannelBits',
    'ChannelEncoder',
    'BroadcastQueue',
    'RadioDriver',
    'transmit',
    'wait_for_clear_channel',
]
