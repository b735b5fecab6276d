"""
FlowDeck Simulated Radio

Radio driver that drives the simulator's pin levels instead of hardware.
The CLEAR_CHANNEL input is active-low: 0 means the channel is clear.
"""

import asyncio
from typing import List, Tuple

from flow_editor.radio.broadcast import BroadcastRequest
from flow_editor.radio.channel import ChannelBits, ChannelEncoder
from flow_editor.radio.pins import NAMED_PINS
from flow_editor.radio.queue import RadioDriver
from flow_editor.simulator.state import SimulatorState


class SimulatedRadio(RadioDriver):

    def __init__(self, state: SimulatorState, audio_ms: int = 250):
        self.state = state
        self.audio_ms = audio_ms
        self.played: List[Tuple[int, str]] = []

    async def set_channel(self, bits: ChannelBits):
        for physical, level in ChannelEncoder.pin_levels(bits).items():
            self.state.write_pin(physical, level)

    async def set_ptt(self, active: bool):
        self.state.write_pin(NAMED_PINS['PTT'], 1 if active else 0)

    async def is_channel_clear(self) -> bool:
        return self.state.read_pin(NAMED_PINS['CLEAR_CHANNEL']) == 0

    async def play(self, request: BroadcastRequest):
        self.played.append((request.channel, request.audio_ref))
        await asyncio.sleep(self.audio_ms / 1000.0)
