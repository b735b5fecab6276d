"""
FlowDeck Channel Encoder

Radio channels 0-15 are selected by driving four chip-select lines:
CS0 carries bit 0 (least significant) through CS3 carrying bit 3.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Union

from flow_editor.radio.pins import CS_PIN_NAMES, NAMED_PINS


MIN_CHANNEL = 0
MAX_CHANNEL = 15


@dataclass(frozen=True)
class ChannelBits:
    cs0: bool = False
    cs1: bool = False
    cs2: bool = False
    cs3: bool = False

    def as_tuple(self):
        return (self.cs0, self.cs1, self.cs2, self.cs3)

    def to_dict(self) -> Dict[str, int]:
        return {
            "cs0": int(self.cs0),
            "cs1": int(self.cs1),
            "cs2": int(self.cs2),
            "cs3": int(self.cs3),
        }


class ChannelEncoder:
    """Bijection between channel numbers and CS line patterns."""

    @staticmethod
    def encode(channel: int) -> ChannelBits:
        if isinstance(channel, bool) or not isinstance(channel, int):
            raise ValueError(f"Channel must be an integer, got {channel!r}")
        if channel < MIN_CHANNEL or channel > MAX_CHANNEL:
            raise ValueError(f"Channel must be between {MIN_CHANNEL} and {MAX_CHANNEL}, got {channel}")
        return ChannelBits(
            cs0=bool(channel & 1),
            cs1=bool(channel & 2),
            cs2=bool(channel & 4),
            cs3=bool(channel & 8),
        )

    @staticmethod
    def decode(bits: Union[ChannelBits, Mapping[str, Any]]) -> int:
        """
        Channel number for a CS pattern.

        Accepts ChannelBits or a mapping such as the runtime's csStates
        acknowledgment ({"cs0": 1, "cs1": 0, ...}).
        """
        if isinstance(bits, ChannelBits):
            levels = bits.as_tuple()
        else:
            try:
                levels = tuple(_level(bits, name.lower()) for name in CS_PIN_NAMES)
            except KeyError as e:
                raise ValueError(f"Missing chip-select state {e}") from e
        return sum(1 << index for index, level in enumerate(levels) if level)

    @staticmethod
    def pin_levels(bits: ChannelBits) -> Dict[int, int]:
        """Physical pin -> level (0/1) for the four CS lines."""
        return {
            NAMED_PINS[name]: int(level)
            for name, level in zip(CS_PIN_NAMES, bits.as_tuple())
        }


def _level(bits: Mapping[str, Any], key: str) -> bool:
    if key in bits:
        value = bits[key]
    else:
        value = bits[key.upper()]
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'high')
    return bool(value)


encode = ChannelEncoder.encode
decode = ChannelEncoder.decode
pin_levels = ChannelEncoder.pin_levels


__all__ = [
    'ChannelBits',
    'ChannelEncoder',
    'encode',
    'decode',
    'pin_levels',
    'MIN_CHANNEL',
    'MAX_CHANNEL',
]
