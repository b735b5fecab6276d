"""
Tests for FlowDeck Channel Encoder

Channel numbers map to the four CS lines, CS0 being the least
significant bit.
"""

import pytest
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from flow_editor.radio.channel import ChannelBits, ChannelEncoder, encode, decode
from flow_editor.radio.pins import NAMED_PINS


class TestEncode:
    """Test channel to CS pattern encoding."""

    def test_channel_zero_is_all_low(self):
        """Test that channel 0 drives no CS lines."""
        assert encode(0) == ChannelBits(False, False, False, False)

    def test_channel_five(self):
        """Test that channel 5 sets CS0 and CS2."""
        bits = encode(5)
        assert bits.as_tuple() == (True, False, True, False)

    def test_channel_fifteen_is_all_high(self):
        """Test that channel 15 drives every CS line."""
        assert encode(15).to_dict() == {"cs0": 1, "cs1": 1, "cs2": 1, "cs3": 1}

    def test_out_of_range_rejected(self):
        """Test that channels outside 0-15 raise."""
        for channel in (-1, 16, 100):
            with pytest.raises(ValueError):
                encode(channel)

    def test_non_integer_rejected(self):
        """Test that non-integer channels raise."""
        for channel in (1.5, "3", None, True):
            with pytest.raises(ValueError):
                encode(channel)


class TestDecode:
    """Test CS pattern to channel decoding."""

    def test_every_channel_round_trips(self):
        """Test that decode inverts encode over the whole range."""
        for channel in range(16):
            assert decode(encode(channel)) == channel

    def test_decode_acknowledgment_mapping(self):
        """Test decoding the csStates object returned by the runtime."""
        assert decode({"cs0": 1, "cs1": 0, "cs2": 1, "cs3": 0}) == 5
        assert decode({"cs0": 0, "cs1": 0, "cs2": 0, "cs3": 1}) == 8

    def test_decode_upper_case_keys(self):
        """Test decoding a mapping keyed by pin names."""
        assert decode({"CS0": True, "CS1": True, "CS2": False, "CS3": False}) == 3

    def test_decode_missing_line_raises(self):
        """Test that a partial mapping is rejected."""
        with pytest.raises(ValueError):
            decode({"cs0": 1, "cs1": 0})


class TestPinLevels:
    """Test the physical pin view of a pattern."""

    def test_pin_levels_follow_named_pins(self):
        """Test that pin levels are keyed by the physical CS pins."""
        levels = ChannelEncoder.pin_levels(encode(9))
        assert levels == {
            NAMED_PINS['CS0']: 1,
            NAMED_PINS['CS1']: 0,
            NAMED_PINS['CS2']: 0,
            NAMED_PINS['CS3']: 1,
        }
