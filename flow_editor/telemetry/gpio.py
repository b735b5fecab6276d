"""
FlowDeck GPIO Telemetry

Read model over the runtime's GPIO pin levels. Rendering is stale-safe:
the last good snapshot stays visible while a poll is in flight or after a
failed poll, and pins read as 'unknown' until the first success.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Set

from flow_editor.radio.channel import ChannelEncoder
from flow_editor.radio.pins import CONNECTOR_16, CS_PIN_NAMES, HEADER_40, NAMED_PINS, connector_pin


PIN_HIGH = 'high'
PIN_LOW = 'low'
PIN_UNKNOWN = 'unknown'


class GpioTelemetry:
    """Latest known pin levels, keyed by physical header pin."""

    def __init__(self, logger=None):
        self.logger = logger or logging.getLogger(__name__)
        self.states: Dict[int, int] = {}
        self.pins: Dict[str, Any] = {}
        self.has_data = False
        self.last_error: Optional[str] = None
        self.updated_at: Optional[float] = None
        self.in_flight: Set[int] = set()
        self._issued = 0
        self._applied = 0

    @property
    def polling(self) -> bool:
        return bool(self.in_flight)

    def begin_poll(self) -> int:
        """Reserve a sequence number for a new status request."""
        self._issued += 1
        self.in_flight.add(self._issued)
        return self._issued

    def apply(self, token: int, status: Dict[str, Any]) -> bool:
        """
        Apply a status response.

        Ignored (returns False) when a response to a later request has
        already been applied.
        """
        self.in_flight.discard(token)
        if token <= self._applied:
            self.logger.debug(f"Dropping stale GPIO status #{token} (have #{self._applied})")
            return False

        states = {}
        for key, value in (status.get('states') or {}).items():
            try:
                states[int(key)] = 1 if _is_high(value) else 0
            except (TypeError, ValueError):
                continue

        self.states = states
        self.pins = dict(status.get('pins') or {})
        self._applied = token
        self.has_data = True
        self.last_error = None
        self.updated_at = time.time()
        return True

    def release(self, token: int):
        """Forget a request that ended without a response."""
        self.in_flight.discard(token)

    def fail(self, token: int, error: Any):
        """Record a failed poll; the previous snapshot stays in place."""
        self.in_flight.discard(token)
        if token > self._applied:
            self.last_error = str(error)

    def pin_state(self, physical: int) -> str:
        if physical not in self.states:
            return PIN_UNKNOWN
        return PIN_HIGH if self.states[physical] else PIN_LOW

    def named_state(self, name: str) -> str:
        return self.pin_state(NAMED_PINS[name])

    def connector_state(self, number: int) -> str:
        """State of a 16-pin connector pin, read through the header pin it maps onto."""
        return self.pin_state(connector_pin(number).maps40)

    def current_channel(self) -> Optional[int]:
        """Channel selected by the CS lines, if all four are known."""
        levels = {}
        for name in CS_PIN_NAMES:
            state = self.named_state(name)
            if state == PIN_UNKNOWN:
                return None
            levels[name.lower()] = state == PIN_HIGH
        return ChannelEncoder.decode(levels)

    def header_view(self) -> List[Dict[str, Any]]:
        view = []
        for physical, pin in HEADER_40.items():
            entry = pin.to_dict()
            entry["state"] = self.pin_state(physical)
            view.append(entry)
        return view

    def connector_view(self) -> List[Dict[str, Any]]:
        view = []
        for pin in CONNECTOR_16:
            entry = pin.to_dict()
            entry["direction"] = HEADER_40[pin.maps40].direction
            entry["state"] = self.pin_state(pin.maps40)
            view.append(entry)
        return view

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasData": self.has_data,
            "polling": self.polling,
            "lastError": self.last_error,
            "updatedAt": self.updated_at,
            "states": {str(k): v for k, v in self.states.items()},
        }


def _is_high(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'high', 'true')
    return bool(value)


__all__ = [
    'GpioTelemetry',
    'PIN_HIGH',
    'PIN_LOW',
    'PIN_UNKNOWN',
]
