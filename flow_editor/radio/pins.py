"""
FlowDeck GPIO Pin Catalogue

Static description of the 40-pin header, the radio control pins wired to
it, and the 16-pin external connector that breaks those pins out.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional


# Radio control lines, by physical header pin
NAMED_PINS: Dict[str, int] = {
    'PTT': 13,
    'CS0': 22,
    'CS1': 18,
    'CS2': 16,
    'CS3': 15,
    'CLEAR_CHANNEL': 32,
    'GPIO1': 12,
    'GPIO7': 19,
    'GPIO8': 21,
    'GPIO13': 33,
}

# Same lines, by BCM GPIO number
NAMED_BCM: Dict[str, int] = {
    'PTT': 27,
    'CS0': 25,
    'CS1': 24,
    'CS2': 23,
    'CS3': 22,
    'CLEAR_CHANNEL': 12,
    'GPIO1': 18,
    'GPIO7': 10,
    'GPIO8': 9,
    'GPIO13': 13,
}

CS_PIN_NAMES = ('CS0', 'CS1', 'CS2', 'CS3')

# Physical pin -> BCM number for every GPIO-capable header pin
_HEADER_BCM: Dict[int, int] = {
    3: 2, 5: 3, 7: 4, 8: 14, 10: 15, 11: 17, 12: 18, 13: 27, 15: 22,
    16: 23, 18: 24, 19: 10, 21: 9, 22: 25, 23: 11, 24: 8, 26: 7, 27: 0,
    28: 1, 29: 5, 31: 6, 32: 12, 33: 13, 35: 19, 36: 16, 37: 26, 38: 20,
    40: 21,
}

_ROLES: Dict[str, tuple] = {
    'power': (1, 17, 2, 4),
    'ground': (6, 9, 14, 20, 25, 30, 34, 39),
    'i2c': (3, 5),
    'uart': (8, 10),
    'spi': (23, 24, 26),
    'reserved': (27, 28),
}

_OUTPUT_LABELS: Dict[int, str] = {
    13: 'PTT',
    22: 'CS0',
    18: 'CS1',
    16: 'CS2',
    15: 'CS3',
    32: 'Clear Ch',
}


@dataclass(frozen=True)
class HeaderPin:
    """One pin of the 40-pin header."""
    physical: int
    role: str
    bcm: Optional[int] = None
    label: Optional[str] = None

    @property
    def bcm_name(self) -> Optional[str]:
        return f"GPIO{self.bcm}" if self.bcm is not None else None

    @property
    def direction(self) -> Optional[str]:
        if self.label:
            return 'output'
        if self.role == 'gpio':
            return 'input'
        return None

    def to_dict(self) -> Dict:
        return {
            "physical": self.physical,
            "bcm": self.bcm,
            "bcmName": self.bcm_name,
            "role": self.role,
            "label": self.label,
            "direction": self.direction,
        }


@dataclass(frozen=True)
class ConnectorPin:
    """One pin of the 16-pin external connector."""
    number: int
    maps40: int
    name: str

    def to_dict(self) -> Dict:
        return {"pin": self.number, "maps40": self.maps40, "name": self.name}


def _role_of(physical: int) -> str:
    for role, pins in _ROLES.items():
        if physical in pins:
            return role
    return 'gpio'


HEADER_40: Dict[int, HeaderPin] = {
    physical: HeaderPin(
        physical=physical,
        role=_role_of(physical),
        bcm=_HEADER_BCM.get(physical),
        label=_OUTPUT_LABELS.get(physical),
    )
    for physical in range(1, 41)
}

CONNECTOR_16: List[ConnectorPin] = [
    ConnectorPin(1, 2, 'PWR 5V'),
    ConnectorPin(2, 4, 'PWR 5V'),
    ConnectorPin(3, 4, 'Mike 5V'),
    ConnectorPin(4, 5, 'GREEN'),
    ConnectorPin(5, 6, 'PWR GND'),
    ConnectorPin(6, 9, 'MIKE GND'),
    ConnectorPin(7, 12, 'BLUE'),
    ConnectorPin(8, 13, 'PTT'),
    ConnectorPin(9, 15, 'CS3'),
    ConnectorPin(10, 16, 'CS2'),
    ConnectorPin(11, 18, 'CS1'),
    ConnectorPin(12, 19, 'GREEN'),
    ConnectorPin(13, 21, 'BLUE'),
    ConnectorPin(14, 22, 'CS0'),
    ConnectorPin(15, 32, 'Clear Ch'),
    ConnectorPin(16, 33, 'GREY'),
]


def header_pin(physical: int) -> HeaderPin:
    if physical not in HEADER_40:
        raise ValueError(f"Physical pin must be between 1 and 40, got {physical}")
    return HEADER_40[physical]


def connector_pin(number: int) -> ConnectorPin:
    for pin in CONNECTOR_16:
        if pin.number == number:
            return pin
    raise ValueError(f"Connector pin must be between 1 and 16, got {number}")


def resolve_pin(pin_name: Optional[str] = None, pin: Optional[int] = None) -> Optional[int]:
    """Physical pin for a gpio node's pinName/pin selection; pinName wins."""
    if pin_name:
        return NAMED_PINS.get(pin_name)
    if pin is not None and int(pin) in HEADER_40:
        return int(pin)
    return None


def pin_direction(physical: int) -> Optional[str]:
    return header_pin(physical).direction


__all__ = [
    'NAMED_PINS',
    'NAMED_BCM',
    'CS_PIN_NAMES',
    'HeaderPin',
    'ConnectorPin',
    'HEADER_40',
    'CONNECTOR_16',
    'header_pin',
    'connector_pin',
    'resolve_pin',
    'pin_direction',
]
