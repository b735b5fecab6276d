"""FlowDeck live telemetry: GPIO levels, Bluetooth capabilities, debug and traffic logs."""

from flow_editor.telemetry.bluetooth import BluetoothDevice, BluetoothTelemetry
from flow_editor.telemetry.events import DebugEvent, EventLog, TrafficEntry
from flow_editor.telemetry.gpio import GpioTelemetry
from flow_editor.telemetry.sync import Poller, TelemetrySync

__all__ = [
    'BluetoothDevice',
    'BluetoothTelemetry',
    'DebugEvent',
    'EventLog',
    'TrafficEntry',
    'GpioTelemetry',
    'Poller',
    'TelemetrySync',
]
