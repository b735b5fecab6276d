"""
FlowDeck Bluetooth Telemetry

Device list and GATT capability maps for Bluetooth LE devices known to
the runtime. The capability tree is rebuilt wholesale from every device
list refresh.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from flow_editor.exceptions import DeviceNotConnected


BASE_UUID_SUFFIX = '-0000-1000-8000-00805f9b34fb'

CAPABILITY_PROPERTIES = (
    'read',
    'write',
    'writeWithoutResponse',
    'notify',
    'indicate',
    'authenticatedSignedWrites',
    'reliableWrite',
    'writableAuxiliaries',
)

GATT_SERVICES = {
    '00001800-0000-1000-8000-00805f9b34fb': 'Generic Access',
    '00001801-0000-1000-8000-00805f9b34fb': 'Generic Attribute',
    '0000180a-0000-1000-8000-00805f9b34fb': 'Device Information',
    '0000180f-0000-1000-8000-00805f9b34fb': 'Battery Service',
    '00001805-0000-1000-8000-00805f9b34fb': 'Current Time Service',
    '0000181a-0000-1000-8000-00805f9b34fb': 'Environmental Sensing',
    '6e400001-b5a3-f393-e0a9-e50e24dcca9e': 'Nordic UART Service',
}

GATT_CHARACTERISTICS = {
    '00002a00-0000-1000-8000-00805f9b34fb': 'Device Name',
    '00002a01-0000-1000-8000-00805f9b34fb': 'Appearance',
    '00002a04-0000-1000-8000-00805f9b34fb': 'Peripheral Preferred Connection Parameters',
    '00002aa6-0000-1000-8000-00805f9b34fb': 'Central Address Resolution',
    '00002a05-0000-1000-8000-00805f9b34fb': 'Service Changed',
    '00002a29-0000-1000-8000-00805f9b34fb': 'Manufacturer Name String',
    '00002a24-0000-1000-8000-00805f9b34fb': 'Model Number String',
    '00002a25-0000-1000-8000-00805f9b34fb': 'Serial Number String',
    '00002a27-0000-1000-8000-00805f9b34fb': 'Hardware Revision String',
    '00002a26-0000-1000-8000-00805f9b34fb': 'Firmware Revision String',
    '00002a28-0000-1000-8000-00805f9b34fb': 'Software Revision String',
    '00002a19-0000-1000-8000-00805f9b34fb': 'Battery Level',
    '00002a6e-0000-1000-8000-00805f9b34fb': 'Temperature',
    '00002a6f-0000-1000-8000-00805f9b34fb': 'Humidity',
    '00002a6d-0000-1000-8000-00805f9b34fb': 'Pressure',
    '6e400002-b5a3-f393-e0a9-e50e24dcca9e': 'Nordic UART RX',
    '6e400003-b5a3-f393-e0a9-e50e24dcca9e': 'Nordic UART TX',
}


def expand_uuid(uuid: str) -> str:
    """Expand 16- and 32-bit SIG UUIDs to the full 128-bit form."""
    uuid = uuid.strip().lower()
    if len(uuid) == 4:
        return f"0000{uuid}{BASE_UUID_SUFFIX}"
    if len(uuid) == 8:
        return f"{uuid}{BASE_UUID_SUFFIX}"
    return uuid


def uuid_name(uuid: str, kind: str = 'service') -> Optional[str]:
    table = GATT_SERVICES if kind == 'service' else GATT_CHARACTERISTICS
    return table.get(expand_uuid(uuid))


def capability_key(service_uuid: str, characteristic_uuid: str) -> str:
    return f"{service_uuid}:{characteristic_uuid}"


def normalize_properties(properties: Any) -> Dict[str, bool]:
    """Property flags from either a flag mapping or a list of property names."""
    if isinstance(properties, dict):
        return {name: bool(properties.get(name, False)) for name in CAPABILITY_PROPERTIES}
    names = set(properties or [])
    return {name: name in names for name in CAPABILITY_PROPERTIES}


def build_capabilities(services: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """
    Capability map from a GATT inspection.

    Args:
        services: service uuid -> {"characteristics": [{"uuid", "properties"}]}
    """
    capabilities = {}
    for service_uuid, service in (services or {}).items():
        for characteristic in (service or {}).get('characteristics', []):
            char_uuid = characteristic['uuid']
            capabilities[capability_key(service_uuid, char_uuid)] = {
                "serviceUuid": service_uuid,
                "characteristicUuid": char_uuid,
                "properties": normalize_properties(characteristic.get('properties')),
            }
    return capabilities


@dataclass
class BluetoothDevice:
    address: str
    name: str = 'Unknown Device'
    connected: bool = False
    services: Dict[str, Any] = field(default_factory=dict)
    capabilities: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BluetoothDevice':
        return cls(
            address=data['address'],
            name=data.get('name') or 'Unknown Device',
            connected=bool(data.get('connected', False)),
            services=dict(data.get('services') or {}),
            capabilities=dict(data.get('capabilities') or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "name": self.name,
            "connected": self.connected,
            "services": self.services,
            "capabilities": self.capabilities,
        }


class BluetoothTelemetry:
    """Device list and per-device service trees."""

    def __init__(self, logger=None):
        self.logger = logger or logging.getLogger(__name__)
        self.devices: Dict[str, BluetoothDevice] = {}
        self.services_by_address: Dict[str, List[Dict[str, Any]]] = {}

    def refresh(self, device_list: Iterable[Dict[str, Any]]):
        """Replace the device list and rebuild every service tree from it."""
        devices = {}
        for data in device_list or []:
            if not data.get('address'):
                continue
            device = BluetoothDevice.from_dict(data)
            devices[device.address] = device

        self.devices = devices
        self.services_by_address = {
            address: self._service_tree(device.capabilities)
            for address, device in devices.items()
        }

    def record_inspection(self, address: str, services: Dict[str, Any]) -> Dict[str, Any]:
        """
        Store the result of a GATT inspection.

        Returns the payload to persist through the runtime.

        Raises:
            DeviceNotConnected: the device is unknown or not connected
        """
        device = self.devices.get(address)
        if device is None or not device.connected:
            raise DeviceNotConnected(address)

        capabilities = build_capabilities(services)
        device.services = dict(services)
        device.capabilities = capabilities
        self.services_by_address[address] = self._service_tree(capabilities)
        self.logger.info(f"Inspected {address}: {len(capabilities)} characteristics")

        return {
            "address": device.address,
            "name": device.name,
            "services": device.services,
            "capabilities": capabilities,
        }

    def service_tree(self, address: str) -> List[Dict[str, Any]]:
        return self.services_by_address.get(address, [])

    def characteristics_with(self, address: str, prop: str) -> List[Dict[str, Any]]:
        """Characteristics of a device that support a property, e.g. 'notify'."""
        device = self.devices.get(address)
        if device is None:
            return []
        return [
            cap for cap in device.capabilities.values()
            if cap.get('properties', {}).get(prop)
        ]

    def _service_tree(self, capabilities: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
        services: Dict[str, Dict[str, Any]] = {}
        for cap in capabilities.values():
            service_uuid = cap['serviceUuid']
            service = services.setdefault(service_uuid, {
                "uuid": service_uuid,
                "name": uuid_name(service_uuid, 'service'),
                "characteristics": [],
            })
            service["characteristics"].append({
                "uuid": cap['characteristicUuid'],
                "name": uuid_name(cap['characteristicUuid'], 'characteristic'),
                "properties": normalize_properties(cap.get('properties')),
            })
        return list(services.values())


__all__ = [
    'BluetoothDevice',
    'BluetoothTelemetry',
    'CAPABILITY_PROPERTIES',
    'build_capabilities',
    'capability_key',
    'expand_uuid',
    'normalize_properties',
    'uuid_name',
]
