"""
FlowDeck Simulator State

In-memory runtime state served by the simulator: persisted flows and
their run status, GPIO pin levels, Bluetooth devices, and the audio and
device catalogues.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import psutil

from flow_editor.graph.lock import FlowStatus
from flow_editor.radio.channel import ChannelBits, ChannelEncoder
from flow_editor.radio.pins import HEADER_40, NAMED_PINS, header_pin


DEFAULT_AUDIO_FILES = [
    {"id": 1, "name": "Evacuation Notice", "format": "mp3", "size": 482113, "duration": 12.4},
    {"id": 2, "name": "All Clear", "format": "wav", "size": 176400, "duration": 2.0},
    {"id": 3, "name": "Gate Open Chime", "format": "mp3", "size": 48210, "duration": 1.3},
]

DEFAULT_XBEE_DEVICES = [
    {"address": "0013A20041B2C3D4", "name": "Gate Buttons", "type": "xbee", "connected": True},
]


@dataclass
class StoredFlow:
    """A flow as persisted by the runtime."""
    id: str
    name: str
    description: str = ''
    nodes: List[Dict[str, Any]] = field(default_factory=list)
    edges: List[Dict[str, Any]] = field(default_factory=list)
    status: str = FlowStatus.STOPPED.value
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def find_node(self, node_id: str) -> Optional[Dict[str, Any]]:
        for node in self.nodes:
            if str(node.get('id')) == node_id:
                return node
        return None

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "nodeCount": len(self.nodes),
            "updatedAt": self.updated_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "nodes": self.nodes,
            "edges": self.edges,
            "status": self.status,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class SimulatorState:
    """Everything the simulated runtime remembers."""

    def __init__(self, server_name: str = 'FlowDeck Simulator', logger=None):
        self.server_name = server_name
        self.logger = logger
        self.start_time = time.time()
        self.client_count = 0

        self.flows: Dict[str, StoredFlow] = {}
        self._next_flow = 1

        self.pin_levels: Dict[int, int] = {
            physical: 0 for physical, pin in HEADER_40.items() if pin.role == 'gpio'
        }

        self.bluetooth_devices: Dict[str, Dict[str, Any]] = {}
        self.audio_files: List[Dict[str, Any]] = [dict(f) for f in DEFAULT_AUDIO_FILES]
        self.xbee_devices: List[Dict[str, Any]] = [dict(d) for d in DEFAULT_XBEE_DEVICES]

    def log(self, level: str, message: str):
        if self.logger:
            getattr(self.logger, level)(message)

    def set_client_count(self, count: int):
        self.client_count = count

    # =========================================================================
    # Flows
    # =========================================================================

    def list_flows(self) -> List[Dict[str, Any]]:
        return [flow.summary() for flow in self.flows.values()]

    def get_flow(self, flow_id: str) -> Optional[StoredFlow]:
        return self.flows.get(flow_id)

    def create_flow(self, data: Dict[str, Any]) -> StoredFlow:
        """Store a new flow under the next id (f1, f2, ...)."""
        name = str(data.get('name') or '').strip()
        if not name:
            raise ValueError("Flow name is required")

        flow_id = f"f{self._next_flow}"
        self._next_flow += 1
        flow = StoredFlow(
            id=flow_id,
            name=name,
            description=data.get('description') or '',
            nodes=list(data.get('nodes') or []),
            edges=list(data.get('edges') or []),
        )
        self.flows[flow_id] = flow
        self.log('info', f"Created flow {flow_id} ({name})")
        return flow

    def update_flow(self, flow_id: str, data: Dict[str, Any]) -> StoredFlow:
        flow = self.flows.get(flow_id)
        if flow is None:
            raise KeyError(flow_id)
        if 'name' in data:
            name = str(data.get('name') or '').strip()
            if not name:
                raise ValueError("Flow name is required")
            flow.name = name
        if 'description' in data:
            flow.description = data.get('description') or ''
        if 'nodes' in data:
            flow.nodes = list(data.get('nodes') or [])
        if 'edges' in data:
            flow.edges = list(data.get('edges') or [])
        flow.updated_at = time.time()
        return flow

    def delete_flow(self, flow_id: str) -> bool:
        return self.flows.pop(flow_id, None) is not None

    def set_flow_status(self, flow_id: str, status: str) -> StoredFlow:
        flow = self.flows.get(flow_id)
        if flow is None:
            raise KeyError(flow_id)
        flow.status = status
        return flow

    # =========================================================================
    # GPIO
    # =========================================================================

    def read_pin(self, physical: int) -> int:
        return self.pin_levels.get(physical, 0)

    def write_pin(self, physical: int, value: int):
        pin = header_pin(physical)
        if pin.role != 'gpio':
            raise ValueError(f"Pin {physical} is a {pin.role} pin")
        self.pin_levels[physical] = 1 if value else 0

    def set_channel(self, channel: int) -> ChannelBits:
        bits = ChannelEncoder.encode(channel)
        for physical, level in ChannelEncoder.pin_levels(bits).items():
            self.write_pin(physical, level)
        self.log('info', f"Channel set to {channel}")
        return bits

    def gpio_status(self) -> Dict[str, Any]:
        return {
            "pins": dict(NAMED_PINS),
            "states": {str(physical): level for physical, level in self.pin_levels.items()},
        }

    # =========================================================================
    # Bluetooth and devices
    # =========================================================================

    def list_bluetooth_devices(self) -> List[Dict[str, Any]]:
        return [dict(d) for d in self.bluetooth_devices.values()]

    def upsert_bluetooth_device(self, data: Dict[str, Any]) -> Dict[str, Any]:
        address = data.get('address')
        if not address:
            raise ValueError("Device address is required")
        device = self.bluetooth_devices.setdefault(address, {
            "address": address,
            "name": 'Unknown Device',
            "connected": False,
            "services": {},
            "capabilities": {},
        })
        if data.get('name'):
            device['name'] = data['name']
        if data.get('services') is not None:
            device['services'] = data['services']
        if data.get('capabilities') is not None:
            device['capabilities'] = data['capabilities']
        device['lastSeen'] = time.time()
        return device

    def set_bluetooth_connection(self, address: str, connected: bool) -> Dict[str, Any]:
        device = self.bluetooth_devices.get(address)
        if device is None:
            raise KeyError(address)
        device['connected'] = bool(connected)
        return device

    def delete_bluetooth_device(self, address: str) -> bool:
        return self.bluetooth_devices.pop(address, None) is not None

    def list_devices(self) -> List[Dict[str, Any]]:
        devices = [dict(d) for d in self.xbee_devices]
        for device in self.bluetooth_devices.values():
            devices.append({
                "address": device['address'],
                "name": device['name'],
                "type": 'bluetooth',
                "connected": device['connected'],
            })
        return devices

    # =========================================================================
    # System
    # =========================================================================

    def get_system_status(self) -> Dict[str, Any]:
        try:
            cpu_usage = psutil.cpu_percent(interval=None)
            memory_usage = psutil.virtual_memory().percent
        except (psutil.Error, OSError):
            cpu_usage = 0.0
            memory_usage = 0.0

        return {
            "server_name": self.server_name,
            "uptime_seconds": int(time.time() - self.start_time),
            "cpu_usage": cpu_usage,
            "memory_usage": memory_usage,
            "flow_count": len(self.flows),
            "running_flow_count": sum(1 for f in self.flows.values() if f.status == FlowStatus.RUNNING),
            "websocket_client_count": self.client_count,
        }
