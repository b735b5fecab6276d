"""
FlowDeck Event Logs

Bounded, append-only logs for debug output and XBee traffic, and the pure
functions that turn raw event-stream frames into log entries.
"""

import itertools
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Generic, List, Optional, TypeVar


DEBUG_EVENTS = {
    'debug:message': 'message',
    'flow:node-output': 'output',
    'flow:node-error': 'error',
}

TRAFFIC_EVENTS = {
    'xbee:data': 'data',
    'xbee:device-discovered': 'device-discovered',
    'xbee:transmit-status': 'transmit-status',
}

LIFECYCLE_EVENTS = {
    'flow:deployed': 'deployed',
    'flow:started': 'running',
    'flow:stopped': 'stopped',
    'flow:deleted': 'deleted',
}


@dataclass
class DebugEvent:
    id: int
    timestamp: float
    node_id: str
    kind: str
    payload: Any = None
    node_name: Optional[str] = None
    flow_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "nodeId": self.node_id,
            "nodeName": self.node_name,
            "kind": self.kind,
            "payload": self.payload,
            "flowId": self.flow_id,
        }


@dataclass
class TrafficEntry:
    id: int
    kind: str
    timestamp: float
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "kind": self.kind, "timestamp": self.timestamp, "data": self.data}


T = TypeVar('T')


class EventLog(Generic[T]):
    """Ring buffer of log entries, oldest first. Ids are unique per log."""

    def __init__(self, max_entries: int):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: Deque[T] = deque(maxlen=max_entries)
        self._ids = itertools.count(1)

    def next_id(self) -> int:
        return next(self._ids)

    def append(self, entry: T) -> T:
        self._entries.append(entry)
        return entry

    def entries(self) -> List[T]:
        return list(self._entries)

    def latest(self, count: int) -> List[T]:
        if count <= 0:
            return []
        return list(self._entries)[-count:]

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def parse_timestamp(value: Any) -> float:
    """Seconds since the epoch from epoch seconds, epoch milliseconds or ISO-8601."""
    if isinstance(value, bool) or value is None:
        return time.time()
    if isinstance(value, (int, float)):
        # Epoch milliseconds are 13 digits until the year 2286
        return value / 1000.0 if value > 1e11 else float(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace('Z', '+00:00')).timestamp()
        except ValueError:
            return time.time()
    return time.time()


def parse_debug_event(
    event: str,
    data: Dict[str, Any],
    event_id: int,
    flow_id: Optional[str] = None,
) -> Optional[DebugEvent]:
    """
    Debug entry for a frame, or None.

    Frames of other event types, and frames tagged with a different
    flow than flow_id, yield None.
    """
    kind = DEBUG_EVENTS.get(event)
    if kind is None:
        return None

    event_flow = data.get('flowId')
    if flow_id and event_flow and str(event_flow) != str(flow_id):
        return None

    if kind == 'output':
        payload = data.get('data')
    elif kind == 'error':
        payload = data.get('error')
    else:
        payload = data.get('message', data.get('payload'))

    return DebugEvent(
        id=event_id,
        timestamp=parse_timestamp(data.get('timestamp')),
        node_id=str(data.get('nodeId') or ''),
        node_name=data.get('nodeName'),
        kind=kind,
        payload=payload,
        flow_id=str(event_flow) if event_flow else None,
    )


def parse_traffic_event(event: str, data: Dict[str, Any], event_id: int) -> Optional[TrafficEntry]:
    kind = TRAFFIC_EVENTS.get(event)
    if kind is None:
        return None
    return TrafficEntry(
        id=event_id,
        kind=kind,
        timestamp=parse_timestamp(data.get('timestamp')),
        data=dict(data),
    )


def parse_lifecycle_event(event: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """{"flowId", "state"} for flow lifecycle frames, else None."""
    state = LIFECYCLE_EVENTS.get(event)
    if state is None:
        return None
    return {"flowId": data.get('flowId'), "state": state}


__all__ = [
    'DEBUG_EVENTS',
    'TRAFFIC_EVENTS',
    'LIFECYCLE_EVENTS',
    'DebugEvent',
    'TrafficEntry',
    'EventLog',
    'parse_timestamp',
    'parse_debug_event',
    'parse_traffic_event',
    'parse_lifecycle_event',
]
