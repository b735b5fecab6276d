"""
FlowDeck Exceptions

Error taxonomy shared by the editor, the runtime client and the radio
transmission helpers. Lock violations are not errors and never appear here.
"""

from typing import Any, Dict, Optional


class FlowEditorError(Exception):
    """Base class for all FlowDeck errors."""


class TransportError(FlowEditorError):
    """A request to the runtime failed: unreachable, timed out, non-2xx or success=false."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.url = url

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "status": self.status, "url": self.url}


class ProtocolError(FlowEditorError):
    """A device-level operation did not complete."""


class ClearChannelTimeout(ProtocolError):
    """The radio channel stayed busy past the configured clear-channel timeout."""

    def __init__(self, timeout_ms: int):
        super().__init__(f"Channel busy - timeout waiting for clear channel ({timeout_ms}ms)")
        self.timeout_ms = timeout_ms


class DeviceNotConnected(ProtocolError):
    """A GATT inspection was requested for a device that is not connected."""

    def __init__(self, address: str):
        super().__init__(f"Device {address} is not connected")
        self.address = address


class DeployBlocked(FlowEditorError):
    """One or more nodes are not deployable."""

    def __init__(self, results: Dict[str, Any]):
        failing = sorted(node_id for node_id, result in results.items() if not result.ok)
        super().__init__(f"Flow cannot be deployed, incomplete nodes: {', '.join(failing)}")
        self.results = results
        self.failing = failing


__all__ = [
    'FlowEditorError',
    'TransportError',
    'ProtocolError',
    'ClearChannelTimeout',
    'DeviceNotConnected',
    'DeployBlocked',
]
