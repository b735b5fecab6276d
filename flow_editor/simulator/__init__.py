"""
FlowDeck Runtime Simulator Package

In-memory runtime for exercising the editor against the REST and event
stream contract.
"""

from flow_editor.simulator.event_hub import EventHub
from flow_editor.simulator.radio import SimulatedRadio
from flow_editor.simulator.server import SimulatorServer, main
from flow_editor.simulator.state import SimulatorState, StoredFlow

__all__ = [
    'EventHub',
    'SimulatedRadio',
    'SimulatorServer',
    'SimulatorState',
    'StoredFlow',
    'main',
]
