"""
FlowDeck Editor Package

Flow graph contract and device-control protocol layer for the FlowDeck
automation editor.
"""

__version__ = '0.3.0'
__author__ = 'FlowDeck Team'

from flow_editor.node_types import NodeTypeRegistry
from flow_editor.validation import ConfigValidator
from flow_editor.graph import GraphModel, ExecutionLockController

__all__ = [
    'NodeTypeRegistry',
    'ConfigValidator',
    'GraphModel',
    'ExecutionLockController',
    '__version__',
]

# Lazy imports for optional components
def __getattr__(name):
    if name == 'simulator':
        from flow_editor import simulator
        return simulator
    if name == 'editor':
        from flow_editor import editor
        return editor
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
