"""FlowDeck flow graph: model and execution lock."""

from flow_editor.graph.lock import ExecutionLockController, FlowStatus, LockState, Mutation
from flow_editor.graph.model import NEW_FLOW_ID, Edge, Flow, GraphModel, Node, Position

__all__ = [
    'ExecutionLockController',
    'FlowStatus',
    'LockState',
    'Mutation',
    'NEW_FLOW_ID',
    'Edge',
    'Flow',
    'GraphModel',
    'Node',
    'Position',
]
