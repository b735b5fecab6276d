"""
FlowDeck Graph Model

The editable flow graph: ordered nodes with typed configs and directed
edges between them. Every mutation is gated by the execution lock and
silently ignored when the lock does not permit it.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from flow_editor.graph.lock import ExecutionLockController, FlowStatus, Mutation
from flow_editor.node_types import NodeTypeRegistry, get_registry
from flow_editor.validation import ConfigValidator, ValidationResult


NEW_FLOW_ID = 'new'

_ID_SUFFIX = re.compile(r'(\d+)$')


@dataclass
class Position:
    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_value(cls, value: Any) -> 'Position':
        if isinstance(value, Position):
            return cls(value.x, value.y)
        if isinstance(value, dict):
            return cls(float(value.get('x', 0.0)), float(value.get('y', 0.0)))
        if isinstance(value, (list, tuple)) and len(value) == 2:
            return cls(float(value[0]), float(value[1]))
        return cls()


@dataclass
class Node:
    """A node placed on the canvas."""
    id: str
    type: str
    position: Position = field(default_factory=Position)
    config: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "position": self.position.to_dict(),
            "config": dict(self.config),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Node':
        # Canvas exports nest the config under data.config
        config = data.get('config')
        if config is None:
            config = (data.get('data') or {}).get('config') or {}
        return cls(
            id=str(data['id']),
            type=data['type'],
            position=Position.from_value(data.get('position')),
            config=dict(config),
        )


@dataclass
class Edge:
    """A directed connection from one node's output to another's input."""
    id: str
    source: str
    target: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "source": self.source, "target": self.target}


@dataclass
class Flow:
    """Flow metadata. The graph itself lives in a GraphModel."""
    id: str = NEW_FLOW_ID
    name: str = ''
    description: str = ''
    status: str = FlowStatus.STOPPED.value

    @property
    def is_new(self) -> bool:
        return self.id == NEW_FLOW_ID

    @property
    def running(self) -> bool:
        return self.status == FlowStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Flow':
        return cls(
            id=str(data.get('id', NEW_FLOW_ID)),
            name=data.get('name', ''),
            description=data.get('description', '') or '',
            status=data.get('status') or FlowStatus.STOPPED.value,
        )


class GraphModel:
    """Nodes and edges of one flow, mutated in place."""

    def __init__(
        self,
        registry: Optional[NodeTypeRegistry] = None,
        validator: Optional[ConfigValidator] = None,
        lock: Optional[ExecutionLockController] = None,
        logger=None,
    ):
        self.registry = registry or get_registry()
        self.validator = validator or ConfigValidator(self.registry)
        self.lock = lock or ExecutionLockController()
        self.logger = logger or logging.getLogger(__name__)

        self.nodes: Dict[str, Node] = {}
        self.edges: Dict[str, Edge] = {}
        self.selection: Set[str] = set()

        self._next_node = 1
        self._next_edge = 1

    def log(self, level: str, message: str):
        if self.logger:
            getattr(self.logger, level)(message)

    def _allowed(self, mutation: Mutation) -> bool:
        if self.lock.permits(mutation):
            return True
        self.log('debug', f"Ignored {mutation.value} while flow is running")
        return False

    def _new_node_id(self) -> str:
        node_id = f"node_{self._next_node}"
        self._next_node += 1
        while node_id in self.nodes:
            node_id = f"node_{self._next_node}"
            self._next_node += 1
        return node_id

    def _new_edge_id(self) -> str:
        edge_id = f"edge_{self._next_edge}"
        self._next_edge += 1
        while edge_id in self.edges:
            edge_id = f"edge_{self._next_edge}"
            self._next_edge += 1
        return edge_id

    # =========================================================================
    # Queries
    # =========================================================================

    def get_node(self, node_id: str) -> Optional[Node]:
        return self.nodes.get(node_id)

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        return self.edges.get(edge_id)

    def node_list(self) -> List[Node]:
        return list(self.nodes.values())

    def edge_list(self) -> List[Edge]:
        return list(self.edges.values())

    def edges_for(self, node_id: str) -> List[Edge]:
        """All edges touching a node, in either direction."""
        return [e for e in self.edges.values() if e.source == node_id or e.target == node_id]

    # =========================================================================
    # Mutations
    # =========================================================================

    def add_node(self, node_type: str, position: Any = None) -> Optional[Node]:
        """Drop a new node of the given type with an empty config."""
        if not self._allowed(Mutation.ADD):
            return None
        node = Node(id=self._new_node_id(), type=node_type, position=Position.from_value(position))
        self.nodes[node.id] = node
        return node

    def remove_node(self, node_id: str) -> bool:
        """Delete a node and every edge attached to it."""
        if not self._allowed(Mutation.REMOVE):
            return False
        if node_id not in self.nodes:
            return False
        for edge in self.edges_for(node_id):
            del self.edges[edge.id]
        del self.nodes[node_id]
        self.selection.discard(node_id)
        return True

    def move_node(self, node_id: str, position: Any) -> bool:
        if not self._allowed(Mutation.MOVE):
            return False
        node = self.nodes.get(node_id)
        if node is None:
            return False
        node.position = Position.from_value(position)
        return True

    def connect(self, source_id: str, target_id: str) -> Optional[Edge]:
        """
        Connect a source node's output to a target node's input.

        Returns the new edge, or None when either endpoint is missing or
        lacks the needed port. Parallel edges and self-loops are allowed.
        """
        if not self._allowed(Mutation.CONNECT):
            return None
        source = self.nodes.get(source_id)
        target = self.nodes.get(target_id)
        if source is None or target is None:
            return None
        if not self.registry.has_output(source.type):
            self.log('debug', f"{source.type} has no output port")
            return None
        if not self.registry.has_input(target.type):
            self.log('debug', f"{target.type} has no input port")
            return None

        edge = Edge(id=self._new_edge_id(), source=source_id, target=target_id)
        self.edges[edge.id] = edge
        return edge

    def disconnect(self, edge: Union[Edge, str]) -> bool:
        if not self._allowed(Mutation.DISCONNECT):
            return False
        edge_id = edge.id if isinstance(edge, Edge) else edge
        if edge_id not in self.edges:
            return False
        del self.edges[edge_id]
        return True

    def set_node_config(self, node_id: str, config: Dict[str, Any]) -> Optional[ValidationResult]:
        """
        Replace a node's config with its validated, normalized form.

        The normalized config is stored even when validation fails.
        """
        if not self._allowed(Mutation.CONFIGURE):
            return None
        node = self.nodes.get(node_id)
        if node is None:
            return None
        result = self.validator.validate(node.type, config)
        node.config = result.normalized
        return result

    def select(self, node_ids: Iterable[str]) -> bool:
        if not self._allowed(Mutation.SELECT):
            return False
        self.selection = {node_id for node_id in node_ids if node_id in self.nodes}
        return True

    def clear(self) -> bool:
        """Remove all nodes and edges."""
        if not self._allowed(Mutation.REMOVE):
            return False
        self.nodes.clear()
        self.edges.clear()
        self.selection.clear()
        return True

    # =========================================================================
    # Persistence
    # =========================================================================

    def load(self, nodes: Iterable[Dict[str, Any]], edges: Iterable[Dict[str, Any]]):
        """
        Replace the graph with a persisted one.

        Edges that reference missing nodes are dropped. New node ids
        continue after the highest numeric suffix seen.
        """
        self.nodes = {}
        self.edges = {}
        self.selection = set()

        highest_node = 0
        for node_data in nodes or []:
            node = Node.from_dict(node_data)
            self.nodes[node.id] = node
            highest_node = max(highest_node, _suffix(node.id))
        self._next_node = highest_node + 1

        highest_edge = 0
        pending = []
        for edge_data in edges or []:
            source = str(edge_data.get('source'))
            target = str(edge_data.get('target'))
            if source not in self.nodes or target not in self.nodes:
                self.log('warning', f"Dropping edge {edge_data.get('id')}: {source} -> {target} references a missing node")
                continue
            edge_id = edge_data.get('id')
            if edge_id:
                highest_edge = max(highest_edge, _suffix(str(edge_id)))
            pending.append((edge_id, source, target))
        self._next_edge = highest_edge + 1

        for edge_id, source, target in pending:
            edge_id = str(edge_id) if edge_id and str(edge_id) not in self.edges else self._new_edge_id()
            self.edges[edge_id] = Edge(id=edge_id, source=source, target=target)

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "nodes": [node.to_dict() for node in self.nodes.values()],
            "edges": [edge.to_dict() for edge in self.edges.values()],
        }


def _suffix(identifier: str) -> int:
    match = _ID_SUFFIX.search(identifier)
    return int(match.group(1)) if match else 0
