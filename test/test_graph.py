"""
Tests for FlowDeck Graph Model and Execution Lock

Tests graph mutations, port-aware connections, loading persisted flows
and the lock that freezes editing while a flow is running.
"""

import pytest
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from flow_editor.graph import (
    ExecutionLockController,
    FlowStatus,
    GraphModel,
    LockState,
    Mutation,
)
from flow_editor.graph.model import Flow, Node, Position
from flow_editor.node_types import NodeTypeRegistry


REGISTRY = NodeTypeRegistry()


class TestExecutionLock:
    """Test the execution lock state machine."""

    def test_starts_editable(self):
        """Test that a stopped flow is editable."""
        lock = ExecutionLockController()
        assert lock.state == LockState.EDITABLE
        assert not lock.locked

    def test_running_locks(self):
        """Test that a running status locks the graph."""
        lock = ExecutionLockController()
        lock.sync('running')
        assert lock.locked
        lock.sync(FlowStatus.STOPPED)
        assert not lock.locked

    def test_permitted_while_locked(self):
        """Test which mutations survive the lock."""
        lock = ExecutionLockController(status=FlowStatus.RUNNING)
        assert lock.permits(Mutation.SELECT)
        assert lock.permits(Mutation.REMOVE)
        assert lock.permits(Mutation.DISCONNECT)
        for mutation in (Mutation.ADD, Mutation.CONNECT, Mutation.MOVE, Mutation.CONFIGURE):
            assert not lock.permits(mutation)

    def test_listeners_notified_on_change_only(self):
        """Test that listeners fire once per transition."""
        lock = ExecutionLockController()
        seen = []
        lock.add_listener(seen.append)
        lock.sync('running')
        lock.sync('running')
        lock.sync('stopped')
        assert seen == [LockState.LOCKED, LockState.EDITABLE]

        lock.remove_listener(seen.append)
        lock.sync('running')
        assert len(seen) == 2

    def test_unknown_status_is_editable(self):
        """Test that anything but running leaves the graph editable."""
        lock = ExecutionLockController()
        assert lock.sync(None) == LockState.EDITABLE
        assert lock.sync('error') == LockState.EDITABLE


class TestGraphMutations:
    """Test graph editing while unlocked."""

    def setup_method(self):
        """Setup test fixtures."""
        self.graph = GraphModel(REGISTRY)

    def test_add_node(self):
        """Test that new nodes get sequential ids and an empty config."""
        first = self.graph.add_node('inject', {'x': 10, 'y': 20})
        second = self.graph.add_node('debug', (50, 60))
        assert first.id == 'node_1'
        assert second.id == 'node_2'
        assert first.config == {}
        assert first.position == Position(10.0, 20.0)
        assert second.position == Position(50.0, 60.0)

    def test_remove_node_cascades(self):
        """Test that removing a node removes its edges."""
        a = self.graph.add_node('inject')
        b = self.graph.add_node('function')
        c = self.graph.add_node('debug')
        self.graph.connect(a.id, b.id)
        kept = self.graph.connect(b.id, c.id)
        self.graph.connect(a.id, c.id)

        assert self.graph.remove_node(a.id)
        assert self.graph.get_node(a.id) is None
        assert self.graph.edge_list() == [kept]

    def test_remove_missing_node(self):
        """Test removing a node that does not exist."""
        assert self.graph.remove_node('node_99') is False

    def test_move_node(self):
        """Test moving a node."""
        node = self.graph.add_node('function')
        assert self.graph.move_node(node.id, {'x': 5, 'y': 6})
        assert node.position.to_dict() == {'x': 5.0, 'y': 6.0}

    def test_connect_respects_ports(self):
        """Test that edges only run from an output to an input."""
        inject = self.graph.add_node('inject')
        debug = self.graph.add_node('debug')
        assert self.graph.connect(debug.id, inject.id) is None
        assert self.graph.connect(inject.id, inject.id) is None
        edge = self.graph.connect(inject.id, debug.id)
        assert edge.source == inject.id
        assert edge.target == debug.id

    def test_connect_allows_cycles_and_parallel_edges(self):
        """Test that loops and duplicate edges are accepted."""
        a = self.graph.add_node('function')
        b = self.graph.add_node('delay')
        assert self.graph.connect(a.id, b.id)
        assert self.graph.connect(b.id, a.id)
        assert self.graph.connect(a.id, b.id)
        assert self.graph.connect(a.id, a.id)
        assert len(self.graph.edge_list()) == 4

    def test_connect_missing_node(self):
        """Test that an edge needs both endpoints."""
        a = self.graph.add_node('function')
        assert self.graph.connect(a.id, 'node_42') is None

    def test_disconnect(self):
        """Test removing an edge by object or id."""
        a = self.graph.add_node('function')
        b = self.graph.add_node('debug')
        edge = self.graph.connect(a.id, b.id)
        assert self.graph.disconnect(edge)
        assert self.graph.disconnect(edge.id) is False

    def test_set_node_config_stores_normalized(self):
        """Test that the normalized config is stored even when invalid."""
        node = self.graph.add_node('radio-channel')
        result = self.graph.set_node_config(node.id, {'channel': 42, 'bogus': 1})
        assert result.ok
        assert node.config['channel'] == 15
        assert 'bogus' not in node.config

        result = self.graph.set_node_config(node.id, {'channel': 'x'})
        assert not result.ok
        assert node.config['channel'] == 0

    def test_select(self):
        """Test that selection ignores unknown ids."""
        node = self.graph.add_node('function')
        assert self.graph.select([node.id, 'node_77'])
        assert self.graph.selection == {node.id}

    def test_to_dict(self):
        """Test the persisted shape of the graph."""
        a = self.graph.add_node('inject')
        b = self.graph.add_node('debug')
        self.graph.connect(a.id, b.id)
        data = self.graph.to_dict()
        assert [n['id'] for n in data['nodes']] == ['node_1', 'node_2']
        assert data['edges'] == [{'id': 'edge_1', 'source': 'node_1', 'target': 'node_2'}]


class TestGraphLocked:
    """Test that the running lock silently blocks structural edits."""

    def setup_method(self):
        """Setup test fixtures."""
        self.lock = ExecutionLockController()
        self.graph = GraphModel(REGISTRY, lock=self.lock)
        self.a = self.graph.add_node('function')
        self.b = self.graph.add_node('debug')
        self.edge = self.graph.connect(self.a.id, self.b.id)
        self.lock.sync(FlowStatus.RUNNING)

    def test_add_is_noop(self):
        """Test that adding nodes is ignored."""
        assert self.graph.add_node('inject') is None
        assert len(self.graph.node_list()) == 2

    def test_connect_and_move_are_noops(self):
        """Test that connecting and moving are ignored."""
        assert self.graph.connect(self.a.id, self.b.id) is None
        assert self.graph.move_node(self.a.id, (100, 100)) is False
        assert self.a.position == Position()

    def test_configure_is_noop(self):
        """Test that config edits are ignored."""
        assert self.graph.set_node_config(self.a.id, {'name': 'changed'}) is None
        assert self.a.config == {}

    def test_remove_and_disconnect_allowed(self):
        """Test that deletion still works while running."""
        assert self.graph.disconnect(self.edge)
        assert self.graph.remove_node(self.b.id)
        assert self.graph.select([self.a.id])

    def test_unlock_restores_editing(self):
        """Test that stopping the flow re-enables edits."""
        self.lock.sync(FlowStatus.STOPPED)
        assert self.graph.add_node('inject') is not None


class TestGraphLoad:
    """Test loading persisted flows."""

    def setup_method(self):
        """Setup test fixtures."""
        self.graph = GraphModel(REGISTRY)

    def test_dangling_edges_dropped(self):
        """Test that edges to missing nodes are discarded."""
        self.graph.load(
            [{'id': 'node_1', 'type': 'inject'}, {'id': 'node_2', 'type': 'debug'}],
            [
                {'id': 'edge_1', 'source': 'node_1', 'target': 'node_2'},
                {'id': 'edge_2', 'source': 'node_1', 'target': 'node_9'},
            ],
        )
        assert [e.id for e in self.graph.edge_list()] == ['edge_1']

    def test_counters_continue(self):
        """Test that new ids do not collide with loaded ones."""
        self.graph.load(
            [{'id': 'node_7', 'type': 'function'}, {'id': 'node_3', 'type': 'debug'}],
            [{'id': 'edge_4', 'source': 'node_7', 'target': 'node_3'}],
        )
        assert self.graph.add_node('inject').id == 'node_8'
        assert self.graph.connect('node_7', 'node_3').id == 'edge_5'

    def test_legacy_config_location(self):
        """Test that configs nested under data.config are read."""
        self.graph.load(
            [{'id': 'n1', 'type': 'radio-channel', 'position': {'x': 1, 'y': 2},
              'data': {'config': {'channel': 4}}}],
            [],
        )
        node = self.graph.get_node('n1')
        assert node.config == {'channel': 4}
        assert node.position == Position(1.0, 2.0)

    def test_load_replaces_graph(self):
        """Test that loading discards the previous graph."""
        self.graph.add_node('inject')
        self.graph.load([], [])
        assert self.graph.node_list() == []
        assert self.graph.add_node('inject').id == 'node_1'


class TestFlow:
    """Test flow metadata."""

    def test_new_flow(self):
        """Test the placeholder id of unsaved flows."""
        flow = Flow()
        assert flow.is_new
        assert not flow.running

    def test_from_dict(self):
        """Test building a flow from the runtime's document."""
        flow = Flow.from_dict({'id': 12, 'name': 'Gate', 'status': 'running'})
        assert flow.id == '12'
        assert flow.running
        assert not flow.is_new

    def test_node_round_trip(self):
        """Test node serialization."""
        node = Node(id='node_1', type='inject', position=Position(1, 2), config={'topic': 't'})
        assert Node.from_dict(node.to_dict()) == node
