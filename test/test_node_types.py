"""
Tests for FlowDeck Node Type Registry

Tests loading of the packaged definitions, port capability and the
fallback for unknown types.
"""

import pytest
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from flow_editor.node_types import (
    FieldSpec,
    NodeTypeDescriptor,
    NodeTypeRegistry,
    fallback_descriptor,
)


class TestRegistryLoading:
    """Test loading the packaged definitions."""

    def setup_method(self):
        """Setup test fixtures."""
        self.registry = NodeTypeRegistry()

    def test_core_types_loaded(self):
        """Test that every palette category contributes its types."""
        for node_type in ('inject', 'debug', 'mqtt-in', 'xbee-in', 'bluetooth-out',
                          'camera-event', 'radio-broadcast', 'awr-erm100-broadcast',
                          'gpio-in', 'gpio-out', 'cancel-broadcast'):
            assert self.registry.is_known(node_type), node_type

    def test_every_type_has_name_field(self):
        """Test that the display name field is always present."""
        for node_type in self.registry.list_types():
            assert 'name' in self.registry.descriptor_for(node_type).field_keys()

    def test_palette_order(self):
        """Test that palette sections follow the declared category order."""
        categories = [section['category'] for section in self.registry.palette()]
        assert categories[0] == 'common'
        assert categories.index('network') < categories.index('wireless')
        assert categories.index('output') < categories.index('control')

    def test_missing_directory_is_empty(self, tmp_path):
        """Test that a missing definitions directory yields an empty registry."""
        registry = NodeTypeRegistry(str(tmp_path / 'missing'))
        assert registry.list_types() == []

    def test_bad_file_is_skipped(self, tmp_path):
        """Test that a broken YAML file does not stop the others loading."""
        (tmp_path / 'bad.yaml').write_text("node_types: [unclosed")
        (tmp_path / 'good.yaml').write_text(
            "category: extra\n"
            "node_types:\n"
            "  - type: beep\n"
            "    fields:\n"
            "      - key: volume\n"
            "        kind: int\n"
            "        min: 0\n"
            "        max: 10\n"
        )
        registry = NodeTypeRegistry(str(tmp_path))
        assert registry.list_types() == ['beep']
        assert registry.get('beep').get_field('volume').max == 10


class TestPorts:
    """Test port capability lookups."""

    def setup_method(self):
        """Setup test fixtures."""
        self.registry = NodeTypeRegistry()

    def test_sources_have_no_input(self):
        """Test that trigger-only types expose no input port."""
        for node_type in ('inject', 'mqtt-in', 'zigbee-button', 'camera-event'):
            assert self.registry.has_input(node_type) is False

    def test_sinks_have_no_output(self):
        """Test that the debug node has no output port."""
        assert self.registry.has_output('debug') is False
        assert self.registry.has_input('debug') is True

    def test_processing_nodes_have_both(self):
        """Test that ordinary nodes have both ports."""
        assert self.registry.has_input('function')
        assert self.registry.has_output('function')


class TestFallback:
    """Test behavior for unknown node types."""

    def test_unknown_type_gets_name_only_schema(self):
        """Test that an unknown type falls back to the name field."""
        registry = NodeTypeRegistry()
        schema = registry.schema_for('not-a-real-node')
        assert [spec.key for spec in schema] == ['name']
        assert registry.is_known('not-a-real-node') is False

    def test_fallback_descriptor(self):
        """Test the fallback descriptor shape."""
        descriptor = fallback_descriptor('mystery')
        assert descriptor.category == 'unknown'
        assert descriptor.has_input and descriptor.has_output


class TestFieldSpec:
    """Test field spec helpers."""

    def test_required_when(self):
        """Test conditional requirement on another field's value."""
        spec = FieldSpec(key='duration', kind='int', required_when={'action': 'pulse'})
        assert spec.is_required({'action': 'pulse'})
        assert not spec.is_required({'action': 'on'})

    def test_required_when_list(self):
        """Test conditional requirement on any of several values."""
        spec = FieldSpec(key='x', required_when={'mode': ['a', 'b']})
        assert spec.is_required({'mode': 'b'})
        assert not spec.is_required({'mode': 'c'})

    def test_unknown_kind_rejected(self):
        """Test that a definition with an unknown kind is rejected."""
        with pytest.raises(ValueError):
            FieldSpec.from_dict({'key': 'x', 'kind': 'color'})

    def test_defaults_copy_lists(self):
        """Test that list defaults are not shared between nodes."""
        descriptor = NodeTypeDescriptor(
            type='t', label='T',
            fields=[FieldSpec(key='channels', kind='list', default=[0, 1])],
        )
        first = descriptor.defaults()
        first['channels'].append(2)
        assert descriptor.defaults()['channels'] == [0, 1]
