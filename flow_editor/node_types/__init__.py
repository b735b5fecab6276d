"""
FlowDeck Node Type Registry

Catalogue of node types available in the palette. Each type declares its
configuration fields (kind, bounds, defaults, required flags), its port
capability, and the names of the cross-field rules the validator applies.
Definitions are loaded from YAML files, one file per palette category.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml


FIELD_KINDS = ('string', 'int', 'float', 'enum', 'bool', 'list')

DEFINITIONS_DIR = os.path.join(os.path.dirname(__file__), 'definitions')


@dataclass
class FieldSpec:
    """A single configuration field of a node type."""
    key: str
    kind: str = 'string'
    label: str = ''
    default: Any = None
    required: bool = False
    required_when: Dict[str, Any] = field(default_factory=dict)
    min: Optional[float] = None
    max: Optional[float] = None
    choices: List[Any] = field(default_factory=list)
    nullable: bool = False
    item_kind: Optional[str] = None
    derived: bool = False
    description: str = ''

    def is_required(self, config: Dict[str, Any]) -> bool:
        """Whether this field must be set, given the rest of the config."""
        if self.required:
            return True
        if not self.required_when:
            return False
        for other_key, expected in self.required_when.items():
            allowed = expected if isinstance(expected, list) else [expected]
            if config.get(other_key) not in allowed:
                return False
        return True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FieldSpec':
        kind = data.get('kind', 'string')
        if kind not in FIELD_KINDS:
            raise ValueError(f"Unknown field kind '{kind}' for field {data.get('key')}")
        return cls(
            key=data['key'],
            kind=kind,
            label=data.get('label', data['key']),
            default=data.get('default'),
            required=data.get('required', False),
            required_when=data.get('required_when') or {},
            min=data.get('min'),
            max=data.get('max'),
            choices=list(data.get('choices') or []),
            nullable=data.get('nullable', False),
            item_kind=data.get('item_kind'),
            derived=data.get('derived', False),
            description=data.get('description', ''),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "key": self.key,
            "kind": self.kind,
            "label": self.label,
            "default": self.default,
            "required": self.required,
        }
        if self.required_when:
            result["required_when"] = dict(self.required_when)
        if self.min is not None:
            result["min"] = self.min
        if self.max is not None:
            result["max"] = self.max
        if self.choices:
            result["choices"] = list(self.choices)
        if self.nullable:
            result["nullable"] = True
        if self.item_kind:
            result["item_kind"] = self.item_kind
        if self.derived:
            result["derived"] = True
        if self.description:
            result["description"] = self.description
        return result


# Every node carries a free-text display name.
NAME_FIELD = FieldSpec(key='name', kind='string', label='Name', default='')


@dataclass
class NodeTypeDescriptor:
    """Complete definition of a node type."""
    type: str
    label: str
    category: str = 'common'
    description: str = ''
    has_input: bool = True
    has_output: bool = True
    fields: List[FieldSpec] = field(default_factory=list)
    rules: List[str] = field(default_factory=list)

    def get_field(self, key: str) -> Optional[FieldSpec]:
        """Get a field spec by key."""
        for spec in self.fields:
            if spec.key == key:
                return spec
        return None

    def field_keys(self) -> List[str]:
        return [spec.key for spec in self.fields]

    def get_required_fields(self) -> List[FieldSpec]:
        """Fields that are unconditionally required."""
        return [spec for spec in self.fields if spec.required]

    def defaults(self) -> Dict[str, Any]:
        """Default config for a freshly dropped node."""
        return {
            spec.key: (list(spec.default) if isinstance(spec.default, list) else spec.default)
            for spec in self.fields
            if spec.default is not None
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.type,
            "label": self.label,
            "category": self.category,
            "description": self.description,
            "has_input": self.has_input,
            "has_output": self.has_output,
            "rules": list(self.rules),
            "fields": [spec.to_dict() for spec in self.fields],
        }


def fallback_descriptor(node_type: str) -> NodeTypeDescriptor:
    """Descriptor used for types the registry does not know."""
    return NodeTypeDescriptor(
        type=node_type,
        label=node_type,
        category='unknown',
        fields=[NAME_FIELD],
    )


class NodeTypeRegistry:
    """Loads node type definitions and answers schema lookups."""

    def __init__(self, definitions_dir: Optional[str] = None, logger=None):
        self.logger = logger or logging.getLogger(__name__)
        self.types: Dict[str, NodeTypeDescriptor] = {}
        self.categories: Dict[str, Dict[str, Any]] = {}

        if definitions_dir is None:
            definitions_dir = DEFINITIONS_DIR

        self.definitions_dir = os.path.abspath(definitions_dir)
        self._load_definitions()

    def _log(self, level: str, message: str):
        """Log a message if logger is available."""
        if self.logger:
            getattr(self.logger, level, self.logger.info)(message)

    def _load_definitions(self):
        """Load all node type definitions from YAML files."""
        if not os.path.isdir(self.definitions_dir):
            self._log('warning', f"Node type directory not found: {self.definitions_dir}")
            return

        for filename in sorted(os.listdir(self.definitions_dir)):
            if not filename.endswith('.yaml') and not filename.endswith('.yml'):
                continue

            filepath = os.path.join(self.definitions_dir, filename)
            try:
                loaded = self._load_definition_file(filepath)
            except (OSError, yaml.YAMLError, KeyError, ValueError) as e:
                self._log('error', f"Failed to load node type file {filename}: {e}")
                continue

            for descriptor in loaded:
                self.register(descriptor)
            self._log('debug', f"Loaded {len(loaded)} node types from {filename}")

    def _load_definition_file(self, filepath: str) -> List[NodeTypeDescriptor]:
        """Load the node types of one category file."""
        with open(filepath, 'r') as f:
            data = yaml.safe_load(f)

        if not data or 'node_types' not in data:
            return []

        category = data.get('category', os.path.splitext(os.path.basename(filepath))[0])
        self.categories[category] = {
            "category": category,
            "display_name": data.get('display_name', category.title()),
            "order": data.get('order', len(self.categories) + 1),
        }

        descriptors = []
        for type_data in data['node_types']:
            fields = [FieldSpec.from_dict(f) for f in type_data.get('fields', [])]
            descriptors.append(NodeTypeDescriptor(
                type=type_data['type'],
                label=type_data.get('label', type_data['type']),
                category=type_data.get('category', category),
                description=type_data.get('description', ''),
                has_input=type_data.get('has_input', True),
                has_output=type_data.get('has_output', True),
                fields=fields,
                rules=list(type_data.get('rules', [])),
            ))
        return descriptors

    def register(self, descriptor: NodeTypeDescriptor):
        """Add or replace a node type."""
        if descriptor.get_field('name') is None:
            descriptor.fields.insert(0, NAME_FIELD)
        if descriptor.type in self.types:
            self._log('info', f"Overriding node type: {descriptor.type}")
        self.types[descriptor.type] = descriptor

    def get(self, node_type: str) -> Optional[NodeTypeDescriptor]:
        """Get a node type by name, or None if unknown."""
        return self.types.get(node_type)

    def is_known(self, node_type: str) -> bool:
        return node_type in self.types

    def descriptor_for(self, node_type: str) -> NodeTypeDescriptor:
        """Get a node type, falling back to a name-only descriptor."""
        return self.types.get(node_type) or fallback_descriptor(node_type)

    def schema_for(self, node_type: str) -> List[FieldSpec]:
        """Field specs for a node type."""
        return list(self.descriptor_for(node_type).fields)

    def has_input(self, node_type: str) -> bool:
        return self.descriptor_for(node_type).has_input

    def has_output(self, node_type: str) -> bool:
        return self.descriptor_for(node_type).has_output

    def list_types(self) -> List[str]:
        return list(self.types.keys())

    def by_category(self, category: str) -> List[NodeTypeDescriptor]:
        return [d for d in self.types.values() if d.category == category]

    def palette(self) -> List[Dict[str, Any]]:
        """Palette sections in display order, for the node picker."""
        ordered = sorted(self.categories.values(), key=lambda c: c['order'])
        sections = []
        for category in ordered:
            entries = self.by_category(category['category'])
            if not entries:
                continue
            sections.append({
                "category": category['category'],
                "display_name": category['display_name'],
                "types": [
                    {"type": d.type, "label": d.label, "description": d.description}
                    for d in entries
                ],
            })
        return sections

    def to_catalog(self) -> List[Dict[str, Any]]:
        """Full catalogue for JSON serialization."""
        return [d.to_dict() for d in self.types.values()]

    def reload(self):
        """Reload all definitions from disk."""
        self.types.clear()
        self.categories.clear()
        self._load_definitions()


_registry: Optional[NodeTypeRegistry] = None


def get_registry() -> NodeTypeRegistry:
    """Shared registry over the packaged definitions."""
    global _registry
    if _registry is None:
        _registry = NodeTypeRegistry()
    return _registry


__all__ = [
    'FieldSpec',
    'NodeTypeDescriptor',
    'NodeTypeRegistry',
    'fallback_descriptor',
    'get_registry',
    'NAME_FIELD',
]
