"""
FlowDeck Config Validator

Checks a node's configuration against its type's field specs and derives
the computed fields. Validation never blocks editing: a failing result
only blocks deploy-time use of the node.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from flow_editor.node_types import FieldSpec, NodeTypeDescriptor, NodeTypeRegistry, get_registry


TRUE_STRINGS = ('true', '1', 'on', 'yes')
FALSE_STRINGS = ('false', '0', 'off', 'no', '')

ZIGBEE_STATES = ('ON', 'OFF', 'TOGGLE')
ZIGBEE_RANGES = {
    'brightness': (0, 255),
    'color_temp': (150, 500),
    'position': (0, 100),
}

CHANNEL_MIN = 0
CHANNEL_MAX = 15


@dataclass
class ValidationResult:
    """Outcome of validating one node config."""
    normalized: Dict[str, Any] = field(default_factory=dict)
    missing: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "normalized": dict(self.normalized),
            "missing": list(self.missing),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


def is_blank(value: Any) -> bool:
    """True for values that do not count as set."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def select_pin(config: Dict[str, Any], value: Any) -> Dict[str, Any]:
    """
    Apply a pin picker selection to a gpio config.

    A purely numeric selection is a physical pin number, anything else is
    a named pin. Selecting one always clears the other.
    """
    updated = dict(config)
    text = '' if value is None else str(value).strip()
    if text.isdigit():
        updated['pin'] = int(text)
        updated['pinName'] = None
    elif text:
        updated['pinName'] = text
        updated['pin'] = None
    else:
        updated['pin'] = None
        updated['pinName'] = None
    return updated


# =============================================================================
# Cross-field rules
# =============================================================================

def _rule_pin_select(config: Dict[str, Any], result: ValidationResult):
    has_name = not is_blank(config.get('pinName'))
    has_pin = config.get('pin') is not None
    if not has_name:
        config['pinName'] = None
    if has_name and has_pin:
        result.warnings.append("Both pinName and pin were set; keeping pinName")
        config['pin'] = None
    elif not has_name and not has_pin:
        result.missing.append('pinName')


def _rule_device_trigger(config: Dict[str, Any], result: ValidationResult):
    button = config.get('buttonNumber')
    if button is not None:
        config['filterType'] = 'button'
        if config.get('buttonAction') == 'cancel':
            config['payloadFilter'] = 'cancel'
        else:
            config['payloadFilter'] = str(button)
    else:
        config['filterType'] = 'contains'
        config['payloadFilter'] = ''


def _rule_audio_source(config: Dict[str, Any], result: ValidationResult):
    if config.get('audioSource') == 'tts':
        config['audioFileId'] = None
    else:
        config['audioSource'] = 'file'
        config['ttsText'] = None


def _rule_zigbee_command(config: Dict[str, Any], result: ValidationResult):
    command = config.get('command')
    value = config.get('value')
    if is_blank(value):
        return

    if command == 'state':
        text = str(value).strip().upper()
        if text not in ZIGBEE_STATES:
            result.errors.append(f"value: state must be one of {', '.join(ZIGBEE_STATES)}")
            return
        config['value'] = text
        return

    bounds = ZIGBEE_RANGES.get(command)
    if bounds is None:
        return
    try:
        number = int(float(str(value).strip()))
    except ValueError:
        result.errors.append(f"value: {command} must be a number")
        return
    low, high = bounds
    if number < low or number > high:
        clamped = max(low, min(high, number))
        result.warnings.append(f"value: {command} {number} clamped to {clamped}")
        number = clamped
    config['value'] = number


def _rule_channel_list(config: Dict[str, Any], result: ValidationResult):
    channels = []
    for channel in config.get('channels') or []:
        if channel < CHANNEL_MIN or channel > CHANNEL_MAX:
            clamped = max(CHANNEL_MIN, min(CHANNEL_MAX, channel))
            result.warnings.append(f"channels: {channel} clamped to {clamped}")
            channel = clamped
        if channel not in channels:
            channels.append(channel)
    config['channels'] = channels


RULES: Dict[str, Callable[[Dict[str, Any], ValidationResult], None]] = {
    'pin_select': _rule_pin_select,
    'device_trigger': _rule_device_trigger,
    'audio_source': _rule_audio_source,
    'zigbee_command': _rule_zigbee_command,
    'channel_list': _rule_channel_list,
}


class ConfigValidator:
    """Validates and normalizes node configs against the registry."""

    def __init__(self, registry: Optional[NodeTypeRegistry] = None, logger=None):
        self.registry = registry or get_registry()
        self.logger = logger or logging.getLogger(__name__)

    def _log(self, level: str, message: str):
        if self.logger:
            getattr(self.logger, level, self.logger.info)(message)

    def validate(self, node_type: str, config: Optional[Dict[str, Any]]) -> ValidationResult:
        """
        Validate a node config.

        Args:
            node_type: Registered node type name
            config: Raw config as edited by the user

        Returns:
            ValidationResult with the normalized config
        """
        descriptor = self.registry.descriptor_for(node_type)
        raw = dict(config or {})
        result = ValidationResult()

        if not self.registry.is_known(node_type):
            result.warnings.append(f"Unknown node type '{node_type}'")

        known = set(descriptor.field_keys())
        for key in raw:
            if key not in known:
                result.warnings.append(f"Unknown field '{key}' dropped")

        for spec in descriptor.fields:
            if spec.key in raw:
                value = self._coerce(spec, raw[spec.key], result)
            else:
                value = _default(spec)
            result.normalized[spec.key] = value

        self._apply_rules(descriptor, result)

        for spec in descriptor.fields:
            if spec.key in result.missing:
                continue
            if spec.is_required(result.normalized) and is_blank(result.normalized.get(spec.key)):
                result.missing.append(spec.key)

        return result

    def validate_flow(self, nodes) -> Dict[str, ValidationResult]:
        """Validate every node of a flow, keyed by node id."""
        return {node.id: self.validate(node.type, node.config) for node in nodes}

    def _apply_rules(self, descriptor: NodeTypeDescriptor, result: ValidationResult):
        for rule_name in descriptor.rules:
            rule = RULES.get(rule_name)
            if rule is None:
                self._log('warning', f"Unknown validation rule '{rule_name}' on {descriptor.type}")
                continue
            rule(result.normalized, result)

    def _coerce(self, spec: FieldSpec, value: Any, result: ValidationResult) -> Any:
        if value is None or (spec.kind != 'string' and is_blank(value) and spec.kind != 'list'):
            return None if spec.nullable else _default(spec)

        if spec.kind in ('int', 'float'):
            return self._coerce_number(spec, value, result)
        if spec.kind == 'enum':
            for choice in spec.choices:
                if value == choice or str(value) == str(choice):
                    return choice
            result.errors.append(f"{spec.key}: '{value}' is not one of {spec.choices}")
            return _default(spec)
        if spec.kind == 'bool':
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in TRUE_STRINGS:
                return True
            if text in FALSE_STRINGS:
                return False
            result.errors.append(f"{spec.key}: '{value}' is not a boolean")
            return _default(spec)
        if spec.kind == 'list':
            return self._coerce_list(spec, value, result)
        return value if isinstance(value, str) else str(value)

    def _coerce_number(self, spec: FieldSpec, value: Any, result: ValidationResult) -> Any:
        if isinstance(value, bool):
            result.errors.append(f"{spec.key}: expected a number")
            return _default(spec)
        try:
            number = float(str(value).strip()) if isinstance(value, str) else float(value)
        except (TypeError, ValueError):
            result.errors.append(f"{spec.key}: '{value}' is not a number")
            return _default(spec)
        if not math.isfinite(number):
            result.errors.append(f"{spec.key}: '{value}' is not a finite number")
            return _default(spec)

        if spec.min is not None and number < spec.min:
            result.warnings.append(f"{spec.key}: {value} clamped to {spec.min}")
            number = spec.min
        if spec.max is not None and number > spec.max:
            result.warnings.append(f"{spec.key}: {value} clamped to {spec.max}")
            number = spec.max

        return int(number) if spec.kind == 'int' else float(number)

    def _coerce_list(self, spec: FieldSpec, value: Any, result: ValidationResult) -> List[Any]:
        if isinstance(value, str):
            items = [part.strip() for part in value.split(',') if part.strip()]
        elif isinstance(value, (list, tuple)):
            items = list(value)
        else:
            items = [value]

        if spec.item_kind not in ('int', 'float'):
            return items

        cast = int if spec.item_kind == 'int' else float
        coerced = []
        for item in items:
            try:
                number = float(item)
            except (TypeError, ValueError):
                result.errors.append(f"{spec.key}: '{item}' is not a number")
                continue
            if math.isfinite(number):
                coerced.append(cast(number))
            else:
                result.errors.append(f"{spec.key}: '{item}' is not a number")
        return coerced


def _default(spec: FieldSpec) -> Any:
    if isinstance(spec.default, list):
        return list(spec.default)
    return spec.default


__all__ = [
    'ConfigValidator',
    'ValidationResult',
    'RULES',
    'is_blank',
    'select_pin',
]
