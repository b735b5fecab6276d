"""
FlowDeck Editor Configuration Module

Loads and provides access to editor configuration from editor_config.yaml.
The FLOWDECK_CONFIG environment variable points at an alternative file.
"""

import os
from typing import Optional
from dataclasses import dataclass, field

import yaml


@dataclass
class RuntimeConfig:
    """Connection to the flow runtime."""
    base_url: str = "http://localhost:3000/api"
    ws_url: str = "ws://localhost:3000/ws"
    request_timeout: float = 10.0


@dataclass
class TelemetryConfig:
    """Polling and buffering of live telemetry."""
    gpio_poll_interval: float = 1.0
    bluetooth_poll_interval: float = 10.0
    debug_buffer_size: int = 500
    traffic_buffer_size: int = 100
    reconnect_delay: float = 2.0


@dataclass
class NoticeConfig:
    """Transport error banners."""
    banner_ttl: float = 5.0


@dataclass
class SimulatorConfig:
    """In-memory runtime simulator."""
    host: str = "0.0.0.0"
    port: int = 3000
    clear_channel_poll_ms: int = 100
    simulated_audio_ms: int = 250


@dataclass
class EditorConfig:
    """Complete editor configuration."""
    name: str = "FlowDeck"
    node_types_dir: Optional[str] = None
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    notices: NoticeConfig = field(default_factory=NoticeConfig)
    simulator: SimulatorConfig = field(default_factory=SimulatorConfig)


# Global config instance
_config: Optional[EditorConfig] = None


def get_config_path() -> str:
    """Get the path to the config file."""
    env_path = os.environ.get('FLOWDECK_CONFIG')
    if env_path:
        return env_path
    return os.path.join(os.path.dirname(__file__), 'editor_config.yaml')


def load_config(config_path: Optional[str] = None) -> EditorConfig:
    """
    Load editor configuration from YAML file.

    Args:
        config_path: Path to config file (default: get_config_path())

    Returns:
        EditorConfig instance
    """
    global _config

    if config_path is None:
        config_path = get_config_path()

    config = EditorConfig()

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}
        _apply(config, data)

    _config = config
    return config


def _apply(config: EditorConfig, data: dict):
    """Copy recognised values from a nested dict onto a config."""
    editor = data.get('editor') or {}
    if 'name' in editor:
        config.name = str(editor['name'])
    if 'node_types_dir' in editor:
        config.node_types_dir = editor['node_types_dir'] or None

    runtime = data.get('runtime') or {}
    if 'base_url' in runtime:
        config.runtime.base_url = str(runtime['base_url']).rstrip('/')
    if 'ws_url' in runtime:
        config.runtime.ws_url = str(runtime['ws_url'])
    if 'request_timeout' in runtime:
        config.runtime.request_timeout = float(runtime['request_timeout'])

    telemetry = data.get('telemetry') or {}
    if 'gpio_poll_interval' in telemetry:
        config.telemetry.gpio_poll_interval = float(telemetry['gpio_poll_interval'])
    if 'bluetooth_poll_interval' in telemetry:
        config.telemetry.bluetooth_poll_interval = float(telemetry['bluetooth_poll_interval'])
    if 'debug_buffer_size' in telemetry:
        config.telemetry.debug_buffer_size = int(telemetry['debug_buffer_size'])
    if 'traffic_buffer_size' in telemetry:
        config.telemetry.traffic_buffer_size = int(telemetry['traffic_buffer_size'])
    if 'reconnect_delay' in telemetry:
        config.telemetry.reconnect_delay = float(telemetry['reconnect_delay'])

    notices = data.get('notices') or {}
    if 'banner_ttl' in notices:
        config.notices.banner_ttl = float(notices['banner_ttl'])

    simulator = data.get('simulator') or {}
    if 'host' in simulator:
        config.simulator.host = str(simulator['host'])
    if 'port' in simulator:
        config.simulator.port = int(simulator['port'])
    if 'clear_channel_poll_ms' in simulator:
        config.simulator.clear_channel_poll_ms = int(simulator['clear_channel_poll_ms'])
    if 'simulated_audio_ms' in simulator:
        config.simulator.simulated_audio_ms = int(simulator['simulated_audio_ms'])


def get_config() -> EditorConfig:
    """
    Get the current editor configuration.

    Loads from file if not already loaded.
    """
    global _config
    if _config is None:
        load_config()
    return _config


def config_to_dict(config: Optional[EditorConfig] = None) -> dict:
    """
    Convert EditorConfig to dictionary for JSON or YAML serialization.

    Args:
        config: EditorConfig to convert (uses global if None)
    """
    if config is None:
        config = get_config()

    return {
        'editor': {
            'name': config.name,
            'node_types_dir': config.node_types_dir,
        },
        'runtime': {
            'base_url': config.runtime.base_url,
            'ws_url': config.runtime.ws_url,
            'request_timeout': config.runtime.request_timeout,
        },
        'telemetry': {
            'gpio_poll_interval': config.telemetry.gpio_poll_interval,
            'bluetooth_poll_interval': config.telemetry.bluetooth_poll_interval,
            'debug_buffer_size': config.telemetry.debug_buffer_size,
            'traffic_buffer_size': config.telemetry.traffic_buffer_size,
            'reconnect_delay': config.telemetry.reconnect_delay,
        },
        'notices': {
            'banner_ttl': config.notices.banner_ttl,
        },
        'simulator': {
            'host': config.simulator.host,
            'port': config.simulator.port,
            'clear_channel_poll_ms': config.simulator.clear_channel_poll_ms,
            'simulated_audio_ms': config.simulator.simulated_audio_ms,
        },
    }


def save_config(config: Optional[EditorConfig] = None, config_path: Optional[str] = None) -> bool:
    """
    Save editor configuration to YAML file.

    Returns:
        True if saved successfully
    """
    if config is None:
        config = _config
    if config is None:
        return False

    if config_path is None:
        config_path = get_config_path()

    data = config_to_dict(config)
    if data['editor']['node_types_dir'] is None:
        del data['editor']['node_types_dir']

    try:
        with open(config_path, 'w') as f:
            f.write("# FlowDeck Editor Configuration\n")
            f.write("#\n")
            f.write("# Runtime endpoints, telemetry polling and simulator settings.\n\n")
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        return True
    except OSError:
        return False


def update_config_from_dict(data: dict) -> EditorConfig:
    """
    Update the global config from a dictionary.

    Args:
        data: Nested dictionary in the config_to_dict() layout

    Returns:
        Updated EditorConfig
    """
    global _config

    if _config is None:
        _config = EditorConfig()

    _apply(_config, data)
    return _config


__all__ = [
    'EditorConfig',
    'RuntimeConfig',
    'TelemetryConfig',
    'NoticeConfig',
    'SimulatorConfig',
    'load_config',
    'get_config',
    'get_config_path',
    'save_config',
    'config_to_dict',
    'update_config_from_dict',
]
