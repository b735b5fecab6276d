"""FlowDeck runtime clients: REST API and event stream."""

from flow_editor.client.event_stream import EventSubscription
from flow_editor.client.runtime_api import RuntimeClient

__all__ = [
    'EventSubscription',
    'RuntimeClient',
]
