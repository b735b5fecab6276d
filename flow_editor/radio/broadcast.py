"""
FlowDeck Broadcast Request Builder

Turns a broadcast node's config, plus the message that triggered it,
into fully specified transmission requests for the runtime.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from flow_editor.validation import ConfigValidator


BROADCAST_TYPES = ('radio-broadcast', 'radio-gpio-broadcast', 'awr-erm100-broadcast')

# Settle time between selecting a channel and keying the radio
CHANNEL_SETTLE_MS = 100

_TEMPLATE = re.compile(r'\{\{([^}]+)\}\}')

# Payload keys that override the node config for one broadcast
_PAYLOAD_OVERRIDES = {
    'radio-broadcast': ('audioFileId', 'ttsText', 'channel', 'repeat', 'waitForClear', 'clearChannelTimeout'),
    'radio-gpio-broadcast': ('audioFileId', 'ttsText', 'channel', 'repeat', 'waitForClear', 'clearChannelTimeout'),
    'awr-erm100-broadcast': ('audioFileId', 'ttsText', 'channels', 'duration', 'delayBetween'),
}


@dataclass
class BroadcastRequest:
    """One keyed transmission on one channel."""
    node_type: str
    radio_id: str
    audio_source: str
    audio_file_id: Optional[str]
    tts_text: Optional[str]
    channel: int
    wait_for_clear: bool = True
    clear_channel_timeout_ms: int = 5000
    repeat: int = 1
    repeat_delay_ms: int = 500
    pre_key_delay_ms: int = 100
    post_key_delay_ms: int = 100
    channel_settle_ms: int = CHANNEL_SETTLE_MS
    key_duration_ms: Optional[int] = None
    cancel_source_key: Optional[str] = None

    @property
    def audio_ref(self) -> Optional[str]:
        return self.tts_text if self.audio_source == 'tts' else self.audio_file_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeType": self.node_type,
            "radioId": self.radio_id,
            "audioSource": self.audio_source,
            "audioFileId": self.audio_file_id,
            "ttsText": self.tts_text,
            "channel": self.channel,
            "waitForClear": self.wait_for_clear,
            "clearChannelTimeout": self.clear_channel_timeout_ms,
            "repeat": self.repeat,
            "repeatDelay": self.repeat_delay_ms,
            "preKeyDelay": self.pre_key_delay_ms,
            "postKeyDelay": self.post_key_delay_ms,
            "channelSettle": self.channel_settle_ms,
            "keyDuration": self.key_duration_ms,
            "cancelSource": self.cancel_source_key,
        }


def substitute_template(text: str, message: Optional[Dict[str, Any]]) -> str:
    """Replace {{dotted.path}} placeholders with values from the message; unresolved ones stay as written."""
    if not text:
        return ''

    def replace(match):
        value: Any = message or {}
        for part in match.group(1).strip().split('.'):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return match.group(0)
        return match.group(0) if value is None else str(value)

    return _TEMPLATE.sub(replace, text)


def resolve_cancel_key(cancel_source: Optional[str], message: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """
    Key that identifies which broadcasts a cancel request targets.

    A configured cancel source wins (after template substitution).
    Otherwise the message payload's source, buttonName, deviceName or
    cancelSource is used, in that order.
    """
    if cancel_source:
        return substitute_template(cancel_source, message) or None

    payload = (message or {}).get('payload')
    if not isinstance(payload, dict):
        return None
    for key in ('source', 'buttonName', 'deviceName', 'cancelSource'):
        value = payload.get(key)
        if value:
            return str(value)
    return None


class BroadcastRequestBuilder:
    """Builds broadcast requests from node configs."""

    def __init__(self, validator: Optional[ConfigValidator] = None, logger=None):
        self.validator = validator or ConfigValidator()
        self.logger = logger or logging.getLogger(__name__)

    def _normalize(self, node_type: str, config: Dict[str, Any], message: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        merged = dict(config or {})
        payload = (message or {}).get('payload')
        if isinstance(payload, dict):
            for key in _PAYLOAD_OVERRIDES[node_type]:
                if payload.get(key) is not None:
                    merged[key] = payload[key]
            if payload.get('ttsText') is not None:
                merged['audioSource'] = 'tts'
            elif payload.get('audioFileId') is not None:
                merged['audioSource'] = 'file'

        result = self.validator.validate(node_type, merged)
        for warning in result.warnings:
            self.logger.debug(f"{node_type}: {warning}")
        return result.normalized

    def build_sequence(
        self,
        node_type: str,
        config: Dict[str, Any],
        message: Optional[Dict[str, Any]] = None,
    ) -> List[BroadcastRequest]:
        """
        Requests for one trigger of a broadcast node.

        Multi-channel nodes yield one request per channel, in order; the
        others yield a single request.
        """
        if node_type not in BROADCAST_TYPES:
            raise ValueError(f"{node_type} is not a broadcast node type")

        normalized = self._normalize(node_type, config, message)

        if message is not None:
            cancel_key = resolve_cancel_key(normalized.get('cancelSource'), message)
        else:
            cancel_key = normalized.get('cancelSource') or None

        common = dict(
            node_type=node_type,
            radio_id=normalized.get('radioId') or 'default',
            audio_source=normalized['audioSource'],
            audio_file_id=normalized.get('audioFileId'),
            tts_text=normalized.get('ttsText'),
            wait_for_clear=normalized['waitForClear'],
            clear_channel_timeout_ms=normalized['clearChannelTimeout'],
            pre_key_delay_ms=normalized['preKeyDelay'],
            post_key_delay_ms=normalized['postKeyDelay'],
            cancel_source_key=cancel_key,
        )

        if node_type == 'awr-erm100-broadcast':
            return [
                BroadcastRequest(
                    channel=channel,
                    repeat=1,
                    repeat_delay_ms=normalized['delayBetween'],
                    channel_settle_ms=normalized['channelSwitchDelay'],
                    key_duration_ms=normalized['duration'],
                    **common,
                )
                for channel in normalized['channels']
            ]

        return [BroadcastRequest(
            channel=normalized['channel'],
            repeat=normalized['repeat'],
            repeat_delay_ms=normalized['repeatDelay'],
            **common,
        )]

    def build(
        self,
        node_type: str,
        config: Dict[str, Any],
        message: Optional[Dict[str, Any]] = None,
    ) -> BroadcastRequest:
        """First request of the sequence; the only one for single-channel nodes."""
        requests = self.build_sequence(node_type, config, message)
        if not requests:
            raise ValueError(f"{node_type} has no channels to broadcast on")
        return requests[0]


__all__ = [
    'BROADCAST_TYPES',
    'BroadcastRequest',
    'BroadcastRequestBuilder',
    'resolve_cancel_key',
    'substitute_template',
]
