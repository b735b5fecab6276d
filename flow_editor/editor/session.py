"""
FlowDeck Editor Session

Binds one flow to its graph, execution lock, validator and the runtime.
State transitions that depend on the runtime (first save, start, stop)
only happen once the runtime has acknowledged them. Transport failures
become notices and leave local state untouched.
"""

import logging
from typing import Any, Dict, List, Optional

from flow_editor.client.runtime_api import RuntimeClient
from flow_editor.editor.notices import NoticeBoard
from flow_editor.exceptions import DeployBlocked, TransportError
from flow_editor.graph.lock import ExecutionLockController, FlowStatus
from flow_editor.graph.model import NEW_FLOW_ID, Flow, GraphModel
from flow_editor.node_types import NodeTypeRegistry, get_registry
from flow_editor.radio.broadcast import BroadcastRequest, BroadcastRequestBuilder
from flow_editor.radio.channel import ChannelBits, ChannelEncoder
from flow_editor.validation import ConfigValidator, ValidationResult, select_pin


class EditorSession:
    """Editing session for a single flow."""

    def __init__(
        self,
        client: RuntimeClient,
        registry: Optional[NodeTypeRegistry] = None,
        notices: Optional[NoticeBoard] = None,
        logger=None,
    ):
        self.client = client
        self.registry = registry or get_registry()
        self.notices = notices or NoticeBoard()
        self.logger = logger or logging.getLogger(__name__)

        self.validator = ConfigValidator(self.registry, logger=self.logger)
        self.lock = ExecutionLockController(logger=self.logger)
        self.graph = GraphModel(self.registry, self.validator, self.lock, logger=self.logger)
        self.builder = BroadcastRequestBuilder(self.validator, logger=self.logger)
        self.flow = Flow()

    def log(self, level: str, message: str):
        if self.logger:
            getattr(self.logger, level)(message)

    def _transport_failed(self, action: str, error: TransportError):
        self.log('warning', f"{action} failed: {error}")
        self.notices.post(f"{action} failed: {error.message}")

    def to_payload(self) -> Dict[str, Any]:
        """Flow document as persisted by the runtime."""
        payload = {
            "name": self.flow.name,
            "description": self.flow.description,
        }
        payload.update(self.graph.to_dict())
        return payload

    # =========================================================================
    # Loading and saving
    # =========================================================================

    def new_flow(self, name: str = '', description: str = ''):
        """Start a fresh, unsaved flow."""
        self.flow = Flow(id=NEW_FLOW_ID, name=name, description=description)
        self.lock.sync(FlowStatus.STOPPED)
        self.graph.load([], [])

    async def open(self, flow_id: str) -> bool:
        """Load a persisted flow; the lock follows the status it reports."""
        try:
            data = await self.client.get_flow(flow_id)
        except TransportError as e:
            self._transport_failed('Loading flow', e)
            return False

        self.flow = Flow.from_dict(data)
        self.flow.id = str(data.get('id', flow_id))
        self.graph.load(data.get('nodes', []), data.get('edges', []))
        self.lock.sync(self.flow.status)
        return True

    async def save(self) -> bool:
        """
        Persist the flow.

        The first successful save of a new flow adopts the id issued by
        the runtime. Incomplete node configs do not block saving.
        """
        if not self.flow.name.strip():
            self.notices.post("Flow name is required", level='warning')
            return False

        payload = self.to_payload()
        try:
            if self.flow.is_new:
                flow_id = await self.client.create_flow(payload)
                self.flow.id = flow_id
                self.log('info', f"Created flow {flow_id}")
            else:
                await self.client.update_flow(self.flow.id, payload)
                self.log('info', f"Saved flow {self.flow.id}")
        except TransportError as e:
            self._transport_failed('Saving flow', e)
            return False
        return True

    # =========================================================================
    # Execution
    # =========================================================================

    def validate_for_deploy(self) -> Dict[str, ValidationResult]:
        return self.validator.validate_flow(self.graph.node_list())

    async def start(self) -> bool:
        """
        Ask the runtime to start the flow.

        Raises:
            DeployBlocked: one or more nodes are incompletely configured
        """
        if self.flow.is_new:
            self.notices.post("Save the flow before starting it", level='warning')
            return False

        results = self.validate_for_deploy()
        if any(not result.ok for result in results.values()):
            raise DeployBlocked(results)

        try:
            body = await self.client.start_flow(self.flow.id)
        except TransportError as e:
            self._transport_failed('Starting flow', e)
            return False

        self.flow.status = body.get('status') or FlowStatus.RUNNING.value
        self.lock.sync(self.flow.status)
        return True

    async def stop(self) -> bool:
        if self.flow.is_new:
            return False
        try:
            body = await self.client.stop_flow(self.flow.id)
        except TransportError as e:
            self._transport_failed('Stopping flow', e)
            return False

        self.flow.status = body.get('status') or FlowStatus.STOPPED.value
        self.lock.sync(self.flow.status)
        return True

    async def refresh_status(self) -> Optional[str]:
        if self.flow.is_new:
            return None
        try:
            status = await self.client.flow_status(self.flow.id)
        except TransportError as e:
            self._transport_failed('Reading flow status', e)
            return None
        self.flow.status = status
        self.lock.sync(status)
        return status

    async def trigger(self, node_id: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        """Fire a node manually. Refused until the flow has been saved."""
        if self.flow.is_new:
            self.notices.post("Save the flow before triggering nodes", level='warning')
            return False
        if self.graph.get_node(node_id) is None:
            return False
        try:
            await self.client.trigger_node(self.flow.id, node_id, payload)
        except TransportError as e:
            self._transport_failed('Triggering node', e)
            return False
        return True

    # =========================================================================
    # Node helpers
    # =========================================================================

    def choose_pin(self, node_id: str, value: Any) -> Optional[ValidationResult]:
        """Apply a pin picker selection (named or physical) to a gpio node."""
        node = self.graph.get_node(node_id)
        if node is None:
            return None
        return self.graph.set_node_config(node_id, select_pin(node.config, value))

    def broadcast_requests(self, node_id: str, message: Optional[Dict[str, Any]] = None) -> List[BroadcastRequest]:
        node = self.graph.get_node(node_id)
        if node is None:
            raise KeyError(node_id)
        return self.builder.build_sequence(node.type, node.config, message)

    async def test_channel(self, channel: int) -> Optional[ChannelBits]:
        """
        Drive the CS lines to a channel from the hardware test panel.

        Returns the bit pattern the runtime reports as applied.
        """
        expected = ChannelEncoder.encode(channel)
        try:
            body = await self.client.set_channel(channel)
        except TransportError as e:
            self._transport_failed('Setting channel', e)
            return None

        ack = body.get('csStates')
        if not ack:
            return expected
        applied = ChannelEncoder.encode(ChannelEncoder.decode(ack))
        if applied != expected:
            self.notices.post(
                f"Runtime applied channel {ChannelEncoder.decode(ack)} instead of {channel}",
                level='warning',
            )
        return applied
