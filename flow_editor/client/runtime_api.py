"""
FlowDeck Runtime API Client

REST client for the flow runtime: flow persistence and lifecycle, node
triggers, GPIO and Bluetooth telemetry, and resource catalogues.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from flow_editor.config import get_config
from flow_editor.exceptions import TransportError


class RuntimeClient:
    """Thin async wrapper over the runtime's JSON API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
        logger=None,
    ):
        if base_url is None or timeout is None:
            runtime = get_config().runtime
            base_url = base_url or runtime.base_url
            timeout = timeout if timeout is not None else runtime.request_timeout

        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> 'RuntimeClient':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def log(self, level: str, message: str):
        if self.logger:
            getattr(self.logger, level)(message)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        self.log('debug', f"{method} {url}")
        try:
            async with self._get_session().request(method, url, json=payload) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None

                if response.status >= 400:
                    message = None
                    if isinstance(body, dict):
                        message = body.get('error') or body.get('message')
                    raise TransportError(message or f"HTTP {response.status} {response.reason}", response.status, url)

                if isinstance(body, dict) and body.get('success') is False:
                    raise TransportError(body.get('error') or 'Request failed', response.status, url)

                return body
        except aiohttp.ClientError as e:
            raise TransportError(f"Runtime unreachable: {e}", url=url) from e
        except asyncio.TimeoutError as e:
            raise TransportError("Request timed out", url=url) from e

    # =========================================================================
    # Flows
    # =========================================================================

    async def list_flows(self) -> List[Dict[str, Any]]:
        body = await self._request('GET', '/flows')
        return body.get('flows', []) if isinstance(body, dict) else list(body or [])

    async def get_flow(self, flow_id: str) -> Dict[str, Any]:
        body = await self._request('GET', f'/flows/{flow_id}')
        return body.get('flow', body)

    async def create_flow(self, flow: Dict[str, Any]) -> str:
        """Persist a new flow and return the id the runtime issued."""
        body = await self._request('POST', '/flows', flow)
        flow_id = (body.get('flowId') or body.get('id')) if isinstance(body, dict) else None
        if not flow_id:
            raise TransportError("Runtime did not return a flow id", url=f"{self.base_url}/flows")
        return str(flow_id)

    async def update_flow(self, flow_id: str, flow: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request('PUT', f'/flows/{flow_id}', flow) or {}

    async def delete_flow(self, flow_id: str) -> Dict[str, Any]:
        return await self._request('DELETE', f'/flows/{flow_id}') or {}

    async def start_flow(self, flow_id: str) -> Dict[str, Any]:
        return await self._request('POST', f'/flows/{flow_id}/start') or {}

    async def stop_flow(self, flow_id: str) -> Dict[str, Any]:
        return await self._request('POST', f'/flows/{flow_id}/stop') or {}

    async def flow_status(self, flow_id: str) -> str:
        body = await self._request('GET', f'/flows/{flow_id}/status')
        return body.get('status', 'stopped')

    async def trigger_node(self, flow_id: str, node_id: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._request('POST', f'/flows/{flow_id}/trigger/{node_id}', payload or {}) or {}

    async def list_node_types(self) -> List[Dict[str, Any]]:
        body = await self._request('GET', '/nodes')
        return body.get('nodeTypes', [])

    # =========================================================================
    # Resources
    # =========================================================================

    async def list_audio(self) -> List[Dict[str, Any]]:
        body = await self._request('GET', '/audio')
        if isinstance(body, dict):
            return body.get('files', [])
        return list(body or [])

    async def list_devices(self) -> List[Dict[str, Any]]:
        body = await self._request('GET', '/devices')
        if isinstance(body, dict):
            return body.get('devices', [])
        return list(body or [])

    async def system_status(self) -> Dict[str, Any]:
        return await self._request('GET', '/system/status') or {}

    # =========================================================================
    # GPIO
    # =========================================================================

    async def gpio_status(self) -> Dict[str, Any]:
        return await self._request('GET', '/gpio/status') or {}

    async def set_channel(self, channel: int) -> Dict[str, Any]:
        """Select a radio channel; the response carries the csStates applied."""
        return await self._request('POST', '/gpio/channel', {"channel": channel}) or {}

    # =========================================================================
    # Bluetooth
    # =========================================================================

    async def bluetooth_devices(self) -> List[Dict[str, Any]]:
        body = await self._request('GET', '/bluetooth/devices')
        if isinstance(body, dict):
            return body.get('devices', [])
        return list(body or [])

    async def save_bluetooth_device(
        self,
        address: str,
        name: str,
        services: Dict[str, Any],
        capabilities: Dict[str, Any],
    ) -> Dict[str, Any]:
        return await self._request('POST', '/bluetooth/devices', {
            "address": address,
            "name": name,
            "services": services,
            "capabilities": capabilities,
        }) or {}

    async def set_bluetooth_connection(self, address: str, connected: bool) -> Dict[str, Any]:
        return await self._request('PUT', f'/bluetooth/devices/{address}/connection', {"connected": connected}) or {}
