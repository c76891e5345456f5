"""Solution server client - JSON-RPC 2.0 tool calls over HTTP.

The server keeps a registry of incidents, the solutions applied to them and
the hints distilled from those solutions. Every public call degrades to a
sentinel value instead of raising: the server is optional and the workflow
keeps going without it.
"""

import itertools
import json
import logging
from typing import Any

import httpx

from migrationflow.domain.entities.incident import Incident
from migrationflow.domain.errors import SolutionServerClientError
from migrationflow.domain.ports.solution_server import BestHint, CreatedIncidents, SolutionChangeSet

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-03-26"
SESSION_HEADER = "Mcp-Session-Id"
CLIENT_INFO = {"name": "migrationflow", "version": "0.1.0"}

NO_ID = -1


class SolutionServerClient:
    """Client for the solution server's tool-call RPC channel."""

    def __init__(
        self,
        url: str,
        enabled: bool = True,
        client_id: str = "",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.url = url
        self.enabled = enabled
        self.client_id = client_id
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = httpx.Timeout(timeout, connect=10.0)
        self._session_id: str | None = None
        self._request_ids = itertools.count(1)
        self.is_connected = False
        self.tools: list[str] = []

    # --- transport --------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._http_client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json, text/event-stream"}
        if self._session_id:
            headers[SESSION_HEADER] = self._session_id
        return headers

    async def _rpc(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send one JSON-RPC request and return its result."""
        payload = {"jsonrpc": "2.0", "id": next(self._request_ids), "method": method, "params": params or {}}
        try:
            resp = await self._client().post(self.url, json=payload, headers=self._headers())
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise SolutionServerClientError(f"{method} failed: {e}") from e

        if session_id := resp.headers.get(SESSION_HEADER):
            self._session_id = session_id
        body = self._decode(resp)
        if body.get("error"):
            error = body["error"]
            raise SolutionServerClientError(f"{method} failed: {error.get('message', error)}")
        return body.get("result")

    @staticmethod
    def _decode(resp: httpx.Response) -> dict[str, Any]:
        """JSON body, or the last data line of an event-stream body."""
        try:
            if resp.headers.get("content-type", "").startswith("text/event-stream"):
                data_lines = [line[5:].strip() for line in resp.text.splitlines() if line.startswith("data:")]
                if not data_lines:
                    raise SolutionServerClientError("Empty event stream from solution server")
                return json.loads(data_lines[-1])
            return resp.json()
        except ValueError as e:
            raise SolutionServerClientError(f"Unreadable solution server response: {e}") from e

    async def _notify(self, method: str) -> None:
        payload = {"jsonrpc": "2.0", "method": method}
        try:
            await self._client().post(self.url, json=payload, headers=self._headers())
        except httpx.HTTPError as e:
            raise SolutionServerClientError(f"{method} failed: {e}") from e

    async def _call_tool(self, name: str, arguments: dict[str, Any]) -> str | None:
        """Call a server tool; returns its first text content block."""
        if not self.is_connected:
            raise SolutionServerClientError("Solution server is not connected")
        result = await self._rpc("tools/call", {"name": name, "arguments": arguments}) or {}
        if result.get("isError"):
            raise SolutionServerClientError(f"Tool {name} failed: {result.get('content')}")
        for block in result.get("content") or []:
            if isinstance(block, dict) and "text" in block:
                return block["text"]
        return None

    # --- lifecycle --------------------------------------------------------

    async def connect(self) -> bool:
        """Initialize the session. Failures are logged and leave the client disconnected."""
        if not self.enabled:
            logger.info("Solution server is disabled, skipping connection")
            return False
        try:
            await self._rpc(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {"roots": {"listChanged": False}, "sampling": {}},
                    "clientInfo": CLIENT_INFO,
                },
            )
            await self._notify("notifications/initialized")
            listed = await self._rpc("tools/list") or {}
        except SolutionServerClientError as e:
            logger.error("Failed to connect to solution server at %s: %s", self.url, e)
            self.is_connected = False
            return False

        self.tools = [tool.get("name", "") for tool in listed.get("tools") or []]
        self.is_connected = True
        logger.info("Connected to solution server, tools: %s", ", ".join(self.tools))
        return True

    async def disconnect(self) -> None:
        self.is_connected = False
        self._session_id = None
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    # --- operations -------------------------------------------------------

    async def get_best_hint(self, ruleset_name: str, violation_name: str) -> BestHint | None:
        if not self.enabled:
            return None
        try:
            content = await self._call_tool(
                "get_best_hint",
                {"ruleset_name": ruleset_name, "violation_name": violation_name},
            )
        except SolutionServerClientError as e:
            logger.error("Error getting best hint for %s - %s: %s", ruleset_name, violation_name, e)
            return None
        if not content or not content.strip() or content.strip().lower() == "null":
            return None
        try:
            parsed = json.loads(content)
        except ValueError as e:
            logger.error("Failed to parse best hint response: %s", e)
            return None
        if isinstance(parsed, dict) and "hint" in parsed and "hint_id" in parsed:
            return BestHint(hint=parsed["hint"], hint_id=parsed["hint_id"])
        return None

    async def create_incident(self, incident: Incident) -> int:
        if not self.enabled:
            return NO_ID
        try:
            content = await self._call_tool(
                "create_incident",
                {"client_id": self.client_id, "extended_incident": incident.model_dump()},
            )
            return self._parse_id(content, "incident")
        except SolutionServerClientError as e:
            logger.error(
                "Error creating incident for %s - %s: %s", incident.ruleset_name, incident.violation_name, e
            )
            return NO_ID

    async def create_multiple_incidents(self, incidents: list[Incident]) -> CreatedIncidents:
        if not self.enabled:
            return CreatedIncidents(ids=[], created_count=0, failed_count=len(incidents))
        ids = []
        for incident in incidents:
            incident_id = await self.create_incident(incident)
            if incident_id != NO_ID:
                ids.append(incident_id)
        return CreatedIncidents(ids=ids, created_count=len(ids), failed_count=len(incidents) - len(ids))

    async def create_solution(
        self,
        incident_ids: list[int],
        change_set: SolutionChangeSet,
        reasoning: str,
        used_hint_ids: list[int],
    ) -> int:
        if not self.enabled:
            return NO_ID
        try:
            content = await self._call_tool(
                "create_solution",
                {
                    "client_id": self.client_id,
                    "incident_ids": incident_ids,
                    "change_set": change_set.model_dump(),
                    "reasoning": reasoning,
                    "used_hint_ids": used_hint_ids,
                },
            )
            return self._parse_id(content, "solution")
        except SolutionServerClientError as e:
            logger.error("Error creating solution for incidents %s: %s", incident_ids, e)
            return NO_ID

    async def accept_file(self, uri: str, content: str) -> None:
        if not self.enabled:
            return
        try:
            await self._call_tool(
                "accept_file",
                {"client_id": self.client_id, "solution_file": {"uri": uri, "content": content}},
            )
        except SolutionServerClientError as e:
            logger.error("Error accepting file %s: %s", uri, e)

    async def reject_file(self, uri: str) -> None:
        if not self.enabled:
            return
        try:
            await self._call_tool("reject_file", {"client_id": self.client_id, "file_uri": uri})
        except SolutionServerClientError as e:
            logger.error("Error rejecting file %s: %s", uri, e)

    async def get_success_rate(self, incidents: list[Incident]) -> list[Incident]:
        """Attach ``success_rate_metric`` to incidents with a known violation."""
        if not self.enabled:
            return incidents
        keys = list(dict.fromkeys(i.violation_key for i in incidents if i.violation_key))
        if not keys:
            return incidents
        violation_ids = [
            {"ruleset_name": key.split("::", 1)[0], "violation_name": key.split("::", 1)[1]} for key in keys
        ]
        try:
            content = await self._call_tool("get_success_rate", {"violation_ids": violation_ids})
            metrics = json.loads(content) if content else []
        except (SolutionServerClientError, ValueError) as e:
            logger.error("Error getting success rate for violations: %s", e)
            return incidents
        if not isinstance(metrics, list):
            metrics = []

        enhanced = []
        for incident in incidents:
            key = incident.violation_key
            index = keys.index(key) if key in keys else -1
            if 0 <= index < len(metrics):
                incident = incident.model_copy(update={"success_rate_metric": metrics[index]})
            enhanced.append(incident)
        return enhanced

    @staticmethod
    def _parse_id(content: str | None, what: str) -> int:
        if content is None:
            raise SolutionServerClientError(f"No {what} ID returned from server")
        try:
            return int(content.strip())
        except ValueError as e:
            raise SolutionServerClientError(f"Invalid {what} ID returned: {content}") from e
