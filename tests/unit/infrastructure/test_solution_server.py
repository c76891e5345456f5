"""Tests for the solution server client."""

import json

import httpx
import pytest

from migrationflow.domain.entities.incident import Incident
from migrationflow.domain.ports.solution_server import SolutionChangeSet
from migrationflow.infrastructure.clients.solution_server import NO_ID, SESSION_HEADER, SolutionServerClient

URL = "http://solutions.test/mcp"


def _incident(violation="javax-to-jakarta") -> Incident:
    return Incident(uri="A.java", message="m", ruleset_name="eap8", violation_name=violation)


class FakeServer:
    """JSON-RPC server answering tools/call with scripted text."""

    def __init__(self, tool_results=None, event_stream=False):
        self.tool_results = tool_results or {}
        self.event_stream = event_stream
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append((body, dict(request.headers)))
        method = body["method"]
        if "id" not in body:
            return httpx.Response(202)
        if method == "initialize":
            result = {"protocolVersion": "2025-03-26", "capabilities": {}}
        elif method == "tools/list":
            result = {"tools": [{"name": name} for name in self.tool_results]}
        else:
            name = body["params"]["name"]
            outcome = self.tool_results.get(name)
            if isinstance(outcome, Exception):
                return self._reply(body, error={"code": -32000, "message": str(outcome)})
            result = {"content": [{"type": "text", "text": outcome}], "isError": False}
        return self._reply(body, result=result)

    def _reply(self, body, result=None, error=None):
        payload = {"jsonrpc": "2.0", "id": body["id"]}
        if error is not None:
            payload["error"] = error
        else:
            payload["result"] = result
        headers = {SESSION_HEADER: "session-1"}
        if self.event_stream:
            headers["content-type"] = "text/event-stream"
            return httpx.Response(200, text=f"event: message\ndata: {json.dumps(payload)}\n\n", headers=headers)
        return httpx.Response(200, json=payload, headers=headers)

    def tool_calls(self):
        return [body["params"] for body, _ in self.requests if body["method"] == "tools/call"]


async def _connected(server: FakeServer, **kwargs) -> SolutionServerClient:
    client = SolutionServerClient(
        URL, client_id="ide-1", http_client=httpx.AsyncClient(transport=httpx.MockTransport(server)), **kwargs
    )
    assert await client.connect() is True
    return client


class TestDisabled:
    """A disabled client never talks to the network."""

    @pytest.mark.asyncio
    async def test_sentinels(self):
        client = SolutionServerClient(URL, enabled=False)
        assert await client.connect() is False
        assert await client.get_best_hint("eap8", "x") is None
        assert await client.create_incident(_incident()) == NO_ID
        created = await client.create_multiple_incidents([_incident(), _incident()])
        assert created.ids == [] and created.failed_count == 2
        assert await client.create_solution([1], SolutionChangeSet(diff=""), "r", []) == NO_ID
        incidents = [_incident()]
        assert await client.get_success_rate(incidents) is incidents


class TestConnection:
    """Session setup."""

    @pytest.mark.asyncio
    async def test_connect_lists_tools_and_keeps_session(self):
        server = FakeServer({"get_best_hint": "null"})
        client = await _connected(server)
        assert client.is_connected
        assert client.tools == ["get_best_hint"]
        methods = [body["method"] for body, _ in server.requests]
        assert methods == ["initialize", "notifications/initialized", "tools/list"]
        # Session id from initialize is sent on later requests
        assert server.requests[-1][1][SESSION_HEADER.lower()] == "session-1"

    @pytest.mark.asyncio
    async def test_connect_failure_degrades(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        client = SolutionServerClient(URL, http_client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)))
        assert await client.connect() is False
        assert await client.get_best_hint("eap8", "x") is None
        assert await client.create_incident(_incident()) == NO_ID

    @pytest.mark.asyncio
    async def test_event_stream_responses(self):
        server = FakeServer({"create_incident": "12"}, event_stream=True)
        client = await _connected(server)
        assert await client.create_incident(_incident()) == 12


class TestOperations:
    """Tool calls and their parsing."""

    @pytest.mark.asyncio
    async def test_best_hint(self):
        server = FakeServer({"get_best_hint": json.dumps({"hint": "Use jakarta", "hint_id": 3})})
        client = await _connected(server)
        hint = await client.get_best_hint("eap8", "javax-to-jakarta")
        assert hint.hint == "Use jakarta"
        assert hint.hint_id == 3
        assert server.tool_calls()[0]["arguments"] == {"ruleset_name": "eap8", "violation_name": "javax-to-jakarta"}

    @pytest.mark.asyncio
    async def test_no_hint(self):
        client = await _connected(FakeServer({"get_best_hint": "null"}))
        assert await client.get_best_hint("eap8", "x") is None

    @pytest.mark.asyncio
    async def test_create_multiple_incidents_counts_failures(self):
        server = FakeServer({"create_incident": "not-a-number"})
        client = await _connected(server)
        created = await client.create_multiple_incidents([_incident(), _incident()])
        assert created.ids == []
        assert created.failed_count == 2

    @pytest.mark.asyncio
    async def test_create_solution(self):
        server = FakeServer({"create_solution": " 42 "})
        client = await _connected(server)
        change_set = SolutionChangeSet(diff="--- a\n+++ b\n")
        assert await client.create_solution([1, 2], change_set, "because", [3]) == 42
        arguments = server.tool_calls()[0]["arguments"]
        assert arguments["client_id"] == "ide-1"
        assert arguments["incident_ids"] == [1, 2]
        assert arguments["used_hint_ids"] == [3]

    @pytest.mark.asyncio
    async def test_rpc_error(self):
        server = FakeServer({"create_solution": RuntimeError("db locked")})
        client = await _connected(server)
        assert await client.create_solution([1], SolutionChangeSet(diff=""), "r", []) == NO_ID

    @pytest.mark.asyncio
    async def test_accept_and_reject(self):
        server = FakeServer({"accept_file": "ok", "reject_file": "ok"})
        client = await _connected(server)
        await client.accept_file("/ws/pom.xml", "<project/>")
        await client.reject_file("/ws/pom.xml")
        names = [call["name"] for call in server.tool_calls()]
        assert names == ["accept_file", "reject_file"]

    @pytest.mark.asyncio
    async def test_success_rate(self):
        metric = {"counted_solutions": 4, "accepted_solutions": 3}
        server = FakeServer({"get_success_rate": json.dumps([metric])})
        client = await _connected(server)
        without_key = Incident(uri="B.java", message="m")
        enhanced = await client.get_success_rate([_incident(), without_key])
        assert getattr(enhanced[0], "success_rate_metric") == metric
        assert getattr(enhanced[1], "success_rate_metric", None) is None
        assert server.tool_calls()[0]["arguments"] == {
            "violation_ids": [{"ruleset_name": "eap8", "violation_name": "javax-to-jakarta"}]
        }
