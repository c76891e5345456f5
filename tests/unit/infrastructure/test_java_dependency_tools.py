"""Tests for the Maven Central lookup tool."""

import json

import httpx
import pytest

from migrationflow.infrastructure.cache import FileBasedResponseCache
from migrationflow.infrastructure.tools.java_dependency import NOT_FOUND, TIMED_OUT, JavaDependencyTools

JMS_DOC = {"a": "quarkus-jms", "g": "io.quarkus", "latestVersion": "3.8.1"}


def _cache(tmp_path, enabled=True):
    return FileBasedResponseCache(enabled=enabled, serialize=json.dumps, deserialize=json.loads, cache_dir=tmp_path)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _docs(*docs):
    return httpx.Response(200, json={"response": {"numFound": len(docs), "docs": list(docs)}})


class TestSearchFqdn:
    """searchFqdn against a mocked Maven Central."""

    @pytest.mark.asyncio
    async def test_found(self, tmp_path):
        queries = []

        def handler(request):
            queries.append(request.url.params["q"])
            return _docs(JMS_DOC)

        tools = JavaDependencyTools(_cache(tmp_path, enabled=False), _client(handler))
        result = await tools.search_fqdn("quarkus-jms", "io.quarkus")
        assert result == "ArtifactID: quarkus-jms, GroupID: io.quarkus, LatestVersion: 3.8.1"
        assert queries == ['a:"quarkus-jms" AND g:"io.quarkus"']

    @pytest.mark.asyncio
    async def test_multiple_results(self, tmp_path):
        other = {"a": "quarkus-jms", "g": "io.quarkiverse"}
        tools = JavaDependencyTools(_cache(tmp_path, enabled=False), _client(lambda request: _docs(JMS_DOC, other)))
        result = await tools.search_fqdn("quarkus-jms", "")
        assert result == (
            "ArtifactID: quarkus-jms, GroupID: io.quarkus, LatestVersion: 3.8.1"
            "\n - ArtifactID: quarkus-jms, GroupID: io.quarkiverse"
        )

    @pytest.mark.asyncio
    async def test_version_falls_back_to_latest(self, tmp_path):
        """No match for the version retries without it."""
        queries = []

        def handler(request):
            queries.append(request.url.params["q"])
            return _docs() if 'v:"' in request.url.params["q"] else _docs(JMS_DOC)

        tools = JavaDependencyTools(_cache(tmp_path, enabled=False), _client(handler))
        result = await tools.search_fqdn("quarkus-jms", "io.quarkus", "0.0.1")
        assert "LatestVersion: 3.8.1" in result
        assert len(queries) == 2

    @pytest.mark.asyncio
    async def test_not_found(self, tmp_path):
        tools = JavaDependencyTools(_cache(tmp_path, enabled=False), _client(lambda request: _docs()))
        assert await tools.search_fqdn("nope", "nope") == NOT_FOUND

    @pytest.mark.asyncio
    async def test_http_error_status(self, tmp_path):
        tools = JavaDependencyTools(
            _cache(tmp_path, enabled=False), _client(lambda request: httpx.Response(503, text="busy"))
        )
        assert await tools.search_fqdn("a", "g") == "Maven Central API returned code 503: busy"

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        tools = JavaDependencyTools(_cache(tmp_path, enabled=False), _client(handler))
        assert await tools.search_fqdn("a", "g") == TIMED_OUT

    @pytest.mark.asyncio
    async def test_connection_error(self, tmp_path):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        tools = JavaDependencyTools(_cache(tmp_path, enabled=False), _client(handler))
        result = await tools.search_fqdn("a", "g")
        assert result.startswith("Encountered error retrieving dependencies:")

    @pytest.mark.asyncio
    async def test_cached_answer_skips_request(self, tmp_path):
        calls = []

        def handler(request):
            calls.append(request)
            return _docs(JMS_DOC)

        tools = JavaDependencyTools(_cache(tmp_path), _client(handler))
        first = await tools.search_fqdn("quarkus-jms", "io.quarkus")
        second = await tools.search_fqdn("quarkus-jms", "io.quarkus")
        assert first == second
        assert len(calls) == 1
        assert list((tmp_path / "searchFqdn").iterdir())

    def test_tool_schema(self, tmp_path):
        (tool,) = JavaDependencyTools(_cache(tmp_path, enabled=False)).all()
        assert tool.name == "searchFqdn"
        assert set(tool.args) == {"artifactID", "groupID", "version"}
