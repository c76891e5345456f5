"""Java dependency tools - Maven Central lookups for the dependency agent."""

import logging
from typing import Any

import httpx
from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

from migrationflow.infrastructure.cache.response_cache import FileBasedResponseCache

logger = logging.getLogger(__name__)

MAVEN_SEARCH_URL = "https://search.maven.org/solrsearch/select"
REQUEST_TIMEOUT = 10.0
CACHE_SUB_DIR = "searchFqdn"

TIMED_OUT = "Request to Maven Central timed out."
NOT_FOUND = "Invalid GroupID or ArtifactID. Please try a different GroupID and/or ArtifactID."


class SearchFqdnArgs(BaseModel):
    artifactID: str = Field(description="Artifact ID of the dependency")
    groupID: str = Field(description="Group ID of the dependency")
    version: str | None = Field(
        default=None,
        description="Version of the dependency (optional). When not specified, latest version will be returned.",
    )


def format_dependency(doc: dict[str, Any]) -> str:
    text = f"ArtifactID: {doc.get('a')}, GroupID: {doc.get('g')}"
    if doc.get("latestVersion"):
        text += f", LatestVersion: {doc['latestVersion']}"
    return text


class JavaDependencyTools:
    """Tools for finding Maven coordinates."""

    def __init__(
        self,
        cache: FileBasedResponseCache[dict[str, Any], str],
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._cache = cache
        self._http_client = http_client

    def all(self) -> list[BaseTool]:
        return [
            StructuredTool.from_function(
                coroutine=self.search_fqdn,
                name="searchFqdn",
                description="Searches maven central repo for fully qualified domain names for Java dependencies",
                args_schema=SearchFqdnArgs,
            )
        ]

    async def search_fqdn(self, artifactID: str, groupID: str, version: str | None = None) -> str:
        cache_key = {"artifactID": artifactID, "groupID": groupID, "version": version}
        cached = await self._cache.get(cache_key, sub_dir=CACHE_SUB_DIR, output_ext="")
        if cached:
            return cached

        docs = await self._query(groupID, artifactID, version)
        if isinstance(docs, list) and not docs and version:
            # No exact match for the version, fall back to the latest one
            docs = await self._query(groupID, artifactID, None)

        if isinstance(docs, str):
            response = docs
        elif docs:
            response = "\n - ".join(format_dependency(doc) for doc in docs)
        else:
            response = NOT_FOUND

        await self._cache.set(cache_key, response, sub_dir=CACHE_SUB_DIR, input_ext=".json", output_ext="")
        return response

    async def _query(self, group_id: str, artifact_id: str, version: str | None) -> list[dict[str, Any]] | str:
        """Docs from Maven Central, or an error text for the model."""
        terms = []
        if artifact_id:
            terms.append(f'a:"{artifact_id}"')
        if group_id:
            terms.append(f'g:"{group_id}"')
        if version:
            terms.append(f'v:"{version}"')
        params = {"q": " AND ".join(terms)}

        try:
            if self._http_client is not None:
                resp = await self._http_client.get(MAVEN_SEARCH_URL, params=params, timeout=REQUEST_TIMEOUT)
            else:
                async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                    resp = await client.get(MAVEN_SEARCH_URL, params=params)
        except httpx.TimeoutException:
            logger.error(TIMED_OUT)
            return TIMED_OUT
        except httpx.HTTPError as e:
            logger.error("Maven Central request failed: %s", e)
            return f"Encountered error retrieving dependencies: {e}"

        if resp.status_code != 200:
            message = f"Maven Central API returned code {resp.status_code}: {resp.text}"
            logger.error(message)
            return message
        try:
            docs = (resp.json().get("response") or {}).get("docs") or []
        except ValueError as e:
            logger.error("Unreadable Maven Central response: %s", e)
            return f"Encountered error retrieving dependencies: {e}"
        return [doc for doc in docs if doc]
