"""Solution Server Port - remote registry of hints, incidents and solutions."""

from typing import Protocol

from pydantic import BaseModel, Field

from migrationflow.domain.entities.incident import Incident


class BestHint(BaseModel):
    """Best known remediation for a (ruleset, violation) pair."""

    hint: str
    hint_id: int


class SolutionFile(BaseModel):
    uri: str
    content: str


class SolutionChangeSet(BaseModel):
    """Before/after snapshot of a fix."""

    diff: str
    before: list[SolutionFile] = Field(default_factory=list)
    after: list[SolutionFile] = Field(default_factory=list)


class CreatedIncidents(BaseModel):
    ids: list[int] = Field(default_factory=list)
    created_count: int = 0
    failed_count: int = 0


class SolutionServerPort(Protocol):
    """Interface for the solution server.

    Implementations never raise: when disabled or disconnected, lookups
    return None and creates return -1.
    """

    async def get_best_hint(self, ruleset_name: str, violation_name: str) -> BestHint | None:
        ...

    async def create_incident(self, incident: Incident) -> int:
        ...

    async def create_multiple_incidents(self, incidents: list[Incident]) -> CreatedIncidents:
        ...

    async def create_solution(
        self,
        incident_ids: list[int],
        change_set: SolutionChangeSet,
        reasoning: str,
        used_hint_ids: list[int],
    ) -> int:
        ...

    async def accept_file(self, uri: str, content: str) -> None:
        ...

    async def reject_file(self, uri: str) -> None:
        ...
