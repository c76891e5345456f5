"""Static-analysis incidents."""

from pydantic import BaseModel, ConfigDict


class Incident(BaseModel):
    """A single rule violation at a file location."""

    model_config = ConfigDict(extra="allow")

    uri: str
    message: str
    line_number: int | None = None
    ruleset_name: str | None = None
    violation_name: str | None = None
    violation_category: str | None = None
    violation_labels: list[str] = []

    @property
    def violation_key(self) -> str | None:
        """`ruleset::violation`, or None when either part is missing."""
        if self.ruleset_name and self.violation_name:
            return f"{self.ruleset_name}::{self.violation_name}"
        return None


class IncidentsByUri(BaseModel):
    """All incidents found in one file."""

    uri: str
    incidents: list[Incident]
