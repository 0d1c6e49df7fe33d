"""InfluxDB /query response schemas."""

from typing import Any

from pydantic import BaseModel, Field


class MessageSchema(BaseModel):
    """Informational message attached to a statement."""

    level: str = ""
    text: str = ""


class SeriesSchema(BaseModel):
    """One series (measurement + tag set) of a statement result."""

    name: str = ""
    tags: dict[str, str] = Field(default_factory=dict)
    columns: list[str] = Field(default_factory=list)
    values: list[list[Any]] = Field(default_factory=list)
    partial: bool = False


class StatementSchema(BaseModel):
    """Result of a single statement."""

    statement_id: int = 0
    series: list[SeriesSchema] = Field(default_factory=list)
    messages: list[MessageSchema] = Field(default_factory=list)
    error: str | None = None


class QueryResponseSchema(BaseModel):
    """Full /query response body."""

    results: list[StatementSchema] = Field(default_factory=list)
    error: str | None = None

    def first_error(self) -> str | None:
        """Return the response error or the first statement error."""
        if self.error:
            return self.error
        for result in self.results:
            if result.error:
                return result.error
        return None
