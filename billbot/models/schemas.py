from __future__ import annotations

from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from billbot.models.results import SearchFilters


# --- Requests ---


class SearchFiltersModel(BaseModel):
    chamber: Literal["house", "senate"] | None = None
    status: list[str] = Field(default_factory=list)
    congress: int | None = Field(default=None, ge=1)
    sponsor: str | None = None
    action_type: str | None = None
    administration: str | None = None
    date_from: date | None = None
    date_to: date | None = None

    @model_validator(mode="after")
    def _check_range(self) -> "SearchFiltersModel":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self

    def to_filters(self) -> SearchFilters:
        return SearchFilters(
            chamber=self.chamber,
            statuses=tuple(self.status),
            congress=self.congress,
            sponsor=self.sponsor,
            action_type=self.action_type,
            administration=self.administration,
            date_from=self.date_from.isoformat() if self.date_from else None,
            date_to=self.date_to.isoformat() if self.date_to else None,
        )


class ChatOptions(BaseModel):
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_iterations: int | None = Field(default=None, ge=1, le=50)
    filters: SearchFiltersModel | None = None


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    connection_id: str = Field(min_length=1, max_length=100)
    session_id: str | None = Field(default=None, max_length=100)
    options: ChatOptions = Field(default_factory=ChatOptions)

    @field_validator("message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value.strip()


class StopRequest(BaseModel):
    session_id: str | None = None
    connection_id: str | None = None


# --- Responses ---


class StopResponse(BaseModel):
    success: bool = True
    stopped: bool
    session_id: str | None = None


class SessionStatusResponse(BaseModel):
    session_id: str
    active: bool
    connection_id: str | None = None
    iterations: list[dict[str, Any]] = Field(default_factory=list)
    total_results: int = 0
    completion_reason: str | None = None


class ConnectionStatsResponse(BaseModel):
    connection_id: str
    active: bool
    session_id: str | None = None
    events_count: int = 0
    dropped_count: int = 0
    idle_seconds: float = 0.0


class ModelInfo(BaseModel):
    id: str
    name: str
    description: str


class ModelsResponse(BaseModel):
    models: list[ModelInfo]
    default: str
