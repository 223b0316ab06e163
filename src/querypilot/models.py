"""Pydantic models for querypilot.

This module defines the records shared by the source registry, the metadata
resolver, the prompt context builder and the query orchestrator.
"""

from __future__ import annotations

import os
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

from querypilot.config import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_PROVIDER,
    DEFAULT_RETRY_LIMIT,
    DEFAULT_TEMPERATURE,
)


class SourceKind(str, Enum):
    """How a data source was brought into the registry."""

    FILE = "file"
    RELATIONAL_TABLE = "relational_table"


class ReaderKind(str, Enum):
    """Strategy for reading a source; the value is the SQL table function."""

    CSV = "read_csv"
    EXCEL = "read_excel"
    NDJSON = "read_ndjson"
    PARQUET = "read_parquet"
    TSV = "read_tsv"
    RELATIONAL = "read_mysql"

    @property
    def supports_sub_resources(self) -> bool:
        return self is ReaderKind.EXCEL


class SourceState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class SourceStatus(BaseModel):
    """Resolution status of a data source; message is set only when failed."""

    model_config = ConfigDict(frozen=True)

    state: SourceState
    message: str | None = None

    @model_validator(mode="after")
    def _message_matches_state(self) -> SourceStatus:
        if self.state is SourceState.FAILED and self.message is None:
            raise ValueError("failed status requires a message")
        if self.state is not SourceState.FAILED and self.message is not None:
            raise ValueError(f"{self.state.value} status cannot carry a message")
        return self

    @classmethod
    def loading(cls) -> SourceStatus:
        return cls(state=SourceState.LOADING)

    @classmethod
    def ready(cls) -> SourceStatus:
        return cls(state=SourceState.READY)

    @classmethod
    def failed(cls, message: str) -> SourceStatus:
        return cls(state=SourceState.FAILED, message=message)

    @property
    def is_loading(self) -> bool:
        return self.state is SourceState.LOADING


class AliasKey(BaseModel):
    """Key into a source's alias map: a sheet name or the default sentinel."""

    model_config = ConfigDict(frozen=True)

    sheet: str | None = None

    @classmethod
    def default(cls) -> AliasKey:
        return cls()

    @property
    def is_default(self) -> bool:
        return self.sheet is None


class SourceDescriptor(BaseModel):
    """User input describing a source to import or declare."""

    kind: SourceKind = SourceKind.FILE
    locator: str
    connection_info: str | None = None
    alias: str | None = None

    @field_validator("locator")
    @classmethod
    def _locator_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("locator must not be blank")
        return value


class DataSource(BaseModel):
    """One imported or declared data source and its resolution status."""

    id: str
    kind: SourceKind
    locator: str
    reader_kind: ReaderKind | None = None
    connection_info: str | None = None
    sheet_name: str | None = None
    sheet_options: list[str] = Field(default_factory=list)
    columns: list[str] = Field(default_factory=list)
    aliases: dict[AliasKey, str] = Field(default_factory=dict)
    status: SourceStatus = Field(default_factory=SourceStatus.loading)

    @property
    def alias(self) -> str:
        """Display alias, taken from the default alias entry."""
        return self.aliases.get(AliasKey.default(), "")

    def to_snapshot(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict, alias keys kept tagged."""
        data = self.model_dump(mode="json", exclude={"aliases"})
        data["aliases"] = [
            {"sheet": key.sheet, "alias": value} for key, value in self.aliases.items()
        ]
        return data

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> DataSource:
        payload = dict(data)
        aliases: dict[AliasKey, str] = {}
        for entry in payload.pop("aliases", None) or []:
            if isinstance(entry, dict) and entry.get("alias"):
                aliases[AliasKey(sheet=entry.get("sheet"))] = str(entry["alias"])
        payload["aliases"] = aliases
        return cls.model_validate(payload)


def _default_credential() -> SecretStr:
    return SecretStr(os.environ.get("OPENROUTER_API_KEY", ""))


class ModelConfig(BaseModel):
    """Settings for the generative model backend and the repair budget."""

    provider: str = DEFAULT_PROVIDER
    endpoint: str = DEFAULT_BASE_URL
    credential: SecretStr = Field(default_factory=_default_credential)
    model_name: str = DEFAULT_MODEL
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=1.0)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=256, le=8192)
    retry_limit: int = Field(default=DEFAULT_RETRY_LIMIT, ge=0, le=5)

    def to_storage(self) -> dict[str, Any]:
        """Serialize for persistence, including the raw credential."""
        data = self.model_dump(mode="json")
        data["credential"] = self.credential.get_secret_value()
        return data

    def loggable(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"credential"})


class AssistantMode(str, Enum):
    AI = "ai"
    EXPERT = "expert"


class AssistantStatus(str, Enum):
    """Observable state of the query orchestrator."""

    IDLE = "idle"
    GENERATING = "generating"
    RETRYING = "retrying"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            AssistantStatus.SUCCESS,
            AssistantStatus.ERROR,
            AssistantStatus.CANCELLED,
        )

    @property
    def is_busy(self) -> bool:
        return self in (AssistantStatus.GENERATING, AssistantStatus.RETRYING)


class QueryResult(BaseModel):
    """Columnar result returned by the execution engine."""

    columns: list[str] = Field(default_factory=list)
    rows: list[list[str]] = Field(default_factory=list)
    elapsed_time_label: str = ""

    @property
    def row_count(self) -> int:
        return len(self.rows)


class GenerationRequest(BaseModel):
    """Request sent to the model to produce a query."""

    prompt: str
    source: str | None = None
    previous_query_text: str | None = None
    data_preview: str | None = None


class RepairRequest(GenerationRequest):
    """Request sent to the model to fix a query that failed to execute."""

    failed_query_text: str
    error_message: str
    attempt: int = Field(ge=1)


class SqlResponse(BaseModel):
    """Query text returned by the model plus its optional rationale."""

    query_text: str
    rationale: str | None = None


class OrchestrationSession(BaseModel):
    """State of one submit-to-resolution cycle."""

    session_id: str = ""
    status: AssistantStatus = AssistantStatus.IDLE
    attempt: int = 0
    retry_limit: int = 0
    current_query_text: str = ""
    last_error: str | None = None
    message: str = ""
    result: QueryResult | None = None


class QueryOutcome(BaseModel):
    """Terminal result of a session or a manual query run."""

    status: AssistantStatus
    query_text: str = ""
    attempt: int = 0
    message: str = ""
    error: str | None = None
    result: QueryResult | None = None


class HistoryEntry(BaseModel):
    """One executed query recorded by the engine."""

    query_text: str
    timestamp: datetime
    status: str


class NodeExecution(BaseModel):
    """Execution details for a single node."""

    node: str
    status: str
    latency_ms: int
    attempts: int = 1


class ExecutionTrace(BaseModel):
    """Full trace of one orchestration session for debugging."""

    trace_id: str
    prompt: str = ""
    nodes_executed: list[NodeExecution] = Field(default_factory=list)
    llm_calls: int = 0
    total_latency_ms: int = 0
    retries: int = 0
