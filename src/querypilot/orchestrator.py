"""Query orchestrator: owns the assistant session and the single in-flight query.

A session covers one prompt from submission to exactly one terminal state:
success, error or cancelled. The generate, execute and repair steps run as a
pocketflow flow (see :mod:`querypilot.flow`); this module prepares the shared
store, enforces single-flight and publishes session snapshots to listeners.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from typing import Any

from querypilot.config import DATA_PREVIEW_ROWS, RESULT_ROW_LIMIT
from querypilot.flow import create_query_flow
from querypilot.models import (
    AssistantMode,
    AssistantStatus,
    DataSource,
    GenerationRequest,
    ModelConfig,
    OrchestrationSession,
    QueryOutcome,
    QueryResult,
)
from querypilot.nodes.sql_executor import CANCELLED_MESSAGE, DEFAULT_SUCCESS_MESSAGE
from querypilot.utils.call_llm import ModelClient
from querypilot.utils.duckdb_client import DuckDBClient, QueryExecutionError, get_duckdb_client
from querypilot.utils.logger import get_logger
from querypilot.utils.prompt_context import build_prompt_context, describe_sources
from querypilot.utils.settings_store import AssistantSettings
from querypilot.utils.source_registry import SourceRegistry


logger = logging.getLogger(__name__)

SessionListener = Callable[[OrchestrationSession], None]


class QueryInProgressError(RuntimeError):
    """Raised when a query is submitted while another is in flight."""


class AssistantModeError(RuntimeError):
    """Raised when the assistant is used outside AI mode."""


class CancellationToken:
    """Cooperative cancellation flag checked at fixed points of a session."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled


def build_data_preview(
    last_result: QueryResult | None, sources: Sequence[DataSource]
) -> str | None:
    """JSON ``{"header", "sample"}`` describing the data the model will see.

    Uses the last successful result when it has columns, otherwise the first
    source with known columns (without sample rows).
    """
    if last_result is not None and last_result.columns:
        payload = {
            "header": last_result.columns,
            "sample": last_result.rows[:DATA_PREVIEW_ROWS],
        }
        return json.dumps(payload, ensure_ascii=False)

    for source in sources:
        if source.columns:
            return json.dumps({"header": source.columns, "sample": []}, ensure_ascii=False)
    return None


class QueryOrchestrator:
    """Drives prompt-to-result sessions and manual query runs."""

    def __init__(
        self,
        registry: SourceRegistry,
        settings: AssistantSettings,
        generator: ModelClient | None = None,
        engine: DuckDBClient | None = None,
    ) -> None:
        self.registry = registry
        self.settings = settings
        self.generator = generator or ModelClient()
        self.engine = engine or get_duckdb_client()
        self._session = OrchestrationSession()
        self._token: CancellationToken | None = None
        self._busy = False
        self._last_result: QueryResult | None = None
        self._listeners: list[SessionListener] = []
        settings.add_listener(self._on_settings_changed)

    @property
    def session(self) -> OrchestrationSession:
        """Snapshot of the current session."""
        return self._session.model_copy(deep=True)

    @property
    def is_busy(self) -> bool:
        return self._busy

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def _notify(self, session: OrchestrationSession) -> None:
        if session is not self._session:
            return
        snapshot = session.model_copy(deep=True)
        for listener in list(self._listeners):
            listener(snapshot)

    def _on_settings_changed(self, mode: AssistantMode, config: ModelConfig) -> None:
        if mode is AssistantMode.AI:
            return
        if self._session.status is AssistantStatus.IDLE and not self._session.message:
            return
        logger.info("Assistant mode switched to %s; resetting session", mode.value)
        self._session = OrchestrationSession()
        self._notify(self._session)

    def _begin(self) -> CancellationToken:
        if self._busy:
            raise QueryInProgressError("A query is already running")
        self._busy = True
        self._token = CancellationToken()
        return self._token

    def _end(self) -> None:
        self._busy = False
        self._token = None

    def cancel(self) -> bool:
        """Request cancellation of the in-flight query.

        Returns:
            True if a query was running.
        """
        if self._token is None:
            return False
        self._token.cancel()
        logger.info("Cancellation requested")
        return True

    async def submit(self, prompt: str) -> QueryOutcome:
        """Run one assistant session for ``prompt``.

        Raises:
            AssistantModeError: If the assistant is not in AI mode.
            ValueError: If the prompt is blank.
            QueryInProgressError: If another query is in flight.
        """
        if self.settings.mode is not AssistantMode.AI:
            raise AssistantModeError("Switch to AI mode to generate queries")
        if not prompt.strip():
            raise ValueError("Prompt must not be blank")

        token = self._begin()
        try:
            sources = self.registry.snapshot()
            config = self.settings.config
            request = GenerationRequest(
                prompt=build_prompt_context(prompt, sources),
                source=describe_sources(sources) or None,
                previous_query_text=self._session.current_query_text or None,
                data_preview=build_data_preview(self._last_result, sources),
            )

            trace_id = get_logger().start_trace(prompt)
            session = OrchestrationSession(
                session_id=trace_id, retry_limit=config.retry_limit
            )
            self._session = session

            shared: dict[str, Any] = {
                "session": session,
                "request": request,
                "config": config,
                "token": token,
                "trace_id": trace_id,
                "notify": self._notify,
                "rationale": None,
            }
            await create_query_flow(self.generator, self.engine).run_async(shared)

            outcome: QueryOutcome = shared["outcome"]
            if outcome.status is AssistantStatus.SUCCESS:
                self._last_result = outcome.result
            logger.info(
                "Session %s finished: %s after %d repair attempt(s)",
                trace_id,
                outcome.status.value,
                outcome.attempt,
            )
            return outcome
        finally:
            self._end()

    async def run_query(self, query_text: str, page: int = 0) -> QueryOutcome:
        """Execute editor SQL directly, leaving the assistant session alone.

        Raises:
            ValueError: If the query is blank.
            QueryInProgressError: If another query is in flight.
        """
        if not query_text.strip():
            raise ValueError("Query must not be blank")

        token = self._begin()
        try:
            try:
                result = await self.engine.execute_query(query_text, page, RESULT_ROW_LIMIT)
            except QueryExecutionError as e:
                if token.is_cancelled:
                    return QueryOutcome(
                        status=AssistantStatus.CANCELLED,
                        query_text=query_text,
                        message=CANCELLED_MESSAGE,
                    )
                return QueryOutcome(
                    status=AssistantStatus.ERROR,
                    query_text=query_text,
                    message=str(e),
                    error=str(e),
                )

            if token.is_cancelled:
                return QueryOutcome(
                    status=AssistantStatus.CANCELLED,
                    query_text=query_text,
                    message=CANCELLED_MESSAGE,
                )

            self._last_result = result
            return QueryOutcome(
                status=AssistantStatus.SUCCESS,
                query_text=query_text,
                message=DEFAULT_SUCCESS_MESSAGE,
                result=result,
            )
        finally:
            self._end()
