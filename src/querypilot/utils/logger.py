"""Structured logging utility for querypilot.

Emits one JSON object per event so orchestration sessions, model calls, SQL
executions and source resolutions can be correlated by trace id. Prompts and
SQL are hashed or truncated, and model credentials are never passed in.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from querypilot.config import SQL_LOG_TRUNCATION
from querypilot.models import ExecutionTrace, NodeExecution


@dataclass
class LogContext:
    """Per-trace timing context."""

    trace_id: str = ""
    node_name: str = ""
    start_time: float = 0.0
    node_start_time: float = 0.0


class StructuredLogger:
    """Structured logger for querypilot.

    Tracks one execution trace per orchestration session. Sessions run on a
    single event loop, so context is keyed by trace id rather than by thread.
    """

    def __init__(self, name: str = "querypilot", level: int = logging.INFO) -> None:
        self._logger = logging.getLogger(name)
        self._logger.setLevel(level)
        self._lock = threading.Lock()
        self._traces: dict[str, ExecutionTrace] = {}
        self._contexts: dict[str, LogContext] = {}

        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
            )
            self._logger.addHandler(handler)

    def start_trace(self, prompt: str = "") -> str:
        """Start a new execution trace.

        Args:
            prompt: The user's raw prompt.

        Returns:
            The trace ID.
        """
        trace_id = str(uuid.uuid4())[:8]
        with self._lock:
            self._traces[trace_id] = ExecutionTrace(trace_id=trace_id, prompt=prompt)
            self._contexts[trace_id] = LogContext(
                trace_id=trace_id, start_time=time.time()
            )

        self._emit_log(
            event="trace_start",
            trace_id=trace_id,
            prompt_hash=_digest(prompt),
        )
        return trace_id

    def end_trace(self, trace_id: str, status: str = "success") -> ExecutionTrace | None:
        """End an execution trace and emit its summary."""
        with self._lock:
            trace = self._traces.pop(trace_id, None)
            context = self._contexts.pop(trace_id, None)
            if trace is None or context is None:
                return None
            trace.total_latency_ms = int((time.time() - context.start_time) * 1000)

        self._emit_log(
            event="trace_end",
            trace_id=trace_id,
            status=status,
            total_latency_ms=trace.total_latency_ms,
            nodes_executed=len(trace.nodes_executed),
            llm_calls=trace.llm_calls,
            retries=trace.retries,
        )
        return trace

    def log_node_start(
        self, trace_id: str, node: str, inputs: dict[str, Any] | None = None
    ) -> None:
        with self._lock:
            context = self._contexts.get(trace_id)
            if context is not None:
                context.node_name = node
                context.node_start_time = time.time()

        self._emit_log(
            event="node_start",
            trace_id=trace_id,
            node=node,
            inputs=self._truncate_inputs(inputs or {}),
        )

    def log_node_end(
        self,
        trace_id: str,
        node: str,
        outputs: dict[str, Any] | None = None,
        status: str = "success",
    ) -> None:
        latency_ms = 0
        with self._lock:
            context = self._contexts.get(trace_id)
            if context is not None and context.node_start_time:
                latency_ms = int((time.time() - context.node_start_time) * 1000)
            trace = self._traces.get(trace_id)
            if trace is not None:
                trace.nodes_executed.append(
                    NodeExecution(node=node, status=status, latency_ms=latency_ms)
                )

        self._emit_log(
            event="node_end",
            trace_id=trace_id,
            node=node,
            outputs=self._truncate_inputs(outputs or {}),
            status=status,
            latency_ms=latency_ms,
        )

    def log_llm_call(
        self,
        operation: str,
        prompt: str,
        response: str,
        latency_ms: int,
        model: str = "",
        trace_id: str = "",
    ) -> None:
        """Log a model interaction; the prompt is hashed, never logged raw."""
        with self._lock:
            trace = self._traces.get(trace_id)
            if trace is not None:
                trace.llm_calls += 1

        self._emit_log(
            event="llm_call",
            trace_id=trace_id,
            operation=operation,
            prompt_hash=_digest(prompt),
            response_length=len(response),
            latency_ms=latency_ms,
            model=model,
        )

    def log_sql_execution(
        self,
        sql: str,
        row_count: int,
        latency_ms: int,
        error: str | None = None,
        trace_id: str = "",
    ) -> None:
        sql_preview = (
            sql if len(sql) <= SQL_LOG_TRUNCATION else sql[:SQL_LOG_TRUNCATION] + "..."
        )

        self._emit_log(
            event="sql_execution",
            trace_id=trace_id,
            sql_hash=_digest(sql),
            sql_preview=sql_preview,
            row_count=row_count,
            latency_ms=latency_ms,
            error=error,
            status="error" if error else "success",
        )

    def log_retry(self, trace_id: str, attempt: int, retry_limit: int, error: str) -> None:
        with self._lock:
            trace = self._traces.get(trace_id)
            if trace is not None:
                trace.retries += 1

        self._emit_log(
            event="retry",
            trace_id=trace_id,
            attempt=attempt,
            retry_limit=retry_limit,
            error=error,
        )

    def log_source_event(self, source_id: str, event: str, **fields: Any) -> None:
        """Log a registry or metadata-resolution event for one source."""
        self._emit_log(
            event=f"source_{event}",
            source_id=source_id,
            **self._truncate_inputs(fields),
        )

    def _emit_log(self, event: str, **kwargs: Any) -> None:
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "event": event,
            **kwargs,
        }

        try:
            log_json = json.dumps(log_entry, default=str)
        except (TypeError, ValueError):
            log_json = json.dumps(
                {"event": event, "error": "Failed to serialize log entry"}
            )

        if event in ("node_end", "trace_end"):
            if kwargs.get("status") == "error":
                self._logger.error(log_json)
            else:
                self._logger.info(log_json)
        elif event in ("retry", "source_failed"):
            self._logger.warning(log_json)
        else:
            self._logger.debug(log_json)

    def _truncate_inputs(
        self, data: dict[str, Any], max_length: int = 200
    ) -> dict[str, Any]:
        """Truncate long values in log data."""
        result: dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, str) and len(value) > max_length:
                result[key] = value[:max_length] + "..."
            elif isinstance(value, dict):
                result[key] = self._truncate_inputs(value, max_length)
            elif isinstance(value, list) and len(value) > 10:
                result[key] = f"[{len(value)} items]"
            else:
                result[key] = value
        return result


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()[:8]


@lru_cache(maxsize=1)
def get_logger() -> StructuredLogger:
    """Get the global structured logger instance."""
    return StructuredLogger()
