"""ExecuteQuery node: run the session's current query."""

from __future__ import annotations

import logging
from typing import Any

from pocketflow import AsyncNode

from querypilot.config import RESULT_ROW_LIMIT
from querypilot.models import AssistantStatus
from querypilot.utils.duckdb_client import DuckDBClient
from querypilot.utils.logger import get_logger


logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_MESSAGE = "Query executed successfully."
CANCELLED_MESSAGE = "Query cancelled."


class ExecuteQuery(AsyncNode):
    """Execute the current query text and route on the outcome.

    Cancellation is checked before the query is issued and again after it
    settles; a result that arrives after cancellation is discarded.

    Actions:
        success: the result is stored on the session.
        repair: execution failed and repair budget remains.
        exhausted: execution failed and the budget is spent.
        cancelled: the session was cancelled.
    """

    def __init__(self, engine: DuckDBClient) -> None:
        super().__init__()
        self.engine = engine

    async def prep_async(self, shared: dict[str, Any]) -> dict[str, Any]:
        query_text = shared["session"].current_query_text
        get_logger().log_node_start(
            shared["trace_id"], "ExecuteQuery", {"sql_length": len(query_text)}
        )
        return {"query_text": query_text, "token": shared["token"]}

    async def exec_async(self, prep_res: dict[str, Any]) -> dict[str, Any]:
        if prep_res["token"].is_cancelled:
            return {"cancelled": True}
        result = await self.engine.execute_query(
            prep_res["query_text"], 0, RESULT_ROW_LIMIT
        )
        return {"result": result}

    async def exec_fallback_async(
        self, prep_res: dict[str, Any], exc: Exception
    ) -> dict[str, Any]:
        logger.warning("SQL execution error: %s", exc)
        return {"error": str(exc) or exc.__class__.__name__}

    async def post_async(
        self,
        shared: dict[str, Any],
        prep_res: dict[str, Any],
        exec_res: dict[str, Any],
    ) -> str:
        session = shared["session"]
        trace_id = shared["trace_id"]

        if exec_res.get("cancelled") or shared["token"].is_cancelled:
            session.status = AssistantStatus.CANCELLED
            session.message = CANCELLED_MESSAGE
            get_logger().log_node_end(trace_id, "ExecuteQuery", {"cancelled": True})
            return "cancelled"

        if "error" not in exec_res:
            result = exec_res["result"]
            session.status = AssistantStatus.SUCCESS
            session.result = result
            session.last_error = None
            session.message = shared.get("rationale") or DEFAULT_SUCCESS_MESSAGE
            get_logger().log_node_end(
                trace_id, "ExecuteQuery", {"row_count": result.row_count}
            )
            logger.info("SQL executed successfully, returned %d rows", result.row_count)
            return "success"

        session.last_error = exec_res["error"]
        get_logger().log_node_end(
            trace_id, "ExecuteQuery", {"error": exec_res["error"]}, "error"
        )

        if session.attempt >= session.retry_limit:
            session.status = AssistantStatus.ERROR
            session.message = exec_res["error"]
            return "exhausted"
        return "repair"
