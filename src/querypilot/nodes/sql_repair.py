"""RepairQuery node: ask the model to fix a query that failed to execute."""

from __future__ import annotations

import logging
from typing import Any

from pocketflow import AsyncNode

from querypilot.models import AssistantStatus, RepairRequest
from querypilot.nodes.sql_executor import CANCELLED_MESSAGE
from querypilot.utils.call_llm import ModelClient
from querypilot.utils.logger import get_logger
from querypilot.utils.sql_format import normalize_query


logger = logging.getLogger(__name__)


class RepairQuery(AsyncNode):
    """Spend one unit of the repair budget.

    A failed repair call is recorded as the latest error and the loop moves
    on to the next attempt, so only execution success or budget exhaustion
    ends the loop.
    """

    def __init__(self, generator: ModelClient) -> None:
        super().__init__()
        self.generator = generator

    async def prep_async(self, shared: dict[str, Any]) -> dict[str, Any]:
        session = shared["session"]
        session.attempt += 1
        session.status = AssistantStatus.RETRYING
        session.message = f"attempt {session.attempt}/{session.retry_limit}"
        shared["notify"](session)

        trace_id = shared["trace_id"]
        get_logger().log_retry(
            trace_id, session.attempt, session.retry_limit, session.last_error or ""
        )
        get_logger().log_node_start(trace_id, "RepairQuery", {"attempt": session.attempt})

        base = shared["request"]
        request = RepairRequest(
            **base.model_dump(),
            failed_query_text=session.current_query_text,
            error_message=session.last_error or "",
            attempt=session.attempt,
        )
        return {"request": request, "config": shared["config"], "trace_id": trace_id}

    async def exec_async(self, prep_res: dict[str, Any]) -> dict[str, Any]:
        response = await self.generator.repair_query(
            prep_res["request"], prep_res["config"], trace_id=prep_res["trace_id"]
        )
        return {"response": response}

    async def exec_fallback_async(
        self, prep_res: dict[str, Any], exc: Exception
    ) -> dict[str, Any]:
        logger.warning("SQL repair failed: %s", exc)
        return {"error": str(exc) or exc.__class__.__name__}

    async def post_async(
        self,
        shared: dict[str, Any],
        prep_res: dict[str, Any],
        exec_res: dict[str, Any],
    ) -> str:
        session = shared["session"]
        trace_id = shared["trace_id"]

        if shared["token"].is_cancelled:
            session.status = AssistantStatus.CANCELLED
            session.message = CANCELLED_MESSAGE
            get_logger().log_node_end(trace_id, "RepairQuery", {"cancelled": True})
            return "cancelled"

        if "error" in exec_res:
            session.last_error = exec_res["error"]
            get_logger().log_node_end(
                trace_id, "RepairQuery", {"error": exec_res["error"]}, "error"
            )
            if session.attempt >= session.retry_limit:
                session.status = AssistantStatus.ERROR
                session.message = exec_res["error"]
                return "exhausted"
            return "retry"

        response = exec_res["response"]
        if response.rationale:
            shared["rationale"] = response.rationale
        session.current_query_text = normalize_query(response.query_text)
        get_logger().log_node_end(
            trace_id, "RepairQuery", {"sql_length": len(session.current_query_text)}
        )
        return "repaired"
