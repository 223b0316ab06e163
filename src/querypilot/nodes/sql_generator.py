"""GenerateQuery node: ask the model for the first query of a session."""

from __future__ import annotations

import logging
from typing import Any

from pocketflow import AsyncNode

from querypilot.models import AssistantStatus
from querypilot.utils.call_llm import ModelClient
from querypilot.utils.logger import get_logger
from querypilot.utils.sql_format import normalize_query


logger = logging.getLogger(__name__)


class GenerateQuery(AsyncNode):
    """Generate SQL from the contextualized prompt.

    A generation failure ends the session in error without touching the
    repair budget.
    """

    def __init__(self, generator: ModelClient) -> None:
        super().__init__()
        self.generator = generator

    async def prep_async(self, shared: dict[str, Any]) -> dict[str, Any]:
        session = shared["session"]
        session.status = AssistantStatus.GENERATING
        session.message = "Generating SQL..."
        shared["notify"](session)

        get_logger().log_node_start(
            shared["trace_id"],
            "GenerateQuery",
            {"has_previous_sql": shared["request"].previous_query_text is not None},
        )
        return {
            "request": shared["request"],
            "config": shared["config"],
            "trace_id": shared["trace_id"],
        }

    async def exec_async(self, prep_res: dict[str, Any]) -> dict[str, Any]:
        response = await self.generator.generate_query(
            prep_res["request"], prep_res["config"], trace_id=prep_res["trace_id"]
        )
        return {"response": response}

    async def exec_fallback_async(
        self, prep_res: dict[str, Any], exc: Exception
    ) -> dict[str, Any]:
        logger.warning("SQL generation failed: %s", exc)
        return {"error": str(exc) or exc.__class__.__name__}

    async def post_async(
        self,
        shared: dict[str, Any],
        prep_res: dict[str, Any],
        exec_res: dict[str, Any],
    ) -> str:
        session = shared["session"]

        if "error" in exec_res:
            session.status = AssistantStatus.ERROR
            session.last_error = exec_res["error"]
            session.message = exec_res["error"]
            get_logger().log_node_end(
                shared["trace_id"], "GenerateQuery", {"error": exec_res["error"]}, "error"
            )
            return "failed"

        response = exec_res["response"]
        shared["rationale"] = response.rationale
        session.current_query_text = normalize_query(response.query_text)
        get_logger().log_node_end(
            shared["trace_id"],
            "GenerateQuery",
            {"sql_length": len(session.current_query_text)},
        )
        return "generated"
