"""FinishSession node: publish the terminal state of a session."""

from __future__ import annotations

from typing import Any

from pocketflow import AsyncNode

from querypilot.models import OrchestrationSession, QueryOutcome
from querypilot.utils.logger import get_logger


class FinishSession(AsyncNode):
    """Build the session outcome and notify listeners once."""

    async def prep_async(self, shared: dict[str, Any]) -> OrchestrationSession:
        return shared["session"]

    async def exec_async(self, prep_res: OrchestrationSession) -> QueryOutcome:
        return QueryOutcome(
            status=prep_res.status,
            query_text=prep_res.current_query_text,
            attempt=prep_res.attempt,
            message=prep_res.message,
            error=prep_res.last_error,
            result=prep_res.result,
        )

    async def post_async(
        self,
        shared: dict[str, Any],
        prep_res: OrchestrationSession,
        exec_res: QueryOutcome,
    ) -> None:
        shared["outcome"] = exec_res
        shared["notify"](prep_res)
        get_logger().end_trace(shared["trace_id"], exec_res.status.value)
