"""Flow definition for the generate, execute and repair cycle."""

from __future__ import annotations

from pocketflow import AsyncFlow

from querypilot.nodes import ExecuteQuery, FinishSession, GenerateQuery, RepairQuery
from querypilot.utils.call_llm import ModelClient
from querypilot.utils.duckdb_client import DuckDBClient


def create_query_flow(generator: ModelClient, engine: DuckDBClient) -> AsyncFlow:
    """Create the query flow.

    generate -> execute; a failed execution goes to repair while budget
    remains, and each repaired query is executed again. Every terminal action
    ends in FinishSession.
    """
    generate = GenerateQuery(generator)
    execute = ExecuteQuery(engine)
    repair = RepairQuery(generator)
    finish = FinishSession()

    generate - "generated" >> execute
    generate - "failed" >> finish

    execute - "success" >> finish
    execute - "repair" >> repair
    execute - "exhausted" >> finish
    execute - "cancelled" >> finish

    repair - "repaired" >> execute
    repair - "retry" >> repair
    repair - "exhausted" >> finish
    repair - "cancelled" >> finish

    return AsyncFlow(start=generate)
