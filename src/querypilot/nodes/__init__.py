"""Public exports for query flow node classes."""

from .finish import FinishSession
from .sql_executor import ExecuteQuery
from .sql_generator import GenerateQuery
from .sql_repair import RepairQuery


__all__ = [
    "GenerateQuery",
    "ExecuteQuery",
    "RepairQuery",
    "FinishSession",
]
