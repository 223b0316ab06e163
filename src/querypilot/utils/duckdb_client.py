"""DuckDB execution engine for querypilot.

Queries run against a fresh in-memory DuckDB connection, reading the user's
files directly through table functions. Table functions DuckDB does not ship
(``read_tsv``, ``read_excel``, ``read_mysql``) are rewritten before execution.
Every execution is recorded in a small query history database.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any

import duckdb
import pandas as pd
import sqlparse

from querypilot.config import HISTORY_DB_FILE, HISTORY_LIMIT, RESULT_ROW_LIMIT
from querypilot.models import HistoryEntry, QueryResult
from querypilot.utils.logger import get_logger


logger = logging.getLogger(__name__)

HISTORY_SUCCESS = "successful"
HISTORY_FAIL = "fail"

_REWRITTEN_CALL = re.compile(r"\b(read_tsv|read_excel|read_mysql)\s*\(", re.IGNORECASE)
_CALL_ARG = re.compile(r"(?:(\w+)\s*(?:=>|:=|=)\s*)?'((?:[^']|'')*)'")


class QueryExecutionError(Exception):
    """Raised when a query cannot be executed."""


def _unquote(literal: str) -> str:
    return literal.replace("''", "'")


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _quote_identifier(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _find_call_end(sql: str, open_paren: int) -> int:
    """Index just past the parenthesis closing the one at ``open_paren``."""
    depth = 0
    in_string = False
    i = open_paren
    while i < len(sql):
        char = sql[i]
        if in_string:
            if char == "'":
                if i + 1 < len(sql) and sql[i + 1] == "'":
                    i += 1
                else:
                    in_string = False
        elif char == "'":
            in_string = True
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    raise QueryExecutionError("Unbalanced parentheses in table function call")


def _parse_call_args(args_text: str) -> tuple[str | None, dict[str, str]]:
    positional: str | None = None
    named: dict[str, str] = {}
    for name, literal in _CALL_ARG.findall(args_text):
        if name:
            named[name.lower()] = _unquote(literal)
        elif positional is None:
            positional = _unquote(literal)
    return positional, named


def describe_value(value: Any) -> str:
    return "NULL" if value is None else str(value)


def format_elapsed(seconds: float) -> str:
    """Human-readable execution time, e.g. ``"<1ms"``, ``"42ms"``, ``"1.50s"``."""
    millis = seconds * 1000
    if millis < 1:
        return "<1ms"
    if millis < 1000:
        return f"{int(millis)}ms"
    return f"{seconds:.2f}s"


def ensure_select(sql: str) -> None:
    """Reject anything but a single read-only SELECT statement.

    Raises:
        QueryExecutionError: If the text holds no statement, several
            statements, or a statement other than SELECT (CTEs included).
    """
    statements = [stmt for stmt in sqlparse.parse(sql) if str(stmt).strip(" \n\t;")]
    if not statements:
        raise QueryExecutionError("Empty query")
    if len(statements) > 1:
        raise QueryExecutionError("Only a single statement can be executed")
    statement_type = statements[0].get_type()
    if statement_type != "SELECT":
        raise QueryExecutionError(
            f"Only SELECT statements are supported, got {statement_type}"
        )


class DuckDBClient:
    """Executes read-only queries over files and attached databases."""

    def __init__(self, history_path: str | Path | None = HISTORY_DB_FILE) -> None:
        """Initialize the DuckDB client.

        Args:
            history_path: DuckDB file holding the query history. ``None``
                keeps history in memory for the lifetime of the client.
        """
        self.history_path = Path(history_path) if history_path else None
        self._history_conn: duckdb.DuckDBPyConnection | None = None
        self._history_lock = threading.Lock()
        self._structured_logger = get_logger()

    def _rewrite_sources(self, conn: duckdb.DuckDBPyConnection, sql: str) -> str:
        """Replace unsupported table functions with tables DuckDB can read."""
        parts: list[str] = []
        cursor = 0
        counter = 0
        for match in _REWRITTEN_CALL.finditer(sql):
            if match.start() < cursor:
                continue
            end = _find_call_end(sql, match.end() - 1)
            function = match.group(1).lower()
            locator, named = _parse_call_args(sql[match.end() : end - 1])
            if locator is None:
                raise QueryExecutionError(f"{function} requires a quoted path or table name")

            counter += 1
            if function == "read_tsv":
                replacement = f"read_csv({_quote_literal(locator)}, delim = '\\t', header = true)"
            elif function == "read_excel":
                replacement = self._register_sheet(conn, counter, locator, named.get("sheet_name"))
            else:
                replacement = self._attach_mysql(conn, counter, locator, named.get("conn"))

            parts.append(sql[cursor : match.start()])
            parts.append(replacement)
            cursor = end

        parts.append(sql[cursor:])
        return "".join(parts)

    def _register_sheet(
        self,
        conn: duckdb.DuckDBPyConnection,
        counter: int,
        path: str,
        sheet_name: str | None,
    ) -> str:
        view_name = f"__source{counter}"
        frame = pd.read_excel(path, sheet_name=sheet_name if sheet_name else 0)
        conn.register(view_name, frame)
        return view_name

    def _attach_mysql(
        self,
        conn: duckdb.DuckDBPyConnection,
        counter: int,
        table: str,
        connection: str | None,
    ) -> str:
        if not connection:
            raise QueryExecutionError("read_mysql requires conn => '<connection string>'")
        alias = f"__mysql{counter}"
        conn.execute("INSTALL mysql")
        conn.execute("LOAD mysql")
        conn.execute(
            f"ATTACH {_quote_literal(connection)} AS {alias} (TYPE mysql, READ_ONLY)"
        )
        qualified = ".".join(_quote_identifier(part) for part in table.split("."))
        return f"{alias}.{qualified}"

    def _run(self, sql: str, offset: int, limit: int) -> QueryResult:
        start_time = time.perf_counter()
        conn = duckdb.connect(":memory:")
        try:
            rewritten = self._rewrite_sources(conn, sql)
            paged = (
                f"SELECT * FROM ({rewritten}) AS __page "
                f"LIMIT {int(limit)} OFFSET {int(offset) * int(limit)}"
            )
            cursor = conn.execute(paged)
            columns = [str(column[0]) for column in cursor.description or []]
            rows = [
                [describe_value(value) for value in row]
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

        return QueryResult(
            columns=columns,
            rows=rows,
            elapsed_time_label=format_elapsed(time.perf_counter() - start_time),
        )

    def _execute_sync(self, query_text: str, offset: int, limit: int) -> QueryResult:
        start_time = time.time()
        try:
            ensure_select(query_text)
            result = self._run(query_text.strip().rstrip(";"), offset, limit)
        except Exception as e:
            latency_ms = int((time.time() - start_time) * 1000)
            self._structured_logger.log_sql_execution(
                sql=query_text, row_count=0, latency_ms=latency_ms, error=str(e)
            )
            self._record_history(query_text, HISTORY_FAIL)
            if isinstance(e, QueryExecutionError):
                raise
            raise QueryExecutionError(str(e)) from e

        latency_ms = int((time.time() - start_time) * 1000)
        self._structured_logger.log_sql_execution(
            sql=query_text, row_count=result.row_count, latency_ms=latency_ms
        )
        self._record_history(query_text, HISTORY_SUCCESS)
        return result

    async def execute_query(
        self, query_text: str, offset: int = 0, limit: int = RESULT_ROW_LIMIT
    ) -> QueryResult:
        """Execute a read-only query and return one page of results.

        Args:
            query_text: A single SELECT statement.
            offset: Page index; rows skipped are ``offset * limit``.
            limit: Maximum rows returned.

        Returns:
            QueryResult with string-rendered values.

        Raises:
            QueryExecutionError: If validation or execution fails.
        """
        return await asyncio.to_thread(self._execute_sync, query_text, offset, limit)

    async def list_sub_resources(self, locator: str) -> list[str]:
        """List sheet names of a workbook, in workbook order."""
        return await asyncio.to_thread(self._sheet_names, locator)

    @staticmethod
    def _sheet_names(locator: str) -> list[str]:
        with pd.ExcelFile(locator) as workbook:
            return [str(name) for name in workbook.sheet_names]

    def _get_history_connection(self) -> duckdb.DuckDBPyConnection:
        if self._history_conn is None:
            if self.history_path is not None:
                self.history_path.parent.mkdir(parents=True, exist_ok=True)
                self._history_conn = duckdb.connect(str(self.history_path))
            else:
                self._history_conn = duckdb.connect(":memory:")
            self._history_conn.execute("CREATE SEQUENCE IF NOT EXISTS sql_history_seq")
            self._history_conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sql_history (
                    id BIGINT DEFAULT nextval('sql_history_seq'),
                    sql VARCHAR NOT NULL,
                    status VARCHAR NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
        return self._history_conn

    def _record_history(self, query_text: str, status: str) -> None:
        with self._history_lock:
            try:
                conn = self._get_history_connection()
                conn.execute(
                    "INSERT INTO sql_history (sql, status, created_at) VALUES (?, ?, ?)",
                    [query_text, status, datetime.now()],
                )
                conn.execute(
                    f"""
                    DELETE FROM sql_history WHERE id NOT IN (
                        SELECT id FROM sql_history ORDER BY id DESC LIMIT {HISTORY_LIMIT}
                    )
                    """
                )
            except (duckdb.Error, OSError) as e:
                logger.warning("Could not record query history: %s", e)

    def _history_sync(self) -> list[HistoryEntry]:
        with self._history_lock:
            rows = (
                self._get_history_connection()
                .execute(
                    f"SELECT sql, status, created_at FROM sql_history "
                    f"ORDER BY id DESC LIMIT {HISTORY_LIMIT}"
                )
                .fetchall()
            )
        return [
            HistoryEntry(query_text=sql, status=status, timestamp=created_at)
            for sql, status, created_at in rows
        ]

    async def list_query_history(self) -> list[HistoryEntry]:
        """Executed queries, newest first."""
        return await asyncio.to_thread(self._history_sync)

    def close(self) -> None:
        """Close the history connection."""
        with self._history_lock:
            if self._history_conn is not None:
                self._history_conn.close()
                self._history_conn = None


_client_instance: DuckDBClient | None = None


def get_duckdb_client(history_path: str | Path | None = None) -> DuckDBClient:
    """Get the global DuckDB client instance.

    Args:
        history_path: Optional override for the query history location.
    """
    global _client_instance
    if _client_instance is None or history_path is not None:
        _client_instance = DuckDBClient(history_path=history_path or HISTORY_DB_FILE)
    return _client_instance


def result_frame(result: QueryResult) -> pd.DataFrame:
    """Tabulate a result for display."""
    return pd.DataFrame(result.rows, columns=result.columns)

