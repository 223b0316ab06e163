"""Command line entry point for querypilot.

Examples:
    querypilot "total sales by region" --source data/sales.csv
    querypilot --sql "SELECT * FROM read_csv('data/sales.csv')"
    querypilot --history
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from querypilot.config import validate_config_or_raise
from querypilot.models import (
    AssistantMode,
    OrchestrationSession,
    QueryOutcome,
    SourceDescriptor,
    SourceKind,
)
from querypilot.orchestrator import QueryOrchestrator
from querypilot.utils.duckdb_client import get_duckdb_client, result_frame
from querypilot.utils.metadata_resolver import MetadataResolver
from querypilot.utils.settings_store import AssistantSettings, JsonKeyValueStore
from querypilot.utils.source_registry import SourceRegistry


logging.basicConfig(level=logging.INFO, format="%(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="querypilot",
        description="Turn a question into SQL over local files and run it.",
    )
    parser.add_argument("prompt", nargs="*", help="Natural-language question")
    parser.add_argument(
        "--source", action="append", default=[], help="Data file to import (repeatable)"
    )
    parser.add_argument(
        "--table", action="append", default=[], help="MySQL table to declare (repeatable)"
    )
    parser.add_argument("--conn", help="Connection string for --table sources")
    parser.add_argument("--sheet", help="Sheet to select for imported workbooks")
    parser.add_argument("--sql", help="Run this SQL directly instead of asking the model")
    parser.add_argument("--page", type=int, default=0, help="Result page for --sql")
    parser.add_argument("--retry-limit", type=int, help="Repair attempts allowed (0-5)")
    parser.add_argument("--model", help="Model name to use")
    parser.add_argument("--clear-sources", action="store_true", help="Forget saved sources")
    parser.add_argument("--list-sources", action="store_true", help="Show saved sources")
    parser.add_argument("--history", action="store_true", help="Show recent queries")
    return parser


def _print_session(session: OrchestrationSession) -> None:
    if session.message:
        logger.info("[%s] %s", session.status.value, session.message)


def _print_outcome(outcome: QueryOutcome) -> None:
    if outcome.query_text:
        logger.info("SQL:\n%s", outcome.query_text)
    if outcome.result is not None:
        logger.info(
            "\n%s\n(%d rows, %s)",
            result_frame(outcome.result).to_string(index=False),
            outcome.result.row_count,
            outcome.result.elapsed_time_label,
        )
    elif outcome.error:
        logger.error("Query failed: %s", outcome.error)


async def run(args: argparse.Namespace) -> int:
    store = JsonKeyValueStore()
    settings = AssistantSettings(store)
    settings.load()
    registry = SourceRegistry(store)
    registry.load()

    engine = get_duckdb_client()
    resolver = MetadataResolver(registry, engine)
    orchestrator = QueryOrchestrator(registry, settings, engine=engine)
    orchestrator.add_listener(_print_session)

    if args.clear_sources:
        registry.clear()

    if args.retry_limit is not None or args.model:
        patch = {}
        if args.retry_limit is not None:
            patch["retry_limit"] = args.retry_limit
        if args.model:
            patch["model_name"] = args.model
        settings.update_config(**patch)

    new_ids = await resolver.import_files(args.source)
    if args.sheet:
        for source_id in new_ids:
            source = registry.get(source_id)
            if source is not None and args.sheet in source.sheet_options:
                await resolver.change_sheet(source_id, args.sheet)

    for table in args.table:
        source_id = registry.add(
            SourceDescriptor(
                kind=SourceKind.RELATIONAL_TABLE, locator=table, connection_info=args.conn
            )
        )
        await resolver.resolve(source_id)

    if args.list_sources or new_ids or args.table:
        for index, source in enumerate(registry.snapshot(), 1):
            logger.info(
                "%d. %s [%s] %s",
                index,
                source.alias,
                source.status.state.value,
                source.status.message or ", ".join(source.columns),
            )

    if args.history:
        for entry in await engine.list_query_history():
            logger.info("%s  %-10s %s", entry.timestamp.isoformat(), entry.status, entry.query_text)

    exit_code = 0
    if args.sql:
        outcome = await orchestrator.run_query(args.sql, args.page)
        _print_outcome(outcome)
        exit_code = 0 if outcome.result is not None else 1

    prompt = " ".join(args.prompt).strip()
    if prompt:
        settings.set_mode(AssistantMode.AI)
        outcome = await orchestrator.submit(prompt)
        _print_outcome(outcome)
        exit_code = 0 if outcome.result is not None else 1

    engine.close()
    return exit_code


def main(argv: list[str] | None = None) -> int:
    """Entry point for running querypilot from the command line."""
    validate_config_or_raise()
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
