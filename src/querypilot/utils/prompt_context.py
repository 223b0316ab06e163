"""Serialize registry sources into the context string sent with a prompt.

Everything here is pure: the same prompt and the same source snapshot always
give the same string.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from querypilot.models import DataSource, ReaderKind


COLUMN_NOTE = (
    "Note: column names may use underscores or mixed case. Match the user's "
    "wording to the original column identifiers listed below and quote them "
    "exactly as written."
)

_QUOTE_CHARS = re.compile(r"[\"'`]")
_SEPARATORS = re.compile(r"[_-]+")
_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_read_expression(
    reader: ReaderKind,
    locator: str,
    sheet: str | None = None,
    connection: str | None = None,
) -> str:
    """Build the table-function call used to read a source.

    Examples:
        >>> build_read_expression(ReaderKind.EXCEL, "sales.xlsx", "Q1")
        "read_excel('sales.xlsx', sheet_name => 'Q1')"
    """
    args = [_quote_literal(locator)]
    if reader is ReaderKind.EXCEL and sheet:
        args.append(f"sheet_name => {_quote_literal(sheet)}")
    if reader is ReaderKind.RELATIONAL and connection:
        args.append(f"conn => {_quote_literal(connection)}")
    return f"{reader.value}({', '.join(args)})"


def source_read_expression(source: DataSource) -> str | None:
    if source.reader_kind is None:
        return None
    return build_read_expression(
        source.reader_kind,
        source.locator,
        source.sheet_name,
        source.connection_info,
    )


def humanize_column(name: str) -> str:
    """Render a column name with lower- and title-case readable forms.

    ``"orderDate"`` becomes ``"orderDate (readable: order date | Order Date)"``.
    """
    cleaned = _QUOTE_CHARS.sub("", name)
    spaced = _SEPARATORS.sub(" ", cleaned)
    spaced = _CAMEL_BOUNDARY.sub(r"\1 \2", spaced)
    words = spaced.split()
    if not words:
        return cleaned
    lower = " ".join(word.lower() for word in words)
    title = " ".join(word[:1].upper() + word[1:].lower() for word in words)
    return f"{cleaned} (readable: {lower} | {title})"


def describe_source(index: int, source: DataSource) -> str:
    lines = [f"Data source {index}: {source.locator}"]
    if source.sheet_name:
        lines.append(f"Sheet: {source.sheet_name}")
    if source.connection_info:
        lines.append(f"Connection: {source.connection_info}")
    read_expression = source_read_expression(source)
    if read_expression:
        lines.append(f"Suggested read: {read_expression}")
    if source.columns:
        hints = ", ".join(humanize_column(column) for column in source.columns)
        lines.append(f"Columns: {hints}")
    return "\n".join(lines)


def build_prompt_context(prompt: str, sources: Sequence[DataSource]) -> str:
    """Build the contextualized prompt for query generation.

    Args:
        prompt: The user's raw prompt.
        sources: Registry snapshot, in registry order.

    Returns:
        The trimmed prompt followed by one block per source and, when any
        source is present, a note plus every column hint on its own line.
    """
    blocks = [prompt.strip()]
    for index, source in enumerate(sources, 1):
        blocks.append(describe_source(index, source))

    if sources:
        all_hints = [
            humanize_column(column) for source in sources for column in source.columns
        ]
        blocks.append(COLUMN_NOTE)
        blocks.append("\n".join(["All columns:", *all_hints]))

    return "\n\n".join(blocks)


def describe_sources(sources: Sequence[DataSource]) -> str:
    """One ``locator[#sheet][@connection]`` line per source."""
    lines = []
    for source in sources:
        line = source.locator
        if source.sheet_name:
            line += f"#{source.sheet_name}"
        if source.connection_info:
            line += f"@{source.connection_info}"
        lines.append(line)
    return "\n".join(lines)
