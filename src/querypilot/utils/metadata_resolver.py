"""Resolve a data source's sheets and columns.

The resolver keeps no state between calls: every result is written back
through :meth:`SourceRegistry.update`. Overlapping resolutions of the same
source are not cancelled, so the last update to land wins.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from typing import Any

from querypilot.config import PREVIEW_ROW_LIMIT
from querypilot.models import AliasKey, DataSource, SourceDescriptor, SourceStatus
from querypilot.utils.duckdb_client import DuckDBClient
from querypilot.utils.prompt_context import source_read_expression
from querypilot.utils.source_registry import UNSUPPORTED_TYPE_MESSAGE, SourceRegistry


logger = logging.getLogger(__name__)

NO_SUB_RESOURCES_MESSAGE = "no sub-resources found"
NO_COLUMNS_MESSAGE = "could not parse columns"


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class MetadataResolver:
    """Discovers sheet names and preview columns for registered sources."""

    def __init__(self, registry: SourceRegistry, engine: DuckDBClient) -> None:
        self.registry = registry
        self.engine = engine

    async def resolve(
        self,
        source_id: str,
        sheet: str | None = UNSET,
        force_sheet_rediscovery: bool = False,
    ) -> None:
        """Resolve one source and record the outcome in the registry.

        Args:
            source_id: Registry id of the source.
            sheet: Sheet to select. Left unset, the previous selection is kept.
            force_sheet_rediscovery: List sheets again even if already known.
        """
        source = self.registry.get(source_id)
        if source is None:
            return
        if source.reader_kind is None:
            self.registry.update(
                source_id, status=SourceStatus.failed(UNSUPPORTED_TYPE_MESSAGE)
            )
            return

        sheet_name = source.sheet_name if sheet is UNSET else sheet
        sheet_options = list(source.sheet_options)
        self.registry.update(source_id, status=SourceStatus.loading())

        try:
            if source.reader_kind.supports_sub_resources and (
                force_sheet_rediscovery or not sheet_options
            ):
                discovered = await self.engine.list_sub_resources(source.locator)
                if not discovered:
                    self.registry.update(
                        source_id,
                        status=SourceStatus.failed(NO_SUB_RESOURCES_MESSAGE),
                        sheet_options=[],
                        columns=[],
                    )
                    return
                sheet_options = list(discovered)
                self.registry.update(
                    source_id,
                    sheet_options=sheet_options,
                    aliases=self._seed_sheet_aliases(source_id, sheet_options),
                )

            if source.reader_kind.supports_sub_resources:
                if sheet_name not in sheet_options:
                    sheet_name = sheet_options[0] if sheet_options else None
            else:
                sheet_name = None

            columns = await self._preview_columns(source, sheet_name)
        except Exception as e:
            logger.warning("Could not resolve source %s: %s", source.locator, e)
            self.registry.update(
                source_id,
                status=SourceStatus.failed(str(e) or e.__class__.__name__),
                sheet_options=sheet_options,
                columns=[],
                sheet_name=sheet_name,
            )
            return

        if not columns:
            self.registry.update(
                source_id,
                status=SourceStatus.failed(NO_COLUMNS_MESSAGE),
                sheet_options=sheet_options,
                columns=[],
                sheet_name=sheet_name,
            )
            return

        self.registry.update(
            source_id,
            status=SourceStatus.ready(),
            columns=columns,
            sheet_name=sheet_name,
        )

    def _seed_sheet_aliases(
        self, source_id: str, sheet_options: Iterable[str]
    ) -> dict[AliasKey, str]:
        current = self.registry.get(source_id)
        aliases = dict(current.aliases) if current is not None else {}
        for option in sheet_options:
            aliases.setdefault(AliasKey(sheet=option), option)
        return aliases

    async def _preview_columns(
        self, source: DataSource, sheet_name: str | None
    ) -> list[str]:
        read_expression = source_read_expression(
            source.model_copy(update={"sheet_name": sheet_name})
        )
        query = f"SELECT * FROM {read_expression} LIMIT {PREVIEW_ROW_LIMIT}"
        result = await self.engine.execute_query(query, 0, PREVIEW_ROW_LIMIT)
        return list(result.columns)

    async def resolve_all(
        self, source_ids: Sequence[str], force_sheet_rediscovery: bool = False
    ) -> None:
        """Resolve several sources concurrently."""
        await asyncio.gather(
            *(
                self.resolve(source_id, force_sheet_rediscovery=force_sheet_rediscovery)
                for source_id in source_ids
            )
        )

    async def change_sheet(self, source_id: str, sheet: str) -> None:
        """Select another sheet and resolve its columns."""
        self.registry.update(source_id, sheet_name=sheet)
        await self.resolve(source_id, sheet=sheet)

    async def import_files(self, paths: Iterable[str]) -> list[str]:
        """Register each path as a file source and resolve them all."""
        source_ids = [
            self.registry.add(SourceDescriptor(locator=path))
            for path in paths
            if path.strip()
        ]
        await self.resolve_all(source_ids, force_sheet_rediscovery=True)
        return source_ids
