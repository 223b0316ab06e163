"""Registry of imported data sources.

The registry exclusively owns :class:`DataSource` records. Callers receive deep
copies, and all writes go through :meth:`SourceRegistry.update` or the other
mutating operations, which are synchronous.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from pathlib import PurePath
from typing import Any

from pydantic import ValidationError

from querypilot.config import SOURCES_KEY
from querypilot.models import (
    AliasKey,
    DataSource,
    ReaderKind,
    SourceDescriptor,
    SourceKind,
    SourceStatus,
)
from querypilot.utils.logger import get_logger
from querypilot.utils.settings_store import JsonKeyValueStore


logger = logging.getLogger(__name__)

UNSUPPORTED_TYPE_MESSAGE = "unsupported type"

_EXTENSION_READERS: dict[str, ReaderKind] = {
    "csv": ReaderKind.CSV,
    "tsv": ReaderKind.TSV,
    "xlsx": ReaderKind.EXCEL,
    "xls": ReaderKind.EXCEL,
    "json": ReaderKind.NDJSON,
    "ndjson": ReaderKind.NDJSON,
    "jsonl": ReaderKind.NDJSON,
    "parquet": ReaderKind.PARQUET,
}

_PATH_SEPARATORS = re.compile(r"[\\/]")

_MUTABLE_FIELDS = frozenset(DataSource.model_fields) - {"id"}


def infer_reader_kind(kind: SourceKind, locator: str) -> ReaderKind | None:
    """Pick the reader for a source from its kind and file extension."""
    if kind is SourceKind.RELATIONAL_TABLE:
        return ReaderKind.RELATIONAL
    name = base_name(locator)
    if "." not in name:
        return None
    return _EXTENSION_READERS.get(name.rsplit(".", 1)[1].lower())


def base_name(locator: str) -> str:
    """Last path component, splitting on either separator."""
    parts = [part for part in _PATH_SEPARATORS.split(locator.strip()) if part]
    return parts[-1] if parts else locator.strip()


def default_alias(source: DataSource, key: AliasKey | None = None) -> str:
    """Alias used when none is given for ``key``."""
    if key is not None and not key.is_default:
        return key.sheet or ""
    if source.kind is SourceKind.FILE:
        return base_name(source.locator) or source.locator
    return source.locator


class SourceRegistry:
    """Ordered collection of data sources with stable ids and aliases."""

    def __init__(self, store: JsonKeyValueStore | None = None) -> None:
        self._store = store
        self._sources: dict[str, DataSource] = {}
        self._lock = threading.Lock()
        self._hydrated = False
        self._structured_logger = get_logger()

    def load(self) -> None:
        """Hydrate the registry from the ``sources`` record.

        Loading states are not restored, so every hydrated source is either
        Ready or Failed.
        """
        records = self._store.get(SOURCES_KEY) if self._store else None
        sources: dict[str, DataSource] = {}
        if isinstance(records, list):
            for record in records:
                source = self._normalize_record(record)
                if source is not None:
                    sources[source.id] = source
        elif records is not None:
            logger.warning("Ignoring malformed %s record", SOURCES_KEY)

        with self._lock:
            self._sources = sources
            self._hydrated = True
        logger.info("Loaded %d data sources", len(sources))

    def _normalize_record(self, record: Any) -> DataSource | None:
        if not isinstance(record, dict):
            return None
        try:
            source = DataSource.from_snapshot(record)
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning("Skipping unreadable source record: %s", e)
            return None

        if source.reader_kind is None:
            source.status = SourceStatus.failed(UNSUPPORTED_TYPE_MESSAGE)
        elif source.status.is_loading:
            source.status = SourceStatus.ready()

        if not source.aliases.get(AliasKey.default(), "").strip():
            source.aliases[AliasKey.default()] = default_alias(source)
        return source

    def add(self, descriptor: SourceDescriptor) -> str:
        """Register a new source and return its id.

        Never rejects input: a source without a known reader is stored as
        Failed("unsupported type").
        """
        reader_kind = infer_reader_kind(descriptor.kind, descriptor.locator)
        source = DataSource(
            id=uuid.uuid4().hex,
            kind=descriptor.kind,
            locator=descriptor.locator,
            reader_kind=reader_kind,
            connection_info=(
                descriptor.connection_info
                if descriptor.kind is SourceKind.RELATIONAL_TABLE
                else None
            ),
            status=(
                SourceStatus.loading()
                if reader_kind is not None
                else SourceStatus.failed(UNSUPPORTED_TYPE_MESSAGE)
            ),
        )
        alias = (descriptor.alias or "").strip() or default_alias(source)
        source.aliases[AliasKey.default()] = alias

        with self._lock:
            self._sources[source.id] = source
        self._structured_logger.log_source_event(
            source.id,
            "added",
            kind=source.kind.value,
            reader=reader_kind.value if reader_kind else None,
        )
        self._persist()
        return source.id

    def remove(self, source_id: str) -> None:
        with self._lock:
            removed = self._sources.pop(source_id, None)
        if removed is not None:
            self._structured_logger.log_source_event(source_id, "removed")
            self._persist()

    def clear(self) -> None:
        with self._lock:
            self._sources.clear()
        self._persist()

    def update(self, source_id: str, **patch: Any) -> None:
        """Merge ``patch`` into the source; no-op if the id is absent.

        Raises:
            ValueError: If ``patch`` names a field a source does not have.
        """
        unknown = set(patch) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown data source fields: {sorted(unknown)}")

        with self._lock:
            current = self._sources.get(source_id)
            if current is None:
                return
            updated = current.model_copy(deep=True)
            for name, value in patch.items():
                setattr(updated, name, value)
            self._sources[source_id] = updated

        if "status" in patch:
            status: SourceStatus = patch["status"]
            self._structured_logger.log_source_event(
                source_id, status.state.value, message=status.message
            )
        self._persist()

    def set_alias(self, source_id: str, key: AliasKey, value: str) -> str:
        """Store a trimmed alias for ``key``.

        Blank input resets the entry to its computed default. Returns the
        stored alias, or an empty string if the source is absent.
        """
        with self._lock:
            current = self._sources.get(source_id)
            if current is None:
                return ""
            alias = value.strip() or default_alias(current, key)
            aliases = dict(current.aliases)
            aliases[key] = alias
            updated = current.model_copy(deep=True)
            updated.aliases = aliases
            self._sources[source_id] = updated
        self._persist()
        return alias

    def get(self, source_id: str) -> DataSource | None:
        with self._lock:
            source = self._sources.get(source_id)
            return source.model_copy(deep=True) if source is not None else None

    def snapshot(self) -> list[DataSource]:
        """All sources in insertion order, deep-copied."""
        with self._lock:
            return [source.model_copy(deep=True) for source in self._sources.values()]

    @property
    def is_any_loading(self) -> bool:
        with self._lock:
            return any(source.status.is_loading for source in self._sources.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sources)

    def _persist(self) -> None:
        if not self._hydrated or self._store is None:
            return
        records = [source.to_snapshot() for source in self.snapshot()]
        self._store.set(SOURCES_KEY, records)
