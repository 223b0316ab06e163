"""Tests for shared pydantic models and configuration validation."""

import pytest
from pydantic import ValidationError

from querypilot import config
from querypilot.models import (
    AliasKey,
    AssistantStatus,
    DataSource,
    ReaderKind,
    SourceKind,
    SourceState,
    SourceStatus,
)


class TestSourceStatus:
    """Test the Loading / Ready / Failed(message) status."""

    def test_failed_requires_message(self) -> None:
        with pytest.raises(ValidationError):
            SourceStatus(state=SourceState.FAILED)

    def test_ready_rejects_message(self) -> None:
        with pytest.raises(ValidationError):
            SourceStatus(state=SourceState.READY, message="oops")

    def test_constructors(self) -> None:
        assert SourceStatus.loading().is_loading
        assert SourceStatus.failed("x").message == "x"
        assert SourceStatus.ready().message is None


class TestAliasKey:
    """Test the tagged alias key."""

    def test_default_sentinel(self) -> None:
        assert AliasKey.default().is_default
        assert not AliasKey(sheet="Sheet1").is_default

    def test_sentinel_distinct_from_same_named_sheet(self) -> None:
        assert AliasKey(sheet="__default") != AliasKey.default()

    def test_hashable(self) -> None:
        aliases = {AliasKey.default(): "a", AliasKey(sheet="Q1"): "b"}
        assert aliases[AliasKey(sheet="Q1")] == "b"


class TestDataSourceSnapshot:
    """Test the JSON form used for persistence."""

    def test_round_trip(self) -> None:
        source = DataSource(
            id="s1",
            kind=SourceKind.FILE,
            locator="book.xlsx",
            reader_kind=ReaderKind.EXCEL,
            sheet_options=["Q1"],
            sheet_name="Q1",
            aliases={AliasKey.default(): "book.xlsx", AliasKey(sheet="Q1"): "First"},
            status=SourceStatus.failed("could not parse columns"),
        )

        restored = DataSource.from_snapshot(source.to_snapshot())

        assert restored == source

    def test_reader_kind_values_are_table_functions(self) -> None:
        assert [kind.value for kind in ReaderKind] == [
            "read_csv",
            "read_excel",
            "read_ndjson",
            "read_parquet",
            "read_tsv",
            "read_mysql",
        ]
        assert ReaderKind.EXCEL.supports_sub_resources
        assert not ReaderKind.CSV.supports_sub_resources


def test_assistant_status_groups() -> None:
    assert AssistantStatus.CANCELLED.is_terminal
    assert AssistantStatus.RETRYING.is_busy
    assert not AssistantStatus.IDLE.is_terminal


class TestConfigValidation:
    """Test process constant validation."""

    def test_defaults_are_valid(self) -> None:
        assert config.validate_config() == []

    def test_invalid_value_reported(self, monkeypatch) -> None:
        monkeypatch.setitem(config._POSITIVE_INT_CONFIGS, "HISTORY_LIMIT", 0)

        errors = config.validate_config()

        assert errors == ["HISTORY_LIMIT must be positive, got 0"]
        with pytest.raises(config.ConfigurationError):
            config.validate_config_or_raise()
