"""Shared fixtures and fakes for all tests."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from querypilot.models import (  # noqa: E402
    AssistantMode,
    ModelConfig,
    QueryResult,
    SqlResponse,
)
from querypilot.utils.duckdb_client import DuckDBClient  # noqa: E402
from querypilot.utils.settings_store import AssistantSettings, JsonKeyValueStore  # noqa: E402
from querypilot.utils.source_registry import SourceRegistry  # noqa: E402


# ============================================================================
# Path Fixtures
# ============================================================================


@pytest.fixture
def sales_csv(tmp_path):
    """Creates a small sales CSV file."""
    path = tmp_path / "sales.csv"
    path.write_text(
        "region,sales,order_date\n"
        "North,100,2024-01-01\n"
        "South,250,2024-01-02\n"
        "North,75,2024-01-03\n"
        "East,,2024-01-04\n",
    )
    return path


@pytest.fixture
def state_file(tmp_path):
    """Path of a temporary key/value state file."""
    return tmp_path / "state" / "state.json"


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def store(state_file):
    return JsonKeyValueStore(state_file)


@pytest.fixture
def registry():
    """A registry without persistence."""
    return SourceRegistry()


@pytest.fixture
def engine():
    """A real DuckDB engine keeping its history in memory."""
    client = DuckDBClient(history_path=None)
    yield client
    client.close()


@pytest.fixture
def model_config():
    return ModelConfig(
        endpoint="https://example.test/v1",
        credential="sk-test-123",
        model_name="test-model",
        retry_limit=2,
    )


@pytest.fixture
def ai_settings(model_config):
    """Assistant settings in AI mode with a usable model config."""
    settings = AssistantSettings()
    settings.load()
    settings.update_config(**model_config.model_dump())
    settings.set_mode(AssistantMode.AI)
    return settings


# ============================================================================
# Collaborator Fakes
# ============================================================================


@pytest.fixture
def fake_generator():
    """A model client whose generate/repair calls are AsyncMocks."""
    generator = MagicMock()
    generator.generate_query = AsyncMock(
        return_value=SqlResponse(query_text="SELECT 1", rationale=None)
    )
    generator.repair_query = AsyncMock(
        return_value=SqlResponse(query_text="SELECT 2", rationale=None)
    )
    return generator


@pytest.fixture
def fake_engine():
    """An execution engine whose execute_query is an AsyncMock."""
    client = MagicMock()
    client.execute_query = AsyncMock(
        return_value=QueryResult(columns=["x"], rows=[["1"]], elapsed_time_label="1ms")
    )
    client.list_sub_resources = AsyncMock(return_value=[])
    return client
