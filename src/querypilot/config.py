"""Shared configuration constants for querypilot modules.

Values that users edit at runtime (model endpoint, credential, retry budget)
live in :class:`querypilot.utils.settings_store.AssistantSettings`. This module
only holds process constants and their environment overrides.
"""

from __future__ import annotations

import os
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


STATE_DIR = Path(
    os.environ.get("QUERYPILOT_HOME", Path.home() / ".querypilot"),
).expanduser()
SETTINGS_FILE = STATE_DIR / "state.json"
HISTORY_DB_FILE = STATE_DIR / "history.duckdb"

# Keys of the two independent persisted records
SETTINGS_KEY = "assistant_settings"
SOURCES_KEY = "sources"

RESULT_ROW_LIMIT = _env_int("QUERYPILOT_RESULT_LIMIT", 200)
PREVIEW_ROW_LIMIT = 3
DATA_PREVIEW_ROWS = 3
HISTORY_LIMIT = 50
SQL_LOG_TRUNCATION = 500

LLM_REQUEST_TIMEOUT = 60.0
LLM_TRANSPORT_RETRIES = _env_int("LLM_TRANSPORT_RETRIES", 3)
LLM_MIN_MAX_TOKENS = 512

DEFAULT_PROVIDER = "openai-compatible"
DEFAULT_BASE_URL = os.environ.get("LLM_BASE_URL", "https://openrouter.ai/api/v1")
DEFAULT_MODEL = (
    os.environ.get("OPENROUTER_MODEL")
    or os.environ.get("LLM_MODEL")
    or "meta-llama/llama-3.3-70b-instruct"
)
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_TOKENS = 2048
DEFAULT_RETRY_LIMIT = 2

# Configuration values that must be positive integers
_POSITIVE_INT_CONFIGS: dict[str, int] = {
    "RESULT_ROW_LIMIT": RESULT_ROW_LIMIT,
    "PREVIEW_ROW_LIMIT": PREVIEW_ROW_LIMIT,
    "DATA_PREVIEW_ROWS": DATA_PREVIEW_ROWS,
    "HISTORY_LIMIT": HISTORY_LIMIT,
    "SQL_LOG_TRUNCATION": SQL_LOG_TRUNCATION,
    "LLM_TRANSPORT_RETRIES": LLM_TRANSPORT_RETRIES,
}


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""


def validate_config() -> list[str]:
    """Validate all configuration values.

    Returns:
        List of validation error messages. Empty list if all validations pass.
    """
    errors: list[str] = []

    for name, value in _POSITIVE_INT_CONFIGS.items():
        if value <= 0:
            errors.append(f"{name} must be positive, got {value}")

    if not 0.0 <= DEFAULT_TEMPERATURE <= 1.0:
        errors.append(
            f"DEFAULT_TEMPERATURE must be within [0, 1], got {DEFAULT_TEMPERATURE}",
        )

    if not 256 <= DEFAULT_MAX_TOKENS <= 8192:
        errors.append(
            f"DEFAULT_MAX_TOKENS must be within [256, 8192], got {DEFAULT_MAX_TOKENS}",
        )

    if not 0 <= DEFAULT_RETRY_LIMIT <= 5:
        errors.append(
            f"DEFAULT_RETRY_LIMIT must be within [0, 5], got {DEFAULT_RETRY_LIMIT}",
        )

    return errors


def validate_config_or_raise() -> None:
    """Validate configuration and raise an exception if validation fails.

    Raises:
        ConfigurationError: If any configuration value is invalid.
    """
    errors = validate_config()
    if errors:
        raise ConfigurationError(
            "Configuration validation failed:\n  - " + "\n  - ".join(errors),
        )
