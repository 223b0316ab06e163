"""Persistent key/value store and the assistant settings service.

State is kept in a single JSON document with one independent record per key
(``assistant_settings`` and ``sources``). Reads tolerate missing files and
corrupt content; writes are best effort and never raise into callers.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from querypilot.config import SETTINGS_FILE, SETTINGS_KEY
from querypilot.models import AssistantMode, ModelConfig


logger = logging.getLogger(__name__)


class JsonKeyValueStore:
    """Manages persistence of named JSON records in one file."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path else SETTINGS_FILE
        self._lock = threading.Lock()

    def _read_all(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read state file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring state file %s: top level is not an object", self.path)
            return {}
        return data

    def get(self, key: str) -> Any:
        """Return the record stored under ``key``, or None."""
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: Any) -> None:
        """Replace the record stored under ``key``."""
        with self._lock:
            data = self._read_all()
            data[key] = value
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_path, self.path)
            except (OSError, TypeError, ValueError) as e:
                logger.warning("Could not save %s record: %s", key, e)


SettingsListener = Callable[[AssistantMode, ModelConfig], None]


def _sanitize_config(raw: Any) -> ModelConfig:
    """Build a ModelConfig from stored data, dropping invalid fields one by one."""
    if not isinstance(raw, dict):
        return ModelConfig()

    defaults = ModelConfig()
    accepted: dict[str, Any] = {}
    for name in ModelConfig.model_fields:
        if name not in raw:
            continue
        candidate = {**accepted, name: raw[name]}
        try:
            ModelConfig.model_validate(candidate)
        except ValidationError:
            logger.warning("Ignoring invalid stored model setting %r", name)
            continue
        accepted[name] = raw[name]

    if not accepted:
        return defaults
    return ModelConfig.model_validate(accepted)


class AssistantSettings:
    """User-editable assistant mode and model configuration.

    Nothing is written until :meth:`load` has run, so a store that fails to
    hydrate is never overwritten with defaults.
    """

    def __init__(self, store: JsonKeyValueStore | None = None) -> None:
        self._store = store
        self._mode = AssistantMode.EXPERT
        self._config = ModelConfig()
        self._hydrated = False
        self._listeners: list[SettingsListener] = []

    @property
    def mode(self) -> AssistantMode:
        return self._mode

    @property
    def config(self) -> ModelConfig:
        return self._config.model_copy()

    def load(self) -> None:
        """Hydrate mode and config from the store."""
        record = self._store.get(SETTINGS_KEY) if self._store else None
        if isinstance(record, dict):
            try:
                self._mode = AssistantMode(record.get("mode", AssistantMode.EXPERT))
            except ValueError:
                logger.warning("Ignoring unknown assistant mode %r", record.get("mode"))
                self._mode = AssistantMode.EXPERT
            self._config = _sanitize_config(record.get("config"))
        self._hydrated = True
        logger.info(
            "Loaded assistant settings: mode=%s config=%s",
            self._mode.value,
            self._config.loggable(),
        )

    def update_config(self, **patch: Any) -> ModelConfig:
        """Merge ``patch`` into the model config.

        Raises:
            ValueError: If a field is unknown.
            pydantic.ValidationError: If a value is out of range.
        """
        unknown = set(patch) - set(ModelConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown model config fields: {sorted(unknown)}")

        merged = {**self._config.model_dump(), **patch}
        self._config = ModelConfig.model_validate(merged)
        self._changed()
        return self.config

    def set_mode(self, mode: AssistantMode | str) -> None:
        mode = AssistantMode(mode)
        if mode is self._mode:
            return
        self._mode = mode
        self._changed()

    def add_listener(self, listener: SettingsListener) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        if self._hydrated and self._store is not None:
            self._store.set(
                SETTINGS_KEY,
                {"mode": self._mode.value, "config": self._config.to_storage()},
            )
        for listener in list(self._listeners):
            listener(self._mode, self.config)
