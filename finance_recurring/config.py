"""
Engine settings (``finance_recurring.config``).

Responsibility
--------------
Loads the engine's YAML settings file into a frozen ``EngineSettings``
dataclass.  Every key is optional; missing keys take the defaults below.

Failure modes
-------------
* Missing settings file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or invalid value  -> ``ConfigurationError``.

Example settings file::

    database_url: sqlite:///finance.db
    marker_path: ~/.finance/run_marker.json
    watermark_policy: retry_until_written
    lease_ttl_seconds: 300
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from finance_recurring.domain.types import DEFAULT_WATERMARK_POLICY, WatermarkPolicy
from finance_recurring.exceptions import ConfigurationError
from finance_recurring.services.entry_writers import (
    DEFAULT_PAYMENT_METHOD,
    DEFAULT_SAVINGS_CATEGORY,
)
from finance_recurring.stores.marker_file import DEFAULT_MARKER_KEY

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings for one engine process."""

    database_url: str = "sqlite:///finance_recurring.db"
    # None -> keep the run marker in the database
    marker_path: str | None = None
    marker_key: str = DEFAULT_MARKER_KEY
    watermark_policy: WatermarkPolicy = DEFAULT_WATERMARK_POLICY
    lease_ttl_seconds: int = 600
    upcoming_days: int = 7
    default_payment_method: str = DEFAULT_PAYMENT_METHOD
    savings_category: str = DEFAULT_SAVINGS_CATEGORY
    log_level: str = "INFO"

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level)


def _positive_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(key, f"must be a positive integer, got {value!r}")
    return value


def _non_empty_str(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(key, f"must be a non-empty string, got {value!r}")
    return value


def settings_from_dict(data: dict[str, Any] | None) -> EngineSettings:
    """Validate a parsed settings mapping and build ``EngineSettings``.

    Raises:
        ConfigurationError: On an unknown key or an invalid value.
    """
    if data is None:
        return EngineSettings()
    if not isinstance(data, dict):
        raise ConfigurationError("<root>", "settings must be a mapping")

    known = {f.name for f in fields(EngineSettings)}
    for key in data:
        if key not in known:
            raise ConfigurationError(str(key), "unknown setting")

    values: dict[str, Any] = {}
    for key in ("database_url", "marker_key", "default_payment_method", "savings_category"):
        if key in data:
            values[key] = _non_empty_str(key, data[key])

    if data.get("marker_path") is not None:
        values["marker_path"] = str(
            Path(_non_empty_str("marker_path", data["marker_path"])).expanduser()
        )

    if "watermark_policy" in data:
        try:
            values["watermark_policy"] = WatermarkPolicy(data["watermark_policy"])
        except ValueError:
            allowed = ", ".join(p.value for p in WatermarkPolicy)
            raise ConfigurationError(
                "watermark_policy",
                f"expected one of {allowed}, got {data['watermark_policy']!r}",
            ) from None

    for key in ("lease_ttl_seconds", "upcoming_days"):
        if key in data:
            values[key] = _positive_int(key, data[key])

    if "log_level" in data:
        level = str(data["log_level"]).upper()
        if level not in _LOG_LEVELS:
            raise ConfigurationError("log_level", f"unknown level {data['log_level']!r}")
        values["log_level"] = level

    return EngineSettings(**values)


def load_settings(path: Path | str) -> EngineSettings:
    """Load ``EngineSettings`` from a YAML file."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return settings_from_dict(data)
