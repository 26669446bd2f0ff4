"""
File-backed run marker -- the local "last processed" flag.

The marker lives under one key in a small JSON document so the same
file can hold flags for several keys.  Writes are atomic (write to
``.tmp`` then ``os.replace``); an unreadable or corrupt file reads as
"no marker", which makes the gating check run a full pass.
"""

from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path

from finance_recurring.logging_config import get_logger

logger = get_logger("stores.marker_file")

DEFAULT_MARKER_KEY = "last_recurring_process"


class FileRunMarkerStore:
    """RunMarkerStore persisted as an ISO-8601 string in a JSON file."""

    def __init__(self, path: Path | str, key: str = DEFAULT_MARKER_KEY) -> None:
        self._path = Path(path)
        self._key = key

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError):
            logger.warning("run_marker_unreadable", extra={"path": str(self._path)})
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self._path)
        finally:
            tmp.unlink(missing_ok=True)

    def get(self) -> datetime | None:
        raw = self._load().get(self._key)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except (TypeError, ValueError):
            logger.warning(
                "run_marker_invalid",
                extra={"path": str(self._path), "key": self._key, "value": raw},
            )
            return None

    def set(self, value: datetime) -> None:
        data = self._load()
        data[self._key] = value.isoformat()
        self._save(data)

    def clear(self) -> None:
        data = self._load()
        if data.pop(self._key, None) is not None:
            self._save(data)
