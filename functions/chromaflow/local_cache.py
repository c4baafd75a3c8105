"""
Local fallback cache for the last known item list.

Holds the serialized records (JSON array of flat item records) so the
tracker can still show data when the document store is unreachable.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class JsonFileCache:
    """Cache stored as a single JSON file, replaced atomically on write."""

    def __init__(self, path):
        self.path = Path(path).expanduser()

    def get(self) -> Optional[List[Dict[str, Any]]]:
        """Cached records, or None when nothing usable is stored."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache {self.path}: {e}")
            return None

        if not isinstance(data, list):
            logger.warning(f"Ignoring cache {self.path}: expected a JSON array")
            return None
        return data

    def set(self, records: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug(f"Cached {len(records)} record(s) to {self.path}")


class MemoryCache:
    """Process-local cache (tests and local runs)."""

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None):
        self._records = None if records is None else list(records)

    def get(self) -> Optional[List[Dict[str, Any]]]:
        return None if self._records is None else list(self._records)

    def set(self, records: List[Dict[str, Any]]) -> None:
        self._records = list(records)
