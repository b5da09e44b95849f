"""Key-value storage for reconciled history and decrypted receipts.

Values are opaque strings (JSON produced by the callers). Two backends:
    MemoryCache - process-local dict, used by tests and the server default
    FileCache   - one file per key under a directory
"""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

from chainreceipt.runtime.logging import get_logger

logger = get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueCache(Protocol):
    """Minimal storage contract used by the history reconciler."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryCache:
    """Dict-backed cache."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def __len__(self) -> int:
        return len(self._values)


class FileCache:
    """Directory-backed cache storing each key in its own file."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory).expanduser()

    def _path_for(self, key: str) -> Path:
        if not key:
            raise ValueError("Cache key must not be empty")
        safe = _UNSAFE_KEY_CHARS.sub("_", key)
        return self.directory / f"{safe}.json"

    def get(self, key: str) -> str | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path_for(key)

        # Write to a sibling temp file, then rename over the target.
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Cached %s (%d bytes)", path.name, len(value))
