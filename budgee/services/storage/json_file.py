"""
JSON File Key-Value Store

DESIGN DECISION: Local JSON files are the default durable substrate because:
1. The core is single-user, single-device
2. No database setup required
3. Users (and support) can inspect their data directly

TRADEOFFS:
- Every write rewrites the whole value for that key (fine for one user's ledger)
- No cross-key transactions (callers order their writes carefully)

Each key maps to one file. Writes go to a temp file that is fsync'd and
atomically renamed over the target, so a value is durable before set()
returns and a crash never leaves a half-written file.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import quote, unquote

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from budgee.services.storage.interface import (
    CorruptDataError,
    KeyValueStoreInterface,
    StorageError,
    StorageUnavailableError,
)

logger = structlog.get_logger(__name__)

FILE_SUFFIX = ".json"


class JsonFileKeyValueStore(KeyValueStoreInterface):
    """
    File-per-key implementation of the persistence substrate.

    Transient OS errors (e.g., a file briefly locked by a backup tool)
    are retried with exponential backoff before surfacing as StorageError.
    """

    def __init__(self, data_dir: Union[str, Path]):
        self._dir = Path(data_dir).expanduser()
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot create data directory {self._dir}: {e}") from e

    @property
    def data_dir(self) -> Path:
        return self._dir

    def _path_for(self, key: str) -> Path:
        return self._dir / f"{quote(key, safe='')}{FILE_SUFFIX}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        retry=retry_if_exception_type(OSError),
        reraise=True,
    )
    def _read_text(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        retry=retry_if_exception_type(OSError),
        reraise=True,
    )
    def _write_text(self, path: Path, text: str) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".tmp-", suffix=FILE_SUFFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def get(self, key: str) -> Optional[Any]:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            text = self._read_text(path)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot read {path}: {e}") from e
        except UnicodeDecodeError as e:
            raise CorruptDataError(f"Stored value for {key!r} is not valid UTF-8: {e}") from e
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise CorruptDataError(f"Stored value for {key!r} is not valid JSON: {e}") from e

    def set(self, key: str, value: Any) -> None:
        try:
            text = json.dumps(value, indent=2)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for {key!r} is not JSON-serializable: {e}") from e
        try:
            self._write_text(self._path_for(key), text)
        except OSError as e:
            logger.error("storage_write_failed", key=key, error=str(e))
            raise StorageError(f"Failed to write {key!r}: {e}") from e

    def delete(self, key: str) -> bool:
        path = self._path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {key!r}: {e}") from e
        return True

    def keys(self, prefix: str = "") -> list[str]:
        found = []
        for path in self._dir.glob(f"*{FILE_SUFFIX}"):
            if path.name.startswith(".tmp-"):
                continue
            key = unquote(path.name[: -len(FILE_SUFFIX)])
            if key.startswith(prefix):
                found.append(key)
        return sorted(found)
