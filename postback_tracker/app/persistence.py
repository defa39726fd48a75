from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock
from typing import Optional

logger = logging.getLogger("postback_tracker.persistence")


class PersistenceError(Exception):
    pass


def _normalize_storage_path(storage_file: str) -> Path:
    path = Path(storage_file.strip()).expanduser()
    if path.parent:
        path.parent.mkdir(parents=True, exist_ok=True)
    return path


class JsonFilePersistence:
    """
    Whole-file JSON snapshot of the attribution map. Every save rewrites the file
    through a temporary sibling and an atomic rename.
    """

    def __init__(self, storage_file: str) -> None:
        self.path = _normalize_storage_path(storage_file)
        self._lock = Lock()

    def load_snapshot(self) -> Optional[dict]:
        with self._lock:
            if not self.path.exists():
                return None
            try:
                raw = self.path.read_text(encoding="utf-8")
            except OSError as exc:
                raise PersistenceError(f"cannot read {self.path}: {exc}") from exc
        if not raw.strip():
            return None
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"snapshot is not valid json: {self.path}") from exc
        if not isinstance(decoded, dict):
            raise PersistenceError(f"snapshot root must be an object: {self.path}")
        return decoded

    def save_snapshot(self, payload: dict) -> None:
        body = json.dumps(payload, indent=2, sort_keys=True)
        with self._lock:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                dir=str(self.path.parent),
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(body)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, self.path)
            except OSError as exc:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise PersistenceError(f"cannot write {self.path}: {exc}") from exc

    def ping(self) -> bool:
        directory = self.path.parent
        try:
            return directory.is_dir() and os.access(directory, os.W_OK)
        except OSError:
            logger.warning("storage_ping_failed path=%s", self.path)
            return False
