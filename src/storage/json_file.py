"""
JSON file settlement store.

Keeps records in memory like ``MemoryStore`` and rewrites a local JSON
file after every committed write. The file is replaced atomically (write
to temp, then rename), so a crash never leaves a half-written file.
"""

import json
import os
import shutil
from datetime import datetime
from typing import Any

from storage.base import StorageError, StorageReadError, StorageWriteError
from storage.memory import MemoryStore


class JSONFileStore(MemoryStore):
    """
    JSON file settlement store.

    Suitable for single-process deployments and local development.
    """

    def __init__(self, file_path: str = "eventshare_data.json"):
        """
        Initialize JSON file storage.

        Args:
            file_path: Path to the JSON file; loaded if it already exists
        """
        super().__init__()
        self.file_path = file_path
        loaded = self._load()
        if loaded is not None:
            self._data = loaded

    def _load(self) -> dict[str, Any] | None:
        try:
            if not os.path.exists(self.file_path):
                return None
            with open(self.file_path, encoding="utf-8") as f:
                raw_data = f.read()
            if not raw_data.strip():
                return None
            data = json.loads(raw_data)
        except PermissionError as e:
            raise StorageReadError(f"Permission denied: {self.file_path}") from e
        except json.JSONDecodeError as e:
            raise StorageReadError(f"Invalid JSON format: {e}") from e
        except OSError as e:
            raise StorageReadError(f"OS error: {e}") from e

        merged = self._empty()
        merged.update({k: v for k, v in data.items() if k in merged})
        return merged

    def _commit(self) -> None:
        try:
            data = json.dumps(self._data, indent=2, ensure_ascii=False)
            temp_path = f"{self.file_path}.tmp"
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(data)
            os.replace(temp_path, self.file_path)
        except PermissionError as e:
            raise StorageWriteError(f"Permission denied: {self.file_path}") from e
        except OSError as e:
            raise StorageWriteError(f"OS error: {e}") from e

    def is_available(self) -> bool:
        """True if the file's directory exists and is writable."""
        directory = os.path.dirname(self.file_path) or "."
        return os.path.isdir(directory) and os.access(directory, os.W_OK)

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        info["file_path"] = self.file_path
        try:
            stat = os.stat(self.file_path)
        except FileNotFoundError:
            info["file_exists"] = False
            return info
        except OSError as e:
            info["file_exists"] = True
            info["stat_error"] = str(e)
            return info
        info.update({
            "file_exists": True,
            "file_size_bytes": stat.st_size,
            "last_modified": stat.st_mtime,
        })
        return info

    def backup(self, backup_path: str | None = None) -> str:
        """
        Copy the data file aside.

        Returns:
            Path to the backup file

        Raises:
            StorageError: If there is nothing to back up or the copy fails
        """
        if backup_path is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = f"{self.file_path}.{timestamp}.backup"

        with self._lock:
            if not os.path.exists(self.file_path):
                raise StorageError("No file to backup")
            try:
                shutil.copy2(self.file_path, backup_path)
            except OSError as e:
                raise StorageError(f"Backup failed: {e}") from e
        return backup_path
