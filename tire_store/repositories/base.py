# ==============================================================================
# BASE REPOSITORY - JSON file store
# ==============================================================================
# Every table lives in one JSON file. Two shapes exist:
#   DictRepository  {"<id>": {...}}   users, site settings
#   ListRepository  [{...}, {...}]    business tables (see TableRepository)
#
# Writes are atomic (temp file + os.replace) and serialised by one
# process-wide re-entrant lock shared by all repositories.
# ==============================================================================

import json
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class BackendError(Exception):
    """
    The data store rejected or failed an operation.

    Attributes:
        table: Table (or store component) involved, when known
    """

    def __init__(self, message: str, table: str = None):
        super().__init__(message)
        self.table = table


class NotFoundError(BackendError):
    """A single-row lookup matched nothing."""


class BaseRepository(ABC):
    """Owns one JSON file: lazy creation, tolerant reads, atomic writes."""

    _file_lock = threading.RLock()

    def __init__(self, file_path: str):
        self.file_path = file_path
        folder = os.path.dirname(file_path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        if not os.path.exists(file_path):
            self._write_raw(self._empty_data())

    @abstractmethod
    def _empty_data(self) -> Any:
        """Value stored in a brand-new file."""

    def _read_raw(self) -> Any:
        # A missing or unreadable file reads as empty
        with self._file_lock:
            try:
                with open(self.file_path, encoding='utf-8') as f:
                    return json.load(f)
            except (FileNotFoundError, json.JSONDecodeError):
                return self._empty_data()

    def _write_raw(self, data: Any) -> None:
        """
        Raises:
            BackendError: The data cannot be serialised or the file written
        """
        temp_path = f'{self.file_path}.tmp'
        with self._file_lock:
            try:
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, ensure_ascii=False, default=str)
                os.replace(temp_path, self.file_path)
            except (OSError, TypeError, ValueError) as e:
                if os.path.exists(temp_path):
                    os.remove(temp_path)
                name = os.path.basename(self.file_path)
                raise BackendError(f"Could not write {name}: {e}") from e

    def reload(self) -> None:
        """Nothing is cached: every call reads the file."""


class DictRepository(BaseRepository):
    """Records keyed by id."""

    def _empty_data(self) -> Dict:
        return {}

    def get_all(self) -> Dict[str, Any]:
        data = self._read_raw()
        return data if isinstance(data, dict) else {}

    def get_by_id(self, record_id: Any) -> Optional[Dict[str, Any]]:
        return self.get_all().get(str(record_id))

    def update(self, record_id: Any, record_data: Any) -> None:
        """Insert or replace the record stored under record_id."""
        with self._file_lock:
            data = self.get_all()
            data[str(record_id)] = record_data
            self._write_raw(data)


class ListRepository(BaseRepository):
    """Records as a list of rows."""

    def _empty_data(self) -> List:
        return []

    def get_all(self) -> List[Dict[str, Any]]:
        data = self._read_raw()
        return data if isinstance(data, list) else []

    def find_by(self, field: str, value: Any) -> Optional[Dict[str, Any]]:
        """First row whose field equals value, or None."""
        return next((row for row in self.get_all() if row.get(field) == value), None)
