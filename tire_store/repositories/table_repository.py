# ==============================================================================
# TABLE REPOSITORY - generic row store
# ==============================================================================
# One JSON file per table: <data_dir>/<table>.json -> [{row}, {row}, ...]
#
# Exposes the call shapes the services rely on:
#   select(filters, order_by, desc, limit)   -> list of rows
#   get(id) / maybe_single(**filters)
#   insert(row) / insert_many(rows)
#   update_row(id, changes)
#   delete_row(id)
#   upsert(row, on=field)
#
# Each call is an independent round trip: there are no multi-call
# transactions. The store assigns id / created_at / updated_at.
# ==============================================================================

import os
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from tire_store.repositories.base import ListRepository, BackendError, NotFoundError
from tire_store.repositories.realtime import ChangeFeed, EVENT_INSERT, EVENT_UPDATE, EVENT_DELETE


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def _matches(row: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, expected in filters.items():
        value = row.get(key)
        if callable(expected):
            if not expected(value):
                return False
        elif isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def _sort_key(value: Any):
    # None sorts first; numbers and strings are never compared with each other
    if value is None:
        return (0, 0, '')
    if isinstance(value, (int, float)):
        return (1, value, '')
    return (2, 0, str(value))


class TableRepository(ListRepository):
    """
    Repository for one table.

    Filters are equality matches; a list/tuple/set value means "in", and a
    callable is used as a predicate on the column value.
    """

    def __init__(self, base_path: str, table: str, change_feed: ChangeFeed = None):
        """
        Args:
            base_path: Data directory
            table: Table name (also the file name)
            change_feed: Realtime feed notified on every write (optional)
        """
        self.table = table
        self.change_feed = change_feed
        super().__init__(os.path.join(base_path, f'{table}.json'))

    # =========================================================================
    # VALIDATION HOOK
    # =========================================================================

    def _validate(self, row: Dict[str, Any]) -> None:
        """
        Table-level constraints. Subclasses raise BackendError on violation.
        """
        pass

    def _publish(self, event_type: str, new=None, old=None) -> None:
        if self.change_feed is not None:
            self.change_feed.publish(self.table, event_type, new=new, old=old)

    # =========================================================================
    # READS
    # =========================================================================

    def select(
        self,
        filters: Dict[str, Any] = None,
        order_by: str = None,
        desc: bool = False,
        limit: int = None,
        where: Callable[[Dict[str, Any]], bool] = None
    ) -> List[Dict[str, Any]]:
        """
        Query rows.

        Args:
            filters: Column -> expected value (see class docstring)
            order_by: Column to sort by (None values sort first)
            desc: Descending order
            limit: Maximum rows returned
            where: Extra row predicate

        Returns:
            Matching rows (copies)
        """
        rows = [dict(r) for r in self.get_all() if _matches(r, filters or {})]
        if where is not None:
            rows = [r for r in rows if where(r)]
        if order_by:
            rows.sort(key=lambda r: _sort_key(r.get(order_by)), reverse=desc)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def get(self, record_id: Any) -> Optional[Dict[str, Any]]:
        if record_id is None:
            return None
        row = self.find_by('id', str(record_id))
        return dict(row) if row else None

    def maybe_single(self, **filters) -> Optional[Dict[str, Any]]:
        rows = self.select(filters, limit=1)
        return rows[0] if rows else None

    def count(self, filters: Dict[str, Any] = None) -> int:
        return len(self.select(filters))

    # =========================================================================
    # WRITES
    # =========================================================================

    def _prepare_insert(self, row: Dict[str, Any], existing: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Hook for store-assigned columns (numbering, defaults)."""
        return row

    def insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert one row.

        Returns:
            The stored row including id / created_at / updated_at

        Raises:
            BackendError: On constraint violation or write failure
        """
        return self.insert_many([row])[0]

    def insert_many(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        now = utc_now_iso()
        stored = []
        with self._file_lock:
            data = self.get_all()
            for row in rows:
                record = dict(row)
                record['id'] = str(record.get('id') or uuid.uuid4().hex)
                record.setdefault('created_at', now)
                record['updated_at'] = now
                record = self._prepare_insert(record, data)
                self._validate(record)
                if any(r.get('id') == record['id'] for r in data):
                    raise BackendError(f"Duplicate id {record['id']} in {self.table}", table=self.table)
                data.append(record)
                stored.append(record)
            self._write_raw(data)
        for record in stored:
            self._publish(EVENT_INSERT, new=dict(record))
        return [dict(r) for r in stored]

    def update_row(self, record_id: Any, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update one row by id.

        Returns:
            Updated row

        Raises:
            NotFoundError: If the id does not exist
            BackendError: On constraint violation or write failure
        """
        with self._file_lock:
            data = self.get_all()
            for index, row in enumerate(data):
                if row.get('id') == str(record_id):
                    old = dict(row)
                    updated = dict(row)
                    updated.update(changes)
                    updated['id'] = old['id']
                    updated['updated_at'] = utc_now_iso()
                    self._validate(updated)
                    data[index] = updated
                    self._write_raw(data)
                    break
            else:
                raise NotFoundError(f"{self.table} row {record_id} not found", table=self.table)
        self._publish(EVENT_UPDATE, new=dict(updated), old=old)
        return dict(updated)

    def delete_row(self, record_id: Any) -> Optional[Dict[str, Any]]:
        """
        Returns:
            Removed row, or None when it did not exist
        """
        with self._file_lock:
            data = self.get_all()
            remaining = [r for r in data if r.get('id') != str(record_id)]
            if len(remaining) == len(data):
                return None
            removed = next(r for r in data if r.get('id') == str(record_id))
            self._write_raw(remaining)
        self._publish(EVENT_DELETE, old=dict(removed))
        return dict(removed)

    def upsert(self, row: Dict[str, Any], on: str) -> Dict[str, Any]:
        """
        Insert, or update the row whose `on` column equals row[on].
        """
        with self._file_lock:
            existing = self.find_by(on, row.get(on))
            if existing:
                return self.update_row(existing['id'], row)
            return self.insert(row)
