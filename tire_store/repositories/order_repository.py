# ==============================================================================
# ORDER REPOSITORY
# ==============================================================================
# orders.json rows carry a unique order_number (KT-YYYYMMDD-NNNN), chosen
# by checkout and checked here under the store lock.
# ==============================================================================

from typing import Any, Dict, List

from tire_store.repositories.base import BackendError
from tire_store.repositories.table_repository import TableRepository
from tire_store.repositories.realtime import ChangeFeed


class OrderRepository(TableRepository):
    """Repository for customer orders."""

    def __init__(self, base_path: str, change_feed: ChangeFeed = None):
        super().__init__(base_path, 'orders', change_feed)

    def _prepare_insert(self, row: Dict[str, Any], existing: List[Dict[str, Any]]) -> Dict[str, Any]:
        number = row.get('order_number')
        if number and any(r.get('order_number') == number for r in existing):
            raise BackendError(f"Order number {number} already exists", table=self.table)
        return row
