# ==============================================================================
# PRODUCT REPOSITORY
# ==============================================================================
# products.json rows:
#   {id, size, description, vendor, type, category_id, price, wholesale_price,
#    availability, image_url, is_active, created_at, updated_at}
#
# Store constraint: prices are never negative.
# ==============================================================================

from typing import Any, Dict, List

from tire_store.repositories.base import BackendError
from tire_store.repositories.table_repository import TableRepository
from tire_store.repositories.realtime import ChangeFeed

PRICE_COLUMNS = ('price', 'wholesale_price')


class ProductRepository(TableRepository):
    """Repository for the tire catalog."""

    def __init__(self, base_path: str, change_feed: ChangeFeed = None):
        super().__init__(base_path, 'products', change_feed)

    def _validate(self, row: Dict[str, Any]) -> None:
        for column in PRICE_COLUMNS:
            value = row.get(column)
            if value is None or value == '':
                continue
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise BackendError(f"{column} must be numeric", table=self.table)
            if number < 0:
                raise BackendError(f"{column} cannot be negative", table=self.table)

    def active(self, order_by: str = None) -> List[Dict[str, Any]]:
        """Products not explicitly deactivated."""
        return self.select(order_by=order_by, where=lambda r: r.get('is_active') is not False)

    def vendors(self) -> List[str]:
        return sorted({r.get('vendor') for r in self.get_all() if r.get('vendor')})
