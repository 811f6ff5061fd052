# ==============================================================================
# BULK PRICE SERVICE
# ==============================================================================
# Filter -> preview -> confirm.
#
#   set             p' = v
#   increase_pct    p' = p x (1 + v/100)
#   decrease_pct    p' = p x (1 - v/100)
#   increase_fixed  p' = p + v
#   decrease_fixed  p' = max(0, p - v)
#
# Every result is rounded to cents. Applying writes one products update and
# one BULK_PRICE_UPDATE audit row per product, all tagged with a batch id.
# Rolling back a batch restores the audited old prices row by row, skipping
# products deleted since.
# Neither apply nor rollback is transactional.
# ==============================================================================

import logging
import math
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from tire_store import config
from tire_store.models import PriceOperation, enum_values
from tire_store.repositories.base import BackendError, NotFoundError
from tire_store.repositories.backend_functions import BackendFunctions
from tire_store.repositories.interfaces import ITableRepository
from tire_store.repositories.product_repository import ProductRepository
from tire_store.services.audit_service import AuditService
from tire_store.performance_logger import profile_function

logger = logging.getLogger(__name__)

FILTER_KEYS = ('vendor', 'category_id', 'type', 'availability', 'size_contains')


def apply_operation(price: float, operation: str, value: float) -> float:
    """
    New price for one operation, rounded to cents.

    Raises:
        ValueError: Unknown operation
    """
    price = float(price or 0)
    value = float(value)
    if operation == PriceOperation.SET.value:
        result = value
    elif operation == PriceOperation.INCREASE_PCT.value:
        result = price * (1 + value / 100)
    elif operation == PriceOperation.DECREASE_PCT.value:
        result = price * (1 - value / 100)
    elif operation == PriceOperation.INCREASE_FIXED.value:
        result = price + value
    elif operation == PriceOperation.DECREASE_FIXED.value:
        result = max(0.0, price - value)
    else:
        raise ValueError(f'Unknown price operation: {operation}')
    return round(result, 2)


@dataclass
class PriceRule:
    """
    Operator input for one bulk change.

    Attributes:
        retail_operation / retail_value: Always applied to the retail price
        update_wholesale: Also recompute wholesale prices
        wholesale_operation / wholesale_value: Wholesale rule (when enabled)
        set_wholesale_if_blank: Give products without a wholesale price one
            (base = 70% of retail)
    """
    retail_operation: str
    retail_value: float
    update_wholesale: bool = False
    wholesale_operation: str = PriceOperation.INCREASE_PCT.value
    wholesale_value: Optional[float] = None
    set_wholesale_if_blank: bool = False

    @property
    def applies_wholesale(self) -> bool:
        return self.update_wholesale and self.wholesale_value is not None

    @classmethod
    def from_form(cls, data: Dict[str, Any]) -> 'PriceRule':
        """
        Raises:
            ValueError: Missing or invalid values
        """
        def _flag(key):
            return str(data.get(key, '')).lower() in ('1', 'true', 'on', 'yes')

        retail_operation = data.get('retail_operation') or PriceOperation.INCREASE_PCT.value
        wholesale_operation = data.get('wholesale_operation') or PriceOperation.INCREASE_PCT.value
        for operation in (retail_operation, wholesale_operation):
            if operation not in enum_values(PriceOperation):
                raise ValueError(f'Unknown price operation: {operation}')

        if data.get('retail_value') in (None, ''):
            raise ValueError('Please enter a retail price value')
        try:
            retail_value = float(data['retail_value'])
            raw_wholesale = data.get('wholesale_value')
            wholesale_value = float(raw_wholesale) if raw_wholesale not in (None, '') else None
        except (TypeError, ValueError):
            raise ValueError('Price values must be numbers')
        if retail_value < 0 or (wholesale_value is not None and wholesale_value < 0):
            raise ValueError('Price values cannot be negative')

        return cls(
            retail_operation=retail_operation,
            retail_value=retail_value,
            update_wholesale=_flag('update_wholesale'),
            wholesale_operation=wholesale_operation,
            wholesale_value=wholesale_value,
            set_wholesale_if_blank=_flag('set_wholesale_if_blank'),
        )


class BulkPriceService:
    """
    Service for the bulk price update tool.
    """

    def __init__(
        self,
        backend: BackendFunctions,
        products: ProductRepository,
        categories: ITableRepository,
        audit_service: AuditService
    ):
        self.backend = backend
        self.products = products
        self.categories = categories
        self.audit_service = audit_service

    # =========================================================================
    # FILTER
    # =========================================================================

    @staticmethod
    def filter_products(products: List[Dict[str, Any]], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Active products matching every non-empty filter."""
        filters = filters or {}
        result = [p for p in products if p.get('is_active') is not False]
        for key in ('vendor', 'category_id', 'type', 'availability'):
            if filters.get(key):
                result = [p for p in result if p.get(key) == filters[key]]
        needle = (filters.get('size_contains') or '').strip().lower()
        if needle:
            result = [p for p in result if needle in (p.get('size') or '').lower()]
        return result

    def filter_options(self) -> Dict[str, Any]:
        return {
            'vendors': self.products.vendors(),
            'categories': self.categories.select({'is_active': lambda v: v is not False}, order_by='sort_order'),
            'operations': enum_values(PriceOperation),
        }

    # =========================================================================
    # PREVIEW
    # =========================================================================

    @staticmethod
    def preview_row(product: Dict[str, Any], rule: PriceRule) -> Dict[str, Any]:
        old_retail = float(product.get('price') or 0)
        old_wholesale = product.get('wholesale_price')
        new_retail = apply_operation(old_retail, rule.retail_operation, rule.retail_value)
        retail_delta = round(new_retail - old_retail, 2)
        retail_pct = (retail_delta / old_retail * 100) if old_retail > 0 else 0.0

        new_wholesale = wholesale_delta = wholesale_pct = None
        if rule.applies_wholesale and (old_wholesale or rule.set_wholesale_if_blank):
            base = float(old_wholesale) if old_wholesale else old_retail * config.WHOLESALE_DEFAULT_RATIO
            new_wholesale = apply_operation(base, rule.wholesale_operation, rule.wholesale_value)
            wholesale_delta = round(new_wholesale - float(old_wholesale or 0), 2)
            wholesale_pct = (wholesale_delta / float(old_wholesale) * 100) if old_wholesale else 100.0

        return {
            'product': product,
            'new_retail': new_retail,
            'new_wholesale': new_wholesale,
            'retail_delta': retail_delta,
            'retail_pct_change': round(retail_pct, 2),
            'wholesale_delta': wholesale_delta,
            'wholesale_pct_change': None if wholesale_pct is None else round(wholesale_pct, 2),
        }

    @profile_function(name="Bulk price preview")
    def build_preview(self, filters: Dict[str, Any], rule: PriceRule) -> List[Dict[str, Any]]:
        category_names = {c['id']: c.get('name') for c in self.categories.get_all()}
        rows = []
        for product in self.filter_products(self.backend.call('get_products_admin'), filters):
            product = dict(product, category_name=category_names.get(product.get('category_id')))
            rows.append(self.preview_row(product, rule))
        return rows

    @staticmethod
    def summary(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Returns:
            {count, total_retail_delta, avg_retail_pct_change, total_wholesale_delta}
        """
        count = len(rows)
        return {
            'count': count,
            'total_retail_delta': round(sum(r['retail_delta'] for r in rows), 2),
            'avg_retail_pct_change': round(sum(r['retail_pct_change'] for r in rows) / count, 2) if count else 0.0,
            'total_wholesale_delta': round(sum(r['wholesale_delta'] or 0 for r in rows), 2),
        }

    @staticmethod
    def paginate(rows: List[Dict[str, Any]], page: int = 0, page_size: int = None) -> Dict[str, Any]:
        """Zero-based page of preview rows."""
        page_size = page_size or config.BULK_PRICE_PAGE_SIZE
        total_pages = math.ceil(len(rows) / page_size) if rows else 0
        page = max(0, min(int(page or 0), max(total_pages - 1, 0)))
        return {
            'rows': rows[page * page_size:(page + 1) * page_size],
            'page': page,
            'total_pages': total_pages,
            'page_size': page_size,
        }

    # =========================================================================
    # APPLY / ROLLBACK
    # =========================================================================

    @profile_function(name="Bulk price apply")
    def apply_batch(self, rows: List[Dict[str, Any]], rule: PriceRule, confirm_text: str,
                    user_id: str) -> Dict[str, Any]:
        """
        Write the previewed prices.

        Args:
            rows: Preview rows (from build_preview)
            rule: The rule that produced them (stored in the audit rows)
            confirm_text: Must be exactly "CONFIRM"
            user_id: Acting admin

        Returns:
            {'ok': True, 'batch_id': str, 'updated': n}
            or {'ok': False, 'error': ..., 'updated': n}
        """
        if confirm_text != config.BULK_PRICE_CONFIRM_TEXT:
            return {'ok': False, 'error': f'Please type {config.BULK_PRICE_CONFIRM_TEXT} to proceed'}
        if not user_id:
            return {'ok': False, 'error': 'Not authenticated'}
        if not rows:
            return {'ok': False, 'error': 'No products match the selected filters'}

        batch_id = str(uuid.uuid4())
        chunk_size = config.BULK_PRICE_CHUNK_SIZE
        updated = 0

        try:
            for start in range(0, len(rows), chunk_size):
                for row in rows[start:start + chunk_size]:
                    changes = {'price': row['new_retail']}
                    if row['new_wholesale'] is not None:
                        changes['wholesale_price'] = row['new_wholesale']
                    self.products.update_row(row['product']['id'], changes)
                    updated += 1
        except BackendError as e:
            logger.exception("Bulk price update aborted after %d rows (batch %s)", updated, batch_id)
            return {'ok': False, 'error': f'Failed to apply price changes: {e}', 'updated': updated}

        for row in rows:
            product = row['product']
            self.audit_service.log(
                'products', AuditService.BULK_PRICE_UPDATE, product['id'],
                {
                    'price': product.get('price'),
                    'wholesale_price': product.get('wholesale_price'),
                    'batch_id': batch_id,
                },
                {
                    'price': row['new_retail'],
                    'wholesale_price': row['new_wholesale'] if row['new_wholesale'] is not None
                    else product.get('wholesale_price'),
                    'batch_id': batch_id,
                    'retail_operation': rule.retail_operation,
                    'retail_value': rule.retail_value,
                    'wholesale_operation': rule.wholesale_operation if rule.update_wholesale else None,
                    'wholesale_value': rule.wholesale_value if rule.update_wholesale else None,
                },
                user_id,
            )

        logger.info("Bulk price batch %s applied to %d products", batch_id, updated)
        return {'ok': True, 'batch_id': batch_id, 'updated': updated}

    def rollback(self, batch_id: str, user_id: str = None) -> Dict[str, Any]:
        """
        Restore the old prices recorded for a batch.

        Products deleted since the batch was applied are skipped.

        Returns:
            {'ok': True, 'rolled_back': n, 'skipped': n} or {'ok': False, 'error': ...}
        """
        entries = self.audit_service.rows_for_batch(AuditService.BULK_PRICE_UPDATE, batch_id)
        if not entries:
            return {'ok': False, 'error': 'No records found to rollback'}

        restored = skipped = 0
        try:
            for entry in entries:
                old = entry.get('old_values') or {}
                try:
                    self.products.update_row(entry['record_id'], {
                        'price': old.get('price'),
                        'wholesale_price': old.get('wholesale_price'),
                    })
                except NotFoundError:
                    logger.warning("Rollback of batch %s: product %s no longer exists", batch_id, entry['record_id'])
                    skipped += 1
                    continue
                restored += 1
        except BackendError as e:
            logger.exception("Rollback of batch %s failed after %d rows", batch_id, restored)
            return {'ok': False, 'error': f'Failed to rollback changes: {e}'}

        self.audit_service.log('products', AuditService.BULK_PRICE_ROLLBACK, None,
                               {'batch_id': batch_id}, {'rolled_back_count': restored}, user_id)
        logger.info("Bulk price batch %s rolled back (%d products, %d skipped)", batch_id, restored, skipped)
        return {'ok': True, 'rolled_back': restored, 'skipped': skipped}

    def list_batches(self, limit: int = 20) -> List[Dict[str, Any]]:
        """
        Recent batches, newest first.

        Returns:
            [{batch_id, count, created_at, user_id, retail_operation, retail_value, rolled_back}]
        """
        rolled_back = {
            (r.get('old_values') or {}).get('batch_id')
            for r in self.audit_service.search(action=AuditService.BULK_PRICE_ROLLBACK)
        }
        batches: Dict[str, Dict[str, Any]] = {}
        for row in self.audit_service.search(action=AuditService.BULK_PRICE_UPDATE):
            new = row.get('new_values') or {}
            batch_id = new.get('batch_id')
            if not batch_id:
                continue
            batch = batches.setdefault(batch_id, {
                'batch_id': batch_id,
                'count': 0,
                'created_at': row.get('created_at'),
                'user_id': row.get('user_id'),
                'retail_operation': new.get('retail_operation'),
                'retail_value': new.get('retail_value'),
                'rolled_back': batch_id in rolled_back,
            })
            batch['count'] += 1
        return list(batches.values())[:limit]
