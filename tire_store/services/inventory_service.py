# ==============================================================================
# INVENTORY SERVICE
# ==============================================================================
# Stock per product lives in `inventory` rows:
#     {product_id, qty_on_hand, qty_reserved, reorder_level}
# Every change writes an `inventory_movements` row.
#
# Reservations are SOFT: an order is always accepted. When stock is short
# the order is flagged `needs_stock_confirmation` and staff follow up.
#
#   reserve  -> qty_reserved += n            (movement delta 0, "order")
#   release  -> qty_reserved -= n            (movement delta 0, "cancel")
#   fulfill  -> qty_on_hand -= n, reserved -= min(reserved, n)
#                                            (movement delta -n, "fulfillment")
# ==============================================================================

import logging
from typing import Any, Dict, List, Optional

from tire_store import config
from tire_store.models import AvailabilityCheck
from tire_store.repositories.interfaces import ITableRepository
from tire_store.services.audit_service import AuditService
from tire_store.performance_logger import profile_function

logger = logging.getLogger(__name__)


class InventoryService:
    """
    Service for stock levels and reservations.

    Items passed to reserve/release/fulfill are dicts with
    `product_id` and `quantity`.
    """

    def __init__(
        self,
        inventory: ITableRepository,
        movements: ITableRepository,
        orders: ITableRepository,
        products: ITableRepository,
        audit_service: AuditService = None
    ):
        self.inventory = inventory
        self.movements = movements
        self.orders = orders
        self.products = products
        self.audit_service = audit_service

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_stock(self, product_id: str) -> Optional[Dict[str, Any]]:
        """Inventory row for a product (None when untracked)."""
        return self.inventory.maybe_single(product_id=product_id)

    @staticmethod
    def available_qty(row: Optional[Dict[str, Any]]) -> int:
        if not row:
            return 0
        return int(row.get('qty_on_hand') or 0) - int(row.get('qty_reserved') or 0)

    def availability_label(self, product: Dict[str, Any], stock_row: Optional[Dict[str, Any]] = None) -> str:
        """
        "In Stock" when inventory has units available, otherwise the
        product's own availability text.
        """
        row = stock_row if stock_row is not None else self.get_stock(product.get('id'))
        if self.available_qty(row) > 0:
            return 'In Stock'
        return product.get('availability') or config.DEFAULT_AVAILABILITY_LABEL

    def is_low_stock(self, stock_row: Optional[Dict[str, Any]]) -> bool:
        available = self.available_qty(stock_row)
        threshold = int((stock_row or {}).get('reorder_level') or config.LOW_STOCK_THRESHOLD)
        return 0 < available <= threshold

    def stock_map(self) -> Dict[str, Dict[str, Any]]:
        """product_id -> inventory row."""
        return {row.get('product_id'): row for row in self.inventory.get_all()}

    def check_availability(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Check requested quantities against available stock.

        Args:
            items: [{product_id, quantity}]

        Returns:
            One AvailabilityCheck dict per item
        """
        results = []
        stock = self.stock_map()
        for item in items:
            product_id = item.get('product_id')
            requested = int(item.get('quantity') or 0)
            available = self.available_qty(stock.get(product_id))
            is_available = available >= requested
            if is_available:
                label = 'In Stock'
            else:
                product = self.products.get(product_id) or {}
                label = product.get('availability') or config.DEFAULT_AVAILABILITY_LABEL
            results.append(AvailabilityCheck(
                product_id=product_id,
                requested_qty=requested,
                available_qty=max(0, available),
                is_available=is_available,
                availability_label=label,
            ).to_dict())
        return results

    def list_movements(self, product_id: str = None, limit: int = 200) -> List[Dict[str, Any]]:
        filters = {'product_id': product_id} if product_id else None
        return self.movements.select(filters, order_by='created_at', desc=True, limit=limit)

    # =========================================================================
    # RESERVATIONS
    # =========================================================================

    def _log_movement(self, product_id: str, delta: int, reason: str, reference_type: str,
                      reference_id: str, notes: str, user_id: str = None) -> None:
        self.movements.insert({
            'product_id': product_id,
            'delta_qty': delta,
            'reason': reason,
            'reference_type': reference_type,
            'reference_id': reference_id,
            'notes': notes,
            'created_by': user_id,
        })

    @profile_function(name="Reserve order stock")
    def reserve_stock(self, order_id: str, items: List[Dict[str, Any]], user_id: str = None) -> Dict[str, Any]:
        """
        Soft-reserve stock for an order.

        Args:
            order_id: Order being placed
            items: [{product_id, quantity}] (catalog lines only)
            user_id: Acting account (optional)

        Returns:
            {'ok': True, 'reserved_items': [...], 'needs_stock_confirmation': bool}

        Raises:
            BackendError: If a store call fails (no compensation is attempted)
        """
        reserved_items = []
        needs_confirmation = False

        for item in items:
            product_id = item['product_id']
            quantity = int(item.get('quantity') or 0)
            row = self.get_stock(product_id)

            if not row:
                needs_confirmation = True
                continue

            available = self.available_qty(row)
            if available >= quantity:
                self.inventory.update_row(row['id'], {'qty_reserved': int(row.get('qty_reserved') or 0) + quantity})
                self._log_movement(product_id, 0, 'Reserved for order', 'order', order_id,
                                   f'Reserved {quantity} units', user_id)
                reserved_items.append({'product_id': product_id, 'reserved_qty': quantity})
            elif available > 0:
                self.inventory.update_row(row['id'], {'qty_reserved': int(row.get('qty_reserved') or 0) + available})
                self._log_movement(product_id, 0, 'Partial reservation for order', 'order', order_id,
                                   f'Reserved {available} of {quantity} units', user_id)
                reserved_items.append({'product_id': product_id, 'reserved_qty': available})
                needs_confirmation = True
            else:
                needs_confirmation = True

        if needs_confirmation:
            self.orders.update_row(order_id, {'needs_stock_confirmation': True})

        return {'ok': True, 'reserved_items': reserved_items, 'needs_stock_confirmation': needs_confirmation}

    def release_reservation(self, order_id: str, items: List[Dict[str, Any]], user_id: str = None) -> Dict[str, Any]:
        """
        Release reserved units (order cancelled). Items whose reservation is
        smaller than the requested quantity are left untouched.
        """
        released = 0
        for item in items:
            product_id = item['product_id']
            quantity = int(item.get('quantity') or 0)
            row = self.get_stock(product_id)
            if row and int(row.get('qty_reserved') or 0) >= quantity:
                new_reserved = max(0, int(row.get('qty_reserved') or 0) - quantity)
                self.inventory.update_row(row['id'], {'qty_reserved': new_reserved})
                self._log_movement(product_id, 0, 'Reservation released - order cancelled', 'cancel',
                                   order_id, f'Released {quantity} units', user_id)
                released += 1
        return {'ok': True, 'released': released}

    def fulfill_order(self, order_id: str, items: List[Dict[str, Any]], user_id: str = None) -> Dict[str, Any]:
        """Decrement on-hand (and reserved) stock for a completed order."""
        fulfilled = 0
        for item in items:
            product_id = item['product_id']
            quantity = int(item.get('quantity') or 0)
            row = self.get_stock(product_id)
            if not row:
                continue
            on_hand = int(row.get('qty_on_hand') or 0)
            reserved = int(row.get('qty_reserved') or 0)
            was_reserved = min(reserved, quantity)
            self.inventory.update_row(row['id'], {
                'qty_on_hand': max(0, on_hand - quantity),
                'qty_reserved': max(0, reserved - was_reserved),
            })
            self._log_movement(product_id, -quantity, 'Order fulfilled', 'fulfillment', order_id,
                               f'Shipped/delivered {quantity} units', user_id)
            fulfilled += 1
        return {'ok': True, 'fulfilled': fulfilled}

    # =========================================================================
    # MANUAL ADJUSTMENTS (admin)
    # =========================================================================

    def adjust_stock(self, product_id: str, delta: int, reason: str, user_id: str = None,
                     reorder_level: int = None) -> Dict[str, Any]:
        """
        Add or remove on-hand units.

        Args:
            product_id: Product to adjust
            delta: Units to add (positive) or remove (negative)
            reason: Free-text reason (required)
            user_id: Acting admin
            reorder_level: Optional new reorder level
        """
        if not self.products.get(product_id):
            return {'ok': False, 'error': 'Product not found'}
        if not (reason or '').strip():
            return {'ok': False, 'error': 'A reason is required'}
        try:
            delta = int(delta)
        except (TypeError, ValueError):
            return {'ok': False, 'error': 'Quantity must be a whole number'}

        row = self.get_stock(product_id)
        if row is None:
            if delta < 0:
                return {'ok': False, 'error': 'Cannot remove stock from an untracked product'}
            row = self.inventory.insert({
                'product_id': product_id,
                'qty_on_hand': 0,
                'qty_reserved': 0,
                'reorder_level': config.LOW_STOCK_THRESHOLD,
            })

        on_hand = int(row.get('qty_on_hand') or 0)
        if on_hand + delta < 0:
            return {'ok': False, 'error': f'Insufficient stock. On hand: {on_hand}'}

        changes = {'qty_on_hand': on_hand + delta}
        if reorder_level is not None:
            changes['reorder_level'] = int(reorder_level)
        updated = self.inventory.update_row(row['id'], changes)
        self._log_movement(product_id, delta, reason.strip(), 'adjustment', product_id,
                           f'Manual adjustment of {delta:+d} units', user_id)
        if self.audit_service:
            self.audit_service.log('inventory', AuditService.STOCK_ADJUST, row['id'],
                                   {'qty_on_hand': on_hand}, {'qty_on_hand': on_hand + delta, 'reason': reason},
                                   user_id)
        return {'ok': True, 'inventory': updated}
