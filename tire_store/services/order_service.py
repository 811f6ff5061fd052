# ==============================================================================
# ORDER SERVICE
# ==============================================================================
# Back-office order management and the customer order dashboard.
#
# Status side effects:
#   -> cancelled : release soft reservations
#   -> completed : decrement on-hand stock
# Every status change writes a STATUS_CHANGE audit row.
#
# Claiming a guest order links it to an account after verifying the
# contact (email, case-insensitive, or phone, digits only).
# ==============================================================================

import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple

from tire_store import config
from tire_store.models import OrderStatus, enum_values
from tire_store.repositories.interfaces import ITableRepository
from tire_store.services.audit_service import AuditService
from tire_store.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r'\D')


def digits_only(value: str) -> str:
    return _NON_DIGITS.sub('', value or '')


def contact_matches(customer: Dict[str, Any], contact: str) -> bool:
    """
    True when the contact equals the customer's email (case-insensitive)
    or phone (digits only).
    """
    contact = contact or ''
    email = (customer.get('email') or '').lower()
    if email and email == contact.strip().lower():
        return True
    phone = digits_only(customer.get('phone'))
    return bool(phone) and phone == digits_only(contact)


def check_rate_limit(attempts: List[float], now: float = None,
                     limit: int = None, window: int = None) -> Tuple[bool, List[float]]:
    """
    Sliding-window attempt limiter.

    Args:
        attempts: Previous attempt timestamps (seconds)
        now: Current time (defaults to time.time())

    Returns:
        (allowed, attempts to store). A refused attempt is not recorded.
    """
    now = time.time() if now is None else now
    limit = limit or config.CLAIM_MAX_ATTEMPTS
    window = window or config.CLAIM_WINDOW_SECONDS
    recent = [t for t in (attempts or []) if now - t < window]
    if len(recent) >= limit:
        return False, recent
    return True, recent + [now]


class OrderService:
    """
    Service for orders (admin list/status, customer dashboard, claims).
    """

    def __init__(
        self,
        orders: ITableRepository,
        order_items: ITableRepository,
        customers: ITableRepository,
        claimed_orders: ITableRepository,
        bookings: ITableRepository,
        inventory_service: InventoryService,
        audit_service: AuditService
    ):
        self.orders = orders
        self.order_items = order_items
        self.customers = customers
        self.claimed_orders = claimed_orders
        self.bookings = bookings
        self.inventory_service = inventory_service
        self.audit_service = audit_service

    # =========================================================================
    # QUERIES
    # =========================================================================

    def _with_customer(self, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        customers = {c['id']: c for c in self.customers.get_all()}
        for order in orders:
            customer = customers.get(order.get('customer_id')) or {}
            order['customer'] = {key: customer.get(key) for key in ('name', 'email', 'phone', 'address', 'city')}
        return orders

    def list_orders(self, status: str = None, search: str = None) -> List[Dict[str, Any]]:
        """
        Newest-first orders with their customer.

        Args:
            status: Exact status ('all' or None for every status)
            search: Substring of order number, customer name or email
        """
        filters = {'status': status} if status and status != 'all' else None
        orders = self._with_customer(self.orders.select(filters, order_by='created_at', desc=True))
        needle = (search or '').strip().lower()
        if not needle:
            return orders
        return [
            o for o in orders
            if needle in (o.get('order_number') or '').lower()
            or needle in (o['customer'].get('name') or '').lower()
            or needle in (o['customer'].get('email') or '').lower()
        ]

    def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        """Order with customer and items, or None."""
        order = self.orders.get(order_id)
        if not order:
            return None
        self._with_customer([order])
        order['items'] = self.get_items(order_id)
        return order

    def get_items(self, order_id: str) -> List[Dict[str, Any]]:
        return self.order_items.select({'order_id': order_id})

    def status_counts(self) -> Dict[str, int]:
        counts = {status: 0 for status in enum_values(OrderStatus)}
        for order in self.orders.get_all():
            if order.get('status') in counts:
                counts[order['status']] += 1
        return counts

    # =========================================================================
    # STATUS
    # =========================================================================

    def update_status(self, order_id: str, new_status: str, user_id: str = None) -> Dict[str, Any]:
        """
        Change an order's status with its stock side effects.

        Returns:
            {'ok': True, 'order': {...}} or {'ok': False, 'error': ...}
        """
        if new_status not in enum_values(OrderStatus):
            return {'ok': False, 'error': f'Invalid status: {new_status}'}
        order = self.orders.get(order_id)
        if not order:
            return {'ok': False, 'error': 'Order not found'}

        old_status = order.get('status') or OrderStatus.PENDING.value
        if old_status == new_status:
            return {'ok': True, 'order': order}

        updated = self.orders.update_row(order_id, {'status': new_status})

        stock_lines = [{'product_id': i['product_id'], 'quantity': i.get('quantity') or 0}
                       for i in self.get_items(order_id) if i.get('product_id')]
        if stock_lines and new_status == OrderStatus.CANCELLED.value:
            self.inventory_service.release_reservation(order_id, stock_lines, user_id)
        elif stock_lines and new_status == OrderStatus.COMPLETED.value:
            self.inventory_service.fulfill_order(order_id, stock_lines, user_id)

        self.audit_service.log_status_change('orders', order_id, old_status, new_status, user_id)
        logger.info("Order %s: %s -> %s", order.get('order_number'), old_status, new_status)
        return {'ok': True, 'order': updated}

    def confirm_stock(self, order_id: str) -> Dict[str, Any]:
        """Clear the needs_stock_confirmation flag once staff confirmed."""
        if not self.orders.get(order_id):
            return {'ok': False, 'error': 'Order not found'}
        return {'ok': True, 'order': self.orders.update_row(order_id, {'needs_stock_confirmation': False})}

    # =========================================================================
    # CUSTOMER DASHBOARD
    # =========================================================================

    def customer_orders(self, user_id: str) -> List[Dict[str, Any]]:
        """Own orders plus claimed orders, deduplicated, newest first."""
        own = self.orders.select({'user_id': user_id})
        claimed_ids = {c['order_id'] for c in self.claimed_orders.select({'user_id': user_id})}
        seen = {o['id'] for o in own}
        claimed = [o for o in self.orders.select({'id': list(claimed_ids)}) if o['id'] not in seen]
        merged = own + claimed
        merged.sort(key=lambda o: o.get('created_at') or '', reverse=True)
        return merged

    def customer_bookings(self, user_id: str) -> List[Dict[str, Any]]:
        return self.bookings.select({'user_id': user_id}, order_by='created_at', desc=True)

    def claim_order(self, user_id: str, order_number: str, contact: str) -> Dict[str, Any]:
        """
        Link a guest order to an account.

        Returns:
            {'ok': True, 'claim': {...}}
            {'ok': False, 'error': ..., 'already_linked': bool}
        """
        number = (order_number or '').strip().upper()
        if not number or not (contact or '').strip():
            return {'ok': False, 'error': 'Please enter your order number and email or phone.'}

        order = self.orders.maybe_single(order_number=number)
        if not order:
            return {'ok': False, 'error': 'Order not found. Please check your order number and try again.'}

        if order.get('user_id') == user_id:
            return {'ok': False, 'already_linked': True,
                    'error': 'Already linked: this order is already linked to your account.'}

        existing_claim = self.claimed_orders.maybe_single(order_id=order['id'])
        if existing_claim and existing_claim.get('user_id') == user_id:
            return {'ok': False, 'already_linked': True,
                    'error': 'Already linked: this order is already linked to your account.'}
        if existing_claim:
            return {'ok': False, 'error': 'This order has already been claimed by another account.'}

        if order.get('customer_id'):
            customer = self.customers.get(order['customer_id'])
            if customer and not contact_matches(customer, contact):
                return {'ok': False,
                        'error': "Verification failed: the email or phone doesn't match "
                                 "the order's contact information."}

        claim = self.claimed_orders.insert({
            'order_id': order['id'],
            'user_id': user_id,
            'verification_method': 'email' if '@' in contact else 'phone',
        })
        logger.info("Order %s claimed by %s", number, user_id)
        return {'ok': True, 'claim': claim}
