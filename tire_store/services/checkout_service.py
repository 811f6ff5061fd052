# ==============================================================================
# CHECKOUT SERVICE
# ==============================================================================
# Four linear steps:
#   1 Cart review -> 2 Fulfillment -> 3 Contact info -> 4 Confirmation
#
# Placing an order is a sequence of independent store calls with no
# compensation when a later one fails:
#   1. customers row
#   2. orders row
#   3. order_items rows
#   4. referral redemption / promo usage
#   5. soft stock reservation
#   6. review request            (failure logged, never fatal)
#   7. send-notification call    (failure logged, never fatal)
# ==============================================================================

import logging
import random
from datetime import datetime
from typing import Any, Dict, List, Optional

from tire_store import config
from tire_store.models import ADDRESS_REQUIRED_METHODS, CartItem, FulfillmentMethod, enum_values
from tire_store.repositories.base import BackendError
from tire_store.repositories.interfaces import ITableRepository
from tire_store.services.inventory_service import InventoryService
from tire_store.services.notification_service import NotificationService
from tire_store.services.promo_service import PromoService
from tire_store.services.review_service import ReviewService
from tire_store.services.totals import checkout_totals, tire_count, cart_subtotal
from tire_store.performance_logger import profile_function

logger = logging.getLogger(__name__)

STEPS = [
    (1, 'Cart'),
    (2, 'Fulfillment'),
    (3, 'Contact Info'),
    (4, 'Confirm'),
]
FIRST_STEP = STEPS[0][0]
LAST_STEP = STEPS[-1][0]

FULFILLMENT_LABELS = {
    FulfillmentMethod.PICKUP.value: 'In-Store Pickup',
    FulfillmentMethod.INSTALLATION.value: 'Installation',
    FulfillmentMethod.DELIVERY.value: 'Delivery',
    FulfillmentMethod.SHIPPING.value: 'Shipping',
}

CONTACT_FIELDS = ('name', 'email', 'phone', 'preferred_contact', 'address', 'city', 'postal_code', 'notes')
CONTACT_METHODS = ('call', 'whatsapp', 'email')

# Draws before giving up on a free order number
ORDER_NUMBER_ATTEMPTS = 20


class CheckoutError(Exception):
    """Raised when an order cannot be placed. Earlier rows stay written."""

    def __init__(self, message: str, order_number: str = None):
        super().__init__(message)
        self.message = message
        self.order_number = order_number


def generate_order_number(now: datetime = None) -> str:
    """KT-YYYYMMDD-NNNN with a random 4-digit suffix."""
    now = now or datetime.now()
    return f"{config.ORDER_NUMBER_PREFIX}-{now.strftime('%Y%m%d')}-{random.randint(0, 9999):04d}"


def clean_contact(form: Dict[str, Any]) -> Dict[str, str]:
    """Keep only the contact form fields, stripped."""
    info = {key: (form.get(key) or '').strip() for key in CONTACT_FIELDS}
    if info['preferred_contact'] not in CONTACT_METHODS:
        info['preferred_contact'] = 'call'
    return info


class CheckoutService:
    """
    Service for the checkout wizard and order placement.
    """

    def __init__(
        self,
        customers: ITableRepository,
        orders: ITableRepository,
        order_items: ITableRepository,
        promo_service: PromoService,
        inventory_service: InventoryService,
        review_service: ReviewService,
        notification_service: NotificationService
    ):
        self.customers = customers
        self.orders = orders
        self.order_items = order_items
        self.promo_service = promo_service
        self.inventory_service = inventory_service
        self.review_service = review_service
        self.notification_service = notification_service

    # =========================================================================
    # WIZARD
    # =========================================================================

    @staticmethod
    def validate_step(step: int, items: List[Dict[str, Any]], fulfillment: str,
                      info: Dict[str, Any]) -> Dict[str, Any]:
        """
        Field-presence check for leaving a step.

        Returns:
            {'ok': True} or {'ok': False, 'error': ...}
        """
        if step == 1 and not items:
            return {'ok': False, 'error': 'Your cart is empty'}
        if step == 2 and fulfillment not in enum_values(FulfillmentMethod):
            return {'ok': False, 'error': 'Please choose a fulfillment method'}
        if step == 3:
            info = info or {}
            if not info.get('name') or not info.get('email') or not info.get('phone'):
                return {'ok': False, 'error': 'Please fill in all required fields.'}
            if fulfillment in ADDRESS_REQUIRED_METHODS and (not info.get('address') or not info.get('city')):
                return {'ok': False, 'error': 'Please provide your delivery address.'}
        return {'ok': True}

    def navigate(self, current: int, target: int, items: List[Dict[str, Any]], fulfillment: str,
                 info: Dict[str, Any]) -> Dict[str, Any]:
        """
        Move between steps. Going back is always allowed; going forward only
        one step at a time and only when the current step validates.

        Returns:
            {'ok': True, 'step': n} or {'ok': False, 'error': ..., 'step': current}
        """
        target = max(FIRST_STEP, min(int(target), LAST_STEP))
        if target <= current:
            return {'ok': True, 'step': target}
        if target > current + 1:
            return {'ok': False, 'error': 'Please complete the current step first', 'step': current}
        result = self.validate_step(current, items, fulfillment, info)
        if not result['ok']:
            return dict(result, step=current)
        return {'ok': True, 'step': target}

    # =========================================================================
    # TOTALS / CODES
    # =========================================================================

    @staticmethod
    def compute_totals(items: List[Dict[str, Any]], applied: Optional[Dict[str, Any]] = None) -> Dict[str, float]:
        discount = float((applied or {}).get('discount_amount') or 0)
        return checkout_totals(cart_subtotal(items), tire_count(items), discount)

    def apply_code(self, code: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self.promo_service.validate_code(code, cart_subtotal(items))

    def stock_warnings(self, items: List[Dict[str, Any]]) -> List[Dict[str, str]]:
        """Lines that may not be in stock (shown on the confirmation step)."""
        checks = [{'product_id': i['product_id'], 'quantity': i['quantity']}
                  for i in items if CartItem.from_dict(i).is_catalog_item]
        return [
            {'product_id': c['product_id'],
             'message': f"{c['availability_label']} - We'll confirm availability"}
            for c in self.inventory_service.check_availability(checks)
            if not c['is_available']
        ]

    # =========================================================================
    # ORDER PLACEMENT
    # =========================================================================

    def unused_order_number(self) -> str:
        """
        Draw order numbers until one is free.

        Raises:
            CheckoutError: No free number after ORDER_NUMBER_ATTEMPTS draws
        """
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = generate_order_number()
            if self.orders.maybe_single(order_number=candidate) is None:
                return candidate
            logger.warning("Order number %s already used, drawing another", candidate)
        raise CheckoutError('Could not assign an order number. Please try again or call us.')

    @profile_function(name="Place order")
    def submit_order(
        self,
        items: List[Dict[str, Any]],
        fulfillment: str,
        info: Dict[str, Any],
        applied: Optional[Dict[str, Any]] = None,
        user_id: str = None,
        guest_id: str = None
    ) -> Dict[str, Any]:
        """
        Place an order.

        Args:
            items: Cart lines (CartItem dicts)
            fulfillment: Fulfillment method
            info: Contact info (name, email, phone, preferred_contact, address...)
            applied: Applied promo/referral code (from apply_code)
            user_id: Signed-in account (None for guests)
            guest_id: Anonymous id used when user_id is None

        Returns:
            {'ok': True, 'order': {...}, 'needs_stock_confirmation': bool, 'totals': {...}}

        Raises:
            CheckoutError: When validation or any of steps 1-5 fails
        """
        for step in (1, 2, 3):
            check = self.validate_step(step, items, fulfillment, info)
            if not check['ok']:
                raise CheckoutError(check['error'])

        lines = [CartItem.from_dict(i) for i in items]
        totals = self.compute_totals(items, applied)
        order_number = self.unused_order_number()

        try:
            # 1. Customer
            customer = self.customers.insert({
                'user_id': user_id or None,
                'guest_id': None if user_id else guest_id,
                'name': info['name'],
                'email': info['email'],
                'phone': info['phone'],
                'preferred_contact': info.get('preferred_contact') or 'call',
                'address': info.get('address') or None,
                'city': info.get('city') or None,
                'postal_code': info.get('postal_code') or None,
                'notes': info.get('notes') or None,
            })

            # 2. Order
            order = self.orders.insert({
                'order_number': order_number,
                'user_id': user_id or None,
                'guest_id': None if user_id else guest_id,
                'customer_id': customer['id'],
                'fulfillment_method': fulfillment,
                'status': 'pending',
                'subtotal': totals['subtotal'],
                'tire_recycling_levy': totals['levy'],
                'gst': totals['gst'],
                'total': totals['total'],
                'payment_method': config.PAYMENT_METHOD,
                'notes': info.get('notes') or None,
                'promo_code_id': applied['id'] if applied and not applied.get('is_referral') else None,
                'discount_amount': totals['discount'],
                'needs_stock_confirmation': False,
            })

            # 3. Items
            self.order_items.insert_many([{
                'order_id': order['id'],
                'product_id': line.product_id if line.is_catalog_item else None,
                'size': line.size,
                'description': line.description,
                'vendor': line.vendor,
                'quantity': line.quantity,
                'unit_price': line.price,
                'total_price': line.line_total,
            } for line in lines])

            # 4. Codes
            if applied and applied.get('is_referral'):
                self.promo_service.record_redemption(applied['id'], info['email'], order['id'])
            elif applied:
                self.promo_service.increment_usage(applied['id'])

            # 5. Soft reservation
            needs_confirmation = False
            catalog_lines = [{'product_id': line.product_id, 'quantity': line.quantity}
                             for line in lines if line.is_catalog_item]
            if catalog_lines:
                reservation = self.inventory_service.reserve_stock(order['id'], catalog_lines, user_id)
                needs_confirmation = reservation['needs_stock_confirmation']
        except BackendError as e:
            logger.exception("Order submission failed (%s)", order_number)
            raise CheckoutError(
                str(e) or 'There was an error placing your order. Please try again or call us.',
                order_number,
            ) from e

        order['needs_stock_confirmation'] = needs_confirmation

        # 6. Review request
        self.review_service.schedule_review_request(order['id'], info['email'], info['name'], order_number)

        # 7. Confirmation notification
        try:
            self.notification_service.invoke_function('send-notification', {
                'type': 'order_confirmation',
                'recipientEmail': info['email'],
                'recipientName': info['name'],
                'data': {
                    'orderNumber': order_number,
                    'total': f"{totals['total']:.2f}",
                    'fulfillmentMethod': FULFILLMENT_LABELS.get(fulfillment, fulfillment),
                    'preferredContact': info.get('preferred_contact') or 'call',
                    'recipientPhone': info['phone'],
                },
            })
        except BackendError:
            logger.exception("Failed to send order notification for %s", order_number)

        logger.info("Order %s placed (%d tires, total %.2f)", order_number, tire_count(items), totals['total'])
        return {'ok': True, 'order': order, 'needs_stock_confirmation': needs_confirmation, 'totals': totals}

    @staticmethod
    def placed_message(order_number: str, needs_confirmation: bool) -> Dict[str, str]:
        """Title / description for the post-order flash."""
        if needs_confirmation:
            return {
                'title': 'Order Placed - Confirmation Pending',
                'description': f"Order #{order_number} received. We'll confirm stock availability "
                               f"and contact you shortly.",
            }
        return {
            'title': 'Order Placed Successfully!',
            'description': f"Order #{order_number} - We'll contact you shortly.",
        }
