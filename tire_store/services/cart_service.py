# ==============================================================================
# CART SERVICE
# ==============================================================================
# The cart lives in the Flask session, together with the checkout choices
# that survive page reloads:
#   session['cart']          -> [CartItem dicts]
#   session['fulfillment']   -> pickup | installation | delivery | shipping
#   session['customer_info'] -> contact form values
#   session['guest_id']      -> guest_<ms>_<random>
# ==============================================================================

import random
import string
import time
from typing import Any, Dict, List, Optional

from flask import session

from tire_store.models import CartItem, FulfillmentMethod, enum_values
from tire_store.services.totals import cart_subtotal, tire_count

DEFAULT_FULFILLMENT = FulfillmentMethod.DELIVERY.value


class CartService:
    """
    Service for the shopping cart.

    Responsibilities:
    - Add / update / remove items (merging by product)
    - Totals (item count, subtotal)
    - Fulfillment choice and saved customer info
    - Guest identifier for anonymous orders
    """

    CART_KEY = 'cart'
    FULFILLMENT_KEY = 'fulfillment'
    CUSTOMER_KEY = 'customer_info'
    GUEST_KEY = 'guest_id'

    def _get_items(self) -> List[Dict[str, Any]]:
        return list(session.get(self.CART_KEY, []))

    def _save_items(self, items: List[Dict[str, Any]]) -> None:
        session[self.CART_KEY] = items
        session.modified = True

    # =========================================================================
    # READ
    # =========================================================================

    def get_cart(self) -> Dict[str, Any]:
        """
        Returns:
            {items, item_count, subtotal, fulfillment}
        """
        items = self._get_items()
        return {
            'items': items,
            'item_count': tire_count(items),
            'subtotal': cart_subtotal(items),
            'fulfillment': self.get_fulfillment(),
        }

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def add_item(self, product: Dict[str, Any], quantity: int = 1, price: float = None) -> Dict[str, Any]:
        """
        Add a product, or increase its quantity if already in the cart.

        Args:
            product: Product row (size, description, vendor, type...)
            quantity: Units to add
            price: Resolved unit price (dealer wholesale or retail)

        Returns:
            {'ok': True, 'cart': {...}} or {'ok': False, 'error': ...}
        """
        if not product or not product.get('id'):
            return {'ok': False, 'error': 'Product not found'}
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            return {'ok': False, 'error': 'Quantity must be a whole number'}
        if quantity < 1:
            return {'ok': False, 'error': 'Quantity must be at least 1'}

        unit_price = float(price if price is not None else product.get('price') or 0)
        items = self._get_items()
        for item in items:
            if item.get('product_id') == product['id']:
                item['quantity'] = int(item.get('quantity') or 0) + quantity
                break
        else:
            items.append(CartItem(
                id=product['id'],
                product_id=product['id'],
                size=product.get('size', ''),
                description=product.get('description', ''),
                vendor=product.get('vendor') or '',
                type=product.get('type') or '',
                price=round(unit_price, 2),
                quantity=quantity,
                availability=product.get('availability_label') or product.get('availability') or '',
            ).to_dict())

        self._save_items(items)
        return {'ok': True, 'cart': self.get_cart()}

    def add_custom_item(self, size: str, description: str, price: float, quantity: int = 1) -> Dict[str, Any]:
        """Ad-hoc line not tied to a catalog product (id prefixed "cart_")."""
        if not (size or '').strip():
            return {'ok': False, 'error': 'Size is required'}
        item_id = f'cart_{int(time.time() * 1000)}'
        items = self._get_items()
        items.append(CartItem(
            id=item_id, product_id=item_id, size=size.strip(), description=description or '',
            price=round(float(price or 0), 2), quantity=max(1, int(quantity or 1)),
        ).to_dict())
        self._save_items(items)
        return {'ok': True, 'cart': self.get_cart()}

    def update_quantity(self, item_id: str, quantity: int) -> Dict[str, Any]:
        """A quantity below 1 removes the item."""
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            return {'ok': False, 'error': 'Quantity must be a whole number'}
        if quantity < 1:
            return self.remove_item(item_id)

        items = self._get_items()
        for item in items:
            if str(item.get('id')) == str(item_id):
                item['quantity'] = quantity
                self._save_items(items)
                return {'ok': True, 'cart': self.get_cart()}
        return {'ok': False, 'error': 'Item not in cart'}

    def remove_item(self, item_id: str) -> Dict[str, Any]:
        items = self._get_items()
        remaining = [i for i in items if str(i.get('id')) != str(item_id)]
        if len(remaining) == len(items):
            return {'ok': False, 'error': 'Item not in cart'}
        self._save_items(remaining)
        return {'ok': True, 'cart': self.get_cart()}

    def clear(self) -> None:
        """Empty the cart and forget checkout choices."""
        session.pop(self.CART_KEY, None)
        session.pop(self.CUSTOMER_KEY, None)
        session.pop('applied_code', None)
        session[self.FULFILLMENT_KEY] = DEFAULT_FULFILLMENT
        session.modified = True

    # =========================================================================
    # CHECKOUT STATE
    # =========================================================================

    def get_fulfillment(self) -> str:
        return session.get(self.FULFILLMENT_KEY) or DEFAULT_FULFILLMENT

    def set_fulfillment(self, method: str) -> Dict[str, Any]:
        if method not in enum_values(FulfillmentMethod):
            return {'ok': False, 'error': 'Please choose a fulfillment method'}
        session[self.FULFILLMENT_KEY] = method
        session.modified = True
        return {'ok': True}

    def get_customer_info(self) -> Dict[str, Any]:
        return dict(session.get(self.CUSTOMER_KEY) or {})

    def set_customer_info(self, info: Dict[str, Any]) -> None:
        session[self.CUSTOMER_KEY] = info
        session.modified = True

    def get_guest_id(self) -> str:
        """Stable anonymous id for this browser session."""
        guest_id = session.get(self.GUEST_KEY)
        if not guest_id:
            suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
            guest_id = f'guest_{int(time.time() * 1000)}_{suffix}'
            session[self.GUEST_KEY] = guest_id
            session.modified = True
        return guest_id

    def get_applied_code(self) -> Optional[Dict[str, Any]]:
        return session.get('applied_code')

    def set_applied_code(self, applied: Optional[Dict[str, Any]]) -> None:
        if applied is None:
            session.pop('applied_code', None)
        else:
            session['applied_code'] = applied
        session.modified = True
