# ==============================================================================
# BACKEND FUNCTIONS (named RPCs)
# ==============================================================================
# Server-side functions callable by name, the way the data store exposes
# stored procedures:
#
#   validate_promo_code(code, subtotal)
#   get_products_public()
#   get_products_admin()
#   is_admin_or_staff(user_id)
#   is_approved_dealer(user_id)
#
# They read tables directly and never write.
# ==============================================================================

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from tire_store.repositories.base import BackendError
from tire_store.repositories.table_repository import TableRepository
from tire_store.repositories.user_repository import UserRepository

# Columns hidden from the public catalog
PRIVATE_PRODUCT_COLUMNS = ('wholesale_price',)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class BackendFunctions:
    """
    Named read-only functions over the table store.

    Usage:
        rpc = BackendFunctions(tables, user_repo)
        result = rpc.call('validate_promo_code', code='SAVE10', subtotal=400)
    """

    def __init__(
        self,
        table_getter: Callable[[str], TableRepository],
        user_repo: UserRepository
    ):
        """
        Args:
            table_getter: Returns the repository for a table name
            user_repo: Account repository (roles)
        """
        self._table = table_getter
        self.user_repo = user_repo
        self._functions: Dict[str, Callable[..., Any]] = {
            'validate_promo_code': self.validate_promo_code,
            'get_products_public': self.get_products_public,
            'get_products_admin': self.get_products_admin,
            'is_admin_or_staff': self.is_admin_or_staff,
            'is_approved_dealer': self.is_approved_dealer,
        }

    def call(self, name: str, **params) -> Any:
        """
        Invoke a function by name.

        Raises:
            BackendError: Unknown function
        """
        function = self._functions.get(name)
        if function is None:
            raise BackendError(f"Unknown function: {name}", table='rpc')
        return function(**params)

    # =========================================================================
    # PROMO CODES
    # =========================================================================

    def validate_promo_code(self, code: str, subtotal: float, now: datetime = None) -> Dict[str, Any]:
        """
        Validate a promo code against an order subtotal.

        Returns:
            {is_valid, id, code, discount_type, discount_value,
             discount_amount, error_message}
        """
        result = {
            'is_valid': False,
            'id': None,
            'code': None,
            'discount_type': None,
            'discount_value': 0,
            'discount_amount': 0,
            'error_message': None,
        }
        needle = (code or '').strip().upper()
        promo = None
        if needle:
            promo = next(
                (p for p in self._table('promo_codes').get_all() if (p.get('code') or '').upper() == needle),
                None
            )
        if promo is None:
            result['error_message'] = 'Invalid promo code'
            return result

        now = now or datetime.now(timezone.utc)
        subtotal = float(subtotal or 0)
        valid_from = _parse_timestamp(promo.get('valid_from'))
        valid_until = _parse_timestamp(promo.get('valid_until'))
        max_uses = promo.get('max_uses')
        min_order = float(promo.get('min_order_value') or 0)

        if not promo.get('is_active', True):
            result['error_message'] = 'This promo code is no longer active'
        elif valid_from and now < valid_from:
            result['error_message'] = 'This promo code is not active yet'
        elif valid_until and now > valid_until:
            result['error_message'] = 'This promo code has expired'
        elif max_uses is not None and int(promo.get('used_count') or 0) >= int(max_uses):
            result['error_message'] = 'This promo code has reached its usage limit'
        elif subtotal < min_order:
            result['error_message'] = f'Minimum order of ${min_order:.2f} required'
        if result['error_message']:
            return result

        value = float(promo.get('discount_value') or 0)
        if promo.get('discount_type') == 'percentage':
            amount = subtotal * value / 100
        else:
            amount = value
        amount = round(min(max(amount, 0.0), subtotal), 2)

        result.update({
            'is_valid': True,
            'id': promo['id'],
            'code': promo['code'],
            'discount_type': promo.get('discount_type'),
            'discount_value': value,
            'discount_amount': amount,
        })
        return result

    # =========================================================================
    # CATALOG
    # =========================================================================

    def get_products_public(self) -> List[Dict[str, Any]]:
        """Active products without wholesale pricing."""
        products = self._table('products').active(order_by='size')
        for product in products:
            for column in PRIVATE_PRODUCT_COLUMNS:
                product.pop(column, None)
        return products

    def get_products_admin(self) -> List[Dict[str, Any]]:
        """Every product with every column."""
        return self._table('products').select(order_by='size')

    # =========================================================================
    # ROLES
    # =========================================================================

    def is_admin_or_staff(self, user_id: str) -> bool:
        user = self.user_repo.get_user(user_id) if user_id else None
        return bool(user) and user.get('role') in ('admin', 'staff')

    def is_approved_dealer(self, user_id: str) -> bool:
        if not user_id:
            return False
        dealer = self._table('dealers').maybe_single(user_id=user_id)
        return bool(dealer) and dealer.get('status') == 'approved'
