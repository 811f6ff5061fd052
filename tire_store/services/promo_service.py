# ==============================================================================
# PROMO & REFERRAL SERVICE
# ==============================================================================
# Checkout code validation is a best-effort sequential check:
#   1. validate_promo_code RPC (promo_codes table)
#   2. referral_codes lookup (case-insensitive, status "active")
# The first valid match wins. A referral match is a fixed discount equal to
# the code's discount_amount.
# ==============================================================================

import logging
from typing import Any, Dict, List, Optional

from tire_store.models import DiscountType, enum_values
from tire_store.repositories.base import BackendError
from tire_store.repositories.backend_functions import BackendFunctions
from tire_store.repositories.interfaces import ITableRepository

logger = logging.getLogger(__name__)

REFERRAL_STATUSES = ('active', 'inactive')
REWARD_STATUSES = ('pending', 'paid', 'cancelled')


def _normalise_code(code: str) -> str:
    return ''.join((code or '').split()).upper()


class PromoService:
    """
    Service for promo codes, referral codes and referral redemptions.
    """

    def __init__(
        self,
        backend: BackendFunctions,
        promo_codes: ITableRepository,
        referral_codes: ITableRepository,
        redemptions: ITableRepository
    ):
        self.backend = backend
        self.promo_codes = promo_codes
        self.referral_codes = referral_codes
        self.redemptions = redemptions

    # =========================================================================
    # CHECKOUT VALIDATION
    # =========================================================================

    def validate_code(self, code: str, subtotal: float) -> Dict[str, Any]:
        """
        Validate a promo or referral code for the current subtotal.

        Returns:
            {'ok': True, 'applied': {id, code, discount_type, discount_value,
                                     discount_amount, is_referral}}
            or {'ok': False, 'error': ...}
        """
        code = (code or '').strip()
        if not code:
            return {'ok': False, 'error': 'Please enter a code'}

        try:
            result = self.backend.call('validate_promo_code', code=code, subtotal=subtotal)
            if result.get('is_valid'):
                return {'ok': True, 'applied': {
                    'id': result['id'],
                    'code': result['code'],
                    'discount_type': result['discount_type'],
                    'discount_value': result['discount_value'],
                    'discount_amount': result['discount_amount'],
                    'is_referral': False,
                }}

            needle = code.upper()
            referral = self.referral_codes.maybe_single(
                code=lambda value: (value or '').upper() == needle,
                status='active',
            )
        except BackendError:
            logger.exception("Code validation failed for %s", code)
            return {'ok': False, 'error': 'Failed to validate code'}

        if referral:
            amount = round(float(referral.get('discount_amount') or 0), 2)
            return {'ok': True, 'applied': {
                'id': referral['id'],
                'code': referral['code'],
                'discount_type': DiscountType.FIXED.value,
                'discount_value': amount,
                'discount_amount': round(min(amount, float(subtotal or 0)), 2),
                'is_referral': True,
            }}
        return {'ok': False, 'error': result.get('error_message') or 'Invalid code'}

    def increment_usage(self, promo_id: str) -> Optional[Dict[str, Any]]:
        """Count one more use of a promo code."""
        promo = self.promo_codes.get(promo_id)
        if not promo:
            return None
        return self.promo_codes.update_row(promo_id, {'used_count': int(promo.get('used_count') or 0) + 1})

    def record_redemption(self, code_id: str, referred_email: str, order_id: str) -> Dict[str, Any]:
        return self.redemptions.insert({
            'code_id': code_id,
            'referred_email': referred_email,
            'order_id': order_id,
            'reward_status': 'pending',
        })

    # =========================================================================
    # PROMO CODES (admin)
    # =========================================================================

    def list_promos(self) -> List[Dict[str, Any]]:
        return self.promo_codes.select(order_by='created_at', desc=True)

    def save_promo(self, data: Dict[str, Any], promo_id: str = None) -> Dict[str, Any]:
        """
        Create or update a promo code.

        Args:
            data: {code, description, discount_type, discount_value,
                   min_order_value, max_uses, valid_from, valid_until, is_active}
        """
        code = _normalise_code(data.get('code'))
        if not code:
            return {'ok': False, 'error': 'Code is required'}
        discount_type = data.get('discount_type') or DiscountType.PERCENTAGE.value
        if discount_type not in enum_values(DiscountType):
            return {'ok': False, 'error': 'Invalid discount type'}
        try:
            value = float(data.get('discount_value') or 0)
            min_order = float(data.get('min_order_value') or 0)
            max_uses = int(data['max_uses']) if data.get('max_uses') not in (None, '') else None
        except (TypeError, ValueError):
            return {'ok': False, 'error': 'Invalid numeric value'}
        if value <= 0:
            return {'ok': False, 'error': 'Discount value must be greater than 0'}
        if discount_type == DiscountType.PERCENTAGE.value and value > 100:
            return {'ok': False, 'error': 'Percentage cannot exceed 100'}

        duplicate = self.promo_codes.maybe_single(code=code)
        if duplicate and duplicate['id'] != promo_id:
            return {'ok': False, 'error': 'This promo code already exists'}

        row = {
            'code': code,
            'description': data.get('description') or '',
            'discount_type': discount_type,
            'discount_value': value,
            'min_order_value': min_order,
            'max_uses': max_uses,
            'valid_from': data.get('valid_from') or None,
            'valid_until': data.get('valid_until') or None,
            'is_active': data.get('is_active', True) not in (False, 'false', '0', 0),
        }
        if promo_id:
            if not self.promo_codes.get(promo_id):
                return {'ok': False, 'error': 'Promo code not found'}
            promo = self.promo_codes.update_row(promo_id, row)
        else:
            row['used_count'] = 0
            promo = self.promo_codes.insert(row)
        return {'ok': True, 'promo': promo}

    def delete_promo(self, promo_id: str) -> Dict[str, Any]:
        if not self.promo_codes.delete_row(promo_id):
            return {'ok': False, 'error': 'Promo code not found'}
        return {'ok': True}

    # =========================================================================
    # REFERRALS (admin)
    # =========================================================================

    def list_referral_codes(self) -> List[Dict[str, Any]]:
        return self.referral_codes.select(order_by='created_at', desc=True)

    def create_referral_code(self, data: Dict[str, Any]) -> Dict[str, Any]:
        code = _normalise_code(data.get('code'))
        if not code or not (data.get('referrer_name') or '').strip():
            return {'ok': False, 'error': 'Code and referrer name are required'}
        if self.referral_codes.maybe_single(code=lambda v: (v or '').upper() == code):
            return {'ok': False, 'error': 'This referral code already exists. Please choose a unique code.'}
        status = data.get('status') or 'active'
        if status not in REFERRAL_STATUSES:
            return {'ok': False, 'error': 'Invalid status'}
        try:
            reward = float(data.get('reward_amount') or 50)
            discount = float(data.get('discount_amount') or 50)
        except (TypeError, ValueError):
            return {'ok': False, 'error': 'Invalid amount'}
        referral = self.referral_codes.insert({
            'code': code,
            'referrer_name': data['referrer_name'].strip(),
            'referrer_email': data.get('referrer_email') or None,
            'reward_amount': reward,
            'discount_amount': discount,
            'status': status,
        })
        return {'ok': True, 'referral_code': referral}

    def update_referral_status(self, code_id: str, status: str) -> Dict[str, Any]:
        if status not in REFERRAL_STATUSES:
            return {'ok': False, 'error': 'Invalid status'}
        if not self.referral_codes.get(code_id):
            return {'ok': False, 'error': 'Referral code not found'}
        return {'ok': True, 'referral_code': self.referral_codes.update_row(code_id, {'status': status})}

    def delete_referral_code(self, code_id: str) -> Dict[str, Any]:
        if self.redemptions.maybe_single(code_id=code_id):
            return {'ok': False, 'error': 'Failed to delete code. It may have existing redemptions.'}
        if not self.referral_codes.delete_row(code_id):
            return {'ok': False, 'error': 'Referral code not found'}
        return {'ok': True}

    def list_redemptions(self) -> List[Dict[str, Any]]:
        """Redemptions with their referral code (code, referrer, reward)."""
        codes = {c['id']: c for c in self.referral_codes.get_all()}
        rows = self.redemptions.select(order_by='created_at', desc=True)
        for row in rows:
            code = codes.get(row.get('code_id')) or {}
            row['referral_code'] = {
                'code': code.get('code'),
                'referrer_name': code.get('referrer_name'),
                'reward_amount': code.get('reward_amount'),
            }
        return rows

    def update_redemption_status(self, redemption_id: str, status: str) -> Dict[str, Any]:
        if status not in REWARD_STATUSES:
            return {'ok': False, 'error': 'Invalid reward status'}
        if not self.redemptions.get(redemption_id):
            return {'ok': False, 'error': 'Redemption not found'}
        return {'ok': True, 'redemption': self.redemptions.update_row(redemption_id, {'reward_status': status})}
