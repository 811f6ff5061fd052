# ==============================================================================
# DEALER SERVICE
# ==============================================================================
# Wholesale accounts. An application creates a "dealer" account, uploads the
# optional business document to the dealer-documents bucket and inserts a
# `dealers` row with status "pending". Wholesale prices are shown only once
# an admin approves the row.
# ==============================================================================

import logging
import os
import time
from typing import Any, Dict, List, Optional

from tire_store.models import AppRole, DealerStatus, enum_values
from tire_store.repositories.base import BackendError
from tire_store.repositories.interfaces import IStorageBucket, ITableRepository
from tire_store.repositories.table_repository import utc_now_iso
from tire_store.services.notification_service import NotificationService
from tire_store.services.user_service import UserService

logger = logging.getLogger(__name__)

MAX_DOCUMENT_BYTES = 5 * 1024 * 1024
REQUIRED_FIELDS = ('business_name', 'contact_name', 'email', 'phone')
EDITABLE_FIELDS = ('business_name', 'contact_name', 'email', 'phone', 'address', 'city', 'postal_code', 'notes')


def _file_size(file_storage) -> int:
    stream = file_storage.stream
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


class DealerService:
    """
    Service for dealer applications, approval and the dealer dashboard.
    """

    def __init__(
        self,
        dealers: ITableRepository,
        orders: ITableRepository,
        invoices: ITableRepository,
        user_service: UserService,
        document_bucket: IStorageBucket,
        notification_service: NotificationService = None
    ):
        self.dealers = dealers
        self.orders = orders
        self.invoices = invoices
        self.user_service = user_service
        self.document_bucket = document_bucket
        self.notification_service = notification_service

    # =========================================================================
    # APPLICATION
    # =========================================================================

    def validate_document(self, document) -> Optional[str]:
        """Error message for an unacceptable upload, else None."""
        if not document or not getattr(document, 'filename', ''):
            return None
        if not self.document_bucket.is_allowed(document.filename):
            return 'Please upload a PDF or image file.'
        if _file_size(document) > MAX_DOCUMENT_BYTES:
            return 'Please upload a file smaller than 5MB.'
        return None

    def apply(self, form: Dict[str, Any], password: str, document=None) -> Dict[str, Any]:
        """
        Submit a dealer application.

        Args:
            form: business_name, contact_name, email, phone, address, city,
                  postal_code, notes
            password: Password for the new dealer account
            document: Optional uploaded file (werkzeug FileStorage)

        Returns:
            {'ok': True, 'dealer': {...}, 'user': {...}} or {'ok': False, 'error': ...}
        """
        data = {key: (form.get(key) or '').strip() for key in EDITABLE_FIELDS}
        missing = [key for key in REQUIRED_FIELDS if not data[key]]
        if missing:
            return {'ok': False, 'error': 'Please fill in all required fields.'}

        doc_error = self.validate_document(document)
        if doc_error:
            return {'ok': False, 'error': doc_error}

        signup = self.user_service.sign_up(
            data['email'], password,
            {'full_name': data['contact_name'], 'phone': data['phone'], 'business_name': data['business_name']},
            role=AppRole.DEALER.value,
        )
        if not signup['ok']:
            if 'already exists' in signup['error']:
                return {'ok': False, 'error': 'Account exists. Please log in instead.'}
            return signup
        user = signup['user']

        document_url = None
        if document and getattr(document, 'filename', ''):
            ext = self.document_bucket.extension_of(document.filename)
            try:
                path = self.document_bucket.upload(f"{user['id']}/{int(time.time() * 1000)}.{ext}", document)
                document_url = self.document_bucket.get_public_url(path)
            except BackendError:
                logger.warning("Dealer document upload failed for %s", data['email'], exc_info=True)

        dealer = self.dealers.insert({
            'user_id': user['id'],
            'business_name': data['business_name'],
            'contact_name': data['contact_name'],
            'email': data['email'].lower(),
            'phone': data['phone'],
            'address': data['address'] or None,
            'city': data['city'] or None,
            'postal_code': data['postal_code'] or None,
            'notes': data['notes'] or None,
            'document_url': document_url,
            'status': DealerStatus.PENDING.value,
            'approved_at': None,
        })

        if self.notification_service:
            try:
                self.notification_service.notify_admin(
                    'dealer_application', f"New dealer application: {data['business_name']}",
                    {'dealer_id': dealer['id'], 'contact_name': data['contact_name'], 'email': data['email']},
                )
            except BackendError:
                logger.exception("Failed to queue dealer application notice")

        logger.info("Dealer application from %s", data['business_name'])
        return {'ok': True, 'dealer': dealer, 'user': user}

    # =========================================================================
    # ADMIN
    # =========================================================================

    def list_dealers(self, status: str = None) -> List[Dict[str, Any]]:
        filters = {'status': status} if status and status != 'all' else None
        return self.dealers.select(filters, order_by='created_at', desc=True)

    def set_status(self, dealer_id: str, status: str) -> Dict[str, Any]:
        """Approving stamps approved_at; any other status clears it."""
        if status not in enum_values(DealerStatus):
            return {'ok': False, 'error': 'Invalid dealer status'}
        if not self.dealers.get(dealer_id):
            return {'ok': False, 'error': 'Dealer not found'}
        approved_at = utc_now_iso() if status == DealerStatus.APPROVED.value else None
        dealer = self.dealers.update_row(dealer_id, {'status': status, 'approved_at': approved_at})
        return {'ok': True, 'dealer': dealer}

    def update_dealer(self, dealer_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        dealer = self.dealers.get(dealer_id)
        if not dealer:
            return {'ok': False, 'error': 'Dealer not found'}
        changes = {key: (data.get(key) or '').strip() or None for key in EDITABLE_FIELDS if key in data}
        if any(key in changes and not changes[key] for key in REQUIRED_FIELDS):
            return {'ok': False, 'error': 'Please fill in all required fields.'}
        updated = self.dealers.update_row(dealer_id, changes)
        if data.get('status') and data['status'] != dealer.get('status'):
            return self.set_status(dealer_id, data['status'])
        return {'ok': True, 'dealer': updated}

    # =========================================================================
    # DEALER DASHBOARD
    # =========================================================================

    def get_for_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.dealers.maybe_single(user_id=user_id) if user_id else None

    def dashboard(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Returns:
            {dealer, is_approved, orders, invoices} or None when the
            account has no dealer row
        """
        dealer = self.get_for_user(user_id)
        if not dealer:
            return None
        return {
            'dealer': dealer,
            'is_approved': dealer.get('status') == DealerStatus.APPROVED.value,
            'orders': self.orders.select({'user_id': user_id}, order_by='created_at', desc=True),
            'invoices': self.invoices.select({'dealer_id': dealer['id']}, order_by='created_at', desc=True),
        }
