# ==============================================================================
# BOOKING SERVICE
# ==============================================================================
# Service appointment requests (installation, rotation, repair, seasonal).
# A booking starts as "new"; staff move it to scheduled / completed /
# cancelled after calling the customer.
# ==============================================================================

import logging
from typing import Any, Dict, List

from tire_store.models import BookingStatus, enum_values
from tire_store.repositories.base import BackendError
from tire_store.repositories.interfaces import ITableRepository
from tire_store.services.audit_service import AuditService
from tire_store.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

SERVICE_TYPES = {
    'installation': 'Tire Installation',
    'rotation': 'Balancing & Rotation',
    'repair': 'Tire Repair',
    'seasonal': 'Seasonal Changeovers',
}

TIME_SLOTS = [
    '9:00 AM', '10:00 AM', '11:00 AM', '12:00 PM',
    '1:00 PM', '2:00 PM', '3:00 PM', '4:00 PM',
]


class BookingService:
    """Service for service bookings."""

    def __init__(
        self,
        bookings: ITableRepository,
        notification_service: NotificationService,
        audit_service: AuditService = None
    ):
        self.bookings = bookings
        self.notification_service = notification_service
        self.audit_service = audit_service

    def create_booking(self, form: Dict[str, Any], user_id: str = None) -> Dict[str, Any]:
        """
        Store a booking request and alert the shop.

        Args:
            form: name, phone, service_type (required); email, vehicle_info,
                  preferred_date, preferred_time, notes (optional)
            user_id: Signed-in account (optional)

        Returns:
            {'ok': True, 'booking': {...}} or {'ok': False, 'error': ...}
        """
        name = (form.get('name') or '').strip()
        phone = (form.get('phone') or '').strip()
        service_type = (form.get('service_type') or '').strip()
        if not name or not phone or not service_type:
            return {'ok': False, 'error': 'Please fill in all required fields.'}
        if service_type not in SERVICE_TYPES:
            return {'ok': False, 'error': 'Please choose a service'}

        booking = self.bookings.insert({
            'user_id': user_id or None,
            'name': name,
            'email': (form.get('email') or '').strip() or None,
            'phone': phone,
            'service_type': service_type,
            'vehicle_info': (form.get('vehicle_info') or '').strip() or None,
            'preferred_date': form.get('preferred_date') or None,
            'preferred_time': form.get('preferred_time') or None,
            'notes': (form.get('notes') or '').strip() or None,
            'status': BookingStatus.NEW.value,
        })

        try:
            self.notification_service.notify_admin(
                'service_booking',
                f"New booking: {SERVICE_TYPES[service_type]} for {name}",
                {'booking_id': booking['id'], 'phone': phone,
                 'preferred_date': booking['preferred_date'], 'preferred_time': booking['preferred_time']},
            )
        except BackendError:
            logger.exception("Failed to queue booking notice for %s", booking['id'])

        return {'ok': True, 'booking': booking}

    def list_bookings(self, status: str = None) -> List[Dict[str, Any]]:
        filters = {'status': status} if status and status != 'all' else None
        return self.bookings.select(filters, order_by='created_at', desc=True)

    def set_status(self, booking_id: str, status: str, user_id: str = None) -> Dict[str, Any]:
        if status not in enum_values(BookingStatus):
            return {'ok': False, 'error': 'Invalid booking status'}
        booking = self.bookings.get(booking_id)
        if not booking:
            return {'ok': False, 'error': 'Booking not found'}
        updated = self.bookings.update_row(booking_id, {'status': status})
        if self.audit_service:
            self.audit_service.log_status_change('service_bookings', booking_id, booking.get('status'),
                                                 status, user_id)
        return {'ok': True, 'booking': updated}

    def delete_booking(self, booking_id: str) -> Dict[str, Any]:
        if not self.bookings.delete_row(booking_id):
            return {'ok': False, 'error': 'Booking not found'}
        return {'ok': True}
