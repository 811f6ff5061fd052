# ==============================================================================
# REVIEW SERVICE
# ==============================================================================
# Reviews are routed by rating:
#   rating >= 4 -> status "approved", customer is sent to the Google review page
#   rating <  4 -> status "pending",  admin gets a "review_escalation" notice
#
# Review requests are rows scheduled REVIEW_REQUEST_DELAY_DAYS after an order.
# A periodic job (process_due_requests) queues the email for every due row.
# ==============================================================================

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from tire_store import config
from tire_store.models import ReviewStatus, enum_values
from tire_store.repositories.base import BackendError
from tire_store.repositories.interfaces import ISettingsRepository, ITableRepository
from tire_store.repositories.table_repository import utc_now_iso
from tire_store.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

HIGH_RATING = 4
DUE_BATCH_LIMIT = 50

REQUEST_PENDING = 'pending'
REQUEST_SENT = 'sent'
REQUEST_FAILED = 'failed'


def route_for_rating(rating: int) -> str:
    """'high' sends the customer to Google, 'low' stays internal."""
    return 'high' if rating >= HIGH_RATING else 'low'


class ReviewService:
    """
    Service for customer reviews and post-purchase review requests.
    """

    def __init__(
        self,
        reviews: ITableRepository,
        review_requests: ITableRepository,
        products: ITableRepository,
        settings_repo: ISettingsRepository,
        notification_service: NotificationService
    ):
        self.reviews = reviews
        self.review_requests = review_requests
        self.products = products
        self.settings_repo = settings_repo
        self.notification_service = notification_service

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit_review(
        self,
        rating: Any,
        comment: str = '',
        customer_name: str = None,
        product_id: str = None,
        user_id: str = None
    ) -> Dict[str, Any]:
        """
        Store a review and decide where the customer goes next.

        Args:
            rating: 1..5 (required)
            comment: Free text
            customer_name: Shown publicly ("Anonymous" when blank)
            product_id: Reviewed product (optional)
            user_id: Signed-in account (optional)

        Returns:
            {'ok': True, 'review': {...}, 'route': 'high'|'low', 'google_review_url': str}
            or {'ok': False, 'error': ...}
        """
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            return {'ok': False, 'error': 'Please select a rating'}
        if rating < 1 or rating > 5:
            return {'ok': False, 'error': 'Please select a rating'}

        if product_id and not self.products.get(product_id):
            product_id = None

        route = route_for_rating(rating)
        status = ReviewStatus.APPROVED.value if route == 'high' else ReviewStatus.PENDING.value
        review = self.reviews.insert({
            'product_id': product_id or None,
            'customer_id': user_id or None,
            'customer_name': (customer_name or '').strip() or 'Anonymous',
            'rating': rating,
            'comment': (comment or '').strip(),
            'status': status,
        })

        if route == 'low':
            try:
                self.notification_service.notify_admin(
                    'review_escalation',
                    f'{rating}-star review needs attention',
                    {'review_id': review['id'], 'rating': rating,
                     'customer_name': review['customer_name'], 'comment': review['comment']},
                )
            except BackendError:
                logger.exception("Failed to queue review escalation for %s", review['id'])

        return {'ok': True, 'review': review, 'route': route,
                'google_review_url': self.get_google_review_url()}

    # =========================================================================
    # MODERATION / PUBLIC LIST
    # =========================================================================

    def list_reviews(self, status: str = None) -> List[Dict[str, Any]]:
        filters = {'status': status} if status else None
        return self.reviews.select(filters, order_by='created_at', desc=True)

    def list_public(self, product_id: str = None, limit: int = 20) -> List[Dict[str, Any]]:
        filters = {'status': ReviewStatus.APPROVED.value}
        if product_id:
            filters['product_id'] = product_id
        return self.reviews.select(filters, order_by='created_at', desc=True, limit=limit)

    def set_status(self, review_id: str, status: str) -> Dict[str, Any]:
        if status not in enum_values(ReviewStatus):
            return {'ok': False, 'error': 'Invalid review status'}
        if not self.reviews.get(review_id):
            return {'ok': False, 'error': 'Review not found'}
        return {'ok': True, 'review': self.reviews.update_row(review_id, {'status': status})}

    def delete_review(self, review_id: str) -> Dict[str, Any]:
        if not self.reviews.delete_row(review_id):
            return {'ok': False, 'error': 'Review not found'}
        return {'ok': True}

    # =========================================================================
    # REVIEW REQUESTS
    # =========================================================================

    def schedule_review_request(self, order_id: str, customer_email: str, customer_name: str,
                                order_number: str, now: datetime = None) -> Optional[Dict[str, Any]]:
        """
        Insert a pending review request due in REVIEW_REQUEST_DELAY_DAYS.

        Returns:
            The row, or None when the insert failed (logged, never raised)
        """
        now = now or datetime.now(timezone.utc)
        scheduled = now + timedelta(days=config.REVIEW_REQUEST_DELAY_DAYS)
        try:
            row = self.review_requests.insert({
                'order_id': order_id,
                'customer_email': customer_email,
                'customer_name': customer_name,
                'order_number': order_number,
                'scheduled_date': scheduled.isoformat(),
                'status': REQUEST_PENDING,
            })
        except BackendError:
            logger.exception("Failed to schedule review request for order %s", order_number)
            return None
        logger.info("Review request scheduled for %s (order %s)", customer_email, order_number)
        return row

    def due_requests(self, now: datetime = None) -> List[Dict[str, Any]]:
        now_iso = (now or datetime.now(timezone.utc)).isoformat()
        return self.review_requests.select(
            {'status': REQUEST_PENDING,
             'scheduled_date': lambda value: bool(value) and value <= now_iso},
            order_by='scheduled_date',
            limit=DUE_BATCH_LIMIT,
        )

    def process_due_requests(self, now: datetime = None) -> Dict[str, Any]:
        """
        Queue the review email for every due request (at most 50 per run).

        Returns:
            {'ok': True, 'processed': n, 'results': [{email, status}]}
        """
        pending = self.due_requests(now)
        if not pending:
            return {'ok': True, 'processed': 0, 'results': [], 'message': 'No pending review requests to send'}

        results = []
        for request in pending:
            content = self.generate_email_content(request.get('customer_name') or 'there')
            try:
                self.notification_service.queue(
                    'review_request', request.get('customer_email'), content['subject'],
                    {'review_request_id': request['id'], 'order_number': request.get('order_number'),
                     'html': content['html'], 'text': content['text']},
                )
            except BackendError:
                logger.exception("Failed to queue review email for %s", request.get('customer_email'))
                self.review_requests.update_row(request['id'], {'status': REQUEST_FAILED})
                results.append({'email': request.get('customer_email'), 'status': REQUEST_FAILED})
                continue
            self.review_requests.update_row(request['id'], {'status': REQUEST_SENT, 'sent_at': utc_now_iso()})
            results.append({'email': request.get('customer_email'), 'status': REQUEST_SENT})

        logger.info("Processed %d review requests", len(results))
        return {'ok': True, 'processed': len(results), 'results': results}

    def track_click(self, request_id: str) -> bool:
        if not self.review_requests.get(request_id):
            return False
        self.review_requests.update_row(request_id, {'clicked_at': utc_now_iso()})
        return True

    def list_requests(self, status: str = None) -> List[Dict[str, Any]]:
        filters = {'status': status} if status else None
        return self.review_requests.select(filters, order_by='scheduled_date', desc=True)

    # =========================================================================
    # EMAIL CONTENT
    # =========================================================================

    def get_google_review_url(self) -> str:
        company = self.settings_repo.get_setting('company_info') or {}
        return (self.settings_repo.get_setting('google_review_url')
                or company.get('google_review_link')
                or config.DEFAULT_GOOGLE_REVIEW_URL)

    def generate_email_content(self, customer_name: str) -> Dict[str, str]:
        """
        Returns:
            {subject, html, text}
        """
        review_url = self.get_google_review_url()
        company = config.COMPANY_NAME
        year = datetime.now().year
        subject = f'Thank you for your {company} purchase!'

        text = f"""Hi {customer_name},

Thanks for choosing {company} for your recent tire purchase! We hope you're enjoying your new tires and experiencing smooth, safe rides.

Would you mind sharing your experience?

Your review helps us improve our service and helps other customers make informed decisions. It only takes a minute!

Leave a Google Review: {review_url}

We truly appreciate your feedback and your business.

If you have any questions or concerns, please contact us:
- Phone: {config.COMPANY_PHONE}
- Email: {config.ADMIN_EMAIL}

Thanks again for choosing {company}!

The {company} Team
{config.COMPANY_ADDRESS}

---
You received this email because you recently purchased from {company}.
(c) {year} {company}. All rights reserved."""

        html = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1>Thank You, {customer_name}!</h1>
    <p>Hi {customer_name},</p>
    <p>Thanks for choosing {company} for your recent tire purchase! We hope you're enjoying your new tires and experiencing smooth, safe rides.</p>
    <p><strong>Would you mind sharing your experience?</strong></p>
    <p>Your review helps us improve our service and helps other customers make informed decisions. It only takes a minute!</p>
    <p><a href="{review_url}" style="background: #dc2626; color: #fff; padding: 15px 30px; text-decoration: none; border-radius: 5px;">Leave a Google Review</a></p>
    <p>We truly appreciate your feedback and your business.</p>
    <ul>
      <li>Phone: {config.COMPANY_PHONE}</li>
      <li>Email: {config.ADMIN_EMAIL}</li>
    </ul>
    <p><strong>The {company} Team</strong><br>{config.COMPANY_ADDRESS}</p>
    <p style="font-size: 12px; color: #666;">You received this email because you recently purchased from {company}.</p>
  </div>
</body>
</html>"""
        return {'subject': subject, 'html': html, 'text': text}
