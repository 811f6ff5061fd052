# ==============================================================================
# REPORT SERVICE
# ==============================================================================
# Back-office reports:
#   - Revenue from PAID invoices, grouped by day / month / year
#   - Service bookings per day
#
# RULE: only invoices with status "paid" count as revenue. The date used is
# paid_at when present, otherwise created_at.
# ==============================================================================

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from tire_store.models import InvoiceStatus
from tire_store.repositories.interfaces import ITableRepository

GROUP_FORMATS = {
    'daily': '%Y-%m-%d',
    'monthly': '%Y-%m',
    'yearly': '%Y',
}


def parse_timestamp(value: str) -> Optional[datetime]:
    """
    Parse an ISO date string (always returned timezone-aware).
    Returns None when it cannot be parsed.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ReportService:
    """
    Service for revenue and booking reports.

    Responsibilities:
    - Resolve a period into a UTC date range
    - Filter paid invoices inside the range
    - Group totals by day, month or year
    """

    VALID_STATUS = InvoiceStatus.PAID.value

    def __init__(self, invoices: ITableRepository, bookings: ITableRepository):
        self.invoices = invoices
        self.bookings = bookings

    def _parse_date(self, date_str: str) -> Optional[datetime]:
        return parse_timestamp(date_str)

    def _get_date_range(self, period: str, custom_start: str = None,
                        custom_end: str = None) -> Tuple[datetime, datetime]:
        """
        Args:
            period: 'today', 'week', 'month', 'year', 'all', 'custom'
            custom_start: Start date for 'custom' (YYYY-MM-DD)
            custom_end: End date for 'custom' (YYYY-MM-DD)

        Returns:
            Tuple (start, end) in UTC
        """
        now = datetime.now(timezone.utc)
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        if period == 'today':
            return today_start, now
        elif period == 'week':
            return today_start - timedelta(days=now.weekday()), now
        elif period == 'month':
            return today_start.replace(day=1), now
        elif period == 'year':
            return today_start.replace(month=1, day=1), now
        elif period == 'all':
            return datetime(1970, 1, 1, tzinfo=timezone.utc), now
        elif period == 'custom' and custom_start and custom_end:
            try:
                start = datetime.strptime(custom_start, '%Y-%m-%d').replace(tzinfo=timezone.utc)
                end = datetime.strptime(custom_end, '%Y-%m-%d').replace(
                    hour=23, minute=59, second=59, tzinfo=timezone.utc
                )
                return start, end
            except ValueError:
                return today_start.replace(day=1), now

        # Default: this month
        return today_start.replace(day=1), now

    def _paid_invoices(self, start: datetime, end: datetime) -> List[Tuple[datetime, Dict[str, Any]]]:
        rows = []
        for invoice in self.invoices.select({'status': self.VALID_STATUS}):
            paid_date = self._parse_date(invoice.get('paid_at') or invoice.get('created_at'))
            if paid_date and start <= paid_date <= end:
                rows.append((paid_date, invoice))
        return rows

    def revenue_report(
        self,
        group_by: str = 'daily',
        period: str = 'month',
        custom_start: str = None,
        custom_end: str = None
    ) -> Dict[str, Any]:
        """
        Revenue of paid invoices for a period.

        Args:
            group_by: 'daily', 'monthly' or 'yearly'
            period: see _get_date_range

        Returns:
            {
                'period': str,
                'group_by': str,
                'date_range': {'start': str, 'end': str},
                'summary': {'invoice_count', 'subtotal', 'tax', 'levy', 'revenue', 'average_invoice'},
                'breakdown': [{'period': str, 'invoice_count': int, 'revenue': float, 'tax': float}]
            }
        """
        group_by = group_by if group_by in GROUP_FORMATS else 'daily'
        start, end = self._get_date_range(period, custom_start, custom_end)
        paid = self._paid_invoices(start, end)

        buckets = defaultdict(lambda: {'invoice_count': 0, 'revenue': 0.0, 'tax': 0.0})
        subtotal = tax = levy = revenue = 0.0
        for paid_date, invoice in paid:
            total = float(invoice.get('total') or 0)
            invoice_tax = float(invoice.get('gst') or 0)
            subtotal += float(invoice.get('subtotal') or 0)
            levy += float(invoice.get('ab_levy') or 0)
            tax += invoice_tax
            revenue += total

            key = paid_date.strftime(GROUP_FORMATS[group_by])
            buckets[key]['invoice_count'] += 1
            buckets[key]['revenue'] += total
            buckets[key]['tax'] += invoice_tax

        breakdown = [
            {'period': key, 'invoice_count': data['invoice_count'],
             'revenue': round(data['revenue'], 2), 'tax': round(data['tax'], 2)}
            for key, data in sorted(buckets.items())
        ]

        return {
            'period': period,
            'group_by': group_by,
            'date_range': {'start': start.strftime('%Y-%m-%d'), 'end': end.strftime('%Y-%m-%d')},
            'summary': {
                'invoice_count': len(paid),
                'subtotal': round(subtotal, 2),
                'tax': round(tax, 2),
                'levy': round(levy, 2),
                'revenue': round(revenue, 2),
                'average_invoice': round(revenue / len(paid), 2) if paid else 0.0,
            },
            'breakdown': breakdown,
        }

    def bookings_per_day(self, period: str = 'month', custom_start: str = None,
                         custom_end: str = None) -> List[Dict[str, Any]]:
        """
        Bookings grouped by requested day (preferred_date, else created_at).

        Returns:
            [{'date': 'YYYY-MM-DD', 'count': int, 'by_service': {type: n}}]
        """
        start, end = self._get_date_range(period, custom_start, custom_end)
        days = defaultdict(lambda: {'count': 0, 'by_service': defaultdict(int)})

        for booking in self.bookings.select():
            booking_date = self._parse_date(booking.get('preferred_date') or booking.get('created_at'))
            if not booking_date or not (start.date() <= booking_date.date() <= end.date()):
                continue
            key = booking_date.strftime('%Y-%m-%d')
            days[key]['count'] += 1
            days[key]['by_service'][booking.get('service_type') or 'other'] += 1

        return [
            {'date': key, 'count': data['count'], 'by_service': dict(data['by_service'])}
            for key, data in sorted(days.items())
        ]
