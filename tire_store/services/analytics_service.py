# ==============================================================================
# ANALYTICS SERVICE
# ==============================================================================
# Order-based views for the back office:
#   - Customers with their order count, total spent, first/last order date
#     and the tire brands / sizes they bought
#   - One customer's order history
#   - Business overview: this month vs last month, orders by status,
#     revenue for the last 30 days, best-selling sizes
#
# RULE: cancelled orders never count as revenue. Customer totals use every
# order linked to the customer, as the orders table records them.
# ==============================================================================

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from tire_store.models import OrderStatus
from tire_store.repositories.interfaces import ITableRepository
from tire_store.services.report_service import parse_timestamp

ORDER_COUNT_FILTERS = {
    '0': lambda n: n == 0,
    '1+': lambda n: n >= 1,
    '3+': lambda n: n >= 3,
    '5+': lambda n: n >= 5,
}

# Preset -> days back from now (last order date)
LAST_ORDER_PRESETS = {
    '7d': 7,
    '30d': 30,
    '90d': 90,
    '6m': 182,
    '1y': 365,
}

DAILY_REVENUE_DAYS = 30
TOP_SIZES_LIMIT = 7

CUSTOMER_CSV_HEADER = ['Name', 'Email', 'Phone', 'City', 'Orders', 'Total Spent',
                       'Last Order', 'Tire Sizes', 'Brands']


def percent_change(current: float, previous: float) -> int:
    """Whole-number change; 100 when there is nothing to compare against."""
    if previous == 0:
        return 100 if current > 0 else 0
    return round((current - previous) / previous * 100)


def month_bounds(now: datetime) -> Tuple[datetime, datetime, datetime]:
    """
    Returns:
        (last month start, this month start, next month start) in UTC
    """
    this_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    last_start = (this_start - timedelta(days=1)).replace(day=1)
    next_start = (this_start + timedelta(days=32)).replace(day=1)
    return last_start, this_start, next_start


class AnalyticsService:
    """
    Service for the customers and analytics pages.
    """

    CANCELLED = OrderStatus.CANCELLED.value

    def __init__(self, orders: ITableRepository, order_items: ITableRepository,
                 customers: ITableRepository):
        self.orders = orders
        self.order_items = order_items
        self.customers = customers

    def _items_by_order(self) -> Dict[str, List[Dict[str, Any]]]:
        grouped = defaultdict(list)
        for item in self.order_items.select():
            grouped[item.get('order_id')].append(item)
        return grouped

    # =========================================================================
    # CUSTOMERS
    # =========================================================================

    def customer_stats(self) -> List[Dict[str, Any]]:
        """
        Every customer, newest first, with order statistics.

        Returns:
            Customer rows plus order_count, total_spent, first_order_at,
            last_order_at, vendors, tire_sizes
        """
        items = self._items_by_order()
        stats = defaultdict(lambda: {'order_count': 0, 'total_spent': 0.0, 'dates': [],
                                     'vendors': set(), 'tire_sizes': set()})

        for order in self.orders.select(where=lambda r: bool(r.get('customer_id'))):
            entry = stats[order['customer_id']]
            entry['order_count'] += 1
            entry['total_spent'] += float(order.get('total') or 0)
            if order.get('created_at'):
                entry['dates'].append(order['created_at'])
            for item in items.get(order['id'], []):
                if item.get('vendor'):
                    entry['vendors'].add(item['vendor'])
                if item.get('size'):
                    entry['tire_sizes'].add(item['size'])

        result = []
        for customer in self.customers.select(order_by='created_at', desc=True):
            entry = stats.get(customer['id'])
            dates = sorted(entry['dates']) if entry else []
            result.append(dict(
                customer,
                order_count=entry['order_count'] if entry else 0,
                total_spent=round(entry['total_spent'], 2) if entry else 0.0,
                first_order_at=dates[0] if dates else None,
                last_order_at=dates[-1] if dates else None,
                vendors=sorted(entry['vendors']) if entry else [],
                tire_sizes=sorted(entry['tire_sizes']) if entry else [],
            ))
        return result

    @staticmethod
    def filter_customers(customers: List[Dict[str, Any]], filters: Dict[str, Any],
                         now: datetime = None) -> List[Dict[str, Any]]:
        """
        Apply the customers page filters.

        Args:
            customers: Rows from customer_stats
            filters: search, city, orders ('0', '1+', '3+', '5+'),
                last_order (preset key), tire_size (substring), vendor
            now: Reference time for last_order presets

        A last_order preset only removes customers whose last order is older
        than the cutoff; customers without orders stay listed.
        """
        filters = filters or {}
        now = now or datetime.now(timezone.utc)

        search = (filters.get('search') or '').strip().lower()
        city = filters.get('city') or ''
        count_test = ORDER_COUNT_FILTERS.get(filters.get('orders') or '')
        days = LAST_ORDER_PRESETS.get(filters.get('last_order') or '')
        cutoff = now - timedelta(days=days) if days else None
        size = (filters.get('tire_size') or '').strip().lower()
        vendor = filters.get('vendor') or ''

        result = []
        for customer in customers:
            if search and not (
                search in (customer.get('name') or '').lower()
                or search in (customer.get('email') or '').lower()
                or search in (customer.get('phone') or '')
            ):
                continue
            if city and customer.get('city') != city:
                continue
            if count_test and not count_test(customer['order_count']):
                continue
            if cutoff and customer.get('last_order_at'):
                last = parse_timestamp(customer['last_order_at'])
                if last and last < cutoff:
                    continue
            if size and not any(size in s.lower() for s in customer['tire_sizes']):
                continue
            if vendor and vendor not in customer['vendors']:
                continue
            result.append(customer)
        return result

    @staticmethod
    def customer_summary(customers: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Returns:
            {total_customers, with_orders, total_revenue, average_order}
        """
        orders = sum(c['order_count'] for c in customers)
        revenue = sum(c['total_spent'] for c in customers)
        return {
            'total_customers': len(customers),
            'with_orders': sum(1 for c in customers if c['order_count'] > 0),
            'total_revenue': round(revenue, 2),
            'average_order': round(revenue / orders, 2) if orders else 0.0,
        }

    @staticmethod
    def filter_choices(customers: List[Dict[str, Any]]) -> Dict[str, List[str]]:
        return {
            'cities': sorted({c['city'] for c in customers if c.get('city')}),
            'vendors': sorted({v for c in customers for v in c['vendors']}),
        }

    @staticmethod
    def export_rows(customers: List[Dict[str, Any]]) -> List[List[Any]]:
        """CSV rows (header first) for the filtered customer list."""
        rows = [list(CUSTOMER_CSV_HEADER)]
        for c in customers:
            rows.append([
                c.get('name') or '',
                c.get('email') or '',
                c.get('phone') or '',
                c.get('city') or '',
                c['order_count'],
                f"{c['total_spent']:.2f}",
                (c.get('last_order_at') or '')[:10],
                '; '.join(c['tire_sizes']),
                '; '.join(c['vendors']),
            ])
        return rows

    def customer_detail(self, customer_id: str) -> Optional[Dict[str, Any]]:
        """
        One customer with statistics and order history (newest first,
        each order with its items).
        """
        customer = next((c for c in self.customer_stats() if c['id'] == customer_id), None)
        if customer is None:
            return None
        items = self._items_by_order()
        orders = [
            dict(order, items=items.get(order['id'], []))
            for order in self.orders.select({'customer_id': customer_id}, order_by='created_at', desc=True)
        ]
        return {'customer': customer, 'orders': orders}

    # =========================================================================
    # OVERVIEW
    # =========================================================================

    def overview(self, now: datetime = None) -> Dict[str, Any]:
        """
        Business performance at a glance.

        Returns:
            {
                'revenue_this_month', 'revenue_last_month', 'revenue_change',
                'orders_this_month', 'orders_last_month', 'orders_change',
                'status_breakdown': [{'status', 'count'}],
                'daily_revenue': [{'date', 'revenue', 'orders'}],   # last 30 days
                'top_sizes': [{'size', 'quantity'}]
            }
        """
        now = now or datetime.now(timezone.utc)
        last_start, this_start, next_start = month_bounds(now)
        first_day = (now - timedelta(days=DAILY_REVENUE_DAYS - 1)).date()

        this_month = {'revenue': 0.0, 'orders': 0}
        last_month = {'revenue': 0.0, 'orders': 0}
        statuses = defaultdict(int)
        days = {
            (first_day + timedelta(days=i)).isoformat(): {'revenue': 0.0, 'orders': 0}
            for i in range(DAILY_REVENUE_DAYS)
        }

        for order in self.orders.select(order_by='created_at'):
            statuses[order.get('status') or OrderStatus.PENDING.value] += 1
            if order.get('status') == self.CANCELLED:
                continue
            created = parse_timestamp(order.get('created_at'))
            if created is None:
                continue
            total = float(order.get('total') or 0)

            if this_start <= created < next_start:
                bucket = this_month
            elif last_start <= created < this_start:
                bucket = last_month
            else:
                bucket = None
            if bucket is not None:
                bucket['revenue'] += total
                bucket['orders'] += 1

            day = days.get(created.date().isoformat())
            if day is not None:
                day['revenue'] += total
                day['orders'] += 1

        return {
            'revenue_this_month': round(this_month['revenue'], 2),
            'revenue_last_month': round(last_month['revenue'], 2),
            'revenue_change': percent_change(this_month['revenue'], last_month['revenue']),
            'orders_this_month': this_month['orders'],
            'orders_last_month': last_month['orders'],
            'orders_change': percent_change(this_month['orders'], last_month['orders']),
            'status_breakdown': [{'status': s, 'count': n} for s, n in statuses.items()],
            'daily_revenue': [
                {'date': key, 'revenue': round(data['revenue'], 2), 'orders': data['orders']}
                for key, data in days.items()
            ],
            'top_sizes': self.top_sizes(),
        }

    def top_sizes(self, limit: int = TOP_SIZES_LIMIT) -> List[Dict[str, Any]]:
        """Best-selling sizes by tires ordered."""
        quantities = defaultdict(int)
        for item in self.order_items.select():
            if item.get('size'):
                quantities[item['size']] += int(item.get('quantity') or 0)
        ranked = sorted(quantities.items(), key=lambda pair: pair[1], reverse=True)
        return [{'size': size, 'quantity': qty} for size, qty in ranked[:limit]]
