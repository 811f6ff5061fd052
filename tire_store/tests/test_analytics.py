from datetime import datetime, timezone

import pytest

from tire_store.services.analytics_service import AnalyticsService, percent_change
from tire_store.tests.helpers import login_admin, place_order

NOW = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)


def _seed(container):
    customers = container.table('customers')
    orders = container.table('orders')
    jane = customers.insert({'name': 'Jane Driver', 'email': 'jane@example.com', 'phone': '780-555-0101',
                             'city': 'Edmonton', 'created_at': '2026-01-01T10:00:00+00:00'})
    sam = customers.insert({'name': 'Sam Wheeler', 'email': 'sam@example.com', 'phone': '403-555-0102',
                            'city': 'Calgary', 'created_at': '2026-02-01T10:00:00+00:00'})
    first = orders.insert({'order_number': 'KT-20260105-0001', 'customer_id': jane['id'], 'status': 'completed',
                           'total': 441.0, 'created_at': '2026-01-05T12:00:00+00:00'})
    second = orders.insert({'order_number': 'KT-20260310-0002', 'customer_id': jane['id'], 'status': 'pending',
                            'total': 220.5, 'created_at': '2026-03-10T12:00:00+00:00'})
    container.table('order_items').insert_many([
        {'order_id': first['id'], 'size': '235/60R18', 'vendor': 'Michelin', 'quantity': 4},
        {'order_id': second['id'], 'size': '205/55R16', 'vendor': 'Toyo', 'quantity': 2},
    ])
    return jane, sam


# ═══════════════════════════════════════════════════════════════════════════
# CUSTOMERS
# ═══════════════════════════════════════════════════════════════════════════

def test_customer_stats_from_orders(container):
    jane, sam = _seed(container)
    stats = container.analytics_service.customer_stats()

    assert [c['id'] for c in stats] == [sam['id'], jane['id']]
    assert stats[0]['order_count'] == 0
    assert stats[0]['last_order_at'] is None

    row = stats[1]
    assert row['order_count'] == 2
    assert row['total_spent'] == pytest.approx(661.5)
    assert row['first_order_at'].startswith('2026-01-05')
    assert row['last_order_at'].startswith('2026-03-10')
    assert row['vendors'] == ['Michelin', 'Toyo']
    assert row['tire_sizes'] == ['205/55R16', '235/60R18']


def test_customer_filters_and_summary(container):
    _seed(container)
    stats = container.analytics_service.customer_stats()

    def names(filters):
        return [c['name'] for c in AnalyticsService.filter_customers(stats, filters, now=NOW)]

    assert names({'search': 'wheeler'}) == ['Sam Wheeler']
    assert names({'search': '0101'}) == ['Jane Driver']
    assert names({'city': 'Calgary'}) == ['Sam Wheeler']
    assert names({'orders': '0'}) == ['Sam Wheeler']
    assert names({'orders': '1+'}) == ['Jane Driver']
    assert names({'orders': '3+'}) == []
    # Customers without orders are not removed by the date preset
    assert names({'last_order': '7d'}) == ['Sam Wheeler']
    assert names({'last_order': '30d'}) == ['Sam Wheeler', 'Jane Driver']
    assert names({'tire_size': 'r16'}) == ['Jane Driver']
    assert names({'vendor': 'Toyo'}) == ['Jane Driver']

    assert AnalyticsService.customer_summary(stats) == {
        'total_customers': 2,
        'with_orders': 1,
        'total_revenue': pytest.approx(661.5),
        'average_order': pytest.approx(330.75),
    }
    assert AnalyticsService.customer_summary([])['average_order'] == 0.0
    assert AnalyticsService.filter_choices(stats) == {'cities': ['Calgary', 'Edmonton'],
                                                      'vendors': ['Michelin', 'Toyo']}


def test_customer_export_rows(container):
    _seed(container)
    rows = AnalyticsService.export_rows(container.analytics_service.customer_stats())
    assert rows[0][:5] == ['Name', 'Email', 'Phone', 'City', 'Orders']
    assert rows[2] == ['Jane Driver', 'jane@example.com', '780-555-0101', 'Edmonton', 2, '661.50',
                       '2026-03-10', '205/55R16; 235/60R18', 'Michelin; Toyo']


def test_customer_order_history(container):
    jane, _ = _seed(container)
    detail = container.analytics_service.customer_detail(jane['id'])

    assert detail['customer']['order_count'] == 2
    assert [o['order_number'] for o in detail['orders']] == ['KT-20260310-0002', 'KT-20260105-0001']
    assert detail['orders'][0]['items'][0]['vendor'] == 'Toyo'
    assert container.analytics_service.customer_detail('missing') is None


# ═══════════════════════════════════════════════════════════════════════════
# OVERVIEW
# ═══════════════════════════════════════════════════════════════════════════

def test_percent_change():
    assert percent_change(0, 0) == 0
    assert percent_change(5, 0) == 100
    assert percent_change(50, 100) == -50
    assert percent_change(3, 2) == 50


def test_overview_months_statuses_and_sizes(container):
    _seed(container)
    orders = container.table('orders')
    orders.insert({'status': 'cancelled', 'total': 100.0, 'created_at': '2026-03-12T09:00:00+00:00'})
    orders.insert({'status': 'confirmed', 'total': 110.25, 'created_at': '2026-02-15T09:00:00+00:00'})

    overview = container.analytics_service.overview(now=NOW)
    assert overview['revenue_this_month'] == pytest.approx(220.5)
    assert overview['orders_this_month'] == 1
    assert overview['revenue_last_month'] == pytest.approx(110.25)
    assert overview['orders_last_month'] == 1
    assert overview['revenue_change'] == 100
    assert overview['orders_change'] == 0

    statuses = {row['status']: row['count'] for row in overview['status_breakdown']}
    assert statuses == {'completed': 1, 'pending': 1, 'cancelled': 1, 'confirmed': 1}

    days = overview['daily_revenue']
    assert len(days) == 30
    assert days[0]['date'] == '2026-02-19'
    assert days[-1]['date'] == '2026-03-20'
    by_date = {d['date']: d for d in days}
    assert by_date['2026-03-10'] == {'date': '2026-03-10', 'revenue': 220.5, 'orders': 1}
    assert by_date['2026-03-12']['orders'] == 0

    assert overview['top_sizes'] == [{'size': '235/60R18', 'quantity': 4},
                                     {'size': '205/55R16', 'quantity': 2}]


# ═══════════════════════════════════════════════════════════════════════════
# ROUTES
# ═══════════════════════════════════════════════════════════════════════════

def test_customer_pages(client, container):
    login_admin(client, container)
    order, _ = place_order(container)

    listing = client.get('/admin/customers?search=jane')
    assert listing.status_code == 200
    assert 'Jane Driver' in listing.get_data(as_text=True)
    assert 'Jane Driver' not in client.get('/admin/customers?orders=0').get_data(as_text=True)

    customer_id = order['customer_id']
    detail = client.get(f'/admin/customers/{customer_id}')
    assert detail.status_code == 200
    assert order['order_number'] in detail.get_data(as_text=True)
    assert client.get('/admin/customers/missing').status_code == 404

    export = client.get('/admin/customers/export?city=Edmonton')
    assert export.mimetype == 'text/csv'
    lines = export.get_data(as_text=True).splitlines()
    assert lines[0].startswith('Name,Email,Phone')
    assert 'jane@example.com' in lines[1]

    assert 'Top selling sizes' in client.get('/admin/analytics').get_data(as_text=True)
