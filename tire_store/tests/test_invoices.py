from datetime import datetime, timezone

import pytest

from tire_store.tests.helpers import make_product, place_order

LINES = [{'description': 'Winter tire 205/55R16', 'quantity': 4, 'unit_price': 100.0}]


def test_invoice_numbers_are_sequential(container):
    service = container.invoice_service
    year = datetime.now().year
    first = service.create_invoice({'guest_name': 'Walk-in', 'line_items': LINES})['invoice']
    second = service.create_invoice({'guest_name': 'Walk-in', 'line_items': LINES})['invoice']
    assert first['invoice_number'] == f'INV-{year}-0001'
    assert second['invoice_number'] == f'INV-{year}-0002'
    assert first['status'] == 'draft'
    assert first['total'] == pytest.approx(420.0)


def test_invoice_requires_lines(container):
    result = container.invoice_service.create_invoice({'guest_name': 'Walk-in', 'line_items': []})
    assert result == {'ok': False, 'error': 'Add at least one line item'}


def test_line_price_comes_from_catalog(container):
    product = make_product(container, price=89.99, wholesale_price=60.0)
    retail = container.invoice_service.create_invoice(
        {'line_items': [{'product_id': product['id'], 'quantity': 2}]})['invoice']
    assert retail['line_items'][0]['unit_price'] == pytest.approx(89.99)
    assert retail['line_items'][0]['description'].startswith('235/60R18')

    dealer = container.invoice_service.create_invoice(
        {'type': 'dealer', 'line_items': [{'product_id': product['id'], 'quantity': 2}]})['invoice']
    assert dealer['line_items'][0]['unit_price'] == pytest.approx(60.0)


def test_guest_email_joins_newsletter(container):
    container.invoice_service.create_invoice(
        {'guest_name': 'Sam', 'guest_email': 'Sam@Example.com', 'line_items': LINES})
    subscribers = container.content_service.list_subscribers()
    assert [s['email'] for s in subscribers] == ['sam@example.com']
    assert subscribers[0]['source'] == 'invoice_capture'


def test_send_invoice_from_order(container):
    order, _ = place_order(container, quantity=4, price=100.0)
    service = container.invoice_service

    draft = service.draft_from_order(order['id'])
    assert draft['line_items'][0]['description'] == f"Order {order['order_number']}"

    invoice = service.create_from_order(order['id'], {'apply_ab_levy': 'on'})['invoice']
    assert invoice['order_id'] == order['id']
    assert invoice['ab_levy'] == pytest.approx(4.0)

    sent = service.send_invoice(invoice['id'], 'admin-1')
    assert sent == {'ok': True, 'sent_to': 'jane@example.com'}
    assert service.get_invoice(invoice['id'])['status'] == 'sent'
    assert any(n['type'] == 'invoice' for n in container.notification_service.list_notifications())


def test_send_invoice_without_recipient(container):
    invoice = container.invoice_service.create_invoice({'guest_name': 'Walk-in', 'line_items': LINES})['invoice']
    result = container.invoice_service.send_invoice(invoice['id'])
    assert result['error'] == 'No recipient email found for this invoice'


def test_print_context_and_levy_flag(container):
    service = container.invoice_service
    plain = service.create_invoice({'guest_name': 'Walk-in', 'guest_phone': '555', 'line_items': LINES})['invoice']
    context = service.print_context(plain['id'])
    assert context['bill_to'] == {'name': 'Walk-in', 'lines': ['Phone: 555']}
    assert not context['show_levy']
    assert context['company']['name'] == 'Kore Tires'
    assert service.print_context('missing') is None


def test_paid_invoices_drive_revenue_report(container):
    service = container.invoice_service
    paid = service.create_invoice({'guest_name': 'A', 'line_items': LINES})['invoice']
    service.create_invoice({'guest_name': 'B', 'line_items': LINES})

    updated = service.update_status(paid['id'], 'paid', 'admin-1')['invoice']
    assert updated['paid_at']
    assert service.update_status(paid['id'], 'lost')['error'] == 'Invalid status: lost'

    report = container.report_service.revenue_report(group_by='monthly', period='all')
    assert report['summary']['invoice_count'] == 1
    assert report['summary']['revenue'] == pytest.approx(420.0)
    assert report['summary']['tax'] == pytest.approx(20.0)
    assert report['breakdown'][0]['period'] == datetime.now(timezone.utc).strftime('%Y-%m')

    summary = service.dashboard_summary()
    assert summary['paid_total'] == pytest.approx(420.0)
