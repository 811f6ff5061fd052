from datetime import datetime, timedelta, timezone

import pytest

from tire_store.repositories.base import BackendError
from tire_store.services import checkout_service as checkout_module
from tire_store.services.checkout_service import CheckoutError
from tire_store.tests.helpers import CONTACT, cart_line, get_token, make_product


# ═══════════════════════════════════════════════════════════════════════════
# WIZARD RULES
# ═══════════════════════════════════════════════════════════════════════════

def test_validate_step_messages(container):
    service = container.checkout_service
    assert service.validate_step(1, [], 'delivery', {})['error'] == 'Your cart is empty'
    assert service.validate_step(2, [{}], 'teleport', {})['error'] == 'Please choose a fulfillment method'
    assert service.validate_step(3, [{}], 'pickup', {'name': 'A'})['error'] == 'Please fill in all required fields.'

    no_address = dict(CONTACT, address='')
    assert service.validate_step(3, [{}], 'delivery', no_address)['error'] == 'Please provide your delivery address.'
    assert service.validate_step(3, [{}], 'pickup', no_address)['ok']


def test_navigate_forward_one_step_at_a_time(container):
    service = container.checkout_service
    product = make_product(container)
    items = [cart_line(product)]

    assert service.navigate(1, 3, items, 'delivery', {})['error'] == 'Please complete the current step first'
    assert service.navigate(1, 2, items, 'delivery', {}) == {'ok': True, 'step': 2}
    assert service.navigate(1, 2, [], 'delivery', {})['step'] == 1
    # Going back never validates
    assert service.navigate(3, 1, [], None, {}) == {'ok': True, 'step': 1}


# ═══════════════════════════════════════════════════════════════════════════
# ORDER PLACEMENT
# ═══════════════════════════════════════════════════════════════════════════

def test_submit_order_writes_rows_and_reserves_stock(container):
    product = make_product(container, price=100.0, stock=10)
    result = container.checkout_service.submit_order(
        [cart_line(product, 4)], 'delivery', CONTACT, None, user_id=None, guest_id='guest_1')

    order = result['order']
    assert order['order_number'].startswith('KT-')
    assert order['status'] == 'pending'
    assert order['guest_id'] == 'guest_1'
    assert order['total'] == pytest.approx(441.0)  # 400 + 20 levy + 21 GST
    assert not result['needs_stock_confirmation']

    items = container.table('order_items').select({'order_id': order['id']})
    assert len(items) == 1
    assert items[0]['total_price'] == pytest.approx(400.0)

    stock = container.inventory_service.get_stock(product['id'])
    assert stock['qty_reserved'] == 4
    assert stock['qty_on_hand'] == 10

    requests = container.review_service.list_requests()
    assert len(requests) == 1
    assert requests[0]['order_number'] == order['order_number']


def test_submit_order_flags_short_stock(container):
    product = make_product(container, stock=2)
    result = container.checkout_service.submit_order(
        [cart_line(product, 4)], 'pickup', CONTACT, None, guest_id='guest_2')
    assert result['needs_stock_confirmation']
    assert container.inventory_service.get_stock(product['id'])['qty_reserved'] == 2
    stored = container.table('orders').get(result['order']['id'])
    assert stored['needs_stock_confirmation'] is True


def test_submit_order_rejects_empty_cart(container):
    with pytest.raises(CheckoutError) as excinfo:
        container.checkout_service.submit_order([], 'delivery', CONTACT, None)
    assert excinfo.value.message == 'Your cart is empty'


def test_order_numbers_stay_unique_on_collision(container, monkeypatch):
    draws = iter([42, 42, 43])
    monkeypatch.setattr(checkout_module.random, 'randint', lambda low, high: next(draws))
    product = make_product(container, stock=20)

    numbers = [
        container.checkout_service.submit_order(
            [cart_line(product, 1)], 'pickup', CONTACT, None, guest_id=f'guest_{n}')['order']['order_number']
        for n in range(2)
    ]
    assert numbers[0].endswith('-0042')
    assert numbers[1].endswith('-0043')

    with pytest.raises(BackendError, match='already exists'):
        container.table('orders').insert({'order_number': numbers[0], 'status': 'pending'})
    assert container.table('orders').count({'order_number': numbers[0]}) == 1


def test_order_number_draws_are_bounded(container, monkeypatch):
    monkeypatch.setattr(checkout_module.random, 'randint', lambda low, high: 7)
    product = make_product(container, stock=20)
    container.checkout_service.submit_order([cart_line(product, 1)], 'pickup', CONTACT, None, guest_id='g1')

    with pytest.raises(CheckoutError, match='Could not assign an order number'):
        container.checkout_service.submit_order([cart_line(product, 1)], 'pickup', CONTACT, None, guest_id='g2')
    assert container.table('orders').count() == 1


def test_failed_items_insert_keeps_order_row(container, monkeypatch):
    product = make_product(container, stock=10)

    def fail_insert(rows):
        raise BackendError('order_items write failed', table='order_items')

    monkeypatch.setattr(container.table('order_items'), 'insert_many', fail_insert)
    with pytest.raises(CheckoutError) as excinfo:
        container.checkout_service.submit_order([cart_line(product, 2)], 'pickup', CONTACT, None, guest_id='g')

    number = excinfo.value.order_number
    assert number.startswith('KT-')
    # Steps 1 and 2 are not undone; later steps never ran
    assert container.table('orders').maybe_single(order_number=number) is not None
    assert container.table('customers').count() == 1
    assert container.table('order_items').count() == 0
    assert container.inventory_service.get_stock(product['id'])['qty_reserved'] == 0


def test_promo_code_discount_and_usage(container):
    promo = container.promo_service.save_promo({
        'code': 'spring10', 'discount_type': 'percentage', 'discount_value': 10, 'min_order_value': 100,
    })['promo']
    assert promo['code'] == 'SPRING10'

    assert container.promo_service.validate_code('SPRING10', 50)['error'] == 'Minimum order of $100.00 required'
    assert container.promo_service.validate_code('NOPE', 500)['error'] == 'Invalid promo code'

    applied = container.promo_service.validate_code('spring10', 400)['applied']
    assert applied['discount_amount'] == pytest.approx(40.0)

    product = make_product(container, price=100.0)
    result = container.checkout_service.submit_order(
        [cart_line(product, 4)], 'pickup', CONTACT, applied, guest_id='guest_3')
    assert result['order']['discount_amount'] == pytest.approx(40.0)
    assert result['order']['promo_code_id'] == promo['id']
    assert container.table('promo_codes').get(promo['id'])['used_count'] == 1


def test_referral_code_records_redemption(container):
    referral = container.promo_service.create_referral_code({'code': 'friend-bob', 'referrer_name': 'Bob'})
    assert referral['ok']

    applied = container.promo_service.validate_code('FRIEND-BOB', 300)['applied']
    assert applied['is_referral']
    assert applied['discount_amount'] == pytest.approx(50.0)

    product = make_product(container, price=100.0)
    result = container.checkout_service.submit_order(
        [cart_line(product, 4)], 'pickup', CONTACT, applied, guest_id='guest_4')
    assert result['order']['promo_code_id'] is None

    redemptions = container.promo_service.list_redemptions()
    assert len(redemptions) == 1
    assert redemptions[0]['reward_status'] == 'pending'
    assert redemptions[0]['referral_code']['referrer_name'] == 'Bob'

    blocked = container.promo_service.delete_referral_code(referral['referral_code']['id'])
    assert blocked['error'] == 'Failed to delete code. It may have existing redemptions.'


def test_referral_discount_capped_at_subtotal(container):
    container.promo_service.create_referral_code({'code': 'friend-amy', 'referrer_name': 'Amy'})

    applied = container.promo_service.validate_code('FRIEND-AMY', 30.0)['applied']
    assert applied['discount_value'] == pytest.approx(50.0)
    assert applied['discount_amount'] == pytest.approx(30.0)

    product = make_product(container, price=30.0)
    totals = container.checkout_service.compute_totals([cart_line(product, 1)], applied)
    assert totals['discount'] == pytest.approx(30.0)
    # Only the levy and its GST remain
    assert totals['gst'] == pytest.approx(0.25)
    assert totals['total'] == pytest.approx(5.25)


def test_review_request_due_after_a_week(container):
    product = make_product(container)
    container.checkout_service.submit_order([cart_line(product, 1)], 'pickup', CONTACT, None, guest_id='g')

    assert container.review_service.process_due_requests()['processed'] == 0
    later = datetime.now(timezone.utc) + timedelta(days=8)
    result = container.review_service.process_due_requests(now=later)
    assert result['processed'] == 1
    assert result['results'][0]['email'] == CONTACT['email']
    types = [n['type'] for n in container.notification_service.list_notifications()]
    assert 'review_request' in types
    assert 'order_confirmation' in types


# ═══════════════════════════════════════════════════════════════════════════
# ROUTES
# ═══════════════════════════════════════════════════════════════════════════

def test_checkout_flow_through_routes(client, container):
    product = make_product(container, price=120.0, stock=8)
    token = get_token(client, '/')

    r = client.post('/api/cart/add', json={'product_id': product['id'], 'quantity': 4},
                    headers={'X-CSRF-Token': token})
    assert r.status_code == 200
    assert r.get_json()['cart']['item_count'] == 4

    client.get('/cart')
    r = client.post('/checkout/step', data={'target': 3, 'csrf_token': token}, follow_redirects=True)
    assert 'Please complete the current step first' in r.get_data(as_text=True)

    client.post('/checkout/step', data={'target': 2, 'csrf_token': token})
    client.post('/checkout/step', data={'target': 3, 'fulfillment': 'pickup', 'csrf_token': token})
    client.post('/checkout/step', data=dict(CONTACT, target=4, csrf_token=token))

    r = client.post('/checkout/submit', data={'csrf_token': token}, follow_redirects=True)
    assert r.status_code == 200
    assert 'Order Placed Successfully!' in r.get_data(as_text=True)

    orders = container.order_service.list_orders()
    assert len(orders) == 1
    assert orders[0]['fulfillment_method'] == 'pickup'
    assert client.get('/api/cart').get_json()['cart']['item_count'] == 0


def test_cart_api_requires_csrf(client, container):
    product = make_product(container)
    r = client.post('/api/cart/add', json={'product_id': product['id']})
    assert r.status_code == 403
    assert r.get_json() == {'ok': False, 'error': 'Invalid CSRF token'}


def test_checkout_promo_route(client, container):
    container.promo_service.save_promo({'code': 'TENOFF', 'discount_type': 'fixed', 'discount_value': 10})
    product = make_product(container, price=100.0)
    token = get_token(client, '/')
    client.post('/api/cart/add', json={'product_id': product['id'], 'quantity': 1},
                headers={'X-CSRF-Token': token})

    r = client.post('/checkout/promo', data={'code': 'tenoff', 'csrf_token': token}, follow_redirects=True)
    assert 'Promo code applied! You save $10.00' in r.get_data(as_text=True)
