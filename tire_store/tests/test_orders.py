from tire_store.services.order_service import check_rate_limit, contact_matches
from tire_store.tests.helpers import CONTACT, get_token, login, place_order


def test_contact_matches_email_or_phone_digits():
    customer = {'email': 'Jane@Example.com', 'phone': '(780) 555-0101'}
    assert contact_matches(customer, 'jane@example.com ')
    assert contact_matches(customer, '780.555.0101')
    assert not contact_matches(customer, '780-555-9999')


def test_rate_limit_window():
    attempts = []
    for i in range(5):
        allowed, attempts = check_rate_limit(attempts, now=100.0 + i)
        assert allowed
    allowed, attempts = check_rate_limit(attempts, now=110.0)
    assert not allowed
    assert len(attempts) == 5
    allowed, _ = check_rate_limit(attempts, now=170.0)
    assert allowed


def test_claim_order_rules(container):
    order, _ = place_order(container)
    service = container.order_service

    missing = service.claim_order('user-1', 'KT-00000000-0000', CONTACT['email'])
    assert missing['error'] == 'Order not found. Please check your order number and try again.'

    wrong = service.claim_order('user-1', order['order_number'], 'someone@else.com')
    assert wrong['error'].startswith('Verification failed')

    claimed = service.claim_order('user-1', order['order_number'].lower(), CONTACT['phone'])
    assert claimed['ok']
    assert claimed['claim']['verification_method'] == 'phone'

    again = service.claim_order('user-1', order['order_number'], CONTACT['email'])
    assert again['already_linked']

    other = service.claim_order('user-2', order['order_number'], CONTACT['email'])
    assert other['error'] == 'This order has already been claimed by another account.'

    assert [o['id'] for o in service.customer_orders('user-1')] == [order['id']]


def test_cancel_releases_and_complete_fulfils(container):
    order, product = place_order(container, quantity=2, stock=10)
    inventory = container.inventory_service
    assert inventory.get_stock(product['id'])['qty_reserved'] == 2

    assert container.order_service.update_status(order['id'], 'cancelled')['ok']
    assert inventory.get_stock(product['id'])['qty_reserved'] == 0

    second, product2 = place_order(container, quantity=3, stock=6)
    assert container.order_service.update_status(second['id'], 'completed')['ok']
    stock = inventory.get_stock(product2['id'])
    assert stock['qty_on_hand'] == 3
    assert stock['qty_reserved'] == 0

    assert container.order_service.update_status(second['id'], 'lost')['error'] == 'Invalid status: lost'


def test_claim_route_rate_limited(client, container):
    container.user_service.sign_up('buyer@example.com', 'secret1')
    login(client, 'buyer@example.com', 'secret1')
    token = get_token(client, '/account')

    for _ in range(5):
        r = client.post('/account/claim-order', data={'order_number': 'KT-1', 'contact': 'x@y.z',
                                                      'csrf_token': token}, follow_redirects=True)
        assert 'Order not found' in r.get_data(as_text=True)

    r = client.post('/account/claim-order', data={'order_number': 'KT-1', 'contact': 'x@y.z',
                                                  'csrf_token': token}, follow_redirects=True)
    assert 'Too many attempts. Please wait a minute and try again.' in r.get_data(as_text=True)


def test_order_changes_reach_stream_subscribers(container):
    feed = container.change_feed
    sub_id, queue = feed.open_stream('orders', maxsize=10)
    assert feed.subscriber_count('orders') == 1

    order, _ = place_order(container)
    container.order_service.update_status(order['id'], 'confirmed')

    events = [queue.get_nowait() for _ in range(queue.qsize())]
    assert [e['type'] for e in events] == ['INSERT', 'UPDATE']
    assert events[1]['new']['status'] == 'confirmed'

    assert feed.unsubscribe(sub_id)
    assert feed.subscriber_count() == 0
