import pytest

from tire_store.tests.helpers import make_product

DEALER_FORM = {
    'business_name': 'North Side Auto',
    'contact_name': 'Pat Lee',
    'email': 'pat@northside.example',
    'phone': '780-555-0199',
    'city': 'Edmonton',
}


# ═══════════════════════════════════════════════════════════════════════════
# INVENTORY
# ═══════════════════════════════════════════════════════════════════════════

def test_adjust_stock_rules(container):
    inventory = container.inventory_service
    product = make_product(container)

    assert inventory.adjust_stock('missing', 1, 'count')['error'] == 'Product not found'
    assert inventory.adjust_stock(product['id'], 1, '  ')['error'] == 'A reason is required'
    assert inventory.adjust_stock(product['id'], -1, 'damaged')['error'] == \
        'Cannot remove stock from an untracked product'

    assert inventory.adjust_stock(product['id'], 6, 'Delivery', reorder_level=2)['ok']
    assert inventory.adjust_stock(product['id'], -10, 'damaged')['error'] == 'Insufficient stock. On hand: 6'

    row = inventory.get_stock(product['id'])
    assert row['qty_on_hand'] == 6
    assert row['reorder_level'] == 2
    movements = inventory.list_movements(product['id'])
    assert movements[0]['delta_qty'] == 6
    assert movements[0]['reason'] == 'Delivery'


def test_availability_label_and_low_stock(container):
    inventory = container.inventory_service
    product = make_product(container, stock=3)
    row = inventory.get_stock(product['id'])
    assert inventory.availability_label(product, row) == 'In Stock'
    assert inventory.is_low_stock(row)

    untracked = make_product(container, size='195/65R15')
    assert inventory.availability_label(untracked) == 'Available within 24 hours'

    checks = inventory.check_availability([{'product_id': product['id'], 'quantity': 4}])
    assert checks[0]['is_available'] is False
    assert checks[0]['available_qty'] == 3


# ═══════════════════════════════════════════════════════════════════════════
# CATALOG
# ═══════════════════════════════════════════════════════════════════════════

def test_product_price_validation(container):
    result = container.catalog_service.create_product({'size': '205/55R16', 'price': 'abc'})
    assert not result['ok']
    assert container.catalog_service.create_product({'size': '205/55R16', 'price': 10, 'type': 'mud'})['error'] == \
        'Invalid tire type: mud'


def test_public_catalog_hides_wholesale(container):
    product = make_product(container, price=120.0, wholesale_price=80.0)
    public = container.catalog_service.get_product(product['id'])
    assert public['display_price'] == pytest.approx(120.0)
    assert 'wholesale_price' not in public

    shop = container.catalog_service.search_shop({'width': '235', 'rim': '18'})
    assert [p['id'] for p in shop] == [product['id']]
    assert 'wholesale_price' not in shop[0]
    assert container.catalog_service.search_shop({'rim': '17'}) == []


def test_approved_dealer_sees_wholesale(container):
    product = make_product(container, price=120.0, wholesale_price=80.0)
    applied = container.dealer_service.apply(DEALER_FORM, 'dealerpass')
    assert applied['ok']
    user_id = applied['user']['id']

    assert container.catalog_service.get_product(product['id'], user_id)['display_price'] == pytest.approx(120.0)
    assert container.dealer_service.set_status(applied['dealer']['id'], 'approved')['ok']
    assert container.catalog_service.get_product(product['id'], user_id)['display_price'] == pytest.approx(80.0)

    dashboard = container.dealer_service.dashboard(user_id)
    assert dashboard['is_approved']


def test_hidden_product_not_sold(container):
    product = make_product(container, is_active=False)
    assert container.catalog_service.get_product(product['id']) is None
    assert container.catalog_service.search_shop() == []


# ═══════════════════════════════════════════════════════════════════════════
# DEALERS / BOOKINGS
# ═══════════════════════════════════════════════════════════════════════════

def test_dealer_application_rules(container):
    missing = container.dealer_service.apply(dict(DEALER_FORM, phone=''), 'dealerpass')
    assert missing['error'] == 'Please fill in all required fields.'

    first = container.dealer_service.apply(DEALER_FORM, 'dealerpass')
    assert first['dealer']['status'] == 'pending'
    assert first['user']['role'] == 'dealer'

    again = container.dealer_service.apply(DEALER_FORM, 'dealerpass')
    assert again['error'] == 'Account exists. Please log in instead.'


def test_booking_requires_known_service(container):
    service = container.booking_service
    assert not service.create_booking({'name': 'Al', 'phone': '555', 'service_type': 'polish'})['ok']
    booking = service.create_booking({'name': 'Al', 'phone': '555', 'service_type': 'rotation'})['booking']
    assert booking['status'] == 'new'
    assert booking['preferred_date'] is None
    assert [b['id'] for b in service.list_bookings()] == [booking['id']]


# ═══════════════════════════════════════════════════════════════════════════
# REVIEWS
# ═══════════════════════════════════════════════════════════════════════════

def test_review_routing(container):
    service = container.review_service

    high = service.submit_review(5, 'Great service')
    assert high['route'] == 'high'
    assert high['review']['status'] == 'approved'
    assert high['google_review_url']

    low = service.submit_review('2', 'Slow install', 'Kim')
    assert low['route'] == 'low'
    assert low['review']['status'] == 'pending'
    escalations = container.notification_service.list_notifications()
    assert [n['type'] for n in escalations] == ['review_escalation']

    assert service.submit_review(0)['error'] == 'Please select a rating'
    assert service.submit_review(None)['error'] == 'Please select a rating'


def test_google_review_url_setting(container):
    container.content_service.save_company_info({'name': 'Kore Tires', 'google_review_link': 'https://g.example/r'})
    assert container.review_service.get_google_review_url() == 'https://g.example/r'
    container.content_service.set_setting('google_review_url', 'https://g.example/override')
    assert container.review_service.get_google_review_url() == 'https://g.example/override'


# ═══════════════════════════════════════════════════════════════════════════
# CONTENT
# ═══════════════════════════════════════════════════════════════════════════

def test_pages_and_policies(container):
    content = container.content_service
    page = content.save_page({'title': 'Winter Tire Guide', 'body': '<p>Hi</p>'})['page']
    assert page['slug'] == 'winter-tire-guide'
    assert content.get_page('winter-tire-guide')['title'] == 'Winter Tire Guide'
    assert content.save_page({'title': 'Other', 'slug': 'winter-tire-guide'})['error'].startswith('A page with slug')
    assert content.save_page({'title': ''})['error'] == 'Title is required'

    assert content.save_policy({'title': 'Returns'})['error'] == 'Title and content are required'
    content.save_policy({'key': 'returns', 'title': 'Returns', 'content': '30 days'})
    assert content.get_policy('returns')['content'] == '30 days'


def test_faq_toggle(container):
    content = container.content_service
    faq = content.save_faq({'question': 'Do you install?', 'answer': 'Yes', 'tags': 'install, service'})['faq']
    assert faq['tags'] == ['install', 'service']
    assert faq['is_active'] is True

    content.toggle_faq(faq['id'])
    assert content.list_faqs(active_only=True) == []
    content.toggle_faq(faq['id'])
    assert list(content.faqs_by_category()) == ['General']


def test_newsletter_subscribe(container):
    content = container.content_service
    assert content.subscribe('bad')['error'] == 'Please enter a valid email'
    assert content.subscribe('Fan@Example.com') == {'ok': True, 'already_subscribed': False}
    assert content.subscribe('fan@example.com') == {'ok': True, 'already_subscribed': True}


# ═══════════════════════════════════════════════════════════════════════════
# ACCOUNTS
# ═══════════════════════════════════════════════════════════════════════════

def test_sign_up_and_roles(container):
    users = container.user_service
    assert users.sign_up('nope', 'secret1')['error'] == 'A valid email is required'
    assert users.sign_up('a@b.co', '123')['error'] == 'Password must be at least 6 characters'

    admin = users.sign_up('boss@b.co', 'secret1', role='admin')['user']
    staff = users.sign_up('staff@b.co', 'secret1')['user']
    assert users.sign_up('STAFF@b.co', 'secret1')['error'] == 'An account with this email already exists'

    assert users.authenticate('staff@b.co', 'secret1')['id'] == staff['id']
    assert users.authenticate('staff@b.co', 'wrong') is None

    assert users.set_role(staff['id'], 'staff', admin['id'])['ok']
    assert users.is_admin_or_staff(staff['id'])
    assert users.set_role(admin['id'], 'user', admin['id'])['error'] == 'You cannot remove your own admin role'
    assert users.set_role(staff['id'], 'owner', admin['id'])['error'] == 'Invalid role: owner'
