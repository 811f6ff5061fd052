import re

CSRF_RE = re.compile(r'name="csrf_token" value="([0-9a-f]+)"')

ADMIN_EMAIL = 'admin@koretires.test'
ADMIN_PASSWORD = 'admin1234'


def get_token(client, path='/login'):
    r = client.get(path)
    assert r.status_code == 200
    m = CSRF_RE.search(r.get_data(as_text=True))
    assert m, 'no csrf token in page'
    return m.group(1)


def login(client, email, password):
    token = get_token(client)
    r = client.post('/login', data={'email': email, 'password': password, 'csrf_token': token},
                    follow_redirects=True)
    assert r.status_code == 200
    assert 'Welcome back!' in r.get_data(as_text=True)
    return token


def login_admin(client, container, role='admin'):
    """Create a back-office account and sign it in. Returns (csrf token, user)."""
    result = container.user_service.sign_up(ADMIN_EMAIL, ADMIN_PASSWORD, {'full_name': 'Shop Admin'}, role=role)
    assert result['ok'], result
    token = login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    return token, result['user']


def make_product(container, size='235/60R18', price=150.0, stock=None, **extra):
    data = {
        'size': size,
        'description': extra.pop('description', 'All-season touring tire'),
        'vendor': extra.pop('vendor', 'Michelin'),
        'type': extra.pop('type', 'all_season'),
        'price': price,
    }
    data.update(extra)
    result = container.catalog_service.create_product(data)
    assert result['ok'], result
    product = result['product']
    if stock is not None:
        adjusted = container.inventory_service.adjust_stock(product['id'], stock, 'Initial count')
        assert adjusted['ok'], adjusted
    return product


CONTACT = {
    'name': 'Jane Driver',
    'email': 'jane@example.com',
    'phone': '780-555-0101',
    'preferred_contact': 'call',
    'address': '123 Main St',
    'city': 'Edmonton',
    'postal_code': 'T5M 1Y6',
}


def cart_line(product, quantity=4):
    """Session cart entry for a catalog product."""
    return {
        'id': product['id'], 'product_id': product['id'], 'size': product['size'],
        'description': product['description'], 'vendor': product['vendor'],
        'type': product['type'], 'price': product['price'], 'quantity': quantity,
    }


def place_order(container, quantity=2, stock=10, price=150.0):
    product = make_product(container, price=price, stock=stock)
    result = container.checkout_service.submit_order(
        [cart_line(product, quantity)], 'pickup', CONTACT, None, guest_id='guest_x')
    return result['order'], product
