import csv
import io
import os
import zipfile
from datetime import datetime

from tire_store.services.backup_service import BackupService
from tire_store.tests.helpers import get_token, login, login_admin, make_product, place_order

ADMIN_PAGES = [
    '/admin', '/admin/orders', '/admin/products', '/admin/inventory', '/admin/bulk-price',
    '/admin/invoices', '/admin/invoices/new', '/admin/dealers', '/admin/bookings', '/admin/reviews',
    '/admin/promos', '/admin/content', '/admin/audit', '/admin/reports', '/admin/notifications',
    '/admin/users', '/admin/backups', '/admin/customers', '/admin/analytics',
]


# ═══════════════════════════════════════════════════════════════════════════
# SECURITY
# ═══════════════════════════════════════════════════════════════════════════

def test_security_headers(client):
    r = client.get('/')
    assert r.status_code == 200
    assert r.headers['X-Frame-Options'] == 'DENY'
    assert r.headers['X-Content-Type-Options'] == 'nosniff'


def test_backups_and_logs_not_served(client):
    assert client.get('/backups/backup_2024-01-01.zip').status_code == 404
    assert client.get('/logs/performance.log').status_code == 404


def test_admin_requires_login(client):
    r = client.get('/admin', follow_redirects=True)
    assert 'Please sign in.' in r.get_data(as_text=True)
    r = client.get('/admin/api/orders')
    assert r.status_code == 401


def test_customer_cannot_open_back_office(client, container):
    container.user_service.sign_up('buyer@example.com', 'secret1')
    login(client, 'buyer@example.com', 'secret1')
    r = client.get('/admin', follow_redirects=True)
    assert 'Permission denied.' in r.get_data(as_text=True)


def test_staff_cannot_bulk_edit_prices(client, container):
    token, _ = login_admin(client, container, role='staff')
    assert client.get('/admin').status_code == 200
    r = client.get('/admin/bulk-price', follow_redirects=True)
    assert 'Permission denied.' in r.get_data(as_text=True)
    r = client.post('/admin/api/bulk-price/preview', json={'retail_value': 5}, headers={'X-CSRF-Token': token})
    assert r.status_code == 403


def test_form_post_without_csrf_is_refused(client):
    r = client.post('/newsletter', data={'email': 'fan@example.com'}, follow_redirects=True)
    assert 'Your session expired. Please try again.' in r.get_data(as_text=True)


# ═══════════════════════════════════════════════════════════════════════════
# STOREFRONT
# ═══════════════════════════════════════════════════════════════════════════

def test_storefront_pages(client, container):
    product = make_product(container, stock=8)
    container.content_service.save_faq({'question': 'Do you install?', 'answer': 'Yes'})
    container.content_service.save_policy({'key': 'returns', 'title': 'Returns', 'content': '30 days'})

    for path in ('/', '/shop?rim=18', f"/product/{product['id']}?compare=245/60R18", '/bundles', '/faq',
                 '/policies/returns', '/book-service', '/review', '/dealers/apply', '/login', '/signup'):
        assert client.get(path).status_code == 200, path
    assert client.get('/product/missing').status_code == 404
    assert client.get('/pages/missing').status_code == 404


def test_tire_size_api(client):
    r = client.get('/api/tire-size?size=235/60R18&compare=225/65R17')
    data = r.get_json()
    assert data['ok']
    assert data['dimensions']['width'] == 235
    assert 'comparison' in data
    assert client.get('/api/tire-size?size=abc').status_code == 400


def test_newsletter_route(client, container):
    token = get_token(client, '/')
    r = client.post('/newsletter', data={'email': 'fan@example.com', 'csrf_token': token}, follow_redirects=True)
    assert 'Thanks for subscribing!' in r.get_data(as_text=True)
    assert container.content_service.list_subscribers()[0]['email'] == 'fan@example.com'


def test_book_service_route(client, container):
    token = get_token(client, '/book-service')
    r = client.post('/book-service', data={'name': 'Al', 'phone': '780-555-0000', 'service_type': 'installation',
                                           'csrf_token': token}, follow_redirects=True)
    assert r.status_code == 200
    assert len(container.booking_service.list_bookings()) == 1


def test_low_review_stays_on_site(client, container):
    token = get_token(client, '/review')
    r = client.post('/review', data={'rating': '2', 'comment': 'Slow', 'csrf_token': token})
    assert r.status_code == 200
    assert container.review_service.list_reviews('pending')[0]['rating'] == 2


def test_signup_then_account(client):
    token = get_token(client, '/signup')
    r = client.post('/signup', data={'email': 'new@example.com', 'password': 'secret1', 'full_name': 'New Person',
                                     'csrf_token': token}, follow_redirects=True)
    assert 'Account created.' in r.get_data(as_text=True)
    assert client.get('/account').status_code == 200


# ═══════════════════════════════════════════════════════════════════════════
# BACK OFFICE
# ═══════════════════════════════════════════════════════════════════════════

def test_admin_pages_render(client, container):
    login_admin(client, container)
    make_product(container, stock=2)
    for path in ADMIN_PAGES:
        assert client.get(path).status_code == 200, path


def test_admin_order_status_api(client, container):
    token, _ = login_admin(client, container)
    order, _ = place_order(container)
    r = client.post(f"/admin/api/orders/{order['id']}/status", json={'status': 'confirmed'},
                    headers={'X-CSRF-Token': token})
    assert r.status_code == 200
    assert r.get_json()['order']['status'] == 'confirmed'
    assert client.get(f"/admin/orders/{order['id']}").status_code == 200

    listed = client.get('/admin/api/orders').get_json()
    assert listed['orders'][0]['order_number'] == order['order_number']


def test_invoice_form_creates_invoice(client, container):
    token, _ = login_admin(client, container)
    r = client.post('/admin/api/invoices', data={
        'guest_name': 'Walk-in',
        'description[]': ['Install', 'Balance'],
        'quantity[]': ['1', '4'],
        'unit_price[]': ['40', '10'],
        'csrf_token': token,
    }, follow_redirects=True)
    year = datetime.now().year
    assert f'Invoice INV-{year}-0001 created' in r.get_data(as_text=True)

    invoice = container.invoice_service.list_invoices()[0]
    assert invoice['subtotal'] == 80.0
    assert client.get(f"/admin/invoices/{invoice['id']}/print").status_code == 200


def test_bulk_price_preview_and_apply_api(client, container):
    token, _ = login_admin(client, container)
    product = make_product(container, price=100.0)
    headers = {'X-CSRF-Token': token}

    preview = client.post('/admin/api/bulk-price/preview', headers=headers, json={
        'filters': {'vendor': 'Michelin'}, 'rule': {'retail_operation': 'set', 'retail_value': 90}})
    data = preview.get_json()
    assert data['ok']
    assert data['summary']['count'] == 1

    applied = client.post('/admin/api/bulk-price/apply', headers=headers, json={
        'filters': {'vendor': 'Michelin'}, 'rule': {'retail_operation': 'set', 'retail_value': 90},
        'confirm_text': 'CONFIRM'})
    assert applied.status_code == 200
    batch_id = applied.get_json()['batch_id']
    assert container.table('products').get(product['id'])['price'] == 90.0

    rolled = client.post(f'/admin/api/bulk-price/rollback/{batch_id}', headers=headers, json={})
    assert rolled.get_json() == {'ok': True, 'rolled_back': 1, 'skipped': 0}
    assert container.table('products').get(product['id'])['price'] == 100.0


def test_audit_export_csv(client, container):
    login_admin(client, container)
    make_product(container, stock=4)
    r = client.get('/admin/audit/export')
    assert r.status_code == 200
    assert r.mimetype == 'text/csv'
    assert 'audit_log.csv' in r.headers['Content-Disposition']
    rows = list(csv.reader(io.StringIO(r.get_data(as_text=True))))
    assert rows[0] == ['Date', 'User', 'Action', 'Table', 'Record', 'Old values', 'New values']
    assert len(rows) > 1


# ═══════════════════════════════════════════════════════════════════════════
# BACKUPS
# ═══════════════════════════════════════════════════════════════════════════

def test_backup_zip_and_rotation(container, tmp_path):
    make_product(container)
    service = BackupService(str(tmp_path))

    result = service.create_backup()
    assert result['success']
    with zipfile.ZipFile(result['backup_path']) as zf:
        assert 'products.json' in zf.namelist()

    assert service.create_backup()['message'] == "Today's backup already exists"

    for day in range(1, 10):
        open(os.path.join(service.backup_root, f'backup_2020-01-0{day}.zip'), 'wb').close()
    rotation = service.rotate_backups()
    assert rotation['remaining_count'] == BackupService.MAX_BACKUPS
    assert service.get_backup_status()['today_exists']
