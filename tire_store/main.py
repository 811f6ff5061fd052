import csv
import io
import json
import logging
import os
import uuid
from functools import wraps
from queue import Empty

from flask import (
    Flask, Response, abort, flash, redirect, render_template, request,
    send_from_directory, session, url_for,
)

from tire_store import config
from tire_store.models import (
    BookingStatus, DealerStatus, InvoiceStatus, OrderStatus,
    ReviewStatus, TireType, enum_values,
)
from tire_store.repositories.base import BackendError

# Request / function profiling
from tire_store.performance_logger import init_profiling

# Daily backups
from tire_store.services.backup_service import run_startup_backup
from tire_store.services.booking_service import SERVICE_TYPES, TIME_SLOTS
from tire_store.services.bulk_price_service import PriceRule
from tire_store.services.catalog_service import compare_sizes, tire_dimensions
from tire_store.services.checkout_service import (
    FULFILLMENT_LABELS, LAST_STEP, STEPS, CheckoutError, clean_contact,
)
from tire_store.services.order_service import check_rate_limit
from tire_store.services.user_service import PermissionDeniedError

# ═══════════════════════════════════════════════════════════════════════════
# DEPENDENCY CONTAINER - services and repositories
# ═══════════════════════════════════════════════════════════════════════════
# Routes only translate request -> service -> response; the business rules
# live in services/.
# ═══════════════════════════════════════════════════════════════════════════
from tire_store.app_container import get_container

logging.basicConfig(
    level=logging.WARNING if config.PRODUCTION_MODE else logging.INFO,
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# ═══════════════════════════════════════════════════════════════════════════
# PROFILING
# ═══════════════════════════════════════════════════════════════════════════
# Times every route and @profile_function call. Logs go to logs/.
# Disable with TIRE_STORE_PROFILING=0
init_profiling(app)

# ═══════════════════════════════════════════════════════════════════════════════
# SESSIONS
# ═══════════════════════════════════════════════════════════════════════════════
# In production the secret key MUST come from the environment:
#   export TIRE_STORE_SECRET_KEY="a_long_random_value"
if config.PRODUCTION_MODE and not config.SECRET_KEY:
    logger.warning("PRODUCTION mode without TIRE_STORE_SECRET_KEY; set it for real deployments")

app.secret_key = config.SECRET_KEY or config.DEFAULT_SECRET_KEY

app.config.update(
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SECURE=config.PRODUCTION_MODE,
    SESSION_COOKIE_SAMESITE='Lax',
    PERMANENT_SESSION_LIFETIME=86400,  # 24 hours
    MAX_CONTENT_LENGTH=config.MAX_CONTENT_LENGTH,
)

BACK_OFFICE_ROLES = ('admin', 'staff')


def container():
    return get_container()


def current_user_id():
    return session.get('user_id')


def wants_json():
    return request.is_json or 'application/json' in request.headers.get('Accept', '')


def request_data():
    """JSON body or form fields as a plain dict."""
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


# ═══════════════════════════════════════════════════════════════════════════════
# AUTH DECORATORS
# ═══════════════════════════════════════════════════════════════════════════════

def login_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if 'user_id' not in session:
            if '/api/' in request.path:
                return {'ok': False, 'error': 'Not authenticated'}, 401
            flash('Please sign in.', 'warning')
            return redirect(url_for('login', next=request.path))
        return f(*args, **kwargs)
    return wrapper


def role_required(*roles):
    """
    The role is read from the account on every request, so a role change
    takes effect without signing out.
    """
    def deco(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            try:
                container().user_service.require_role(current_user_id(), roles)
            except PermissionDeniedError:
                if '/api/' in request.path:
                    return {'ok': False, 'error': 'Permission denied'}, 403
                flash('Permission denied.', 'danger')
                return redirect(url_for('home'))
            return f(*args, **kwargs)
        return wrapper
    return deco


admin_required = role_required(*BACK_OFFICE_ROLES)


def generate_csrf_token():
    if 'csrf_token' not in session:
        session['csrf_token'] = uuid.uuid4().hex
    return session['csrf_token']


@app.context_processor
def inject_globals():
    return {
        'csrf_token': generate_csrf_token(),
        'company_name': config.COMPANY_NAME,
        'current_role': session.get('role'),
        'current_email': session.get('user_email'),
        'cart_count': sum(int(i.get('quantity') or 0) for i in session.get('cart', [])),
    }


def verify_csrf(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if request.method == 'POST':
            token = session.get('csrf_token')
            form_token = (
                request.form.get('csrf_token') or
                request.headers.get('X-CSRF-Token') or
                request.headers.get('X-CSRFToken')
            )
            if not form_token and request.is_json:
                json_data = request.get_json(silent=True) or {}
                form_token = json_data.get('csrf_token')

            if not token or not form_token or token != form_token:
                if '/api/' in request.path:
                    return {'ok': False, 'error': 'Invalid CSRF token'}, 403
                flash('Your session expired. Please try again.', 'warning')
                return redirect(request.referrer or url_for('home'))
        return f(*args, **kwargs)
    return wrapper


def api_result(result, success_message=None, fallback='admin_dashboard', **fallback_args):
    """
    JSON for API callers, flash + redirect for HTML forms.
    """
    if wants_json():
        return result, (200 if result.get('ok') else 400)
    if result.get('ok'):
        if success_message:
            flash(success_message, 'success')
    else:
        flash(result.get('error') or 'Something went wrong', 'danger')
    return redirect(request.referrer or url_for(fallback, **fallback_args))


@app.after_request
def set_security_headers(response):
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['Referrer-Policy'] = 'no-referrer-when-downgrade'
    response.headers['Permissions-Policy'] = 'geolocation=(), microphone=()'
    # HSTS only behind real HTTPS
    if request.is_secure:
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    return response


@app.errorhandler(BackendError)
def handle_backend_error(error):
    logger.exception("Backend error on %s %s", request.method, request.path)
    if '/api/' in request.path or wants_json():
        return {'ok': False, 'error': str(error)}, 500
    flash('Something went wrong. Please try again.', 'danger')
    return redirect(request.referrer or url_for('home'))


# ═══════════════════════════════════════════════════════════════════════════════
# SENSITIVE ROUTES
# ═══════════════════════════════════════════════════════════════════════════════
@app.route('/backups/<path:filename>')
@app.route('/logs/<path:filename>')
def block_sensitive_routes(filename):
    """Backups and logs are never served."""
    return "Not Found", 404


@app.route('/uploads/<bucket>/<path:filename>')
def uploaded_file(bucket, filename):
    bucket_root = os.path.join(container().upload_root, bucket)
    if not os.path.isdir(bucket_root):
        abort(404)
    return send_from_directory(bucket_root, filename)


# ═══════════════════════════════════════════════════════════════════════════
# AUTH
# ═══════════════════════════════════════════════════════════════════════════

def _start_session(user):
    session.permanent = True
    session['user_id'] = user['id']
    session['user_email'] = user['email']
    session['role'] = user.get('role')


@app.route('/login', methods=['GET', 'POST'])
@verify_csrf
def login():
    if request.method == 'POST':
        email = (request.form.get('email') or '').strip()
        password = request.form.get('password') or ''
        if not email or not password:
            flash('Email and password are required.', 'warning')
            return redirect(url_for('login'))

        user = container().user_service.authenticate(email, password)
        if not user:
            flash('Invalid email or password.', 'danger')
            return redirect(url_for('login'))

        _start_session(user)
        flash('Welcome back!', 'success')
        next_url = request.args.get('next') or request.form.get('next')
        if next_url and next_url.startswith('/') and not next_url.startswith('//'):
            return redirect(next_url)
        if user.get('role') in BACK_OFFICE_ROLES:
            return redirect(url_for('admin_dashboard'))
        return redirect(url_for('account'))
    return render_template('login.html', next=request.args.get('next', ''))


@app.route('/signup', methods=['GET', 'POST'])
@verify_csrf
def signup():
    if request.method == 'POST':
        result = container().user_service.sign_up(
            request.form.get('email'),
            request.form.get('password'),
            {'full_name': (request.form.get('full_name') or '').strip(),
             'phone': (request.form.get('phone') or '').strip()},
        )
        if not result['ok']:
            flash(result['error'], 'danger')
            return redirect(url_for('signup'))
        _start_session(result['user'])
        flash('Account created.', 'success')
        return redirect(url_for('account'))
    return render_template('signup.html')


@app.route('/logout')
def logout():
    session.clear()
    flash('Signed out.', 'info')
    return redirect(url_for('home'))


# ═══════════════════════════════════════════════════════════════════════════
# STOREFRONT
# ═══════════════════════════════════════════════════════════════════════════

@app.route('/')
def home():
    c = container()
    products = c.catalog_service.search_shop({}, current_user_id())[:8]
    return render_template(
        'home.html',
        products=products,
        reviews=c.review_service.list_public(limit=6),
        bundles=c.catalog_service.list_bundles()[:3],
    )


@app.route('/shop')
def shop():
    c = container()
    filters = {key: request.args.get(key, '') for key in ('width', 'aspect', 'rim', 'type', 'search')}
    return render_template(
        'shop.html',
        products=c.catalog_service.search_shop(filters, current_user_id()),
        filters=filters,
        size_options=c.catalog_service.size_options(),
        tire_types=enum_values(TireType),
    )


@app.route('/product/<product_id>')
def product_detail(product_id):
    c = container()
    product = c.catalog_service.get_product(product_id, current_user_id())
    if not product:
        abort(404)
    compare_to = (request.args.get('compare') or '').strip()
    comparison = compare_sizes(compare_to, product.get('size', '')) if compare_to else None
    return render_template(
        'product.html',
        product=product,
        compare_to=compare_to,
        comparison=comparison,
        reviews=c.review_service.list_public(product_id=product_id),
    )


@app.route('/bundles')
def bundles():
    return render_template('bundles.html', bundles=container().catalog_service.list_bundles())


@app.route('/api/tire-size')
def api_tire_size():
    """Dimensions for the size visualiser (optionally compared to a reference)."""
    size = request.args.get('size', '')
    dimensions = tire_dimensions(size)
    if not dimensions:
        return {'ok': False, 'error': 'Could not read that tire size'}, 400
    result = {'ok': True, 'size': size.upper(), 'dimensions': dimensions}
    reference = request.args.get('compare')
    if reference:
        result['comparison'] = compare_sizes(size, reference)
    return result


# ═══════════════════════════════════════════════════════════════════════════
# CART API
# ═══════════════════════════════════════════════════════════════════════════

@app.route('/api/cart', methods=['GET'])
def api_cart():
    return {'ok': True, 'cart': container().cart_service.get_cart()}


@app.route('/api/cart/add', methods=['POST'])
@verify_csrf
def api_cart_add():
    c = container()
    data = request_data()
    if data.get('custom'):
        result = c.cart_service.add_custom_item(
            data.get('size'), data.get('description'), data.get('price'), data.get('quantity') or 1)
    else:
        product = c.catalog_service.get_product(data.get('product_id'), current_user_id())
        result = c.cart_service.add_item(product, data.get('quantity') or 1,
                                         product.get('display_price') if product else None)
    return api_result(result, 'Added to cart', fallback='checkout')


@app.route('/api/cart/update', methods=['POST'])
@verify_csrf
def api_cart_update():
    data = request_data()
    result = container().cart_service.update_quantity(data.get('item_id'), data.get('quantity'))
    return api_result(result, fallback='checkout')


@app.route('/api/cart/remove', methods=['POST'])
@verify_csrf
def api_cart_remove():
    result = container().cart_service.remove_item(request_data().get('item_id'))
    return api_result(result, 'Removed from cart', fallback='checkout')


@app.route('/api/cart/clear', methods=['POST'])
@verify_csrf
def api_cart_clear():
    container().cart_service.clear()
    return api_result({'ok': True}, 'Cart cleared', fallback='checkout')


# ═══════════════════════════════════════════════════════════════════════════
# CHECKOUT
# ═══════════════════════════════════════════════════════════════════════════
# The wizard step lives in the session: going back is always allowed,
# going forward only through /checkout/step (validated).

@app.route('/cart')
def cart():
    session['checkout_step'] = 1
    return redirect(url_for('checkout'))


@app.route('/checkout')
def checkout():
    c = container()
    current = int(session.get('checkout_step') or 1)
    requested = request.args.get('step', type=int) or current
    step = requested if requested <= current else current
    session['checkout_step'] = step

    cart_data = c.cart_service.get_cart()
    applied = c.cart_service.get_applied_code()
    return render_template(
        'checkout.html',
        step=step,
        steps=STEPS,
        cart=cart_data,
        fulfillment=c.cart_service.get_fulfillment(),
        fulfillment_labels=FULFILLMENT_LABELS,
        info=c.cart_service.get_customer_info(),
        applied=applied,
        totals=c.checkout_service.compute_totals(cart_data['items'], applied),
        warnings=c.checkout_service.stock_warnings(cart_data['items']) if step == LAST_STEP else [],
    )


@app.route('/checkout/step', methods=['POST'])
@verify_csrf
def checkout_step():
    c = container()
    current = int(session.get('checkout_step') or 1)
    target = request.form.get('target', type=int) or current + 1

    if current == 2 and request.form.get('fulfillment'):
        c.cart_service.set_fulfillment(request.form['fulfillment'])
    if current == 3:
        c.cart_service.set_customer_info(clean_contact(request.form))

    result = c.checkout_service.navigate(
        current, target,
        c.cart_service.get_cart()['items'],
        c.cart_service.get_fulfillment(),
        c.cart_service.get_customer_info(),
    )
    if not result['ok']:
        flash(result['error'], 'warning')
    session['checkout_step'] = result['step']
    return redirect(url_for('checkout', step=result['step']))


@app.route('/checkout/promo', methods=['POST'])
@verify_csrf
def checkout_promo():
    c = container()
    data = request_data()
    if data.get('remove'):
        c.cart_service.set_applied_code(None)
        return api_result({'ok': True}, 'Code removed', fallback='checkout')

    result = c.checkout_service.apply_code(data.get('code'), c.cart_service.get_cart()['items'])
    if result['ok']:
        c.cart_service.set_applied_code(result['applied'])
        applied = result['applied']
        label = 'Referral code' if applied['is_referral'] else 'Promo code'
        return api_result(result, f"{label} applied! You save ${applied['discount_amount']:.2f}",
                          fallback='checkout')
    return api_result(result, fallback='checkout')


@app.route('/checkout/submit', methods=['POST'])
@verify_csrf
def checkout_submit():
    c = container()
    cart_data = c.cart_service.get_cart()
    user_id = current_user_id()
    try:
        result = c.checkout_service.submit_order(
            cart_data['items'],
            c.cart_service.get_fulfillment(),
            c.cart_service.get_customer_info(),
            c.cart_service.get_applied_code(),
            user_id=user_id,
            guest_id=None if user_id else c.cart_service.get_guest_id(),
        )
    except CheckoutError as e:
        flash(f'Order Failed: {e.message}', 'danger')
        return redirect(url_for('checkout', step=session.get('checkout_step') or 1))

    order = result['order']
    c.cart_service.clear()
    session['checkout_step'] = 1
    session['last_order'] = {
        'order_number': order['order_number'],
        'needs_stock_confirmation': result['needs_stock_confirmation'],
        'total': result['totals']['total'],
    }
    message = c.checkout_service.placed_message(order['order_number'], result['needs_stock_confirmation'])
    flash(f"{message['title']} {message['description']}", 'success')
    return redirect(url_for('order_confirmation', order_number=order['order_number']))


@app.route('/order-confirmation/<order_number>')
def order_confirmation(order_number):
    last = session.get('last_order') or {}
    if last.get('order_number') != order_number:
        last = {'order_number': order_number}
    return render_template('order_confirmation.html', order=last)


# ═══════════════════════════════════════════════════════════════════════════
# CUSTOMER ACCOUNT
# ═══════════════════════════════════════════════════════════════════════════

@app.route('/account')
@login_required
def account():
    c = container()
    user_id = current_user_id()
    return render_template(
        'account.html',
        user=c.user_service.get_user(user_id),
        orders=c.order_service.customer_orders(user_id),
        bookings=c.order_service.customer_bookings(user_id),
        dealer=c.dealer_service.get_for_user(user_id),
    )


@app.route('/account/profile', methods=['POST'])
@login_required
@verify_csrf
def account_profile():
    metadata = {key: (request.form.get(key) or '').strip() for key in ('full_name', 'phone')}
    result = container().user_service.update_metadata(current_user_id(), metadata)
    return api_result(result, 'Profile updated', fallback='account')


@app.route('/account/claim-order', methods=['POST'])
@login_required
@verify_csrf
def claim_order():
    allowed, attempts = check_rate_limit(session.get('claim_attempts') or [])
    session['claim_attempts'] = attempts
    if not allowed:
        return api_result({'ok': False, 'error': 'Too many attempts. Please wait a minute and try again.'},
                          fallback='account')

    data = request_data()
    result = container().order_service.claim_order(
        current_user_id(), data.get('order_number'), data.get('contact'))
    if result.get('already_linked'):
        result = dict(result, ok=True)
        return api_result(result, result['error'], fallback='account')
    return api_result(result, 'Order linked to your account', fallback='account')


@app.route('/review', methods=['GET', 'POST'])
@verify_csrf
def review():
    c = container()
    if request.method == 'POST':
        result = c.review_service.submit_review(
            request.form.get('rating'),
            request.form.get('comment'),
            request.form.get('customer_name'),
            request.form.get('product_id'),
            current_user_id(),
        )
        if not result['ok']:
            flash(result['error'], 'warning')
            return redirect(url_for('review'))
        return render_template('review_thanks.html', route=result['route'],
                               google_review_url=result['google_review_url'])
    return render_template('review.html', product_id=request.args.get('product_id', ''))


@app.route('/review/click/<request_id>')
def review_click(request_id):
    c = container()
    c.review_service.track_click(request_id)
    return redirect(c.review_service.get_google_review_url())


@app.route('/book-service', methods=['GET', 'POST'])
@verify_csrf
def book_service():
    if request.method == 'POST':
        result = container().booking_service.create_booking(request.form, current_user_id())
        if not result['ok']:
            flash(result['error'], 'warning')
            return render_template('book_service.html', form=request.form,
                                   service_types=SERVICE_TYPES, time_slots=TIME_SLOTS)
        flash("Booking request sent! We'll call you to confirm your appointment.", 'success')
        return redirect(url_for('book_service'))
    return render_template('book_service.html', form={}, service_types=SERVICE_TYPES, time_slots=TIME_SLOTS)


@app.route('/dealers/apply', methods=['GET', 'POST'])
@verify_csrf
def dealer_apply():
    if request.method == 'POST':
        result = container().dealer_service.apply(
            request.form, request.form.get('password'), request.files.get('document'))
        if not result['ok']:
            flash(result['error'], 'danger')
            return render_template('dealer_apply.html', form=request.form)
        _start_session(result['user'])
        flash("Application submitted! We'll review it and contact you within 1-2 business days.", 'success')
        return redirect(url_for('dealer_dashboard'))
    return render_template('dealer_apply.html', form={})


@app.route('/dealer')
@login_required
def dealer_dashboard():
    data = container().dealer_service.dashboard(current_user_id())
    if data is None:
        flash('No dealer account found. Apply to become a dealer.', 'info')
        return redirect(url_for('dealer_apply'))
    return render_template('dealer_dashboard.html', **data)


# ═══════════════════════════════════════════════════════════════════════════
# CONTENT PAGES
# ═══════════════════════════════════════════════════════════════════════════

@app.route('/pages/<slug>')
def page(slug):
    content = container().content_service.get_page(slug)
    if not content:
        abort(404)
    return render_template('page.html', page=content)


@app.route('/faq')
def faq():
    return render_template('faq.html', faqs=container().content_service.faqs_by_category())


@app.route('/policies/<key>')
def policy(key):
    content = container().content_service.get_policy(key)
    if not content:
        abort(404)
    return render_template('page.html', page={'title': content['title'], 'body': content['content']})


@app.route('/newsletter', methods=['POST'])
@verify_csrf
def newsletter():
    data = request_data()
    result = container().content_service.subscribe(data.get('email'), data.get('name'))
    if result.get('ok') and result.get('already_subscribed'):
        return api_result(result, "You're already subscribed!", fallback='home')
    return api_result(result, 'Thanks for subscribing!', fallback='home')


# ═══════════════════════════════════════════════════════════════════════════
# ADMIN - DASHBOARD / ORDERS
# ═══════════════════════════════════════════════════════════════════════════

@app.route('/admin')
@login_required
@admin_required
def admin_dashboard():
    c = container()
    stock = c.inventory_service.stock_map()
    return render_template(
        'admin/dashboard.html',
        status_counts=c.order_service.status_counts(),
        recent_orders=c.order_service.list_orders()[:10],
        invoice_summary=c.invoice_service.dashboard_summary(),
        low_stock=sum(1 for row in stock.values() if c.inventory_service.is_low_stock(row)),
        pending_reviews=len(c.review_service.list_reviews(ReviewStatus.PENDING.value)),
        pending_dealers=len(c.dealer_service.list_dealers(DealerStatus.PENDING.value)),
        new_bookings=len(c.booking_service.list_bookings(BookingStatus.NEW.value)),
    )


@app.route('/admin/orders')
@login_required
@admin_required
def admin_orders():
    status = request.args.get('status', 'all')
    search = request.args.get('q', '')
    c = container()
    return render_template(
        'admin/orders.html',
        orders=c.order_service.list_orders(status, search),
        status_counts=c.order_service.status_counts(),
        statuses=enum_values(OrderStatus),
        status=status,
        search=search,
    )


@app.route('/admin/api/orders')
@login_required
@admin_required
def admin_api_orders():
    orders = container().order_service.list_orders(request.args.get('status'), request.args.get('q'))
    return {'ok': True, 'orders': orders}


@app.route('/admin/orders/<order_id>')
@login_required
@admin_required
def admin_order_detail(order_id):
    order = container().order_service.get_order(order_id)
    if not order:
        abort(404)
    return render_template('admin/order_detail.html', order=order, statuses=enum_values(OrderStatus),
                           fulfillment_labels=FULFILLMENT_LABELS)


@app.route('/admin/api/orders/<order_id>/status', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_order_status(order_id):
    result = container().order_service.update_status(order_id, request_data().get('status'), current_user_id())
    return api_result(result, 'Order status updated', fallback='admin_orders')


@app.route('/admin/api/orders/<order_id>/confirm-stock', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_order_confirm_stock(order_id):
    result = container().order_service.confirm_stock(order_id)
    return api_result(result, 'Stock confirmed', fallback='admin_orders')


@app.route('/admin/api/orders/stream')
@login_required
@admin_required
def admin_orders_stream():
    """
    Server-Sent Events: one message per orders insert / update / delete.
    Clients refetch /admin/api/orders on every event.
    """
    feed = container().change_feed
    sub_id, queue = feed.open_stream('orders', maxsize=config.REALTIME_QUEUE_SIZE)

    def generate():
        try:
            yield 'retry: 5000\n\n'
            while True:
                try:
                    event = queue.get(timeout=15)
                except Empty:
                    yield ': keepalive\n\n'
                    continue
                payload = {'type': event['type'], 'id': (event.get('new') or event.get('old') or {}).get('id')}
                yield f"event: orders\ndata: {json.dumps(payload)}\n\n"
        finally:
            feed.unsubscribe(sub_id)

    return Response(generate(), mimetype='text/event-stream',
                    headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'})


# ═══════════════════════════════════════════════════════════════════════════
# ADMIN - PRODUCTS / INVENTORY
# ═══════════════════════════════════════════════════════════════════════════

@app.route('/admin/products')
@login_required
@admin_required
def admin_products():
    c = container()
    return render_template(
        'admin/products.html',
        products=c.catalog_service.list_admin_products(request.args.get('q'), request.args.get('vendor')),
        categories=c.catalog_service.list_categories(),
        bundles=c.catalog_service.list_bundles(active_only=False),
        tire_types=enum_values(TireType),
        query=request.args,
    )


@app.route('/admin/products/new', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_product_create():
    result = container().catalog_service.create_product(
        request.form.to_dict(), request.files.get('image'), current_user_id())
    return api_result(result, 'Product created', fallback='admin_products')


@app.route('/admin/products/<product_id>/edit', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_product_edit(product_id):
    data = request_data()
    if not request.is_json and 'is_active' not in data:
        data['is_active'] = False
    result = container().catalog_service.update_product(
        product_id, data, request.files.get('image'), current_user_id())
    return api_result(result, 'Product updated', fallback='admin_products')


@app.route('/admin/products/<product_id>/delete', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_product_delete(product_id):
    result = container().catalog_service.delete_product(product_id, current_user_id())
    return api_result(result, 'Product deleted', fallback='admin_products')


@app.route('/admin/categories', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_category_create():
    data = request_data()
    result = container().catalog_service.create_category(data.get('name'), data.get('description'))
    return api_result(result, 'Category created', fallback='admin_products')


@app.route('/admin/api/bundles', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_bundle_save():
    data = request_data()
    result = container().catalog_service.save_bundle(data, data.get('id') or None)
    return api_result(result, 'Bundle saved', fallback='admin_products')


@app.route('/admin/inventory')
@login_required
@admin_required
def admin_inventory():
    c = container()
    return render_template(
        'admin/inventory.html',
        products=c.catalog_service.list_admin_products(request.args.get('q')),
        movements=c.inventory_service.list_movements(limit=50),
        low_stock_threshold=config.LOW_STOCK_THRESHOLD,
    )


@app.route('/admin/api/inventory/<product_id>/adjust', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_inventory_adjust(product_id):
    data = request_data()
    reorder_level = data.get('reorder_level')
    result = container().inventory_service.adjust_stock(
        product_id, data.get('delta'), data.get('reason'), current_user_id(),
        int(reorder_level) if str(reorder_level or '').isdigit() else None,
    )
    return api_result(result, 'Stock adjusted', fallback='admin_inventory')


# ═══════════════════════════════════════════════════════════════════════════
# ADMIN - BULK PRICE UPDATE
# ═══════════════════════════════════════════════════════════════════════════
# The preview is recomputed from the posted filters and rule on apply, so
# no preview rows are kept in the session cookie.

BULK_FILTER_KEYS = ('vendor', 'category_id', 'type', 'availability', 'size_contains')


def _bulk_price_input():
    data = request_data()
    filters = {key: data.get(key) or '' for key in BULK_FILTER_KEYS}
    if isinstance(data.get('filters'), dict):
        filters.update(data['filters'])
    rule_data = data.get('rule') if isinstance(data.get('rule'), dict) else data
    return data, filters, PriceRule.from_form(rule_data)


@app.route('/admin/bulk-price')
@login_required
@role_required('admin')
def admin_bulk_price():
    c = container()
    return render_template(
        'admin/bulk_price.html',
        options=c.bulk_price_service.filter_options(),
        batches=c.bulk_price_service.list_batches(),
        tire_types=enum_values(TireType),
        confirm_text=config.BULK_PRICE_CONFIRM_TEXT,
    )


@app.route('/admin/api/bulk-price/preview', methods=['POST'])
@login_required
@role_required('admin')
@verify_csrf
def admin_bulk_price_preview():
    service = container().bulk_price_service
    try:
        data, filters, rule = _bulk_price_input()
    except ValueError as e:
        return {'ok': False, 'error': str(e)}, 400
    rows = service.build_preview(filters, rule)
    page = service.paginate(rows, data.get('page') or 0)
    return {'ok': True, 'summary': service.summary(rows), **page}


@app.route('/admin/api/bulk-price/apply', methods=['POST'])
@login_required
@role_required('admin')
@verify_csrf
def admin_bulk_price_apply():
    service = container().bulk_price_service
    try:
        data, filters, rule = _bulk_price_input()
    except ValueError as e:
        return api_result({'ok': False, 'error': str(e)}, fallback='admin_bulk_price')
    rows = service.build_preview(filters, rule)
    result = service.apply_batch(rows, rule, (data.get('confirm_text') or '').strip(), current_user_id())
    message = f"Updated {result.get('updated', 0)} products" if result['ok'] else None
    return api_result(result, message, fallback='admin_bulk_price')


@app.route('/admin/api/bulk-price/rollback/<batch_id>', methods=['POST'])
@login_required
@role_required('admin')
@verify_csrf
def admin_bulk_price_rollback(batch_id):
    result = container().bulk_price_service.rollback(batch_id, current_user_id())
    message = f"Restored {result.get('rolled_back', 0)} products" if result['ok'] else None
    return api_result(result, message, fallback='admin_bulk_price')


# ═══════════════════════════════════════════════════════════════════════════
# ADMIN - INVOICES
# ═══════════════════════════════════════════════════════════════════════════

def _invoice_payload():
    """
    Invoice input from JSON, or from a form with parallel
    description[] / quantity[] / unit_price[] / product_id[] fields.
    """
    if request.is_json:
        return request.get_json(silent=True) or {}
    data = request.form.to_dict()
    columns = zip(
        request.form.getlist('description[]'),
        request.form.getlist('quantity[]'),
        request.form.getlist('unit_price[]'),
        request.form.getlist('product_id[]') or [''] * len(request.form.getlist('description[]')),
    )
    data['line_items'] = [
        {'description': d, 'quantity': q, 'unit_price': p, 'product_id': pid or None}
        for d, q, p, pid in columns if (d or pid)
    ]
    return data


@app.route('/admin/invoices')
@login_required
@admin_required
def admin_invoices():
    c = container()
    return render_template(
        'admin/invoices.html',
        invoices=c.invoice_service.list_invoices(request.args.get('q'), request.args.get('status')),
        summary=c.invoice_service.dashboard_summary(),
        statuses=enum_values(InvoiceStatus),
        query=request.args,
    )


@app.route('/admin/invoices/new')
@login_required
@admin_required
def admin_invoice_new():
    c = container()
    draft = c.invoice_service.draft_from_order(request.args['order_id']) if request.args.get('order_id') else None
    return render_template('admin/invoice_form.html', draft=draft or {}, **c.invoice_service.form_options())


@app.route('/admin/api/invoices', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_invoice_create():
    result = container().invoice_service.create_invoice(_invoice_payload(), current_user_id())
    if result['ok'] and not wants_json():
        flash(f"Invoice {result['invoice']['invoice_number']} created", 'success')
        return redirect(url_for('admin_invoice_detail', invoice_id=result['invoice']['id']))
    return api_result(result, fallback='admin_invoices')


@app.route('/admin/api/invoices/from-order/<order_id>', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_invoice_from_order(order_id):
    result = container().invoice_service.create_from_order(order_id, request_data(), current_user_id())
    return api_result(result, 'Invoice created from order', fallback='admin_invoices')


@app.route('/admin/invoices/<invoice_id>')
@login_required
@admin_required
def admin_invoice_detail(invoice_id):
    context = container().invoice_service.print_context(invoice_id)
    if not context:
        abort(404)
    return render_template('admin/invoice_detail.html', statuses=enum_values(InvoiceStatus), **context)


@app.route('/admin/api/invoices/<invoice_id>', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_invoice_update(invoice_id):
    result = container().invoice_service.update_invoice(invoice_id, _invoice_payload())
    return api_result(result, 'Invoice updated', fallback='admin_invoices')


@app.route('/admin/api/invoices/<invoice_id>/status', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_invoice_status(invoice_id):
    result = container().invoice_service.update_status(invoice_id, request_data().get('status'), current_user_id())
    return api_result(result, 'Invoice status updated', fallback='admin_invoices')


@app.route('/admin/api/invoices/<invoice_id>/send', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_invoice_send(invoice_id):
    result = container().invoice_service.send_invoice(invoice_id, current_user_id())
    message = f"Invoice sent to {result.get('sent_to')}" if result.get('ok') else None
    return api_result(result, message, fallback='admin_invoices')


@app.route('/admin/api/invoices/<invoice_id>/delete', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_invoice_delete(invoice_id):
    result = container().invoice_service.delete_invoice(invoice_id)
    if result['ok'] and not wants_json():
        flash('Invoice deleted', 'success')
        return redirect(url_for('admin_invoices'))
    return api_result(result, fallback='admin_invoices')


@app.route('/admin/invoices/<invoice_id>/print')
@login_required
@admin_required
def admin_invoice_print(invoice_id):
    context = container().invoice_service.print_context(invoice_id)
    if not context:
        abort(404)
    return render_template('invoice_print.html', **context)


# ═══════════════════════════════════════════════════════════════════════════
# ADMIN - DEALERS / BOOKINGS / REVIEWS
# ═══════════════════════════════════════════════════════════════════════════

@app.route('/admin/dealers')
@login_required
@admin_required
def admin_dealers():
    status = request.args.get('status', 'all')
    return render_template('admin/dealers.html', dealers=container().dealer_service.list_dealers(status),
                           statuses=enum_values(DealerStatus), status=status)


@app.route('/admin/api/dealers/<dealer_id>/status', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_dealer_status(dealer_id):
    result = container().dealer_service.set_status(dealer_id, request_data().get('status'))
    return api_result(result, 'Dealer updated', fallback='admin_dealers')


@app.route('/admin/api/dealers/<dealer_id>', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_dealer_update(dealer_id):
    result = container().dealer_service.update_dealer(dealer_id, request_data())
    return api_result(result, 'Dealer updated', fallback='admin_dealers')


@app.route('/admin/bookings')
@login_required
@admin_required
def admin_bookings():
    status = request.args.get('status', 'all')
    return render_template('admin/bookings.html', bookings=container().booking_service.list_bookings(status),
                           statuses=enum_values(BookingStatus), status=status, service_types=SERVICE_TYPES)


@app.route('/admin/api/bookings/<booking_id>/status', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_booking_status(booking_id):
    result = container().booking_service.set_status(booking_id, request_data().get('status'), current_user_id())
    return api_result(result, 'Booking updated', fallback='admin_bookings')


@app.route('/admin/api/bookings/<booking_id>/delete', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_booking_delete(booking_id):
    result = container().booking_service.delete_booking(booking_id)
    return api_result(result, 'Booking deleted', fallback='admin_bookings')


@app.route('/admin/reviews')
@login_required
@admin_required
def admin_reviews():
    c = container()
    status = request.args.get('status') or None
    return render_template('admin/reviews.html', reviews=c.review_service.list_reviews(status),
                           requests=c.review_service.list_requests()[:50],
                           statuses=enum_values(ReviewStatus), status=status)


@app.route('/admin/api/reviews/<review_id>/status', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_review_status(review_id):
    result = container().review_service.set_status(review_id, request_data().get('status'))
    return api_result(result, 'Review updated', fallback='admin_reviews')


@app.route('/admin/api/reviews/<review_id>/delete', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_review_delete(review_id):
    result = container().review_service.delete_review(review_id)
    return api_result(result, 'Review deleted', fallback='admin_reviews')


@app.route('/admin/api/review-requests/process', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_process_review_requests():
    result = container().review_service.process_due_requests()
    return api_result(result, result.get('message') or f"Queued {result['processed']} review emails",
                      fallback='admin_reviews')


# ═══════════════════════════════════════════════════════════════════════════
# ADMIN - PROMOS / REFERRALS
# ═══════════════════════════════════════════════════════════════════════════

@app.route('/admin/promos')
@login_required
@admin_required
def admin_promos():
    promo_service = container().promo_service
    return render_template('admin/promos.html', promos=promo_service.list_promos(),
                           referrals=promo_service.list_referral_codes(),
                           redemptions=promo_service.list_redemptions())


@app.route('/admin/api/promos', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_promo_save():
    data = request_data()
    result = container().promo_service.save_promo(data, data.get('id') or None)
    return api_result(result, 'Promo code saved', fallback='admin_promos')


@app.route('/admin/api/promos/<promo_id>/delete', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_promo_delete(promo_id):
    return api_result(container().promo_service.delete_promo(promo_id), 'Promo code deleted', fallback='admin_promos')


@app.route('/admin/api/referrals', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_referral_create():
    result = container().promo_service.create_referral_code(request_data())
    return api_result(result, 'Referral code created', fallback='admin_promos')


@app.route('/admin/api/referrals/<code_id>/status', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_referral_status(code_id):
    result = container().promo_service.update_referral_status(code_id, request_data().get('status'))
    return api_result(result, 'Referral code updated', fallback='admin_promos')


@app.route('/admin/api/referrals/<code_id>/delete', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_referral_delete(code_id):
    result = container().promo_service.delete_referral_code(code_id)
    return api_result(result, 'Referral code deleted', fallback='admin_promos')


@app.route('/admin/api/redemptions/<redemption_id>/status', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_redemption_status(redemption_id):
    result = container().promo_service.update_redemption_status(redemption_id, request_data().get('status'))
    return api_result(result, 'Reward status updated', fallback='admin_promos')


# ═══════════════════════════════════════════════════════════════════════════
# ADMIN - CONTENT
# ═══════════════════════════════════════════════════════════════════════════

@app.route('/admin/content')
@login_required
@admin_required
def admin_content():
    content = container().content_service
    return render_template(
        'admin/content.html',
        pages=content.list_pages(),
        faqs=content.list_faqs(),
        policies=content.list_policies(),
        company=content.get_company_info(),
        subscribers=content.list_subscribers(),
    )


@app.route('/admin/api/pages', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_page_save():
    data = request_data()
    result = container().content_service.save_page(data, data.get('id') or None)
    return api_result(result, 'Page saved', fallback='admin_content')


@app.route('/admin/api/pages/<page_id>/delete', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_page_delete(page_id):
    return api_result(container().content_service.delete_page(page_id), 'Page deleted', fallback='admin_content')


@app.route('/admin/api/faqs', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_faq_save():
    data = request_data()
    result = container().content_service.save_faq(data, data.get('id') or None)
    return api_result(result, 'FAQ saved', fallback='admin_content')


@app.route('/admin/api/faqs/<faq_id>/toggle', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_faq_toggle(faq_id):
    return api_result(container().content_service.toggle_faq(faq_id), 'FAQ updated', fallback='admin_content')


@app.route('/admin/api/faqs/<faq_id>/delete', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_faq_delete(faq_id):
    return api_result(container().content_service.delete_faq(faq_id), 'FAQ deleted', fallback='admin_content')


@app.route('/admin/api/policies', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_policy_save():
    data = request_data()
    result = container().content_service.save_policy(data, data.get('id') or None)
    return api_result(result, 'Policy saved', fallback='admin_content')


@app.route('/admin/api/policies/<policy_id>/delete', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_policy_delete(policy_id):
    result = container().content_service.delete_policy(policy_id)
    return api_result(result, 'Policy deleted', fallback='admin_content')


@app.route('/admin/api/settings/company', methods=['POST'])
@login_required
@role_required('admin')
@verify_csrf
def admin_company_settings():
    result = container().content_service.save_company_info(request_data())
    return api_result(result, 'Company info saved', fallback='admin_content')


# ═══════════════════════════════════════════════════════════════════════════
# ADMIN - AUDIT / REPORTS / NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

def _audit_rows():
    return container().audit_service.search(
        action=request.args.get('action') or None,
        table_name=request.args.get('table') or None,
        user_id=request.args.get('user') or None,
        query=request.args.get('q') or None,
        limit=500,
    )


@app.route('/admin/audit')
@login_required
@admin_required
def admin_audit():
    c = container()
    return render_template('admin/audit.html', logs=_audit_rows(),
                           actions=c.audit_service.list_actions(), query=request.args)


@app.route('/admin/audit/export')
@login_required
@role_required('admin')
def admin_audit_export():
    si = io.StringIO()
    writer = csv.writer(si)
    writer.writerow(['Date', 'User', 'Action', 'Table', 'Record', 'Old values', 'New values'])
    for row in _audit_rows():
        writer.writerow([
            row.get('created_at', ''),
            row.get('user_id') or '',
            row.get('action', ''),
            row.get('table_name', ''),
            row.get('record_id') or '',
            json.dumps(row.get('old_values') or {}, ensure_ascii=False),
            json.dumps(row.get('new_values') or {}, ensure_ascii=False),
        ])
    return Response(si.getvalue(), mimetype='text/csv',
                    headers={'Content-Disposition': 'attachment;filename=audit_log.csv'})


@app.route('/admin/reports')
@login_required
@admin_required
def admin_reports():
    period = request.args.get('period', 'month')
    group_by = request.args.get('group_by', 'daily')
    custom_start = request.args.get('start', '')
    custom_end = request.args.get('end', '')
    if period not in ('today', 'week', 'month', 'year', 'all', 'custom'):
        period = 'month'

    reports = container().report_service
    return render_template(
        'admin/reports.html',
        revenue=reports.revenue_report(group_by, period, custom_start, custom_end),
        bookings=reports.bookings_per_day(period, custom_start, custom_end),
        period=period,
        group_by=group_by,
        custom_start=custom_start,
        custom_end=custom_end,
    )


# ═══════════════════════════════════════════════════════════════════════════
# ADMIN - CUSTOMERS / ANALYTICS
# ═══════════════════════════════════════════════════════════════════════════

CUSTOMER_FILTER_KEYS = ('search', 'city', 'orders', 'last_order', 'tire_size', 'vendor')


def _filtered_customers():
    analytics = container().analytics_service
    customers = analytics.customer_stats()
    filters = {key: request.args.get(key, '') for key in CUSTOMER_FILTER_KEYS}
    return customers, filters, analytics.filter_customers(customers, filters)


@app.route('/admin/customers')
@login_required
@admin_required
def admin_customers():
    customers, filters, shown = _filtered_customers()
    analytics = container().analytics_service
    return render_template(
        'admin/customers.html',
        customers=shown,
        summary=analytics.customer_summary(shown),
        choices=analytics.filter_choices(customers),
        filters=filters,
    )


@app.route('/admin/customers/export')
@login_required
@admin_required
def admin_customers_export():
    _, _, shown = _filtered_customers()
    si = io.StringIO()
    writer = csv.writer(si)
    writer.writerows(container().analytics_service.export_rows(shown))
    return Response(si.getvalue(), mimetype='text/csv',
                    headers={'Content-Disposition': 'attachment;filename=customers.csv'})


@app.route('/admin/customers/<customer_id>')
@login_required
@admin_required
def admin_customer_detail(customer_id):
    detail = container().analytics_service.customer_detail(customer_id)
    if not detail:
        abort(404)
    return render_template('admin/customer_detail.html', customer=detail['customer'],
                           orders=detail['orders'], fulfillment_labels=FULFILLMENT_LABELS)


@app.route('/admin/analytics')
@login_required
@admin_required
def admin_analytics():
    return render_template('admin/analytics.html', overview=container().analytics_service.overview())


@app.route('/admin/notifications')
@login_required
@admin_required
def admin_notifications():
    status = request.args.get('status') or None
    return render_template('admin/notifications.html',
                           notifications=container().notification_service.list_notifications(status),
                           status=status)


@app.route('/admin/api/notifications/<notification_id>/status', methods=['POST'])
@login_required
@admin_required
@verify_csrf
def admin_notification_status(notification_id):
    updated = container().notification_service.mark(notification_id, request_data().get('status'))
    result = {'ok': True, 'notification': updated} if updated else {'ok': False, 'error': 'Invalid status'}
    return api_result(result, 'Notification updated', fallback='admin_notifications')


# ═══════════════════════════════════════════════════════════════════════════
# ADMIN - USERS / BACKUPS (admin only)
# ═══════════════════════════════════════════════════════════════════════════

@app.route('/admin/users')
@login_required
@role_required('admin')
def admin_users():
    return render_template('admin/users.html', users=container().user_service.list_users(),
                           roles=container().user_service.VALID_ROLES, me=current_user_id())


@app.route('/admin/api/users/<user_id>/role', methods=['POST'])
@login_required
@role_required('admin')
@verify_csrf
def admin_user_role(user_id):
    result = container().user_service.set_role(user_id, request_data().get('role'), current_user_id())
    return api_result(result, 'Role updated', fallback='admin_users')


@app.route('/admin/backups')
@login_required
@role_required('admin')
def admin_backups():
    return render_template('admin/backups.html', status=container().backup_service.get_backup_status())


@app.route('/admin/api/backups/run', methods=['POST'])
@login_required
@role_required('admin')
@verify_csrf
def admin_backup_run():
    service = container().backup_service
    backup = service.create_backup(force=True)
    service.rotate_backups()
    result = {'ok': backup['success'], 'backup': backup}
    if not backup['success']:
        result['error'] = backup['message']
    return api_result(result, backup['message'], fallback='admin_backups')


# ═══════════════════════════════════════════════════════════════════════════
# STARTUP
# ═══════════════════════════════════════════════════════════════════════════

def bootstrap_admin():
    """Create the first admin from TIRE_STORE_ADMIN_LOGIN / TIRE_STORE_ADMIN_PASSWORD."""
    if not (config.BOOTSTRAP_ADMIN_EMAIL and config.BOOTSTRAP_ADMIN_PASSWORD):
        return
    result = container().user_service.ensure_account(
        config.BOOTSTRAP_ADMIN_EMAIL, config.BOOTSTRAP_ADMIN_PASSWORD, 'admin')
    if not result['ok']:
        logger.error("Could not create bootstrap admin: %s", result['error'])


def on_startup():
    run_startup_backup(container().backup_service)
    bootstrap_admin()


# Daily backup of the data files (at most one per day) and bootstrap admin.
on_startup()

if __name__ == "__main__":
    # Local development. In production use a WSGI server (see wsgi.py)
    DEBUG = os.environ.get('FLASK_DEBUG', '0') == '1'
    HOST = os.environ.get('FLASK_HOST', '0.0.0.0')
    PORT = int(os.environ.get('FLASK_PORT', 5000))

    if not DEBUG:
        logger.info("Server started on http://%s:%s", HOST, PORT)

    app.run(host=HOST, port=PORT, debug=DEBUG)
