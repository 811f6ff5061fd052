# ==============================================================================
# INTERNAL PROFILING
# ==============================================================================
# Times requests and key service calls without touching the response.
#
# Three log channels under LOGS_DIR, each a size-rotated file:
#   performance.log     every request (action, route, user, ms)
#   slow_routes.log     requests over THRESHOLD_WARNING / THRESHOLD_CRITICAL
#   slow_functions.log  slow @profile_function calls + report written at exit
#
# ON/OFF: ENABLE_PROFILING (env TIRE_STORE_PROFILING, default on)
# ==============================================================================

import atexit
import logging
import os
import threading
import time
from collections import defaultdict
from functools import wraps
from logging.handlers import RotatingFileHandler

from tire_store import config

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════

ENABLE_PROFILING = config._env_flag('TIRE_STORE_PROFILING', True)

# Milliseconds
THRESHOLD_WARNING = 300
THRESHOLD_CRITICAL = 700

LOGS_DIR = os.environ.get('TIRE_STORE_LOGS_DIR') or os.path.join(config.BASE_DIR, 'logs')

LOG_FILES = {
    'requests': 'performance.log',
    'slow_routes': 'slow_routes.log',
    'slow_functions': 'slow_functions.log',
}
LOG_MAX_BYTES = 2 * 1024 * 1024
LOG_BACKUP_COUNT = 3

# Route -> readable action name
ROUTE_NAMES = {
    # Auth
    'POST /login': 'Sign in',
    'GET /logout': 'Sign out',
    'POST /signup': 'Create account',

    # Storefront
    'GET /shop': 'Search tires',
    'GET /product/<product_id>': 'View product',
    'GET /api/tire-size': 'Tire size visualizer',

    # Cart / checkout
    'GET /api/cart': 'View cart',
    'POST /api/cart/add': 'Add to cart',
    'POST /api/cart/update': 'Update cart quantity',
    'POST /api/cart/remove': 'Remove from cart',
    'POST /api/cart/clear': 'Clear cart',
    'POST /checkout/promo': 'Apply promo code',
    'POST /checkout/submit': 'Place order',

    # Customer
    'GET /account': 'View account',
    'POST /account/claim-order': 'Claim guest order',
    'POST /review': 'Submit review',
    'POST /book-service': 'Book service',
    'POST /dealers/apply': 'Dealer application',

    # Back office
    'GET /admin': 'View dashboard',
    'GET /admin/orders': 'View orders',
    'POST /admin/api/orders/<order_id>/status': 'Change order status',
    'POST /admin/api/inventory/<product_id>/adjust': 'Adjust stock',
    'POST /admin/api/bulk-price/preview': 'Preview bulk price change',
    'POST /admin/api/bulk-price/apply': 'Apply bulk price change',
    'POST /admin/api/bulk-price/rollback/<batch_id>': 'Roll back bulk price change',
    'POST /admin/api/invoices': 'Create invoice',
    'POST /admin/api/invoices/<invoice_id>/send': 'Send invoice',
    'GET /admin/invoices/<invoice_id>/print': 'Print invoice',
    'GET /admin/reports': 'View reports',
    'GET /admin/customers': 'View customers',
    'GET /admin/analytics': 'View analytics',
    'GET /admin/audit': 'View activity log',
}


# ═══════════════════════════════════════════════════════════════════════════
# LOG CHANNELS
# ═══════════════════════════════════════════════════════════════════════════

_channels = {}
_channels_lock = threading.Lock()


def _channel(name):
    """
    File logger for one profiling log, built on first use.
    It does not propagate, so timings stay out of the application log.
    """
    with _channels_lock:
        channel = _channels.get(name)
        if channel is not None:
            return channel

        channel = logging.getLogger(f'{__name__}.{name}')
        channel.setLevel(logging.INFO)
        channel.propagate = False
        try:
            os.makedirs(LOGS_DIR, exist_ok=True)
            handler = RotatingFileHandler(
                os.path.join(LOGS_DIR, LOG_FILES[name]),
                maxBytes=LOG_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT,
                encoding='utf-8',
                delay=True,
            )
        except OSError:
            logger.warning("Profiling logs disabled: cannot create %s", LOGS_DIR)
            handler = logging.NullHandler()
        handler.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s] %(message)s',
                                               '%Y-%m-%d %H:%M:%S'))
        channel.addHandler(handler)
        _channels[name] = channel
        return channel


def route_label(method, path, rule=None):
    """
    Readable action for a request: exact path, then Flask rule, then the
    static prefix of a parameterised rule. Falls back to "METHOD /path".
    """
    for key in (f"{method} {path}", f"{method} {rule}" if rule else None):
        if key and key in ROUTE_NAMES:
            return ROUTE_NAMES[key]

    for pattern, name in ROUTE_NAMES.items():
        pattern_method, pattern_path = pattern.split(' ', 1)
        if pattern_method == method and '<' in pattern_path \
                and path.startswith(pattern_path.split('<', 1)[0]):
            return name

    return f"{method} {path}"


# ═══════════════════════════════════════════════════════════════════════════
# REQUESTS
# ═══════════════════════════════════════════════════════════════════════════

def record_request(method, path, rule, time_ms, user=None):
    """
    Log one request, plus a slow-route entry past the thresholds.

    Args:
        method: GET, POST...
        path: Requested path (/api/cart/add)
        rule: Flask rule (/product/<product_id>)
        time_ms: Elapsed milliseconds
        user: Signed-in email (optional)
    """
    label = route_label(method, path, rule)
    who = user or 'anonymous'
    _channel('requests').info("%s | %s %s | %s | %.0f ms", label, method, path, who, time_ms)

    if time_ms < THRESHOLD_WARNING:
        return
    critical = time_ms >= THRESHOLD_CRITICAL
    _channel('slow_routes').log(
        logging.CRITICAL if critical else logging.WARNING,
        "%s | %s %s | %s | %.0f ms (limit %d ms)",
        label, method, path, who, time_ms, THRESHOLD_CRITICAL if critical else THRESHOLD_WARNING,
    )
    logger.warning("Slow request %s %s: %.0f ms", method, path, time_ms)


def init_profiling(app):
    """
    Register timing hooks on a Flask app and the exit report.

    Usage:
        from tire_store.performance_logger import init_profiling
        init_profiling(app)
    """
    if not ENABLE_PROFILING:
        return

    atexit.register(write_function_stats_report)

    from flask import g, request, session

    @app.before_request
    def _start_timer():
        g.profile_start = time.perf_counter()

    @app.after_request
    def _time_request(response):
        start = g.get('profile_start')
        if start is None or request.path.startswith('/uploads'):
            return response
        rule = request.url_rule.rule if request.url_rule else request.path
        record_request(request.method, request.path, rule,
                       (time.perf_counter() - start) * 1000, session.get('user_email'))
        return response


# ═══════════════════════════════════════════════════════════════════════════
# FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════

# {name: {calls, total_time, max_time}}
_timings = defaultdict(lambda: {'calls': 0, 'total_time': 0.0, 'max_time': 0.0})
_timings_lock = threading.Lock()


def _record_call(name, elapsed_ms):
    with _timings_lock:
        entry = _timings[name]
        entry['calls'] += 1
        entry['total_time'] += elapsed_ms
        entry['max_time'] = max(entry['max_time'], elapsed_ms)

    if elapsed_ms >= THRESHOLD_WARNING:
        _channel('slow_functions').log(
            logging.CRITICAL if elapsed_ms >= THRESHOLD_CRITICAL else logging.WARNING,
            "%s took %.0f ms", name, elapsed_ms,
        )


def profile_function(func=None, name=None):
    """
    Time every call of a key function.

    Usage:
        @profile_function
        def search():
            ...

        @profile_function(name="Place order")
        def submit_order():
            ...
    """
    def decorator(fn):
        if not ENABLE_PROFILING:
            return fn
        label = name or fn.__name__

        @wraps(fn)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return fn(*args, **kwargs)
            finally:
                _record_call(label, (time.perf_counter() - start) * 1000)

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator


def get_function_stats():
    """
    Returns:
        dict: {name: {calls, avg_time, max_time}} in milliseconds
    """
    with _timings_lock:
        return {
            label: {
                'calls': entry['calls'],
                'avg_time': round(entry['total_time'] / entry['calls'], 2) if entry['calls'] else 0,
                'max_time': round(entry['max_time'], 2),
            }
            for label, entry in _timings.items()
        }


def write_function_stats_report():
    """One summary line per profiled function, slowest average first."""
    stats = get_function_stats()
    if not stats:
        return

    channel = _channel('slow_functions')
    channel.info("Function timings (%d profiled)", len(stats))
    for label, data in sorted(stats.items(), key=lambda item: item[1]['avg_time'], reverse=True):
        if data['avg_time'] >= THRESHOLD_CRITICAL:
            flag = 'critical'
        elif data['avg_time'] >= THRESHOLD_WARNING:
            flag = 'slow'
        elif data['max_time'] >= THRESHOLD_CRITICAL:
            flag = 'spikes'
        else:
            flag = 'ok'
        channel.info("  %-32s calls=%d avg=%.0fms max=%.0fms %s",
                     label, data['calls'], data['avg_time'], data['max_time'], flag)


__all__ = [
    'ENABLE_PROFILING',
    'init_profiling',
    'profile_function',
    'get_function_stats',
    'write_function_stats_report',
]
