# ==============================================================================
# CONFIGURATION
# ==============================================================================
# Every setting is read from the environment with a development default.
#
#   export TIRE_STORE_SECRET_KEY="a_long_random_value"
#   export TIRE_STORE_PRODUCTION=1
#   export TIRE_STORE_DATA_DIR=/srv/tire_store/data
#
# Business constants (tax, levies, limits) also live here so that services
# and templates read them from one place.
# ==============================================================================

import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# ═══════════════════════════════════════════════════════════════════════════════
# RUNTIME MODE / SECRETS
# ═══════════════════════════════════════════════════════════════════════════════
PRODUCTION_MODE = _env_flag('TIRE_STORE_PRODUCTION', False)

DEFAULT_SECRET_KEY = 'tire_store_dev_secret_key_change_in_production'
SECRET_KEY = os.environ.get('TIRE_STORE_SECRET_KEY')

# ═══════════════════════════════════════════════════════════════════════════════
# STORAGE LOCATIONS
# ═══════════════════════════════════════════════════════════════════════════════
DATA_DIR = os.environ.get('TIRE_STORE_DATA_DIR') or os.path.join(BASE_DIR, 'data')
UPLOAD_DIR_NAME = 'uploads'

ALLOWED_IMAGE_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}
ALLOWED_DOCUMENT_EXTENSIONS = {'pdf', 'png', 'jpg', 'jpeg'}
MAX_CONTENT_LENGTH = 10 * 1024 * 1024  # 10 MB

# ═══════════════════════════════════════════════════════════════════════════════
# COMPANY / CONTACT
# ═══════════════════════════════════════════════════════════════════════════════
COMPANY_NAME = os.environ.get('TIRE_STORE_COMPANY_NAME', 'Kore Tires')
ADMIN_EMAIL = os.environ.get('TIRE_STORE_ADMIN_EMAIL', 'edmonton@koretires.com')
COMPANY_PHONE = os.environ.get('TIRE_STORE_COMPANY_PHONE', '780-455-1251')
COMPANY_ADDRESS = os.environ.get('TIRE_STORE_COMPANY_ADDRESS', '11314 163 Street NW, Edmonton, AB T5M 1Y6')
DEFAULT_GOOGLE_REVIEW_URL = os.environ.get(
    'TIRE_STORE_GOOGLE_REVIEW_URL',
    'https://search.google.com/local/writereview?placeid=ChIJAwKCRM0hQlMRIkmBYNDQmBw',
)

# Optional bootstrap admin account (created at startup when both are set)
BOOTSTRAP_ADMIN_EMAIL = os.environ.get('TIRE_STORE_ADMIN_LOGIN')
BOOTSTRAP_ADMIN_PASSWORD = os.environ.get('TIRE_STORE_ADMIN_PASSWORD')

# ═══════════════════════════════════════════════════════════════════════════════
# TAXES AND LEVIES
# ═══════════════════════════════════════════════════════════════════════════════
GST_RATE = 0.05
TIRE_RECYCLING_LEVY = 5.00   # per tire, charged at checkout
AB_TIRE_LEVY = 4.00          # per tire, optional on invoices
WHOLESALE_DEFAULT_RATIO = 0.70

# ═══════════════════════════════════════════════════════════════════════════════
# ORDERS / CHECKOUT
# ═══════════════════════════════════════════════════════════════════════════════
ORDER_NUMBER_PREFIX = 'KT'
INVOICE_NUMBER_PREFIX = 'INV'
PAYMENT_METHOD = 'pay_on_delivery'
REVIEW_REQUEST_DELAY_DAYS = 7

CLAIM_MAX_ATTEMPTS = 5
CLAIM_WINDOW_SECONDS = 60

LOW_STOCK_THRESHOLD = 4
DEFAULT_AVAILABILITY_LABEL = 'Available within 24 hours'
OUT_OF_STOCK_LABEL = 'Not in Stock'

# ═══════════════════════════════════════════════════════════════════════════════
# ADMIN TOOLS
# ═══════════════════════════════════════════════════════════════════════════════
BULK_PRICE_PAGE_SIZE = 50
BULK_PRICE_CHUNK_SIZE = 50
BULK_PRICE_CONFIRM_TEXT = 'CONFIRM'
REALTIME_QUEUE_SIZE = 100
