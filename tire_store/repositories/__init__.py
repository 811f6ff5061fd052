# ==============================================================================
# REPOSITORY LAYER - data access
# ==============================================================================
# Everything that touches persistence lives here (JSON table store today).
#
# LAYOUT:
# ├── interfaces.py          → Protocols (contracts for other stores)
# ├── base.py                → JSON base classes + BackendError / NotFoundError
# ├── table_repository.py    → Generic row store, one file per table
# ├── realtime.py            → ChangeFeed (table change subscriptions)
# ├── product_repository.py  → products (non-negative prices)
# ├── invoice_repository.py  → invoices (invoice number assignment)
# ├── order_repository.py    → orders (unique order numbers)
# ├── audit_repository.py    → audit_log (search, batch lookup)
# ├── user_repository.py     → users.json (accounts and roles)
# ├── settings_repository.py → site_settings.json
# ├── storage_repository.py  → file buckets (uploads)
# └── backend_functions.py   → named read-only functions (RPC)
# ==============================================================================

from tire_store.repositories.interfaces import (
    IRepository,
    ITableRepository,
    IUserRepository,
    ISettingsRepository,
    IAuditRepository,
    IStorageBucket,
    IChangeFeed,
)

from tire_store.repositories.base import (
    BaseRepository,
    DictRepository,
    ListRepository,
    BackendError,
    NotFoundError,
)
from tire_store.repositories.realtime import ChangeFeed
from tire_store.repositories.table_repository import TableRepository, utc_now_iso
from tire_store.repositories.product_repository import ProductRepository
from tire_store.repositories.invoice_repository import InvoiceRepository
from tire_store.repositories.order_repository import OrderRepository
from tire_store.repositories.audit_repository import AuditRepository
from tire_store.repositories.user_repository import UserRepository
from tire_store.repositories.settings_repository import SettingsRepository
from tire_store.repositories.storage_repository import StorageBucket
from tire_store.repositories.backend_functions import BackendFunctions

__all__ = [
    # Interfaces
    'IRepository',
    'ITableRepository',
    'IUserRepository',
    'ISettingsRepository',
    'IAuditRepository',
    'IStorageBucket',
    'IChangeFeed',

    # Base classes / errors
    'BaseRepository',
    'DictRepository',
    'ListRepository',
    'BackendError',
    'NotFoundError',

    # Implementations
    'ChangeFeed',
    'TableRepository',
    'utc_now_iso',
    'ProductRepository',
    'InvoiceRepository',
    'OrderRepository',
    'AuditRepository',
    'UserRepository',
    'SettingsRepository',
    'StorageBucket',
    'BackendFunctions',
]
