# ==============================================================================
# DEPENDENCY CONTAINER - service wiring
# ==============================================================================
# One place to obtain repository and service instances. It gives:
#   - Dependency injection
#   - Testing (a container can be built on a temporary directory)
#   - Gradual store changes (swap repositories without touching services)
#
# ═══════════════════════════════════════════════════════════════════════════════
# CHANGING THE STORE
# ═══════════════════════════════════════════════════════════════════════════════
#
# To move from JSON files to a hosted database:
#
# 1. Write repository classes that satisfy the Protocols in
#    repositories/interfaces.py (ITableRepository, IUserRepository...)
#
# 2. Build those classes in table() / the repository properties below.
#
# 3. Services need no changes: they depend on the interfaces and hold the
#    business rules themselves.
# ==============================================================================

import os
from typing import Dict, Optional

from tire_store import config

# ═══════════════════════════════════════════════════════════════════════════════
# REPOSITORIES - persistence layer
# ═══════════════════════════════════════════════════════════════════════════════
from tire_store.repositories import (
    AuditRepository,
    BackendFunctions,
    ChangeFeed,
    InvoiceRepository,
    OrderRepository,
    ProductRepository,
    SettingsRepository,
    StorageBucket,
    TableRepository,
    UserRepository,
)

# ═══════════════════════════════════════════════════════════════════════════════
# SERVICES - business layer
# ═══════════════════════════════════════════════════════════════════════════════
from tire_store.services import (
    AnalyticsService,
    AuditService,
    BackupService,
    BookingService,
    BulkPriceService,
    CartService,
    CatalogService,
    CheckoutService,
    ContentService,
    DealerService,
    InventoryService,
    InvoiceService,
    NotificationService,
    OrderService,
    PromoService,
    ReportService,
    ReviewService,
    UserService,
)

PRODUCT_IMAGES_BUCKET = 'product-images'
DEALER_DOCUMENTS_BUCKET = 'dealer-documents'


class AppContainer:
    """
    Application dependency container.

    Singleton so every request shares one instance of each repository
    and service.

    Usage:
        container = AppContainer(base_path='/srv/tire_store/data')
        orders = container.order_service.list_orders()
    """

    _instance: Optional['AppContainer'] = None

    # Tables with a specialised repository class
    _SPECIAL_TABLES = {
        'products': ProductRepository,
        'orders': OrderRepository,
        'audit_log': AuditRepository,
    }

    def __new__(cls, base_path: str = None):
        """Singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, base_path: str = None):
        """
        Args:
            base_path: Data directory (where the table JSON files live)
        """
        if self._initialized:
            return

        self._base_path = base_path or config.DATA_DIR
        os.makedirs(self._base_path, exist_ok=True)

        self._init_state()
        self._initialized = True

    def _init_state(self) -> None:
        # Repositories (lazy loading)
        self._tables: Dict[str, TableRepository] = {}
        self._buckets: Dict[str, StorageBucket] = {}
        self._change_feed: Optional[ChangeFeed] = None
        self._invoice_repo: Optional[InvoiceRepository] = None
        self._user_repo: Optional[UserRepository] = None
        self._settings_repo: Optional[SettingsRepository] = None
        self._backend: Optional[BackendFunctions] = None

        # Services (lazy loading)
        self._services: Dict[str, object] = {}

    @property
    def base_path(self) -> str:
        return self._base_path

    @property
    def upload_root(self) -> str:
        return os.path.join(self._base_path, config.UPLOAD_DIR_NAME)

    # =========================================================================
    # REPOSITORIES
    # =========================================================================

    @property
    def change_feed(self) -> ChangeFeed:
        """Realtime feed shared by every table (singleton)."""
        if self._change_feed is None:
            self._change_feed = ChangeFeed()
        return self._change_feed

    def table(self, name: str) -> TableRepository:
        """Repository for a table (singleton per table)."""
        if name == 'invoices':
            return self.invoice_repo
        if name not in self._tables:
            repo_cls = self._SPECIAL_TABLES.get(name)
            if repo_cls is not None:
                self._tables[name] = repo_cls(self._base_path, self.change_feed)
            else:
                self._tables[name] = TableRepository(self._base_path, name, self.change_feed)
        return self._tables[name]

    @property
    def invoice_repo(self) -> InvoiceRepository:
        """Invoice repository (assigns invoice numbers)."""
        if self._invoice_repo is None:
            self._invoice_repo = InvoiceRepository(self._base_path, self.change_feed,
                                                   prefix=config.INVOICE_NUMBER_PREFIX)
        return self._invoice_repo

    @property
    def user_repo(self) -> UserRepository:
        if self._user_repo is None:
            self._user_repo = UserRepository(self._base_path)
        return self._user_repo

    @property
    def settings_repo(self) -> SettingsRepository:
        if self._settings_repo is None:
            self._settings_repo = SettingsRepository(self._base_path)
        return self._settings_repo

    @property
    def backend(self) -> BackendFunctions:
        """Named backend functions (RPC)."""
        if self._backend is None:
            self._backend = BackendFunctions(self.table, self.user_repo)
        return self._backend

    def storage(self, bucket: str) -> StorageBucket:
        """Object storage bucket (singleton per bucket)."""
        if bucket not in self._buckets:
            allowed = (config.ALLOWED_DOCUMENT_EXTENSIONS if bucket == DEALER_DOCUMENTS_BUCKET
                       else config.ALLOWED_IMAGE_EXTENSIONS)
            self._buckets[bucket] = StorageBucket(self.upload_root, bucket, allowed)
        return self._buckets[bucket]

    # =========================================================================
    # SERVICES
    # =========================================================================

    def _service(self, name: str, factory):
        if name not in self._services:
            self._services[name] = factory()
        return self._services[name]

    @property
    def audit_service(self) -> AuditService:
        return self._service('audit', lambda: AuditService(self.table('audit_log')))

    @property
    def notification_service(self) -> NotificationService:
        return self._service('notification', lambda: NotificationService(
            self.table('notifications'), config.ADMIN_EMAIL))

    @property
    def user_service(self) -> UserService:
        return self._service('user', lambda: UserService(self.user_repo, self.audit_service))

    @property
    def inventory_service(self) -> InventoryService:
        return self._service('inventory', lambda: InventoryService(
            self.table('inventory'),
            self.table('inventory_movements'),
            self.table('orders'),
            self.table('products'),
            self.audit_service,
        ))

    @property
    def catalog_service(self) -> CatalogService:
        return self._service('catalog', lambda: CatalogService(
            self.backend,
            self.table('products'),
            self.table('product_categories'),
            self.table('bundles'),
            self.table('bundle_items'),
            self.inventory_service,
            self.storage(PRODUCT_IMAGES_BUCKET),
            self.audit_service,
        ))

    @property
    def cart_service(self) -> CartService:
        return self._service('cart', CartService)

    @property
    def promo_service(self) -> PromoService:
        return self._service('promo', lambda: PromoService(
            self.backend,
            self.table('promo_codes'),
            self.table('referral_codes'),
            self.table('referral_redemptions'),
        ))

    @property
    def review_service(self) -> ReviewService:
        return self._service('review', lambda: ReviewService(
            self.table('reviews'),
            self.table('review_requests'),
            self.table('products'),
            self.settings_repo,
            self.notification_service,
        ))

    @property
    def checkout_service(self) -> CheckoutService:
        return self._service('checkout', lambda: CheckoutService(
            self.table('customers'),
            self.table('orders'),
            self.table('order_items'),
            self.promo_service,
            self.inventory_service,
            self.review_service,
            self.notification_service,
        ))

    @property
    def order_service(self) -> OrderService:
        return self._service('order', lambda: OrderService(
            self.table('orders'),
            self.table('order_items'),
            self.table('customers'),
            self.table('claimed_orders'),
            self.table('service_bookings'),
            self.inventory_service,
            self.audit_service,
        ))

    @property
    def bulk_price_service(self) -> BulkPriceService:
        return self._service('bulk_price', lambda: BulkPriceService(
            self.backend,
            self.table('products'),
            self.table('product_categories'),
            self.audit_service,
        ))

    @property
    def invoice_service(self) -> InvoiceService:
        return self._service('invoice', lambda: InvoiceService(
            self.invoice_repo,
            self.table('orders'),
            self.table('customers'),
            self.table('dealers'),
            self.table('products'),
            self.table('newsletter_subscribers'),
            self.notification_service,
            self.audit_service,
        ))

    @property
    def dealer_service(self) -> DealerService:
        return self._service('dealer', lambda: DealerService(
            self.table('dealers'),
            self.table('orders'),
            self.invoice_repo,
            self.user_service,
            self.storage(DEALER_DOCUMENTS_BUCKET),
            self.notification_service,
        ))

    @property
    def booking_service(self) -> BookingService:
        return self._service('booking', lambda: BookingService(
            self.table('service_bookings'),
            self.notification_service,
            self.audit_service,
        ))

    @property
    def content_service(self) -> ContentService:
        return self._service('content', lambda: ContentService(
            self.table('pages'),
            self.table('faq_entries'),
            self.table('policies'),
            self.table('newsletter_subscribers'),
            self.settings_repo,
        ))

    @property
    def report_service(self) -> ReportService:
        return self._service('report', lambda: ReportService(
            self.invoice_repo,
            self.table('service_bookings'),
        ))

    @property
    def analytics_service(self) -> AnalyticsService:
        return self._service('analytics', lambda: AnalyticsService(
            self.table('orders'),
            self.table('order_items'),
            self.table('customers'),
        ))

    @property
    def backup_service(self) -> BackupService:
        return self._service('backup', lambda: BackupService(self._base_path))

    # =========================================================================
    # UTILITIES
    # =========================================================================

    def reset(self) -> None:
        """
        Drop every instance so the next access rebuilds it.
        Useful for tests or to reload data.
        """
        self._init_state()

    @classmethod
    def get_instance(cls, base_path: str = None) -> 'AppContainer':
        """
        Args:
            base_path: Data directory (only used on the first call)
        """
        if cls._instance is None:
            return cls(base_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Remove the singleton (used by tests)."""
        if cls._instance is not None:
            cls._instance.reset()
            cls._instance = None


def get_container(base_path: str = None) -> AppContainer:
    """Global dependency container."""
    return AppContainer.get_instance(base_path)
