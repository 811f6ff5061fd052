# ==============================================================================
# SERVICE LAYER - business logic
# ==============================================================================
# This layer holds ALL the business rules of the application.
#
# PRINCIPLES:
# 1. Services orchestrate calls between repositories
# 2. They apply business rules and validation
# 3. Routes (controllers) only call services
# 4. Services do not know how data is stored (JSON today)
#
# LAYOUT:
# ├── totals.py               → Checkout / invoice arithmetic (GST, levies)
# ├── user_service.py         → Accounts, authentication, roles
# ├── audit_service.py        → Audit log
# ├── notification_service.py → Queued emails / named functions
# ├── catalog_service.py      → Products, categories, bundles, tire sizes
# ├── inventory_service.py    → Stock levels, reservations, movements
# ├── cart_service.py         → Session cart and checkout choices
# ├── promo_service.py        → Promo codes, referral codes, redemptions
# ├── checkout_service.py     → 4-step checkout wizard and order placement
# ├── order_service.py        → Order admin, customer orders, order claims
# ├── bulk_price_service.py   → Bulk price preview / apply / rollback
# ├── invoice_service.py      → Invoices, send, print
# ├── dealer_service.py       → Dealer applications and dashboard
# ├── booking_service.py      → Service bookings
# ├── review_service.py       → Reviews and review requests
# ├── content_service.py      → Pages, FAQs, policies, settings, newsletter
# ├── report_service.py       → Revenue and booking reports
# ├── analytics_service.py    → Customer statistics, order analytics
# └── backup_service.py       → Daily ZIP backups of the data files
#
# Services depend on repository INTERFACES. Changing the store means writing
# new repository classes and wiring them in app_container.py.
# ==============================================================================

from tire_store.services.audit_service import AuditService
from tire_store.services.user_service import UserService, PermissionDeniedError
from tire_store.services.notification_service import NotificationService
from tire_store.services.inventory_service import InventoryService
from tire_store.services.catalog_service import CatalogService, parse_tire_size
from tire_store.services.cart_service import CartService
from tire_store.services.promo_service import PromoService
from tire_store.services.review_service import ReviewService
from tire_store.services.checkout_service import CheckoutService, CheckoutError
from tire_store.services.order_service import OrderService
from tire_store.services.bulk_price_service import BulkPriceService, PriceRule, apply_operation
from tire_store.services.invoice_service import InvoiceService
from tire_store.services.dealer_service import DealerService
from tire_store.services.booking_service import BookingService
from tire_store.services.content_service import ContentService
from tire_store.services.report_service import ReportService
from tire_store.services.analytics_service import AnalyticsService
from tire_store.services.backup_service import BackupService, run_startup_backup

__all__ = [
    'AuditService',
    'UserService',
    'PermissionDeniedError',
    'NotificationService',
    'InventoryService',
    'CatalogService',
    'parse_tire_size',
    'CartService',
    'PromoService',
    'ReviewService',
    'CheckoutService',
    'CheckoutError',
    'OrderService',
    'BulkPriceService',
    'PriceRule',
    'apply_operation',
    'InvoiceService',
    'DealerService',
    'BookingService',
    'ContentService',
    'ReportService',
    'AnalyticsService',
    'BackupService',
    'run_startup_backup',
]
