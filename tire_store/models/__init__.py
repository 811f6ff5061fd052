# ==============================================================================
# MODEL LAYER - system data structures
# ==============================================================================
# Domain entities and enumerations as dataclasses / str Enums.
# Independent of the persistence mechanism (JSON table store today).
# ==============================================================================

from .entities import (
    # Enumerations
    AppRole,
    OrderStatus,
    FulfillmentMethod,
    TireType,
    InvoiceStatus,
    InvoiceType,
    DealerStatus,
    ReviewStatus,
    BookingStatus,
    DiscountType,
    PriceOperation,
    ADDRESS_REQUIRED_METHODS,
    enum_values,

    # Catalog
    TireSize,
    AvailabilityCheck,

    # Cart
    CartItem,

    # Invoices
    LineItem,

    # Audit
    AuditEntry,
)

__all__ = [
    'AppRole',
    'OrderStatus',
    'FulfillmentMethod',
    'TireType',
    'InvoiceStatus',
    'InvoiceType',
    'DealerStatus',
    'ReviewStatus',
    'BookingStatus',
    'DiscountType',
    'PriceOperation',
    'ADDRESS_REQUIRED_METHODS',
    'enum_values',
    'TireSize',
    'AvailabilityCheck',
    'CartItem',
    'LineItem',
    'AuditEntry',
]
