# ==============================================================================
# DOMAIN ENTITIES - dataclass definitions
# ==============================================================================
# Each entity mirrors a business concept. Rows are stored as plain dicts by
# the repositories; these classes give the dict shapes a name and keep the
# (de)serialization rules in one place.
# ==============================================================================

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
from enum import Enum


# ==============================================================================
# ENUMERATIONS - valid states and types
# ==============================================================================

class AppRole(str, Enum):
    """Account roles."""
    ADMIN = "admin"
    STAFF = "staff"
    DEALER = "dealer"
    USER = "user"


class OrderStatus(str, Enum):
    """Order lifecycle."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class FulfillmentMethod(str, Enum):
    """How the customer receives the tires."""
    PICKUP = "pickup"
    INSTALLATION = "installation"
    DELIVERY = "delivery"
    SHIPPING = "shipping"


class TireType(str, Enum):
    ALL_SEASON = "all_season"
    WINTER = "winter"
    SUMMER = "summer"
    ALL_WEATHER = "all_weather"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class InvoiceType(str, Enum):
    RETAIL = "retail"
    DEALER = "dealer"


class DealerStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewStatus(str, Enum):
    APPROVED = "approved"
    PENDING = "pending"
    REJECTED = "rejected"


class BookingStatus(str, Enum):
    NEW = "new"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PriceOperation(str, Enum):
    """Operations supported by the bulk price tool."""
    SET = "set"
    INCREASE_PCT = "increase_pct"
    DECREASE_PCT = "decrease_pct"
    INCREASE_FIXED = "increase_fixed"
    DECREASE_FIXED = "decrease_fixed"


# Fulfillment methods that require a street address
ADDRESS_REQUIRED_METHODS = frozenset([FulfillmentMethod.DELIVERY.value, FulfillmentMethod.SHIPPING.value])


def enum_values(enum_cls) -> List[str]:
    """String values of an Enum (for form validation)."""
    return [member.value for member in enum_cls]


# ==============================================================================
# CATALOG
# ==============================================================================

@dataclass
class TireSize:
    """
    Dimensions parsed from a size string such as "235/60R18".

    Attributes:
        width: Section width in millimetres
        aspect: Sidewall height as a percentage of the width
        rim: Wheel diameter in inches
    """
    width: Optional[int] = None
    aspect: Optional[int] = None
    rim: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        return None not in (self.width, self.aspect, self.rim)

    def to_dict(self) -> Dict[str, Any]:
        return {'width': self.width, 'aspect': self.aspect, 'rim': self.rim}


@dataclass
class AvailabilityCheck:
    """Result of checking one requested product against inventory."""
    product_id: str
    requested_qty: int
    available_qty: int
    is_available: bool
    availability_label: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'requested_qty': self.requested_qty,
            'available_qty': self.available_qty,
            'is_available': self.is_available,
            'availability_label': self.availability_label,
        }


# ==============================================================================
# CART / ORDERS
# ==============================================================================

@dataclass
class CartItem:
    """
    Item held in the session cart.

    Attributes:
        id: Line identifier (product id, or "cart_<n>" for ad-hoc lines)
        product_id: Catalog product id (None for ad-hoc lines)
        price: Unit price already resolved (retail or dealer wholesale)
    """
    id: str
    product_id: Optional[str]
    size: str
    description: str
    vendor: str = ''
    type: str = ''
    price: float = 0.0
    quantity: int = 1
    availability: str = ''

    @property
    def line_total(self) -> float:
        return round(self.price * self.quantity, 2)

    @property
    def is_catalog_item(self) -> bool:
        """Ad-hoc lines carry ids prefixed with "cart_"."""
        return bool(self.product_id) and not str(self.id).startswith('cart_')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'product_id': self.product_id,
            'size': self.size,
            'description': self.description,
            'vendor': self.vendor,
            'type': self.type,
            'price': self.price,
            'quantity': self.quantity,
            'availability': self.availability,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CartItem':
        return cls(
            id=str(data.get('id', '')),
            product_id=data.get('product_id'),
            size=data.get('size', ''),
            description=data.get('description', ''),
            vendor=data.get('vendor', '') or '',
            type=data.get('type', '') or '',
            price=float(data.get('price', 0) or 0),
            quantity=int(data.get('quantity', 1) or 0),
            availability=data.get('availability', '') or '',
        )


# ==============================================================================
# INVOICES
# ==============================================================================

@dataclass
class LineItem:
    """
    Invoice line. The total is always quantity x unit price.
    """
    description: str
    quantity: int = 1
    unit_price: float = 0.0
    product_id: Optional[str] = None

    @property
    def total(self) -> float:
        return round(self.quantity * self.unit_price, 2)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'description': self.description,
            'quantity': self.quantity,
            'unit_price': round(self.unit_price, 2),
            'total': self.total,
        }
        if self.product_id:
            data['product_id'] = self.product_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LineItem':
        return cls(
            description=(data.get('description') or '').strip(),
            quantity=int(data.get('quantity') or 0),
            unit_price=float(data.get('unit_price') or 0),
            product_id=data.get('product_id') or None,
        )


# ==============================================================================
# AUDIT
# ==============================================================================

@dataclass
class AuditEntry:
    """
    Audit log row.

    Attributes:
        table_name: Table the change applies to
        action: Event name (BULK_PRICE_UPDATE, INVOICE_SENT, STATUS_CHANGE...)
        record_id: Affected row id
        old_values: Snapshot before the change
        new_values: Snapshot after the change
        user_id: Acting account (None for system events)
    """
    table_name: str
    action: str
    record_id: Optional[str] = None
    old_values: Dict[str, Any] = field(default_factory=dict)
    new_values: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'table_name': self.table_name,
            'action': self.action,
            'record_id': self.record_id,
            'old_values': self.old_values,
            'new_values': self.new_values,
            'user_id': self.user_id,
        }
