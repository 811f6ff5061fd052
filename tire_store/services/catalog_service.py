# ==============================================================================
# CATALOG SERVICE
# ==============================================================================
# Products, categories, bundles and the shop search.
#
# Tire size strings come in many shapes ("235/60R18", "LT275/70R18",
# "P225/45R17", "265/70/17", "LT33X12.50R17"). Parsing works on the
# upper-cased string:
#   width  -> 3 digits followed by "/" or "X"
#   aspect -> 2-3 digits after "/", optional ".5", followed by "R" or "/"
#   rim    -> 2 digits after "R" or "/" at the end of the string
# ==============================================================================

import logging
import math
import re
import time
from typing import Any, Dict, List, Optional

from tire_store import config
from tire_store.models import TireSize, TireType, enum_values
from tire_store.repositories.base import BackendError
from tire_store.repositories.backend_functions import BackendFunctions
from tire_store.repositories.interfaces import ITableRepository, IStorageBucket
from tire_store.services.audit_service import AuditService
from tire_store.services.inventory_service import InventoryService
from tire_store.performance_logger import profile_function

logger = logging.getLogger(__name__)

WIDTH_RE = re.compile(r'(\d{3})(?:/|X)')
ASPECT_RE = re.compile(r'/(\d{2,3})(?:\.5)?(?:R|/)')
RIM_RE = re.compile(r'(?:R|/)(\d{2})$')

PRODUCT_FIELDS = (
    'size', 'description', 'vendor', 'type', 'category_id', 'price',
    'wholesale_price', 'availability', 'image_url', 'is_active', 'features',
)


def parse_tire_size(size: str) -> TireSize:
    """
    Extract width / aspect / rim from a size string.
    Missing parts stay None.
    """
    upper = (size or '').strip().upper()
    width = WIDTH_RE.search(upper)
    aspect = ASPECT_RE.search(upper)
    rim = RIM_RE.search(upper)
    return TireSize(
        width=int(width.group(1)) if width else None,
        aspect=int(aspect.group(1)) if aspect else None,
        rim=int(rim.group(1)) if rim else None,
    )


def is_in_stock(product: Dict[str, Any]) -> bool:
    """Shop ordering rule: priced and not marked out of stock."""
    return float(product.get('price') or 0) > 0 and product.get('availability') != config.OUT_OF_STOCK_LABEL


def tire_dimensions(size: str) -> Optional[Dict[str, float]]:
    """
    Physical dimensions in millimetres for the size visualiser.

    Returns:
        {width, sidewall_height, rim_diameter, overall_diameter,
         circumference} or None when the size cannot be parsed
    """
    parsed = parse_tire_size(size)
    if not parsed.is_complete:
        return None
    rim_mm = parsed.rim * 25.4
    sidewall = parsed.width * (parsed.aspect / 100)
    overall = rim_mm + 2 * sidewall
    return {
        'width': parsed.width,
        'sidewall_height': round(sidewall, 1),
        'rim_diameter': round(rim_mm, 1),
        'overall_diameter': round(overall, 1),
        'circumference': round(overall * math.pi, 1),
    }


def compare_sizes(size: str, reference: str) -> Optional[Dict[str, float]]:
    """
    Difference of `size` against `reference` (diameter mm / %, width,
    speedometer error %).
    """
    selected = tire_dimensions(size)
    base = tire_dimensions(reference)
    if not selected or not base:
        return None
    diameter_diff = selected['overall_diameter'] - base['overall_diameter']
    diameter_pct = diameter_diff / base['overall_diameter'] * 100
    return {
        'diameter': round(diameter_diff, 1),
        'diameter_pct': round(diameter_pct, 2),
        'width': selected['width'] - base['width'],
        'speedometer_pct': round(-diameter_pct, 2),
    }


class CatalogService:
    """
    Service for the tire catalog.

    Responsibilities:
    - Public shop listing (filters, in-stock-first ordering)
    - Price shown per viewer (dealer wholesale vs retail)
    - Admin product CRUD with image upload
    - Categories and bundles
    """

    def __init__(
        self,
        backend: BackendFunctions,
        products: ITableRepository,
        categories: ITableRepository,
        bundles: ITableRepository,
        bundle_items: ITableRepository,
        inventory_service: InventoryService,
        image_bucket: IStorageBucket,
        audit_service: AuditService = None
    ):
        self.backend = backend
        self.products = products
        self.categories = categories
        self.bundles = bundles
        self.bundle_items = bundle_items
        self.inventory_service = inventory_service
        self.image_bucket = image_bucket
        self.audit_service = audit_service

    # =========================================================================
    # SHOP
    # =========================================================================

    @staticmethod
    def matches_filters(product: Dict[str, Any], filters: Dict[str, Any]) -> bool:
        """
        Args:
            filters: {width, aspect, rim, type, search} (all optional strings)
        """
        parsed = parse_tire_size(product.get('size', ''))
        for key in ('width', 'aspect', 'rim'):
            wanted = str(filters.get(key) or '').strip()
            if wanted and str(getattr(parsed, key) or '') != wanted:
                return False
        wanted_type = filters.get('type')
        if wanted_type and product.get('type') != wanted_type:
            return False
        search = (filters.get('search') or '').strip().lower()
        if search:
            in_size = search in (product.get('size') or '').lower()
            in_description = search in (product.get('description') or '').lower()
            if not in_size and not in_description:
                return False
        return True

    def display_price(self, product: Dict[str, Any], is_dealer: bool) -> float:
        """Wholesale for approved dealers when set, otherwise retail."""
        wholesale = product.get('wholesale_price')
        if is_dealer and wholesale not in (None, ''):
            return float(wholesale)
        return float(product.get('price') or 0)

    @profile_function(name="Shop search")
    def search_shop(self, filters: Dict[str, Any] = None, user_id: str = None) -> List[Dict[str, Any]]:
        """
        Products for the shop page, in-stock first (stable otherwise).

        Each product gets `display_price`, `availability_label` and
        `low_stock` for the templates.
        """
        is_dealer = self.backend.is_approved_dealer(user_id)
        source = self.backend.get_products_admin() if is_dealer else self.backend.get_products_public()
        if is_dealer:
            source = [p for p in source if p.get('is_active') is not False]

        filters = filters or {}
        stock = self.inventory_service.stock_map()
        results = []
        for product in source:
            if not self.matches_filters(product, filters):
                continue
            row = stock.get(product['id'])
            product['display_price'] = self.display_price(product, is_dealer)
            product['availability_label'] = self.inventory_service.availability_label(product, row or {})
            product['low_stock'] = self.inventory_service.is_low_stock(row)
            results.append(product)

        # sorted() is stable: ties keep catalog order
        return sorted(results, key=lambda p: 0 if is_in_stock(p) else 1)

    def get_product(self, product_id: str, user_id: str = None) -> Optional[Dict[str, Any]]:
        product = self.products.get(product_id)
        if not product or product.get('is_active') is False:
            return None
        is_dealer = self.backend.is_approved_dealer(user_id)
        row = self.inventory_service.get_stock(product_id)
        product['display_price'] = self.display_price(product, is_dealer)
        product['availability_label'] = self.inventory_service.availability_label(product, row or {})
        product['low_stock'] = self.inventory_service.is_low_stock(row)
        product['dimensions'] = tire_dimensions(product.get('size', ''))
        if not is_dealer:
            product.pop('wholesale_price', None)
        return product

    def size_options(self) -> Dict[str, List[int]]:
        """Distinct widths / aspects / rims present in the public catalog."""
        widths, aspects, rims = set(), set(), set()
        for product in self.backend.get_products_public():
            parsed = parse_tire_size(product.get('size', ''))
            if parsed.width:
                widths.add(parsed.width)
            if parsed.aspect:
                aspects.add(parsed.aspect)
            if parsed.rim:
                rims.add(parsed.rim)
        return {'widths': sorted(widths), 'aspects': sorted(aspects), 'rims': sorted(rims)}

    # =========================================================================
    # CATEGORIES / BUNDLES
    # =========================================================================

    def list_categories(self) -> List[Dict[str, Any]]:
        return self.categories.select(order_by='name')

    def create_category(self, name: str, description: str = '') -> Dict[str, Any]:
        name = (name or '').strip()
        if not name:
            return {'ok': False, 'error': 'Category name is required'}
        category = self.categories.insert({'name': name, 'description': description or ''})
        return {'ok': True, 'category': category}

    def list_bundles(self, active_only: bool = True) -> List[Dict[str, Any]]:
        """Bundles with their items (resolved product rows)."""
        filters = {'is_active': True} if active_only else None
        bundles = self.bundles.select(filters, order_by='name')
        for bundle in bundles:
            items = self.bundle_items.select({'bundle_id': bundle['id']})
            for item in items:
                item['product'] = self.products.get(item.get('product_id'))
            bundle['items'] = items
        return bundles

    def save_bundle(self, data: Dict[str, Any], bundle_id: str = None) -> Dict[str, Any]:
        """
        Create or update a bundle and replace its items.

        Args:
            data: {name, description, bundle_price, is_active,
                   items: [{product_id, quantity}]}
        """
        name = (data.get('name') or '').strip()
        if not name:
            return {'ok': False, 'error': 'Bundle name is required'}
        try:
            price = round(float(data.get('bundle_price') or 0), 2)
        except (TypeError, ValueError):
            return {'ok': False, 'error': 'Invalid bundle price'}
        if price < 0:
            return {'ok': False, 'error': 'Invalid bundle price'}

        row = {
            'name': name,
            'description': data.get('description') or '',
            'bundle_price': price,
            'is_active': bool(data.get('is_active', True)),
        }
        bundle = self.bundles.update_row(bundle_id, row) if bundle_id else self.bundles.insert(row)

        for old in self.bundle_items.select({'bundle_id': bundle['id']}):
            self.bundle_items.delete_row(old['id'])
        for item in data.get('items') or []:
            if self.products.get(item.get('product_id')):
                self.bundle_items.insert({
                    'bundle_id': bundle['id'],
                    'product_id': item['product_id'],
                    'quantity': int(item.get('quantity') or 1),
                })
        return {'ok': True, 'bundle': bundle}

    # =========================================================================
    # ADMIN PRODUCT CRUD
    # =========================================================================

    def list_admin_products(self, query: str = None, vendor: str = None) -> List[Dict[str, Any]]:
        products = self.backend.get_products_admin()
        stock = self.inventory_service.stock_map()
        needle = (query or '').strip().lower()
        results = []
        for product in products:
            if vendor and product.get('vendor') != vendor:
                continue
            if needle and needle not in (product.get('size') or '').lower() \
                    and needle not in (product.get('description') or '').lower():
                continue
            row = stock.get(product['id']) or {}
            product['qty_on_hand'] = int(row.get('qty_on_hand') or 0)
            product['qty_reserved'] = int(row.get('qty_reserved') or 0)
            results.append(product)
        return results

    def _clean_product(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and normalise admin product input."""
        row = {k: data[k] for k in PRODUCT_FIELDS if k in data}
        if 'size' in row:
            row['size'] = (row['size'] or '').strip().upper()
            if not row['size']:
                raise ValueError('Size is required')
        if 'description' in row:
            row['description'] = (row['description'] or '').strip()
        for key in ('price', 'wholesale_price'):
            if key in row:
                if row[key] in (None, ''):
                    if key == 'price':
                        raise ValueError('Price is required')
                    row[key] = None
                    continue
                try:
                    row[key] = round(float(row[key]), 2)
                except (TypeError, ValueError):
                    raise ValueError(f'Invalid {key.replace("_", " ")}')
        if row.get('type') and row['type'] not in enum_values(TireType):
            raise ValueError(f"Invalid tire type: {row['type']}")
        if 'is_active' in row:
            row['is_active'] = row['is_active'] not in (False, 'false', '0', 0, 'off', None)
        return row

    def _upload_image(self, product_id: str, image) -> Optional[str]:
        if image is None or not getattr(image, 'filename', ''):
            return None
        extension = self.image_bucket.extension_of(image.filename)
        path = self.image_bucket.upload(f'{product_id}/{int(time.time() * 1000)}.{extension}', image)
        return self.image_bucket.get_public_url(path)

    def create_product(self, data: Dict[str, Any], image=None, user_id: str = None) -> Dict[str, Any]:
        """
        Create a product (optionally with an image).

        Returns:
            {'ok': True, 'product': {...}} or {'ok': False, 'error': ...}
        """
        try:
            row = self._clean_product(data)
        except ValueError as e:
            return {'ok': False, 'error': str(e)}
        if not row.get('size') or 'price' not in row:
            return {'ok': False, 'error': 'Size and price are required'}
        row.setdefault('is_active', True)
        row.setdefault('availability', config.DEFAULT_AVAILABILITY_LABEL)

        try:
            product = self.products.insert(row)
            image_url = self._upload_image(product['id'], image)
            if image_url:
                product = self.products.update_row(product['id'], {'image_url': image_url})
        except BackendError as e:
            logger.warning("Product create failed: %s", e)
            return {'ok': False, 'error': str(e)}

        if self.audit_service:
            self.audit_service.log('products', AuditService.INSERT, product['id'], {}, row, user_id)
        return {'ok': True, 'product': product}

    def update_product(self, product_id: str, data: Dict[str, Any], image=None, user_id: str = None) -> Dict[str, Any]:
        existing = self.products.get(product_id)
        if not existing:
            return {'ok': False, 'error': 'Product not found'}
        try:
            changes = self._clean_product(data)
        except ValueError as e:
            return {'ok': False, 'error': str(e)}

        try:
            image_url = self._upload_image(product_id, image)
            if image_url:
                changes['image_url'] = image_url
            product = self.products.update_row(product_id, changes)
        except BackendError as e:
            logger.warning("Product update failed for %s: %s", product_id, e)
            return {'ok': False, 'error': str(e)}

        if self.audit_service:
            old = {k: existing.get(k) for k in changes}
            self.audit_service.log('products', AuditService.UPDATE, product_id, old, changes, user_id)
        return {'ok': True, 'product': product}

    def delete_product(self, product_id: str, user_id: str = None) -> Dict[str, Any]:
        removed = self.products.delete_row(product_id)
        if not removed:
            return {'ok': False, 'error': 'Product not found'}
        if self.audit_service:
            self.audit_service.log('products', AuditService.DELETE, product_id,
                                   {'size': removed.get('size'), 'price': removed.get('price')}, {}, user_id)
        return {'ok': True}
