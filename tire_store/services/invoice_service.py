# ==============================================================================
# INVOICE SERVICE
# ==============================================================================
# Invoices hold their line items inline:
#     line_items = [{description, quantity, unit_price, total}]
# Totals:
#     subtotal = sum(line totals)
#     ab_levy  = tires x 4.00 (only when apply_ab_levy)
#     gst      = round((subtotal + ab_levy) x 5%, 2)
#     total    = subtotal + ab_levy + gst
#
# The invoice number is assigned by the store on insert (INV-YYYY-NNNN).
# Sending queues a notification row; there is no delivery confirmation.
# ==============================================================================

import logging
from typing import Any, Dict, List, Optional

from tire_store import config
from tire_store.models import InvoiceStatus, InvoiceType, LineItem, enum_values
from tire_store.repositories.interfaces import ITableRepository
from tire_store.repositories.table_repository import utc_now_iso
from tire_store.services.audit_service import AuditService
from tire_store.services.notification_service import NotificationService
from tire_store.services.totals import invoice_totals, round_money

logger = logging.getLogger(__name__)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in ('1', 'true', 'on', 'yes')


class InvoiceService:
    """
    Service for invoices (create, status, send, print, list).
    """

    def __init__(
        self,
        invoices: ITableRepository,
        orders: ITableRepository,
        customers: ITableRepository,
        dealers: ITableRepository,
        products: ITableRepository,
        newsletter: ITableRepository,
        notification_service: NotificationService,
        audit_service: AuditService
    ):
        self.invoices = invoices
        self.orders = orders
        self.customers = customers
        self.dealers = dealers
        self.products = products
        self.newsletter = newsletter
        self.notification_service = notification_service
        self.audit_service = audit_service

    # =========================================================================
    # LINE ITEMS
    # =========================================================================

    def build_line(self, data: Dict[str, Any], invoice_type: str = InvoiceType.RETAIL.value) -> Dict[str, Any]:
        """
        Normalise one line. When a product_id is given, description and
        price come from the catalog (dealer_price for dealer invoices).
        """
        line = LineItem.from_dict(data)
        if line.product_id:
            product = self.products.get(line.product_id)
            if product:
                if not line.description:
                    line.description = ' '.join(
                        part for part in (product.get('size'), product.get('pattern'), product.get('description'))
                        if part
                    ).strip()
                if data.get('unit_price') in (None, ''):
                    dealer_price = product.get('dealer_price') or product.get('wholesale_price')
                    if invoice_type == InvoiceType.DEALER.value and dealer_price:
                        line.unit_price = float(dealer_price)
                    else:
                        line.unit_price = float(product.get('price') or 0)
        return line.to_dict()

    def build_lines(self, raw_lines: List[Dict[str, Any]], invoice_type: str) -> List[Dict[str, Any]]:
        lines = [self.build_line(raw, invoice_type) for raw in raw_lines or []]
        return [line for line in lines if line['description'] or line['unit_price']]

    # =========================================================================
    # CREATE / UPDATE
    # =========================================================================

    def create_invoice(self, data: Dict[str, Any], user_id: str = None) -> Dict[str, Any]:
        """
        Create a draft invoice.

        Args:
            data: {type, order_id, customer_id, dealer_id, guest_name,
                   guest_email, guest_phone, due_date, notes, apply_ab_levy,
                   line_items: [{description, quantity, unit_price, product_id}]}

        Returns:
            {'ok': True, 'invoice': {...}} or {'ok': False, 'error': ...}
        """
        invoice_type = data.get('type') or InvoiceType.RETAIL.value
        if invoice_type not in enum_values(InvoiceType):
            return {'ok': False, 'error': 'Invalid invoice type'}

        lines = self.build_lines(data.get('line_items'), invoice_type)
        if not lines:
            return {'ok': False, 'error': 'Add at least one line item'}
        if any(line['quantity'] < 0 or line['unit_price'] < 0 for line in lines):
            return {'ok': False, 'error': 'Quantities and prices cannot be negative'}

        apply_levy = _as_bool(data.get('apply_ab_levy'))
        totals = invoice_totals(lines, apply_levy)

        guest_email = (data.get('guest_email') or '').strip().lower()
        if guest_email:
            self.newsletter.upsert({
                'email': guest_email,
                'name': data.get('guest_name') or None,
                'source': 'invoice_capture',
            }, on='email')

        invoice = self.invoices.insert({
            'type': invoice_type,
            'order_id': data.get('order_id') or None,
            'customer_id': data.get('customer_id') or None,
            'dealer_id': data.get('dealer_id') or None,
            'guest_name': data.get('guest_name') or None,
            'guest_email': guest_email or None,
            'guest_phone': data.get('guest_phone') or None,
            'due_date': data.get('due_date') or None,
            'notes': data.get('notes') or None,
            'line_items': lines,
            'apply_ab_levy': apply_levy,
            'subtotal': totals['subtotal'],
            'ab_levy': totals['ab_levy'],
            'gst': totals['gst'],
            'total': totals['total'],
            'status': InvoiceStatus.DRAFT.value,
            'paid_at': None,
            'created_by': user_id,
        })
        logger.info("Invoice %s created (%.2f)", invoice['invoice_number'], invoice['total'])
        return {'ok': True, 'invoice': invoice}

    def draft_from_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        """
        Form values for an invoice built from an order: a single
        "Order <number>" line at the order subtotal.
        """
        order = self.orders.get(order_id)
        if not order:
            return None
        subtotal = round_money(order.get('subtotal'))
        return {
            'type': InvoiceType.RETAIL.value,
            'order_id': order['id'],
            'customer_id': order.get('customer_id') or '',
            'line_items': [{
                'description': f"Order {order['order_number']}",
                'quantity': 1,
                'unit_price': subtotal,
            }],
        }

    def create_from_order(self, order_id: str, overrides: Dict[str, Any] = None,
                          user_id: str = None) -> Dict[str, Any]:
        draft = self.draft_from_order(order_id)
        if draft is None:
            return {'ok': False, 'error': 'Order not found'}
        draft.update({k: v for k, v in (overrides or {}).items() if k not in ('line_items', 'order_id')})
        return self.create_invoice(draft, user_id)

    def update_invoice(self, invoice_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Edit header fields and line items; totals are recomputed."""
        invoice = self.invoices.get(invoice_id)
        if not invoice:
            return {'ok': False, 'error': 'Invoice not found'}

        changes = {key: data.get(key) or None for key in ('due_date', 'notes', 'guest_name', 'guest_email',
                                                          'guest_phone', 'customer_id', 'dealer_id')
                   if key in data}
        lines = invoice.get('line_items') or []
        if 'line_items' in data:
            lines = self.build_lines(data['line_items'], invoice.get('type'))
            if not lines:
                return {'ok': False, 'error': 'Add at least one line item'}
        apply_levy = _as_bool(data['apply_ab_levy']) if 'apply_ab_levy' in data else bool(invoice.get('apply_ab_levy'))
        totals = invoice_totals(lines, apply_levy)
        changes.update({'line_items': lines, 'apply_ab_levy': apply_levy, **totals})
        return {'ok': True, 'invoice': self.invoices.update_row(invoice_id, changes)}

    def update_status(self, invoice_id: str, status: str, user_id: str = None) -> Dict[str, Any]:
        """Moving to "paid" stamps paid_at."""
        if status not in enum_values(InvoiceStatus):
            return {'ok': False, 'error': f'Invalid status: {status}'}
        invoice = self.invoices.get(invoice_id)
        if not invoice:
            return {'ok': False, 'error': 'Invoice not found'}
        changes = {'status': status}
        if status == InvoiceStatus.PAID.value:
            changes['paid_at'] = utc_now_iso()
        updated = self.invoices.update_row(invoice_id, changes)
        self.audit_service.log_status_change('invoices', invoice_id, invoice.get('status'), status, user_id)
        return {'ok': True, 'invoice': updated}

    def delete_invoice(self, invoice_id: str) -> Dict[str, Any]:
        if not self.invoices.delete_row(invoice_id):
            return {'ok': False, 'error': 'Invoice not found'}
        return {'ok': True}

    # =========================================================================
    # SEND
    # =========================================================================

    def resolve_recipient(self, invoice: Dict[str, Any]) -> Dict[str, Optional[str]]:
        """Customer first, else dealer."""
        if invoice.get('customer_id'):
            customer = self.customers.get(invoice['customer_id'])
            if customer and customer.get('email'):
                return {'email': customer['email'], 'name': customer.get('name')}
        elif invoice.get('dealer_id'):
            dealer = self.dealers.get(invoice['dealer_id'])
            if dealer and dealer.get('email'):
                return {'email': dealer['email'], 'name': dealer.get('business_name')}
        return {'email': None, 'name': None}

    def send_invoice(self, invoice_id: str, user_id: str = None) -> Dict[str, Any]:
        """
        Queue the invoice email, mark a draft as sent and audit the send.

        Returns:
            {'ok': True, 'sent_to': email} or {'ok': False, 'error': ...}
        """
        invoice = self.invoices.get(invoice_id)
        if not invoice:
            return {'ok': False, 'error': 'Invoice not found'}

        recipient = self.resolve_recipient(invoice)
        if not recipient['email']:
            return {'ok': False, 'error': 'No recipient email found for this invoice'}

        self.notification_service.queue(
            'invoice',
            recipient['email'],
            f"Invoice {invoice['invoice_number']} from {config.COMPANY_NAME}",
            {
                'invoice_number': invoice['invoice_number'],
                'recipient_name': recipient['name'],
                'total': invoice.get('total'),
                'due_date': invoice.get('due_date'),
                'line_items': invoice.get('line_items') or [],
            },
        )
        if invoice.get('status') == InvoiceStatus.DRAFT.value:
            self.invoices.update_row(invoice_id, {'status': InvoiceStatus.SENT.value})

        self.audit_service.log('invoices', AuditService.INVOICE_SENT, invoice_id, None,
                               {'sent_to': recipient['email'], 'sent_at': utc_now_iso()}, user_id)
        logger.info("Invoice %s queued for %s", invoice['invoice_number'], recipient['email'])
        return {'ok': True, 'sent_to': recipient['email']}

    # =========================================================================
    # READ / PRINT
    # =========================================================================

    def get_invoice(self, invoice_id: str) -> Optional[Dict[str, Any]]:
        return self.invoices.get(invoice_id)

    def list_invoices(self, search: str = None, status: str = None,
                      dealer_id: str = None) -> List[Dict[str, Any]]:
        filters = {}
        if status and status != 'all':
            filters['status'] = status
        if dealer_id:
            filters['dealer_id'] = dealer_id
        needle = (search or '').strip().lower()
        return self.invoices.select(
            filters, order_by='created_at', desc=True,
            where=(lambda inv: needle in (inv.get('invoice_number') or '').lower()) if needle else None,
        )

    def dashboard_summary(self) -> Dict[str, Any]:
        """
        Returns:
            {paid_total, sent_total, overdue_count}
        """
        invoices = self.invoices.get_all()
        return {
            'paid_total': round_money(sum(float(i.get('total') or 0) for i in invoices
                                          if i.get('status') == InvoiceStatus.PAID.value)),
            'sent_total': round_money(sum(float(i.get('total') or 0) for i in invoices
                                          if i.get('status') == InvoiceStatus.SENT.value)),
            'overdue_count': sum(1 for i in invoices if i.get('status') == InvoiceStatus.OVERDUE.value),
        }

    def bill_to(self, invoice: Dict[str, Any]) -> Dict[str, Any]:
        """
        Bill-to block: dealer (dealer invoices), customer, else guest.

        Returns:
            {name, lines: [str]}
        """
        if invoice.get('type') == InvoiceType.DEALER.value and invoice.get('dealer_id'):
            dealer = self.dealers.get(invoice['dealer_id'])
            if dealer:
                lines = [f"Contact: {dealer.get('contact_name') or ''}", f"Email: {dealer.get('email') or ''}"]
                if dealer.get('phone'):
                    lines.append(f"Phone: {dealer['phone']}")
                return {'name': dealer.get('business_name'), 'lines': lines}
        elif invoice.get('customer_id'):
            customer = self.customers.get(invoice['customer_id'])
            if customer:
                lines = [f"Email: {customer.get('email') or ''}"]
                if customer.get('phone'):
                    lines.append(f"Phone: {customer['phone']}")
                return {'name': customer.get('name'), 'lines': lines}

        lines = []
        if invoice.get('guest_email'):
            lines.append(f"Email: {invoice['guest_email']}")
        if invoice.get('guest_phone'):
            lines.append(f"Phone: {invoice['guest_phone']}")
        return {'name': invoice.get('guest_name') or 'Guest Details', 'lines': lines}

    def print_context(self, invoice_id: str) -> Optional[Dict[str, Any]]:
        """Template context for the standalone printable invoice."""
        invoice = self.invoices.get(invoice_id)
        if not invoice:
            return None
        return {
            'invoice': invoice,
            'bill_to': self.bill_to(invoice),
            'line_items': invoice.get('line_items') or [],
            'show_levy': float(invoice.get('ab_levy') or 0) > 0,
            'company': {
                'name': config.COMPANY_NAME,
                'phone': config.COMPANY_PHONE,
                'email': config.ADMIN_EMAIL,
                'address': config.COMPANY_ADDRESS,
            },
        }

    def form_options(self) -> Dict[str, Any]:
        """Select options for the create form."""
        return {
            'orders': self.orders.select(order_by='created_at', desc=True, limit=50),
            'customers': self.customers.select(order_by='created_at', desc=True, limit=100),
            'dealers': self.dealers.select({'status': 'approved'}),
            'products': self.products.select({'is_active': lambda v: v is not False}, order_by='size'),
        }
