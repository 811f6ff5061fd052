# ==============================================================================
# MONEY / TOTALS
# ==============================================================================
# Pure arithmetic shared by checkout and invoicing.
#
#   checkout:  levy = tires x 5.00
#              gst  = round((subtotal - discount + levy) x 5%, 2)
#              total = subtotal - discount + levy + gst
#
#   invoices:  levy = tires x 4.00 (only when the Alberta levy applies)
#              gst  = round((subtotal + levy) x 5%, 2)
# ==============================================================================

from typing import Any, Dict, Iterable, List

from tire_store import config
from tire_store.models import LineItem


def round_money(value: float) -> float:
    """Round to cents."""
    return round(float(value or 0), 2)


def tire_count(items: Iterable[Dict[str, Any]]) -> int:
    """Total quantity across cart or invoice lines."""
    return sum(int(item.get('quantity') or 0) for item in items)


def cart_subtotal(items: Iterable[Dict[str, Any]]) -> float:
    return round_money(sum(float(i.get('price') or 0) * int(i.get('quantity') or 0) for i in items))


def checkout_totals(subtotal: float, tires: int, discount: float = 0.0) -> Dict[str, float]:
    """
    Order totals for checkout.

    Args:
        subtotal: Sum of line prices
        tires: Number of tires (recycling levy base)
        discount: Promo / referral discount already computed

    Returns:
        {subtotal, discount, levy, gst, total}
    """
    subtotal = round_money(subtotal)
    discount = round_money(discount)
    levy = round_money(tires * config.TIRE_RECYCLING_LEVY)
    gst = round_money((subtotal - discount + levy) * config.GST_RATE)
    total = round_money(subtotal - discount + levy + gst)
    return {
        'subtotal': subtotal,
        'discount': discount,
        'levy': levy,
        'gst': gst,
        'total': total,
    }


def invoice_totals(line_items: List[Dict[str, Any]], apply_ab_levy: bool = False) -> Dict[str, float]:
    """
    Invoice totals from line items.

    Args:
        line_items: [{description, quantity, unit_price, total}]
        apply_ab_levy: Charge the per-tire Alberta levy

    Returns:
        {subtotal, ab_levy, gst, total}
    """
    subtotal = round_money(sum(LineItem.from_dict(line).total for line in line_items))
    levy = round_money(tire_count(line_items) * config.AB_TIRE_LEVY) if apply_ab_levy else 0.0
    gst = round_money((subtotal + levy) * config.GST_RATE)
    total = round_money(subtotal + levy + gst)
    return {
        'subtotal': subtotal,
        'ab_levy': levy,
        'gst': gst,
        'total': total,
    }
