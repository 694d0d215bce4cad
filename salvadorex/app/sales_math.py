from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable

from .validation import quantize_money


def parse_tax_rate(raw) -> Decimal:
    """`tax_rate` is stored as a percent string ("16" means 16%)."""
    try:
        rate = Decimal(str(raw or "0").strip() or "0")
    except InvalidOperation:
        return Decimal("0")
    if not rate.is_finite() or rate < 0:
        return Decimal("0")
    return rate


def line_gross(quantity: int, unit_price: Decimal) -> Decimal:
    return quantize_money(Decimal(quantity) * unit_price)


def line_total(quantity: int, unit_price: Decimal, discount_pct: Decimal) -> Decimal:
    """Line amount after the item's percent discount (10 means 10% off)."""
    if discount_pct < 0 or discount_pct > 100:
        raise ValueError("item discount must be between 0 and 100 percent")
    return quantize_money(Decimal(quantity) * unit_price * (Decimal("100") - discount_pct) / Decimal("100"))


def compute_sale_totals(
    gross_lines: Iterable[Decimal],
    net_lines: Iterable[Decimal],
    discount: Decimal,
    tax_rate_pct: Decimal,
) -> dict:
    """
    `subtotal` is the gross sum before any discount. The sale `discount` is the
    total discount (line discounts plus any extra sale-level amount), so it is
    never less than what the lines already took off.
    """
    subtotal = quantize_money(sum(gross_lines, Decimal("0")))
    line_discounts = subtotal - quantize_money(sum(net_lines, Decimal("0")))
    discount = max(quantize_money(discount), line_discounts)
    if discount > subtotal:
        raise ValueError("discount exceeds subtotal")
    tax = quantize_money((subtotal - discount) * tax_rate_pct / Decimal("100"))
    total = quantize_money(subtotal - discount + tax)
    return {"subtotal": subtotal, "discount": discount, "tax": tax, "total": total}


def format_receipt_number(device_id: str, when: datetime, counter: int) -> str:
    prefix = (device_id or "").strip().upper() or "POS"
    return f"REC-{prefix}-{when:%Y%m%d}-{int(counter):04d}"
