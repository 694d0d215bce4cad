from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BeforeValidator, StringConstraints

CENT = Decimal("0.01")


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _strip_or_none(v):
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _to_decimal(v):
    if v is None or v == "":
        return Decimal("0")
    if isinstance(v, Decimal):
        return v
    if isinstance(v, bool):
        raise ValueError("invalid amount")
    try:
        # str() first so floats like 19.99 do not carry binary noise.
        return Decimal(str(v).strip())
    except (InvalidOperation, ValueError) as ex:
        raise ValueError("invalid amount") from ex


def _nonnegative(v: Decimal) -> Decimal:
    if v < 0:
        raise ValueError("amount must be >= 0")
    return v


def quantize_money(v: Decimal) -> Decimal:
    return Decimal(v).quantize(CENT, rounding=ROUND_HALF_UP)


# Rounded to cents at the model boundary; all arithmetic happens on Decimal.
Money = Annotated[Decimal, BeforeValidator(_to_decimal), AfterValidator(_nonnegative), AfterValidator(quantize_money)]


def _percent_range(v: Decimal) -> Decimal:
    if v < 0 or v > 100:
        raise ValueError("percent must be between 0 and 100")
    return v


# Line discounts arrive from the shells as a percent of the line, 0..100.
Percent = Annotated[Decimal, BeforeValidator(_to_decimal), AfterValidator(_percent_range), AfterValidator(quantize_money)]

Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
OptionalText = Annotated[Optional[str], BeforeValidator(_strip_or_none)]

# Shells send free-form labels; keep a tight, stable identifier set.
PaymentMethod = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=1, max_length=32, pattern=r"^[a-z0-9][a-z0-9_-]*$"),
]

SaleStatus = Annotated[Literal["completed"], BeforeValidator(_to_lower_str)]

EntityKind = Literal["products", "categories", "customers", "sales"]
SYNC_KINDS: tuple[str, ...] = ("products", "categories", "customers", "sales")
