import uuid
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .validation import Money, Name, OptionalText, PaymentMethod, Percent, SaleStatus


def new_id() -> str:
    return str(uuid.uuid4())


class _Record(BaseModel):
    # Shells send extra UI-only keys; they are not persisted.
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_id, min_length=1, max_length=64)


class Product(_Record):
    name: Name
    description: OptionalText = None
    sku: OptionalText = None
    barcode: OptionalText = None
    price: Money = Decimal("0")
    cost: Money = Decimal("0")
    stock: int = 0
    min_stock: int = Field(default=0, ge=0)
    category_id: OptionalText = None
    image_url: OptionalText = None
    active: bool = True
    available_pos: bool = True
    needs_sync: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Category(_Record):
    name: Name
    description: OptionalText = None
    parent_id: OptionalText = None
    sort_order: int = 0
    active: bool = True
    needs_sync: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Customer(_Record):
    name: Name
    email: OptionalText = None
    phone: OptionalText = None
    address: OptionalText = None
    tax_id: OptionalText = None
    credit_limit: Money = Decimal("0")
    current_credit: Money = Decimal("0")
    loyalty_points: int = Field(default=0, ge=0)
    notes: OptionalText = None
    active: bool = True
    needs_sync: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class SaleItemIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product_id: str = Field(min_length=1)
    product_name: Name
    quantity: int = Field(default=1, ge=1)
    unit_price: Money = Decimal("0")
    discount: Percent = Decimal("0")


class SaleIn(BaseModel):
    """
    What a shell submits at checkout. Money totals are computed by the store
    from the items and the `tax_rate` setting; client-side totals are ignored.

    Item `discount` is a percent of the line. Sale `discount` is the total
    amount off (line discounts included), as the shells compute it.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_id, min_length=1, max_length=64)
    customer_id: OptionalText = None
    customer_name: OptionalText = None
    items: List[SaleItemIn] = Field(min_length=1)
    discount: Money = Decimal("0")
    payment_method: PaymentMethod = "cash"
    amount_paid: Optional[Money] = None
    notes: OptionalText = None


class SaleItem(BaseModel):
    id: str = Field(default_factory=new_id)
    sale_id: str
    product_id: str
    product_name: str
    quantity: int
    unit_price: Money
    discount: Percent = Decimal("0")
    total: Money


class Sale(BaseModel):
    id: str
    receipt_number: str
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    items: List[SaleItem] = Field(default_factory=list)
    subtotal: Money
    discount: Money = Decimal("0")
    tax: Money
    total: Money
    payment_method: PaymentMethod = "cash"
    amount_paid: Money
    change_amount: Money = Decimal("0")
    status: SaleStatus = "completed"
    notes: Optional[str] = None
    needs_sync: bool = True
    created_at: Optional[str] = None


MODELS = {
    "products": Product,
    "categories": Category,
    "customers": Customer,
    "sales": Sale,
}


def to_remote_payload(record: BaseModel) -> dict:
    """
    JSON body for the remote upsert. `needs_sync` is local bookkeeping and sale
    items travel separately to their own table.
    """
    return record.model_dump(mode="json", exclude={"needs_sync", "items"})
