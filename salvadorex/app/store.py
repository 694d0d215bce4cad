"""
Storage interface consumed by the shells and the sync engine, plus the local
SQLite implementation.

The local store is the source of truth for the UI: reads never touch the
network, and every save marks the row dirty (`needs_sync = 1`) until the sync
engine acknowledges that exact row with `mark_synced`.
"""

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ValidationError

from .db import db_connect, init_db
from .models import Category, Customer, Product, Sale, SaleIn, SaleItem
from .sales_math import compute_sale_totals, format_receipt_number, line_gross, line_total, parse_tax_rate
from .validation import SYNC_KINDS


class ValidationFailed(ValueError):
    """A write was rejected before reaching the database."""

    def __init__(self, message: str, errors: Optional[List[dict]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class NotFound(LookupError):
    pass


PRODUCT_COLUMNS = (
    "id", "name", "description", "sku", "barcode", "price", "cost", "stock", "min_stock",
    "category_id", "image_url", "active", "available_pos", "needs_sync", "created_at", "updated_at",
)
CATEGORY_COLUMNS = (
    "id", "name", "description", "parent_id", "sort_order", "active", "needs_sync", "created_at", "updated_at",
)
CUSTOMER_COLUMNS = (
    "id", "name", "email", "phone", "address", "tax_id", "credit_limit", "current_credit",
    "loyalty_points", "notes", "active", "needs_sync", "created_at", "updated_at",
)
SALE_COLUMNS = (
    "id", "receipt_number", "customer_id", "customer_name", "subtotal", "discount", "tax", "total",
    "payment_method", "amount_paid", "change_amount", "status", "notes", "needs_sync", "created_at",
)
SALE_ITEM_COLUMNS = (
    "id", "sale_id", "position", "product_id", "product_name", "quantity", "unit_price", "discount", "total",
)

DEFAULT_CATEGORIES = (
    {"id": "cat_1", "name": "Beverages", "description": "Soft drinks, juices, water", "sort_order": 1},
    {"id": "cat_2", "name": "Food", "description": "Prepared food", "sort_order": 2},
    {"id": "cat_3", "name": "Snacks", "description": "Snacks and sweets", "sort_order": 3},
    {"id": "cat_4", "name": "General", "description": "General merchandise", "sort_order": 4},
)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _db_value(v):
    if isinstance(v, bool):
        return 1 if v else 0
    if isinstance(v, Decimal):
        return str(v)
    return v


def _check_kind(kind: str) -> str:
    k = (kind or "").strip().lower()
    if k not in SYNC_KINDS:
        raise ValidationFailed(f"unknown entity kind: {kind}")
    return k


def validate_record(model, data):
    """
    Accepts a model instance, a dict, or a JSON object string (what the web
    shells send) and returns a validated `model`.
    """
    if isinstance(data, BaseModel):
        data = data.model_dump()
    elif isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as ex:
            raise ValidationFailed("invalid json") from ex
    if not isinstance(data, dict):
        raise ValidationFailed("record must be an object")
    try:
        return model.model_validate(data)
    except ValidationError as ex:
        errors = ex.errors(include_url=False, include_context=False, include_input=False)
        raise ValidationFailed(f"invalid {model.__name__.lower()}", errors=errors) from ex


class Store(ABC):
    """What the presentation layer and the sync engine may ask of a store."""

    @abstractmethod
    def list_products(self) -> Sequence[Product]: ...

    @abstractmethod
    def get_product(self, product_id: str) -> Optional[Product]: ...

    @abstractmethod
    def find_product(self, code: str) -> Optional[Product]: ...

    @abstractmethod
    def save_product(self, data) -> Product: ...

    @abstractmethod
    def delete_product(self, product_id: str) -> Product: ...

    @abstractmethod
    def list_categories(self) -> Sequence[Category]: ...

    @abstractmethod
    def save_category(self, data) -> Category: ...

    @abstractmethod
    def list_customers(self) -> Sequence[Customer]: ...

    @abstractmethod
    def save_customer(self, data) -> Customer: ...

    @abstractmethod
    def list_sales(self, limit: int = 100) -> Sequence[Sale]: ...

    @abstractmethod
    def create_sale(self, data) -> Sale: ...

    @abstractmethod
    def get_setting(self, key: str) -> str: ...

    @abstractmethod
    def set_setting(self, key: str, value) -> None: ...

    @abstractmethod
    def get_pending_sync(self, kind: str) -> Sequence[BaseModel]: ...

    @abstractmethod
    def mark_synced(self, kind: str, record_id: str, updated_at: Optional[str] = None) -> bool: ...

    @abstractmethod
    def pending_counts(self) -> Dict[str, int]: ...


class LocalStore(Store):
    def __init__(self, db_path: str):
        self.db_path = db_path

    def initialize(self) -> "LocalStore":
        init_db(self.db_path)
        self._seed_defaults()
        return self

    def _seed_defaults(self):
        with db_connect(self.db_path) as conn:
            defaults = {
                "business_name": "My Business",
                "business_phone": "",
                "tax_rate": "16",
                "receipt_counter": "1",
                "device_id": uuid.uuid4().hex[:6].upper(),
            }
            for key, value in defaults.items():
                conn.execute(
                    "INSERT INTO settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO NOTHING",
                    (key, value),
                )
            count = conn.execute("SELECT COUNT(1) AS n FROM categories").fetchone()["n"]
        if not count:
            for c in DEFAULT_CATEGORIES:
                self.save_category(c)

    # -- generic helpers -------------------------------------------------

    def _upsert(self, conn, table: str, columns: Sequence[str], record: BaseModel):
        values = record.model_dump()
        placeholders = ", ".join(["?"] * len(columns))
        updates = ",\n  ".join(f"{c}=excluded.{c}" for c in columns if c != "id")
        conn.execute(
            f"""
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({placeholders})
            ON CONFLICT(id) DO UPDATE SET
              {updates}
            """,
            tuple(_db_value(values.get(c)) for c in columns),
        )

    def _save(self, table: str, columns: Sequence[str], model, data):
        record = validate_record(model, data)
        now = _utcnow()
        with db_connect(self.db_path) as conn:
            row = conn.execute(f"SELECT created_at FROM {table} WHERE id = ?", (record.id,)).fetchone()
            created_at = (row["created_at"] if row else None) or record.created_at or now
            record = record.model_copy(update={"needs_sync": True, "updated_at": now, "created_at": created_at})
            self._upsert(conn, table, columns, record)
        return record

    def _select(self, model, sql: str, params: tuple = ()):
        with db_connect(self.db_path) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [model.model_validate(dict(r)) for r in rows]

    # -- products --------------------------------------------------------

    def list_products(self) -> List[Product]:
        return self._select(Product, "SELECT * FROM products WHERE active = 1 ORDER BY name COLLATE NOCASE")

    def get_product(self, product_id: str) -> Optional[Product]:
        rows = self._select(Product, "SELECT * FROM products WHERE id = ?", (product_id,))
        return rows[0] if rows else None

    def find_product(self, code: str) -> Optional[Product]:
        code = (code or "").strip()
        if not code:
            return None
        rows = self._select(
            Product,
            "SELECT * FROM products WHERE active = 1 AND (barcode = ? OR sku = ?) ORDER BY barcode = ? DESC LIMIT 1",
            (code, code, code),
        )
        return rows[0] if rows else None

    def save_product(self, data) -> Product:
        return self._save("products", PRODUCT_COLUMNS, Product, data)

    def delete_product(self, product_id: str) -> Product:
        product = self.get_product(product_id)
        if product is None:
            raise NotFound(f"product not found: {product_id}")
        # Soft delete keeps the row syncable; the remote sees active=false.
        return self.save_product(product.model_copy(update={"active": False}))

    # -- categories / customers -----------------------------------------

    def list_categories(self) -> List[Category]:
        return self._select(
            Category,
            "SELECT * FROM categories WHERE active = 1 ORDER BY sort_order, name COLLATE NOCASE",
        )

    def save_category(self, data) -> Category:
        return self._save("categories", CATEGORY_COLUMNS, Category, data)

    def list_customers(self) -> List[Customer]:
        return self._select(Customer, "SELECT * FROM customers WHERE active = 1 ORDER BY name COLLATE NOCASE")

    def save_customer(self, data) -> Customer:
        return self._save("customers", CUSTOMER_COLUMNS, Customer, data)

    # -- sales -----------------------------------------------------------

    def _load_sales(self, conn, sale_rows) -> List[Sale]:
        if not sale_rows:
            return []
        ids = [r["id"] for r in sale_rows]
        item_rows = conn.execute(
            "SELECT * FROM sale_items WHERE sale_id IN (%s) ORDER BY sale_id, position" % ",".join(["?"] * len(ids)),
            tuple(ids),
        ).fetchall()
        by_sale: Dict[str, List[dict]] = {}
        for r in item_rows:
            by_sale.setdefault(r["sale_id"], []).append(dict(r))
        out = []
        for r in sale_rows:
            data = dict(r)
            data["items"] = by_sale.get(r["id"], [])
            out.append(Sale.model_validate(data))
        return out

    def list_sales(self, limit: int = 100) -> List[Sale]:
        limit_i = max(1, min(int(limit or 100), 1000))
        with db_connect(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM sales ORDER BY created_at DESC LIMIT ?", (limit_i,)).fetchall()
            return self._load_sales(conn, rows)

    def _next_receipt_counter(self, conn) -> int:
        # The UPDATE takes the write lock, so two checkouts on the same file
        # can never read the same counter value.
        conn.execute("INSERT INTO settings (key, value) VALUES ('receipt_counter', '1') ON CONFLICT(key) DO NOTHING")
        conn.execute(
            """
            UPDATE settings
            SET value = CAST(
              (CASE WHEN CAST(value AS INTEGER) > 0 THEN CAST(value AS INTEGER) ELSE 1 END) + 1 AS TEXT
            )
            WHERE key = 'receipt_counter'
            """
        )
        row = conn.execute("SELECT value FROM settings WHERE key = 'receipt_counter'").fetchone()
        return int(row["value"]) - 1

    def create_sale(self, data) -> Sale:
        sale_in = validate_record(SaleIn, data)
        tax_rate = parse_tax_rate(self.get_setting("tax_rate"))
        try:
            items = [
                SaleItem(
                    sale_id=sale_in.id,
                    product_id=it.product_id,
                    product_name=it.product_name,
                    quantity=it.quantity,
                    unit_price=it.unit_price,
                    discount=it.discount,
                    total=line_total(it.quantity, it.unit_price, it.discount),
                )
                for it in sale_in.items
            ]
            totals = compute_sale_totals(
                [line_gross(it.quantity, it.unit_price) for it in items],
                [it.total for it in items],
                sale_in.discount,
                tax_rate,
            )
        except ValueError as ex:
            raise ValidationFailed(str(ex)) from ex

        amount_paid = sale_in.amount_paid if sale_in.amount_paid is not None else totals["total"]
        if amount_paid < totals["total"]:
            raise ValidationFailed("amount_paid is less than total")

        with db_connect(self.db_path) as conn:
            existing = conn.execute("SELECT * FROM sales WHERE id = ?", (sale_in.id,)).fetchall()
            if existing:
                # Sales are immutable: a retried checkout returns the original.
                return self._load_sales(conn, existing)[0]
            counter = self._next_receipt_counter(conn)
            row = conn.execute("SELECT value FROM settings WHERE key = 'device_id'").fetchone()
            sale = Sale(
                id=sale_in.id,
                receipt_number=format_receipt_number(row["value"] if row else "", datetime.now(), counter),
                customer_id=sale_in.customer_id,
                customer_name=sale_in.customer_name,
                items=items,
                subtotal=totals["subtotal"],
                discount=totals["discount"],
                tax=totals["tax"],
                total=totals["total"],
                payment_method=sale_in.payment_method,
                amount_paid=amount_paid,
                change_amount=amount_paid - totals["total"],
                notes=sale_in.notes,
                needs_sync=True,
                created_at=_utcnow(),
            )
            values = sale.model_dump()
            conn.execute(
                f"INSERT INTO sales ({', '.join(SALE_COLUMNS)}) VALUES ({', '.join(['?'] * len(SALE_COLUMNS))})",
                tuple(_db_value(values.get(c)) for c in SALE_COLUMNS),
            )
            for pos, item in enumerate(items):
                iv = {**item.model_dump(), "position": pos}
                conn.execute(
                    f"INSERT INTO sale_items ({', '.join(SALE_ITEM_COLUMNS)}) "
                    f"VALUES ({', '.join(['?'] * len(SALE_ITEM_COLUMNS))})",
                    tuple(_db_value(iv.get(c)) for c in SALE_ITEM_COLUMNS),
                )
        return sale

    # -- settings --------------------------------------------------------

    def get_setting(self, key: str) -> str:
        with db_connect(self.db_path) as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", ((key or "").strip(),)).fetchone()
        return (row["value"] if row else "") or ""

    def set_setting(self, key: str, value) -> None:
        key = (key or "").strip()
        if not key:
            raise ValidationFailed("setting key is required")
        with db_connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
                """,
                (key, "" if value is None else str(value)),
            )

    # -- sync bookkeeping -----------------------------------------------

    def get_pending_sync(self, kind: str) -> List[BaseModel]:
        kind = _check_kind(kind)
        if kind == "sales":
            with db_connect(self.db_path) as conn:
                rows = conn.execute("SELECT * FROM sales WHERE needs_sync = 1 ORDER BY created_at").fetchall()
                return self._load_sales(conn, rows)
        model = {"products": Product, "categories": Category, "customers": Customer}[kind]
        return self._select(model, f"SELECT * FROM {kind} WHERE needs_sync = 1 ORDER BY updated_at")

    def mark_synced(self, kind: str, record_id: str, updated_at: Optional[str] = None) -> bool:
        """
        Clear the dirty flag for one row. Unknown or already-clean ids are a
        no-op. With `updated_at`, a row edited after the pushed snapshot stays
        dirty.
        """
        kind = _check_kind(kind)
        sql = f"UPDATE {kind} SET needs_sync = 0 WHERE id = ? AND needs_sync = 1"
        params: tuple = (record_id,)
        if updated_at and kind != "sales":
            sql += " AND updated_at = ?"
            params = (record_id, updated_at)
        with db_connect(self.db_path) as conn:
            cur = conn.execute(sql, params)
            return cur.rowcount > 0

    def pending_counts(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        with db_connect(self.db_path) as conn:
            for kind in SYNC_KINDS:
                row = conn.execute(f"SELECT COUNT(1) AS n FROM {kind} WHERE needs_sync = 1").fetchone()
                out[kind] = int(row["n"] if row else 0)
        return out


def describe(record: Any) -> Any:
    """Plain-data form of a store result, as it crosses the bridge."""
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json")
    if isinstance(record, (list, tuple)):
        return [describe(r) for r in record]
    return record
