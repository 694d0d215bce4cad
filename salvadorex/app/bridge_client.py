"""
Store implementation that forwards every call to a running agent's `/bridge`
endpoint. Lets a shell or a headless sync worker in another process use the
same storage contract as the in-process `LocalStore`.
"""

import json
import urllib.error
import urllib.request
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from .logs import json_log
from .models import MODELS, Category, Customer, Product, Sale
from .store import NotFound, Store, ValidationFailed


class BridgeError(RuntimeError):
    pass


def _http_send(url: str, payload: dict, timeout_s: float) -> Tuple[int, dict]:
    data = json.dumps(payload, default=str).encode("utf-8")
    req = urllib.request.Request(url, data=data, headers={"Content-Type": "application/json"}, method="POST")
    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            return int(resp.status), json.loads(resp.read().decode("utf-8") or "{}")
    except urllib.error.HTTPError as ex:
        try:
            body = json.loads(ex.read().decode("utf-8") or "{}")
        except ValueError:
            body = {}
        return int(ex.code), body


def _plain(data):
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, (str, bytes)):
        try:
            return json.loads(data)
        except ValueError as ex:
            raise ValidationFailed("invalid json") from ex
    return data


class BridgeStore(Store):
    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 10.0,
        send: Optional[Callable[[str, dict, float], Tuple[int, dict]]] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.timeout_s = float(timeout_s)
        self._send = send or _http_send

    def call(self, op: str, **args):
        url = f"{self.base_url}/bridge"
        try:
            status, body = self._send(url, {"op": op, "args": args}, self.timeout_s)
        except (urllib.error.URLError, OSError) as ex:
            json_log("warning", "bridge.unreachable", op=op, url=url, error=str(ex))
            raise BridgeError(f"bridge unreachable: {ex}") from ex
        body = body or {}
        if status == 422:
            raise ValidationFailed(str(body.get("detail") or "validation failed"), errors=body.get("errors"))
        if status == 404:
            raise NotFound(str(body.get("detail") or "not found"))
        if not 200 <= status < 300 or not body.get("ok"):
            raise BridgeError(f"bridge {op} failed: http {status} {body.get('detail') or ''}".strip())
        return body.get("result")

    def _one(self, model, data):
        return model.model_validate(data) if data else None

    def _many(self, model, rows) -> list:
        return [model.model_validate(r) for r in (rows or [])]

    def list_products(self) -> List[Product]:
        return self._many(Product, self.call("list_products"))

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._one(Product, self.call("get_product", id=product_id))

    def find_product(self, code: str) -> Optional[Product]:
        return self._one(Product, self.call("find_product", code=code))

    def save_product(self, data) -> Product:
        return Product.model_validate(self.call("save_product", product=_plain(data)))

    def delete_product(self, product_id: str) -> Product:
        return Product.model_validate(self.call("delete_product", id=product_id))

    def list_categories(self) -> List[Category]:
        return self._many(Category, self.call("list_categories"))

    def save_category(self, data) -> Category:
        return Category.model_validate(self.call("save_category", category=_plain(data)))

    def list_customers(self) -> List[Customer]:
        return self._many(Customer, self.call("list_customers"))

    def save_customer(self, data) -> Customer:
        return Customer.model_validate(self.call("save_customer", customer=_plain(data)))

    def list_sales(self, limit: int = 100) -> List[Sale]:
        return self._many(Sale, self.call("list_sales", limit=limit))

    def create_sale(self, data) -> Sale:
        return Sale.model_validate(self.call("create_sale", sale=_plain(data)))

    def get_setting(self, key: str) -> str:
        return str(self.call("get_setting", key=key) or "")

    def set_setting(self, key: str, value) -> None:
        self.call("set_setting", key=key, value="" if value is None else str(value))

    def get_pending_sync(self, kind: str) -> List[BaseModel]:
        model = MODELS.get((kind or "").strip().lower())
        if model is None:
            raise ValidationFailed(f"unknown entity kind: {kind}")
        return self._many(model, self.call("get_pending_sync", kind=kind))

    def mark_synced(self, kind: str, record_id: str, updated_at: Optional[str] = None) -> bool:
        return bool(self.call("mark_synced", kind=kind, id=record_id, updated_at=updated_at))

    def pending_counts(self) -> Dict[str, int]:
        return {k: int(v) for k, v in (self.call("pending_counts") or {}).items()}

    def sync_now(self) -> dict:
        return self.call("sync_now") or {}

    def sync_status(self) -> dict:
        return self.call("sync_status") or {}
