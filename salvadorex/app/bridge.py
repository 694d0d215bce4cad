"""
Bridge between the presentation layer and the store/sync engine.

A shell never calls store methods by reflection: it sends one of a fixed set
of plain-data messages `{"op": ..., "args": {...}}` and gets plain data back.
The same table serves the HTTP router and any in-process caller.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Literal, Optional

from pydantic import BaseModel, Field

from .store import Store, ValidationFailed, describe

BridgeOp = Literal[
    "list_products",
    "get_product",
    "find_product",
    "save_product",
    "delete_product",
    "list_categories",
    "save_category",
    "list_customers",
    "save_customer",
    "list_sales",
    "create_sale",
    "get_setting",
    "set_setting",
    "get_pending_sync",
    "mark_synced",
    "pending_counts",
    "sync_now",
    "sync_status",
    "is_offline",
]


class BridgeRequest(BaseModel):
    op: BridgeOp
    args: Dict[str, Any] = Field(default_factory=dict)


@dataclass
class BridgeContext:
    store: Store
    # None when this process does not own a sync loop (e.g. sync disabled).
    engine: Optional[Any] = None


def _arg(args: dict, name: str, *, required: bool = True, default=None):
    if name in args and args[name] is not None:
        return args[name]
    if required:
        raise ValidationFailed(f"{name} is required")
    return default


def _int_arg(args: dict, name: str, default: int) -> int:
    raw = _arg(args, name, required=False, default=default)
    if isinstance(raw, bool):
        raise ValidationFailed(f"{name} must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError) as ex:
        raise ValidationFailed(f"{name} must be an integer") from ex


def _sync_now(ctx: BridgeContext, _args: dict):
    if ctx.engine is None:
        return {"outcome": "unavailable"}
    return ctx.engine.force_sync_now().as_dict()


def _sync_status(ctx: BridgeContext, args: dict):
    pending = ctx.store.pending_counts()
    if ctx.engine is None:
        return {"enabled": False, "is_online": False, "is_syncing": False, "pending": pending}
    limit = _int_arg(args, "recent", 10)
    return {
        "enabled": True,
        **ctx.engine.status.snapshot(),
        "state": ctx.engine.state,
        "pending": pending,
        "recent": ctx.engine.status.recent(limit),
    }


def _is_offline(ctx: BridgeContext, _args: dict):
    if ctx.engine is None:
        return True
    return not ctx.engine.status.is_online


OPERATIONS: Dict[str, Callable[[BridgeContext, dict], Any]] = {
    "list_products": lambda ctx, a: ctx.store.list_products(),
    "get_product": lambda ctx, a: ctx.store.get_product(_arg(a, "id")),
    "find_product": lambda ctx, a: ctx.store.find_product(_arg(a, "code")),
    "save_product": lambda ctx, a: ctx.store.save_product(_arg(a, "product")),
    "delete_product": lambda ctx, a: ctx.store.delete_product(_arg(a, "id")),
    "list_categories": lambda ctx, a: ctx.store.list_categories(),
    "save_category": lambda ctx, a: ctx.store.save_category(_arg(a, "category")),
    "list_customers": lambda ctx, a: ctx.store.list_customers(),
    "save_customer": lambda ctx, a: ctx.store.save_customer(_arg(a, "customer")),
    "list_sales": lambda ctx, a: ctx.store.list_sales(limit=_int_arg(a, "limit", 100)),
    "create_sale": lambda ctx, a: ctx.store.create_sale(_arg(a, "sale")),
    "get_setting": lambda ctx, a: ctx.store.get_setting(_arg(a, "key")),
    "set_setting": lambda ctx, a: ctx.store.set_setting(_arg(a, "key"), _arg(a, "value", required=False, default="")),
    "get_pending_sync": lambda ctx, a: ctx.store.get_pending_sync(_arg(a, "kind")),
    "mark_synced": lambda ctx, a: ctx.store.mark_synced(
        _arg(a, "kind"), _arg(a, "id"), _arg(a, "updated_at", required=False)
    ),
    "pending_counts": lambda ctx, a: ctx.store.pending_counts(),
    "sync_now": _sync_now,
    "sync_status": _sync_status,
    "is_offline": _is_offline,
}


def dispatch(ctx: BridgeContext, op: str, args: Optional[dict] = None):
    handler = OPERATIONS.get(op)
    if handler is None:
        raise ValidationFailed(f"unknown bridge op: {op}")
    return describe(handler(ctx, dict(args or {})))
