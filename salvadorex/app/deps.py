from fastapi import HTTPException, Request

from .bridge import BridgeContext
from .bridge_client import BridgeStore
from .store import LocalStore, Store


def build_store(cfg) -> Store:
    """Pick the store implementation once, at startup."""
    if cfg.store_mode == "local":
        return LocalStore(cfg.db_path).initialize()
    if cfg.store_mode == "bridge":
        return BridgeStore(cfg.bridge_url, timeout_s=max(cfg.push_timeout_s, 10.0))
    raise ValueError(f"unknown POS_STORE_MODE: {cfg.store_mode}")


def get_bridge_context(request: Request) -> BridgeContext:
    ctx = getattr(request.app.state, "bridge", None)
    if ctx is None:
        raise HTTPException(status_code=503, detail="agent is starting")
    return ctx
