import time
import uuid
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..workers.sync_engine import SyncEngine
from .bridge import BridgeContext
from .config import Settings, settings
from .deps import build_store
from .logs import json_log
from .routers.bridge import router as bridge_router
from .store import NotFound, Store, ValidationFailed


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def create_app(
    cfg: Optional[Settings] = None,
    *,
    store: Optional[Store] = None,
    engine: Optional[SyncEngine] = None,
) -> FastAPI:
    """
    Agent that owns the store (and, when enabled, the sync loop) and exposes
    the bridge to the shells. Store and engine are built at startup unless
    injected.
    """
    cfg = cfg or settings
    app = FastAPI(title="SalvadoreX POS Agent", version=cfg.api_version)
    app.state.bridge = None

    @app.exception_handler(ValidationFailed)
    def _validation_failed(_req: Request, exc: ValidationFailed):
        errors = exc.errors or [{"msg": str(exc) or "invalid value"}]
        return JSONResponse(status_code=422, content={"detail": "validation failed", "errors": errors})

    @app.exception_handler(NotFound)
    def _not_found(_req: Request, exc: NotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc) or "not found"})

    @app.exception_handler(RequestValidationError)
    def _request_validation_error(_req: Request, exc: Exception):
        content = {"detail": "validation failed"}
        if cfg.env in {"local", "dev"} and hasattr(exc, "errors"):
            content["errors"] = exc.errors()
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(Exception)
    def _unhandled_exception(req: Request, exc: Exception):
        rid = _current_request_id(req)
        json_log(
            "error",
            "http.request.unhandled",
            request_id=rid,
            method=req.method,
            path=req.url.path,
            error=str(exc),
        )
        content = {"detail": "internal error", "request_id": rid}
        if cfg.env in {"local", "dev"}:
            content["error"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    # Correlation id + basic structured request logging.
    @app.middleware("http")
    async def _request_logging(request: Request, call_next):
        rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
        request.state.request_id = rid
        started = time.time()
        path = request.url.path
        response = await call_next(request)
        response.headers["X-Request-Id"] = rid
        if path != "/health":
            json_log(
                "info",
                "http.request",
                request_id=rid,
                method=request.method,
                path=path,
                status_code=response.status_code,
                duration_ms=int((time.time() - started) * 1000),
            )
        return response

    # Web shells served from a dev server hit the agent cross-origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.include_router(bridge_router)

    @app.on_event("startup")
    def _startup():
        s = store or build_store(cfg)
        e = engine
        if e is None and cfg.sync_enabled:
            e = SyncEngine.from_settings(s, cfg)
        if e is not None:
            e.status.subscribe(lambda message: json_log("info", "sync.status", message=message))
            if not e.running:
                e.start()
        app.state.bridge = BridgeContext(store=s, engine=e)
        json_log("info", "startup.ready", env=cfg.env, store_mode=cfg.store_mode, sync=e is not None)

    @app.on_event("shutdown")
    def _shutdown():
        ctx = app.state.bridge
        if ctx is not None and ctx.engine is not None:
            ctx.engine.stop()

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


app = create_app()
