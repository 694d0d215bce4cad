import os
from typing import List


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _truthy(raw: str) -> bool:
    return str(raw or "").strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv("APP_ENV", "local")
        self.db_path = os.getenv("POS_DB_PATH", "salvadorex.sqlite3")
        # "local" owns the SQLite file; "bridge" forwards every call to a running agent.
        self.store_mode = (os.getenv("POS_STORE_MODE") or "local").strip().lower()
        self.bridge_url = (os.getenv("POS_BRIDGE_URL") or "http://127.0.0.1:7070").strip()
        self.sync_enabled = _truthy(os.getenv("SYNC_ENABLED", "1"))
        self.sync_interval_s = _env_float("SYNC_INTERVAL_SECONDS", 30.0)
        self.probe_url = (os.getenv("SYNC_PROBE_URL") or "https://www.google.com/generate_204").strip()
        self.probe_timeout_s = _env_float("SYNC_PROBE_TIMEOUT_SECONDS", 5.0)
        self.push_timeout_s = _env_float("SYNC_PUSH_TIMEOUT_SECONDS", 15.0)
        # Ops fallbacks, only consulted when the settings table has no value.
        self.supabase_url = (os.getenv("SUPABASE_URL") or "").strip()
        self.supabase_key = (os.getenv("SUPABASE_KEY") or "").strip()
        # Shells served from another origin (web build, dev server).
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"


settings = Settings()
