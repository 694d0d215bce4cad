#!/usr/bin/env python3
import argparse
import os

import uvicorn

from .app.config import Settings
from .app.main import create_app
from .app.store import LocalStore


def main():
    cfg = Settings()
    parser = argparse.ArgumentParser(description="SalvadoreX POS agent: local store, bridge and background sync.")
    parser.add_argument("--init-db", action="store_true", help="Initialize local SQLite schema and exit")
    parser.add_argument(
        "--db",
        default=cfg.db_path,
        help="SQLite DB path (default: $POS_DB_PATH or ./salvadorex.sqlite3).",
    )
    parser.add_argument(
        "--host",
        default=os.environ.get("POS_HOST", "127.0.0.1"),
        help="HTTP host to bind (default: 127.0.0.1). Use 0.0.0.0 only if you explicitly want LAN exposure.",
    )
    parser.add_argument("--port", type=int, default=int(os.environ.get("POS_PORT", "7070")), help="HTTP port (default: 7070)")
    parser.add_argument("--interval", type=float, default=cfg.sync_interval_s, help="Seconds between sync cycles")
    parser.add_argument("--no-sync", action="store_true", help="Serve the bridge without the background sync loop")
    args = parser.parse_args()

    cfg.db_path = os.path.abspath(args.db)
    cfg.store_mode = "local"
    cfg.sync_interval_s = args.interval
    if args.no_sync:
        cfg.sync_enabled = False

    if args.init_db:
        LocalStore(cfg.db_path).initialize()
        print("ok")
        return

    public_host = "localhost" if args.host in {"127.0.0.1", "localhost"} else args.host
    print(f"POS Agent running on http://{public_host}:{args.port}")
    uvicorn.run(create_app(cfg), host=args.host, port=args.port, log_level="warning")


if __name__ == "__main__":
    main()
