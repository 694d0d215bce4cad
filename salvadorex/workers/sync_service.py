#!/usr/bin/env python3
"""
Long-running headless sync worker.

Runs the same sync cycle the agent runs in the background, against either the
local SQLite file (`--store local`) or a running agent's bridge
(`--store bridge`). Useful on devices where the shell owns the UI process and
sync should live in its own service.
"""

import argparse
import json
import signal
import sys
import threading

from ..app.config import Settings
from ..app.deps import build_store
from ..app.logs import json_log
from .sync_engine import SyncEngine


def main(argv=None) -> int:
    cfg = Settings()
    parser = argparse.ArgumentParser()
    parser.add_argument("--store", choices=["local", "bridge"], default=cfg.store_mode)
    parser.add_argument("--db", default=cfg.db_path, help="SQLite DB path for --store local")
    parser.add_argument("--bridge-url", default=cfg.bridge_url, help="Agent URL for --store bridge")
    parser.add_argument("--interval", type=float, default=cfg.sync_interval_s)
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    args = parser.parse_args(argv)

    cfg.store_mode = args.store
    cfg.db_path = args.db
    cfg.bridge_url = args.bridge_url
    cfg.sync_interval_s = args.interval

    store = build_store(cfg)
    engine = SyncEngine.from_settings(store, cfg)
    engine.status.subscribe(lambda message: json_log("info", "sync.status", message=message))

    if args.once:
        result = engine.run_cycle(trigger="manual")
        print(json.dumps(result.as_dict(), default=str))
        return 0 if result.outcome in {"synced", "offline", "not_configured"} else 1

    done = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: done.set())
    engine.start()
    try:
        while not done.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        engine.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
