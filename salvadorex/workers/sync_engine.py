"""
Local store -> remote sync loop.

Goal: keep checkout fast and fully offline by treating the local store as the
source of truth, and asynchronously replicating dirty rows to the remote REST
endpoint whenever the internet is reachable.

Delivery is at-least-once: a row is acknowledged (`mark_synced`) only after the
remote answered 2xx for it, and the remote upserts by id, so a row that is
pushed twice (lost ack, crash mid-cycle) never duplicates.
"""

import sys
import threading
import time
import traceback
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional, Sequence, Tuple

from ..app.logs import json_log
from ..app.models import to_remote_payload
from ..app.validation import SYNC_KINDS
from .connectivity import DEFAULT_PROBE_URL, check_internet
from .remote import http_post_json, rest_url, upsert_headers
from .sync_status import MSG_NOT_CONFIGURED, SyncStatus

STATE_IDLE = "idle"
STATE_PROBING = "probing"
STATE_SYNCING = "syncing"

SALE_ITEMS_TABLE = "sale_items"


@dataclass
class CycleResult:
    # synced | offline | not_configured | busy | cancelled | error
    outcome: str
    pushed: int = 0
    failed: int = 0
    by_kind: dict = field(default_factory=dict)
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


class SyncEngine:
    def __init__(
        self,
        store,
        status: Optional[SyncStatus] = None,
        *,
        interval_s: float = 30.0,
        probe: Optional[Callable[[], bool]] = None,
        post: Optional[Callable[..., Tuple[int, str]]] = None,
        probe_url: str = DEFAULT_PROBE_URL,
        probe_timeout_s: float = 5.0,
        push_timeout_s: float = 15.0,
        fallback_url: str = "",
        fallback_key: str = "",
        kinds: Sequence[str] = SYNC_KINDS,
    ):
        self.store = store
        self.status = status or SyncStatus()
        self.interval_s = max(0.01, float(interval_s))
        self.push_timeout_s = float(push_timeout_s)
        self.kinds = tuple(kinds)
        self._probe = probe or (lambda: check_internet(probe_url, timeout_s=probe_timeout_s))
        self._post = post or http_post_json
        self._fallback_url = (fallback_url or "").strip()
        self._fallback_key = (fallback_key or "").strip()
        self._busy = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state = STATE_IDLE

    @classmethod
    def from_settings(cls, store, settings, status: Optional[SyncStatus] = None) -> "SyncEngine":
        return cls(
            store,
            status,
            interval_s=settings.sync_interval_s,
            probe_url=settings.probe_url,
            probe_timeout_s=settings.probe_timeout_s,
            push_timeout_s=settings.push_timeout_s,
            fallback_url=settings.supabase_url,
            fallback_key=settings.supabase_key,
        )

    @property
    def state(self) -> str:
        return self._state

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    # -- lifecycle -------------------------------------------------------

    def start(self) -> None:
        thread = self._thread
        if thread is not None and thread.is_alive():
            if self._stop.is_set():
                # The previous loop is still blocked in a call; clearing the
                # event now would revive it next to the new one.
                raise RuntimeError("sync loop is still stopping")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="salvadorex-sync", daemon=True)
        self._thread.start()
        json_log("info", "sync.engine.started", interval_s=self.interval_s)

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Signal cancellation and wait for the loop to exit. Returns False when
        the thread is still blocked in a network call after `timeout`; the
        thread stays tracked and exits once that call returns, and `start()`
        refuses to run until it has.
        """
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(self.push_timeout_s + 1 if timeout is None else timeout)
        stopped = not (thread and thread.is_alive())
        if stopped:
            self._thread = None
        json_log("info", "sync.engine.stopped", clean=stopped)
        return stopped

    def _loop(self):
        while not self._stop.is_set():
            try:
                self.run_cycle(trigger="timer")
            except Exception as ex:
                # Never crash the loop; the next tick retries.
                json_log("error", "sync.cycle.unhandled", error=str(ex))
                traceback.print_exc(file=sys.stderr)
            self._stop.wait(self.interval_s)

    # -- cycle -----------------------------------------------------------

    def force_sync_now(self) -> CycleResult:
        return self.run_cycle(trigger="manual")

    def run_cycle(self, trigger: str = "timer") -> CycleResult:
        if not self._busy.acquire(blocking=False):
            json_log("info", "sync.cycle.skipped", trigger=trigger, reason="busy")
            return CycleResult("busy")
        started = time.time()
        try:
            result = self._cycle()
        except Exception as ex:
            json_log("error", "sync.cycle.error", trigger=trigger, error=str(ex))
            result = CycleResult("error", error=str(ex))
        finally:
            self._state = STATE_IDLE
            self._busy.release()
        json_log(
            "info",
            "sync.cycle.done",
            trigger=trigger,
            outcome=result.outcome,
            pushed=result.pushed,
            failed=result.failed,
            duration_ms=int((time.time() - started) * 1000),
        )
        return result

    def _remote_target(self) -> Optional[Tuple[str, str]]:
        url = (self.store.get_setting("supabase_url") or "").strip() or self._fallback_url
        key = (self.store.get_setting("supabase_key") or "").strip() or self._fallback_key
        if not url or not key:
            return None
        return url.rstrip("/"), key

    def _cycle(self) -> CycleResult:
        self._state = STATE_PROBING
        online = bool(self._probe())
        self.status.set_online(online)
        if not online:
            return CycleResult("offline")

        target = self._remote_target()
        if target is None:
            self.status.publish(MSG_NOT_CONFIGURED)
            return CycleResult("not_configured")
        base_url, api_key = target
        headers = upsert_headers(api_key)

        self._state = STATE_SYNCING
        self.status.begin_sync()
        result = CycleResult("synced")
        try:
            for kind in self.kinds:
                if self._stop.is_set():
                    result.outcome = "cancelled"
                    break
                try:
                    pending = list(self.store.get_pending_sync(kind))
                except Exception as ex:
                    json_log("error", "sync.pending.error", kind=kind, error=str(ex))
                    result.by_kind[kind] = {"error": str(ex)}
                    continue
                counts = {"pending": len(pending), "pushed": 0, "failed": 0}
                result.by_kind[kind] = counts
                for record in pending:
                    if self._stop.is_set():
                        result.outcome = "cancelled"
                        break
                    if self._push_record(base_url, headers, kind, record):
                        counts["pushed"] += 1
                        result.pushed += 1
                    else:
                        counts["failed"] += 1
                        result.failed += 1
                if result.outcome == "cancelled":
                    break
        finally:
            self.status.end_sync(result.pushed, result.failed, completed=result.outcome == "synced")
        return result

    def _accepted(self, table: str, record_id, status: int, body: str) -> bool:
        if 200 <= int(status) < 300:
            return True
        json_log(
            "warning",
            "sync.push.rejected",
            table=table,
            record_id=record_id,
            status=status,
            body=(body or "")[:1000],
        )
        return False

    def _push_record(self, base_url: str, headers: dict, kind: str, record) -> bool:
        """
        Push one row; acknowledge it locally only on 2xx. Failures are logged
        and leave the row dirty for the next cycle.
        """
        record_id = getattr(record, "id", None)
        try:
            status, body = self._post(rest_url(base_url, kind), to_remote_payload(record), headers, self.push_timeout_s)
            if not self._accepted(kind, record_id, status, body):
                return False
            items = getattr(record, "items", None) if kind == "sales" else None
            if items:
                payload = [it.model_dump(mode="json") for it in items]
                status, body = self._post(rest_url(base_url, SALE_ITEMS_TABLE), payload, headers, self.push_timeout_s)
                if not self._accepted(SALE_ITEMS_TABLE, record_id, status, body):
                    return False
            self.store.mark_synced(kind, record_id, getattr(record, "updated_at", None))
            return True
        except Exception as ex:
            json_log("warning", "sync.push.error", table=kind, record_id=record_id, error=str(ex))
            return False
