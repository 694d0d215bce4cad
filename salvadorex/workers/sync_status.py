import threading
from collections import deque
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..app.logs import json_log

MSG_ONLINE = "Online"
MSG_OFFLINE = "Offline (working locally)"
MSG_SYNCING = "Syncing..."
MSG_NOT_CONFIGURED = "Sync not configured"

Listener = Callable[[str], None]


class SyncStatus:
    """
    Process-wide connectivity/sync state rendered by the shells (status bar).

    Only the sync engine calls the `set_*`/`begin_sync`/`end_sync` mutators.
    Everything else reads `snapshot()` or subscribes to the string messages.
    """

    def __init__(self, history: int = 50):
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._recent = deque(maxlen=max(1, int(history)))
        self._online = False
        self._syncing = False
        self._last_sync_time: Optional[datetime] = None
        self._last_result: dict = {}
        self._last_message = ""

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def last_sync_time(self) -> Optional[datetime]:
        return self._last_sync_time

    @property
    def last_message(self) -> str:
        return self._last_message

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "is_online": self._online,
                "is_syncing": self._syncing,
                "last_sync_time": self._last_sync_time.isoformat() if self._last_sync_time else None,
                "last_result": dict(self._last_result),
                "message": self._last_message,
            }

    def recent(self, limit: int = 20) -> List[dict]:
        with self._lock:
            items = list(self._recent)
        return items[-max(0, int(limit)):] if limit else []

    def publish(self, message: str) -> None:
        with self._lock:
            self._last_message = message
            self._recent.append({"ts": datetime.now(timezone.utc).isoformat(), "message": message})
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(message)
            except Exception as ex:
                # A broken UI callback must not stop the sync loop.
                json_log("error", "sync.status.listener_error", error=str(ex), message=message)

    def set_online(self, online: bool) -> None:
        online = bool(online)
        with self._lock:
            changed = online != self._online
            self._online = online
        if online and changed:
            self.publish(MSG_ONLINE)
        elif not online:
            self.publish(MSG_OFFLINE)

    def begin_sync(self) -> None:
        with self._lock:
            self._syncing = True
        self.publish(MSG_SYNCING)

    def end_sync(self, pushed: int, failed: int, *, completed: bool = True) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            self._syncing = False
            if completed:
                self._last_sync_time = now
            self._last_result = {"pushed": pushed, "failed": failed}
        # Status bar shows the terminal's wall clock.
        hhmm = now.astimezone().strftime("%H:%M")
        if failed:
            self.publish(f"Sync finished with {failed} failures - {hhmm}")
        elif pushed:
            self.publish(f"Synced ({pushed} changes) - {hhmm}")
        else:
            self.publish(f"{MSG_ONLINE} - {hhmm}")
