import threading
import urllib.error

import pytest

from salvadorex.app.models import to_remote_payload
from salvadorex.workers.sync_engine import STATE_IDLE, SyncEngine
from salvadorex.workers.sync_status import MSG_NOT_CONFIGURED, MSG_OFFLINE, MSG_SYNCING, SyncStatus


class _FakeRemote:
    """Records every POST; answers per table (or per record id) as configured."""

    def __init__(self, status=201, by_table=None, by_id=None, on_call=None):
        self.status = status
        self.by_table = dict(by_table or {})
        self.by_id = dict(by_id or {})
        self.on_call = on_call
        self.calls = []

    def __call__(self, url, payload, headers, timeout_s):
        self.calls.append({"url": url, "payload": payload, "headers": dict(headers), "timeout_s": timeout_s})
        if self.on_call:
            self.on_call(url, payload)
        record_id = payload.get("id") if isinstance(payload, dict) else None
        answer = self.by_id.get(record_id)
        if answer is None:
            table = url.rsplit("/", 1)[-1]
            answer = self.by_table.get(table, self.status)
        if isinstance(answer, Exception):
            raise answer
        return answer, ""

    def posts_to(self, table):
        return [c for c in self.calls if c["url"].endswith(f"/rest/v1/{table}")]


def _engine(store, remote, probe=lambda: True, **kw):
    return SyncEngine(store, SyncStatus(), probe=probe, post=remote, **kw)


def _messages(engine):
    seen = []
    engine.status.subscribe(seen.append)
    return seen


def test_product_is_pushed_and_acknowledged_on_200(configured_store):
    store = configured_store
    p1 = store.save_product({"name": "Cola 600ml", "price": "18.50", "sku": "COLA600"})
    remote = _FakeRemote(status=200)
    engine = _engine(store, remote)

    result = engine.run_cycle()

    assert result.outcome == "synced"
    assert store.get_product(p1.id).needs_sync is False
    [post] = remote.posts_to("products")
    assert post["url"] == "https://example.supabase.co/rest/v1/products"
    assert post["payload"] == to_remote_payload(p1)
    assert "needs_sync" not in post["payload"]
    assert post["headers"] == {
        "apikey": "anon-key",
        "Authorization": "Bearer anon-key",
        "Prefer": "resolution=merge-duplicates",
    }
    assert store.pending_counts() == {"products": 0, "categories": 0, "customers": 0, "sales": 0}
    assert engine.status.last_sync_time is not None
    assert engine.state == STATE_IDLE


def test_sale_push_failure_keeps_sale_dirty_and_does_not_raise(configured_store):
    store = configured_store
    s1 = store.create_sale(
        {
            "items": [
                {"product_id": "p1", "product_name": "Cola", "quantity": 2, "unit_price": "10"},
                {"product_id": "p2", "product_name": "Chips", "quantity": 1, "unit_price": "5.50"},
            ],
            "discount": "1.50",
        }
    )
    assert s1.total == s1.subtotal - s1.discount + s1.tax
    remote = _FakeRemote(status=500)
    engine = _engine(store, remote, kinds=("sales",))

    result = engine.run_cycle()

    assert result.outcome == "synced"
    assert result.failed == 1
    assert [s.id for s in store.get_pending_sync("sales")] == [s1.id]
    # Items are only sent once the header was accepted.
    assert remote.posts_to("sale_items") == []


def test_unconfigured_sync_makes_no_calls_and_returns_to_idle(store):
    remote = _FakeRemote()
    engine = _engine(store, remote)
    seen = _messages(engine)

    result = engine.run_cycle()

    assert result.outcome == "not_configured"
    assert remote.calls == []
    assert engine.state == STATE_IDLE
    assert engine.status.is_syncing is False
    assert seen[-1] == MSG_NOT_CONFIGURED


def test_offline_probe_skips_pushes_and_never_reports_syncing(configured_store):
    store = configured_store
    store.save_product({"name": "Water"})
    remote = _FakeRemote()
    engine = _engine(store, remote, probe=lambda: False)
    syncing_seen = []
    engine.status.subscribe(lambda m: syncing_seen.append(engine.status.is_syncing))
    seen = _messages(engine)

    result = engine.run_cycle()

    assert result.outcome == "offline"
    assert engine.status.is_online is False
    assert remote.calls == []
    assert MSG_SYNCING not in seen
    assert seen == [MSG_OFFLINE]
    assert not any(syncing_seen)
    assert store.pending_counts()["products"] == 1


def test_coming_back_online_publishes_transition_and_summary(configured_store):
    store = configured_store
    store.save_customer({"name": "Ana"})
    online = {"value": False}
    engine = _engine(store, _FakeRemote(), probe=lambda: online["value"], kinds=("customers",))
    seen = _messages(engine)

    engine.run_cycle()
    online["value"] = True
    engine.run_cycle()

    assert seen[0] == MSG_OFFLINE
    assert seen[1:3] == ["Online", MSG_SYNCING]
    assert seen[3].startswith("Synced (1 changes) - ")
    assert engine.status.snapshot()["last_result"] == {"pushed": 1, "failed": 0}


def test_one_failing_record_does_not_block_the_batch(configured_store):
    store = configured_store
    bad = store.save_product({"name": "Rejected"})
    flaky = store.save_product({"name": "Timeout"})
    good = store.save_product({"name": "Accepted"})
    remote = _FakeRemote(
        status=201,
        by_id={bad.id: 409, flaky.id: urllib.error.URLError("timed out")},
    )
    engine = _engine(store, remote, kinds=("products",))
    seen = _messages(engine)

    result = engine.run_cycle()

    assert result.outcome == "synced"
    assert (result.pushed, result.failed) == (1, 2)
    assert result.by_kind["products"] == {"pending": 3, "pushed": 1, "failed": 2}
    assert {p.id for p in store.get_pending_sync("products")} == {bad.id, flaky.id}
    assert store.get_product(good.id).needs_sync is False
    assert seen[-1].startswith("Sync finished with 2 failures - ")


def test_failed_records_are_retried_next_cycle(configured_store):
    store = configured_store
    p = store.save_product({"name": "Retry me"})
    remote = _FakeRemote(by_table={"products": 503})
    engine = _engine(store, remote, kinds=("products",))

    engine.run_cycle()
    assert store.get_product(p.id).needs_sync is True

    remote.by_table["products"] = 201
    engine.run_cycle()
    assert store.get_product(p.id).needs_sync is False
    assert len(remote.posts_to("products")) == 2


def test_sale_is_pushed_with_its_items_and_acknowledged(configured_store):
    store = configured_store
    sale = store.create_sale(
        {"items": [
            {"product_id": "p1", "product_name": "Cola", "quantity": 2, "unit_price": "10"},
            {"product_id": "p2", "product_name": "Chips", "quantity": 1, "unit_price": "5.50"},
        ]}
    )
    remote = _FakeRemote(status=201)
    engine = _engine(store, remote, kinds=("sales",))

    engine.run_cycle()

    [header] = remote.posts_to("sales")
    assert header["payload"]["id"] == sale.id
    assert header["payload"]["receipt_number"] == sale.receipt_number
    assert "items" not in header["payload"]
    [items] = remote.posts_to("sale_items")
    assert [it["id"] for it in items["payload"]] == [it.id for it in sale.items]
    assert all(it["sale_id"] == sale.id for it in items["payload"])
    assert store.get_pending_sync("sales") == []


def test_sale_stays_dirty_when_items_are_rejected(configured_store):
    store = configured_store
    sale = store.create_sale({"items": [{"product_id": "p1", "product_name": "Cola", "unit_price": "10"}]})
    remote = _FakeRemote(status=201, by_table={"sale_items": 400})
    engine = _engine(store, remote, kinds=("sales",))

    result = engine.run_cycle()

    assert result.failed == 1
    assert [s.id for s in store.get_pending_sync("sales")] == [sale.id]


def test_lost_ack_repushes_the_same_record_as_an_upsert(configured_store):
    store = configured_store
    p = store.save_product({"name": "Idempotent"})

    class _LosesFirstAck:
        def __init__(self, inner):
            self.inner = inner
            self.lost = False

        def __getattr__(self, name):
            return getattr(self.inner, name)

        def mark_synced(self, kind, record_id, updated_at=None):
            if not self.lost:
                self.lost = True
                raise RuntimeError("database is locked")
            return self.inner.mark_synced(kind, record_id, updated_at)

    remote = _FakeRemote(status=201)
    engine = _engine(_LosesFirstAck(store), remote, kinds=("products",))

    first = engine.run_cycle()
    second = engine.run_cycle()

    assert first.failed == 1 and second.pushed == 1
    posts = remote.posts_to("products")
    assert len(posts) == 2
    assert posts[0]["payload"] == posts[1]["payload"]
    assert all(c["headers"]["Prefer"] == "resolution=merge-duplicates" for c in posts)
    assert store.get_product(p.id).needs_sync is False


def test_edit_during_push_stays_dirty_for_next_cycle(configured_store):
    store = configured_store
    p = store.save_product({"name": "Edited mid-push", "price": "1.00"})

    def _edit_while_in_flight(url, payload):
        if url.endswith("/products"):
            store.save_product({**p.model_dump(), "price": "2.00"})

    remote = _FakeRemote(status=201, on_call=_edit_while_in_flight)
    engine = _engine(store, remote, kinds=("products",))

    engine.run_cycle()

    pending = store.get_pending_sync("products")
    assert [(r.id, str(r.price)) for r in pending] == [(p.id, "2.00")]


def test_only_one_cycle_runs_at_a_time(configured_store):
    store = configured_store
    store.save_product({"name": "Once"})
    entered = threading.Event()
    release = threading.Event()

    def _slow_probe():
        entered.set()
        release.wait(5)
        return True

    remote = _FakeRemote()
    engine = _engine(store, remote, probe=_slow_probe, kinds=("products",))
    worker = threading.Thread(target=engine.run_cycle)
    worker.start()
    try:
        assert entered.wait(5)
        assert engine.force_sync_now().outcome == "busy"
    finally:
        release.set()
        worker.join(5)

    assert len(remote.posts_to("products")) == 1
    assert engine.force_sync_now().outcome == "synced"


def test_pending_read_failure_skips_that_kind_only(configured_store):
    store = configured_store
    store.save_customer({"name": "Still synced"})

    class _BrokenProducts:
        def __init__(self, inner):
            self.inner = inner

        def __getattr__(self, name):
            return getattr(self.inner, name)

        def get_pending_sync(self, kind):
            if kind == "products":
                raise RuntimeError("disk I/O error")
            return self.inner.get_pending_sync(kind)

    remote = _FakeRemote()
    engine = _engine(_BrokenProducts(store), remote, kinds=("products", "customers"))

    result = engine.run_cycle()

    assert result.outcome == "synced"
    assert "error" in result.by_kind["products"]
    assert result.by_kind["customers"]["pushed"] == 1


def test_settings_read_failure_is_logged_not_raised(capsys):
    class _NoSettings:
        def get_setting(self, key):
            raise RuntimeError("bridge unreachable")

    engine = _engine(_NoSettings(), _FakeRemote())
    result = engine.run_cycle()

    assert result.outcome == "error"
    assert engine.state == STATE_IDLE
    assert "sync.cycle.error" in capsys.readouterr().err


def test_env_fallback_configures_remote(store):
    remote = _FakeRemote()
    engine = _engine(
        store,
        remote,
        kinds=("categories",),
        fallback_url="https://fallback.example.co",
        fallback_key="k",
    )
    result = engine.run_cycle()
    assert result.pushed == 4
    assert all(c["url"] == "https://fallback.example.co/rest/v1/categories" for c in remote.calls)


def test_stop_during_batch_cancels_remaining_pushes(configured_store):
    store = configured_store
    for i in range(3):
        store.save_product({"name": f"P{i}"})
    holder = {}

    def _stop_after_first(url, payload):
        holder["engine"].stop(timeout=0)

    remote = _FakeRemote(on_call=_stop_after_first)
    engine = _engine(store, remote, kinds=("products",))
    holder["engine"] = engine

    result = engine.run_cycle()

    assert result.outcome == "cancelled"
    assert result.pushed == 1
    assert len(remote.calls) == 1
    assert store.pending_counts()["products"] == 2
    assert engine.status.last_sync_time is None


def test_background_loop_ticks_and_stops(configured_store):
    ticks = threading.Semaphore(0)

    def _probe():
        ticks.release()
        return False

    engine = _engine(configured_store, _FakeRemote(), probe=_probe, interval_s=0.01)
    engine.start()
    try:
        assert ticks.acquire(timeout=5)
        assert ticks.acquire(timeout=5)
        assert engine.running
    finally:
        assert engine.stop(timeout=5) is True
    assert engine.running is False


def test_restart_while_old_loop_is_blocked_never_runs_two_loops(configured_store):
    entered = threading.Event()
    release = threading.Event()

    def _probe():
        entered.set()
        release.wait(5)
        return False

    before = set(threading.enumerate())
    engine = _engine(configured_store, _FakeRemote(), probe=_probe, interval_s=0.01)
    engine.start()
    try:
        assert entered.wait(5)
        assert engine.stop(timeout=0.1) is False
        assert engine.running is True
        with pytest.raises(RuntimeError):
            engine.start()
        loops = [t for t in threading.enumerate() if t not in before and t.name == "salvadorex-sync"]
        assert len(loops) == 1
    finally:
        release.set()
    assert engine.stop(timeout=5) is True
    assert engine.running is False

    entered.clear()
    engine.start()
    try:
        assert entered.wait(5)
        loops = [t for t in threading.enumerate() if t not in before and t.name == "salvadorex-sync" and t.is_alive()]
        assert len(loops) == 1
    finally:
        assert engine.stop(timeout=5) is True
