"""Tests for persistence and the small concurrency helpers.

WHY: The store is the only shared state between pipeline threads, the
cache must never serve a payload older than the last save, and the join
barrier decides which thread starts alignment. A bug in any of them shows
up as lost fields, stale editor data, or alignment running twice.

HOW: Tests are organized by component:
  - TestDigestStore: create/load/update, atomic saves, listeners
  - TestDigestCache: LRU behaviour and invalidation
  - TestJoinBarrier: exactly one winner, also under contention
  - TestNotifiers: webhook payload and error propagation
"""

from __future__ import annotations

import json
import os
import threading

import httpx
import pytest

from video_digest.core.ir import DigestRecord, DigestState, PreAlignLine
from video_digest.errors import DigestNotFound, PersistenceFailure
from video_digest.pipeline.barrier import JoinBarrier
from video_digest.pipeline.cache import DigestCache
from video_digest.pipeline.notify import LogNotifier, WebhookNotifier, ready_payload
from video_digest.pipeline.store import DigestStore


def _record(store: DigestStore, **kwargs) -> DigestRecord:
    base = dict(id=store.new_id(), state=DigestState.CREATED, video_id="vid", video_name="vid")
    base.update(kwargs)
    return DigestRecord(**base)


@pytest.fixture
def store(tmp_path) -> DigestStore:
    return DigestStore(tmp_path / "digests")


# ---------------------------------------------------------------------------
# TestDigestStore
# ---------------------------------------------------------------------------


class TestDigestStore:

    def test_create_and_load(self, store):
        record = store.create(_record(store, title="T"))
        loaded = store.load(record.id)
        assert loaded.title == "T"
        assert loaded.state == DigestState.CREATED

    def test_new_ids_are_hex_and_unique(self, store):
        ids = {store.new_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(i) == 32 for i in ids)

    def test_duplicate_create_rejected(self, store):
        record = store.create(_record(store))
        with pytest.raises(PersistenceFailure):
            store.create(record)

    def test_missing_record(self, store):
        with pytest.raises(DigestNotFound):
            store.load(store.new_id())
        assert store.get(store.new_id()) is None

    def test_path_like_ids_are_not_found(self, store):
        with pytest.raises(DigestNotFound):
            store.load("../../etc/passwd")

    def test_update_sets_fields(self, store):
        record = store.create(_record(store))
        updated = store.update(record.id, state=DigestState.CLEANING, audio_name="vid")
        assert updated.state == DigestState.CLEANING
        assert store.load(record.id).audio_name == "vid"

    def test_update_bumps_updated_at(self, store):
        record = store.create(_record(store))
        before = store.load(record.id).updated_at
        assert store.update(record.id, title="x").updated_at >= before

    def test_update_with_mutator_sees_current_state(self, store):
        record = store.create(_record(store, state=DigestState.FAILED))
        seen = []
        store.update(record.id, mutate=lambda r: seen.append(r.state))
        assert seen == [DigestState.FAILED]

    def test_update_rejects_unknown_field(self, store):
        record = store.create(_record(store))
        with pytest.raises(ValueError):
            store.update(record.id, not_a_field=1)

    def test_concurrent_updates_keep_both_fields(self, store):
        record = store.create(_record(store))
        start = threading.Barrier(2)

        def clean():
            start.wait()
            for _ in range(20):
                store.update(record.id, pre_align_trans=[PreAlignLine("0", "hi")])

        def audio():
            start.wait()
            for _ in range(20):
                store.update(record.id, audio_name="vid")

        threads = [threading.Thread(target=clean), threading.Thread(target=audio)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        loaded = store.load(record.id)
        assert loaded.audio_name == "vid"
        assert loaded.pre_align_trans == [PreAlignLine("0", "hi")]

    def test_failed_write_leaves_record_unchanged(self, store, monkeypatch):
        record = store.create(_record(store, title="before"))

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", broken_replace)
        with pytest.raises(PersistenceFailure):
            store.update(record.id, title="after")
        monkeypatch.undo()

        assert store.load(record.id).title == "before"
        leftovers = [p.name for p in store._dir.iterdir() if p.name.startswith(".tmp-")]
        assert leftovers == []

    def test_corrupt_file(self, store):
        record = store.create(_record(store))
        (store._dir / "{}.json".format(record.id)).write_text("{not json", encoding="utf-8")
        with pytest.raises(PersistenceFailure):
            store.load(record.id)

    def test_listener_called_after_write(self, store):
        seen = []
        store.add_listener(seen.append)
        record = store.create(_record(store))
        store.update(record.id, title="x")
        assert seen == [record.id, record.id]

    def test_listener_errors_do_not_fail_the_write(self, store):
        def boom(digest_id):
            raise RuntimeError("listener broke")

        store.add_listener(boom)
        record = store.create(_record(store))
        assert store.load(record.id).id == record.id

    def test_delete_and_list(self, store):
        a = store.create(_record(store))
        b = store.create(_record(store))
        assert store.list_ids() == sorted([a.id, b.id])
        assert store.delete(a.id) is True
        assert store.delete(a.id) is False
        assert store.list_ids() == [b.id]

    def test_file_is_plain_json(self, store):
        record = store.create(_record(store))
        data = json.loads((store._dir / "{}.json".format(record.id)).read_text(encoding="utf-8"))
        assert data["videoId"] == "vid"
        assert data["state"] == "created"


# ---------------------------------------------------------------------------
# TestDigestCache
# ---------------------------------------------------------------------------


class TestDigestCache:

    def test_put_and_get(self):
        cache = DigestCache(4)
        cache.put("a", "payload")
        assert cache.get("a") == "payload"
        assert "a" in cache

    def test_evicts_least_recently_used(self):
        cache = DigestCache(2)
        cache.put("a", "1")
        cache.put("b", "2")
        cache.get("a")
        cache.put("c", "3")
        assert cache.get("b") is None
        assert cache.get("a") == "1"
        assert len(cache) == 2

    def test_invalidate(self):
        cache = DigestCache(2)
        cache.put("a", "1")
        cache.invalidate("a")
        assert cache.get("a") is None
        cache.invalidate("missing")

    def test_stale_put_refused(self):
        cache = DigestCache(2)
        generation = cache.generation
        cache.invalidate("a")
        assert cache.put("a", "old", generation=generation) is False
        assert cache.get("a") is None

    def test_disabled(self):
        cache = DigestCache(0)
        assert cache.put("a", "1") is False
        assert cache.get("a") is None

    def test_store_writes_invalidate(self, store):
        cache = DigestCache(4)
        store.add_listener(cache.invalidate)
        record = store.create(_record(store))
        cache.put(record.id, "payload")
        store.update(record.id, title="new")
        assert cache.get(record.id) is None


# ---------------------------------------------------------------------------
# TestJoinBarrier
# ---------------------------------------------------------------------------


class TestJoinBarrier:

    def test_second_arrival_wins(self):
        barrier = JoinBarrier(2)
        assert barrier.arrive() is False
        assert barrier.arrive() is True
        assert barrier.count == 2

    def test_late_arrivals_lose(self):
        barrier = JoinBarrier(2)
        barrier.arrive()
        barrier.arrive()
        assert barrier.arrive() is False

    def test_invalid_parties(self):
        with pytest.raises(ValueError):
            JoinBarrier(0)

    def test_exactly_one_winner_under_contention(self):
        for _ in range(200):
            barrier = JoinBarrier(2)
            start = threading.Barrier(2)
            results = []
            lock = threading.Lock()

            def arrive():
                start.wait()
                won = barrier.arrive()
                with lock:
                    results.append(won)

            threads = [threading.Thread(target=arrive) for _ in range(2)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
            assert sorted(results) == [False, True]


# ---------------------------------------------------------------------------
# TestNotifiers
# ---------------------------------------------------------------------------


class TestNotifiers:

    def _ready(self):
        return DigestRecord(
            id="d1", state=DigestState.READY, video_id="vid", video_name="vid", title="Talk"
        )

    def test_webhook_posts_payload(self):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(200)

        notifier = WebhookNotifier("http://hooks.local/ready", transport=httpx.MockTransport(handler))
        notifier.notify(self._ready())
        assert received == [ready_payload(self._ready())]
        assert received[0]["event"] == "digest.ready"
        assert received[0]["wordCount"] == 0

    def test_webhook_error_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        notifier = WebhookNotifier("http://hooks.local/ready", transport=transport)
        with pytest.raises(httpx.HTTPStatusError):
            notifier.notify(self._ready())

    def test_log_notifier(self, caplog):
        with caplog.at_level("INFO"):
            LogNotifier().notify(self._ready())
        assert "ready for editing" in caplog.text
