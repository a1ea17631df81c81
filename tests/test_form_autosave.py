import asyncio
import os
import unittest
from unittest.mock import patch

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

from caseforms.services import form_autosave
from caseforms.services.form_autosave import (
    AutosaveScheduler,
    InMemoryDraftStore,
    RedisDraftStore,
    autosave_key,
    get_draft_store,
    reset_draft_store_for_tests,
)
from caseforms.services.form_uploads import PendingFile


class _FailingStore(InMemoryDraftStore):
    async def set(self, key, snapshot):
        raise ConnectionError("write failed")


class _FakeAsyncRedis:
    def __init__(self):
        self.values = {}
        self.ttl = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self.values[key] = value
        self.ttl[key] = ex

    async def delete(self, key):
        self.values.pop(key, None)


class AutosaveKeyTests(unittest.TestCase):
    def test_key_uses_slug_and_identity(self):
        self.assertEqual(autosave_key("client-intake", "u-1"), "form_autosave:client-intake:u-1")
        self.assertEqual(autosave_key("client-intake", None), "form_autosave:client-intake:anonymous")


class AutosaveSchedulerTests(unittest.IsolatedAsyncioTestCase):
    async def test_burst_coalesces_to_latest_snapshot(self):
        store = InMemoryDraftStore()
        scheduler = AutosaveScheduler(store, "k", delay=0.03)

        for value in ("a", "ab", "abc"):
            scheduler.schedule({"name": value})
            await asyncio.sleep(0.005)
        await asyncio.sleep(0.1)

        self.assertEqual(scheduler.writes, 1)
        self.assertEqual(await store.get("k"), {"name": "abc"})
        self.assertFalse(scheduler.has_pending)

    async def test_flush_writes_immediately_and_cancel_drops(self):
        store = InMemoryDraftStore()
        scheduler = AutosaveScheduler(store, "k", delay=10)

        scheduler.schedule({"name": "Ada"})
        await scheduler.flush()
        self.assertEqual(await store.get("k"), {"name": "Ada"})

        scheduler.schedule({"name": "Grace"})
        scheduler.cancel()
        await asyncio.sleep(0)
        self.assertEqual(await store.get("k"), {"name": "Ada"})

        await scheduler.clear()
        self.assertIsNone(await store.get("k"))

    async def test_pending_files_are_left_out(self):
        store = InMemoryDraftStore()
        scheduler = AutosaveScheduler(store, "k", delay=0)
        scheduler.schedule({"name": "Ada", "doc": PendingFile("a.pdf", "application/pdf", b"1")})
        await scheduler.flush()
        self.assertEqual(await store.get("k"), {"name": "Ada"})

    async def test_write_failure_is_logged_not_raised(self):
        scheduler = AutosaveScheduler(_FailingStore(), "k", delay=0)
        scheduler.schedule({"name": "Ada"})
        with self.assertLogs("caseforms.autosave", level="WARNING"):
            await scheduler.flush()
        self.assertEqual(scheduler.writes, 0)

    def test_schedule_without_loop_keeps_snapshot_pending(self):
        scheduler = AutosaveScheduler(InMemoryDraftStore(), "k", delay=0)
        scheduler.schedule({"name": "Ada"})
        self.assertTrue(scheduler.has_pending)


class RedisDraftStoreTests(unittest.IsolatedAsyncioTestCase):
    async def test_values_roundtrip_as_json_with_ttl(self):
        client = _FakeAsyncRedis()
        store = RedisDraftStore(client, ttl_seconds=60)

        await store.set("k", {"name": "Ada", "tags": ["a"]})
        self.assertEqual(client.ttl["k"], 60)
        self.assertEqual(await store.get("k"), {"name": "Ada", "tags": ["a"]})

        await store.delete("k")
        self.assertIsNone(await store.get("k"))


class DraftStoreSelectionTests(unittest.TestCase):
    def tearDown(self):
        reset_draft_store_for_tests()

    def test_unreachable_redis_falls_back_to_memory(self):
        reset_draft_store_for_tests()
        with patch.object(form_autosave.redis.Redis, "from_url", side_effect=ConnectionError("no redis")):
            with self.assertLogs("caseforms.autosave", level="WARNING"):
                store = get_draft_store()
        self.assertIsInstance(store, InMemoryDraftStore)
        self.assertIs(get_draft_store(), store)


if __name__ == "__main__":
    unittest.main()
