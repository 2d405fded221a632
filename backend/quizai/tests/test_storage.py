import os
from unittest import mock

from django.test import SimpleTestCase, TestCase

from quizai.models import StoredValue
from quizai.storage import (
    API_KEY_STORAGE_KEY,
    DatabaseKeyValueStore,
    MemoryKeyValueStore,
    StorageQuotaExceeded,
    read_json,
    write_json,
)
from quizai.utils.openai_keys import (
    delete_api_key,
    is_usable_key,
    mask_key,
    resolve_api_key,
    save_api_key,
)


class MemoryKeyValueStoreTests(SimpleTestCase):

    def test_set_get_delete(self):
        store = MemoryKeyValueStore()
        store.set("a", "1")
        self.assertEqual(store.get("a"), "1")
        store.delete("a")
        self.assertIsNone(store.get("a"))
        # 없는 키 삭제는 조용히 무시
        store.delete("a")

    def test_capacity_counts_other_keys_and_new_value(self):
        store = MemoryKeyValueStore(capacity_bytes=10)
        store.set("a", "12345")
        store.set("a", "1234567890")  # 자기 자신의 이전 값은 제외
        with self.assertRaises(StorageQuotaExceeded) as ctx:
            store.set("b", "x")
        self.assertEqual(ctx.exception.key, "b")
        self.assertIsNone(store.get("b"))

    def test_capacity_is_measured_in_utf8_bytes(self):
        store = MemoryKeyValueStore(capacity_bytes=6)
        store.set("k", "한글")  # 6 bytes
        with self.assertRaises(StorageQuotaExceeded):
            store.set("k", "한글a")

    def test_read_json_returns_default_on_corrupt_value(self):
        store = MemoryKeyValueStore()
        store.set("broken", "{not json")
        with self.assertLogs("quizai.storage", level="WARNING"):
            self.assertEqual(read_json(store, "broken", default={}), {})

    def test_write_json_keeps_korean_readable(self):
        store = MemoryKeyValueStore()
        write_json(store, "k", {"prompt": "세종대왕"})
        self.assertIn("세종대왕", store.get("k"))
        self.assertEqual(read_json(store, "k"), {"prompt": "세종대왕"})


class DatabaseKeyValueStoreTests(TestCase):

    def test_namespace_required(self):
        with self.assertRaises(ValueError):
            DatabaseKeyValueStore("")

    def test_values_are_isolated_per_namespace(self):
        one = DatabaseKeyValueStore("client:one")
        two = DatabaseKeyValueStore("client:two")
        one.set("k", "1")
        two.set("k", "2")

        self.assertEqual(one.get("k"), "1")
        self.assertEqual(two.get("k"), "2")
        self.assertEqual(StoredValue.objects.count(), 2)

        one.delete("k")
        self.assertIsNone(one.get("k"))
        self.assertEqual(two.get("k"), "2")

    def test_set_overwrites_existing_row(self):
        store = DatabaseKeyValueStore("client:one")
        store.set("k", "old")
        store.set("k", "new")
        self.assertEqual(store.get("k"), "new")
        self.assertEqual(store.keys(), ["k"])

    def test_capacity_exceeded_leaves_value_untouched(self):
        store = DatabaseKeyValueStore("client:one", capacity_bytes=20)
        store.set("a", "x" * 10)
        store.set("a", "x" * 20)
        with self.assertRaises(StorageQuotaExceeded):
            store.set("b", "y")
        self.assertIsNone(store.get("b"))
        self.assertEqual(store.get("a"), "x" * 20)


@mock.patch.dict(os.environ, {"OPENAI_API_KEY": ""})
class OpenAIKeyTests(SimpleTestCase):

    def test_placeholder_and_blank_keys_are_unusable(self):
        self.assertFalse(is_usable_key(None))
        self.assertFalse(is_usable_key("   "))
        self.assertFalse(is_usable_key("YOUR_OPENAI_API_KEY"))
        self.assertTrue(is_usable_key("sk-test-123456"))

    def test_mask_key_never_reveals_the_whole_key(self):
        masked = mask_key("sk-test-1234567890")
        self.assertNotEqual(masked, "sk-test-1234567890")
        self.assertTrue(masked.endswith("7890"))

    def test_saved_key_is_used_when_env_is_empty(self):
        store = MemoryKeyValueStore()
        self.assertIsNone(resolve_api_key(store))
        save_api_key(store, "  sk-user-abcdef  ")
        self.assertEqual(resolve_api_key(store), "sk-user-abcdef")
        self.assertIn(API_KEY_STORAGE_KEY, store.keys())

        delete_api_key(store)
        self.assertIsNone(resolve_api_key(store))

    def test_env_key_wins_over_saved_key(self):
        store = MemoryKeyValueStore()
        save_api_key(store, "sk-user-abcdef")
        with mock.patch.dict(os.environ, {"OPENAI_API_KEY": "sk-env-999999"}):
            self.assertEqual(resolve_api_key(store), "sk-env-999999")

    def test_save_rejects_placeholder(self):
        with self.assertRaises(ValueError):
            save_api_key(MemoryKeyValueStore(), "YOUR_OPENAI_API_KEY_HERE")
