# quizai/storage.py
"""
Small key-value storage used by the image cache, the daily quota counter,
the character image map and the stored API key.

Values are JSON strings. Each store may enforce a byte capacity; a write
that would go over it raises ``StorageQuotaExceeded`` and keeps the previous
value untouched.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Protocol

from django.db import transaction
from django.db.models import Sum
from django.db.models.functions import Length

from .models import StoredValue

logger = logging.getLogger(__name__)

# 저장 키 (브라우저 localStorage 키와 동일하게 유지)
IMAGE_CACHE_KEY = "quiz_image_cache"
DAILY_QUOTA_KEY = "ai_goods_daily_quota"
CHARACTER_IMAGES_KEY = "character_images_cache"
API_KEY_STORAGE_KEY = "openai_api_key"


class StorageQuotaExceeded(Exception):
    """The write would push the namespace over its capacity."""

    def __init__(self, key: str, needed: int, capacity: int):
        super().__init__(f"storage_quota_exceeded: '{key}' needs {needed} bytes, capacity {capacity}")
        self.key = key
        self.needed = needed
        self.capacity = capacity


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


def _size(value: str) -> int:
    return len((value or "").encode("utf-8"))


class MemoryKeyValueStore:
    """Dict-backed store. Used for tests and for throwaway profiles."""

    def __init__(self, capacity_bytes: Optional[int] = None):
        self.capacity_bytes = capacity_bytes
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.capacity_bytes is not None:
            others = sum(_size(v) for k, v in self._data.items() if k != key)
            needed = others + _size(value)
            if needed > self.capacity_bytes:
                raise StorageQuotaExceeded(key, needed, self.capacity_bytes)
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._data)


class DatabaseKeyValueStore:
    """
    Store backed by ``StoredValue`` rows, one namespace per profile.

    Capacity is measured in characters of the stored JSON (``Length`` on the
    database side), which is close enough to browser storage accounting.
    """

    def __init__(self, namespace: str, capacity_bytes: Optional[int] = None):
        if not namespace:
            raise ValueError("namespace required")
        self.namespace = namespace
        self.capacity_bytes = capacity_bytes

    def _rows(self):
        return StoredValue.objects.filter(namespace=self.namespace)

    def get(self, key: str) -> Optional[str]:
        row = self._rows().filter(key=key).only("value").first()
        return row.value if row else None

    def set(self, key: str, value: str) -> None:
        with transaction.atomic():
            if self.capacity_bytes is not None:
                used = (
                    self._rows()
                    .exclude(key=key)
                    .aggregate(total=Sum(Length("value")))
                    .get("total")
                ) or 0
                needed = used + len(value or "")
                if needed > self.capacity_bytes:
                    raise StorageQuotaExceeded(key, needed, self.capacity_bytes)
            StoredValue.objects.update_or_create(
                namespace=self.namespace,
                key=key,
                defaults={"value": value},
            )

    def delete(self, key: str) -> None:
        self._rows().filter(key=key).delete()

    def keys(self) -> List[str]:
        return list(self._rows().order_by("key").values_list("key", flat=True))


def read_json(store: KeyValueStore, key: str, default: Any = None) -> Any:
    """Read and decode a JSON value; corrupt data reads as ``default``."""
    raw = store.get(key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning("[Storage] '%s' 값이 손상되어 무시합니다: %s", key, e)
        return default


def write_json(store: KeyValueStore, key: str, value: Any) -> None:
    store.set(key, json.dumps(value, ensure_ascii=False, separators=(",", ":")))
