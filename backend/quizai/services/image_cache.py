# quizai/services/image_cache.py
"""
Image result cache.

Memoizes generated image URLs per logical key (``quiz_<id>`` or a character
id) so the same picture is never paid for twice. Entries expire after
``expiry_days``; when the store runs out of room the oldest entries are
evicted and the write is retried once.

The whole map lives under a single storage key as JSON::

    {"quiz_12": {"url": "...", "created_at": 1718000000000, "prompt": "..."}}
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Callable, Dict, Optional

from django.utils import timezone

from quizai.storage import IMAGE_CACHE_KEY, KeyValueStore, StorageQuotaExceeded, read_json, write_json
from quizai.utils.openai_keys import is_usable_key
from .errors import AIServiceError
from .fallback_images import match_fallback
from .openai_gateway import OpenAIGateway

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_DAYS = 30
DEFAULT_EVICT_COUNT = 10
DAY_MS = 24 * 60 * 60 * 1000

SOURCE_CACHE = "cache"
SOURCE_GENERATED = "generated"
SOURCE_FALLBACK = "fallback"

REASON_MISSING_CREDENTIAL = "missing_credential"
REASON_PROVIDER_ERROR = "provider_error"
REASON_MALFORMED_RESPONSE = "malformed_response"


def quiz_cache_key(quiz_id) -> str:
    return f"quiz_{quiz_id}"


def build_educational_prompt(prompt: str) -> str:
    return (
        f"한국 역사 교육용 이미지: {prompt}. "
        "초등학생이 이해하기 쉬운 삽화 스타일, 밝고 친근한 분위기, "
        "교육적이고 정확한 역사적 묘사, 그림 안에 글자 없음"
    )


@dataclass(frozen=True)
class CacheEntry:
    key: str
    url: str
    created_at: int  # ms since epoch
    prompt: str

    @property
    def created_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.created_at / 1000, tz=dt_timezone.utc)

    def as_dict(self):
        return {
            "key": self.key,
            "url": self.url,
            "created_at": self.created_datetime.isoformat(),
            "prompt": self.prompt,
        }


@dataclass(frozen=True)
class ImageResult:
    """Outcome of ``resolve``: always carries a usable URL."""
    url: str
    source: str
    fallback_reason: Optional[str] = None
    revised_prompt: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.source == SOURCE_FALLBACK

    def as_dict(self):
        return {
            "url": self.url,
            "source": self.source,
            "fallback_reason": self.fallback_reason,
            "revised_prompt": self.revised_prompt,
        }


class ImageCacheService:
    def __init__(
        self,
        store: KeyValueStore,
        gateway: Optional[OpenAIGateway] = None,
        *,
        expiry_days: int = DEFAULT_EXPIRY_DAYS,
        evict_count: int = DEFAULT_EVICT_COUNT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.kv = store
        self.gateway = gateway or OpenAIGateway()
        self.expiry_ms = expiry_days * DAY_MS
        self.evict_count = evict_count
        self._clock = clock or timezone.now
        self._entries: Dict[str, CacheEntry] = {}
        self._load()

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    def _now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)

    def _is_expired(self, entry: CacheEntry, now_ms: int) -> bool:
        return now_ms - entry.created_at >= self.expiry_ms

    def _load(self):
        raw = read_json(self.kv, IMAGE_CACHE_KEY, default={})
        if not isinstance(raw, dict):
            raw = {}
        for key, item in raw.items():
            try:
                self._entries[key] = CacheEntry(
                    key=key,
                    url=item["url"],
                    created_at=int(item["created_at"]),
                    prompt=item.get("prompt", ""),
                )
            except (KeyError, TypeError, ValueError):
                logger.warning("[ImageCache] 잘못된 캐시 항목 무시: %s", key)
        if raw:
            self.purge_expired()

    def _serialize(self) -> dict:
        return {
            k: {"url": e.url, "created_at": e.created_at, "prompt": e.prompt}
            for k, e in self._entries.items()
        }

    def _evict_oldest(self, count: int) -> int:
        oldest = sorted(self._entries.values(), key=lambda e: e.created_at)[:count]
        for entry in oldest:
            del self._entries[entry.key]
        return len(oldest)

    def _save(self) -> bool:
        """Persist the map. Best-effort: never raises."""
        try:
            write_json(self.kv, IMAGE_CACHE_KEY, self._serialize())
            return True
        except StorageQuotaExceeded as e:
            evicted = self._evict_oldest(self.evict_count)
            logger.warning("[ImageCache] 저장 공간 부족 (%s), 오래된 항목 %s개 제거 후 재시도", e, evicted)
        except Exception as e:
            logger.error("[ImageCache] 캐시 저장 실패: %s", e)
            return False

        try:
            write_json(self.kv, IMAGE_CACHE_KEY, self._serialize())
            return True
        except Exception as e:
            logger.error("[ImageCache] 재시도 후에도 캐시 저장 실패: %s", e)
            return False

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def lookup(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry, self._now_ms()):
            del self._entries[key]
            self._save()
            logger.info("[ImageCache] 만료된 항목 제거: %s", key)
            return None
        return entry

    def store(self, key: str, url: str, prompt: str) -> None:
        self._entries[key] = CacheEntry(key=key, url=url, created_at=self._now_ms(), prompt=prompt or "")
        self._save()

    def purge_expired(self) -> int:
        now_ms = self._now_ms()
        expired = [k for k, e in self._entries.items() if self._is_expired(e, now_ms)]
        for key in expired:
            del self._entries[key]
        if expired:
            self._save()
            logger.info("[ImageCache] 만료된 항목 %s개 제거", len(expired))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self.kv.delete(IMAGE_CACHE_KEY)
        logger.info("[ImageCache] 캐시 초기화")

    def stats(self) -> dict:
        if not self._entries:
            return {"total": 0, "oldest": None, "newest": None}
        ordered = sorted(self._entries.values(), key=lambda e: e.created_at)
        return {
            "total": len(ordered),
            "oldest": ordered[0].created_datetime,
            "newest": ordered[-1].created_datetime,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def resolve(self, key: str, prompt: str, credential: Optional[str]) -> ImageResult:
        cached = self.lookup(key)
        if cached:
            logger.info("[ImageCache] 캐시 적중: %s", key)
            return ImageResult(url=cached.url, source=SOURCE_CACHE)

        if not is_usable_key(credential):
            logger.info("[ImageCache] API 키 없음, 대체 이미지 사용: %s", key)
            return ImageResult(
                url=match_fallback(prompt),
                source=SOURCE_FALLBACK,
                fallback_reason=REASON_MISSING_CREDENTIAL,
            )

        try:
            image = self.gateway.generate_image(build_educational_prompt(prompt), credential)
        except AIServiceError as e:
            reason = REASON_MALFORMED_RESPONSE if "malformed_response" in e.detail else REASON_PROVIDER_ERROR
            logger.warning("[ImageCache] 이미지 생성 실패 (%s), 대체 이미지 사용: %s", e.code, key)
            return ImageResult(url=match_fallback(prompt), source=SOURCE_FALLBACK, fallback_reason=reason)
        except Exception as e:
            logger.error("[ImageCache] 예상치 못한 오류, 대체 이미지 사용: %s", e)
            return ImageResult(
                url=match_fallback(prompt),
                source=SOURCE_FALLBACK,
                fallback_reason=REASON_PROVIDER_ERROR,
            )

        self.store(key, image.url, prompt)
        return ImageResult(url=image.url, source=SOURCE_GENERATED, revised_prompt=image.revised_prompt)

    def generate(self, key: str, prompt: str, credential: Optional[str]) -> str:
        """Cached URL, freshly generated URL, or a deterministic fallback. Never raises."""
        return self.resolve(key, prompt, credential).url
