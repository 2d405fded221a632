# quizai/services/container.py
"""
Process-wide service wiring.

Built once in ``QuizAIConfig.ready()`` and reachable from views as
``apps.get_app_config("quizai").services``. Anything that must live for the
whole process (gateway, session trackers, open chats) is held here;
everything scoped to a browser profile is built per request from its store.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from django.conf import settings
from django.utils import timezone

from quizai.storage import DatabaseKeyValueStore, KeyValueStore
from .character_images import CharacterImageMap
from .conversation import DEFAULT_MAX_SESSIONS, ChatRegistry, CharacterChat
from .daily_quota import DailyQuotaCounter
from .image_cache import ImageCacheService
from .openai_gateway import OpenAIGateway
from .rate_limiter import DEFAULT_LIMIT_PER_MIN, WindowRateLimiter
from .token_budget import SessionTrackerRegistry


@dataclass
class ServiceConfig:
    image_cache_expiry_days: int
    image_cache_evict_count: int
    goods_daily_limit: int
    session_token_ceiling: int
    token_cost_per_1k_usd: float
    kv_store_capacity_bytes: Optional[int]
    chat_max_turns: int
    chat_max_sessions: int = DEFAULT_MAX_SESSIONS
    image_rate_limit_per_min: int = DEFAULT_LIMIT_PER_MIN


class Services:
    def __init__(self, config: ServiceConfig, gateway: OpenAIGateway,
                 clock: Optional[Callable[[], datetime]] = None):
        self.config = config
        self.gateway = gateway
        self.clock = clock or timezone.now
        self.trackers = SessionTrackerRegistry(
            ceiling=config.session_token_ceiling,
            cost_per_1k_usd=config.token_cost_per_1k_usd,
            max_sessions=config.chat_max_sessions,
        )
        self.chats = ChatRegistry(config.chat_max_sessions, on_evict=self.trackers.discard)
        self.rate_limiter = WindowRateLimiter(config.image_rate_limit_per_min)

    def store_for(self, namespace: str) -> KeyValueStore:
        return DatabaseKeyValueStore(namespace, capacity_bytes=self.config.kv_store_capacity_bytes)

    def image_cache_for(self, namespace: str) -> ImageCacheService:
        return ImageCacheService(
            self.store_for(namespace),
            self.gateway,
            expiry_days=self.config.image_cache_expiry_days,
            evict_count=self.config.image_cache_evict_count,
            clock=self.clock,
        )

    def quota_for(self, namespace: str) -> DailyQuotaCounter:
        return DailyQuotaCounter(self.store_for(namespace), limit=self.config.goods_daily_limit, clock=self.clock)

    def character_images_for(self, namespace: str) -> CharacterImageMap:
        return CharacterImageMap(self.store_for(namespace), self.gateway)

    def start_chat(self, character_name: str) -> CharacterChat:
        session_id = uuid.uuid4().hex
        # 토큰 예산은 채팅 세션 id 단위로 묶는다
        chat = CharacterChat(
            character_name,
            self.gateway,
            self.trackers.get(session_id),
            max_turns=self.config.chat_max_turns,
            session_id=session_id,
        )
        return self.chats.add(chat)


def build_services() -> Services:
    capacity = getattr(settings, "KV_STORE_CAPACITY_BYTES", None)
    config = ServiceConfig(
        image_cache_expiry_days=settings.IMAGE_CACHE_EXPIRY_DAYS,
        image_cache_evict_count=settings.IMAGE_CACHE_EVICT_COUNT,
        goods_daily_limit=settings.GOODS_DAILY_LIMIT,
        session_token_ceiling=settings.SESSION_TOKEN_CEILING,
        token_cost_per_1k_usd=settings.TOKEN_COST_PER_1K_USD,
        kv_store_capacity_bytes=capacity or None,
        chat_max_turns=settings.CHAT_MAX_TURNS,
        chat_max_sessions=settings.CHAT_MAX_SESSIONS,
        image_rate_limit_per_min=settings.IMAGE_RATE_LIMIT_PER_MIN,
    )
    gateway = OpenAIGateway(
        chat_model=settings.OPENAI_CHAT_MODEL,
        image_model=settings.OPENAI_IMAGE_MODEL,
    )
    return Services(config, gateway)
