# quizai/services/character_images.py
"""
Portraits of the historical characters shown on collection cards.

Generated portraits are remembered per character id (no expiry, unlike the
quiz image cache). Static files under ``/characters/<era folder>/`` are the
last resort when nothing was generated.
"""
import logging
from typing import Dict, List, Optional

from quizai.storage import CHARACTER_IMAGES_KEY, KeyValueStore, StorageQuotaExceeded, read_json, write_json
from .openai_gateway import OpenAIGateway

logger = logging.getLogger(__name__)

PERIOD_FOLDER = {
    "고조선": "gojoseon",
    "삼국시대": "three-kingdoms",
    "고려": "goryeo",
    "조선": "joseon",
    "근현대": "modern",
}
SUPPORTED_EXTS = ("png", "webp", "jpg", "jpeg")


def _period_folder(period: str) -> Optional[str]:
    period = (period or "").strip()
    if period in PERIOD_FOLDER:
        return PERIOD_FOLDER[period]
    # "조선시대" 같은 표기도 허용
    for name, folder in PERIOD_FOLDER.items():
        if period.startswith(name):
            return folder
    return None


def character_image_path(character_id: str, period: str) -> str:
    """``/characters/<folder>/<id>.png`` or ``""`` for an unknown era."""
    folder = _period_folder(period)
    if not folder:
        return ""
    return f"/characters/{folder}/{character_id}.png"


def character_image_candidates(character_id: str, period: str) -> List[str]:
    folder = _period_folder(period)
    if not folder:
        return []
    return [f"/characters/{folder}/{character_id}.{ext}" for ext in SUPPORTED_EXTS]


def build_portrait_prompt(name: str, period: str, role: str) -> str:
    return (
        f"A friendly and educational portrait illustration of {name}, a historical Korean figure "
        f"from the {period} period, who was {role}. "
        "Child-friendly and approachable, traditional Korean historical clothing (hanbok), "
        "dignified but warm expression, clean and simple background, "
        "educational illustration style for elementary school students, "
        "warm colors and soft lighting, no text or words in the image."
    )


class CharacterImageMap:
    def __init__(self, store: KeyValueStore, gateway: Optional[OpenAIGateway] = None):
        self.kv = store
        self.gateway = gateway or OpenAIGateway()

    def all(self) -> Dict[str, str]:
        data = read_json(self.kv, CHARACTER_IMAGES_KEY, default={})
        return data if isinstance(data, dict) else {}

    def get(self, character_id: str) -> Optional[str]:
        return self.all().get(character_id) or None

    def put(self, character_id: str, url: str) -> bool:
        """Remember a portrait URL. Best-effort: a full store is logged, not raised."""
        data = self.all()
        data[character_id] = url
        try:
            write_json(self.kv, CHARACTER_IMAGES_KEY, data)
            return True
        except StorageQuotaExceeded as e:
            logger.warning("[CharacterImage] 저장 공간 부족, 초상화 URL을 저장하지 못했습니다: %s", e)
            return False

    def get_or_generate(self, character_id: str, name: str, period: str, role: str,
                        credential: Optional[str]) -> Dict[str, str]:
        """
        Cached portrait first; otherwise generate one and remember it.
        Provider errors propagate as ``AIServiceError`` so the caller can
        tell the user why (unlike quiz images, a portrait has no silent fallback).
        """
        cached = self.get(character_id)
        if cached:
            logger.info("[CharacterImage] 캐시된 초상화 사용: %s", character_id)
            return {"url": cached, "source": "cache"}

        logger.info("[CharacterImage] 초상화 생성: %s (%s)", name, period)
        image = self.gateway.generate_image(
            build_portrait_prompt(name, period, role),
            credential,
            style="natural",
        )
        self.put(character_id, image.url)
        return {"url": image.url, "source": "generated"}
