# quizai/utils/openai_keys.py

import os
import logging
from typing import Optional

from quizai.storage import API_KEY_STORAGE_KEY, KeyValueStore, read_json, write_json

logger = logging.getLogger(__name__)

# 예전 프론트엔드 코드에 남아 있던 자리표시자 값들
PLACEHOLDER_KEYS = {"YOUR_OPENAI_API_KEY", "YOUR_OPENAI_API_KEY_HERE"}


def mask_key(key: Optional[str]) -> str:
    """
    로그용으로 키를 가린다.
    예: sk-proj-abcdefgh...wxyz
    """
    if not key:
        return "<empty>"
    k = key.strip()
    if len(k) <= 10:
        return k[:3] + "..."
    return f"{k[:8]}...{k[-4:]}"


def is_usable_key(key: Optional[str]) -> bool:
    k = (key or "").strip()
    return bool(k) and k not in PLACEHOLDER_KEYS


def _env_key() -> str:
    return os.getenv("OPENAI_API_KEY", "").strip()


def resolve_api_key(store: Optional[KeyValueStore]) -> Optional[str]:
    """Return the OpenAI key to use for this profile.

    The environment-configured ``OPENAI_API_KEY`` takes precedence; if it is
    absent, the key the user saved from the settings screen is used.
    Returns ``None`` when neither is usable.
    """
    env_key = _env_key()
    if is_usable_key(env_key):
        return env_key

    if store is None:
        return None

    stored = read_json(store, API_KEY_STORAGE_KEY, default="")
    stored = stored.strip() if isinstance(stored, str) else ""
    if is_usable_key(stored):
        logger.debug("[OpenAIKeys] 저장된 사용자 키 사용: %s", mask_key(stored))
        return stored

    logger.info("[OpenAIKeys] 사용할 수 있는 OpenAI API 키가 없습니다.")
    return None


def save_api_key(store: KeyValueStore, key: str) -> str:
    k = (key or "").strip()
    if not is_usable_key(k):
        raise ValueError("api_key_invalid: 비어 있거나 자리표시자 값입니다")
    write_json(store, API_KEY_STORAGE_KEY, k)
    logger.info("[OpenAIKeys] 사용자 키 저장: %s", mask_key(k))
    return mask_key(k)


def delete_api_key(store: KeyValueStore) -> None:
    store.delete(API_KEY_STORAGE_KEY)
    logger.info("[OpenAIKeys] 사용자 키 삭제")


def has_env_key() -> bool:
    return is_usable_key(_env_key())
