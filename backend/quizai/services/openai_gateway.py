# quizai/services/openai_gateway.py
"""
Thin wrapper around the OpenAI SDK for the two calls this app makes:
image generation (DALL·E) and chat completions.

Every provider error is caught here and re-raised as an ``AIServiceError``
subclass, so callers only ever deal with normalized, user-readable errors.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import openai
from openai import OpenAI

from quizai.utils.openai_keys import is_usable_key, mask_key
from .errors import (
    AIServiceError,
    ContentRejected,
    InvalidCredential,
    MissingCredential,
    ProviderFailure,
    ProviderRateLimited,
)
from .token_budget import SessionTokenTracker

logger = logging.getLogger(__name__)

DEFAULT_CHAT_MODEL = "gpt-4o-mini"
DEFAULT_IMAGE_MODEL = "dall-e-3"
VALID_ROLES = {"system", "user", "assistant"}


@dataclass(frozen=True)
class GeneratedImage:
    url: str
    revised_prompt: Optional[str] = None


@dataclass(frozen=True)
class ChatReply:
    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


def normalize_provider_error(exc: Exception) -> AIServiceError:
    """Map an OpenAI SDK exception onto the app's error taxonomy."""
    if isinstance(exc, AIServiceError):
        return exc

    detail = str(exc)
    if isinstance(exc, openai.APIStatusError):
        status_code = exc.status_code
        if status_code == 401:
            return InvalidCredential(detail=detail)
        if status_code == 429:
            return ProviderRateLimited(detail=detail)
        if status_code == 400:
            return ContentRejected(detail=detail)
        return ProviderFailure(detail=f"HTTP {status_code}: {detail}")

    if isinstance(exc, openai.APIConnectionError):
        return ProviderFailure(detail=f"connection: {detail}")

    return ProviderFailure(detail=detail)


class OpenAIGateway:
    def __init__(
        self,
        client_factory: Callable[..., Any] = OpenAI,
        chat_model: str = DEFAULT_CHAT_MODEL,
        image_model: str = DEFAULT_IMAGE_MODEL,
    ):
        self.client_factory = client_factory
        self.chat_model = chat_model
        self.image_model = image_model

    def _client(self, credential: Optional[str]):
        if not is_usable_key(credential):
            raise MissingCredential()
        return self.client_factory(api_key=credential.strip())

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------
    def generate_image(
        self,
        prompt: str,
        credential: Optional[str],
        *,
        size: str = "1024x1024",
        quality: str = "standard",
        style: str = "vivid",
    ) -> GeneratedImage:
        prompt = (prompt or "").strip()
        if not prompt:
            raise ContentRejected("그림으로 만들 내용을 입력해 주세요.")

        client = self._client(credential)
        start_t = time.time()
        try:
            resp = client.images.generate(
                model=self.image_model,
                prompt=prompt,
                n=1,
                size=size,
                quality=quality,
                style=style,
            )
        except Exception as e:
            err = normalize_provider_error(e)
            logger.warning("[OpenAIImage] 생성 실패 (%s, key=%s): %s", err.code, mask_key(credential), e)
            raise err from e

        took = round(time.time() - start_t, 2)
        data = getattr(resp, "data", None) or []
        url = getattr(data[0], "url", None) if data else None
        if not url:
            logger.warning("[OpenAIImage] 응답에 이미지 URL이 없습니다 (took=%ss)", took)
            raise ProviderFailure(detail="malformed_response: no image url")

        logger.info("[OpenAIImage] 생성 완료 took=%ss", took)
        return GeneratedImage(url=url, revised_prompt=getattr(data[0], "revised_prompt", None))

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------
    def chat(
        self,
        messages: List[Dict[str, str]],
        credential: Optional[str],
        tracker: SessionTokenTracker,
        *,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
        top_p: float = 0.9,
    ) -> ChatReply:
        # 네트워크 호출 전에 세션 예산부터 확인한다
        tracker.check_and_reserve()

        for m in messages:
            if m.get("role") not in VALID_ROLES:
                raise ValueError(f"invalid message role: {m.get('role')!r}")

        client = self._client(credential)
        start_t = time.time()
        try:
            resp = client.chat.completions.create(
                model=model or self.chat_model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                top_p=top_p,
            )
        except Exception as e:
            err = normalize_provider_error(e)
            logger.warning("[OpenAIChat] 호출 실패 (%s, key=%s): %s", err.code, mask_key(credential), e)
            raise err from e

        choices = getattr(resp, "choices", None) or []
        if not choices:
            raise ProviderFailure(detail="malformed_response: no choices")
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if not isinstance(content, str):
            logger.warning("[OpenAIChat] 응답에 메시지 내용이 없습니다")
            raise ProviderFailure(detail="malformed_response: no message content")
        content = content.strip()

        usage = getattr(resp, "usage", None)
        prompt_tokens = int(getattr(usage, "prompt_tokens", 0) or 0)
        completion_tokens = int(getattr(usage, "completion_tokens", 0) or 0)
        total_tokens = int(getattr(usage, "total_tokens", 0) or (prompt_tokens + completion_tokens))
        # total_tokens만 오는 응답도 있어서 큰 쪽으로 기록한다
        tracker.record_usage(prompt_tokens, max(completion_tokens, total_tokens - prompt_tokens))

        took = round(time.time() - start_t, 2)
        logger.info(
            "[OpenAIChat] took=%ss tokens=%s session_total=%s",
            took, total_tokens, tracker.get_usage().total_tokens,
        )
        return ChatReply(content, prompt_tokens, completion_tokens, total_tokens)
