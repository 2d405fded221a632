# quizai/services/errors.py
from typing import Optional


class AIServiceError(Exception):
    """
    Normalized, user-readable error raised at the provider boundary.

    ``code`` is the machine tag the views and the frontend switch on;
    ``message`` is safe to show to a child's parent as-is.
    """
    code = "provider_error"
    http_status = 503
    retryable = False
    default_message = "AI 서버와 통신하지 못했어요. 잠시 후 다시 시도해 주세요."

    def __init__(self, message: Optional[str] = None, *, detail: str = ""):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def as_dict(self):
        return {"error": self.code, "message": self.message, "retryable": self.retryable}


class MissingCredential(AIServiceError):
    code = "missing_api_key"
    http_status = 400
    default_message = "OpenAI API 키가 설정되지 않았어요. 설정 화면에서 키를 입력해 주세요."


class InvalidCredential(AIServiceError):
    code = "invalid_api_key"
    http_status = 401
    default_message = "API 키가 올바르지 않아요. 키를 다시 확인해 주세요."


class ProviderRateLimited(AIServiceError):
    code = "rate_limited"
    http_status = 429
    retryable = True
    default_message = "요청이 너무 많아요. 잠시 후 다시 시도해 주세요."


class ContentRejected(AIServiceError):
    code = "content_rejected"
    http_status = 400
    default_message = "이 내용으로는 만들 수 없어요. 다른 표현으로 바꿔서 다시 시도해 주세요."


class ProviderFailure(AIServiceError):
    code = "provider_error"
    http_status = 503
    retryable = True


class SessionLimitExceeded(AIServiceError):
    """Local circuit breaker: the chat session spent its whole token budget."""
    code = "SESSION_LIMIT"
    http_status = 429
    default_message = "오늘 대화는 여기까지예요. 새로고침하면 새 대화를 시작할 수 있어요."


class ChatFinished(AIServiceError):
    code = "chat_finished"
    http_status = 409
    default_message = "이번 대화는 끝났어요. 다른 인물과도 이야기해 보세요!"


class ClientRateLimited(AIServiceError):
    """Too many generation requests from one client address in the current window."""
    code = "too_many_requests"
    http_status = 429
    retryable = True
    default_message = "너무 빨리 요청하고 있어요. 잠시 후 다시 시도해 주세요."


class DailyQuotaExceeded(AIServiceError):
    code = "daily_quota_exceeded"
    http_status = 429
    default_message = "오늘 만들 수 있는 굿즈를 모두 만들었어요. 내일 다시 만들어 보세요!"
