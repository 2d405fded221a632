# quizai/services/token_budget.py
"""
Per-session LLM token budget.

A hard circuit breaker in front of the user's API key: once a chat session
has spent ``ceiling`` tokens, every further chat call is refused locally.
Nothing here is persisted; a restart (or a page reload, which starts a new
session) resets it.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Dict

from .errors import SessionLimitExceeded

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_CEILING = 100_000
DEFAULT_COST_PER_1K_USD = 0.0006
DEFAULT_MAX_SESSIONS = 1000


@dataclass(frozen=True)
class TokenUsage:
    total_tokens: int
    call_count: int
    estimated_cost: float

    def as_dict(self):
        return {
            "total_tokens": self.total_tokens,
            "call_count": self.call_count,
            "estimated_cost": self.estimated_cost,
        }


class SessionTokenTracker:
    def __init__(self, ceiling: int = DEFAULT_TOKEN_CEILING,
                 cost_per_1k_usd: float = DEFAULT_COST_PER_1K_USD):
        if ceiling <= 0:
            raise ValueError("ceiling must be > 0")
        self.ceiling = ceiling
        self.cost_per_1k_usd = cost_per_1k_usd
        self._total_tokens = 0
        self._call_count = 0

    @property
    def is_exhausted(self) -> bool:
        return self._total_tokens >= self.ceiling

    @property
    def remaining_tokens(self) -> int:
        return max(0, self.ceiling - self._total_tokens)

    def check_and_reserve(self) -> None:
        """Raise ``SessionLimitExceeded`` when the budget is spent. No side effects."""
        if self.is_exhausted:
            logger.warning(
                "[TokenBudget] 세션 토큰 한도 초과: %s / %s",
                self._total_tokens, self.ceiling,
            )
            raise SessionLimitExceeded(detail=f"{self._total_tokens}/{self.ceiling}")

    def record_usage(self, prompt_tokens: int, completion_tokens: int) -> None:
        prompt_tokens = int(prompt_tokens or 0)
        completion_tokens = int(completion_tokens or 0)
        if prompt_tokens < 0 or completion_tokens < 0:
            raise ValueError("token counts must be >= 0")

        was_exhausted = self.is_exhausted
        self._total_tokens += prompt_tokens + completion_tokens
        self._call_count += 1

        if self.is_exhausted and not was_exhausted:
            logger.warning(
                "[TokenBudget] 세션이 한도에 도달했습니다 (%s tokens, %s calls)",
                self._total_tokens, self._call_count,
            )

    def get_usage(self) -> TokenUsage:
        cost = round(self._total_tokens / 1000 * self.cost_per_1k_usd, 6)
        return TokenUsage(self._total_tokens, self._call_count, cost)


class SessionTrackerRegistry:
    """
    In-memory map ``session_id -> SessionTokenTracker`` for this process.

    Holds at most ``max_sessions`` trackers; creating one more drops the
    oldest. A dropped session simply starts over with a fresh budget.
    """

    def __init__(self, ceiling: int = DEFAULT_TOKEN_CEILING,
                 cost_per_1k_usd: float = DEFAULT_COST_PER_1K_USD,
                 max_sessions: int = DEFAULT_MAX_SESSIONS):
        if max_sessions <= 0:
            raise ValueError("max_sessions must be > 0")
        self.ceiling = ceiling
        self.cost_per_1k_usd = cost_per_1k_usd
        self.max_sessions = max_sessions
        self._trackers: Dict[str, SessionTokenTracker] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> SessionTokenTracker:
        with self._lock:
            tracker = self._trackers.get(session_id)
            if tracker is None:
                tracker = SessionTokenTracker(self.ceiling, self.cost_per_1k_usd)
                self._trackers[session_id] = tracker
                while len(self._trackers) > self.max_sessions:
                    del self._trackers[next(iter(self._trackers))]
            return tracker

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._trackers.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._trackers

    def __len__(self) -> int:
        return len(self._trackers)
