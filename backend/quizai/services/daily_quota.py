# quizai/services/daily_quota.py
"""
Daily cap on AI goods image generation, scoped to the local calendar day.

This is a best-effort guard per profile, not billing-grade enforcement:
concurrent writers are not coordinated and the last write wins.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from django.utils import timezone

from quizai.storage import DAILY_QUOTA_KEY, KeyValueStore, read_json, write_json

logger = logging.getLogger(__name__)

DEFAULT_DAILY_LIMIT = 3


@dataclass(frozen=True)
class QuotaStatus:
    count: int
    remaining: int
    limit: int
    reset_description: str

    def as_dict(self):
        return {
            "count": self.count,
            "remaining": self.remaining,
            "limit": self.limit,
            "reset_description": self.reset_description,
        }


def describe_until_midnight(now_local: datetime) -> str:
    midnight = (now_local + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    minutes = max(0, int((midnight - now_local).total_seconds() // 60))
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}시간 {minutes}분 후 초기화"
    return f"{minutes}분 후 초기화"


class DailyQuotaCounter:
    def __init__(self, store: KeyValueStore, limit: int = DEFAULT_DAILY_LIMIT,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.limit = limit
        self._clock = clock or timezone.now

    def _now_local(self) -> datetime:
        return timezone.localtime(self._clock())

    def _today(self) -> str:
        return self._now_local().date().isoformat()

    def _read(self) -> dict:
        record = read_json(self.store, DAILY_QUOTA_KEY, default=None)
        if not isinstance(record, dict):
            return {"date": self._today(), "count": 0}
        return record

    def _today_count(self) -> int:
        record = self._read()
        if record.get("date") != self._today():
            # 날짜가 바뀌었으면 읽을 때는 0으로 본다 (쓰기는 increment 때)
            return 0
        try:
            return max(0, int(record.get("count", 0)))
        except (TypeError, ValueError):
            return 0

    def get_status(self) -> QuotaStatus:
        count = self._today_count()
        remaining = max(0, self.limit - count)
        return QuotaStatus(
            count=count,
            remaining=remaining,
            limit=self.limit,
            reset_description=describe_until_midnight(self._now_local()),
        )

    def can_proceed(self) -> bool:
        return self.get_status().remaining > 0

    def increment(self) -> int:
        """Record one successful generation. Call only after the billable action succeeded."""
        today = self._today()
        record = self._read()
        if record.get("date") == today:
            count = self._today_count() + 1
        else:
            count = 1
        write_json(self.store, DAILY_QUOTA_KEY, {"date": today, "count": count})
        logger.info("[DailyQuota] %s 생성 %s/%s", today, count, self.limit)
        return count
