"""ReminderScheduler - リマインダーの次回通知時刻の計算"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, time, timedelta, timezone, tzinfo

from chorebook.domain.models import Reminder, utcnow
from chorebook.domain.ports import ReminderRepository

logger = logging.getLogger(__name__)

SEARCH_HORIZON_DAYS = 14  # 2週間探索すれば週次スケジュールは必ず見つかる
ALL_WEEKDAYS = frozenset(range(1, 8))


def weekday_number(moment: datetime) -> int:
    """1=日曜 ... 7=土曜"""
    return moment.isoweekday() % 7 + 1


class ReminderScheduler:
    """
    通知基盤に渡すための次回通知時刻を求める。

    曜日と時刻の判定はコンストラクタで指定したタイムゾーンで行う。
    """

    def __init__(
        self,
        reminder_repository: ReminderRepository,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._reminders = reminder_repository
        self._tz = tz
        self._clock = clock

    def next_fire_date(self, reminder: Reminder, reference: datetime | None = None) -> datetime | None:
        """
        reference 以降で最初の通知時刻を返す。

        無効なリマインダー、または探索範囲内に候補がない場合は None。
        """
        if not reminder.is_enabled:
            return None

        reference = self._localize(reference or self._clock())
        schedule = reminder.schedule
        weekdays = schedule.weekdays or ALL_WEEKDAYS
        fire_time = time(schedule.hour, schedule.minute, schedule.second)

        for day_offset in range(SEARCH_HORIZON_DAYS):
            candidate = reference + timedelta(days=day_offset)
            if weekday_number(candidate) not in weekdays:
                continue
            target = datetime.combine(candidate.date(), fire_time, tzinfo=self._tz)
            if target >= reference:
                return target
        return None

    async def upcoming_reminders(
        self,
        chore_id: uuid.UUID,
        limit: int = 5,
        reference: datetime | None = None,
    ) -> list[datetime]:
        """家事に紐づく全リマインダーの今後の通知時刻を、早い順に最大 limit 件返す"""
        if limit <= 0:
            return []

        reminders = await self._reminders.list(chore_id)
        start = reference or self._clock()
        occurrences: list[datetime] = []

        for reminder in reminders:
            cursor = start
            for _ in range(limit):
                next_date = self.next_fire_date(reminder, cursor)
                if next_date is None:
                    break
                occurrences.append(next_date)
                cursor = next_date + timedelta(seconds=1)

        occurrences.sort()
        logger.debug(
            "Computed upcoming reminders: chore_id=%s, reminders=%d, occurrences=%d",
            chore_id,
            len(reminders),
            len(occurrences),
        )
        return occurrences[:limit]

    def _localize(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self._tz)
        return moment.astimezone(self._tz)
