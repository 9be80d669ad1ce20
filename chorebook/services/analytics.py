"""ChoreAnalyticsService - 家事ログの期間別集計

リポジトリに依存しない純粋な変換。取得済みのログ（と家事定義）を受け取り、
週次・月次のバケットごとに実施者別の負担をまとめる。
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo

from dateutil.relativedelta import relativedelta

from chorebook.domain.models import Chore, ChoreCategory, ChoreLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DateInterval:
    """半開区間 [start, end)"""

    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True)
class ContributorSummary:
    """期間内の実施者1人分の集計"""

    performer_id: uuid.UUID
    completed_count: int
    total_weight: float
    total_duration_minutes: int = 0
    category_counts: dict[ChoreCategory, int] = field(default_factory=dict, hash=False)
    category_durations: dict[ChoreCategory, int] = field(default_factory=dict, hash=False)

    def share_of_total_count(self, total_count: int) -> float:
        if total_count <= 0:
            return 0.0
        return self.completed_count / total_count

    def share_of_total_weight(self, total_weight: float) -> float:
        if total_weight <= 0:
            return 0.0
        return self.total_weight / total_weight

    def share_of_total_duration(self, total_duration: int) -> float:
        if total_duration <= 0:
            return 0.0
        return self.total_duration_minutes / total_duration


@dataclass(frozen=True)
class WorkloadSnapshot:
    """
    期間ごとの負担の集計。

    contributions は total_weight（同値なら total_duration_minutes）の降順。
    画面表示の順序としてそのまま使われる。
    """

    interval: DateInterval
    contributions: tuple[ContributorSummary, ...] = ()

    def __post_init__(self) -> None:
        ordered = sorted(
            self.contributions,
            key=lambda c: (c.total_weight, c.total_duration_minutes),
            reverse=True,
        )
        object.__setattr__(self, "contributions", tuple(ordered))

    @property
    def total_count(self) -> int:
        return sum(c.completed_count for c in self.contributions)

    @property
    def total_weight(self) -> float:
        return sum(c.total_weight for c in self.contributions)

    @property
    def total_duration_minutes(self) -> int:
        return sum(c.total_duration_minutes for c in self.contributions)

    def contribution_of(self, performer_id: uuid.UUID) -> ContributorSummary | None:
        for contribution in self.contributions:
            if contribution.performer_id == performer_id:
                return contribution
        return None


class ChoreAnalyticsService:
    """
    ダッシュボード用の負担バランス分析。

    日付の区切りはコンストラクタで指定したタイムゾーンの 0:00。
    """

    def __init__(self, tz: tzinfo = timezone.utc) -> None:
        self._tz = tz

    def weekly_snapshots(
        self,
        logs: Iterable[ChoreLog],
        ending_on: datetime,
        week_count: int,
        chores: Iterable[Chore] | None = None,
    ) -> list[WorkloadSnapshot]:
        """
        ending_on の日を含む直近 week_count 週分のスナップショットを返す。

        各バケットはちょうど7日間で隙間なく連続し、開始時刻の昇順で並ぶ。
        """
        period_end = self._end_of_anchor_day(ending_on)
        intervals = [
            DateInterval(
                start=period_end - timedelta(days=7 * (offset + 1)),
                end=period_end - timedelta(days=7 * offset),
            )
            for offset in range(max(week_count, 0))
        ]
        return self._snapshots(list(logs), intervals, chores)

    def monthly_snapshots(
        self,
        logs: Iterable[ChoreLog],
        ending_on: datetime,
        month_count: int,
        chores: Iterable[Chore] | None = None,
    ) -> list[WorkloadSnapshot]:
        """
        ending_on の日を含む直近 month_count ヶ月分のスナップショットを返す。

        バケットの長さは暦月に従って変わる（28〜31日）。
        """
        period_end = self._end_of_anchor_day(ending_on)
        intervals = [
            DateInterval(
                start=period_end - relativedelta(months=offset + 1),
                end=period_end - relativedelta(months=offset),
            )
            for offset in range(max(month_count, 0))
        ]
        return self._snapshots(list(logs), intervals, chores)

    def _end_of_anchor_day(self, anchor: datetime) -> datetime:
        if anchor.tzinfo is None:
            anchor = anchor.replace(tzinfo=self._tz)
        local = anchor.astimezone(self._tz)
        start_of_day = local.replace(hour=0, minute=0, second=0, microsecond=0)
        return start_of_day + timedelta(days=1)

    def _snapshots(
        self,
        logs: list[ChoreLog],
        intervals: list[DateInterval],
        chores: Iterable[Chore] | None,
    ) -> list[WorkloadSnapshot]:
        chores_by_id = {c.id: c for c in chores} if chores is not None else None
        snapshots = [
            WorkloadSnapshot(
                interval=interval,
                contributions=tuple(
                    _contributions([log for log in logs if interval.contains(log.occurred_at)], chores_by_id)
                ),
            )
            for interval in intervals
        ]
        return sorted(snapshots, key=lambda s: s.interval.start)


def _contributions(
    logs: list[ChoreLog],
    chores_by_id: dict[uuid.UUID, Chore] | None,
) -> list[ContributorSummary]:
    """
    実施者ごとに集計する。

    家事定義が渡された場合、定義が見つからないログは読み飛ばす。
    ログに duration がなければ家事の見積もり時間で代用する。
    """
    counts: dict[uuid.UUID, int] = {}
    weights: dict[uuid.UUID, float] = {}
    durations: dict[uuid.UUID, int] = {}
    category_counts: dict[uuid.UUID, dict[ChoreCategory, int]] = {}
    category_durations: dict[uuid.UUID, dict[ChoreCategory, int]] = {}

    for log in logs:
        chore = None
        if chores_by_id is not None:
            chore = chores_by_id.get(log.chore_id)
            if chore is None:
                logger.debug("Skipping log with unknown chore: log_id=%s, chore_id=%s", log.id, log.chore_id)
                continue

        duration = log.duration_minutes
        if duration is None and chore is not None:
            duration = chore.estimated_minutes
        duration = max(duration or 0, 0)

        performer = log.performer_id
        counts[performer] = counts.get(performer, 0) + 1
        weights[performer] = weights.get(performer, 0.0) + log.weight
        durations[performer] = durations.get(performer, 0) + duration
        if chore is not None:
            by_count = category_counts.setdefault(performer, {})
            by_count[chore.category] = by_count.get(chore.category, 0) + 1
            by_duration = category_durations.setdefault(performer, {})
            by_duration[chore.category] = by_duration.get(chore.category, 0) + duration

    return [
        ContributorSummary(
            performer_id=performer,
            completed_count=count,
            total_weight=weights[performer],
            total_duration_minutes=durations[performer],
            category_counts=category_counts.get(performer, {}),
            category_durations=category_durations.get(performer, {}),
        )
        for performer, count in counts.items()
    ]
