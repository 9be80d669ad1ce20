"""ChoreLogService - 家事の実施記録

1回の記録で複数人が同時に実施した場合、実施者ごとに1行ずつログを作る。
各行は同じ batch_id を共有し、weight は家事の weight を人数で割った値になる。
これにより「2人でやった」家事を二重計上せず、分析で按分できる。
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from chorebook.domain.errors import NotFound, Unauthorized, ValidationFailed
from chorebook.domain.models import UNSET, Chore, ChoreLog, Unset, ensure_aware, utcnow
from chorebook.domain.ports import (
    ChoreLogRepository,
    ChoreRepository,
    GroupRepository,
    UnitOfWork,
)
from chorebook.logging_config import log_context
from chorebook.services.unit_of_work import CompensatingUnitOfWork

logger = logging.getLogger(__name__)

FUTURE_TOLERANCE = timedelta(hours=24)
FUTURE_DATE_REASON = "Created date cannot be more than 24 hours in the future."
DURATION_REASON = "Duration must be positive when provided."


@dataclass(frozen=True)
class ChoreLogDraft:
    """
    記録の入力。performer_id（1人）か performer_ids（複数人）のどちらかを指定する。
    両方ある場合は performer_ids を優先。
    """

    group_id: uuid.UUID
    chore_id: uuid.UUID
    performer_id: uuid.UUID | None = None
    performer_ids: tuple[uuid.UUID, ...] = ()
    memo: str | None = None
    created_at: datetime | None = None  # 省略時は現在時刻。過去日付の後付け記録も可
    started_at: datetime | None = None
    duration_minutes: int | None = None

    @property
    def performers(self) -> tuple[uuid.UUID, ...]:
        if self.performer_ids:
            return tuple(self.performer_ids)
        if self.performer_id is not None:
            return (self.performer_id,)
        return ()


@dataclass(frozen=True)
class ChoreLogPatch:
    performer_id: uuid.UUID | None | Unset = UNSET
    memo: str | None | Unset = UNSET
    started_at: datetime | None | Unset = UNSET
    duration_minutes: int | None | Unset = UNSET


class ChoreLogService:
    """家事の実施記録の作成・更新・削除・取得"""

    def __init__(
        self,
        log_repository: ChoreLogRepository,
        chore_repository: ChoreRepository,
        group_repository: GroupRepository,
        clock: Callable[[], datetime] = utcnow,
        unit_of_work_factory: Callable[[], UnitOfWork] = CompensatingUnitOfWork,
    ) -> None:
        self._logs = log_repository
        self._chores = chore_repository
        self._groups = group_repository
        self._clock = clock
        self._new_unit_of_work = unit_of_work_factory

    async def record_chore(self, draft: ChoreLogDraft, actor_id: uuid.UUID) -> list[ChoreLog]:
        """
        家事の実施を記録する。

        処理フロー:
        1. actor がグループに書き込めることを確認
        2. 家事がグループに属していることを確認
        3. 明示された日時が24時間以上先でないことを確認（タイムゾーンなしは UTC とみなす）
        4. 実施者ごとに共通の batch_id を持つログを作成し、まとめて保存

        Returns:
            list[ChoreLog]: 作成されたログ（実施者の人数分）

        Raises:
            Unauthorized: actor が viewer、またはメンバーでない場合
            NotFound: 家事が存在しない、または別グループの家事の場合
            ValidationFailed: 実施者が空・重複、未来日時、duration が不正な場合
        """
        await self._require_writer(draft.group_id, actor_id)
        chore = await self._load_chore(draft.chore_id, draft.group_id)

        now = self._clock()
        requested_at = ensure_aware(draft.created_at)
        started_at = ensure_aware(draft.started_at)
        self._validate_timestamp(requested_at, now)
        self._validate_timestamp(started_at, now)
        duration = _validate_duration(draft.duration_minutes)

        performers = draft.performers
        if not performers:
            raise ValidationFailed("At least one performer is required.")
        if len(set(performers)) != len(performers):
            raise ValidationFailed("Performers must be unique.")

        performer_count = len(performers)
        batch_id = uuid.uuid4()
        created_at = requested_at or now
        memo = _clean_optional(draft.memo)

        logs = [
            ChoreLog(
                chore_id=chore.id,
                group_id=draft.group_id,
                performer_id=performer_id,
                weight=chore.weight / performer_count,
                memo=memo,
                batch_id=batch_id,
                performer_count=performer_count,
                created_at=created_at,
                created_by=actor_id,
                updated_at=created_at,
                started_at=started_at,
                duration_minutes=duration,
            )
            for performer_id in performers
        ]

        uow = self._new_unit_of_work()
        for log in logs:
            self._stage_new_log(uow, log)
        await uow.commit()

        logger.info(
            "Recorded chore: group_id=%s, chore_id=%s, batch_id=%s, performers=%d",
            draft.group_id,
            chore.id,
            batch_id,
            performer_count,
            extra=log_context(group_id=draft.group_id, actor_id=actor_id, chore_id=chore.id, batch_id=batch_id),
        )
        return logs

    async def update_log(
        self,
        log_id: uuid.UUID,
        group_id: uuid.UUID,
        actor_id: uuid.UUID,
        patch: ChoreLogPatch,
    ) -> ChoreLog:
        """
        ログを更新する。

        同じ batch の他の行には反映しない（memo を変えても兄弟行はそのまま）。
        """
        await self._require_writer(group_id, actor_id)
        log = await self._find_log(log_id, group_id)

        changes: dict = {}
        if patch.performer_id is not UNSET:
            if patch.performer_id is None:
                raise ValidationFailed("Performer must not be empty.")
            changes["performer_id"] = patch.performer_id
        if patch.memo is not UNSET:
            changes["memo"] = _clean_optional(patch.memo)
        if patch.started_at is not UNSET:
            started_at = ensure_aware(patch.started_at)
            self._validate_timestamp(started_at, self._clock())
            changes["started_at"] = started_at
        if patch.duration_minutes is not UNSET:
            changes["duration_minutes"] = _validate_duration(patch.duration_minutes)

        updated = replace(log, **changes, updated_at=self._clock(), updated_by=actor_id)
        await self._logs.save(updated)
        logger.info(
            "Updated chore log: group_id=%s, log_id=%s, fields=%s",
            group_id,
            log_id,
            sorted(changes),
            extra=log_context(group_id=group_id, actor_id=actor_id, log_id=log_id),
        )
        return updated

    async def delete_log(self, log_id: uuid.UUID, group_id: uuid.UUID, actor_id: uuid.UUID) -> None:
        await self._require_writer(group_id, actor_id)
        await self._logs.delete(log_id, group_id)
        logger.info(
            "Deleted chore log: group_id=%s, log_id=%s",
            group_id,
            log_id,
            extra=log_context(group_id=group_id, actor_id=actor_id, log_id=log_id),
        )

    async def fetch_logs(self, group_id: uuid.UUID, since: datetime | None = None) -> list[ChoreLog]:
        """since 以降（含む）のログを記録日時の昇順で返す"""
        return await self._logs.list(group_id, since=ensure_aware(since))

    async def logs_in_batch(self, group_id: uuid.UUID, batch_id: uuid.UUID) -> list[ChoreLog]:
        """同じ記録操作で作られたログ一覧"""
        return [log for log in await self._logs.list(group_id) if log.batch_id == batch_id]

    # ── 内部ヘルパー ──────────────────────────────────────────────────────────

    async def _require_writer(self, group_id: uuid.UUID, actor_id: uuid.UUID) -> None:
        group = await self._groups.fetch(group_id)
        if group is None:
            raise NotFound("Group not found.")
        role = group.role_of(actor_id)
        if role is None or not role.can_write:
            logger.warning(
                "Unauthorized chore log mutation: group_id=%s, actor_id=%s",
                group_id,
                actor_id,
                extra=log_context(group_id=group_id, actor_id=actor_id),
            )
            raise Unauthorized()

    async def _load_chore(self, chore_id: uuid.UUID, group_id: uuid.UUID) -> Chore:
        chore = await self._chores.fetch(chore_id)
        if chore is None or chore.group_id != group_id:
            raise NotFound("Chore not found in group.")
        if chore.is_deleted:
            raise ValidationFailed("Chore has been deleted.")
        return chore

    async def _find_log(self, log_id: uuid.UUID, group_id: uuid.UUID) -> ChoreLog:
        # ID 指定の取得はリポジトリの契約にないため、グループのログを走査する
        for log in await self._logs.list(group_id):
            if log.id == log_id:
                return log
        raise NotFound("Chore log not found.")

    @staticmethod
    def _validate_timestamp(timestamp: datetime | None, now: datetime) -> None:
        if timestamp is not None and timestamp > now + FUTURE_TOLERANCE:
            raise ValidationFailed(FUTURE_DATE_REASON)

    def _stage_new_log(self, uow: UnitOfWork, log: ChoreLog) -> None:
        uow.add(lambda: self._logs.save(log), lambda: self._logs.delete(log.id, log.group_id))


def _validate_duration(minutes: int | None) -> int | None:
    if minutes is not None and minutes <= 0:
        raise ValidationFailed(DURATION_REASON)
    return minutes


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None
