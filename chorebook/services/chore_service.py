"""ChoreService - 家事定義のライフサイクル管理"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime

from chorebook.domain.errors import NotFound, Unauthorized, ValidationFailed
from chorebook.domain.models import (
    ALLOWED_WEIGHTS,
    DEFAULT_WEIGHT,
    UNSET,
    Chore,
    ChoreCategory,
    ChoreFrequency,
    CustomFrequency,
    Group,
    OnDemand,
    Recurring,
    Role,
    Unset,
    is_valid_weight,
    utcnow,
)
from chorebook.domain.ports import ChoreRepository, GroupRepository
from chorebook.logging_config import log_context

logger = logging.getLogger(__name__)

EMPTY_TITLE_REASON = "Title must not be empty."
INVALID_WEIGHT_REASON = "Weight must be one of {}.".format(", ".join(str(w) for w in sorted(ALLOWED_WEIGHTS)))
ESTIMATE_REASON = "Estimated minutes must be positive when provided."
DELETED_CHORE_REASON = "Chore has been deleted."


@dataclass(frozen=True)
class ChoreDraft:
    """新しい家事を作成するための入力"""

    group_id: uuid.UUID
    title: str
    weight: int = DEFAULT_WEIGHT
    notes: str | None = None
    is_favorite: bool = False
    category: ChoreCategory = ChoreCategory.OTHER
    default_assignee_id: uuid.UUID | None = None
    estimated_minutes: int | None = None
    frequency: ChoreFrequency = field(default_factory=OnDemand)


@dataclass(frozen=True)
class ChorePatch:
    """既存の家事への部分更新。UNSET のフィールドは変更しない"""

    title: str | None | Unset = UNSET
    weight: int | None | Unset = UNSET
    notes: str | None | Unset = UNSET
    is_favorite: bool | None | Unset = UNSET
    category: ChoreCategory | None | Unset = UNSET
    default_assignee_id: uuid.UUID | None | Unset = UNSET
    estimated_minutes: int | None | Unset = UNSET
    frequency: ChoreFrequency | None | Unset = UNSET


class ChoreService:
    """
    家事定義の作成・更新・削除を行う。

    - viewer ロールは変更できない
    - weight は 1, 2, 3, 5, 8 のいずれか
    - 削除は論理削除（過去のログから参照され続けるため）
    """

    def __init__(
        self,
        chore_repository: ChoreRepository,
        group_repository: GroupRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._chores = chore_repository
        self._groups = group_repository
        self._clock = clock

    async def create_chore(self, draft: ChoreDraft, actor_id: uuid.UUID) -> Chore:
        """
        家事を作成する。

        Raises:
            ValidationFailed: タイトルが空、weight が許可値以外などの場合
            NotFound: グループが存在しない場合
            Unauthorized: actor がグループの editor 以上でない場合
        """
        title = _require_title(draft.title)
        weight = _require_weight(draft.weight)
        estimated_minutes = _validate_estimate(draft.estimated_minutes)
        frequency = _validate_frequency(draft.frequency)

        await self._require_writer(draft.group_id, actor_id)

        now = self._clock()
        chore = Chore(
            group_id=draft.group_id,
            title=title,
            weight=weight,
            notes=_clean_optional(draft.notes),
            is_favorite=draft.is_favorite,
            category=draft.category,
            default_assignee_id=draft.default_assignee_id,
            estimated_minutes=estimated_minutes,
            frequency=frequency,
            created_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        await self._chores.save(chore)
        logger.info(
            "Created chore: group_id=%s, chore_id=%s, weight=%d",
            chore.group_id,
            chore.id,
            weight,
            extra=log_context(group_id=chore.group_id, actor_id=actor_id, chore_id=chore.id),
        )
        return chore

    async def update_chore(self, chore_id: uuid.UUID, actor_id: uuid.UUID, patch: ChorePatch) -> Chore:
        """
        指定されたフィールドのみ更新する。

        検証に失敗した場合は何も保存しない。
        """
        chore = await self.get_chore(chore_id)
        await self._require_writer(chore.group_id, actor_id)
        if chore.is_deleted:
            raise ValidationFailed(DELETED_CHORE_REASON)

        changes: dict = {}
        if patch.title is not UNSET:
            changes["title"] = _require_title(patch.title or "")
        if patch.weight is not UNSET:
            changes["weight"] = _require_weight(patch.weight)
        if patch.notes is not UNSET:
            changes["notes"] = _clean_optional(patch.notes)
        if patch.is_favorite is not UNSET:
            changes["is_favorite"] = _require_present(patch.is_favorite, "Favorite flag")
        if patch.category is not UNSET:
            changes["category"] = _require_present(patch.category, "Category")
        if patch.default_assignee_id is not UNSET:
            changes["default_assignee_id"] = patch.default_assignee_id
        if patch.estimated_minutes is not UNSET:
            changes["estimated_minutes"] = _validate_estimate(patch.estimated_minutes)
        if patch.frequency is not UNSET:
            changes["frequency"] = _validate_frequency(_require_present(patch.frequency, "Frequency"))

        updated = replace(chore, **changes, updated_at=self._clock(), updated_by=actor_id)
        await self._chores.save(updated)
        logger.info(
            "Updated chore: chore_id=%s, fields=%s",
            chore_id,
            sorted(changes),
            extra=log_context(group_id=chore.group_id, actor_id=actor_id, chore_id=chore_id),
        )
        return updated

    async def toggle_favorite(self, chore_id: uuid.UUID, actor_id: uuid.UUID) -> Chore:
        chore = await self.get_chore(chore_id)
        return await self.update_chore(chore_id, actor_id, ChorePatch(is_favorite=not chore.is_favorite))

    async def delete_chore(self, chore_id: uuid.UUID, group_id: uuid.UUID, actor_id: uuid.UUID) -> Chore:
        """家事を論理削除する。既に削除済みならそのまま返す"""
        await self._require_writer(group_id, actor_id)
        chore = await self._chores.fetch(chore_id)
        if chore is None or chore.group_id != group_id:
            raise NotFound("Chore not found.")
        if chore.is_deleted:
            return chore

        deleted = chore.soft_deleting(actor_id, self._clock())
        await self._chores.save(deleted)
        logger.info(
            "Soft deleted chore: group_id=%s, chore_id=%s",
            group_id,
            chore_id,
            extra=log_context(group_id=group_id, actor_id=actor_id, chore_id=chore_id),
        )
        return deleted

    async def purge_chore(self, chore_id: uuid.UUID, group_id: uuid.UUID, actor_id: uuid.UUID) -> None:
        """家事を物理削除する（admin のみ）"""
        group = await self._load_group(group_id)
        if group.role_of(actor_id) is not Role.ADMIN:
            raise Unauthorized()
        await self._chores.delete(chore_id, group_id)
        logger.info("Purged chore: group_id=%s, chore_id=%s", group_id, chore_id)

    async def get_chore(self, chore_id: uuid.UUID) -> Chore:
        """家事を取得する（論理削除済みも含む）"""
        chore = await self._chores.fetch(chore_id)
        if chore is None:
            raise NotFound("Chore not found.")
        return chore

    async def list_chores(self, group_id: uuid.UUID, include_deleted: bool = False) -> list[Chore]:
        return await self._chores.list(group_id, include_deleted=include_deleted)

    async def _load_group(self, group_id: uuid.UUID) -> Group:
        group = await self._groups.fetch(group_id)
        if group is None:
            raise NotFound("Group not found.")
        return group

    async def _require_writer(self, group_id: uuid.UUID, actor_id: uuid.UUID) -> Group:
        group = await self._load_group(group_id)
        role = group.role_of(actor_id)
        if role is None or not role.can_write:
            logger.warning(
                "Unauthorized chore mutation: group_id=%s, actor_id=%s",
                group_id,
                actor_id,
                extra=log_context(group_id=group_id, actor_id=actor_id),
            )
            raise Unauthorized()
        return group


def _require_title(title: str) -> str:
    trimmed = title.strip()
    if not trimmed:
        raise ValidationFailed(EMPTY_TITLE_REASON)
    return trimmed


def _require_weight(weight: object) -> int:
    if not is_valid_weight(weight):
        raise ValidationFailed(INVALID_WEIGHT_REASON)
    return weight  # type: ignore[return-value]


def _require_present(value, label: str):
    if value is None:
        raise ValidationFailed(f"{label} must not be empty.")
    return value


def _validate_estimate(minutes: int | None) -> int | None:
    if minutes is not None and minutes <= 0:
        raise ValidationFailed(ESTIMATE_REASON)
    return minutes


def _validate_frequency(frequency: ChoreFrequency) -> ChoreFrequency:
    if isinstance(frequency, Recurring):
        rule = frequency.rule
        if rule.interval < 1:
            raise ValidationFailed("Recurrence interval must be at least 1.")
        if any(day < 1 or day > 7 for day in rule.weekdays):
            raise ValidationFailed("Recurrence weekdays must be between 1 and 7.")
        return frequency
    if isinstance(frequency, CustomFrequency):
        description = frequency.description.strip()
        if not description:
            raise ValidationFailed("Custom frequency description must not be empty.")
        return CustomFrequency(description=description)
    return frequency


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None
