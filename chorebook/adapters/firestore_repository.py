"""Firestore Repository Adapter

ドメインの各リポジトリポートの Firestore 実装（AsyncClient 使用）。

Firestore コレクション構造:
  groups/{groupId}              ← グループ（memberships を配列で埋め込み）
  members/{memberId}            ← 参加者（group_id, external_auth_id で検索）
  chores/{choreId}              ← 家事定義
  choreLogs/{logId}             ← 実施記録（group_id + created_at で範囲クエリ）
  groupInvites/{inviteId}       ← 招待コード
  reminders/{reminderId}        ← リマインダー

ID は全て UUID 文字列。日時はタイムゾーン付き datetime のまま保存する。
"""

from __future__ import annotations

import functools
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

from google.api_core.exceptions import GoogleAPIError
from google.cloud import firestore

from chorebook.domain.errors import NotFound, RepositoryFailure
from chorebook.domain.models import (
    Chore,
    ChoreCategory,
    ChoreFrequency,
    ChoreLog,
    CustomFrequency,
    Deletion,
    Group,
    GroupInvite,
    Member,
    Membership,
    NotificationType,
    OnDemand,
    RecurrencePeriod,
    RecurrenceRule,
    Recurring,
    Reminder,
    ReminderSchedule,
    Role,
    utcnow,
)
from chorebook.domain.ports import (
    ChoreLogRepository,
    ChoreRepository,
    GroupInviteRepository,
    GroupRepository,
    MemberRepository,
    ReminderRepository,
)

logger = logging.getLogger(__name__)

_GROUPS = "groups"
_MEMBERS = "members"
_CHORES = "chores"
_CHORE_LOGS = "choreLogs"
_GROUP_INVITES = "groupInvites"
_REMINDERS = "reminders"

T = TypeVar("T")


def _translating_errors(method: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Firestore クライアントの例外を RepositoryFailure に変換する"""

    @functools.wraps(method)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await method(*args, **kwargs)
        except GoogleAPIError as e:
            logger.error("Firestore operation failed: %s: %s", method.__qualname__, e)
            raise RepositoryFailure(str(e)) from e

    return wrapper


class _FirestoreRepository:
    """コレクション1つを扱うリポジトリの共通部分"""

    _collection_name: str = ""

    def __init__(self, db: firestore.AsyncClient) -> None:
        """
        Args:
            db: 初期化済みの Firestore AsyncClient
        """
        self._db = db

    def _collection(self):
        return self._db.collection(self._collection_name)

    def _ref(self, entity_id: uuid.UUID):
        return self._collection().document(str(entity_id))

    async def _get(self, entity_id: uuid.UUID) -> dict | None:
        snap = await self._ref(entity_id).get()
        if not snap.exists:
            return None
        return snap.to_dict() or {}

    async def _where(self, field_name: str, value: Any) -> list[dict]:
        query = self._collection().where(field_name, "==", value)
        return [snap.to_dict() or {} async for snap in query.stream()]


class FirestoreGroupRepository(_FirestoreRepository, GroupRepository):
    _collection_name = _GROUPS

    @_translating_errors
    async def fetch(self, group_id: uuid.UUID) -> Group | None:
        data = await self._get(group_id)
        return _group_from_dict(data) if data is not None else None

    @_translating_errors
    async def save(self, group: Group) -> None:
        await self._ref(group.id).set(_group_to_dict(group))
        logger.debug("Saved group: group_id=%s, members=%d", group.id, len(group.members))


class FirestoreMemberRepository(_FirestoreRepository, MemberRepository):
    _collection_name = _MEMBERS

    @_translating_errors
    async def list(self, group_id: uuid.UUID, include_deleted: bool = False) -> list[Member]:
        members = [_member_from_dict(d) for d in await self._where("group_id", str(group_id))]
        if include_deleted:
            return members
        return [m for m in members if not m.is_deleted]

    @_translating_errors
    async def fetch(self, member_id: uuid.UUID) -> Member | None:
        data = await self._get(member_id)
        return _member_from_dict(data) if data is not None else None

    @_translating_errors
    async def save(self, member: Member) -> None:
        await self._ref(member.id).set(_member_to_dict(member))
        logger.debug("Saved member: group_id=%s, member_id=%s", member.group_id, member.id)

    @_translating_errors
    async def soft_delete(self, member_id: uuid.UUID, group_id: uuid.UUID, by: uuid.UUID) -> None:
        data = await self._get(member_id)
        if data is None or data.get("group_id") != str(group_id):
            raise NotFound("Member not found.")
        await self._ref(member_id).update(
            {
                "deleted_at": utcnow(),
                "deleted_by": str(by),
                "updated_at": utcnow(),
                "updated_by": str(by),
            }
        )
        logger.info("Soft-deleted member: group_id=%s, member_id=%s", group_id, member_id)

    @_translating_errors
    async def list_groups_for_identity(self, external_id: str) -> list[uuid.UUID]:
        group_ids: list[uuid.UUID] = []
        for data in await self._where("external_auth_id", external_id):
            if data.get("deleted_at") is not None:
                continue
            group_id = uuid.UUID(data["group_id"])
            if group_id not in group_ids:
                group_ids.append(group_id)
        return group_ids


class FirestoreChoreRepository(_FirestoreRepository, ChoreRepository):
    _collection_name = _CHORES

    @_translating_errors
    async def list(self, group_id: uuid.UUID, include_deleted: bool = False) -> list[Chore]:
        chores = [_chore_from_dict(d) for d in await self._where("group_id", str(group_id))]
        if include_deleted:
            return chores
        return [c for c in chores if not c.is_deleted]

    @_translating_errors
    async def fetch(self, chore_id: uuid.UUID) -> Chore | None:
        data = await self._get(chore_id)
        return _chore_from_dict(data) if data is not None else None

    @_translating_errors
    async def save(self, chore: Chore) -> None:
        await self._ref(chore.id).set(_chore_to_dict(chore))
        logger.debug("Saved chore: group_id=%s, chore_id=%s", chore.group_id, chore.id)

    @_translating_errors
    async def delete(self, chore_id: uuid.UUID, group_id: uuid.UUID) -> None:
        data = await self._get(chore_id)
        if data is None or data.get("group_id") != str(group_id):
            raise NotFound("Chore not found.")
        await self._ref(chore_id).delete()
        logger.info("Deleted chore document: group_id=%s, chore_id=%s", group_id, chore_id)


class FirestoreChoreLogRepository(_FirestoreRepository, ChoreLogRepository):
    _collection_name = _CHORE_LOGS

    @_translating_errors
    async def list(self, group_id: uuid.UUID, since: datetime | None = None) -> list[ChoreLog]:
        """記録日時の昇順（group_id + created_at の複合インデックスが必要）"""
        query = self._collection().where("group_id", "==", str(group_id))
        if since is not None:
            query = query.where("created_at", ">=", since)
        query = query.order_by("created_at", direction=firestore.Query.ASCENDING)
        return [_log_from_dict(snap.to_dict() or {}) async for snap in query.stream()]

    @_translating_errors
    async def save(self, log: ChoreLog) -> None:
        await self._ref(log.id).set(_log_to_dict(log))

    @_translating_errors
    async def delete(self, log_id: uuid.UUID, group_id: uuid.UUID) -> None:
        data = await self._get(log_id)
        if data is None or data.get("group_id") != str(group_id):
            raise NotFound("Chore log not found.")
        await self._ref(log_id).delete()


class FirestoreGroupInviteRepository(_FirestoreRepository, GroupInviteRepository):
    _collection_name = _GROUP_INVITES

    @_translating_errors
    async def fetch_by_code(self, code: str) -> GroupInvite | None:
        query = self._collection().where("code", "==", code).limit(1)
        async for snap in query.stream():
            return _invite_from_dict(snap.to_dict() or {})
        return None

    @_translating_errors
    async def list_by_group(self, group_id: uuid.UUID) -> list[GroupInvite]:
        """新しい順"""
        invites = [_invite_from_dict(d) for d in await self._where("group_id", str(group_id))]
        return sorted(invites, key=lambda i: i.created_at, reverse=True)

    @_translating_errors
    async def save(self, invite: GroupInvite) -> None:
        await self._ref(invite.id).set(_invite_to_dict(invite))

    @_translating_errors
    async def delete(self, invite_id: uuid.UUID) -> None:
        if await self._get(invite_id) is None:
            raise NotFound("Invite not found.")
        await self._ref(invite_id).delete()


class FirestoreReminderRepository(_FirestoreRepository, ReminderRepository):
    _collection_name = _REMINDERS

    @_translating_errors
    async def list(self, chore_id: uuid.UUID) -> list[Reminder]:
        return [_reminder_from_dict(d) for d in await self._where("chore_id", str(chore_id))]

    @_translating_errors
    async def save(self, reminder: Reminder) -> None:
        await self._ref(reminder.id).set(_reminder_to_dict(reminder))

    @_translating_errors
    async def delete(self, reminder_id: uuid.UUID, chore_id: uuid.UUID) -> None:
        data = await self._get(reminder_id)
        if data is None or data.get("chore_id") != str(chore_id):
            raise NotFound("Reminder not found.")
        await self._ref(reminder_id).delete()


# ── 変換ヘルパー ──────────────────────────────────────────────────────────


def _uuid_or_none(value: str | None) -> uuid.UUID | None:
    return uuid.UUID(value) if value else None


def _str_or_none(value: uuid.UUID | None) -> str | None:
    return str(value) if value is not None else None


def _deletion_from_dict(data: dict) -> Deletion | None:
    if data.get("deleted_at") is None:
        return None
    return Deletion(at=data["deleted_at"], by=uuid.UUID(data["deleted_by"]))


def _deletion_fields(deletion: Deletion | None) -> dict:
    if deletion is None:
        return {"deleted_at": None, "deleted_by": None}
    return {"deleted_at": deletion.at, "deleted_by": str(deletion.by)}


def _group_to_dict(group: Group) -> dict:
    return {
        "id": str(group.id),
        "name": group.name,
        "icon": group.icon,
        "members": [
            {"user_id": str(m.user_id), "role": m.role.value, "joined_at": m.joined_at}
            for m in group.members
        ],
        "created_at": group.created_at,
        "created_by": str(group.created_by),
        "updated_at": group.updated_at,
        "updated_by": str(group.updated_by),
    }


def _group_from_dict(data: dict) -> Group:
    return Group(
        id=uuid.UUID(data["id"]),
        name=data.get("name", ""),
        icon=data.get("icon"),
        members=tuple(
            Membership(
                user_id=uuid.UUID(m["user_id"]),
                role=Role.parse(m.get("role", Role.EDITOR.value)),
                joined_at=m.get("joined_at") or utcnow(),
            )
            for m in data.get("members") or []
        ),
        created_at=data["created_at"],
        created_by=uuid.UUID(data["created_by"]),
        updated_at=data.get("updated_at") or data["created_at"],
        updated_by=_uuid_or_none(data.get("updated_by")),
    )


def _member_to_dict(member: Member) -> dict:
    return {
        "id": str(member.id),
        "group_id": str(member.group_id),
        "display_name": member.display_name,
        "user_id": _str_or_none(member.user_id),
        "external_auth_id": member.external_auth_id,
        "avatar_url": member.avatar_url,
        "role": member.role.value,
        "created_at": member.created_at,
        "created_by": str(member.created_by),
        "updated_at": member.updated_at,
        "updated_by": str(member.updated_by),
        **_deletion_fields(member.deletion),
    }


def _member_from_dict(data: dict) -> Member:
    return Member(
        id=uuid.UUID(data["id"]),
        group_id=uuid.UUID(data["group_id"]),
        display_name=data.get("display_name") or "",
        user_id=_uuid_or_none(data.get("user_id")),
        external_auth_id=data.get("external_auth_id"),
        avatar_url=data.get("avatar_url"),
        role=Role.parse(data.get("role") or Role.EDITOR.value),
        created_at=data["created_at"],
        created_by=uuid.UUID(data["created_by"]),
        updated_at=data.get("updated_at") or data["created_at"],
        updated_by=_uuid_or_none(data.get("updated_by")),
        deletion=_deletion_from_dict(data),
    )


def _frequency_to_dict(frequency: ChoreFrequency) -> dict:
    if isinstance(frequency, Recurring):
        return {
            "type": "recurring",
            "period": frequency.rule.period.value,
            "interval": frequency.rule.interval,
            "weekdays": sorted(frequency.rule.weekdays),
        }
    if isinstance(frequency, CustomFrequency):
        return {"type": "custom", "description": frequency.description}
    return {"type": "on_demand"}


def _frequency_from_dict(data: dict | None) -> ChoreFrequency:
    if not data:
        return OnDemand()
    kind = data.get("type")
    if kind == "recurring":
        return Recurring(
            RecurrenceRule(
                period=RecurrencePeriod(data["period"]),
                interval=data.get("interval") or 1,
                weekdays=frozenset(data.get("weekdays") or ()),
            )
        )
    if kind == "custom":
        return CustomFrequency(description=data.get("description") or "")
    return OnDemand()


def _chore_to_dict(chore: Chore) -> dict:
    return {
        "id": str(chore.id),
        "group_id": str(chore.group_id),
        "title": chore.title,
        "weight": chore.weight,
        "notes": chore.notes,
        "is_favorite": chore.is_favorite,
        "category": chore.category.value,
        "default_assignee_id": _str_or_none(chore.default_assignee_id),
        "estimated_minutes": chore.estimated_minutes,
        "frequency": _frequency_to_dict(chore.frequency),
        "created_at": chore.created_at,
        "created_by": str(chore.created_by),
        "updated_at": chore.updated_at,
        "updated_by": str(chore.updated_by),
        **_deletion_fields(chore.deletion),
    }


def _chore_from_dict(data: dict) -> Chore:
    return Chore(
        id=uuid.UUID(data["id"]),
        group_id=uuid.UUID(data["group_id"]),
        title=data.get("title") or "",
        weight=data.get("weight") or 1,
        notes=data.get("notes"),
        is_favorite=bool(data.get("is_favorite", False)),
        category=ChoreCategory(data.get("category") or ChoreCategory.OTHER.value),
        default_assignee_id=_uuid_or_none(data.get("default_assignee_id")),
        estimated_minutes=data.get("estimated_minutes"),
        frequency=_frequency_from_dict(data.get("frequency")),
        created_at=data["created_at"],
        created_by=uuid.UUID(data["created_by"]),
        updated_at=data.get("updated_at") or data["created_at"],
        updated_by=_uuid_or_none(data.get("updated_by")),
        deletion=_deletion_from_dict(data),
    )


def _log_to_dict(log: ChoreLog) -> dict:
    return {
        "id": str(log.id),
        "chore_id": str(log.chore_id),
        "group_id": str(log.group_id),
        "performer_id": str(log.performer_id),
        "weight": log.weight,
        "memo": log.memo,
        "batch_id": str(log.batch_id),
        "performer_count": log.performer_count,
        "started_at": log.started_at,
        "duration_minutes": log.duration_minutes,
        "created_at": log.created_at,
        "created_by": str(log.created_by),
        "updated_at": log.updated_at,
        "updated_by": str(log.updated_by),
    }


def _log_from_dict(data: dict) -> ChoreLog:
    return ChoreLog(
        id=uuid.UUID(data["id"]),
        chore_id=uuid.UUID(data["chore_id"]),
        group_id=uuid.UUID(data["group_id"]),
        performer_id=uuid.UUID(data["performer_id"]),
        weight=float(data.get("weight") or 0.0),
        memo=data.get("memo"),
        batch_id=uuid.UUID(data["batch_id"]),
        performer_count=data.get("performer_count") or 1,
        started_at=data.get("started_at"),
        duration_minutes=data.get("duration_minutes"),
        created_at=data["created_at"],
        created_by=uuid.UUID(data["created_by"]),
        updated_at=data.get("updated_at") or data["created_at"],
        updated_by=_uuid_or_none(data.get("updated_by")),
    )


def _invite_to_dict(invite: GroupInvite) -> dict:
    return {
        "id": str(invite.id),
        "group_id": str(invite.group_id),
        "code": invite.code,
        "created_by": str(invite.created_by),
        "created_at": invite.created_at,
        "expires_at": invite.expires_at,
        "max_uses": invite.max_uses,
        "current_uses": invite.current_uses,
        "is_active": invite.is_active,
    }


def _invite_from_dict(data: dict) -> GroupInvite:
    return GroupInvite(
        id=uuid.UUID(data["id"]),
        group_id=uuid.UUID(data["group_id"]),
        code=data["code"],
        created_by=uuid.UUID(data["created_by"]),
        created_at=data["created_at"],
        expires_at=data.get("expires_at"),
        max_uses=data.get("max_uses"),
        current_uses=data.get("current_uses") or 0,
        is_active=bool(data.get("is_active", True)),
    )


def _reminder_to_dict(reminder: Reminder) -> dict:
    return {
        "id": str(reminder.id),
        "chore_id": str(reminder.chore_id),
        "group_id": str(reminder.group_id),
        "weekdays": sorted(reminder.schedule.weekdays),
        "hour": reminder.schedule.hour,
        "minute": reminder.schedule.minute,
        "second": reminder.schedule.second,
        "notification_type": reminder.notification_type.value,
        "is_enabled": reminder.is_enabled,
        "created_at": reminder.created_at,
        "updated_at": reminder.updated_at,
    }


def _reminder_from_dict(data: dict) -> Reminder:
    return Reminder(
        id=uuid.UUID(data["id"]),
        chore_id=uuid.UUID(data["chore_id"]),
        group_id=uuid.UUID(data["group_id"]),
        schedule=ReminderSchedule(
            weekdays=frozenset(data.get("weekdays") or ()),
            hour=data.get("hour") or 0,
            minute=data.get("minute") or 0,
            second=data.get("second") or 0,
        ),
        notification_type=NotificationType(data.get("notification_type") or NotificationType.PUSH.value),
        is_enabled=bool(data.get("is_enabled", True)),
        created_at=data["created_at"],
        updated_at=data.get("updated_at") or data["created_at"],
    )
