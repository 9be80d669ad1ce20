"""GroupService - グループとメンバー構成の管理

不変条件:
- メンバーが1人以上いるグループには必ず admin が1人以上いる
- userId はグループ内で一意
- メンバー構成・メタデータを変える操作は admin のみ（自分自身の脱退を除く）
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

from chorebook.domain.errors import NotFound, Unauthorized, ValidationFailed
from chorebook.domain.models import (
    UNSET,
    Group,
    GroupInvite,
    Member,
    Membership,
    Role,
    Unset,
    ensure_aware,
    utcnow,
)
from chorebook.domain.ports import (
    GroupInviteRepository,
    GroupRepository,
    MemberRepository,
    UnitOfWork,
)
from chorebook.logging_config import log_context
from chorebook.services.unit_of_work import CompensatingUnitOfWork

logger = logging.getLogger(__name__)

LAST_ADMIN_REASON = "Group must contain at least one admin."
EMPTY_NAME_REASON = "Group name must not be empty."
DUPLICATE_MEMBER_REASON = "User is already a member of this group."
INVALID_INVITE_REASON = "Invite code is invalid or expired."
MAX_INVITE_CODE_ATTEMPTS = 10
# 表示名を指定せずに参加したログインユーザーの表示名
DEFAULT_DISPLAY_NAME = "Member"


@dataclass(frozen=True)
class MemberInput:
    """ログインユーザーをメンバーとして追加するための入力（display_name が空なら DEFAULT_DISPLAY_NAME）"""

    user_id: uuid.UUID
    role: Role = Role.EDITOR
    display_name: str = ""
    external_auth_id: str | None = None


@dataclass(frozen=True)
class GroupDraft:
    name: str
    icon: str | None = None
    initial_members: tuple[MemberInput, ...] = ()
    owner_display_name: str = ""
    owner_external_auth_id: str | None = None


@dataclass(frozen=True)
class GroupPatch:
    name: str | None | Unset = UNSET
    icon: str | None | Unset = UNSET


@dataclass(frozen=True)
class MemberDraft:
    """ログインユーザーに紐づかない参加者（子供など）の入力"""

    display_name: str
    avatar_url: str | None = None


@dataclass(frozen=True)
class MemberPatch:
    display_name: str | None | Unset = UNSET
    avatar_url: str | None | Unset = UNSET


class GroupService:
    """
    グループのライフサイクルとメンバーのロールを管理する。

    メンバー構成の変更はグループ（所属リスト）と Member レコードの
    2つのリポジトリにまたがるため、UnitOfWork でまとめて書き込む。
    """

    def __init__(
        self,
        group_repository: GroupRepository,
        member_repository: MemberRepository,
        invite_repository: GroupInviteRepository | None = None,
        clock: Callable[[], datetime] = utcnow,
        unit_of_work_factory: Callable[[], UnitOfWork] = CompensatingUnitOfWork,
        code_generator: Callable[[], str] = GroupInvite.generate_code,
    ) -> None:
        """
        Args:
            group_repository: グループの永続化
            member_repository: メンバーの永続化
            invite_repository: 招待コードの永続化（None の場合は招待機能を無効化）
            clock: 現在時刻を返す関数
            unit_of_work_factory: 複数リポジトリへの書き込み単位を生成する関数
            code_generator: 招待コード生成関数
        """
        self._groups = group_repository
        self._members = member_repository
        self._invites = invite_repository
        self._clock = clock
        self._new_unit_of_work = unit_of_work_factory
        self._generate_code = code_generator

    # ── グループ ────────────────────────────────────────────────────────────

    async def create_group(self, draft: GroupDraft, owner_id: uuid.UUID) -> Group:
        """
        グループを作成する。作成者は admin として登録される。

        Raises:
            ValidationFailed: 名前が空、またはメンバーが重複している場合
        """
        name = _require_name(draft.name)
        now = self._clock()

        inputs = [
            MemberInput(
                user_id=owner_id,
                role=Role.ADMIN,
                display_name=draft.owner_display_name,
                external_auth_id=draft.owner_external_auth_id,
            ),
            *draft.initial_members,
        ]
        seen: set[uuid.UUID] = set()
        for member_input in inputs:
            if member_input.user_id in seen:
                raise ValidationFailed(DUPLICATE_MEMBER_REASON)
            seen.add(member_input.user_id)

        memberships = [Membership(user_id=m.user_id, role=m.role, joined_at=now) for m in inputs]
        _ensure_admin_present(memberships)

        group = Group(
            name=name,
            icon=_clean_optional(draft.icon),
            members=tuple(memberships),
            created_by=owner_id,
            created_at=now,
            updated_at=now,
        )

        uow = self._new_unit_of_work()
        for member_input in inputs:
            record = self._new_member_record(group.id, member_input, owner_id, now)
            self._stage_new_member(uow, record, owner_id)
        uow.add(lambda: self._groups.save(group))
        await uow.commit()

        logger.info(
            "Created group: group_id=%s, members=%d",
            group.id,
            len(memberships),
            extra=log_context(group_id=group.id, actor_id=owner_id),
        )
        return group

    async def get_group(self, group_id: uuid.UUID) -> Group:
        return await self._load_group(group_id)

    async def update_group(self, group_id: uuid.UUID, actor_id: uuid.UUID, patch: GroupPatch) -> Group:
        """グループ名・アイコンを更新する（admin のみ）"""
        group = await self._load_group(group_id)
        self._require_admin(group, actor_id)

        name: str | Unset = UNSET
        if patch.name is not UNSET:
            name = _require_name(patch.name or "")
        icon: str | None | Unset = UNSET
        if patch.icon is not UNSET:
            icon = _clean_optional(patch.icon)

        updated = group.updating(actor_id, self._clock(), name=name, icon=icon)
        await self._groups.save(updated)
        logger.info("Updated group: group_id=%s", group_id)
        return updated

    # ── メンバー構成 ──────────────────────────────────────────────────────────

    async def add_member(self, group_id: uuid.UUID, actor_id: uuid.UUID, member: MemberInput) -> Group:
        """ログインユーザーをメンバーとして追加する（admin のみ）"""
        group = await self._load_group(group_id)
        self._require_admin(group, actor_id)
        if group.has_member(member.user_id):
            raise ValidationFailed(DUPLICATE_MEMBER_REASON)

        now = self._clock()
        memberships = [*group.members, Membership(user_id=member.user_id, role=member.role, joined_at=now)]
        _ensure_admin_present(memberships)
        updated = group.with_members(memberships, actor_id, now)

        uow = self._new_unit_of_work()
        self._stage_new_member(uow, self._new_member_record(group_id, member, actor_id, now), actor_id)
        self._stage_group(uow, updated, group)
        await uow.commit()

        logger.info(
            "Added member: group_id=%s, user_id=%s, role=%s",
            group_id,
            member.user_id,
            member.role.value,
            extra=log_context(group_id=group_id, actor_id=actor_id, user_id=member.user_id),
        )
        return updated

    async def update_member_role(
        self,
        group_id: uuid.UUID,
        actor_id: uuid.UUID,
        member_id: uuid.UUID,
        role: Role,
    ) -> Group:
        """
        メンバーのロールを変更する（admin のみ）。

        Args:
            member_id: 対象メンバーの userId

        Raises:
            ValidationFailed: 最後の admin を admin 以外に変更しようとした場合
        """
        group = await self._load_group(group_id)
        self._require_admin(group, actor_id)
        if not group.has_member(member_id):
            raise NotFound("Member not found in group.")

        memberships = [
            Membership(user_id=m.user_id, role=role, joined_at=m.joined_at) if m.user_id == member_id else m
            for m in group.members
        ]
        try:
            _ensure_admin_present(memberships)
        except ValidationFailed:
            logger.warning("Rejected role change of last admin: group_id=%s, user_id=%s", group_id, member_id)
            raise

        now = self._clock()
        updated = group.with_members(memberships, actor_id, now)

        uow = self._new_unit_of_work()
        self._stage_group(uow, updated, group)
        record = await self._find_member_record(group_id, member_id)
        if record is not None:
            changed = record.updating(actor_id, now, role=role)
            uow.add(lambda: self._members.save(changed), lambda: self._members.save(record))
        await uow.commit()

        logger.info(
            "Updated member role: group_id=%s, user_id=%s, role=%s",
            group_id,
            member_id,
            role.value,
            extra=log_context(group_id=group_id, actor_id=actor_id, user_id=member_id),
        )
        return updated

    async def remove_member(self, group_id: uuid.UUID, actor_id: uuid.UUID, member_id: uuid.UUID) -> Group:
        """
        メンバーをグループから外す。

        admin は他のメンバーを外せる。admin でなくても自分自身は脱退できる。
        外した結果 admin がいなくなる場合は何も変更せずに失敗する。

        Args:
            member_id: 対象メンバーの userId
        """
        group = await self._load_group(group_id)
        if actor_id != member_id:
            self._require_admin(group, actor_id)

        removed = group.membership_of(member_id)
        if removed is None:
            raise NotFound("Member not found in group.")

        remaining = [m for m in group.members if m.user_id != member_id]
        if removed.role is Role.ADMIN and not any(m.role is Role.ADMIN for m in remaining):
            logger.warning("Rejected removal of last admin: group_id=%s, user_id=%s", group_id, member_id)
            raise ValidationFailed(LAST_ADMIN_REASON)

        now = self._clock()
        updated = group.with_members(remaining, actor_id, now)

        uow = self._new_unit_of_work()
        self._stage_group(uow, updated, group)
        record = await self._find_member_record(group_id, member_id)
        if record is not None:
            uow.add(
                lambda: self._members.soft_delete(record.id, group_id, actor_id),
                lambda: self._members.save(record),
            )
        await uow.commit()

        logger.info(
            "Removed member: group_id=%s, user_id=%s, by=%s",
            group_id,
            member_id,
            actor_id,
            extra=log_context(group_id=group_id, actor_id=actor_id, user_id=member_id),
        )
        return updated

    # ── Member レコード ───────────────────────────────────────────────────────

    async def add_participant(self, group_id: uuid.UUID, actor_id: uuid.UUID, draft: MemberDraft) -> Member:
        """ログインユーザーに紐づかない参加者を追加する（admin のみ）"""
        group = await self._load_group(group_id)
        self._require_admin(group, actor_id)

        now = self._clock()
        member = Member(
            group_id=group_id,
            display_name=_require_display_name(draft.display_name),
            avatar_url=_clean_optional(draft.avatar_url),
            created_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        await self._members.save(member)
        logger.info("Added participant: group_id=%s, member_id=%s", group_id, member.id)
        return member

    async def update_member(
        self,
        group_id: uuid.UUID,
        member_id: uuid.UUID,
        actor_id: uuid.UUID,
        patch: MemberPatch,
    ) -> Member:
        """
        表示名・アバターを更新する。admin か、本人のみ可能。

        Args:
            member_id: Member レコードの id
        """
        member = await self._members.fetch(member_id)
        if member is None or member.group_id != group_id:
            raise NotFound("Member not found.")
        group = await self._load_group(group_id)
        if group.role_of(actor_id) is not Role.ADMIN and member.user_id != actor_id:
            raise Unauthorized()

        display_name: str | Unset = UNSET
        if patch.display_name is not UNSET:
            display_name = _require_display_name(patch.display_name or "")
        avatar_url: str | None | Unset = UNSET
        if patch.avatar_url is not UNSET:
            avatar_url = _clean_optional(patch.avatar_url)

        updated = member.updating(actor_id, self._clock(), display_name=display_name, avatar_url=avatar_url)
        await self._members.save(updated)
        logger.info("Updated member: group_id=%s, member_id=%s", group_id, member_id)
        return updated

    async def list_members(self, group_id: uuid.UUID, include_deleted: bool = False) -> list[Member]:
        return await self._members.list(group_id, include_deleted=include_deleted)

    async def list_groups_for_identity(self, external_auth_id: str) -> list[uuid.UUID]:
        return await self._members.list_groups_for_identity(external_auth_id)

    # ── 招待 ────────────────────────────────────────────────────────────────

    async def generate_invite_code(
        self,
        group_id: uuid.UUID,
        actor_id: uuid.UUID,
        expires_at: datetime | None = None,
        max_uses: int | None = None,
    ) -> GroupInvite:
        """
        招待コードを発行する（admin のみ）。

        コードが既存のものと衝突した場合は最大10回まで再生成する。

        Raises:
            ValidationFailed: 再生成を使い切った場合、または入力が不正な場合
        """
        invites = self._require_invites()
        group = await self._load_group(group_id)
        self._require_admin(group, actor_id)

        now = self._clock()
        expires_at = ensure_aware(expires_at)
        if max_uses is not None and max_uses < 1:
            raise ValidationFailed("Max uses must be positive when provided.")
        if expires_at is not None and expires_at <= now:
            raise ValidationFailed("Invite expiration must be in the future.")

        for attempt in range(1, MAX_INVITE_CODE_ATTEMPTS + 1):
            code = self._generate_code()
            if await invites.fetch_by_code(code) is not None:
                logger.debug("Invite code collision: attempt=%d", attempt)
                continue
            invite = GroupInvite(
                group_id=group_id,
                code=code,
                expires_at=expires_at,
                max_uses=max_uses,
                created_by=actor_id,
                created_at=now,
            )
            await invites.save(invite)
            logger.info("Generated invite: group_id=%s, invite_id=%s", group_id, invite.id)
            return invite

        logger.error("Invite code generation exhausted: group_id=%s", group_id)
        raise ValidationFailed("Failed to generate a unique invite code.")

    async def join_group_with_invite_code(
        self,
        code: str,
        user_id: uuid.UUID,
        display_name: str = "",
        external_auth_id: str | None = None,
    ) -> Group:
        """
        招待コードでグループに参加する。

        処理フロー:
        1. コードで招待を取得し、有効であることを確認
        2. 既にメンバーでないことを確認
        3. Member 作成・所属リスト更新・招待の使用回数加算を1単位で書き込む
        """
        invites = self._require_invites()
        invite = await invites.fetch_by_code(GroupInvite.normalize_code(code))
        now = self._clock()
        if invite is None or not invite.is_valid(now):
            raise ValidationFailed(INVALID_INVITE_REASON)

        group = await self._load_group(invite.group_id)
        if group.has_member(user_id):
            raise ValidationFailed(DUPLICATE_MEMBER_REASON)

        member_input = MemberInput(
            user_id=user_id,
            role=Role.EDITOR,
            display_name=display_name,
            external_auth_id=external_auth_id,
        )
        updated = group.with_members(
            [*group.members, Membership(user_id=user_id, role=Role.EDITOR, joined_at=now)],
            user_id,
            now,
        )
        used = invite.incrementing_uses()

        uow = self._new_unit_of_work()
        self._stage_new_member(uow, self._new_member_record(group.id, member_input, user_id, now), user_id)
        self._stage_group(uow, updated, group)
        uow.add(lambda: invites.save(used), lambda: invites.save(invite))
        await uow.commit()

        logger.info(
            "User joined group: group_id=%s, user_id=%s, invite_id=%s",
            group.id,
            user_id,
            invite.id,
            extra=log_context(group_id=group.id, actor_id=user_id, invite_id=invite.id),
        )
        return updated

    async def list_invites(self, group_id: uuid.UUID, actor_id: uuid.UUID) -> list[GroupInvite]:
        """招待一覧（メンバーであればロールは問わない）"""
        invites = self._require_invites()
        group = await self._load_group(group_id)
        if not group.has_member(actor_id):
            raise Unauthorized()
        return await invites.list_by_group(group_id)

    async def deactivate_invite(self, group_id: uuid.UUID, actor_id: uuid.UUID, code: str) -> GroupInvite:
        """招待を無効化する（admin のみ）"""
        invites = self._require_invites()
        group = await self._load_group(group_id)
        self._require_admin(group, actor_id)

        invite = await invites.fetch_by_code(GroupInvite.normalize_code(code))
        if invite is None or invite.group_id != group_id:
            raise NotFound("Invite not found.")

        deactivated = invite.deactivated()
        await invites.save(deactivated)
        logger.info("Deactivated invite: group_id=%s, invite_id=%s", group_id, invite.id)
        return deactivated

    # ── 内部ヘルパー ──────────────────────────────────────────────────────────

    async def _load_group(self, group_id: uuid.UUID) -> Group:
        group = await self._groups.fetch(group_id)
        if group is None:
            raise NotFound("Group not found.")
        return group

    def _require_invites(self) -> GroupInviteRepository:
        if self._invites is None:
            raise RuntimeError("Invite repository is not configured")
        return self._invites

    @staticmethod
    def _require_admin(group: Group, actor_id: uuid.UUID) -> None:
        if group.role_of(actor_id) is not Role.ADMIN:
            logger.warning(
                "Unauthorized group mutation: group_id=%s, actor_id=%s",
                group.id,
                actor_id,
                extra=log_context(group_id=group.id, actor_id=actor_id),
            )
            raise Unauthorized()

    async def _find_member_record(self, group_id: uuid.UUID, user_id: uuid.UUID) -> Member | None:
        for member in await self._members.list(group_id):
            if member.user_id == user_id:
                return member
        return None

    @staticmethod
    def _new_member_record(
        group_id: uuid.UUID, member_input: MemberInput, actor_id: uuid.UUID, now: datetime
    ) -> Member:
        return Member(
            group_id=group_id,
            user_id=member_input.user_id,
            external_auth_id=member_input.external_auth_id,
            display_name=member_input.display_name.strip() or DEFAULT_DISPLAY_NAME,
            role=member_input.role,
            created_by=actor_id,
            created_at=now,
            updated_at=now,
        )

    def _stage_new_member(self, uow: UnitOfWork, record: Member, actor_id: uuid.UUID) -> None:
        uow.add(
            lambda: self._members.save(record),
            lambda: self._members.soft_delete(record.id, record.group_id, actor_id),
        )

    def _stage_group(self, uow: UnitOfWork, updated: Group, previous: Group) -> None:
        uow.add(lambda: self._groups.save(updated), lambda: self._groups.save(previous))


def _require_name(name: str) -> str:
    trimmed = name.strip()
    if not trimmed:
        raise ValidationFailed(EMPTY_NAME_REASON)
    return trimmed


def _require_display_name(name: str) -> str:
    trimmed = name.strip()
    if not trimmed:
        raise ValidationFailed("Member display name must not be empty.")
    return trimmed


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def _ensure_admin_present(memberships: Iterable[Membership]) -> None:
    memberships = list(memberships)
    if memberships and not any(m.role is Role.ADMIN for m in memberships):
        raise ValidationFailed(LAST_ADMIN_REASON)
