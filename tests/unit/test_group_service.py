"""GroupService のユニットテスト

InMemory リポジトリを使い、admin 不変条件・権限・招待フローを検証する。
"""

import uuid
from datetime import timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from chorebook.domain.errors import NotFound, RepositoryFailure, Unauthorized, ValidationFailed
from chorebook.domain.models import GroupInvite, Role
from chorebook.services.group_service import (
    DEFAULT_DISPLAY_NAME,
    LAST_ADMIN_REASON,
    GroupDraft,
    GroupPatch,
    GroupService,
    MemberDraft,
    MemberInput,
    MemberPatch,
)


class TestCreateGroup:
    """create_group() のテスト"""

    async def test_owner_becomes_admin(self, group_service, member_repository, outsider_id):
        """作成者が admin として登録され、Member レコードも作られる"""
        # Act
        group = await group_service.create_group(
            GroupDraft(name="  シェアハウス  ", owner_display_name="Dan"), outsider_id
        )

        # Assert
        assert group.name == "シェアハウス"
        assert group.role_of(outsider_id) is Role.ADMIN
        records = await member_repository.list(group.id)
        assert [r.user_id for r in records] == [outsider_id]
        assert records[0].display_name == "Dan"

    async def test_member_records_without_display_name(self, group_service, member_repository, outsider_id):
        """表示名を省略した作成者・初期メンバーも空でない表示名を持つ"""
        # Arrange
        child = uuid.uuid4()
        draft = GroupDraft(name="家", initial_members=(MemberInput(user_id=child, display_name=" Kai "),))

        # Act
        group = await group_service.create_group(draft, outsider_id)

        # Assert
        names = {r.user_id: r.display_name for r in await member_repository.list(group.id)}
        assert names == {outsider_id: DEFAULT_DISPLAY_NAME, child: "Kai"}

    async def test_empty_name_is_rejected(self, group_service, outsider_id):
        """空白のみの名前は ValidationFailed"""
        with pytest.raises(ValidationFailed):
            await group_service.create_group(GroupDraft(name="   "), outsider_id)

    async def test_duplicate_initial_member_is_rejected(self, group_service, outsider_id):
        """作成者を初期メンバーに重複指定すると ValidationFailed"""
        draft = GroupDraft(name="家", initial_members=(MemberInput(user_id=outsider_id),))

        with pytest.raises(ValidationFailed):
            await group_service.create_group(draft, outsider_id)

    async def test_initial_members_are_saved(self, group_service, group_repository, outsider_id):
        """初期メンバーは指定のロールで所属する"""
        # Arrange
        child = uuid.uuid4()
        draft = GroupDraft(name="家", initial_members=(MemberInput(user_id=child, role=Role.VIEWER),))

        # Act
        group = await group_service.create_group(draft, outsider_id)

        # Assert
        stored = await group_repository.fetch(group.id)
        assert stored is not None
        assert stored.role_of(child) is Role.VIEWER
        assert stored.admin_count == 1


class TestUpdateGroup:
    """update_group() のテスト"""

    async def test_admin_can_rename(self, group_service, sample_group, admin_id, now):
        """admin は名前を変更でき、アイコンは UNSET なら維持される"""
        updated = await group_service.update_group(sample_group.id, admin_id, GroupPatch(name="新しい家"))

        assert updated.name == "新しい家"
        assert updated.icon == sample_group.icon
        assert updated.updated_by == admin_id
        assert updated.updated_at == now

    async def test_icon_can_be_cleared(self, group_service, sample_group, admin_id):
        """icon=None で明示的に削除できる"""
        updated = await group_service.update_group(sample_group.id, admin_id, GroupPatch(icon=None))

        assert updated.icon is None
        assert updated.name == sample_group.name

    async def test_editor_cannot_update(self, group_service, sample_group, editor_id):
        """editor は Unauthorized"""
        with pytest.raises(Unauthorized):
            await group_service.update_group(sample_group.id, editor_id, GroupPatch(name="x"))

    async def test_name_cannot_be_cleared(self, group_service, sample_group, admin_id):
        """name=None は ValidationFailed"""
        with pytest.raises(ValidationFailed):
            await group_service.update_group(sample_group.id, admin_id, GroupPatch(name=None))

    async def test_missing_group(self, group_service, admin_id):
        """存在しないグループは NotFound"""
        with pytest.raises(NotFound):
            await group_service.update_group(uuid.uuid4(), admin_id, GroupPatch(name="x"))


class TestMembership:
    """メンバー構成の変更と admin 不変条件"""

    async def test_last_admin_cannot_leave(self, group_service, sample_group, admin_id):
        """唯一の admin は脱退できない"""
        with pytest.raises(ValidationFailed) as exc_info:
            await group_service.remove_member(sample_group.id, admin_id, admin_id)

        assert exc_info.value.reason == LAST_ADMIN_REASON

    async def test_admin_can_leave_after_promoting_another(
        self, group_service, group_repository, sample_group, admin_id, editor_id, viewer_id
    ):
        """別の admin を追加すれば元の admin は脱退できる"""
        # Arrange
        new_admin = uuid.uuid4()
        await group_service.add_member(sample_group.id, admin_id, MemberInput(user_id=new_admin, role=Role.ADMIN))

        # Act
        group = await group_service.remove_member(sample_group.id, admin_id, admin_id)

        # Assert
        assert not group.has_member(admin_id)
        assert group.role_of(new_admin) is Role.ADMIN
        stored = await group_repository.fetch(sample_group.id)
        assert [m.user_id for m in stored.members] == [editor_id, viewer_id, new_admin]

    async def test_sole_admin_group_scenario(self, group_service, outsider_id):
        """admin 1人のグループ: 脱退失敗 → admin 追加 → 脱退成功で B だけが残る"""
        # Arrange
        group = await group_service.create_group(GroupDraft(name="G"), outsider_id)
        b = uuid.uuid4()

        # Act / Assert
        with pytest.raises(ValidationFailed):
            await group_service.remove_member(group.id, outsider_id, outsider_id)
        await group_service.add_member(group.id, outsider_id, MemberInput(user_id=b, role=Role.ADMIN))
        result = await group_service.remove_member(group.id, outsider_id, outsider_id)

        assert [(m.user_id, m.role) for m in result.members] == [(b, Role.ADMIN)]

    async def test_add_duplicate_member_is_rejected(self, group_service, sample_group, admin_id, editor_id):
        """既存メンバーの追加は ValidationFailed"""
        with pytest.raises(ValidationFailed):
            await group_service.add_member(sample_group.id, admin_id, MemberInput(user_id=editor_id))

    async def test_editor_cannot_add_member(self, group_service, sample_group, editor_id):
        """editor はメンバーを追加できない"""
        with pytest.raises(Unauthorized):
            await group_service.add_member(sample_group.id, editor_id, MemberInput(user_id=uuid.uuid4()))

    async def test_add_member_creates_member_record(self, group_service, member_repository, sample_group, admin_id):
        """追加したユーザーの Member レコードが作られる"""
        # Arrange
        user = uuid.uuid4()

        # Act
        await group_service.add_member(
            sample_group.id, admin_id, MemberInput(user_id=user, display_name="Eve", external_auth_id="auth-eve")
        )

        # Assert
        records = await member_repository.list(sample_group.id)
        added = [r for r in records if r.user_id == user]
        assert len(added) == 1
        assert added[0].external_auth_id == "auth-eve"

    async def test_blank_display_name_falls_back_to_default(
        self, group_service, member_repository, sample_group, admin_id
    ):
        """空白のみの表示名は既定の表示名で保存される"""
        # Arrange
        user = uuid.uuid4()

        # Act
        await group_service.add_member(sample_group.id, admin_id, MemberInput(user_id=user, display_name="   "))

        # Assert
        records = await member_repository.list(sample_group.id)
        added = next(r for r in records if r.user_id == user)
        assert added.display_name == DEFAULT_DISPLAY_NAME

    async def test_demoting_last_admin_is_rejected(self, group_service, group_repository, sample_group, admin_id):
        """最後の admin を editor にする変更は拒否され、保存されない"""
        with pytest.raises(ValidationFailed):
            await group_service.update_member_role(sample_group.id, admin_id, admin_id, Role.EDITOR)

        stored = await group_repository.fetch(sample_group.id)
        assert stored.role_of(admin_id) is Role.ADMIN

    async def test_promote_editor(self, group_service, member_repository, sample_group, admin_id, editor_id):
        """editor を admin に変更すると Member レコードのロールも同期される"""
        group = await group_service.update_member_role(sample_group.id, admin_id, editor_id, Role.ADMIN)

        assert group.admin_count == 2
        records = await member_repository.list(sample_group.id)
        assert next(r for r in records if r.user_id == editor_id).role is Role.ADMIN

    async def test_update_role_of_non_member(self, group_service, sample_group, admin_id, outsider_id):
        """メンバーでないユーザーのロール変更は NotFound"""
        with pytest.raises(NotFound):
            await group_service.update_member_role(sample_group.id, admin_id, outsider_id, Role.ADMIN)

    async def test_non_admin_can_leave_self(self, group_service, member_repository, sample_group, viewer_id):
        """admin でなくても自分自身は脱退でき、Member レコードは論理削除される"""
        # Act
        group = await group_service.remove_member(sample_group.id, viewer_id, viewer_id)

        # Assert
        assert not group.has_member(viewer_id)
        active = await member_repository.list(sample_group.id)
        assert viewer_id not in [r.user_id for r in active]
        everyone = await member_repository.list(sample_group.id, include_deleted=True)
        removed = next(r for r in everyone if r.user_id == viewer_id)
        assert removed.deletion is not None
        assert removed.deletion.by == viewer_id

    async def test_editor_cannot_remove_others(self, group_service, sample_group, editor_id, viewer_id):
        """editor は他人を外せない"""
        with pytest.raises(Unauthorized):
            await group_service.remove_member(sample_group.id, editor_id, viewer_id)

    async def test_remove_unknown_member(self, group_service, sample_group, admin_id, outsider_id):
        """所属していないユーザーの削除は NotFound"""
        with pytest.raises(NotFound):
            await group_service.remove_member(sample_group.id, admin_id, outsider_id)


class TestMemberRecords:
    """参加者（Member レコード）の操作"""

    async def test_add_participant_without_login(self, group_service, sample_group, admin_id):
        """ログインしない参加者を追加できる"""
        member = await group_service.add_participant(sample_group.id, admin_id, MemberDraft(display_name=" 子供 "))

        assert member.display_name == "子供"
        assert member.user_id is None
        assert member.group_id == sample_group.id

    async def test_add_participant_requires_admin(self, group_service, sample_group, editor_id):
        """editor は参加者を追加できない"""
        with pytest.raises(Unauthorized):
            await group_service.add_participant(sample_group.id, editor_id, MemberDraft(display_name="x"))

    async def test_member_can_update_self(self, group_service, sample_group, sample_members, viewer_id):
        """本人は自分の表示名を変更できる"""
        carol = sample_members[2]

        updated = await group_service.update_member(
            sample_group.id, carol.id, viewer_id, MemberPatch(display_name="Caroline")
        )

        assert updated.display_name == "Caroline"
        assert updated.avatar_url is None

    async def test_member_cannot_update_others(self, group_service, sample_group, sample_members, viewer_id):
        """本人以外（admin を除く）は Unauthorized"""
        bob = sample_members[1]

        with pytest.raises(Unauthorized):
            await group_service.update_member(sample_group.id, bob.id, viewer_id, MemberPatch(display_name="x"))

    async def test_list_groups_for_identity(self, group_service, sample_group):
        """外部認証 ID からグループを逆引きできる"""
        assert await group_service.list_groups_for_identity("auth-Alice") == [sample_group.id]
        assert await group_service.list_groups_for_identity("auth-unknown") == []


class TestInvites:
    """招待コードのテスト"""

    async def test_generate_invite_code_format(self, group_service, sample_group, admin_id):
        """コードは XXXX-YYYY 形式で、紛らわしい文字を含まない"""
        invite = await group_service.generate_invite_code(sample_group.id, admin_id)

        part1, part2 = invite.code.split("-")
        assert len(part1) == 4 and len(part2) == 4
        assert not set(invite.code) & set("IO01")
        assert invite.is_active

    async def test_only_admin_can_generate(self, group_service, sample_group, editor_id):
        """editor は招待コードを発行できない"""
        with pytest.raises(Unauthorized):
            await group_service.generate_invite_code(sample_group.id, editor_id)

    async def test_single_use_invite(self, group_service, invite_repository, sample_group, admin_id):
        """max_uses=1 の招待は1回使うと無効になる"""
        # Arrange
        invite = await group_service.generate_invite_code(sample_group.id, admin_id, max_uses=1)
        first, second = uuid.uuid4(), uuid.uuid4()

        # Act
        group = await group_service.join_group_with_invite_code(invite.code.lower(), first)

        # Assert
        assert group.role_of(first) is Role.EDITOR
        used = await invite_repository.fetch_by_code(invite.code)
        assert used.current_uses == 1
        with pytest.raises(ValidationFailed):
            await group_service.join_group_with_invite_code(invite.code, second)

    async def test_joiner_record_gets_display_name(self, group_service, member_repository, sample_group, admin_id):
        """表示名なしで参加しても既定の表示名、指定すればその名前で保存される"""
        # Arrange
        invite = await group_service.generate_invite_code(sample_group.id, admin_id)
        anonymous, named = uuid.uuid4(), uuid.uuid4()

        # Act
        await group_service.join_group_with_invite_code(invite.code, anonymous, display_name="  ")
        await group_service.join_group_with_invite_code(invite.code, named, display_name=" Fay ")

        # Assert
        names = {r.user_id: r.display_name for r in await member_repository.list(sample_group.id)}
        assert names[anonymous] == DEFAULT_DISPLAY_NAME
        assert names[named] == "Fay"

    async def test_naive_expiration_is_treated_as_utc(self, group_service, sample_group, admin_id, now):
        """タイムゾーンなしの有効期限は UTC とみなして検証・保存する"""
        naive_now = now.replace(tzinfo=None)

        invite = await group_service.generate_invite_code(
            sample_group.id, admin_id, expires_at=naive_now + timedelta(days=7)
        )
        with pytest.raises(ValidationFailed):
            await group_service.generate_invite_code(sample_group.id, admin_id, expires_at=naive_now)

        assert invite.expires_at == now + timedelta(days=7)
        assert invite.expires_at.tzinfo is timezone.utc

    async def test_expired_invite(self, group_service, invite_repository, sample_group, admin_id, now):
        """期限切れの招待は ValidationFailed"""
        # Arrange
        await invite_repository.save(
            GroupInvite(
                group_id=sample_group.id,
                code="ABCD-EFGH",
                created_by=admin_id,
                expires_at=now - timedelta(minutes=1),
            )
        )

        # Act / Assert
        with pytest.raises(ValidationFailed):
            await group_service.join_group_with_invite_code("ABCD-EFGH", uuid.uuid4())

    async def test_existing_member_cannot_join_again(self, group_service, sample_group, admin_id, editor_id):
        """既にメンバーなら ValidationFailed"""
        invite = await group_service.generate_invite_code(sample_group.id, admin_id)

        with pytest.raises(ValidationFailed):
            await group_service.join_group_with_invite_code(invite.code, editor_id)

    async def test_code_collision_retries(self, group_repository, member_repository, invite_repository, sample_group, admin_id):
        """既存コードと衝突した場合は再生成する"""
        # Arrange
        await invite_repository.save(GroupInvite(group_id=sample_group.id, code="AAAA-AAAA", created_by=admin_id))
        codes = iter(["AAAA-AAAA", "BBBB-BBBB"])
        service = GroupService(
            group_repository, member_repository, invite_repository, code_generator=lambda: next(codes)
        )

        # Act
        invite = await service.generate_invite_code(sample_group.id, admin_id)

        # Assert
        assert invite.code == "BBBB-BBBB"

    async def test_code_collision_exhausted(self, group_repository, member_repository, invite_repository, sample_group, admin_id):
        """10回衝突し続けたら ValidationFailed"""
        await invite_repository.save(GroupInvite(group_id=sample_group.id, code="AAAA-AAAA", created_by=admin_id))
        service = GroupService(
            group_repository, member_repository, invite_repository, code_generator=lambda: "AAAA-AAAA"
        )

        with pytest.raises(ValidationFailed):
            await service.generate_invite_code(sample_group.id, admin_id)

    async def test_deactivate_invite(self, group_service, sample_group, admin_id):
        """無効化した招待では参加できない"""
        invite = await group_service.generate_invite_code(sample_group.id, admin_id)

        deactivated = await group_service.deactivate_invite(sample_group.id, admin_id, invite.code)

        assert not deactivated.is_active
        with pytest.raises(ValidationFailed):
            await group_service.join_group_with_invite_code(invite.code, uuid.uuid4())

    async def test_list_invites_for_members_only(self, group_service, sample_group, admin_id, viewer_id, outsider_id):
        """メンバーは招待一覧を見られるが、外部ユーザーは Unauthorized"""
        await group_service.generate_invite_code(sample_group.id, admin_id)

        assert len(await group_service.list_invites(sample_group.id, viewer_id)) == 1
        with pytest.raises(Unauthorized):
            await group_service.list_invites(sample_group.id, outsider_id)


class TestCompensation:
    """複数リポジトリへの書き込み失敗時の補償"""

    async def test_failed_group_save_rolls_back_member_record(
        self, mock_group_repository, member_repository, sample_group, admin_id
    ):
        """グループ保存が失敗したら、作成済みの Member レコードを論理削除で取り消す"""
        # Arrange
        mock_group_repository.fetch.return_value = sample_group
        mock_group_repository.save.side_effect = [RepositoryFailure("unavailable"), None]
        service = GroupService(mock_group_repository, member_repository)
        user = uuid.uuid4()

        # Act
        with pytest.raises(RepositoryFailure):
            await service.add_member(sample_group.id, admin_id, MemberInput(user_id=user))

        # Assert
        active = await member_repository.list(sample_group.id)
        assert user not in [r.user_id for r in active]

    async def test_invite_service_requires_repository(self, mock_group_repository, sample_group, admin_id):
        """招待リポジトリ未設定なら RuntimeError"""
        service = GroupService(mock_group_repository, AsyncMock())
        mock_group_repository.fetch.return_value = sample_group

        with pytest.raises(RuntimeError):
            await service.generate_invite_code(sample_group.id, admin_id)
