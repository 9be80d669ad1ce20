"""共通テストフィクスチャ

全テストから利用可能なリポジトリ・サービスとサンプルデータを提供。

- リポジトリは InMemory 実装を使う（asyncio.Lock 付き、実装と同じ挙動）
- 失敗を注入したい場合は AsyncMock(spec=ABC) でポートのシグネチャを保持したモックを作る
- 時刻は固定の clock を注入する（NOW = 2025-03-10 月曜 12:00 UTC）
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from chorebook.adapters.memory_repository import (
    InMemoryChoreLogRepository,
    InMemoryChoreRepository,
    InMemoryGroupInviteRepository,
    InMemoryGroupRepository,
    InMemoryMemberRepository,
    InMemoryReminderRepository,
)
from chorebook.domain.models import (
    Chore,
    ChoreCategory,
    Group,
    Member,
    Membership,
    Role,
)
from chorebook.domain.ports import GroupRepository, MemberRepository
from chorebook.services.chore_log_service import ChoreLogService
from chorebook.services.chore_service import ChoreService
from chorebook.services.group_service import GroupService

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


# ========== ID ==========


@pytest.fixture
def admin_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def editor_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def viewer_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def outsider_id() -> uuid.UUID:
    """どのグループにも属さないユーザー"""
    return uuid.uuid4()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock():
    """固定時刻を返す clock"""
    return lambda: NOW


# ========== サンプルデータ ==========


@pytest.fixture
def sample_group(admin_id, editor_id, viewer_id) -> Group:
    """サンプルグループ: admin / editor / viewer の3人"""
    return Group(
        name="わが家",
        icon="🏠",
        created_by=admin_id,
        members=(
            Membership(user_id=admin_id, role=Role.ADMIN, joined_at=NOW),
            Membership(user_id=editor_id, role=Role.EDITOR, joined_at=NOW),
            Membership(user_id=viewer_id, role=Role.VIEWER, joined_at=NOW),
        ),
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture
def sample_members(sample_group, admin_id, editor_id, viewer_id) -> list[Member]:
    """sample_group の所属に対応する Member レコード"""
    return [
        Member(
            group_id=sample_group.id,
            user_id=user_id,
            external_auth_id=f"auth-{name}",
            display_name=name,
            role=role,
            created_by=admin_id,
            created_at=NOW,
            updated_at=NOW,
        )
        for user_id, name, role in (
            (admin_id, "Alice", Role.ADMIN),
            (editor_id, "Bob", Role.EDITOR),
            (viewer_id, "Carol", Role.VIEWER),
        )
    ]


@pytest.fixture
def sample_chore(sample_group, admin_id) -> Chore:
    """サンプル家事: 風呂掃除（weight=3, 見積もり20分）"""
    return Chore(
        group_id=sample_group.id,
        title="風呂掃除",
        weight=3,
        category=ChoreCategory.CLEANING,
        estimated_minutes=20,
        created_by=admin_id,
        created_at=NOW,
        updated_at=NOW,
    )


# ========== リポジトリ ==========


@pytest.fixture
def group_repository(sample_group) -> InMemoryGroupRepository:
    return InMemoryGroupRepository([sample_group])


@pytest.fixture
def member_repository(sample_members) -> InMemoryMemberRepository:
    return InMemoryMemberRepository(sample_members)


@pytest.fixture
def invite_repository() -> InMemoryGroupInviteRepository:
    return InMemoryGroupInviteRepository()


@pytest.fixture
def chore_repository(sample_chore) -> InMemoryChoreRepository:
    return InMemoryChoreRepository([sample_chore])


@pytest.fixture
def log_repository() -> InMemoryChoreLogRepository:
    return InMemoryChoreLogRepository()


@pytest.fixture
def reminder_repository() -> InMemoryReminderRepository:
    return InMemoryReminderRepository()


@pytest.fixture
def mock_group_repository() -> AsyncMock:
    """GroupRepository のモック"""
    return AsyncMock(spec=GroupRepository)


@pytest.fixture
def mock_member_repository() -> AsyncMock:
    """MemberRepository のモック"""
    return AsyncMock(spec=MemberRepository)


# ========== サービス ==========


@pytest.fixture
def group_service(group_repository, member_repository, invite_repository, clock) -> GroupService:
    return GroupService(
        group_repository=group_repository,
        member_repository=member_repository,
        invite_repository=invite_repository,
        clock=clock,
    )


@pytest.fixture
def chore_service(chore_repository, group_repository, clock) -> ChoreService:
    return ChoreService(chore_repository=chore_repository, group_repository=group_repository, clock=clock)


@pytest.fixture
def chore_log_service(log_repository, chore_repository, group_repository, clock) -> ChoreLogService:
    return ChoreLogService(
        log_repository=log_repository,
        chore_repository=chore_repository,
        group_repository=group_repository,
        clock=clock,
    )
