"""Ports - リポジトリのインターフェース定義（ABC）

各Port（抽象基底クラス）はストレージとの契約を定義します。
実装クラス（Adapter）はこれらのABCを継承し、全ての抽象メソッドを実装する必要があります。

全メソッドは async で、I/O 待ちで中断しうる。
ストレージ層のエラーは RepositoryFailure として送出すること。
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime

from chorebook.domain.models import (
    Chore,
    ChoreLog,
    Group,
    GroupInvite,
    Member,
    Reminder,
)


class ChoreRepository(ABC):
    """家事定義の永続化"""

    @abstractmethod
    async def list(self, group_id: uuid.UUID, include_deleted: bool = False) -> list[Chore]:
        """グループの家事一覧を取得（論理削除済みはデフォルトで除外）"""
        pass

    @abstractmethod
    async def fetch(self, chore_id: uuid.UUID) -> Chore | None:
        """家事を取得。論理削除済みでも返す"""
        pass

    @abstractmethod
    async def save(self, chore: Chore) -> None:
        """家事を保存（upsert）"""
        pass

    @abstractmethod
    async def delete(self, chore_id: uuid.UUID, group_id: uuid.UUID) -> None:
        """家事を物理削除"""
        pass


class ChoreLogRepository(ABC):
    """家事の実施記録の永続化"""

    @abstractmethod
    async def list(self, group_id: uuid.UUID, since: datetime | None = None) -> list[ChoreLog]:
        """記録を created_at の昇順で取得。since は含む（>=）"""
        pass

    @abstractmethod
    async def save(self, log: ChoreLog) -> None:
        """記録を保存（upsert）"""
        pass

    @abstractmethod
    async def delete(self, log_id: uuid.UUID, group_id: uuid.UUID) -> None:
        """記録を物理削除"""
        pass


class GroupRepository(ABC):
    """グループのメタデータと所属リストの永続化"""

    @abstractmethod
    async def fetch(self, group_id: uuid.UUID) -> Group | None:
        """グループを取得。存在しない場合は None"""
        pass

    @abstractmethod
    async def save(self, group: Group) -> None:
        """グループを保存（upsert）"""
        pass


class MemberRepository(ABC):
    """メンバーの永続化"""

    @abstractmethod
    async def list(self, group_id: uuid.UUID, include_deleted: bool = False) -> list[Member]:
        """グループのメンバー一覧を取得（論理削除済みはデフォルトで除外）"""
        pass

    @abstractmethod
    async def fetch(self, member_id: uuid.UUID) -> Member | None:
        """メンバーを取得。論理削除済みでも返す"""
        pass

    @abstractmethod
    async def save(self, member: Member) -> None:
        """メンバーを保存（upsert）"""
        pass

    @abstractmethod
    async def soft_delete(self, member_id: uuid.UUID, group_id: uuid.UUID, by: uuid.UUID) -> None:
        """メンバーを論理削除"""
        pass

    @abstractmethod
    async def list_groups_for_identity(self, external_id: str) -> list[uuid.UUID]:
        """外部認証ID（Firebase UID等）が所属するグループID一覧"""
        pass


class GroupInviteRepository(ABC):
    """招待コードの永続化"""

    @abstractmethod
    async def fetch_by_code(self, code: str) -> GroupInvite | None:
        """コードで招待を取得。存在しない場合は None"""
        pass

    @abstractmethod
    async def list_by_group(self, group_id: uuid.UUID) -> list[GroupInvite]:
        """グループの招待一覧を新しい順で取得"""
        pass

    @abstractmethod
    async def save(self, invite: GroupInvite) -> None:
        """招待を保存（upsert）"""
        pass

    @abstractmethod
    async def delete(self, invite_id: uuid.UUID) -> None:
        """招待を削除"""
        pass


class ReminderRepository(ABC):
    """リマインダー設定の永続化"""

    @abstractmethod
    async def list(self, chore_id: uuid.UUID) -> list[Reminder]:
        """家事に紐づくリマインダー一覧"""
        pass

    @abstractmethod
    async def save(self, reminder: Reminder) -> None:
        """リマインダーを保存（upsert）"""
        pass

    @abstractmethod
    async def delete(self, reminder_id: uuid.UUID, chore_id: uuid.UUID) -> None:
        """リマインダーを削除"""
        pass


# ─── 複数リポジトリにまたがる書き込み ───────────────────────────────────────────

AsyncWrite = Callable[[], Awaitable[None]]


class UnitOfWork(ABC):
    """複数エンティティへの書き込みを1単位として扱う

    add() で書き込みと取り消し処理を登録し、commit() でまとめて適用する。
    途中で失敗した場合は適用済みの書き込みを取り消してから RepositoryFailure を送出する。
    """

    @abstractmethod
    def add(self, apply: AsyncWrite, compensate: AsyncWrite | None = None) -> None:
        """書き込みと、その取り消し処理を登録"""
        pass

    @abstractmethod
    async def commit(self) -> None:
        """登録順に書き込みを適用"""
        pass
