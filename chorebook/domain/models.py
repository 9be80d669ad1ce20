"""ドメインモデル - 外部依存なしのデータ構造

全エンティティは不変（frozen）で、更新は新しいインスタンスを返すメソッド経由で行う。
"""

from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    """タイムゾーン付きの現在時刻（UTC）"""
    return datetime.now(timezone.utc)


def ensure_aware(moment: datetime | None) -> datetime | None:
    """タイムゾーンなしの日時は UTC とみなす"""
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class Unset(Enum):
    """パッチの「未指定」を表すセンチネル

    None は「明示的に空にする」、UNSET は「変更しない」を意味する。
    """

    UNSET = "UNSET"

    def __repr__(self) -> str:
        return "UNSET"


UNSET = Unset.UNSET


class Role(Enum):
    """グループ内の権限ロール"""

    ADMIN = "admin"
    EDITOR = "editor"  # いわゆる "member"
    VIEWER = "viewer"

    @classmethod
    def parse(cls, value: str) -> Role:
        """保存済みデータのロール文字列を変換（"member" は EDITOR の別名）"""
        if value == "member":
            return cls.EDITOR
        return cls(value)

    @property
    def can_write(self) -> bool:
        return self is not Role.VIEWER


@dataclass(frozen=True)
class Deletion:
    """論理削除マーカー。None のエンティティはアクティブ扱い"""

    at: datetime
    by: uuid.UUID


# ─── グループ ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Membership:
    """グループへの所属（userId はグループ内で一意）"""

    user_id: uuid.UUID
    role: Role
    joined_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Group:
    """家事を共有するグループ（家庭・オフィス等）"""

    name: str
    created_by: uuid.UUID
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    icon: str | None = None
    members: tuple[Membership, ...] = ()
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    updated_by: uuid.UUID | None = None

    def __post_init__(self) -> None:
        if self.updated_by is None:
            object.__setattr__(self, "updated_by", self.created_by)
        object.__setattr__(self, "members", tuple(self.members))

    def membership_of(self, user_id: uuid.UUID) -> Membership | None:
        for membership in self.members:
            if membership.user_id == user_id:
                return membership
        return None

    def role_of(self, user_id: uuid.UUID) -> Role | None:
        membership = self.membership_of(user_id)
        return membership.role if membership else None

    def has_member(self, user_id: uuid.UUID) -> bool:
        return self.membership_of(user_id) is not None

    @property
    def admin_count(self) -> int:
        return sum(1 for m in self.members if m.role is Role.ADMIN)

    def with_members(
        self, members: tuple[Membership, ...] | list[Membership], updated_by: uuid.UUID, at: datetime
    ) -> Group:
        return replace(self, members=tuple(members), updated_by=updated_by, updated_at=at)

    def updating(
        self,
        updated_by: uuid.UUID,
        at: datetime,
        name: str | Unset = UNSET,
        icon: str | None | Unset = UNSET,
    ) -> Group:
        changes: dict = {"updated_by": updated_by, "updated_at": at}
        if name is not UNSET:
            changes["name"] = name
        if icon is not UNSET:
            changes["icon"] = icon
        return replace(self, **changes)


@dataclass(frozen=True)
class Member:
    """家事を実行する参加者

    ログインユーザーに紐づかない参加者（子供など）も存在する。
    過去のログから参照され続けるため、削除は論理削除のみ。
    """

    group_id: uuid.UUID
    display_name: str
    created_by: uuid.UUID
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    user_id: uuid.UUID | None = None
    external_auth_id: str | None = None  # 例: Firebase Auth UID
    avatar_url: str | None = None
    role: Role = Role.EDITOR
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    updated_by: uuid.UUID | None = None
    deletion: Deletion | None = None

    def __post_init__(self) -> None:
        if self.updated_by is None:
            object.__setattr__(self, "updated_by", self.created_by)

    @property
    def is_deleted(self) -> bool:
        return self.deletion is not None

    def soft_deleting(self, by: uuid.UUID, at: datetime) -> Member:
        return replace(self, deletion=Deletion(at=at, by=by), updated_by=by, updated_at=at)

    def updating(
        self,
        updated_by: uuid.UUID,
        at: datetime,
        display_name: str | Unset = UNSET,
        avatar_url: str | None | Unset = UNSET,
        role: Role | Unset = UNSET,
    ) -> Member:
        changes: dict = {"updated_by": updated_by, "updated_at": at}
        if display_name is not UNSET:
            changes["display_name"] = display_name
        if avatar_url is not UNSET:
            changes["avatar_url"] = avatar_url
        if role is not UNSET:
            changes["role"] = role
        return replace(self, **changes)


# ─── 家事定義 ─────────────────────────────────────────────────────────────────

ALLOWED_WEIGHTS: frozenset[int] = frozenset({1, 2, 3, 5, 8})
DEFAULT_WEIGHT = 1


def is_valid_weight(weight: object) -> bool:
    # bool は int のサブクラスなので除外する
    return isinstance(weight, int) and not isinstance(weight, bool) and weight in ALLOWED_WEIGHTS


class ChoreCategory(Enum):
    """家事のカテゴリ"""

    CLEANING = "cleaning"
    LAUNDRY = "laundry"
    COOKING = "cooking"
    SHOPPING = "shopping"
    MAINTENANCE = "maintenance"
    OTHER = "other"


class RecurrencePeriod(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class RecurrenceRule:
    """繰り返しルール（weekdays: 1=日曜 ... 7=土曜）"""

    period: RecurrencePeriod
    interval: int = 1
    weekdays: frozenset[int] = frozenset()


@dataclass(frozen=True)
class OnDemand:
    """必要に応じて実施"""


@dataclass(frozen=True)
class Recurring:
    rule: RecurrenceRule


@dataclass(frozen=True)
class CustomFrequency:
    """自由記述の頻度（例: "来客の前"）"""

    description: str


ChoreFrequency = OnDemand | Recurring | CustomFrequency


@dataclass(frozen=True)
class Chore:
    """グループで共有される家事の定義"""

    group_id: uuid.UUID
    title: str
    created_by: uuid.UUID
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    weight: int = DEFAULT_WEIGHT  # 1, 2, 3, 5, 8 のいずれか
    notes: str | None = None
    is_favorite: bool = False
    category: ChoreCategory = ChoreCategory.OTHER
    default_assignee_id: uuid.UUID | None = None
    estimated_minutes: int | None = None
    frequency: ChoreFrequency = field(default_factory=OnDemand)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    updated_by: uuid.UUID | None = None
    deletion: Deletion | None = None

    def __post_init__(self) -> None:
        if self.updated_by is None:
            object.__setattr__(self, "updated_by", self.created_by)

    @property
    def is_deleted(self) -> bool:
        return self.deletion is not None

    def soft_deleting(self, by: uuid.UUID, at: datetime) -> Chore:
        return replace(self, deletion=Deletion(at=at, by=by), updated_by=by, updated_at=at)


@dataclass(frozen=True)
class ChoreLog:
    """家事の実施記録

    複数人で実施した場合は実施者ごとに1行ずつ作られ、同じ batch_id を共有する。
    weight は家事の重みを performer_count で割った値。
    """

    chore_id: uuid.UUID
    group_id: uuid.UUID
    performer_id: uuid.UUID
    weight: float
    created_by: uuid.UUID
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    memo: str | None = None
    batch_id: uuid.UUID = field(default_factory=uuid.uuid4)
    performer_count: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    updated_by: uuid.UUID | None = None
    started_at: datetime | None = None
    duration_minutes: int | None = None

    def __post_init__(self) -> None:
        if self.updated_by is None:
            object.__setattr__(self, "updated_by", self.created_by)

    @property
    def occurred_at(self) -> datetime:
        """集計に使う時刻（開始時刻がなければ記録時刻）"""
        return self.started_at or self.created_at


# ─── 招待 ────────────────────────────────────────────────────────────────────

INVITE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # 紛らわしい文字（I, O, 0, 1）を除外


@dataclass(frozen=True)
class GroupInvite:
    """グループ参加用の招待コード"""

    group_id: uuid.UUID
    code: str  # 例: "ABC2-XYZ9"
    created_by: uuid.UUID
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    expires_at: datetime | None = None
    max_uses: int | None = None  # None = 無制限
    current_uses: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)

    def is_valid(self, now: datetime | None = None) -> bool:
        if not self.is_active:
            return False
        now = now or utcnow()
        if self.expires_at is not None and now > self.expires_at:
            return False
        if self.max_uses is not None and self.current_uses >= self.max_uses:
            return False
        return True

    def incrementing_uses(self) -> GroupInvite:
        return replace(self, current_uses=self.current_uses + 1)

    def deactivated(self) -> GroupInvite:
        return replace(self, is_active=False)

    @staticmethod
    def generate_code() -> str:
        """"XXXX-YYYY" 形式のコードを生成"""
        part1 = "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(4))
        part2 = "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(4))
        return f"{part1}-{part2}"

    @staticmethod
    def normalize_code(code: str) -> str:
        return code.strip().upper()


# ─── リマインダー ──────────────────────────────────────────────────────────────


class NotificationType(Enum):
    PUSH = "push"
    IN_APP = "in_app"
    EMAIL = "email"


@dataclass(frozen=True)
class ReminderSchedule:
    """曜日 + 時刻のスケジュール（weekdays: 1=日曜 ... 7=土曜、空集合は毎日）"""

    weekdays: frozenset[int] = frozenset()
    hour: int = 9
    minute: int = 0
    second: int = 0


@dataclass(frozen=True)
class Reminder:
    """家事に紐づくリマインダー設定"""

    chore_id: uuid.UUID
    group_id: uuid.UUID
    schedule: ReminderSchedule
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    notification_type: NotificationType = NotificationType.PUSH
    is_enabled: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
