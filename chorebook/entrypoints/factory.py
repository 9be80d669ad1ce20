"""Factory - 依存性注入の組み立て

設定に応じてリポジトリ Adapter を選び、全 Service を組み立てる。
"""

import logging
from dataclasses import dataclass

from chorebook.config import STORAGE_FIRESTORE, AppConfig
from chorebook.domain.ports import (
    ChoreLogRepository,
    ChoreRepository,
    GroupInviteRepository,
    GroupRepository,
    MemberRepository,
    ReminderRepository,
)
from chorebook.logging_config import setup_logging
from chorebook.services.analytics import ChoreAnalyticsService
from chorebook.services.chore_log_service import ChoreLogService
from chorebook.services.chore_service import ChoreService
from chorebook.services.group_service import GroupService
from chorebook.services.reminder_scheduler import ReminderScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Repositories:
    groups: GroupRepository
    members: MemberRepository
    chores: ChoreRepository
    chore_logs: ChoreLogRepository
    invites: GroupInviteRepository
    reminders: ReminderRepository


@dataclass(frozen=True)
class ServiceContainer:
    """呼び出し側（API 層など）に渡す Service 一式"""
    config: AppConfig
    repositories: Repositories
    groups: GroupService
    chores: ChoreService
    chore_logs: ChoreLogService
    analytics: ChoreAnalyticsService
    reminders: ReminderScheduler


def create_services(config: AppConfig | None = None) -> ServiceContainer:
    """
    ServiceContainer を生成（全依存を組み立て）。

    Args:
        config: アプリケーション設定（Noneの場合は環境変数から読み込み、ロギングも初期化する）

    Returns:
        ServiceContainer: 組み立て済みの Service 一式

    Raises:
        ValueError: 必須設定が不足している場合
    """
    if config is None:
        setup_logging()
        config = AppConfig.from_env()

    logger.info("Creating services: storage=%s, timezone=%s", config.storage, config.timezone_name)

    # 1. Repository 生成
    if config.storage == STORAGE_FIRESTORE:
        repositories = _firestore_repositories(config)
    else:
        repositories = _memory_repositories()

    # 2. Service 生成
    tz = config.timezone
    container = ServiceContainer(
        config=config,
        repositories=repositories,
        groups=GroupService(
            group_repository=repositories.groups,
            member_repository=repositories.members,
            invite_repository=repositories.invites,
        ),
        chores=ChoreService(
            chore_repository=repositories.chores,
            group_repository=repositories.groups,
        ),
        chore_logs=ChoreLogService(
            log_repository=repositories.chore_logs,
            chore_repository=repositories.chores,
            group_repository=repositories.groups,
        ),
        analytics=ChoreAnalyticsService(tz=tz),
        reminders=ReminderScheduler(reminder_repository=repositories.reminders, tz=tz),
    )

    logger.info("Services created successfully")
    return container


def _memory_repositories() -> Repositories:
    from chorebook.adapters.memory_repository import (
        InMemoryChoreLogRepository,
        InMemoryChoreRepository,
        InMemoryGroupInviteRepository,
        InMemoryGroupRepository,
        InMemoryMemberRepository,
        InMemoryReminderRepository,
    )

    logger.warning("Using in-memory storage, data will not be persisted")
    return Repositories(
        groups=InMemoryGroupRepository(),
        members=InMemoryMemberRepository(),
        chores=InMemoryChoreRepository(),
        chore_logs=InMemoryChoreLogRepository(),
        invites=InMemoryGroupInviteRepository(),
        reminders=InMemoryReminderRepository(),
    )


def _firestore_repositories(config: AppConfig) -> Repositories:
    from google.cloud import firestore

    from chorebook.adapters.firestore_repository import (
        FirestoreChoreLogRepository,
        FirestoreChoreRepository,
        FirestoreGroupInviteRepository,
        FirestoreGroupRepository,
        FirestoreMemberRepository,
        FirestoreReminderRepository,
    )

    logger.info(
        "Initializing Firestore client: project_id=%s, database=%s",
        config.firestore_project_id,
        config.firestore_database,
    )
    db = firestore.AsyncClient(project=config.firestore_project_id, database=config.firestore_database)
    return Repositories(
        groups=FirestoreGroupRepository(db),
        members=FirestoreMemberRepository(db),
        chores=FirestoreChoreRepository(db),
        chore_logs=FirestoreChoreLogRepository(db),
        invites=FirestoreGroupInviteRepository(db),
        reminders=FirestoreReminderRepository(db),
    )
