"""In-memory Repository Adapter

テスト・ローカル開発用のリポジトリ実装。
各インスタンスは asyncio.Lock で内部の dict へのアクセスを直列化する。
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from datetime import datetime

from chorebook.domain.errors import NotFound
from chorebook.domain.models import (
    Chore,
    ChoreLog,
    Group,
    GroupInvite,
    Member,
    Reminder,
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


class InMemoryChoreRepository(ChoreRepository):
    def __init__(self, chores: Iterable[Chore] = ()) -> None:
        self._chores: dict[uuid.UUID, Chore] = {c.id: c for c in chores}
        self._lock = asyncio.Lock()

    async def list(self, group_id: uuid.UUID, include_deleted: bool = False) -> list[Chore]:
        async with self._lock:
            return [
                c
                for c in self._chores.values()
                if c.group_id == group_id and (include_deleted or not c.is_deleted)
            ]

    async def fetch(self, chore_id: uuid.UUID) -> Chore | None:
        async with self._lock:
            return self._chores.get(chore_id)

    async def save(self, chore: Chore) -> None:
        async with self._lock:
            self._chores[chore.id] = chore

    async def delete(self, chore_id: uuid.UUID, group_id: uuid.UUID) -> None:
        async with self._lock:
            chore = self._chores.get(chore_id)
            if chore is None or chore.group_id != group_id:
                raise NotFound("Chore not found.")
            del self._chores[chore_id]


class InMemoryChoreLogRepository(ChoreLogRepository):
    def __init__(self, logs: Iterable[ChoreLog] = ()) -> None:
        self._logs: dict[uuid.UUID, ChoreLog] = {log.id: log for log in logs}
        self._lock = asyncio.Lock()

    async def list(self, group_id: uuid.UUID, since: datetime | None = None) -> list[ChoreLog]:
        async with self._lock:
            logs = [
                log
                for log in self._logs.values()
                if log.group_id == group_id and (since is None or log.created_at >= since)
            ]
        return sorted(logs, key=lambda log: log.created_at)

    async def save(self, log: ChoreLog) -> None:
        async with self._lock:
            self._logs[log.id] = log

    async def delete(self, log_id: uuid.UUID, group_id: uuid.UUID) -> None:
        async with self._lock:
            log = self._logs.get(log_id)
            if log is None or log.group_id != group_id:
                raise NotFound("Chore log not found.")
            del self._logs[log_id]


class InMemoryGroupRepository(GroupRepository):
    def __init__(self, groups: Iterable[Group] = ()) -> None:
        self._groups: dict[uuid.UUID, Group] = {g.id: g for g in groups}
        self._lock = asyncio.Lock()

    async def fetch(self, group_id: uuid.UUID) -> Group | None:
        async with self._lock:
            return self._groups.get(group_id)

    async def save(self, group: Group) -> None:
        async with self._lock:
            self._groups[group.id] = group


class InMemoryMemberRepository(MemberRepository):
    def __init__(self, members: Iterable[Member] = ()) -> None:
        self._members: dict[uuid.UUID, Member] = {m.id: m for m in members}
        self._lock = asyncio.Lock()

    async def list(self, group_id: uuid.UUID, include_deleted: bool = False) -> list[Member]:
        async with self._lock:
            return [
                m
                for m in self._members.values()
                if m.group_id == group_id and (include_deleted or not m.is_deleted)
            ]

    async def fetch(self, member_id: uuid.UUID) -> Member | None:
        async with self._lock:
            return self._members.get(member_id)

    async def save(self, member: Member) -> None:
        async with self._lock:
            self._members[member.id] = member

    async def soft_delete(self, member_id: uuid.UUID, group_id: uuid.UUID, by: uuid.UUID) -> None:
        async with self._lock:
            member = self._members.get(member_id)
            if member is None or member.group_id != group_id:
                raise NotFound("Member not found.")
            self._members[member_id] = member.soft_deleting(by, utcnow())

    async def list_groups_for_identity(self, external_id: str) -> list[uuid.UUID]:
        async with self._lock:
            group_ids: list[uuid.UUID] = []
            for member in self._members.values():
                if member.external_auth_id == external_id and not member.is_deleted:
                    if member.group_id not in group_ids:
                        group_ids.append(member.group_id)
            return group_ids


class InMemoryGroupInviteRepository(GroupInviteRepository):
    def __init__(self, invites: Iterable[GroupInvite] = ()) -> None:
        self._invites: dict[uuid.UUID, GroupInvite] = {i.id: i for i in invites}
        self._lock = asyncio.Lock()

    async def fetch_by_code(self, code: str) -> GroupInvite | None:
        async with self._lock:
            for invite in self._invites.values():
                if invite.code == code:
                    return invite
            return None

    async def list_by_group(self, group_id: uuid.UUID) -> list[GroupInvite]:
        async with self._lock:
            invites = [i for i in self._invites.values() if i.group_id == group_id]
        return sorted(invites, key=lambda i: i.created_at, reverse=True)

    async def save(self, invite: GroupInvite) -> None:
        async with self._lock:
            self._invites[invite.id] = invite

    async def delete(self, invite_id: uuid.UUID) -> None:
        async with self._lock:
            if self._invites.pop(invite_id, None) is None:
                raise NotFound("Invite not found.")


class InMemoryReminderRepository(ReminderRepository):
    def __init__(self, reminders: Iterable[Reminder] = ()) -> None:
        self._reminders: dict[uuid.UUID, Reminder] = {r.id: r for r in reminders}
        self._lock = asyncio.Lock()

    async def list(self, chore_id: uuid.UUID) -> list[Reminder]:
        async with self._lock:
            return [r for r in self._reminders.values() if r.chore_id == chore_id]

    async def save(self, reminder: Reminder) -> None:
        async with self._lock:
            self._reminders[reminder.id] = reminder

    async def delete(self, reminder_id: uuid.UUID, chore_id: uuid.UUID) -> None:
        async with self._lock:
            reminder = self._reminders.get(reminder_id)
            if reminder is None or reminder.chore_id != chore_id:
                raise NotFound("Reminder not found.")
            del self._reminders[reminder_id]
