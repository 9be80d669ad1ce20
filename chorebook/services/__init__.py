"""Services layer - ビジネスロジック"""

from chorebook.services.analytics import (
    ChoreAnalyticsService,
    ContributorSummary,
    DateInterval,
    WorkloadSnapshot,
)
from chorebook.services.chore_log_service import ChoreLogDraft, ChoreLogPatch, ChoreLogService
from chorebook.services.chore_service import ChoreDraft, ChorePatch, ChoreService
from chorebook.services.group_service import (
    GroupDraft,
    GroupPatch,
    GroupService,
    MemberDraft,
    MemberInput,
    MemberPatch,
)
from chorebook.services.reminder_scheduler import ReminderScheduler
from chorebook.services.unit_of_work import CompensatingUnitOfWork

__all__ = [
    "GroupService",
    "GroupDraft",
    "GroupPatch",
    "MemberInput",
    "MemberDraft",
    "MemberPatch",
    "ChoreService",
    "ChoreDraft",
    "ChorePatch",
    "ChoreLogService",
    "ChoreLogDraft",
    "ChoreLogPatch",
    "ChoreAnalyticsService",
    "ContributorSummary",
    "DateInterval",
    "WorkloadSnapshot",
    "ReminderScheduler",
    "CompensatingUnitOfWork",
]
