"""Domain layer - 外部依存なしのドメインモデルとインターフェース定義"""

from chorebook.domain.errors import (
    ChorebookError,
    NotFound,
    RepositoryFailure,
    Unauthorized,
    ValidationFailed,
)
from chorebook.domain.models import (
    ALLOWED_WEIGHTS,
    UNSET,
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
)
from chorebook.domain.ports import (
    ChoreLogRepository,
    ChoreRepository,
    GroupInviteRepository,
    GroupRepository,
    MemberRepository,
    ReminderRepository,
    UnitOfWork,
)

__all__ = [
    # Models
    "ALLOWED_WEIGHTS",
    "UNSET",
    "Role",
    "Deletion",
    "Membership",
    "Group",
    "Member",
    "ChoreCategory",
    "RecurrencePeriod",
    "RecurrenceRule",
    "OnDemand",
    "Recurring",
    "CustomFrequency",
    "ChoreFrequency",
    "Chore",
    "ChoreLog",
    "GroupInvite",
    "NotificationType",
    "ReminderSchedule",
    "Reminder",
    # Errors
    "ChorebookError",
    "Unauthorized",
    "NotFound",
    "ValidationFailed",
    "RepositoryFailure",
    # Ports
    "ChoreRepository",
    "ChoreLogRepository",
    "GroupRepository",
    "MemberRepository",
    "GroupInviteRepository",
    "ReminderRepository",
    "UnitOfWork",
]
