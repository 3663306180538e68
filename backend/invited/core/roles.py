from enum import Enum
from typing import Tuple


class Role(str, Enum):

    ADMIN = "ADMIN"
    ORGANIZER = "ORGANIZER"
    GUEST = "GUEST"


class TaskStatus(str, Enum):

    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def label(self) -> str:
        """Human form used in user-facing messages, e.g. "in progress"."""
        return self.value.replace("_", " ").lower()


class Priority(str, Enum):

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


# Board column order
TASK_STATUSES: Tuple[TaskStatus, ...] = (
    TaskStatus.TODO,
    TaskStatus.IN_PROGRESS,
    TaskStatus.COMPLETED,
    TaskStatus.CANCELLED,
)


def parse_role(value) -> Role:
    """Coerce a stored role string into the closed Role enum (raises ValueError)."""
    if isinstance(value, Role):
        return value
    return Role(str(value).upper())


class InviteStatus(str, Enum):

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"
