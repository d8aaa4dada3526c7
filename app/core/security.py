"""
Caller identity.

Authentication happens upstream; requests arrive with the caller's id
and role already established. These types carry that identity into
the services, which enforce ownership:

- a student reads and writes only their own attempts
- an instructor grades and finalizes attempts on quizzes they own
"""

import enum
from dataclasses import dataclass
from uuid import UUID

from app.core.exceptions import PermissionDeniedError


class Role(str, enum.Enum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"


@dataclass(frozen=True)
class Actor:
    id: UUID
    role: Role

    @property
    def is_instructor(self) -> bool:
        return self.role == Role.INSTRUCTOR

    @property
    def is_student(self) -> bool:
        return self.role == Role.STUDENT


def require_instructor(actor: Actor) -> None:
    if not actor.is_instructor:
        raise PermissionDeniedError("Instructor role required")


def require_student(actor: Actor) -> None:
    if not actor.is_student:
        raise PermissionDeniedError("Student role required")
