from dataclasses import dataclass, field
from enum import Enum

from story_engine.errors import AuthorizationError


class Role(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    subject_id: str
    roles: frozenset[Role] = field(default_factory=frozenset)


# Role registry (single source of truth)
REQUIRED_ROLES = {
    "CaptureStoryBasicDetailsCommand": Role.MEMBER,
    "AddTaskBasicDetailsToStoryCommand": Role.MEMBER,
    "ReviseStoryBasicDetailsCommand": Role.MEMBER,
    "ReviseTaskBasicDetailsCommand": Role.MEMBER,
    "RemoveStoryCommand": Role.MEMBER,
    "RemoveTaskCommand": Role.MEMBER,
    "GetStoryByIdQuery": Role.MEMBER,
    "GetStoriesPagedQuery": Role.MEMBER,
    "GetDomainEventsByAggregateIdQuery": Role.ADMIN,
}


def authorize(principal: Principal, use_case: str) -> AuthorizationError | None:
    required = REQUIRED_ROLES[use_case]
    if required not in principal.roles:
        return AuthorizationError(f"Missing role '{required.value}'")
    return None
