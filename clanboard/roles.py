"""
Caller roles and the context every filtered read is evaluated against.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union, FrozenSet

from clanboard.utils.helpers import normalize_tag


class Role(Enum):
    """Ordered caller roles; compare via .priority, never by name."""
    ADMIN = "ADMIN"
    LEADER = "LEADER"
    COLEADER = "COLEADER"
    ELDER = "ELDER"
    MEMBER = "MEMBER"
    NOTINCLAN = "NOTINCLAN"
    NOTMEMBER = "NOTMEMBER"

    @property
    def priority(self) -> int:
        return ROLE_PRIORITY[self]


ROLE_PRIORITY = {
    Role.ADMIN: 1000,
    Role.LEADER: 100,
    Role.COLEADER: 80,
    Role.ELDER: 50,
    Role.MEMBER: 10,
    Role.NOTINCLAN: 0,
    Role.NOTMEMBER: 0,
}


def role_priority(role: Union[Role, str, None]) -> int:
    """Numeric priority for a role or role label; unknown labels are 0."""
    if role is None:
        return 0
    if isinstance(role, Role):
        return role.priority
    try:
        return Role(str(role).strip().upper()).priority
    except ValueError:
        return 0


def has_required_role(role: Union[Role, str, None], required: Union[Role, str]) -> bool:
    return role_priority(role) >= role_priority(required)


@dataclass(frozen=True)
class CallerContext:
    """
    Resolved caller for one read.

    ``exempt`` holds the caller's own linked account tags for the realm being
    read; records for those tags bypass redaction.
    """
    role: Optional[str] = None
    exempt: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        # Accept a single tag or any iterable of tags; store them normalized
        tags = (self.exempt,) if isinstance(self.exempt, str) else self.exempt
        object.__setattr__(self, "exempt", frozenset(normalize_tag(t) for t in tags if t))

    @property
    def priority(self) -> int:
        return role_priority(self.role)

    def has_role(self, required: Union[Role, str]) -> bool:
        return has_required_role(self.role, required)

    def is_exempt(self, tag) -> bool:
        if not tag or not self.exempt:
            return False
        return normalize_tag(tag) in self.exempt
