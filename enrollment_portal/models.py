from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar


class Role(str, Enum):
    """User roles, totally ordered: volunteer < supervisor < team < admin."""

    VOLUNTEER = "volunteer"
    SUPERVISOR = "supervisor"
    TEAM = "team"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def satisfies(self, minimum: "Role") -> bool:
        return self.rank >= minimum.rank

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return None


_ROLE_RANK = {
    Role.VOLUNTEER: 1,
    Role.SUPERVISOR: 2,
    Role.TEAM: 3,
    Role.ADMIN: 4,
}


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not SubmissionStatus.PENDING

    @classmethod
    def parse(cls, value: Any) -> Optional["SubmissionStatus"]:
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class Identity:
    """Who is calling, as established by a verified session token."""

    user_id: int
    role: Role


T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    items: List[T]
    total: int
    limit: int
    offset: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self, key: str) -> Dict[str, Any]:
        return {
            key: self.items,
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "total_pages": self.total_pages,
        }


@dataclass(frozen=True)
class UserFilters:
    limit: Optional[int] = None
    offset: int = 0
    role: Optional[str] = None
    district: Optional[str] = None
    taluka: Optional[str] = None
    is_active: Optional[bool] = None
    search: Optional[str] = None
    created_from: Optional[str] = None
    created_to: Optional[str] = None


@dataclass(frozen=True)
class SubmissionFilters:
    limit: Optional[int] = None
    offset: int = 0
    status: Optional[str] = None
    district: Optional[str] = None
    taluka: Optional[str] = None
    user_id: Optional[int] = None
    filled_by_user_id: Optional[int] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    search: Optional[str] = None


@dataclass(frozen=True)
class UserProfile:
    """Caller-supplied fields for self-serve registration. Role is never taken from here."""

    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    district: Optional[str] = None
    taluka: Optional[str] = None
