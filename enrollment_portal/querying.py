"""Small helpers shared by the paginated read queries."""

from __future__ import annotations

from typing import Any, List, Optional, Sequence, Tuple

from enrollment_portal.errors import invalid_input
from enrollment_portal.util.normalization import like_pattern
from enrollment_portal.util.time import parse_iso_bound


DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def resolve_page(
    limit: Optional[int],
    offset: Optional[int],
    *,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> Tuple[int, int]:
    """Default and clamp `limit` to [1, max_limit]; reject a negative offset."""
    lim = default_limit if limit is None else int(limit)
    lim = max(1, min(lim, max_limit))
    off = int(offset or 0)
    if off < 0:
        raise invalid_input("offset_negative")
    return lim, off


class Where:
    """Accumulates `AND`-ed predicates and their qmark parameters."""

    def __init__(self, base: str = "1=1") -> None:
        self.clauses: List[str] = [base]
        self.params: List[Any] = []

    def eq(self, column: str, value: Any) -> "Where":
        if value is not None and value != "":
            self.clauses.append(f"{column} = ?")
            self.params.append(value)
        return self

    def since(self, column: str, value: Optional[str]) -> "Where":
        if value:
            self.clauses.append(f"{column} >= ?")
            self.params.append(_bound(value, end_of_day=False))
        return self

    def until(self, column: str, value: Optional[str]) -> "Where":
        if value:
            self.clauses.append(f"{column} <= ?")
            self.params.append(_bound(value, end_of_day=True))
        return self

    def search(self, columns: Sequence[str], term: Optional[str]) -> "Where":
        if term and term.strip():
            pattern = like_pattern(term)
            ors = " OR ".join(f"LOWER(COALESCE({c}, '')) LIKE ? ESCAPE '\\'" for c in columns)
            self.clauses.append(f"({ors})")
            self.params.extend([pattern] * len(columns))
        return self

    @property
    def sql(self) -> str:
        return "WHERE " + " AND ".join(self.clauses)


def _bound(value: str, *, end_of_day: bool) -> str:
    try:
        return parse_iso_bound(value, end_of_day=end_of_day)
    except ValueError:
        raise invalid_input(f"invalid_date: {value}") from None
