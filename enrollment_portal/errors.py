"""Error kinds shared by the services and the API layer.

Services raise `ServiceError`; the API maps `ErrorKind` to a status code in one
place (see `api/server.py`). The authorization gate and the provisioning subsystem
return values instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    INVALID_CREDENTIALS = "invalid_credentials"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    DUPLICATE_IDENTIFIER = "duplicate_identifier"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    DATABASE_UNAVAILABLE = "database_unavailable"
    PROVISIONING_PARTIAL_FAILURE = "provisioning_partial_failure"
    RATE_LIMITED = "rate_limited"


HTTP_STATUS = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DUPLICATE_IDENTIFIER: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.PROVISIONING_PARTIAL_FAILURE: 500,
    ErrorKind.DATABASE_UNAVAILABLE: 503,
}


@dataclass(frozen=True)
class Failure:
    """A tagged failure value: what went wrong plus a stable detail code."""

    kind: ErrorKind
    detail: str

    @property
    def status_code(self) -> int:
        return HTTP_STATUS.get(self.kind, 500)


class ServiceError(Exception):
    def __init__(self, kind: ErrorKind, detail: str = "") -> None:
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail or kind.value

    def to_failure(self) -> Failure:
        return Failure(kind=self.kind, detail=self.detail)


def invalid_input(detail: str) -> ServiceError:
    return ServiceError(ErrorKind.INVALID_INPUT, detail)
