"""Role gate: the single enforcement point for privileged operations.

A request passes a fixed pipeline, each stage returning a tagged `GateResult`:

    authenticate(token)         -> identity | UNAUTHENTICATED
    authorize(result, minimum)  -> identity | FORBIDDEN (earlier failures pass through)
    handler(request, identity)

Only the token is read. The gate never touches the database, so it cannot mutate
users or submissions, and identity always comes from verified claims rather than
from anything else the client sent.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Any, Callable, Optional

import jwt

from enrollment_portal.errors import ErrorKind, Failure
from enrollment_portal.models import Identity, Role

from .security import TokenService


@dataclass(frozen=True)
class GateResult:
    identity: Optional[Identity] = None
    failure: Optional[Failure] = None

    @property
    def ok(self) -> bool:
        return self.identity is not None and self.failure is None

    @classmethod
    def fail(cls, kind: ErrorKind, detail: str) -> "GateResult":
        return cls(failure=Failure(kind=kind, detail=detail))


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an `Authorization: Bearer <token>` header value."""
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    value = value.strip()
    return value or None


class RoleGate:
    def __init__(self, tokens: TokenService, *, cookie_name: Optional[str] = None) -> None:
        self.tokens = tokens
        self.cookie_name = cookie_name

    def token_from_request(self, request: Any) -> Optional[str]:
        """Bearer header first, then the session cookie (if one is configured)."""
        headers = getattr(request, "headers", None) or {}
        token = bearer_token(headers.get("authorization") or headers.get("Authorization"))
        if token:
            return token
        if self.cookie_name:
            cookies = getattr(request, "cookies", None) or {}
            return cookies.get(self.cookie_name) or None
        return None

    def authenticate(self, token: Optional[str]) -> GateResult:
        if not token:
            return GateResult.fail(ErrorKind.UNAUTHENTICATED, "missing_token")

        try:
            claims = self.tokens.decode(token)
        except jwt.ExpiredSignatureError:
            return GateResult.fail(ErrorKind.UNAUTHENTICATED, "token_expired")
        except jwt.InvalidTokenError:
            return GateResult.fail(ErrorKind.UNAUTHENTICATED, "token_invalid")

        try:
            user_id = int(claims["sub"])
        except (TypeError, ValueError):
            return GateResult.fail(ErrorKind.UNAUTHENTICATED, "token_sub_not_int")

        role = Role.parse(claims.get("role"))
        if role is None:
            return GateResult.fail(ErrorKind.UNAUTHENTICATED, "token_role_invalid")

        return GateResult(identity=Identity(user_id=user_id, role=role))

    def authorize(self, result: GateResult, minimum: Role) -> GateResult:
        if not result.ok:
            return result
        assert result.identity is not None
        if not result.identity.role.satisfies(minimum):
            return GateResult.fail(ErrorKind.FORBIDDEN, f"{minimum.value}_required")
        return result

    def check(self, token: Optional[str], minimum: Role) -> GateResult:
        return self.authorize(self.authenticate(token), minimum)

    def wrap(self, minimum: Role, handler: Callable[..., Any]) -> Callable[..., Any]:
        """Gate `handler(request, identity, *args, **kwargs)` behind `minimum`.

        The returned callable takes `(request, *args, **kwargs)`. On failure it returns
        the `Failure` and the handler is never called.
        """

        @functools.wraps(handler)
        def gated(request: Any, *args: Any, **kwargs: Any) -> Any:
            result = self.check(self.token_from_request(request), minimum)
            if result.failure is not None:
                return result.failure
            return handler(request, result.identity, *args, **kwargs)

        return gated

    def require(self, minimum: Role) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of `wrap`."""
        return functools.partial(self.wrap, minimum)
