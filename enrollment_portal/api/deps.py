from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from enrollment_portal.errors import ErrorKind
from enrollment_portal.models import Identity, Role


_bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def get_services(request: Request) -> Any:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=500, detail="server_services_missing")
    return services


def require_role(minimum: Role) -> Callable[..., Identity]:
    """Build a dependency that admits callers whose role is at least `minimum`.

    Supports both:
      - Authorization: Bearer <jwt>
      - Cookie-based sessions (httpOnly cookie set by /auth/login)
    """

    def dependency(
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
        services: Any = Depends(get_services),
    ) -> Identity:
        gate = services.gate

        # Prefer Bearer token when explicitly provided.
        token = credentials.credentials if credentials is not None and credentials.credentials else None
        if not token:
            token = gate.token_from_request(request)

        result = gate.check(token, minimum)
        if result.failure is not None:
            if result.failure.kind is ErrorKind.UNAUTHENTICATED:
                raise _unauthorized(result.failure.detail)
            raise HTTPException(status_code=result.failure.status_code, detail=result.failure.detail)
        assert result.identity is not None
        return result.identity

    dependency.__name__ = f"require_{minimum.value}"
    return dependency
