"""Authentication / authorization.

- Users table (email/phone + password hash + role)
- JWT access tokens, verified statelessly (no server-side session rows)
- `RoleGate` enforces a minimum role using the ordered `Role` enum

The API accepts the token from either:

- `Authorization: Bearer <token>` (scripts / API clients)
- an httpOnly cookie set by `/auth/login` and `/auth/register`
"""

from .crud import bootstrap_admin_if_needed, create_user
from .middleware import GateResult, RoleGate
from .security import TokenService
from .service import AuthResult, AuthService

__all__ = [
    "AuthResult",
    "AuthService",
    "GateResult",
    "RoleGate",
    "TokenService",
    "bootstrap_admin_if_needed",
    "create_user",
]
