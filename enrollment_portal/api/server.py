from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from enrollment_portal import __version__
from enrollment_portal.auth import AuthService, RoleGate, TokenService, bootstrap_admin_if_needed, create_user
from enrollment_portal.config import Config, load_config
from enrollment_portal.db import Database
from enrollment_portal.errors import HTTP_STATUS, ErrorKind, ServiceError, invalid_input
from enrollment_portal.models import Identity, Role, SubmissionFilters, UserFilters, UserProfile
from enrollment_portal.provisioning import HEALTHY, DatabaseProvisioner
from enrollment_portal.ratelimit import AttemptLimiter, client_key
from enrollment_portal.submissions import (
    create_submission,
    get_all_submissions,
    get_submission_by_id,
    get_submission_stats,
    update_submission_status,
)
from enrollment_portal.users import deactivate_user, get_user, get_user_stats, get_users
from enrollment_portal.util.normalization import is_valid_email

from .deps import get_services, require_role


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


@dataclass
class Services:
    """Everything a request handler needs, built once per app."""

    cfg: Config
    db: Database
    tokens: TokenService
    auth: AuthService
    gate: RoleGate
    provisioner: DatabaseProvisioner
    limiter: AttemptLimiter
    submission_limiter: AttemptLimiter

    @classmethod
    def build(cls, cfg: Config) -> "Services":
        db = Database.from_config(cfg)
        tokens = TokenService(secret=cfg.AUTH_JWT_SECRET, expires_minutes=cfg.AUTH_TOKEN_EXPIRE_MINUTES)
        return cls(
            cfg=cfg,
            db=db,
            tokens=tokens,
            auth=AuthService(db, tokens, min_password_length=cfg.AUTH_MIN_PASSWORD_LENGTH),
            gate=RoleGate(tokens, cookie_name=cfg.AUTH_COOKIE_NAME),
            provisioner=DatabaseProvisioner(db, lock_timeout_seconds=cfg.DB_INIT_LOCK_TIMEOUT_SECONDS),
            limiter=AttemptLimiter(
                max_attempts=cfg.AUTH_RATE_LIMIT_MAX,
                window_seconds=cfg.AUTH_RATE_LIMIT_WINDOW_SECONDS,
            ),
            submission_limiter=AttemptLimiter(
                max_attempts=cfg.SUBMISSION_RATE_LIMIT_MAX,
                window_seconds=cfg.SUBMISSION_RATE_LIMIT_WINDOW_SECONDS,
            ),
        )


# -----------------------------
# Request bodies
# -----------------------------


class LoginRequest(BaseModel):
    login_field: str
    password: str
    login_type: str = "email"  # email|phone


class RegisterRequest(BaseModel):
    """Public self-serve registration. New accounts are always volunteers."""

    email: str
    password: str
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    district: Optional[str] = None
    taluka: Optional[str] = None


class PublicSubmissionRequest(BaseModel):
    surname: str
    first_name: str
    fathers_husband_name: Optional[str] = None
    sex: Optional[str] = None  # M|F
    date_of_birth: Optional[str] = None
    qualification: Optional[str] = None
    occupation: Optional[str] = None
    district: str
    taluka: str
    village_name: Optional[str] = None
    house_no: Optional[str] = None
    street: Optional[str] = None
    pin_code: str
    mobile_number: str
    email: Optional[str] = None
    aadhaar_number: str


class SubmissionRequest(PublicSubmissionRequest):
    # Team-recorded forms are always form_source="team"; any client value is ignored.
    filled_for_self: bool = False


class CreateUserRequest(BaseModel):
    """Admin-created account; unlike self-registration the role is chosen by the admin."""

    email: str
    password: str
    role: str = "volunteer"  # volunteer|supervisor|team|admin
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    district: Optional[str] = None
    taluka: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str  # approved|rejected
    rejection_reason: Optional[str] = None


# -----------------------------
# Cookies
# -----------------------------


def _cookie_secure(cfg: Config) -> bool:
    # Browsers require Secure when SameSite=None
    if str(cfg.AUTH_COOKIE_SAMESITE or "lax").lower() == "none":
        return True
    return bool(cfg.AUTH_COOKIE_SECURE)


def _set_auth_cookie(response: Response, *, token: str, cfg: Config) -> None:
    response.set_cookie(
        key=cfg.AUTH_COOKIE_NAME,
        value=str(token),
        httponly=True,
        samesite=str(cfg.AUTH_COOKIE_SAMESITE or "lax").lower(),
        secure=_cookie_secure(cfg),
        max_age=int(cfg.AUTH_TOKEN_EXPIRE_MINUTES) * 60,
        path="/",
    )


# -----------------------------
# App
# -----------------------------


def create_app(cfg: Optional[Config] = None) -> FastAPI:
    cfg = cfg or load_config()
    services = Services.build(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if cfg.AUTO_INIT_DB:
            result = services.provisioner.initialize_database()
            if not result.ok:
                _debug(f"Provisioning finished with errors: {result.errors}")
            try:
                boot = bootstrap_admin_if_needed(services.db, cfg)
            except ServiceError as e:
                # Keep serving so /health/database can report the outage.
                _debug(f"Skipped admin bootstrap: {e.detail}")
            else:
                if boot:
                    _debug(f"Bootstrapped initial admin user: email={boot.get('email')} role={boot.get('role')}")
        try:
            yield
        finally:
            services.db.close()

    app = FastAPI(title="Member Enrollment Portal", version=__version__, lifespan=lifespan)
    app.state.cfg = cfg
    app.state.services = services

    # CORS is mainly needed for local development (frontend dev server -> API).
    cors_origins = [o.strip() for o in (cfg.CORS_ALLOW_ORIGINS or "").split(",") if o.strip()]
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError) -> JSONResponse:
        status_code = HTTP_STATUS.get(exc.kind, 500)
        headers: Dict[str, str] = {}
        if status_code == 401:
            headers["WWW-Authenticate"] = "Bearer"
        retry_after = getattr(exc, "retry_after_seconds", None)
        if retry_after:
            headers["Retry-After"] = str(retry_after)
        if status_code >= 500:
            _debug(f"{request.method} {request.url.path} -> {status_code} {exc.kind.value}: {exc.detail}")
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.detail, "error": exc.kind.value},
            headers=headers or None,
        )

    _register_auth_routes(app)
    _register_user_routes(app)
    _register_submission_routes(app)
    _register_health_routes(app)
    return app


# -----------------------------
# Auth
# -----------------------------


def _register_auth_routes(app: FastAPI) -> None:
    @app.post("/auth/login")
    def auth_login(
        payload: LoginRequest,
        request: Request,
        response: Response,
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        key = client_key(request, trust_forwarded=services.cfg.TRUST_PROXY_HEADERS)
        services.limiter.hit(key)
        result = services.auth.authenticate(payload.login_field, payload.password, payload.login_type)
        services.limiter.reset(key)
        _set_auth_cookie(response, token=result.token, cfg=services.cfg)
        return result.to_dict()

    @app.post("/auth/register")
    def auth_register(
        payload: RegisterRequest,
        request: Request,
        response: Response,
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        services.limiter.hit(client_key(request, trust_forwarded=services.cfg.TRUST_PROXY_HEADERS))
        profile = UserProfile(
            email=payload.email,
            phone=payload.phone,
            first_name=payload.first_name,
            last_name=payload.last_name,
            district=payload.district,
            taluka=payload.taluka,
        )
        result = services.auth.register(profile, payload.password)
        _set_auth_cookie(response, token=result.token, cfg=services.cfg)
        return result.to_dict()

    @app.post("/auth/logout")
    def auth_logout(response: Response, services: Services = Depends(get_services)) -> Dict[str, Any]:
        """Clear the browser session cookie."""
        response.delete_cookie(key=services.cfg.AUTH_COOKIE_NAME, path="/")
        return {"ok": True}

    @app.get("/auth/me")
    def auth_me(
        identity: Identity = Depends(require_role(Role.VOLUNTEER)),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        with services.db.connect() as conn:
            user = get_user(conn, identity.user_id)
        if user is None:
            raise ServiceError(ErrorKind.NOT_FOUND, "user_not_found")
        return {"user": user}


# -----------------------------
# Users (admin)
# -----------------------------


def _register_user_routes(app: FastAPI) -> None:
    @app.get("/users")
    def list_users(
        limit: Optional[int] = Query(None),
        offset: int = Query(0),
        role: Optional[str] = Query(None),
        district: Optional[str] = Query(None),
        taluka: Optional[str] = Query(None),
        is_active: Optional[bool] = Query(None),
        search: Optional[str] = Query(None),
        created_from: Optional[str] = Query(None),
        created_to: Optional[str] = Query(None),
        _admin: Identity = Depends(require_role(Role.ADMIN)),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        filters = UserFilters(
            limit=limit,
            offset=offset,
            role=role,
            district=district,
            taluka=taluka,
            is_active=is_active,
            search=search,
            created_from=created_from,
            created_to=created_to,
        )
        with services.db.connect() as conn:
            page = get_users(
                conn,
                filters,
                default_limit=services.cfg.PAGE_DEFAULT_LIMIT,
                max_limit=services.cfg.PAGE_MAX_LIMIT,
            )
        return page.to_dict("users")

    @app.post("/users")
    def admin_create_user(
        payload: CreateUserRequest,
        admin: Identity = Depends(require_role(Role.ADMIN)),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        if not is_valid_email(payload.email):
            raise invalid_input("invalid_email")
        if len(payload.password or "") < services.cfg.AUTH_MIN_PASSWORD_LENGTH:
            raise invalid_input("password_too_short")
        with services.db.connect() as conn:
            user = create_user(
                conn,
                email=payload.email,
                password=payload.password,
                role=payload.role,
                phone=payload.phone,
                first_name=payload.first_name,
                last_name=payload.last_name,
                district=payload.district,
                taluka=payload.taluka,
            )
        _debug(f"user_id={user['user_id']} role={user['role']} created by user_id={admin.user_id}")
        return {"user": user}

    @app.get("/users/stats")
    def users_stats(
        _admin: Identity = Depends(require_role(Role.ADMIN)),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        with services.db.connect() as conn:
            return {"stats": get_user_stats(conn)}

    @app.get("/users/{user_id}")
    def user_detail(
        user_id: int,
        _admin: Identity = Depends(require_role(Role.ADMIN)),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        with services.db.connect() as conn:
            user = get_user(conn, user_id)
        if user is None:
            raise ServiceError(ErrorKind.NOT_FOUND, "user_not_found")
        return {"user": user}

    @app.post("/users/{user_id}/deactivate")
    def user_deactivate(
        user_id: int,
        admin: Identity = Depends(require_role(Role.ADMIN)),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        if int(user_id) == admin.user_id:
            raise invalid_input("cannot_deactivate_self")
        with services.db.connect() as conn:
            user = deactivate_user(conn, user_id)
        if user is None:
            raise ServiceError(ErrorKind.NOT_FOUND, "user_not_found")
        _debug(f"user_id={user_id} deactivated by user_id={admin.user_id}")
        return {"user": user}


# -----------------------------
# Submissions
# -----------------------------


def _register_submission_routes(app: FastAPI) -> None:
    @app.get("/submissions")
    def list_submissions(
        limit: Optional[int] = Query(None),
        offset: int = Query(0),
        status: Optional[str] = Query(None),
        district: Optional[str] = Query(None),
        taluka: Optional[str] = Query(None),
        user_id: Optional[int] = Query(None),
        filled_by_user_id: Optional[int] = Query(None),
        date_from: Optional[str] = Query(None),
        date_to: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
        _reviewer: Identity = Depends(require_role(Role.SUPERVISOR)),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        filters = SubmissionFilters(
            limit=limit,
            offset=offset,
            status=status,
            district=district,
            taluka=taluka,
            user_id=user_id,
            filled_by_user_id=filled_by_user_id,
            date_from=date_from,
            date_to=date_to,
            search=search,
        )
        with services.db.connect() as conn:
            page = get_all_submissions(
                conn,
                filters,
                default_limit=services.cfg.PAGE_DEFAULT_LIMIT,
                max_limit=services.cfg.PAGE_MAX_LIMIT,
            )
        return page.to_dict("submissions")

    @app.get("/submissions/stats")
    def submissions_stats(
        _reviewer: Identity = Depends(require_role(Role.SUPERVISOR)),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        with services.db.connect() as conn:
            return {"stats": get_submission_stats(conn)}

    @app.get("/submissions/{submission_id}")
    def submission_detail(
        submission_id: int,
        _reviewer: Identity = Depends(require_role(Role.SUPERVISOR)),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        with services.db.connect() as conn:
            sub = get_submission_by_id(conn, submission_id)
        if sub is None:
            raise ServiceError(ErrorKind.NOT_FOUND, "submission_not_found")
        return {"submission": sub}

    @app.post("/submissions/public")
    def submission_public(
        payload: PublicSubmissionRequest,
        request: Request,
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        """Anonymous intake: the applicant fills in their own form."""
        services.submission_limiter.hit(client_key(request, trust_forwarded=services.cfg.TRUST_PROXY_HEADERS))
        with services.db.connect() as conn:
            sub = create_submission(conn, payload.model_dump(), form_source="public", filled_for_self=True)
        return {"submission": sub}

    @app.post("/submissions")
    def submission_create(
        payload: SubmissionRequest,
        identity: Identity = Depends(require_role(Role.VOLUNTEER)),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        """Team intake: a logged-in member records a form, for themselves or someone else."""
        services.submission_limiter.hit(f"user:{identity.user_id}")
        data = payload.model_dump(exclude={"filled_for_self"})
        with services.db.connect() as conn:
            sub = create_submission(
                conn,
                data,
                user_id=identity.user_id if payload.filled_for_self else None,
                filled_by_user_id=identity.user_id,
                form_source="team",
                filled_for_self=payload.filled_for_self,
            )
        return {"submission": sub}

    @app.patch("/submissions/{submission_id}/status")
    def submission_status(
        submission_id: int,
        payload: StatusUpdateRequest,
        reviewer: Identity = Depends(require_role(Role.SUPERVISOR)),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        with services.db.connect() as conn:
            sub = update_submission_status(
                conn,
                submission_id,
                payload.status,
                reviewer.user_id,
                rejection_reason=payload.rejection_reason,
            )
        if sub is None:
            raise ServiceError(ErrorKind.NOT_FOUND, "submission_not_found")
        return {"submission": sub}


# -----------------------------
# Health
# -----------------------------


def _register_health_routes(app: FastAPI) -> None:
    @app.get("/health/database")
    def health_database(services: Services = Depends(get_services)) -> JSONResponse:
        """Readiness probe: 200 only when every expected table is present."""
        report = services.provisioner.get_health_status()
        return JSONResponse(status_code=200 if report.status == HEALTHY else 503, content=report.to_dict())

    @app.post("/health/database/init")
    def health_database_init(
        admin: Identity = Depends(require_role(Role.ADMIN)),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        _debug(f"Provisioning requested by user_id={admin.user_id}")
        result = services.provisioner.initialize_database()
        status_code = 200 if result.ok else HTTP_STATUS[ErrorKind.PROVISIONING_PARTIAL_FAILURE]
        return JSONResponse(status_code=status_code, content=result.to_dict())


app = create_app()
