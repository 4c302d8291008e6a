from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Path, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ledger_platform import __version__
from ledger_platform.api.errors import ApiError, bad_request, envelope, install_error_handlers, not_found
from ledger_platform.auth import CurrentUser, get_current_user, get_optional_user, require_admin
from ledger_platform.auth.crud import (
    bootstrap_admin_if_needed,
    change_password,
    create_user,
    get_user_by_id,
    public_user,
    purge_expired_revocations,
    revoke_token,
    set_role,
    touch_last_login,
    update_avatar,
    verify_user_credentials,
)
from ledger_platform.auth.security import TokenCodec
from ledger_platform.config import Config, load_config, validate_config
from ledger_platform.db import Store, StoreError, StoreIntegrityError
from ledger_platform.ledger import bills as bills_ops
from ledger_platform.ledger import categories as category_ops
from ledger_platform.ledger import statistics as stats_ops
from ledger_platform.ledger.categories import CategoryById, CategoryByName, CategoryRef
from ledger_platform.schema import MAX_ROW_ID
from ledger_platform.util.time import utcnow_iso


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


router = APIRouter()

# Row ids are BIGINT in the store; anything outside that range cannot exist.
RowId = Annotated[int, Path(ge=1, le=MAX_ROW_ID)]


def get_store(request: Request) -> Store:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise ApiError(500, "server_config_missing", error="server_config_missing")
    return store


def get_codec(request: Request) -> TokenCodec:
    codec = getattr(request.app.state, "codec", None)
    if codec is None:
        raise ApiError(500, "server_config_missing", error="server_config_missing")
    return codec


def get_cfg(request: Request) -> Config:
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise ApiError(500, "server_config_missing", error="server_config_missing")
    return cfg


# -----------------------------
# Health
# -----------------------------


@router.get("/health")
def health(store: Store = Depends(get_store)) -> Dict[str, Any]:
    try:
        database = "ok" if store.ping() else "unavailable"
    except StoreError as e:
        _debug(f"Health check: store unavailable ({e})")
        database = "unavailable"
    return envelope(200, "ok", {"status": "ok", "database": database, "timestamp": utcnow_iso()})


# -----------------------------
# Auth
# -----------------------------


class RegisterRequest(BaseModel):
    username: str
    password: str


class LoginRequest(BaseModel):
    username: str
    password: str


class PasswordChangeRequest(BaseModel):
    old_password: str
    new_password: str


class AvatarUpdateRequest(BaseModel):
    avatar_url: str


class RevokeTokenRequest(BaseModel):
    token: str


class RoleUpdateRequest(BaseModel):
    role: str


def _session_payload(user_row: Any, codec: TokenCodec) -> Dict[str, Any]:
    row = dict(user_row)
    token = codec.issue_for_user(row)
    claims = codec.verify(token) or {}
    exp = claims.get("exp")
    expires_at = (
        datetime.fromtimestamp(int(exp), tz=timezone.utc).isoformat().replace("+00:00", "Z") if exp else None
    )
    payload = public_user(row)
    payload["token"] = token
    payload["token_type"] = "bearer"
    payload["expires_at"] = expires_at
    return payload


@router.post("/auth/register", status_code=201)
def auth_register(
    payload: RegisterRequest,
    store: Store = Depends(get_store),
    codec: TokenCodec = Depends(get_codec),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    username = (payload.username or "").strip()
    password = payload.password or ""
    if not username or not password:
        raise bad_request("username and password are required", error="credentials_required")
    if len(password) < cfg.PASSWORD_MIN_LENGTH:
        raise bad_request(
            f"password must be at least {cfg.PASSWORD_MIN_LENGTH} characters",
            error="password_too_short",
        )

    try:
        row = store.run(lambda conn: create_user(conn, username=username, password=password, role="user"))
    except ValueError as e:
        raise bad_request(str(e), error=str(e))
    except StoreIntegrityError:
        # Lost a race with a concurrent registration of the same name.
        raise bad_request("username_exists", error="username_exists")

    _debug(f"Registered user_id={row['user_id']}")
    return envelope(201, "registered", _session_payload(row, codec))


@router.post("/auth/login")
def auth_login(
    payload: LoginRequest,
    store: Store = Depends(get_store),
    codec: TokenCodec = Depends(get_codec),
) -> Dict[str, Any]:
    if not (payload.username or "").strip() or not payload.password:
        raise bad_request("username and password are required", error="credentials_required")

    def _work(conn: Any) -> Optional[Dict[str, Any]]:
        row = verify_user_credentials(conn, payload.username, payload.password)
        if row is None:
            return None
        touch_last_login(conn, str(row["user_id"]))
        return dict(row)

    row = store.run(_work)
    if row is None:
        raise ApiError(401, "invalid username or password", error="invalid_credentials")
    return envelope(200, "logged_in", _session_payload(row, codec))


@router.post("/auth/logout")
def auth_logout(
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    store.run(lambda conn: revoke_token(conn, claims=user.claims, revoked_by=user.user_id))
    return envelope(200, "logged_out", {"revoked": user.token_id})


@router.post("/auth/password/change")
def auth_change_password(
    payload: PasswordChangeRequest,
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    if len(payload.new_password or "") < cfg.PASSWORD_MIN_LENGTH:
        raise bad_request(
            f"new_password must be at least {cfg.PASSWORD_MIN_LENGTH} characters",
            error="password_too_short",
        )
    try:
        store.run(
            lambda conn: change_password(
                conn,
                user_id=user.user_id,
                old_password=payload.old_password,
                new_password=payload.new_password,
            )
        )
    except LookupError:
        raise not_found("user_not_found")
    except ValueError as e:
        raise bad_request(str(e), error=str(e))
    return envelope(200, "password_changed", {"userId": user.user_id})


@router.put("/auth/avatar")
def auth_update_avatar(
    payload: AvatarUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    url = (payload.avatar_url or "").strip()
    if not url.startswith(("http://", "https://")):
        raise bad_request("avatar_url must be an http(s) URL", error="invalid_avatar_url")
    updated = store.run(lambda conn: update_avatar(conn, user_id=user.user_id, avatar_url=url))
    if updated is None:
        raise not_found("user_not_found")
    return envelope(200, "avatar_updated", updated)


@router.get("/auth/me")
def auth_me(
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    row = store.run(lambda conn: get_user_by_id(conn, user.user_id))
    if row is None:
        raise not_found("user_not_found")
    return envelope(200, "ok", public_user(row))


@router.get("/auth/profile/{user_id}")
def auth_profile(
    user_id: str,
    viewer: Optional[CurrentUser] = Depends(get_optional_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    row = store.run(lambda conn: get_user_by_id(conn, user_id))
    if row is None:
        raise not_found("user_not_found")
    profile = public_user(row)
    profile["is_self"] = viewer is not None and viewer.user_id == profile["userId"]
    return envelope(200, "ok", profile)


# -----------------------------
# Admin
# -----------------------------


@router.post("/admin/tokens/revoke")
def admin_revoke_token(
    payload: RevokeTokenRequest,
    admin: CurrentUser = Depends(require_admin),
    store: Store = Depends(get_store),
    codec: TokenCodec = Depends(get_codec),
) -> Dict[str, Any]:
    claims = codec.verify(payload.token)
    if claims is None:
        # Expired or forged tokens are already unusable.
        raise bad_request("token is invalid or expired", error="token_invalid")
    newly = store.run(lambda conn: revoke_token(conn, claims=claims, revoked_by=admin.user_id))
    _debug(f"Admin {admin.user_id} revoked token for user_id={claims['sub']}")
    return envelope(200, "token_revoked", {"jti": claims["jti"], "userId": claims["sub"], "newly_revoked": newly})


@router.post("/admin/users/{user_id}/role")
def admin_set_role(
    user_id: str,
    payload: RoleUpdateRequest,
    _admin: CurrentUser = Depends(require_admin),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    try:
        updated = store.run(lambda conn: set_role(conn, user_id=user_id, role=payload.role))
    except ValueError as e:
        raise bad_request(str(e), error=str(e))
    if updated is None:
        raise not_found("user_not_found")
    return envelope(200, "role_updated", updated)


# -----------------------------
# Categories
# -----------------------------


class CategoryCreateRequest(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None


class CategoryUpdateRequest(BaseModel):
    name: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None


@router.get("/categories")
def list_categories(
    type_: Optional[str] = Query(default=None, alias="type"),
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    results = store.run(lambda conn: category_ops.list_categories(conn, user.user_id, type_=type_))
    return envelope(200, "ok", {"categories": results, "count": len(results)})


@router.post("/categories", status_code=201)
def create_category(
    payload: CategoryCreateRequest,
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    try:
        category = store.run(
            lambda conn: category_ops.create_category(
                conn,
                user.user_id,
                name=payload.name,
                type_=payload.type,
                icon=payload.icon,
                color=payload.color,
            )
        )
    except StoreIntegrityError:
        raise bad_request("category already exists", error="category_exists")
    return envelope(201, "category_created", category)


@router.get("/categories/{category_id}")
def get_category(
    category_id: RowId,
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    category = store.run(lambda conn: category_ops.get_category(conn, user.user_id, category_id))
    return envelope(200, "ok", category)


@router.put("/categories/{category_id}")
def update_category(
    category_id: RowId,
    payload: CategoryUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    changes = payload.model_dump(exclude_unset=True)
    try:
        category = store.run(
            lambda conn: category_ops.update_category(conn, user.user_id, category_id, changes)
        )
    except StoreIntegrityError:
        raise bad_request("category already exists", error="category_exists")
    return envelope(200, "category_updated", category)


@router.delete("/categories/{category_id}")
def delete_category(
    category_id: RowId,
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    store.run(lambda conn: category_ops.delete_category(conn, user.user_id, category_id))
    return envelope(200, "category_deleted", {"id": category_id})


# -----------------------------
# Bills
# -----------------------------


class BillCreateRequest(BaseModel):
    amount: Optional[Decimal] = None
    type: Optional[str] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None


class BillUpdateRequest(BaseModel):
    amount: Optional[Decimal] = None
    type: Optional[str] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None


_CATEGORY_KEYS = ("category_id", "category_name")


def _category_ref(fields: Dict[str, Any]) -> Optional[CategoryRef]:
    """Turn the two explicit category fields into one tagged reference."""
    present = [k for k in _CATEGORY_KEYS if k in fields]
    if not present:
        return None
    if len(present) > 1:
        raise bad_request("send either category_id or category_name, not both", error="invalid_category")
    key = present[0]
    value = fields[key]
    if value is None or (isinstance(value, str) and not value.strip()):
        raise bad_request(f"{key} must not be empty", error="invalid_category")
    if key == "category_id":
        if not 1 <= int(value) <= MAX_ROW_ID:
            raise bad_request("category not found", error="category_not_found")
        return CategoryById(int(value))
    return CategoryByName(str(value).strip())


@router.get("/bills")
def list_bills(
    page: int = Query(default=1, ge=1, le=bills_ops.MAX_PAGE),
    page_size: int = Query(default=bills_ops.DEFAULT_PAGE_SIZE, ge=1, le=bills_ops.MAX_PAGE_SIZE),
    category: Optional[int] = Query(default=None, ge=1, le=MAX_ROW_ID),
    date_from: Optional[str] = Query(default=None),
    date_to: Optional[str] = Query(default=None),
    type_: Optional[str] = Query(default=None, alias="type"),
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    data = store.run(
        lambda conn: bills_ops.list_bills(
            conn,
            user.user_id,
            category_id=category,
            date_from=date_from,
            date_to=date_to,
            type_=type_,
            page=page,
            page_size=page_size,
        )
    )
    return envelope(200, "ok", data)


@router.post("/bills", status_code=201)
def create_bill(
    payload: BillCreateRequest,
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    fields = payload.model_dump(exclude_none=True)
    ref = _category_ref(fields)
    bill = store.run(
        lambda conn: bills_ops.create_bill(
            conn,
            user.user_id,
            amount=payload.amount,
            type_=payload.type,
            category_ref=ref,
            date=payload.date,
            description=payload.description,
        )
    )
    return envelope(201, "bill_created", bill)


@router.get("/bills/{bill_id}")
def get_bill(
    bill_id: RowId,
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    bill = store.run(lambda conn: bills_ops.get_bill(conn, user.user_id, bill_id))
    return envelope(200, "ok", bill)


@router.put("/bills/{bill_id}")
def update_bill(
    bill_id: RowId,
    payload: BillUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    fields = payload.model_dump(exclude_unset=True)
    ref = _category_ref(fields)
    changes = {k: v for k, v in fields.items() if k not in _CATEGORY_KEYS}
    bill = store.run(
        lambda conn: bills_ops.update_bill(conn, user.user_id, bill_id, changes, category_ref=ref)
    )
    return envelope(200, "bill_updated", bill)


@router.delete("/bills/{bill_id}")
def delete_bill(
    bill_id: RowId,
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    store.run(lambda conn: bills_ops.delete_bill(conn, user.user_id, bill_id))
    return envelope(200, "bill_deleted", {"id": bill_id})


# -----------------------------
# Statistics
# -----------------------------


@router.get("/statistics/monthly")
def monthly_statistics(
    year: Optional[int] = Query(default=None),
    month: Optional[int] = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    today = datetime.now(timezone.utc).date()
    y = year if year is not None else today.year
    m = month if month is not None else today.month
    data = store.run(lambda conn: stats_ops.monthly_statistics(conn, user.user_id, year=y, month=m))
    return envelope(200, "ok", data)


@router.get("/statistics/yearly")
def yearly_statistics(
    year: Optional[int] = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    y = year if year is not None else datetime.now(timezone.utc).year
    data = store.run(lambda conn: stats_ops.yearly_statistics(conn, user.user_id, year=y))
    return envelope(200, "ok", data)


# -----------------------------
# App factory
# -----------------------------


def create_app(cfg: Optional[Config] = None, store: Optional[Store] = None) -> FastAPI:
    """Build the API.

    The store is injected so tests (or alternative deployments) can hand in their
    own; by default one is built from the config. Missing required config raises
    here, before the server starts accepting requests.
    """
    cfg = cfg or load_config()
    validate_config(cfg)
    store = store or Store.from_config(cfg)
    codec = TokenCodec(
        cfg.AUTH_JWT_SECRET,
        default_ttl=timedelta(minutes=max(1, int(cfg.AUTH_TOKEN_EXPIRE_MINUTES))),
    )

    app = FastAPI(title="Ledger Platform", version=__version__)
    app.state.cfg = cfg
    app.state.store = store
    app.state.codec = codec

    _cors_origins = [o.strip() for o in (cfg.CORS_ALLOW_ORIGINS or "").split(",") if o.strip()]
    if _cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=_cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE"],
            allow_headers=["Content-Type", "Authorization"],
        )

    install_error_handlers(app)
    app.include_router(router)

    @app.on_event("startup")
    def _on_startup() -> None:
        # Ensure schema exists (and the shared default categories).
        store.init_schema(seed_defaults=cfg.SEED_DEFAULT_CATEGORIES)

        # Bootstrap first admin if needed (only when users table is empty)
        boot = bootstrap_admin_if_needed(cfg, store)
        if boot:
            _debug(f"Bootstrapped initial admin user: username={boot.get('username')} role={boot.get('role')}")

        purged = store.run(purge_expired_revocations)
        if purged:
            _debug(f"Purged {purged} expired token revocations")

    return app
