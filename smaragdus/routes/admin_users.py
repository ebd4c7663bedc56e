# smaragdus/routes/admin_users.py
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..auth import create_password_reset_token, password_problem
from ..constants import AUDIT_ACTIONS, CURRENCY_CODES, USER_ROLES
from ..db import get_db
from ..deps import get_client_ip, get_user_agent, require_admin
from ..errors import ValidationFailed, ok
from ..models import UserProfile
from ..services import admin_users, exports, notifications
from ..services.admin_users import AuditContext, UserListFilters
from ..services.catalog import split_csv

router = APIRouter(prefix="/api/admin/users", tags=["admin-users"])

Role = Literal["admin", "regular_customer", "premium_customer"]


class CreateUserIn(BaseModel):
    email: EmailStr
    password: Optional[str] = Field(default=None, max_length=128)
    name: str = Field(min_length=2, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)
    role: Role = "regular_customer"
    preferred_currency: str = "USD"
    send_invitation: bool = False

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: Optional[str]) -> Optional[str]:
        if v:
            problem = password_problem(v)
            if problem:
                raise ValueError(problem)
        return v or None


class UpdateUserIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    preferred_currency: Optional[str] = None
    discount_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    language_preference: Optional[Literal["en", "ru"]] = None
    is_active: Optional[bool] = None


class BulkUsersIn(BaseModel):
    user_ids: List[str] = Field(min_length=1, max_length=100)
    operation: Literal["role_change", "activate", "suspend", "delete"]
    role: Optional[Role] = None


def audit_context(request: Request, admin: UserProfile = Depends(require_admin)) -> AuditContext:
    return AuditContext(
        admin_user_id=admin.user_id,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )


def user_filters(search: Optional[str] = Query(None, max_length=200),
                 role: Optional[str] = Query(None),
                 is_active: Optional[bool] = Query(None),
                 registered_from: Optional[datetime] = Query(None),
                 registered_to: Optional[datetime] = Query(None),
                 has_orders: Optional[bool] = Query(None)) -> UserListFilters:
    roles = split_csv(role)
    for r in roles:
        if r not in USER_ROLES:
            raise ValidationFailed(f"Unknown role: {r}")
    return UserListFilters(
        search=search,
        roles=roles,
        is_active=is_active,
        registered_from=registered_from,
        registered_to=registered_to,
        has_orders=has_orders,
    )


def _check_currency(code: Optional[str]):
    if code is not None and code not in CURRENCY_CODES:
        raise ValidationFailed(f"Unsupported currency: {code}")


@router.get("")
async def list_users(filters: UserListFilters = Depends(user_filters),
                     page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                     sort_by: Literal["name", "email", "created_at", "role"] = Query("created_at"),
                     sort_order: Literal["asc", "desc"] = Query("desc"),
                     admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return ok(await admin_users.list_users(db, filters, page, limit, sort_by, sort_order))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(payload: CreateUserIn, background: BackgroundTasks,
                      ctx: AuditContext = Depends(audit_context), db: AsyncSession = Depends(get_db)):
    _check_currency(payload.preferred_currency)
    user, invite = await admin_users.create_user(
        db, ctx, payload.email, payload.name.strip(), payload.role,
        password=payload.password,
        phone=payload.phone,
        preferred_currency=payload.preferred_currency,
        send_invitation=payload.send_invitation,
    )
    if invite:
        token = create_password_reset_token(user.user_id)
        background.add_task(notifications.on_password_reset, user.email, user.name, user.language_preference, token)
    return ok(crud.serialize_user(user), "Invitation sent" if invite else "User created")


@router.get("/statistics")
async def statistics(admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return ok(await admin_users.statistics(db))


@router.get("/export")
async def export_users(filters: UserListFilters = Depends(user_filters),
                       admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    data = await admin_users.list_users(db, filters, paginate=False)
    return Response(
        content=exports.users_csv(data["users"]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{exports.export_filename("users")}"'},
    )


@router.get("/audit-logs")
async def audit_logs(target_user_id: Optional[str] = Query(None),
                     action: Optional[str] = Query(None),
                     page: int = Query(1, ge=1), limit: int = Query(50, ge=1, le=100),
                     admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    if action and action not in AUDIT_ACTIONS:
        raise ValidationFailed(f"Unknown action: {action}")
    return ok(await admin_users.audit_logs(db, target_user_id, action, page, limit))


@router.post("/bulk")
async def bulk(payload: BulkUsersIn, ctx: AuditContext = Depends(audit_context),
               db: AsyncSession = Depends(get_db)):
    result = await admin_users.bulk_operation(db, ctx, payload.user_ids, payload.operation, payload.role)
    return ok(result, f"{result['success']} succeeded, {result['failed']} failed")


@router.get("/{user_id}")
async def get_user(user_id: str, admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    user = await admin_users.get_user_or_404(db, user_id)
    data = crud.serialize_user(user)
    data["order_count"] = await crud.count_orders_for_user(db, user_id)
    data["preferences"] = crud.serialize_preferences(await crud.get_or_create_preferences(db, user_id))
    return ok(data)


@router.put("/{user_id}")
async def update_user(user_id: str, payload: UpdateUserIn, ctx: AuditContext = Depends(audit_context),
                      db: AsyncSession = Depends(get_db)):
    patch = payload.model_dump(exclude_none=True)
    _check_currency(patch.get("preferred_currency"))
    is_active = patch.pop("is_active", None)
    if is_active is not None:
        # reject a forbidden suspend before any field is written
        target = await admin_users.get_user_or_404(db, user_id)
        if is_active != bool(target.is_active):
            await admin_users.ensure_can_set_active(db, ctx, target, is_active)
    user = await admin_users.update_user(db, ctx, user_id, patch)
    if is_active is not None and is_active != bool(user.is_active):
        user = await admin_users.set_active(db, ctx, user_id, is_active)
    return ok(crud.serialize_user(user), "User updated")


@router.delete("/{user_id}")
async def delete_user(user_id: str, ctx: AuditContext = Depends(audit_context), db: AsyncSession = Depends(get_db)):
    await admin_users.delete_user(db, ctx, user_id)
    return ok(None, "User deleted")


@router.get("/{user_id}/audit-logs")
async def user_audit_logs(user_id: str, page: int = Query(1, ge=1), limit: int = Query(50, ge=1, le=100),
                          admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    await admin_users.get_user_or_404(db, user_id)
    return ok(await admin_users.audit_logs(db, user_id, None, page, limit))


@router.post("/{user_id}/reset-password")
async def reset_password(user_id: str, background: BackgroundTasks, ctx: AuditContext = Depends(audit_context),
                         db: AsyncSession = Depends(get_db)):
    user = await admin_users.get_user_or_404(db, user_id)
    token = create_password_reset_token(user.user_id)
    await admin_users.record_password_reset(db, ctx, user)
    background.add_task(notifications.on_password_reset, user.email, user.name, user.language_preference, token)
    return ok({"email": user.email}, "Password reset email sent")
