# smaragdus/services/admin_users.py
"""User management for admins. Every mutation writes a ``user_audit_logs`` row."""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from math import ceil
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..db import utcnow
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import Order, UserAuditLog, UserProfile

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "name": UserProfile.name,
    "email": UserProfile.email,
    "created_at": UserProfile.created_at,
    "role": UserProfile.role,
}
AUDITED_FIELDS = (
    "email", "name", "phone", "role", "preferred_currency",
    "discount_percentage", "language_preference", "is_active",
)


@dataclass
class AuditContext:
    admin_user_id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class UserListFilters:
    search: Optional[str] = None
    roles: Optional[List[str]] = None
    is_active: Optional[bool] = None
    registered_from: Optional[datetime] = None
    registered_to: Optional[datetime] = None
    has_orders: Optional[bool] = None


def snapshot(user: UserProfile) -> Dict[str, Any]:
    out = {}
    for f in AUDITED_FIELDS:
        v = getattr(user, f)
        out[f] = float(v) if f == "discount_percentage" and v is not None else v
    return out


def _diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    keys = [k for k in after if before.get(k) != after.get(k)]
    return {"before": {k: before.get(k) for k in keys}, "after": {k: after.get(k) for k in keys}}


def add_audit(db: AsyncSession, ctx: AuditContext, target_user_id: Optional[str], action: str,
              changes: Optional[Dict[str, Any]]):
    db.add(UserAuditLog(
        admin_user_id=ctx.admin_user_id,
        target_user_id=target_user_id,
        action=action,
        changes=changes,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
    ))


def _conditions(filters: UserListFilters) -> list:
    conds = []
    if filters.search:
        like = f"%{filters.search.strip().lower()}%"
        conds.append(or_(
            func.lower(UserProfile.name).like(like),
            func.lower(UserProfile.email).like(like),
            func.lower(func.coalesce(UserProfile.phone, "")).like(like),
        ))
    if filters.roles:
        conds.append(UserProfile.role.in_(filters.roles))
    if filters.is_active is not None:
        conds.append(UserProfile.is_active.is_(filters.is_active))
    if filters.registered_from:
        conds.append(UserProfile.created_at >= filters.registered_from)
    if filters.registered_to:
        conds.append(UserProfile.created_at <= filters.registered_to)
    if filters.has_orders is not None:
        with_orders = select(Order.user_id)
        conds.append(
            UserProfile.user_id.in_(with_orders) if filters.has_orders
            else UserProfile.user_id.not_in(with_orders)
        )
    return conds


async def list_users(db: AsyncSession, filters: UserListFilters, page: int = 1, limit: int = 20,
                     sort_by: str = "created_at", sort_order: str = "desc",
                     paginate: bool = True) -> Dict[str, Any]:
    conds = _conditions(filters)
    where = and_(*conds) if conds else None
    count_q = select(func.count()).select_from(UserProfile)
    q = select(UserProfile)
    if where is not None:
        count_q = count_q.where(where)
        q = q.where(where)
    total = (await db.execute(count_q)).scalar_one()

    column = SORT_COLUMNS.get(sort_by, UserProfile.created_at)
    q = q.order_by(column.asc() if sort_order == "asc" else column.desc(), UserProfile.user_id)
    if paginate:
        q = q.offset((page - 1) * limit).limit(limit)
    users = (await db.execute(q)).scalars().all()

    counts = {}
    if users:
        r = await db.execute(
            select(Order.user_id, func.count()).where(Order.user_id.in_([u.user_id for u in users]))
            .group_by(Order.user_id)
        )
        counts = dict(r.all())

    rows = []
    for u in users:
        data = crud.serialize_user(u)
        data["order_count"] = counts.get(u.user_id, 0)
        rows.append(data)
    return {
        "users": rows,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": ceil(total / limit) if limit else 0,
    }


async def get_user_or_404(db: AsyncSession, user_id: str) -> UserProfile:
    user = await crud.get_user_by_id(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def create_user(db: AsyncSession, ctx: AuditContext, email: str, name: str, role: str,
                      password: Optional[str] = None, phone: Optional[str] = None,
                      preferred_currency: str = "USD",
                      send_invitation: bool = False) -> Tuple[UserProfile, bool]:
    """Returns the user and whether an invitation (reset link) should be emailed."""
    if not password and not send_invitation:
        raise ValidationFailed("Either password or send_invitation must be provided")
    if await crud.get_user_by_email(db, email):
        raise Conflict("A user with this email already exists")
    user = await crud.create_user(
        db, name, email, password or secrets.token_urlsafe(24), phone=phone, role=role,
        preferred_currency=preferred_currency, commit=False,
    )
    add_audit(db, ctx, user.user_id, "create", {"before": None, "after": snapshot(user)})
    await db.commit()
    logger.info("admin %s created user %s role=%s", ctx.admin_user_id, user.user_id, role)
    return user, bool(send_invitation and not password)


async def _ensure_not_last_admin(db: AsyncSession, user: UserProfile, message: str):
    if user.role == "admin" and await crud.count_admins(db) <= 1:
        raise ValidationFailed(message)


async def update_user(db: AsyncSession, ctx: AuditContext, user_id: str, patch: Dict[str, Any]) -> UserProfile:
    user = await get_user_or_404(db, user_id)
    before = snapshot(user)
    if "email" in patch and patch["email"] and patch["email"].lower() != user.email:
        other = await crud.get_user_by_email(db, patch["email"])
        if other and other.user_id != user_id:
            raise Conflict("A user with this email already exists")
        patch["email"] = patch["email"].strip().lower()
    if "role" in patch and patch["role"] != user.role:
        if user_id == ctx.admin_user_id:
            raise ValidationFailed("You cannot change your own role")
        await _ensure_not_last_admin(db, user, "Cannot demote the last admin")

    user = await crud.update_user(db, user_id, patch)
    after = snapshot(user)
    changes = _diff(before, after)
    if changes["after"]:
        action = "role_change" if "role" in changes["after"] else "update"
        add_audit(db, ctx, user_id, action, changes)
        await db.commit()
    return user


async def delete_user(db: AsyncSession, ctx: AuditContext, user_id: str):
    if user_id == ctx.admin_user_id:
        raise ValidationFailed("Cannot delete your own account")
    user = await get_user_or_404(db, user_id)
    await _ensure_not_last_admin(db, user, "Cannot delete the last admin user")
    before = snapshot(user)
    await crud.delete_user(db, user_id, commit=False)
    add_audit(db, ctx, user_id, "delete", {"before": before, "after": None})
    await db.commit()
    logger.info("admin %s deleted user %s", ctx.admin_user_id, user_id)


async def ensure_can_set_active(db: AsyncSession, ctx: AuditContext, user: UserProfile, active: bool):
    if active:
        return
    if user.user_id == ctx.admin_user_id:
        raise ValidationFailed("Cannot suspend your own account")
    await _ensure_not_last_admin(db, user, "Cannot suspend the last admin user")


async def set_active(db: AsyncSession, ctx: AuditContext, user_id: str, active: bool) -> UserProfile:
    user = await get_user_or_404(db, user_id)
    await ensure_can_set_active(db, ctx, user, active)
    was_active = bool(user.is_active)
    user = await crud.update_user(db, user_id, {"is_active": active})
    add_audit(db, ctx, user_id, "activate" if active else "suspend", {
        "before": {"is_active": was_active},
        "after": {"is_active": active},
    })
    await db.commit()
    return user


async def change_role(db: AsyncSession, ctx: AuditContext, user_id: str, role: str) -> UserProfile:
    return await update_user(db, ctx, user_id, {"role": role})


async def record_password_reset(db: AsyncSession, ctx: AuditContext, user: UserProfile):
    add_audit(db, ctx, user.user_id, "password_reset", {"before": None, "after": {"email": user.email}})
    await db.commit()


async def bulk_operation(db: AsyncSession, ctx: AuditContext, user_ids: List[str], operation: str,
                         role: Optional[str] = None) -> Dict[str, Any]:
    results = {"success": 0, "failed": 0, "errors": []}
    for uid in user_ids:
        try:
            if operation == "role_change":
                if not role:
                    raise ValidationFailed("Role is required for role_change operation")
                await change_role(db, ctx, uid, role)
            elif operation == "activate":
                await set_active(db, ctx, uid, True)
            elif operation == "suspend":
                await set_active(db, ctx, uid, False)
            elif operation == "delete":
                await delete_user(db, ctx, uid)
            else:
                raise ValidationFailed(f"Unknown operation: {operation}")
            results["success"] += 1
        except (ValidationFailed, NotFound, Conflict) as e:
            await db.rollback()
            results["failed"] += 1
            results["errors"].append({"user_id": uid, "error": e.message})
    logger.info("bulk %s by %s: %d ok, %d failed", operation, ctx.admin_user_id, results["success"], results["failed"])
    return results


async def statistics(db: AsyncSession) -> Dict[str, int]:
    month_start = utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    async def count(*conds) -> int:
        q = select(func.count()).select_from(UserProfile)
        if conds:
            q = q.where(*conds)
        return (await db.execute(q)).scalar_one()

    return {
        "totalUsers": await count(),
        "activeUsers": await count(UserProfile.is_active.is_(True)),
        "premiumUsers": await count(UserProfile.role == "premium_customer"),
        "admins": await count(UserProfile.role == "admin"),
        "newUsersThisMonth": await count(UserProfile.created_at >= month_start),
        "regularCustomers": await count(UserProfile.role == "regular_customer"),
    }


def serialize_audit(log: UserAuditLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "admin_user_id": log.admin_user_id,
        "target_user_id": log.target_user_id,
        "action": log.action,
        "changes": log.changes,
        "ip_address": log.ip_address,
        "user_agent": log.user_agent,
        "created_at": log.created_at.isoformat(),
    }


async def audit_logs(db: AsyncSession, target_user_id: Optional[str] = None, action: Optional[str] = None,
                     page: int = 1, limit: int = 50) -> Dict[str, Any]:
    conds = []
    if target_user_id:
        conds.append(UserAuditLog.target_user_id == target_user_id)
    if action:
        conds.append(UserAuditLog.action == action)
    total = (await db.execute(select(func.count()).select_from(UserAuditLog).where(*conds))).scalar_one()
    q = (
        select(UserAuditLog).where(*conds)
        .order_by(UserAuditLog.created_at.desc())
        .offset((page - 1) * limit).limit(limit)
    )
    logs = (await db.execute(q)).scalars().all()
    return {
        "logs": [serialize_audit(l) for l in logs],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": ceil(total / limit) if limit else 0,
    }
