# smaragdus/routes/admin_statistics.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_db
from ..deps import require_admin
from ..errors import ok
from ..models import UserProfile
from ..services import admin_users, statistics

router = APIRouter(prefix="/api/admin/statistics", tags=["admin-statistics"])


@router.get("")
async def dashboard(admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return ok(await statistics.dashboard(db))


@router.get("/sales")
async def sales(days: int = Query(30, ge=1, le=365),
                admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return ok(await statistics.sales(db, days))


@router.get("/users")
async def users(admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return ok(await admin_users.statistics(db))
