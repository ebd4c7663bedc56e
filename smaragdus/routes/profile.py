# smaragdus/routes/profile.py
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..constants import CURRENCY_CODES
from ..db import get_db
from ..deps import get_current_user
from ..errors import ValidationFailed, ok
from ..models import ChatMessage, Order, SearchAnalytics, UserProfile
from ..services import orders

router = APIRouter(prefix="/api/profile", tags=["profile"])

RECENT_ORDERS = 5


class ProfileIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)
    preferred_currency: Optional[str] = None
    language_preference: Optional[Literal["en", "ru"]] = None


class PreferencesIn(BaseModel):
    email_notifications: Optional[bool] = None
    order_updates: Optional[bool] = None
    marketing_emails: Optional[bool] = None
    cart_updates: Optional[bool] = None
    chat_notifications: Optional[bool] = None
    theme: Optional[Literal["light", "dark", "system"]] = None


@router.get("")
async def get_profile(user: UserProfile = Depends(get_current_user)):
    return ok(crud.serialize_user(user))


@router.put("")
async def update_profile(payload: ProfileIn, user: UserProfile = Depends(get_current_user),
                         db: AsyncSession = Depends(get_db)):
    patch = payload.model_dump(exclude_none=True)
    if "preferred_currency" in patch and patch["preferred_currency"] not in CURRENCY_CODES:
        raise ValidationFailed(f"Unsupported currency: {patch['preferred_currency']}")
    if "name" in patch:
        patch["name"] = patch["name"].strip()
    if not patch:
        return ok(crud.serialize_user(user))
    updated = await crud.update_user(db, user.user_id, patch)
    return ok(crud.serialize_user(updated), "Profile updated")


@router.get("/preferences")
async def get_preferences(user: UserProfile = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    prefs = await crud.get_or_create_preferences(db, user.user_id)
    return ok(crud.serialize_preferences(prefs))


@router.put("/preferences")
async def update_preferences(payload: PreferencesIn, user: UserProfile = Depends(get_current_user),
                             db: AsyncSession = Depends(get_db)):
    prefs = await crud.update_preferences(db, user.user_id, payload.model_dump(exclude_none=True))
    return ok(crud.serialize_preferences(prefs), "Preferences updated")


@router.get("/activity")
async def activity(user: UserProfile = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    recent = (await db.execute(
        select(Order).where(Order.user_id == user.user_id)
        .order_by(Order.created_at.desc()).limit(RECENT_ORDERS)
    )).scalars().all()
    search_count = (await db.execute(
        select(func.count()).select_from(SearchAnalytics).where(SearchAnalytics.user_id == user.user_id)
    )).scalar_one()
    r = await db.execute(
        select(ChatMessage.sender_type, func.count())
        .where(ChatMessage.user_id == user.user_id)
        .group_by(ChatMessage.sender_type)
    )
    chat_counts = dict(r.all())
    unread = (await db.execute(
        select(func.count()).select_from(ChatMessage).where(
            ChatMessage.user_id == user.user_id,
            ChatMessage.sender_type == "admin",
            ChatMessage.is_read.is_(False),
        )
    )).scalar_one()
    return ok({
        "totalOrders": await crud.count_orders_for_user(db, user.user_id),
        "recentOrders": [await orders.serialize_order(db, o) for o in recent],
        "searchCount": search_count,
        "chat": {
            "sent": chat_counts.get("user", 0),
            "received": chat_counts.get("admin", 0),
            "unread": unread,
        },
    })
